"""Virtual machines: compute instances, emits vm-events."""
