"""Operator endpoints for inspecting and repairing the outbox."""
