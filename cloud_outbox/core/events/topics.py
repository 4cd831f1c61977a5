"""Topic names shared by producers and consumers.

Resource categories ("vm-events") group every event of one resource type.
Provider-scoped resources (networks, Kubernetes) also use dotted routing
keys built by :func:`build_resource_topic`, which topic-exchange consumers
bind to with wildcards, e.g. ``cmp.events.vpc.aws.*.created``.
"""

from __future__ import annotations

WORKSPACE_EVENTS = "workspace-events"
VM_EVENTS = "vm-events"

TOPIC_PREFIX = "cmp.events"

SUPPORTED_PROVIDERS = frozenset({"aws", "gcp", "azure", "ncp"})


def build_resource_topic(provider: str, resource: str, action: str, *scope: str) -> str:
    """Build a dotted routing key for a provider-scoped resource event.

    Args:
        provider: Cloud provider ("aws", "gcp", "azure", "ncp").
        resource: Resource kind ("vpc", "subnet", "kubernetes.clusters", ...).
        action: What happened ("created", "updated", "deleted").
        *scope: Extra segments between provider and action
            (credential id, region).

    Returns:
        ``cmp.events.<resource>.<provider>[.<scope>...].<action>``

    Raises:
        ValueError: On an unknown provider or an empty segment.

    Example:
        build_resource_topic("aws", "vpc", "created", "cred-1", "us-east-1")
        # "cmp.events.vpc.aws.cred-1.us-east-1.created"
    """
    provider = provider.lower()
    if provider not in SUPPORTED_PROVIDERS:
        msg = f"Unsupported provider: {provider!r}"
        raise ValueError(msg)

    segments = [resource, provider, *scope, action]
    if any(not segment or not segment.strip() for segment in segments):
        msg = "Topic segments must be non-empty"
        raise ValueError(msg)
    return ".".join([TOPIC_PREFIX, *(segment.strip() for segment in segments)])


__all__ = [
    "SUPPORTED_PROVIDERS",
    "TOPIC_PREFIX",
    "VM_EVENTS",
    "WORKSPACE_EVENTS",
    "build_resource_topic",
]
