"""Transactional outbox and event relay for the cloud resource platform."""

__version__ = "0.1.0"
