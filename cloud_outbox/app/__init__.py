"""FastAPI application: operator API, health and metrics."""
