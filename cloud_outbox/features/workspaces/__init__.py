"""Workspaces: tenant boundary, emits workspace-events."""
