"""Utility modules for the compute engine."""

from gitterm_compute.utils.workspace_lock import WorkspaceLocks

__all__ = ["WorkspaceLocks"]
