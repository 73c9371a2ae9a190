"""Utility modules for bridgeroute."""

from bridgeroute.utils.locks import EntityLock, LockRegistry, LockTimeoutError

__all__ = ["EntityLock", "LockRegistry", "LockTimeoutError"]
