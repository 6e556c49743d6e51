"""Utility modules for the deposit service."""

from trondeposit.utils.locks import LockTimeoutError, keyed_lock

__all__ = ["LockTimeoutError", "keyed_lock"]
