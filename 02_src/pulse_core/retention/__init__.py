"""Retention module."""

from .manager import IRetentionManager, RetentionManager

__all__ = ["IRetentionManager", "RetentionManager"]
