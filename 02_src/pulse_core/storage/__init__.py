"""Storage module."""

from .storage import EventListener, EventStore, IEventStore

__all__ = ["EventStore", "IEventStore", "EventListener"]
