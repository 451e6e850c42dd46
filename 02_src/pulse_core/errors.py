"""Error kinds raised by the event store and its collaborators."""


class PulseError(Exception):
    """Base class for all store errors."""


class StorageError(PulseError):
    """Underlying storage medium failed or is not open."""


class CapacityExceeded(PulseError, RuntimeError):
    """Store is full and the caller asked for a non-evicting append."""

    def __init__(self, count: int, limit: int):
        super().__init__(f"Store holds {count} events, limit is {limit}")
        self.count = count
        self.limit = limit


class InvalidPredicate(PulseError, ValueError):
    """Malformed query/subscription filter."""


class SubscriptionClosed(PulseError):
    """Operation on a subscription that was already removed."""
