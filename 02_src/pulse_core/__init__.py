"""Pulse Store core module."""

from .config import StoreConfig
from .errors import (
    CapacityExceeded,
    InvalidPredicate,
    PulseError,
    StorageError,
    SubscriptionClosed,
)
from .export import export_ndjson, import_ndjson, iter_ndjson
from .feed import ILiveFeedDispatcher, LiveFeedDispatcher, Subscription
from .handle import IStoreHandle, StoreHandle
from .logger import EventLogger, IEventLogger, StoreLogHandler
from .models import Dropped, Event, Level
from .query import IQueryEngine, Predicate, QueryEngine, QueryPage
from .retention import IRetentionManager, RetentionManager
from .storage import EventStore, IEventStore

__all__ = [
    # Handle
    "StoreHandle",
    "IStoreHandle",
    "StoreConfig",
    # Models
    "Event",
    "Level",
    "Dropped",
    # Errors
    "PulseError",
    "StorageError",
    "CapacityExceeded",
    "InvalidPredicate",
    "SubscriptionClosed",
    # Components
    "IEventStore",
    "EventStore",
    "IQueryEngine",
    "QueryEngine",
    "QueryPage",
    "Predicate",
    "ILiveFeedDispatcher",
    "LiveFeedDispatcher",
    "Subscription",
    "IRetentionManager",
    "RetentionManager",
    "IEventLogger",
    "EventLogger",
    "StoreLogHandler",
    # Export
    "export_ndjson",
    "import_ndjson",
    "iter_ndjson",
]
