"""Event logger module."""

from .event_logger import NETWORK_LABEL, EventLogger, IEventLogger
from .handler import StoreLogHandler, level_for_record

__all__ = [
    "EventLogger",
    "IEventLogger",
    "NETWORK_LABEL",
    "StoreLogHandler",
    "level_for_record",
]
