"""Core data models for Pulse Store."""

from .events import (
    Dropped,
    Event,
    Level,
    Metadata,
    from_micros,
    normalize_metadata,
    to_micros,
)

__all__ = [
    "Event",
    "Level",
    "Metadata",
    "Dropped",
    "normalize_metadata",
    "to_micros",
    "from_micros",
]
