"""Event data models."""

from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Iterable, Mapping


class Level(str, Enum):
    """Event severity, ordered from least to most severe."""

    TRACE = "trace"
    DEBUG = "debug"
    INFO = "info"
    WARN = "warn"
    ERROR = "error"
    CRITICAL = "critical"

    @property
    def rank(self) -> int:
        """Position in severity order (trace=0 ... critical=5)."""
        return _LEVEL_ORDER.index(self)

    @classmethod
    def from_rank(cls, rank: int) -> "Level":
        """Level stored under the given rank."""
        return _LEVEL_ORDER[rank]

    @classmethod
    def parse(cls, value: "str | Level") -> "Level":
        """Parse a level name, case-insensitive; accepts common aliases."""
        if isinstance(value, Level):
            return value
        name = str(value).strip().lower()
        name = _LEVEL_ALIASES.get(name, name)
        try:
            return cls(name)
        except ValueError:
            raise ValueError(f"Unknown level: {value!r}") from None


_LEVEL_ORDER = list(Level)
_LEVEL_ALIASES = {
    "warning": "warn",
    "notice": "info",
    "fatal": "critical",
    "err": "error",
}

Metadata = tuple[tuple[str, str], ...]


def normalize_metadata(
    metadata: Mapping[str, Any] | Iterable[tuple[str, Any]] | None,
) -> Metadata:
    """Turn a mapping or pair list into ordered (key, str(value)) pairs."""
    if not metadata:
        return ()
    items = metadata.items() if isinstance(metadata, Mapping) else metadata
    return tuple((str(key), str(value)) for key, value in items)


@dataclass(frozen=True)
class Event:
    """One immutable structured log/network record.

    ``seq`` is None until the store assigns it on append.
    """

    level: Level
    label: str
    message: str
    timestamp: datetime
    metadata: Metadata = field(default_factory=tuple)
    payload_ref: str | None = None
    session: str | None = None
    seq: int | None = None

    @classmethod
    def create(
        cls,
        level: Level | str,
        label: str,
        message: str,
        metadata: Mapping[str, Any] | Iterable[tuple[str, Any]] | None = None,
        timestamp: datetime | None = None,
        session: str | None = None,
    ) -> "Event":
        """Build an unsequenced event, stamping the current UTC time."""
        if timestamp is None:
            timestamp = datetime.now(timezone.utc)
        elif timestamp.tzinfo is None:
            timestamp = timestamp.replace(tzinfo=timezone.utc)

        return cls(
            level=Level.parse(level),
            label=label,
            message=message,
            timestamp=timestamp,
            metadata=normalize_metadata(metadata),
            session=session,
        )

    def get(self, key: str, default: str | None = None) -> str | None:
        """First metadata value stored under ``key``."""
        for k, v in self.metadata:
            if k == key:
                return v
        return default

    def with_seq(self, seq: int, payload_ref: str | None = None) -> "Event":
        """Copy of this event as persisted under ``seq``."""
        return replace(
            self, seq=seq, payload_ref=payload_ref or self.payload_ref
        )

    def to_dict(self) -> dict[str, Any]:
        """JSON-friendly representation (export/API record format)."""
        return {
            "seq": self.seq,
            "timestamp": self.timestamp.isoformat(),
            "level": self.level.value,
            "label": self.label,
            "message": self.message,
            "metadata": [[k, v] for k, v in self.metadata],
            "payload_ref": self.payload_ref,
            "session": self.session,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Event":
        """Inverse of ``to_dict``; raises KeyError/ValueError on bad input."""
        timestamp = datetime.fromisoformat(data["timestamp"])
        if timestamp.tzinfo is None:
            timestamp = timestamp.replace(tzinfo=timezone.utc)

        return cls(
            level=Level.parse(data["level"]),
            label=data["label"],
            message=data["message"],
            timestamp=timestamp,
            metadata=normalize_metadata(
                [tuple(pair) for pair in data.get("metadata") or []]
            ),
            payload_ref=data.get("payload_ref"),
            session=data.get("session"),
            seq=data.get("seq"),
        )


@dataclass(frozen=True)
class Dropped:
    """Marker delivered in place of events lost to subscriber overflow."""

    count: int


_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


def to_micros(timestamp: datetime) -> int:
    """Exact integer microseconds since the epoch (storage encoding)."""
    if timestamp.tzinfo is None:
        timestamp = timestamp.replace(tzinfo=timezone.utc)
    return (timestamp - _EPOCH) // timedelta(microseconds=1)


def from_micros(micros: int) -> datetime:
    """Inverse of ``to_micros``; always UTC."""
    return _EPOCH + timedelta(microseconds=micros)
