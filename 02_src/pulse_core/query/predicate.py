"""Event filter used by queries and live subscriptions."""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Iterable, Mapping

from ..errors import InvalidPredicate
from ..models import Event, Level, to_micros


def _as_frozenset(values: Iterable[Any] | str | None) -> frozenset | None:
    if values is None:
        return None
    if isinstance(values, (str, Level)):
        values = [values]
    return frozenset(values)


@dataclass(frozen=True)
class Predicate:
    """Filter over events.

    Indexed fields (level, label, session, time range) are translated to SQL
    by ``sql_clauses``; ``text`` and ``metadata`` are evaluated in Python
    after the indexed filter narrowed the candidates.

    Time bounds are inclusive on both ends.
    """

    min_level: Level | None = None
    levels: frozenset[Level] | None = None
    labels: frozenset[str] | None = None
    sessions: frozenset[str] | None = None
    since: datetime | None = None
    until: datetime | None = None
    text: str | None = None
    metadata: tuple[tuple[str, str], ...] = field(default_factory=tuple)

    def __post_init__(self) -> None:
        try:
            if self.min_level is not None:
                object.__setattr__(self, "min_level", Level.parse(self.min_level))
            if self.levels is not None:
                object.__setattr__(
                    self,
                    "levels",
                    frozenset(Level.parse(lv) for lv in _as_frozenset(self.levels)),
                )
        except ValueError as e:
            raise InvalidPredicate(str(e)) from None

        object.__setattr__(self, "labels", _as_frozenset(self.labels))
        object.__setattr__(self, "sessions", _as_frozenset(self.sessions))

        metadata = self.metadata
        if isinstance(metadata, Mapping):
            metadata = tuple(metadata.items())
        object.__setattr__(self, "metadata", tuple(tuple(p) for p in metadata))

        self.validate()

    def validate(self) -> None:
        """Raise InvalidPredicate if the filter is malformed."""
        for name in ("since", "until"):
            value = getattr(self, name)
            if value is None:
                continue
            if not isinstance(value, datetime):
                raise InvalidPredicate(f"{name} must be a datetime")
            if value.tzinfo is None:
                raise InvalidPredicate(f"{name} must be timezone-aware")

        if self.since and self.until and self.since > self.until:
            raise InvalidPredicate("since is after until")

        if self.text is not None and not isinstance(self.text, str):
            raise InvalidPredicate("text must be a string")
        if self.text is not None and not self.text.strip():
            raise InvalidPredicate("text filter is empty")

        for values, name in ((self.labels, "labels"), (self.sessions, "sessions")):
            if values is not None and not all(isinstance(v, str) for v in values):
                raise InvalidPredicate(f"{name} must be strings")

        for pair in self.metadata:
            if len(pair) != 2 or not all(isinstance(v, str) for v in pair):
                raise InvalidPredicate(f"Malformed metadata filter: {pair!r}")

        if self.level_ranks() == []:
            raise InvalidPredicate("Level filters exclude every level")

    def level_ranks(self) -> list[int] | None:
        """Allowed level ranks, or None when levels are unrestricted."""
        if self.min_level is None and self.levels is None:
            return None
        ranks = set(range(len(Level)))
        if self.min_level is not None:
            ranks &= set(range(self.min_level.rank, len(Level)))
        if self.levels is not None:
            ranks &= {lv.rank for lv in self.levels}
        return sorted(ranks)

    @property
    def needs_scan(self) -> bool:
        """Whether non-indexed checks remain after the SQL filter."""
        return bool(self.text or self.metadata)

    def sql_clauses(self) -> tuple[list[str], list[Any]]:
        """WHERE fragments and params for the indexed fields."""
        conditions: list[str] = []
        params: list[Any] = []

        ranks = self.level_ranks()
        if ranks is not None:
            if ranks == list(range(ranks[0], len(Level))):
                conditions.append("level >= ?")
                params.append(ranks[0])
            else:
                conditions.append(f"level IN ({','.join('?' * len(ranks))})")
                params.extend(ranks)
        if self.labels is not None:
            labels = sorted(self.labels)
            conditions.append(f"label IN ({','.join('?' * len(labels))})")
            params.extend(labels)
        if self.sessions is not None:
            sessions = sorted(self.sessions)
            conditions.append(f"session IN ({','.join('?' * len(sessions))})")
            params.extend(sessions)
        if self.since is not None:
            conditions.append("ts >= ?")
            params.append(to_micros(self.since))
        if self.until is not None:
            conditions.append("ts <= ?")
            params.append(to_micros(self.until))

        return conditions, params

    def matches_indexed(self, event: Event) -> bool:
        """In-memory version of ``sql_clauses``."""
        ranks = self.level_ranks()
        if ranks is not None and event.level.rank not in ranks:
            return False
        if self.labels is not None and event.label not in self.labels:
            return False
        if self.sessions is not None and event.session not in self.sessions:
            return False
        if self.since is not None and event.timestamp < self.since:
            return False
        if self.until is not None and event.timestamp > self.until:
            return False
        return True

    def matches_scan(self, event: Event) -> bool:
        """Full-text and metadata checks."""
        for pair in self.metadata:
            if pair not in event.metadata:
                return False
        if self.text:
            needle = self.text.lower()
            haystack = [event.message, event.label]
            haystack.extend(v for _, v in event.metadata)
            if not any(needle in s.lower() for s in haystack):
                return False
        return True

    def matches(self, event: Event) -> bool:
        """Evaluate the whole predicate, cheap fields first."""
        return self.matches_indexed(event) and self.matches_scan(event)

    @classmethod
    def parse(
        cls,
        min_level: str | None = None,
        levels: Iterable[str] | None = None,
        labels: Iterable[str] | None = None,
        sessions: Iterable[str] | None = None,
        since: str | None = None,
        until: str | None = None,
        text: str | None = None,
        metadata: Iterable[str] | None = None,
    ) -> "Predicate":
        """Build a predicate from string inputs (query parameters).

        ``metadata`` items use the ``key:value`` form; naive timestamps are
        read as UTC. Empty collections mean "no restriction".
        """

        def parse_time(name: str, value: str | None) -> datetime | None:
            if not value:
                return None
            if value.endswith(("Z", "z")):
                value = value[:-1] + "+00:00"
            try:
                parsed = datetime.fromisoformat(value)
            except ValueError:
                raise InvalidPredicate(f"Invalid {name} timestamp: {value!r}") from None
            if parsed.tzinfo is None:
                parsed = parsed.replace(tzinfo=timezone.utc)
            return parsed

        pairs = []
        for item in metadata or []:
            key, sep, value = item.partition(":")
            if not sep or not key:
                raise InvalidPredicate(f"Metadata filter must be key:value, got {item!r}")
            pairs.append((key, value))

        return cls(
            min_level=min_level or None,
            levels=list(levels or []) or None,
            labels=list(labels or []) or None,
            sessions=list(sessions or []) or None,
            since=parse_time("since", since),
            until=parse_time("until", until),
            text=text if text else None,
            metadata=tuple(pairs),
        )


MATCH_ALL = Predicate()
