"""Query module."""

from .engine import IQueryEngine, QueryEngine, QueryPage
from .predicate import MATCH_ALL, Predicate

__all__ = ["IQueryEngine", "QueryEngine", "QueryPage", "Predicate", "MATCH_ALL"]
