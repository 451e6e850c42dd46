"""Export module."""

from .ndjson import export_ndjson, import_ndjson, iter_ndjson

__all__ = ["export_ndjson", "import_ndjson", "iter_ndjson"]
