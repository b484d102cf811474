"""
JSON helpers for stored documents and history columns.

Backfilled documents carry a ``migration_timestamp`` datetime and history
rows carry UUID run ids; neither is accepted by the plain ``json`` encoder.
Both are written as strings and read back as strings.

Example:
    >>> json_dumps({"migration_timestamp": datetime(2024, 6, 1, tzinfo=UTC)})
    '{"migration_timestamp": "2024-06-01T00:00:00+00:00"}'
"""

import json
from datetime import datetime
from typing import Any
from uuid import UUID


class TenantfillJSONEncoder(json.JSONEncoder):
    """Encodes UUIDs as strings, datetimes as ISO 8601 and sets as sorted lists."""

    def default(self, obj: Any) -> Any:
        if isinstance(obj, UUID):
            return str(obj)
        if isinstance(obj, datetime):
            return obj.isoformat()
        if isinstance(obj, (set, frozenset)):
            return sorted(obj)
        return super().default(obj)


def json_dumps(obj: Any) -> str:
    """Serialize a document or column value. Raises TypeError for unsupported values."""
    return json.dumps(obj, cls=TenantfillJSONEncoder)


def json_loads(s: str) -> Any:
    # ISO strings stay strings; callers that need datetimes parse them
    return json.loads(s)


__all__ = [
    "TenantfillJSONEncoder",
    "json_dumps",
    "json_loads",
]
