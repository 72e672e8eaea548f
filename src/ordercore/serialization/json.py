"""
JSON serialization utilities for ordercore types.

Stored payloads (outbox entries, audit snapshots in SQL backends) contain
UUIDs, datetimes and Decimal money amounts, none of which the standard
encoder handles.

Example:
    >>> from ordercore.serialization import json_dumps, json_loads
    >>> from decimal import Decimal
    >>>
    >>> json_str = json_dumps({"total": Decimal("20.00")})
    >>> json_loads(json_str)
    {'total': '20.00'}
"""

import json
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any
from uuid import UUID


class OrderCoreJSONEncoder(json.JSONEncoder):
    """
    JSON encoder for UUID, datetime, Decimal and Enum values.

    - UUID: hyphenated string
    - datetime: ISO 8601 string
    - Decimal: string, so money keeps its exact value
    - Enum: its value
    """

    def default(self, obj: Any) -> Any:
        if isinstance(obj, UUID):
            return str(obj)
        if isinstance(obj, datetime):
            return obj.isoformat()
        if isinstance(obj, Decimal):
            return str(obj)
        if isinstance(obj, Enum):
            return obj.value
        return super().default(obj)


def json_dumps(obj: Any) -> str:
    """Serialize to a JSON string using OrderCoreJSONEncoder."""
    return json.dumps(obj, cls=OrderCoreJSONEncoder)


def json_loads(s: str | bytes) -> Any:
    """
    Deserialize a JSON string.

    UUID, datetime and Decimal strings are not converted back; pydantic
    models validating the result take care of that.
    """
    return json.loads(s)


__all__ = [
    "OrderCoreJSONEncoder",
    "json_dumps",
    "json_loads",
]
