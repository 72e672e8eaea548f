"""
Serialization utilities for ordercore.

Example:
    >>> from ordercore.serialization import json_dumps
    >>> from uuid import uuid4
    >>>
    >>> json_str = json_dumps({"id": uuid4()})
"""

from ordercore.serialization.json import (
    OrderCoreJSONEncoder,
    json_dumps,
    json_loads,
)

__all__ = [
    "OrderCoreJSONEncoder",
    "json_dumps",
    "json_loads",
]
