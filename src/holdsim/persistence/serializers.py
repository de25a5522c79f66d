"""
Row <-> record conversion for the SQLite world store.

Records keep their identifying keys in real columns (for lookups and
uniqueness) and the remaining fields in a JSON ``data`` column, so adding
a field to a dataclass never needs a schema migration.
"""

from __future__ import annotations

import json
import sqlite3
from dataclasses import asdict, fields
from datetime import datetime, timezone
from enum import Enum
from typing import Any, TypeVar

T = TypeVar("T")


# ---------------------------------------------------------------------------
# Scalars
# ---------------------------------------------------------------------------

def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def ts_to_str(value: datetime | None) -> str | None:
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    # UTC everywhere so stored timestamps compare as strings
    return value.astimezone(timezone.utc).isoformat()


def str_to_ts(value: str | None) -> datetime | None:
    if not value:
        return None
    return datetime.fromisoformat(value)


def _json_fallback(obj: Any) -> Any:
    """Handle enums, datetimes and frozensets."""
    if isinstance(obj, Enum):
        return obj.value
    if isinstance(obj, datetime):
        return ts_to_str(obj)
    if isinstance(obj, (set, frozenset, tuple)):
        return list(obj)
    raise TypeError(f"Object of type {type(obj)} is not JSON serializable")


def dumps(data: Any) -> str:
    return json.dumps(data, default=_json_fallback, sort_keys=True)


def loads(text: str | None, default: Any = None) -> Any:
    if text is None or text == "":
        return default
    return json.loads(text)


# ---------------------------------------------------------------------------
# Dataclass records
# ---------------------------------------------------------------------------

def record_data(record: Any, key_fields: tuple[str, ...]) -> str:
    """JSON for every dataclass field not stored in its own column."""
    data = {k: v for k, v in asdict(record).items() if k not in key_fields}
    return dumps(data)


def record_from_row(cls: type[T], row: sqlite3.Row, key_fields: tuple[str, ...]) -> T:
    """Rebuild ``cls`` from key columns plus the JSON ``data`` column.

    Unknown JSON keys are ignored and missing ones take the dataclass
    default, so older rows stay readable.
    """
    known = {f.name for f in fields(cls)}
    kwargs: dict[str, Any] = {k: row[k] for k in key_fields}
    for k, v in (loads(row["data"], {}) or {}).items():
        if k in known:
            kwargs[k] = v
    return cls(**kwargs)


def enum_or(value: Any, enum_cls: type[Enum], default: Enum) -> Enum:
    try:
        return enum_cls(value)
    except ValueError:
        return default
