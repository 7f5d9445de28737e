"""Shared helpers for storage backends."""

from __future__ import annotations

import copy
import json
from datetime import datetime, timedelta, timezone
from typing import Any

from ..core.objects import document_to_object, dt_to_str, object_to_document, str_to_dt
from ..types import VersionedObject

__all__ = [
    "utc_now",
    "as_utc",
    "next_valid_time",
    "dt_to_str",
    "str_to_dt",
    "encode_document",
    "decode_document",
    "stamped_document",
]

TICK = timedelta(microseconds=1)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(dt: datetime) -> datetime:
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def next_valid_time(now: datetime, previous: datetime | None) -> datetime:
    """Valid time for a new version: ``now``, bumped past ``previous`` if needed.

    Keeps history strictly increasing per id even when the clock stalls or
    steps backwards.
    """
    now = as_utc(now)
    if previous is not None and now <= previous:
        return previous + TICK
    return now


def stamped_document(obj: VersionedObject, valid_from: datetime) -> dict[str, Any]:
    """Document for ``obj`` carrying the store-assigned valid time."""
    doc = object_to_document(obj)
    doc["timestamp"] = dt_to_str(valid_from)
    return doc


def encode_document(doc: dict[str, Any]) -> str:
    return json.dumps(doc, sort_keys=True, ensure_ascii=False)


def decode_document(raw: str | dict[str, Any]) -> VersionedObject:
    doc = json.loads(raw) if isinstance(raw, str) else copy.deepcopy(raw)
    return document_to_object(doc)
