"""InMemoryStore: explicit local version chain, no external service."""

from __future__ import annotations

import bisect
import logging
import threading
from datetime import datetime
from typing import Any, Callable, Mapping

from ..core.store import VersionedStore, matches
from ..types import PutReceipt, VersionedObject
from .helpers import as_utc, decode_document, next_valid_time, stamped_document, utc_now

logger = logging.getLogger(__name__)


class InMemoryStore(VersionedStore):
    """Id -> ordered list of immutable version documents; current = last.

    ``clock`` is injectable so tests can pin valid times.
    """

    backend_name = "memory"

    def __init__(self, clock: Callable[[], datetime] | None = None) -> None:
        self._clock = clock or utc_now
        self._chains: dict[str, list[dict[str, Any]]] = {}
        self._times: dict[str, list[datetime]] = {}
        self._tx_id = 0
        self._lock = threading.Lock()

    def put(self, obj: VersionedObject) -> PutReceipt:
        with self._lock:
            times = self._times.setdefault(obj.id, [])
            valid_from = next_valid_time(self._clock(), times[-1] if times else None)
            doc = stamped_document(obj, valid_from)
            self._chains.setdefault(obj.id, []).append(doc)
            times.append(valid_from)
            self._tx_id += 1
            version = len(times) - 1
            tx_id = self._tx_id
        logger.debug("memory put %s v%d", obj.id, version)
        return PutReceipt(id=obj.id, version=version, timestamp=valid_from, tx_id=tx_id)

    def get(self, object_id: str) -> VersionedObject | None:
        chain = self._chains.get(object_id)
        if not chain:
            return None
        return decode_document(chain[-1])

    def get_as_of(self, object_id: str, at: datetime) -> VersionedObject | None:
        times = self._times.get(object_id)
        if not times:
            return None
        idx = bisect.bisect_right(times, as_utc(at)) - 1
        if idx < 0:
            return None
        return decode_document(self._chains[object_id][idx])

    def history(self, object_id: str) -> list[VersionedObject]:
        return [decode_document(doc) for doc in self._chains.get(object_id, [])]

    def query(self, where: Mapping[str, Any]) -> set[str]:
        return {
            object_id for object_id, chain in self._chains.items()
            if chain and matches(chain[-1], where)
        }

    def get_version(self, object_id: str, index: int) -> VersionedObject | None:
        chain = self._chains.get(object_id, [])
        try:
            return decode_document(chain[index])
        except IndexError:
            return None
