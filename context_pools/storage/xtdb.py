"""XTDBStore: HTTP client for an XTDB 1.x node via httpx.

Documents are submitted with the store-assigned valid time so XTDB's own
bitemporal index answers ``get_as_of`` and ``history``. Transport failures
and non-404 error statuses surface as ``StoreUnavailable``; there is no
internal retry loop.
"""

from __future__ import annotations

import json
import logging
from datetime import datetime
from typing import Any, Callable, Mapping

import httpx

from ..core.store import VersionedStore
from ..types import PutReceipt, StoreUnavailable, VersionedObject
from .helpers import as_utc, decode_document, dt_to_str, next_valid_time, stamped_document, utc_now

logger = logging.getLogger(__name__)

XT_ID = "xt/id"


def _parse_xt_time(value: str) -> datetime:
    if value.endswith("Z"):
        value = value[:-1] + "+00:00"
    return as_utc(datetime.fromisoformat(value))


def _edn_value(value: Any) -> str:
    if value is None:
        return "nil"
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (int, float)):
        return repr(value)
    return json.dumps(str(value.value if hasattr(value, "value") else value))


def build_query_edn(where: Mapping[str, Any]) -> str:
    """Datalog query finding ids whose current document matches ``where``."""
    clauses = " ".join(f"[e :{key} {_edn_value(value)}]" for key, value in sorted(where.items()))
    if not clauses:
        clauses = f"[e :{XT_ID}]"
    return "{:query {:find [e] :where [" + clauses + "]}}"


class XTDBStore(VersionedStore):
    """Versioned store backed by XTDB's HTTP API."""

    backend_name = "xtdb"

    def __init__(
        self,
        base_url: str = "http://127.0.0.1:3000",
        timeout: float = 10.0,
        transport: httpx.BaseTransport | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self._clock = clock or utc_now
        self._client = httpx.Client(
            base_url=self.base_url,
            timeout=timeout,
            transport=transport,
            headers={"Accept": "application/json"},
        )

    # -- HTTP plumbing --

    def _request(self, method: str, path: str, **kwargs: Any) -> httpx.Response | None:
        """Issue a request. Returns None on 404, raises StoreUnavailable otherwise."""
        try:
            response = self._client.request(method, path, **kwargs)
        except httpx.HTTPError as e:
            logger.warning("XTDB %s %s failed: %s", method, path, e)
            raise StoreUnavailable(f"HTTP error: {e}", backend=self.backend_name) from e

        if response.status_code == 404:
            return None
        if response.status_code >= 400:
            logger.warning("XTDB %s %s returned %d", method, path, response.status_code)
            raise StoreUnavailable(
                f"HTTP {response.status_code}: {response.text}",
                backend=self.backend_name,
                status_code=response.status_code,
            )
        return response

    def _history_entries(self, object_id: str, with_docs: bool) -> list[dict]:
        params = {"eid": object_id, "history": "true", "sort-order": "asc"}
        if with_docs:
            params["with-docs"] = "true"
        response = self._request("GET", "/_xtdb/entity", params=params)
        if response is None:
            return []
        return response.json() or []

    # -- VersionedStore --

    def put(self, obj: VersionedObject) -> PutReceipt:
        entries = self._history_entries(obj.id, with_docs=False)
        previous = _parse_xt_time(entries[-1]["validTime"]) if entries else None
        valid_from = next_valid_time(self._clock(), previous)

        doc = stamped_document(obj, valid_from)
        doc[XT_ID] = obj.id
        body = {"tx-ops": [["put", doc, dt_to_str(valid_from)]]}
        response = self._request("POST", "/_xtdb/submit-tx", json=body)
        if response is None:
            raise StoreUnavailable("submit-tx endpoint not found", backend=self.backend_name, status_code=404)
        tx = response.json()
        tx_id = tx.get("txId")
        if tx_id is not None:
            self._request("GET", "/_xtdb/await-tx", params={"txId": tx_id})
        logger.debug("xtdb put %s tx=%s", obj.id, tx_id)
        return PutReceipt(id=obj.id, version=len(entries), timestamp=valid_from, tx_id=tx_id)

    def get(self, object_id: str) -> VersionedObject | None:
        response = self._request("GET", "/_xtdb/entity", params={"eid": object_id})
        if response is None:
            return None
        return decode_document(response.json())

    def get_as_of(self, object_id: str, at: datetime) -> VersionedObject | None:
        response = self._request(
            "GET", "/_xtdb/entity",
            params={"eid": object_id, "valid-time": dt_to_str(as_utc(at))},
        )
        if response is None:
            return None
        data = response.json()
        return decode_document(data) if data else None

    def history(self, object_id: str) -> list[VersionedObject]:
        return [
            decode_document(entry["doc"])
            for entry in self._history_entries(object_id, with_docs=True)
            if entry.get("doc")
        ]

    def query(self, where: Mapping[str, Any]) -> set[str]:
        response = self._request(
            "POST", "/_xtdb/query",
            content=build_query_edn(where),
            headers={"Content-Type": "application/edn"},
        )
        if response is None:
            return set()
        return {row[0] for row in response.json()}

    def close(self) -> None:
        self._client.close()
