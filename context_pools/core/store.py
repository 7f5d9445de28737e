"""VersionedStore abstract base class: append-only, time-indexed object versions."""

from __future__ import annotations

from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any, Mapping

from ..types import PutReceipt, VersionedObject


class VersionedStore(ABC):
    """Pluggable backend holding every version of every object.

    Versions are never updated or deleted. Returned objects are fresh copies;
    mutating them never changes what is stored.
    """

    backend_name: str = "abstract"

    @abstractmethod
    def put(self, obj: VersionedObject) -> PutReceipt:
        """Append a new version of ``obj.id``. Acknowledgement means durable."""

    @abstractmethod
    def get(self, object_id: str) -> VersionedObject | None:
        """Current (latest) version. None if the id was never written."""

    @abstractmethod
    def get_as_of(self, object_id: str, at: datetime) -> VersionedObject | None:
        """The version whose validity interval contains ``at``. None before the first version."""

    @abstractmethod
    def history(self, object_id: str) -> list[VersionedObject]:
        """All versions, oldest first. Empty list for unknown ids."""

    @abstractmethod
    def query(self, where: Mapping[str, Any]) -> set[str]:
        """Ids whose current version matches every ``field == value`` pair."""

    def get_version(self, object_id: str, index: int) -> VersionedObject | None:
        """Version by position in history (negative indexes count from the end)."""
        versions = self.history(object_id)
        try:
            return versions[index]
        except IndexError:
            return None

    def close(self) -> None:
        """Release backend resources. Default no-op."""


def matches(doc: Mapping[str, Any], where: Mapping[str, Any]) -> bool:
    """Attribute-equality predicate shared by local backends."""
    return all(doc.get(key) == value for key, value in where.items())
