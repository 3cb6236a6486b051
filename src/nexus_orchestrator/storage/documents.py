"""
Document storage with pluggable backends.

Every persisted record of the orchestrator (pipeline state, stage outputs,
incidents, review items, queued topics, budget) lives in a collection of
JSON-compatible documents. Collections may be nested paths such as
``pipelines/2026-01-22/outputs``.
"""

import asyncio
import copy
import json
import operator
from abc import ABC, abstractmethod
from collections.abc import Callable
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from ..core.errors import NEXUS_STORAGE_READ_FAILED, NEXUS_STORAGE_WRITE_FAILED, NexusError
from ..observability.logging import get_logger

log = get_logger(__name__)

_OPERATORS: dict[str, Callable[[Any, Any], bool]] = {
    "==": operator.eq,
    "!=": operator.ne,
    "<": operator.lt,
    "<=": operator.le,
    ">": operator.gt,
    ">=": operator.ge,
    "in": lambda value, options: value in options,
}


@dataclass(frozen=True)
class QueryFilter:
    """Field filter for ``query_documents``."""

    field: str
    op: str
    value: Any

    def __post_init__(self):
        if self.op not in _OPERATORS:
            raise ValueError(f"Unsupported query operator: {self.op}")

    def matches(self, document: dict[str, Any]) -> bool:
        present, actual = _lookup(document, self.field)
        if not present:
            return False
        try:
            return bool(_OPERATORS[self.op](actual, self.value))
        except TypeError:
            return False


def _lookup(document: dict[str, Any], dotted: str) -> tuple[bool, Any]:
    current: Any = document
    for part in dotted.split("."):
        if not isinstance(current, dict) or part not in current:
            return False, None
        current = current[part]
    return True, current


def apply_update(document: dict[str, Any], updates: dict[str, Any]) -> dict[str, Any]:
    """Shallow merge ``updates`` into ``document``; dotted keys set nested fields."""
    merged = copy.deepcopy(document)
    for key, value in updates.items():
        parts = key.split(".")
        target = merged
        for part in parts[:-1]:
            child = target.get(part)
            if not isinstance(child, dict):
                child = {}
                target[part] = child
            target = child
        target[parts[-1]] = copy.deepcopy(value)
    return merged


def _check_id(doc_id: str) -> None:
    if not doc_id or "/" in doc_id:
        raise ValueError(f"Invalid document id: {doc_id!r}")


class DocumentStore(ABC):
    """Abstract interface for document storage."""

    @abstractmethod
    async def get_document(self, collection: str, doc_id: str) -> dict[str, Any] | None:
        """Get a document, or None when absent."""

    @abstractmethod
    async def set_document(self, collection: str, doc_id: str, data: dict[str, Any]) -> None:
        """Create or fully replace a document."""

    @abstractmethod
    async def update_document(
        self, collection: str, doc_id: str, updates: dict[str, Any]
    ) -> None:
        """Merge ``updates`` into an existing document."""

    @abstractmethod
    async def delete_document(self, collection: str, doc_id: str) -> bool:
        """Delete a document. Returns False when it did not exist."""

    @abstractmethod
    async def query_documents(
        self, collection: str, filters: list[QueryFilter] | None = None
    ) -> list[dict[str, Any]]:
        """All documents in ``collection`` matching every filter."""


class InMemoryDocumentStore(DocumentStore):
    """Process-local document storage, used in tests and single-process runs."""

    def __init__(self):
        self._collections: dict[str, dict[str, dict[str, Any]]] = {}
        self._lock = asyncio.Lock()

    async def get_document(self, collection: str, doc_id: str) -> dict[str, Any] | None:
        document = self._collections.get(collection, {}).get(doc_id)
        return copy.deepcopy(document) if document is not None else None

    async def set_document(self, collection: str, doc_id: str, data: dict[str, Any]) -> None:
        _check_id(doc_id)
        async with self._lock:
            self._collections.setdefault(collection, {})[doc_id] = copy.deepcopy(data)
        log.debug("Document set", collection=collection, doc_id=doc_id)

    async def update_document(
        self, collection: str, doc_id: str, updates: dict[str, Any]
    ) -> None:
        async with self._lock:
            documents = self._collections.get(collection, {})
            if doc_id not in documents:
                raise NexusError.critical(
                    NEXUS_STORAGE_WRITE_FAILED,
                    f"Cannot update missing document {collection}/{doc_id}",
                    "storage",
                )
            documents[doc_id] = apply_update(documents[doc_id], updates)

    async def delete_document(self, collection: str, doc_id: str) -> bool:
        async with self._lock:
            removed = self._collections.get(collection, {}).pop(doc_id, None)
        return removed is not None

    async def query_documents(
        self, collection: str, filters: list[QueryFilter] | None = None
    ) -> list[dict[str, Any]]:
        documents = self._collections.get(collection, {})
        return [
            copy.deepcopy(doc)
            for doc in documents.values()
            if all(f.matches(doc) for f in filters or [])
        ]


class LocalDocumentStore(DocumentStore):
    """JSON-file document storage, one file per document."""

    def __init__(self, root: Path):
        self.root = Path(root)
        self.root.mkdir(parents=True, exist_ok=True)
        self._lock = asyncio.Lock()
        log.info("Local document store initialized", root=str(self.root))

    def _path(self, collection: str, doc_id: str) -> Path:
        _check_id(doc_id)
        return self.root / collection / f"{doc_id}.json"

    def _read(self, path: Path) -> dict[str, Any] | None:
        if not path.exists():
            return None
        try:
            return json.loads(path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as e:
            raise NexusError.critical(
                NEXUS_STORAGE_READ_FAILED, f"Failed to read {path}: {e}", "storage"
            ) from e

    def _write(self, path: Path, data: dict[str, Any]) -> None:
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            tmp = path.with_suffix(".json.tmp")
            tmp.write_text(json.dumps(data, indent=2, default=str), encoding="utf-8")
            tmp.replace(path)
        except (OSError, TypeError) as e:
            raise NexusError.critical(
                NEXUS_STORAGE_WRITE_FAILED, f"Failed to write {path}: {e}", "storage"
            ) from e

    async def get_document(self, collection: str, doc_id: str) -> dict[str, Any] | None:
        return self._read(self._path(collection, doc_id))

    async def set_document(self, collection: str, doc_id: str, data: dict[str, Any]) -> None:
        async with self._lock:
            self._write(self._path(collection, doc_id), data)
        log.debug("Document written", collection=collection, doc_id=doc_id)

    async def update_document(
        self, collection: str, doc_id: str, updates: dict[str, Any]
    ) -> None:
        path = self._path(collection, doc_id)
        async with self._lock:
            current = self._read(path)
            if current is None:
                raise NexusError.critical(
                    NEXUS_STORAGE_WRITE_FAILED,
                    f"Cannot update missing document {collection}/{doc_id}",
                    "storage",
                )
            self._write(path, apply_update(current, updates))

    async def delete_document(self, collection: str, doc_id: str) -> bool:
        path = self._path(collection, doc_id)
        async with self._lock:
            if not path.exists():
                return False
            path.unlink()
        log.debug("Document deleted", collection=collection, doc_id=doc_id)
        return True

    async def query_documents(
        self, collection: str, filters: list[QueryFilter] | None = None
    ) -> list[dict[str, Any]]:
        directory = self.root / collection
        if not directory.is_dir():
            return []

        results = []
        for path in sorted(directory.glob("*.json")):
            document = self._read(path)
            if document is not None and all(f.matches(document) for f in filters or []):
                results.append(document)
        return results
