from __future__ import annotations

import copy
import json
import logging
from collections import deque
from dataclasses import dataclass
from datetime import datetime
from functools import lru_cache
from pathlib import Path
from threading import Lock
from typing import Any, Deque, Dict, Iterable, List, Mapping, Optional, Tuple

from settings import get_settings

logger = logging.getLogger(__name__)

Document = Dict[str, Any]
# output name -> (operator, dotted source path); the path is ignored for "count".
GroupSpec = Mapping[str, Tuple[str, Optional[str]]]

_OPERATORS = {"avg", "min", "max", "sum", "count"}
# Journals shorter than this are never compacted.
_MIN_COMPACT_ENTRIES = 1000


class StoreUnavailableError(RuntimeError):
    """Raised when an operation is attempted while the store is disconnected."""


class ConnectionState:
    """Connection flag shared by the store and the components that depend on it."""

    def __init__(self, connected: bool = True) -> None:
        self._connected = connected

    @property
    def connected(self) -> bool:
        return self._connected

    def mark_up(self) -> None:
        self._connected = True

    def mark_down(self) -> None:
        self._connected = False


class DocumentCollection:
    """Insertion-ordered collection of documents keyed on a single time field."""

    def __init__(
        self,
        name: str,
        time_field: str,
        persistence_path: Optional[Path] = None,
        state: Optional[ConnectionState] = None,
    ) -> None:
        self.name = name
        self.time_field = time_field
        self.persistence_path = persistence_path
        self.state = state or ConnectionState()
        self._documents: Deque[Document] = deque()
        self._lock = Lock()
        self._journal_entries = 0
        self._rewrite_pending = False
        if persistence_path:
            persistence_path.parent.mkdir(parents=True, exist_ok=True)
            self._load_from_disk()

    def insert(self, document: Document) -> Document:
        self._ensure_connected()
        stored = copy.deepcopy(document)
        with self._lock:
            self._admit(stored)
            self._write_entry(stored)
            self._append(stored)
            self._compact_if_needed()
        return copy.deepcopy(stored)

    def find_range(
        self,
        start: datetime,
        end: datetime,
        *,
        end_inclusive: bool = True,
    ) -> List[Document]:
        """Return documents whose time field lies in the range, oldest first."""
        self._ensure_connected()
        with self._lock:
            matches = self._match(start, end, end_inclusive)
            ordered = sorted(matches, key=lambda doc: doc[self.time_field])
            return [copy.deepcopy(doc) for doc in ordered]

    def find_latest(self) -> Optional[Document]:
        self._ensure_connected()
        with self._lock:
            latest: Optional[Document] = None
            for document in self._documents:
                value = document.get(self.time_field)
                if not isinstance(value, datetime):
                    continue
                if latest is None or value >= latest[self.time_field]:
                    latest = document
            return copy.deepcopy(latest) if latest is not None else None

    def aggregate(
        self,
        start: datetime,
        end: datetime,
        group: GroupSpec,
        *,
        end_inclusive: bool = True,
    ) -> Optional[Dict[str, Any]]:
        """Fold every document in the range into a single grouped result.

        Returns ``None`` when no document matched.
        """
        unknown = {op for op, _ in group.values()} - _OPERATORS
        if unknown:
            raise ValueError(f"Unsupported aggregate operators: {sorted(unknown)}")

        self._ensure_connected()
        with self._lock:
            matches = self._match(start, end, end_inclusive)
            if not matches:
                return None
            return {
                output: _accumulate(operator, path, matches)
                for output, (operator, path) in group.items()
            }

    def scan(self) -> List[Document]:
        """Return deep copies of all documents in insertion order."""
        self._ensure_connected()
        with self._lock:
            return [copy.deepcopy(doc) for doc in self._documents]

    def __len__(self) -> int:
        with self._lock:
            return len(self._documents)

    def _append(self, document: Document) -> None:
        self._documents.append(document)

    def _ensure_connected(self) -> None:
        if not self.state.connected:
            raise StoreUnavailableError(f"Collection {self.name!r} is unavailable.")

    def _match(self, start: datetime, end: datetime, end_inclusive: bool) -> List[Document]:
        matches = []
        for document in self._documents:
            value = document.get(self.time_field)
            if not isinstance(value, datetime) or value < start:
                continue
            if value > end or (value == end and not end_inclusive):
                continue
            matches.append(document)
        return matches

    def _admit(self, document: Document) -> None:
        """Raise ``ValueError`` if ``document`` can never be stored here."""

    def _write_entry(self, document: Document) -> None:
        """Journal ``document`` before it becomes visible in memory.

        After a failed write the journal may end in a partial line, so the
        next write rewrites the file instead of appending to it.
        """
        if not self.persistence_path:
            return
        try:
            if self._rewrite_pending:
                self._rewrite(self.persistence_path, [*self._documents, document])
            else:
                with self.persistence_path.open("a", encoding="utf-8") as handle:
                    handle.write(json.dumps(document, default=_encode_value) + "\n")
                self._journal_entries += 1
        except OSError as exc:
            self._rewrite_pending = True
            logger.error(
                "Failed to persist document to %s: %s",
                self.persistence_path,
                exc,
                extra={"tier": self.name},
            )
            raise StoreUnavailableError(f"Collection {self.name!r} could not be written.") from exc
        self._rewrite_pending = False

    def _compact_if_needed(self) -> None:
        """Rewrite the journal once evicted entries outnumber the live ones."""
        if not self.persistence_path:
            return
        if self._journal_entries <= max(2 * len(self._documents), _MIN_COMPACT_ENTRIES):
            return
        try:
            self._rewrite(self.persistence_path, self._documents)
        except OSError as exc:
            # The journal is still complete; compaction is retried on a later insert.
            logger.warning("Journal compaction failed for %s: %s", self.persistence_path, exc)

    def _rewrite(self, path: Path, documents: Iterable[Document]) -> None:
        staging = path.with_suffix(".tmp")
        lines = [json.dumps(doc, default=_encode_value) + "\n" for doc in documents]
        staging.write_text("".join(lines), encoding="utf-8")
        staging.replace(path)
        self._journal_entries = len(lines)

    def _load_from_disk(self) -> None:
        if not self.persistence_path or not self.persistence_path.exists():
            return

        try:
            lines = self.persistence_path.read_text(encoding="utf-8").splitlines()
        except OSError:
            logger.warning("Discarding unreadable collection file %s", self.persistence_path)
            lines = []

        for line in lines:
            if not line.strip():
                continue
            self._journal_entries += 1
            try:
                document = json.loads(line)
            except json.JSONDecodeError:
                logger.warning("Skipping corrupt entry in %s", self.persistence_path)
                continue
            if not isinstance(document, dict):
                continue
            value = document.get(self.time_field)
            if isinstance(value, str):
                try:
                    document[self.time_field] = datetime.fromisoformat(value)
                except ValueError:
                    document[self.time_field] = None
            try:
                self._admit(document)
            except ValueError as exc:
                logger.warning("Skipping stored document: %s", exc, extra={"tier": self.name})
                continue
            self._append(document)


class CappedCollection(DocumentCollection):
    """Collection bounded by document count and total encoded size.

    Inserting past either bound evicts the oldest documents first.
    """

    def __init__(
        self,
        name: str,
        time_field: str,
        max_documents: int,
        max_bytes: int,
        persistence_path: Optional[Path] = None,
        state: Optional[ConnectionState] = None,
    ) -> None:
        if max_documents <= 0 or max_bytes <= 0:
            raise ValueError("Capped collection bounds must be positive.")
        self.max_documents = max_documents
        self.max_bytes = max_bytes
        self._sizes: Deque[int] = deque()
        self._total_bytes = 0
        super().__init__(name, time_field, persistence_path=persistence_path, state=state)

    @property
    def total_bytes(self) -> int:
        with self._lock:
            return self._total_bytes

    def _admit(self, document: Document) -> None:
        size = document_size(document)
        if size > self.max_bytes:
            raise ValueError(
                f"Document of {size} bytes exceeds capacity of collection {self.name!r}."
            )

    def _append(self, document: Document) -> None:
        size = document_size(document)
        self._documents.append(document)
        self._sizes.append(size)
        self._total_bytes += size

        evicted = 0
        while len(self._documents) > self.max_documents or self._total_bytes > self.max_bytes:
            self._documents.popleft()
            self._total_bytes -= self._sizes.popleft()
            evicted += 1
        if evicted:
            logger.debug(
                "Evicted oldest documents",
                extra={"tier": self.name, "evicted": evicted},
            )


@dataclass
class DataStore:
    raw: CappedCollection
    hourly: DocumentCollection
    daily: DocumentCollection
    state: ConnectionState


def document_size(document: Document) -> int:
    return len(json.dumps(document, default=_encode_value).encode("utf-8"))


def _encode_value(value: Any) -> Any:
    if isinstance(value, datetime):
        return value.isoformat()
    raise TypeError(f"Object of type {type(value).__name__} is not JSON serializable")


def _resolve(document: Document, path: str) -> Any:
    value: Any = document
    for part in path.split("."):
        if not isinstance(value, dict):
            return None
        value = value.get(part)
    return value


def _accumulate(operator: str, path: Optional[str], documents: List[Document]) -> Any:
    if operator == "count":
        return len(documents)
    if path is None:
        raise ValueError(f"Operator {operator!r} requires a source path.")

    values = [
        value
        for value in (_resolve(doc, path) for doc in documents)
        if isinstance(value, (int, float)) and not isinstance(value, bool)
    ]
    if operator == "sum":
        return sum(values)
    if not values:
        return None
    if operator == "avg":
        return sum(values) / len(values)
    if operator == "min":
        return min(values)
    return max(values)


def build_store(
    persistence_dir: Optional[str],
    raw_max_documents: int,
    raw_max_bytes: int,
) -> DataStore:
    directory = Path(persistence_dir) if persistence_dir else None

    def _path(name: str) -> Optional[Path]:
        return directory / f"{name}.jsonl" if directory else None

    state = ConnectionState()
    return DataStore(
        raw=CappedCollection(
            name="raw",
            time_field="timestamp",
            max_documents=raw_max_documents,
            max_bytes=raw_max_bytes,
            persistence_path=_path("raw"),
            state=state,
        ),
        hourly=DocumentCollection(
            name="hourly", time_field="timestamp", persistence_path=_path("hourly"), state=state
        ),
        daily=DocumentCollection(
            name="daily", time_field="date", persistence_path=_path("daily"), state=state
        ),
        state=state,
    )


@lru_cache
def build_default_store() -> DataStore:
    settings = get_settings()
    return build_store(
        persistence_dir=settings.store_persistence_dir,
        raw_max_documents=settings.raw_max_documents,
        raw_max_bytes=settings.raw_max_bytes,
    )
