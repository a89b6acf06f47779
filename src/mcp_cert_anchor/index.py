"""Key index: anchor id -> decryption key material.

The ledger never holds the key, so losing an index record makes the
certificate permanently unreadable. Records are immutable once written.

Backends:
    MemoryKeyIndex     in-process dict, for tests
    JsonFileKeyIndex   one JSON array, rewritten atomically on every put
    JsonLinesKeyIndex  append-only, one record per line

The file backends load everything at open. ``JsonFileKeyIndex`` rewrites
the whole file per put and does not scale past small collections.
"""

import json
import logging
import os
import tempfile
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

from mcp_cert_anchor.config import Config, IndexBackend
from mcp_cert_anchor.errors import ValidationError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class IndexRecord:
    """Off-chain record for one anchored certificate."""

    anchor_id: str
    key_material_hex: str = field(repr=False)
    created_at: str
    preview: dict = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {
            "anchorId": self.anchor_id,
            "keyMaterial": self.key_material_hex,
            "createdAt": self.created_at,
            "preview": self.preview,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "IndexRecord":
        return cls(
            anchor_id=data["anchorId"],
            key_material_hex=data["keyMaterial"],
            created_at=data["createdAt"],
            preview=data.get("preview", {}),
        )


class KeyIndex(ABC):
    """Durable mapping of anchor id to IndexRecord."""

    @abstractmethod
    def put(self, record: IndexRecord) -> None:
        """Store a new record.

        Raises:
            ValidationError: If the anchor id is already indexed
        """
        pass  # pragma: no cover

    @abstractmethod
    def get(self, anchor_id: str) -> Optional[IndexRecord]:
        """Look up a record, or None."""
        pass  # pragma: no cover

    @abstractmethod
    def get_all(self) -> list[IndexRecord]:
        """All records in insertion order."""
        pass  # pragma: no cover

    @abstractmethod
    def clear(self) -> None:
        """Remove every record."""
        pass  # pragma: no cover


class MemoryKeyIndex(KeyIndex):
    """Volatile in-memory index."""

    def __init__(self):
        self._records: dict[str, IndexRecord] = {}
        self._lock = threading.Lock()

    def _insert(self, record: IndexRecord) -> None:
        if record.anchor_id in self._records:
            raise ValidationError(f"Anchor {record.anchor_id} is already indexed")
        self._records[record.anchor_id] = record

    def put(self, record: IndexRecord) -> None:
        with self._lock:
            self._insert(record)

    def get(self, anchor_id: str) -> Optional[IndexRecord]:
        return self._records.get(anchor_id)

    def get_all(self) -> list[IndexRecord]:
        return list(self._records.values())

    def clear(self) -> None:
        with self._lock:
            self._records.clear()


class JsonFileKeyIndex(MemoryKeyIndex):
    """Index persisted as a single JSON array.

    Every write replaces the file atomically (temp file + os.replace).
    """

    def __init__(self, path: Path):
        super().__init__()
        self.path = Path(path)
        self._load()

    def _load(self) -> None:
        if not self.path.exists():
            return
        with open(self.path, "r", encoding="utf-8") as f:
            for item in json.load(f):
                record = IndexRecord.from_dict(item)
                self._records[record.anchor_id] = record
        logger.info("Loaded %d index records from %s", len(self._records), self.path)

    def _persist(self) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        data = [r.to_dict() for r in self._records.values()]
        fd, tmp = tempfile.mkstemp(dir=self.path.parent, suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(data, f, indent=2)
            os.replace(tmp, self.path)
        except BaseException:
            os.unlink(tmp)
            raise

    def put(self, record: IndexRecord) -> None:
        with self._lock:
            self._insert(record)
            try:
                self._persist()
            except OSError:
                del self._records[record.anchor_id]
                raise

    def clear(self) -> None:
        with self._lock:
            self._records.clear()
            self._persist()


class JsonLinesKeyIndex(MemoryKeyIndex):
    """Append-only index, one JSON record per line."""

    def __init__(self, path: Path):
        super().__init__()
        self.path = Path(path)
        # Set when the file does not end in a newline, so the next append
        # starts on a fresh line instead of joining a torn record
        self._torn_tail = False
        self._load()

    def _load(self) -> None:
        if not self.path.exists():
            return
        text = self.path.read_text(encoding="utf-8")
        self._torn_tail = bool(text) and not text.endswith("\n")
        for line_no, line in enumerate(text.splitlines(), 1):
            line = line.strip()
            if not line:
                continue
            try:
                data = json.loads(line)
                if not isinstance(data, dict):
                    raise TypeError(f"expected an object, got {type(data).__name__}")
                record = IndexRecord.from_dict(data)
            except (json.JSONDecodeError, KeyError, TypeError, AttributeError) as e:
                # Torn appends and hand edits; the rest of the file is still usable
                logger.warning(
                    "Skipping unreadable index line %d in %s: %s", line_no, self.path, e
                )
                continue
            self._records[record.anchor_id] = record
        logger.info("Loaded %d index records from %s", len(self._records), self.path)

    def put(self, record: IndexRecord) -> None:
        with self._lock:
            self._insert(record)
            try:
                self.path.parent.mkdir(parents=True, exist_ok=True)
                line = json.dumps(record.to_dict()) + "\n"
                if self._torn_tail:
                    line = "\n" + line
                with open(self.path, "a", encoding="utf-8") as f:
                    f.write(line)
                    f.flush()
                    os.fsync(f.fileno())
                self._torn_tail = False
            except OSError:
                del self._records[record.anchor_id]
                raise

    def clear(self) -> None:
        with self._lock:
            self._records.clear()
            if self.path.exists():
                self.path.write_text("", encoding="utf-8")
            self._torn_tail = False


def open_key_index(config: Config) -> KeyIndex:
    """Open the index backend selected by config."""
    if config.index_backend == IndexBackend.MEMORY:
        logger.warning("Using in-memory key index; keys are lost on restart")
        return MemoryKeyIndex()
    if config.index_backend == IndexBackend.JSON:
        return JsonFileKeyIndex(config.index_path)
    return JsonLinesKeyIndex(config.index_path)
