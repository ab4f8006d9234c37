"""Disk-based JSON document storage with atomic writes and thread safety.

Each key is stored as one JSON file inside ``data_dir``. Writes go to a
temporary file first and are moved into place with ``os.replace`` so a crash
never leaves a half-written document behind. Unreadable or corrupted
documents are logged and treated as missing.

Typical usage:
    from draftsmith.memory.storage import JsonStorage

    storage = JsonStorage(settings.data_dir)
    storage.save("knowledge_base", [...])
    articles = storage.load("knowledge_base", default=[])
"""

import json
import os
import re
import tempfile
import threading
from pathlib import Path
from typing import Any

import structlog

logger = structlog.get_logger(__name__)

_KEY_RE = re.compile(r"^[A-Za-z0-9_.-]+$")


class JsonStorage:
    """Keyed JSON documents on disk.

    Attributes:
        data_dir: Directory holding one ``<key>.json`` file per document.
        logger: Structured logger bound with the data directory.
        _lock: Reentrant lock serializing reads and writes.
    """

    def __init__(self, data_dir: Path) -> None:
        self.data_dir = Path(data_dir)
        self.data_dir.mkdir(parents=True, exist_ok=True)
        self.logger = logger.bind(data_dir=str(self.data_dir))
        self._lock = threading.RLock()

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    def _key_to_path(self, key: str) -> Path:
        if not _KEY_RE.match(key):
            raise ValueError(f"invalid storage key: {key!r}")
        return self.data_dir / f"{key}.json"

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def load(self, key: str, default: Any = None) -> Any:
        """Return the document stored under ``key`` or ``default``."""
        path = self._key_to_path(key)
        with self._lock:
            if not path.exists():
                return default
            try:
                return json.loads(path.read_text(encoding="utf-8"))
            except json.JSONDecodeError as e:
                self.logger.warning("storage.corrupted_file", key=key, path=str(path), error=str(e))
                return default
            except OSError as e:
                self.logger.error("storage.read_failed", key=key, path=str(path), error=str(e))
                return default

    def save(self, key: str, value: Any) -> None:
        """Atomically persist ``value`` under ``key``."""
        path = self._key_to_path(key)
        with self._lock:
            fd, tmp_name = tempfile.mkstemp(dir=self.data_dir, prefix=f".{key}.", suffix=".tmp")
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as handle:
                    json.dump(value, handle, ensure_ascii=False, indent=2)
                os.replace(tmp_name, path)
            except (OSError, TypeError, ValueError) as e:
                self.logger.error("storage.write_failed", key=key, path=str(path), error=str(e))
                Path(tmp_name).unlink(missing_ok=True)
                raise
        self.logger.debug("storage.write", key=key)

    def delete(self, key: str) -> None:
        """Remove the document for ``key`` if it exists."""
        path = self._key_to_path(key)
        with self._lock:
            path.unlink(missing_ok=True)
        self.logger.debug("storage.delete", key=key)

    def exists(self, key: str) -> bool:
        return self._key_to_path(key).exists()
