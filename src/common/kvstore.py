from __future__ import annotations

import copy
import json
import os
import tempfile
import threading
from pathlib import Path
from typing import Any, Dict, Iterable, Mapping, Protocol

from .log import get_logger


logger = get_logger(__name__)


class KeyValueStore(Protocol):
    """The persistent settings store as seen by TrialClock and friends."""

    def get(self, key: str, default: Any = None) -> Any: ...

    def set(self, key: str, value: Any) -> None: ...

    def remove(self, key: str) -> None: ...


class JsonFileStore:
    """
    Small JSON-file key-value store standing in for the app's local storage.

    - Backed by a single JSON object: { key: value, ... }; values must be JSON-serializable.
    - Loaded lazily on first access. A corrupt file is logged and treated as empty.
    - Every mutation rewrites the whole file through a temp file + `os.replace`,
      so readers never observe a half-written file. A process-local lock
      serializes writers; concurrent writes to one key are last-write-wins.
    - `get` returns deep copies so callers cannot mutate the cache by accident.
    """

    def __init__(self, path: os.PathLike[str] | str) -> None:
        self._path = Path(path)
        self._data: Dict[str, Any] = {}
        self._loaded = False
        self._lock = threading.RLock()

    @property
    def path(self) -> Path:
        return self._path

    def _ensure_loaded(self) -> None:
        if self._loaded:
            return
        self._loaded = True
        if not self._path.exists():
            return
        try:
            with self._path.open("r", encoding="utf-8") as f:
                raw = json.load(f)
        except (OSError, ValueError) as ex:
            logger.warning("kvstore_unreadable", path=str(self._path), error=str(ex))
            return
        if isinstance(raw, dict):
            self._data = {str(k): v for k, v in raw.items()}
        else:
            logger.warning("kvstore_not_an_object", path=str(self._path))

    def _save(self) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp = tempfile.mkstemp(prefix=f".{self._path.name}.", dir=str(self._path.parent))
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(self._data, f, indent=2, sort_keys=True)
            os.replace(tmp, self._path)
        except BaseException:
            try:
                os.unlink(tmp)
            except OSError:
                pass
            raise

    # -------- Core operations --------
    def get(self, key: str, default: Any = None) -> Any:
        with self._lock:
            self._ensure_loaded()
            if key not in self._data:
                return default
            return copy.deepcopy(self._data[key])

    def set(self, key: str, value: Any) -> None:
        self.update({key: value})

    def update(self, values: Mapping[str, Any]) -> None:
        """Set several keys in one atomic file write."""
        # Fail before touching the cache if anything is not serializable
        json.dumps(dict(values))
        with self._lock:
            self._ensure_loaded()
            previous = dict(self._data)
            self._data.update({k: copy.deepcopy(v) for k, v in values.items()})
            try:
                self._save()
            except BaseException:
                self._data = previous
                raise

    def remove(self, key: str) -> None:
        with self._lock:
            self._ensure_loaded()
            if key not in self._data:
                return
            previous = dict(self._data)
            del self._data[key]
            try:
                self._save()
            except BaseException:
                self._data = previous
                raise

    def keys(self) -> Iterable[str]:
        with self._lock:
            self._ensure_loaded()
            return list(self._data)

    def reload(self) -> None:
        """Drop the in-memory copy so the next access re-reads the file."""
        with self._lock:
            self._data = {}
            self._loaded = False
