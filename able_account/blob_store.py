"""
Able Account Blob Store
Opaque persistent key-value storage (get/set/remove keyed by string).

Values are JSON-compatible (dict, list, str, int, None). The store layer
encodes binary data before handing it over.
"""

import copy
import json
import os
import threading
from pathlib import Path
from typing import Any, Dict, Optional

from able_account.config import STORE_PATH


class BlobStoreError(Exception):
    """Raised when the underlying storage medium cannot be read or written"""
    pass


class BlobStore:
    """
    Interface for the persistent blob medium.
    """

    def get(self, key: str, default: Any = None) -> Any:
        raise NotImplementedError

    def set(self, key: str, value: Any) -> None:
        raise NotImplementedError

    def remove(self, key: str) -> None:
        raise NotImplementedError

    def contains(self, key: str) -> bool:
        return self.get(key) is not None


class MemoryBlobStore(BlobStore):
    """In-process blob store. Values are deep-copied on the way in and out."""

    def __init__(self, initial: Optional[Dict[str, Any]] = None):
        self._data: Dict[str, Any] = copy.deepcopy(initial) if initial else {}
        self._lock = threading.Lock()

    def get(self, key: str, default: Any = None) -> Any:
        with self._lock:
            if key not in self._data:
                return default
            return copy.deepcopy(self._data[key])

    def set(self, key: str, value: Any) -> None:
        with self._lock:
            self._data[key] = copy.deepcopy(value)

    def remove(self, key: str) -> None:
        with self._lock:
            self._data.pop(key, None)

    def keys(self):
        with self._lock:
            return sorted(self._data)


class FileBlobStore(BlobStore):
    """
    Blob store backed by a single JSON file.

    Every write rewrites the whole file through a temp file + fsync + os.replace,
    so a reader never observes a half-written document.
    """

    def __init__(self, path: str = STORE_PATH):
        self.path = Path(path)
        self._lock = threading.Lock()
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise BlobStoreError(f"Store directory is not writable: {self.path.parent}") from e

    def _read_all(self) -> Dict[str, Any]:
        if not self.path.exists():
            return {}
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            raise BlobStoreError(f"Failed to read blob store {self.path}: {e}") from e

        if not isinstance(data, dict):
            raise BlobStoreError(f"Blob store {self.path} is not a JSON object")
        return data

    def _write_all(self, data: Dict[str, Any]) -> None:
        tmp = self.path.with_suffix(self.path.suffix + ".tmp")
        try:
            with open(tmp, "w", encoding="utf-8") as f:
                json.dump(data, f, separators=(",", ":"))
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp, self.path)
        except (OSError, TypeError, ValueError) as e:
            try:
                if tmp.exists():
                    tmp.unlink()
            except OSError:
                pass
            raise BlobStoreError(f"Failed to write blob store {self.path}: {e}") from e

    def get(self, key: str, default: Any = None) -> Any:
        with self._lock:
            return self._read_all().get(key, default)

    def set(self, key: str, value: Any) -> None:
        with self._lock:
            data = self._read_all()
            data[key] = value
            self._write_all(data)

    def remove(self, key: str) -> None:
        with self._lock:
            data = self._read_all()
            if key in data:
                del data[key]
                self._write_all(data)
