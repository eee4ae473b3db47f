"""
Durable key-value storage for device-local state.

`FileKeyValueStore` keeps one JSON envelope per key on disk:
- file names are hashed (SHA-256) so arbitrary keys are safe as paths,
- the envelope carries the original key so `keys()` can list entries back,
- writes go through a temporary file + atomic replace, so a crash never leaves a
  half-written record behind.

Values are JSON-serializable objects; the store does not interpret them.
"""

from __future__ import annotations

import json
import threading
from hashlib import sha256
from pathlib import Path
from typing import Any, Protocol

from couponradar.errors import PreferenceStorageError


class KeyValueStore(Protocol):
    def get(self, key: str) -> Any | None: ...

    def set(self, key: str, value: Any) -> None: ...

    def keys(self) -> list[str]: ...


class MemoryKeyValueStore:
    """Process-local store; values are round-tripped through JSON like the file store."""

    def __init__(self, initial: dict[str, Any] | None = None):
        self._lock = threading.Lock()
        self._data: dict[str, str] = {}
        for k, v in (initial or {}).items():
            self.set(k, v)

    def get(self, key: str) -> Any | None:
        with self._lock:
            raw = self._data.get(key)
        return None if raw is None else json.loads(raw)

    def set(self, key: str, value: Any) -> None:
        raw = json.dumps(value, ensure_ascii=False)
        with self._lock:
            self._data[key] = raw

    def keys(self) -> list[str]:
        with self._lock:
            return list(self._data)


class FileKeyValueStore:
    """A filesystem-backed store keyed by (namespace, key)."""

    def __init__(self, base_dir: Path, namespace: str = "default"):
        self._base_dir = base_dir
        self._namespace = namespace

    @property
    def directory(self) -> Path:
        return self._base_dir / self._namespace

    def _key_path(self, key: str) -> Path:
        digest = sha256(f"{self._namespace}:{key}".encode("utf-8")).hexdigest()
        return self.directory / f"{digest}.json"

    def _read_envelope(self, path: Path) -> dict[str, Any]:
        try:
            raw = json.loads(path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as exc:
            raise PreferenceStorageError(f"unreadable record {path.name}: {exc}") from exc
        if not isinstance(raw, dict) or "key" not in raw or "value" not in raw:
            raise PreferenceStorageError(f"malformed record {path.name}")
        return raw

    def get(self, key: str) -> Any | None:
        """Return the stored value, or None when the key has never been written.

        Raises:
            PreferenceStorageError: If the record exists but cannot be decoded.
        """
        path = self._key_path(key)
        if not path.exists():
            return None
        return self._read_envelope(path)["value"]

    def set(self, key: str, value: Any) -> None:
        path = self._key_path(key)
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            payload = {"key": key, "value": value}
            tmp = path.with_suffix(".tmp")
            tmp.write_text(json.dumps(payload, ensure_ascii=False), encoding="utf-8")
            tmp.replace(path)
        except OSError as exc:
            raise PreferenceStorageError(f"cannot write {key}: {exc}", key=key) from exc

    def keys(self) -> list[str]:
        """List stored keys; records that cannot be decoded are skipped."""
        directory = self.directory
        if not directory.exists():
            return []
        try:
            paths = sorted(directory.glob("*.json"))
        except OSError as exc:
            raise PreferenceStorageError(f"cannot list {directory}: {exc}") from exc
        out: list[str] = []
        for path in paths:
            try:
                out.append(str(self._read_envelope(path)["key"]))
            except PreferenceStorageError:
                continue
        return out
