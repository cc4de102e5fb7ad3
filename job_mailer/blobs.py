"""Blob key-value backends for the queue document.

Every backend stores opaque text under a key and offers no transactions:
callers always read and write whole documents.

The file backend uses the atomic write pattern:
  1. Write to .tmp file
  2. fsync
  3. Rename to target (atomic on POSIX)

Before each write, a .bak backup is created. If the primary file cannot be
read, it's restored from .bak automatically.
"""

from __future__ import annotations

import json
import logging
import os
import shutil
from abc import ABC, abstractmethod
from pathlib import Path

import requests

from job_mailer.config import StorageConfig
from job_mailer.errors import ConfigurationError, StorageError

logger = logging.getLogger(__name__)


class BlobStore(ABC):
    """Minimal key-value interface the queue store relies on."""

    @abstractmethod
    def get(self, key: str) -> str | None:
        """Return the stored text, or None if the key is absent."""
        ...

    @abstractmethod
    def put(self, key: str, text: str) -> None:
        ...

    @abstractmethod
    def delete(self, key: str) -> None:
        ...


class MemoryBlobStore(BlobStore):
    """In-process store; contents vanish with the process."""

    def __init__(self, initial: dict[str, str] | None = None):
        self.blobs: dict[str, str] = dict(initial or {})

    def get(self, key: str) -> str | None:
        return self.blobs.get(key)

    def put(self, key: str, text: str) -> None:
        self.blobs[key] = text

    def delete(self, key: str) -> None:
        self.blobs.pop(key, None)


class FileBlobStore(BlobStore):
    """One JSON file per key inside a data directory."""

    def __init__(self, data_dir: str | Path):
        self.data_dir = Path(data_dir)

    def _path(self, key: str) -> Path:
        return self.data_dir / f"{key}.json"

    def get(self, key: str) -> str | None:
        path = self._path(key)
        if not path.exists():
            return None

        try:
            text = path.read_text(encoding="utf-8")
            json.loads(text)
            return text
        except (json.JSONDecodeError, OSError, UnicodeDecodeError) as exc:
            logger.warning("Failed to read %s: %s - trying backup", path, exc)

        bak_path = path.with_suffix(path.suffix + ".bak")
        if bak_path.exists():
            try:
                text = bak_path.read_text(encoding="utf-8")
                json.loads(text)
                logger.info("Restored %s from backup", path)
                self._atomic_write(path, text)
                return text
            except (json.JSONDecodeError, OSError, UnicodeDecodeError) as exc:
                logger.error("Backup %s also corrupted: %s", bak_path, exc)

        raise StorageError(f"Could not read {path} or its backup")

    def put(self, key: str, text: str) -> None:
        path = self._path(key)
        try:
            self.data_dir.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise StorageError(f"Cannot create data directory {self.data_dir}: {exc}") from exc

        if path.exists():
            bak_path = path.with_suffix(path.suffix + ".bak")
            try:
                shutil.copy2(path, bak_path)
            except OSError as exc:
                logger.warning("Failed to create backup of %s: %s", path, exc)

        try:
            self._atomic_write(path, text)
        except OSError as exc:
            raise StorageError(f"Failed to write {path}: {exc}") from exc

    def delete(self, key: str) -> None:
        path = self._path(key)
        for p in (path, path.with_suffix(path.suffix + ".bak")):
            try:
                p.unlink(missing_ok=True)
            except OSError as exc:
                raise StorageError(f"Failed to delete {p}: {exc}") from exc

    @staticmethod
    def _atomic_write(path: Path, text: str) -> None:
        tmp_path = path.with_suffix(path.suffix + ".tmp")

        try:
            with open(tmp_path, "w", encoding="utf-8") as f:
                f.write(text)
                f.flush()
                os.fsync(f.fileno())

            tmp_path.replace(path)
        except OSError as exc:
            logger.error("Failed to write %s: %s", path, exc)
            if tmp_path.exists():
                tmp_path.unlink()
            raise


class HttpBlobStore(BlobStore):
    """REST key-value endpoint: GET/PUT/DELETE ``{base_url}/{key}``.

    A 404 on GET means the key is absent. Every other non-2xx response,
    connection error or timeout raises StorageError.
    """

    def __init__(self, base_url: str, token: str = "", timeout: float = 15.0,
                 session: requests.Session | None = None):
        if not base_url:
            raise ConfigurationError("HttpBlobStore requires a base_url")
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.session = session or requests.Session()
        if token:
            self.session.headers.update({"Authorization": f"Bearer {token}"})

    def _url(self, key: str) -> str:
        return f"{self.base_url}/{key}"

    def get(self, key: str) -> str | None:
        try:
            resp = self.session.get(self._url(key), timeout=self.timeout)
        except requests.RequestException as exc:
            raise StorageError(f"GET {key} failed: {exc}") from exc

        if resp.status_code == 404:
            return None
        if not resp.ok:
            raise StorageError(f"GET {key} returned HTTP {resp.status_code}")
        return resp.text

    def put(self, key: str, text: str) -> None:
        try:
            resp = self.session.put(
                self._url(key),
                data=text.encode("utf-8"),
                headers={"Content-Type": "application/json"},
                timeout=self.timeout,
            )
        except requests.RequestException as exc:
            raise StorageError(f"PUT {key} failed: {exc}") from exc

        if not resp.ok:
            raise StorageError(f"PUT {key} returned HTTP {resp.status_code}")

    def delete(self, key: str) -> None:
        try:
            resp = self.session.delete(self._url(key), timeout=self.timeout)
        except requests.RequestException as exc:
            raise StorageError(f"DELETE {key} failed: {exc}") from exc

        if not resp.ok and resp.status_code != 404:
            raise StorageError(f"DELETE {key} returned HTTP {resp.status_code}")


def build_blob_store(config: StorageConfig) -> BlobStore:
    """Instantiate the backend selected in config."""
    if config.backend == "file":
        return FileBlobStore(config.data_dir)
    if config.backend == "http":
        return HttpBlobStore(
            config.base_url,
            token=config.token,
            timeout=config.request_timeout_seconds,
        )
    if config.backend == "memory":
        logger.warning("Using in-memory blob store - queue state will not persist")
        return MemoryBlobStore()
    raise ConfigurationError(f"Unknown storage backend '{config.backend}'")
