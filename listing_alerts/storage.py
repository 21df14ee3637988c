"""
Key-value persistence for Listing Alerts.

Components persist their state (last location sample, notification logs,
engagement profile) as JSON strings through a small key-value contract:
get(key) -> str | None, set(key, value), remove(key).

Backends:
- MemoryStore: in-process dict (tests, ephemeral sessions)
- FileStore: a single JSON file on disk
- SupabaseStore: a `kv_store` table (key text primary key, value text)

Backends raise StorageError; callers log it and keep their in-memory state.
"""

import os
import json
import logging
import tempfile
import threading
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Optional
from supabase import create_client, Client

from .config import StorageConfig, get_storage_config

logger = logging.getLogger(__name__)


class StorageError(Exception):
    """A read or write against the key-value store failed."""


class KeyValueStore(ABC):
    """Abstract key-value store holding string values."""

    @abstractmethod
    def get(self, key: str) -> Optional[str]:
        """Return the stored string or None if the key is absent."""
        pass

    @abstractmethod
    def set(self, key: str, value: str) -> None:
        """Store a string under key, replacing any previous value."""
        pass

    @abstractmethod
    def remove(self, key: str) -> None:
        """Delete key. Removing an absent key is not an error."""
        pass


class MemoryStore(KeyValueStore):
    """Dict-backed store."""

    def __init__(self, initial: Optional[dict] = None):
        self._data: dict[str, str] = dict(initial or {})
        self._lock = threading.Lock()

    def get(self, key: str) -> Optional[str]:
        with self._lock:
            return self._data.get(key)

    def set(self, key: str, value: str) -> None:
        with self._lock:
            self._data[key] = value

    def remove(self, key: str) -> None:
        with self._lock:
            self._data.pop(key, None)

    def keys(self) -> list[str]:
        with self._lock:
            return list(self._data)


class FileStore(KeyValueStore):
    """
    All keys in one JSON file.

    Writes go to a temp file that replaces the original, so a crash
    mid-write never leaves a truncated file behind.
    """

    def __init__(self, path: str):
        self.path = path
        self._lock = threading.Lock()

    def _read_all(self) -> dict:
        if not os.path.exists(self.path):
            return {}
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, ValueError) as e:
            raise StorageError(f"Failed to read {self.path}: {e}") from e
        if not isinstance(data, dict):
            raise StorageError(f"{self.path} does not contain a JSON object")
        return data

    def _write_all(self, data: dict) -> None:
        directory = os.path.dirname(os.path.abspath(self.path))
        try:
            fd, tmp_path = tempfile.mkstemp(dir=directory, prefix=".kv-", suffix=".json")
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(data, f)
            os.replace(tmp_path, self.path)
        except OSError as e:
            raise StorageError(f"Failed to write {self.path}: {e}") from e

    def get(self, key: str) -> Optional[str]:
        with self._lock:
            return self._read_all().get(key)

    def set(self, key: str, value: str) -> None:
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


class SupabaseStore(KeyValueStore):
    """
    Supabase-backed store.

    Table required:
    - kv_store: key (text, primary key), value (text), updated_at (timestamptz)
    """

    def __init__(self, url: str, key: str, table: str = "kv_store", client: Optional[Client] = None):
        if client is None:
            if not url or not key:
                raise ValueError("Supabase URL and key must be set in environment variables")
            client = create_client(url, key)
        self._client: Client = client
        self.table = table

    @property
    def client(self) -> Client:
        """Get the Supabase client."""
        return self._client

    def get(self, key: str) -> Optional[str]:
        try:
            result = self._client.table(self.table).select("value").eq("key", key).execute()
        except Exception as e:
            raise StorageError(f"Supabase read failed for {key}: {e}") from e
        return result.data[0]["value"] if result.data else None

    def set(self, key: str, value: str) -> None:
        data = {
            "key": key,
            "value": value,
            "updated_at": datetime.utcnow().isoformat(),
        }
        try:
            self._client.table(self.table).upsert(data).execute()
        except Exception as e:
            raise StorageError(f"Supabase write failed for {key}: {e}") from e

    def remove(self, key: str) -> None:
        try:
            self._client.table(self.table).delete().eq("key", key).execute()
        except Exception as e:
            raise StorageError(f"Supabase delete failed for {key}: {e}") from e


def create_store(config: Optional[StorageConfig] = None) -> KeyValueStore:
    """Build the configured key-value store backend."""
    config = config or get_storage_config()
    backend = config.backend.lower()

    if backend == "memory":
        return MemoryStore()
    if backend == "supabase":
        return SupabaseStore(config.supabase_url, config.supabase_key, config.supabase_table)
    if backend != "file":
        logger.warning(f"Unknown storage backend {config.backend!r}, using file store")
    return FileStore(config.path)


# =============================================================================
# JSON HELPERS
# =============================================================================

def load_json(store: KeyValueStore, key: str) -> Optional[object]:
    """
    Read and decode a JSON value.

    Returns None when the key is absent, unreadable or not valid JSON;
    the failure is logged.
    """
    try:
        raw = store.get(key)
    except StorageError as e:
        logger.error(f"Failed to load {key}: {e}")
        return None
    if raw is None:
        return None
    try:
        return json.loads(raw)
    except ValueError as e:
        logger.error(f"Stored value for {key} is not valid JSON: {e}")
        return None


def save_json(store: KeyValueStore, key: str, value: object) -> bool:
    """Encode and write a JSON value. Returns False (logged) on failure."""
    try:
        store.set(key, json.dumps(value))
        return True
    except StorageError as e:
        logger.error(f"Failed to save {key}: {e}")
        return False
