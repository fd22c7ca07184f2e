"""
solar_ledger/services/store.py

Key-value stores for ledger snapshots.

The ledger persists itself as a single JSON string under one key. Any
store that can get, set and delete strings will do:
- InMemoryStateStore: process-local, for tests and throwaway sessions
- FileStateStore: one JSON file on local disk
- RedisStateStore: a Redis server, shared between processes
"""

from __future__ import annotations

import json
import logging
import os
import tempfile
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Optional

logger = logging.getLogger(__name__)


DEFAULT_STATE_KEY = "msaiState"
DEFAULT_FILE_PATH = ".solar_ledger.json"
DEFAULT_REDIS_URL = "redis://localhost:6379"


@dataclass
class StoreConfig:
    """Configuration for the snapshot store."""
    backend: str = "memory"  # "memory", "file" or "redis"
    path: str = DEFAULT_FILE_PATH
    redis_url: str = DEFAULT_REDIS_URL
    key_prefix: str = "solar_ledger:"
    state_key: str = DEFAULT_STATE_KEY

    @classmethod
    def from_env(cls) -> StoreConfig:
        """Create config from environment variables."""
        return cls(
            backend=os.environ.get("SOLAR_LEDGER_STORE", "memory"),
            path=os.environ.get("SOLAR_LEDGER_PATH", DEFAULT_FILE_PATH),
            redis_url=os.environ.get("REDIS_URL", DEFAULT_REDIS_URL),
            state_key=os.environ.get("SOLAR_LEDGER_KEY", DEFAULT_STATE_KEY),
        )


class StateStore(ABC):
    """Abstract base for string key-value stores."""

    @abstractmethod
    def get(self, key: str) -> Optional[str]:
        """Return the value stored under key, or None."""
        pass

    @abstractmethod
    def set(self, key: str, value: str) -> None:
        """Store value under key, replacing any previous value."""
        pass

    @abstractmethod
    def delete(self, key: str) -> None:
        """Remove key. Missing keys are ignored."""
        pass

    @abstractmethod
    def clear(self) -> None:
        """Remove every key owned by this store."""
        pass


class InMemoryStateStore(StateStore):
    """Dictionary-backed store. Contents die with the process."""

    def __init__(self, initial: Optional[Dict[str, str]] = None):
        self._data: Dict[str, str] = dict(initial or {})
        self._lock = threading.Lock()

    def get(self, key: str) -> Optional[str]:
        with self._lock:
            return self._data.get(key)

    def set(self, key: str, value: str) -> None:
        with self._lock:
            self._data[key] = value

    def delete(self, key: str) -> None:
        with self._lock:
            self._data.pop(key, None)

    def clear(self) -> None:
        with self._lock:
            self._data.clear()

    def __len__(self) -> int:
        return len(self._data)


class FileStateStore(StateStore):
    """
    Store backed by a single JSON object on disk.

    Writes go to a temporary file in the same directory and are moved
    into place, so a crash mid-write leaves the previous contents intact.
    """

    def __init__(self, path: str = DEFAULT_FILE_PATH):
        self.path = Path(path)
        self._lock = threading.Lock()

    def _read(self) -> Dict[str, str]:
        if not self.path.exists():
            return {}
        with open(self.path, "r", encoding="utf-8") as f:
            return json.load(f)

    def _write(self, data: Dict[str, str]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_path = tempfile.mkstemp(
            dir=str(self.path.parent), prefix=f".{self.path.name}.", suffix=".tmp"
        )
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(data, f, indent=2)
            os.replace(tmp_path, self.path)
        except BaseException:
            if os.path.exists(tmp_path):
                os.remove(tmp_path)
            raise

    def get(self, key: str) -> Optional[str]:
        with self._lock:
            return self._read().get(key)

    def set(self, key: str, value: str) -> None:
        with self._lock:
            data = self._read()
            data[key] = value
            self._write(data)

    def delete(self, key: str) -> None:
        with self._lock:
            data = self._read()
            if key in data:
                del data[key]
                self._write(data)

    def clear(self) -> None:
        with self._lock:
            if self.path.exists():
                self.path.unlink()
                logger.info(f"Removed store file {self.path}")


class RedisStateStore(StateStore):
    """
    Redis-backed store.

    Keys are namespaced with key_prefix so clear() only touches our own.
    """

    def __init__(
        self,
        redis_url: str = DEFAULT_REDIS_URL,
        key_prefix: str = "solar_ledger:",
    ):
        self.redis_url = redis_url
        self.key_prefix = key_prefix
        self._redis = None

    def _get_redis(self):
        """Lazy connection to Redis."""
        if self._redis is None:
            try:
                import redis
                self._redis = redis.from_url(self.redis_url, decode_responses=True)
                self._redis.ping()
                logger.info(f"Connected to Redis at {self.redis_url}")
            except ImportError:
                raise ImportError(
                    "redis package required for RedisStateStore. "
                    "Install with: pip install redis"
                )
            except Exception as e:
                logger.error(f"Failed to connect to Redis: {e}")
                self._redis = None
                raise
        return self._redis

    def _key(self, key: str) -> str:
        return f"{self.key_prefix}{key}"

    def get(self, key: str) -> Optional[str]:
        return self._get_redis().get(self._key(key))

    def set(self, key: str, value: str) -> None:
        self._get_redis().set(self._key(key), value)

    def delete(self, key: str) -> None:
        self._get_redis().delete(self._key(key))

    def clear(self) -> None:
        r = self._get_redis()
        cursor = 0
        while True:
            cursor, keys = r.scan(cursor, match=f"{self.key_prefix}*")
            if keys:
                r.delete(*keys)
            if cursor == 0:
                break
        logger.info(f"Cleared keys under {self.key_prefix}")


def create_state_store(
    backend: str = "memory",
    path: str = DEFAULT_FILE_PATH,
    redis_url: str = DEFAULT_REDIS_URL,
    **kwargs
) -> StateStore:
    """
    Factory function to create a state store.

    Args:
        backend: "memory", "file" or "redis"
        path: File path (for file backend)
        redis_url: Redis connection URL (for redis backend)
        **kwargs: Additional backend-specific options

    Returns:
        StateStore instance
    """
    if backend == "memory":
        return InMemoryStateStore()
    elif backend == "file":
        return FileStateStore(path=path)
    elif backend == "redis":
        return RedisStateStore(redis_url=redis_url, **kwargs)
    else:
        raise ValueError(f"Unknown backend: {backend}")


def store_from_config(config: StoreConfig) -> StateStore:
    """Build the store described by a StoreConfig."""
    kwargs = {}
    if config.backend == "redis":
        kwargs["key_prefix"] = config.key_prefix
    return create_state_store(
        backend=config.backend,
        path=config.path,
        redis_url=config.redis_url,
        **kwargs,
    )
