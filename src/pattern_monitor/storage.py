"""Vector persistence layer.

Stores encoded vectors as opaque byte values under string keys.

Backends:
    InMemoryStore  ephemeral dict store (dev/testing)
    RedisStore     redis-py client; multi-key writes go through MULTI/EXEC

RetryingStore wraps any backend with a per-call timeout, a bounded number
of attempts and exponential backoff. Once attempts run out it raises
StorageError and the caller treats the record as failed. A timed-out call
that already started is allowed to finish before the next attempt begins.
"""

from __future__ import annotations

import fnmatch
import logging
import threading
import time
from abc import ABC, abstractmethod
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import wait as wait_for
from concurrent.futures import TimeoutError as FutureTimeoutError
from typing import Any, Callable, Mapping

import redis

from .errors import StorageError
from .types import StoreConfig

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Abstract base
# ---------------------------------------------------------------------------


class KeyValueStore(ABC):
    """Abstract interface for the vector key-value store."""

    @abstractmethod
    def get(self, key: str) -> bytes | None:
        """Value stored under key, or None."""
        ...

    @abstractmethod
    def set(self, key: str, value: bytes) -> None:
        """Store value under key, overwriting any previous value."""
        ...

    @abstractmethod
    def exists(self, key: str) -> bool:
        ...

    @abstractmethod
    def delete(self, key: str) -> None:
        ...

    def set_many(self, items: Mapping[str, bytes]) -> None:
        """Write every item or none of them.

        The default writes sequentially and restores the previous values if
        any write fails. Backends with native transactions override this.

        Raises:
            StorageError: if any write failed (after rollback)
        """
        previous: dict[str, bytes | None] = {}
        try:
            for key, value in items.items():
                previous[key] = self.get(key)
                self.set(key, value)
        except Exception as e:
            self._rollback(previous)
            if isinstance(e, StorageError):
                raise
            raise StorageError(f"batch write failed: {e}") from e

    def _rollback(self, previous: Mapping[str, bytes | None]) -> None:
        for key, old in previous.items():
            try:
                if old is None:
                    self.delete(key)
                else:
                    self.set(key, old)
            except Exception:
                logger.exception(f"rollback of '{key}' failed")

    def close(self) -> None:
        """Release backend resources."""


# ---------------------------------------------------------------------------
# In-memory implementation (dev/testing)
# ---------------------------------------------------------------------------


class InMemoryStore(KeyValueStore):
    """Ephemeral in-memory store. Batch writes are atomic under one lock."""

    def __init__(self) -> None:
        self._data: dict[str, bytes] = {}
        self._lock = threading.RLock()

    def get(self, key: str) -> bytes | None:
        with self._lock:
            return self._data.get(key)

    def set(self, key: str, value: bytes) -> None:
        with self._lock:
            self._data[key] = bytes(value)

    def exists(self, key: str) -> bool:
        with self._lock:
            return key in self._data

    def delete(self, key: str) -> None:
        with self._lock:
            self._data.pop(key, None)

    def set_many(self, items: Mapping[str, bytes]) -> None:
        with self._lock:
            self._data.update({k: bytes(v) for k, v in items.items()})

    def keys(self, pattern: str = "*") -> list[str]:
        """Stored keys matching a glob pattern, sorted."""
        with self._lock:
            return sorted(k for k in self._data if fnmatch.fnmatchcase(k, pattern))

    def __len__(self) -> int:
        with self._lock:
            return len(self._data)


# ---------------------------------------------------------------------------
# Redis implementation
# ---------------------------------------------------------------------------


class RedisStore(KeyValueStore):
    """Redis-backed store.

    Args:
        client: Existing redis.Redis client (takes precedence over url)
        url: Connection URL, e.g. redis://localhost:6379/0
        timeout_seconds: Socket connect/read timeout
    """

    def __init__(
        self,
        client: redis.Redis | None = None,
        url: str = "redis://localhost:6379/0",
        timeout_seconds: float = 2.0,
    ):
        if client is None:
            client = redis.Redis.from_url(
                url,
                socket_timeout=timeout_seconds,
                socket_connect_timeout=timeout_seconds,
            )
            logger.info(f"RedisStore using {url}")
        self._client = client

    def get(self, key: str) -> bytes | None:
        return self._run("GET", key, lambda: self._client.get(key))

    def set(self, key: str, value: bytes) -> None:
        self._run("SET", key, lambda: self._client.set(key, value))

    def exists(self, key: str) -> bool:
        return bool(self._run("EXISTS", key, lambda: self._client.exists(key)))

    def delete(self, key: str) -> None:
        self._run("DEL", key, lambda: self._client.delete(key))

    def set_many(self, items: Mapping[str, bytes]) -> None:
        def transaction() -> None:
            pipe = self._client.pipeline(transaction=True)
            for key, value in items.items():
                pipe.set(key, value)
            pipe.execute()

        self._run("MULTI/EXEC", f"{len(items)} key(s)", transaction)

    def close(self) -> None:
        self._client.close()

    @staticmethod
    def _run(op: str, target: str, call: Callable[[], Any]) -> Any:
        try:
            return call()
        except redis.RedisError as e:
            raise StorageError(f"redis {op} {target} failed: {e}") from e


# ---------------------------------------------------------------------------
# Retry / timeout wrapper
# ---------------------------------------------------------------------------


class RetryingStore(KeyValueStore):
    """Bound every call on an inner store by a timeout and retry policy.

    Example:
        store = RetryingStore(RedisStore(url=url), StoreConfig(attempts=5))
        store.set_many({"bundle:v1:quakes": payload})
    """

    def __init__(self, inner: KeyValueStore, config: StoreConfig | None = None, max_workers: int = 4):
        self.inner = inner
        self.config = config or StoreConfig()
        self._executor = ThreadPoolExecutor(
            max_workers=max_workers, thread_name_prefix="kv-store"
        )

    def get(self, key: str) -> bytes | None:
        return self._call(f"get '{key}'", self.inner.get, key)

    def set(self, key: str, value: bytes) -> None:
        self._call(f"set '{key}'", self.inner.set, key, value)

    def exists(self, key: str) -> bool:
        return self._call(f"exists '{key}'", self.inner.exists, key)

    def delete(self, key: str) -> None:
        self._call(f"delete '{key}'", self.inner.delete, key)

    def set_many(self, items: Mapping[str, bytes]) -> None:
        self._call(f"set_many ({len(items)} key(s))", self.inner.set_many, dict(items))

    def close(self) -> None:
        self._executor.shutdown(wait=False)
        self.inner.close()

    def _call(self, op: str, fn: Callable[..., Any], *args: Any) -> Any:
        attempts = self.config.attempts
        last_error: Exception | None = None

        for attempt in range(attempts):
            future = self._executor.submit(fn, *args)
            try:
                return future.result(timeout=self.config.timeout_seconds)
            except FutureTimeoutError:
                last_error = StorageError(
                    f"{op} timed out after {self.config.timeout_seconds}s"
                )
                # attempts never overlap: let a started call settle first
                if not future.cancel() and attempt < attempts - 1:
                    wait_for([future])
                    if future.exception() is None:
                        logger.warning(f"store {op} completed after its timeout")
                        return future.result()
                    last_error = future.exception()
            except Exception as e:
                last_error = e

            if attempt < attempts - 1:
                delay = self.config.backoff_seconds * (2**attempt)
                logger.warning(
                    f"store {op} failed (attempt {attempt + 1}/{attempts}): "
                    f"{last_error}; retrying in {delay:.2f}s"
                )
                time.sleep(delay)

        logger.error(f"store {op} failed after {attempts} attempt(s): {last_error}")
        raise StorageError(
            f"{op} failed after {attempts} attempt(s): {last_error}"
        ) from last_error
