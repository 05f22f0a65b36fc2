"""
Session State Storage - durable key-value backends for session actors.

Each session owns one namespace. A namespace holds a handful of JSON
values that are always written together with put_many, which returns only
once the write is durable.

Backends:
- MemoryStateStorage: process-local, for tests and single-process dev
- FileStateStorage: one JSON file per namespace, fsynced then renamed into place
- RedisStateStorage: one Redis hash per namespace

Usage:
    storage = create_state_storage(get_settings())
    await storage.put_many("user-joe-123", {"context": {"city": "Union"}})
    context = await storage.get("user-joe-123", "context")
"""

import asyncio
import copy
import hashlib
import json
import logging
import os
import tempfile
from typing import Any, Dict, Optional

from careerchat.core.exceptions import StateStorageError

logger = logging.getLogger(__name__)

# Key prefix for redis-backed session state
SESSION_PREFIX = "careerchat:session:"


class StateStorage:
    """Interface for session state backends."""

    async def get(self, namespace: str, key: str) -> Optional[Any]:
        """Return the stored value or None when absent."""
        raise NotImplementedError

    async def put_many(self, namespace: str, values: Dict[str, Any]) -> None:
        """Write all values in one atomic, durable batch."""
        raise NotImplementedError

    async def close(self) -> None:
        pass


class MemoryStateStorage(StateStorage):
    """Dict-backed storage. Values are deep-copied in and out."""

    def __init__(self):
        self._data: Dict[str, Dict[str, Any]] = {}

    async def get(self, namespace: str, key: str) -> Optional[Any]:
        value = self._data.get(namespace, {}).get(key)
        return copy.deepcopy(value)

    async def put_many(self, namespace: str, values: Dict[str, Any]) -> None:
        bucket = dict(self._data.get(namespace, {}))
        bucket.update(copy.deepcopy(values))
        self._data[namespace] = bucket


class FileStateStorage(StateStorage):
    """
    One JSON document per namespace under a directory.

    Writes go to a temp file in the same directory, are fsynced, and then
    replace the target with os.replace so readers never see a torn file.
    File I/O runs off the event loop.
    """

    def __init__(self, directory: str):
        self.directory = directory
        os.makedirs(directory, exist_ok=True)

    def _path(self, namespace: str) -> str:
        digest = hashlib.sha256(namespace.encode()).hexdigest()[:32]
        return os.path.join(self.directory, f"{digest}.json")

    def _read(self, namespace: str) -> Dict[str, Any]:
        path = self._path(namespace)
        if not os.path.exists(path):
            return {}
        try:
            with open(path, "r") as f:
                return json.load(f)
        except (OSError, ValueError) as e:
            raise StateStorageError("Failed to read session state", details=str(e),
                                    namespace=namespace) from e

    def _write(self, namespace: str, values: Dict[str, Any]):
        path = self._path(namespace)
        document = self._read(namespace)
        document.update(values)

        fd, tmp_path = tempfile.mkstemp(dir=self.directory, suffix=".tmp")
        try:
            with os.fdopen(fd, "w") as f:
                json.dump(document, f)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_path, path)
        except BaseException:
            if os.path.exists(tmp_path):
                os.unlink(tmp_path)
            raise

    async def get(self, namespace: str, key: str) -> Optional[Any]:
        document = await asyncio.to_thread(self._read, namespace)
        return document.get(key)

    async def put_many(self, namespace: str, values: Dict[str, Any]) -> None:
        try:
            await asyncio.to_thread(self._write, namespace, values)
        except OSError as e:
            raise StateStorageError("Failed to write session state", details=str(e),
                                    namespace=namespace) from e


class RedisStateStorage(StateStorage):
    """
    Redis hash per namespace.

    Key pattern: careerchat:session:{namespace}
    Values are JSON strings; put_many is a single HSET with a mapping.
    """

    def __init__(self, url: str = "redis://localhost:6379/0",
                 ttl_seconds: Optional[int] = None, client: Any = None):
        self.url = url
        self.ttl_seconds = ttl_seconds
        self._client = client

    def _get_client(self):
        """Lazy connect."""
        if self._client is None:
            import redis.asyncio as redis_async
            self._client = redis_async.from_url(self.url, decode_responses=True)
            logger.info(f"Redis session storage connected: {self.url}")
        return self._client

    def _make_key(self, namespace: str) -> str:
        return f"{SESSION_PREFIX}{namespace}"

    async def get(self, namespace: str, key: str) -> Optional[Any]:
        raw = await self._get_client().hget(self._make_key(namespace), key)
        if raw is None:
            return None
        return json.loads(raw)

    async def put_many(self, namespace: str, values: Dict[str, Any]) -> None:
        client = self._get_client()
        redis_key = self._make_key(namespace)
        mapping = {k: json.dumps(v) for k, v in values.items()}
        await client.hset(redis_key, mapping=mapping)
        if self.ttl_seconds:
            await client.expire(redis_key, self.ttl_seconds)

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None


def create_state_storage(settings) -> StateStorage:
    """Build the storage backend named in settings.session.storage_backend."""
    backend = settings.session.storage_backend.lower()

    if backend == "memory":
        logger.warning("Session state is in memory only and will not survive restarts")
        return MemoryStateStorage()

    if backend == "file":
        return FileStateStorage(settings.session.storage_dir)

    if backend == "redis":
        return RedisStateStorage(
            url=settings.database.redis_url,
            ttl_seconds=settings.session.ttl_seconds,
        )

    raise ValueError(f"Unsupported session storage backend: {backend}")
