"""Persistent key-value storage for the relay.

Values live in namespaces (credential, mailbox, allowed, pending), each keyed
by host id. Callers only use ``get``/``put``/``delete``/``put_many``; the
backend decides how values are kept.
"""

from __future__ import annotations

import asyncio
import copy
import logging
import os
import tempfile
from typing import Any

from .codec import decode_document, encode_document
from .util import expand_path


class KeyValueStore:
    """Async namespaced key-value store interface."""

    async def get(self, namespace: str, key: str) -> Any:
        raise NotImplementedError

    async def put(self, namespace: str, key: str, value: Any) -> None:
        raise NotImplementedError

    async def delete(self, namespace: str, key: str) -> None:
        raise NotImplementedError

    async def put_many(self, items: dict[tuple[str, str], Any]) -> None:
        """Write several keys. Backends that can commit them together do."""
        for (namespace, key), value in items.items():
            await self.put(namespace, key, value)

    async def open(self) -> None:
        """Load whatever the backend needs before serving."""
        return None

    async def close(self) -> None:
        return None


class MemoryStore(KeyValueStore):
    """Process-local store. Contents are lost on exit."""

    def __init__(self) -> None:
        self._data: dict[str, dict[str, Any]] = {}

    async def get(self, namespace: str, key: str) -> Any:
        value = self._data.get(namespace, {}).get(key)
        return copy.deepcopy(value)

    async def put(self, namespace: str, key: str, value: Any) -> None:
        self._data.setdefault(namespace, {})[key] = copy.deepcopy(value)

    async def delete(self, namespace: str, key: str) -> None:
        ns = self._data.get(namespace)
        if ns is None:
            return
        ns.pop(key, None)
        if not ns:
            self._data.pop(namespace, None)

    def dump(self) -> dict[str, dict[str, Any]]:
        return copy.deepcopy(self._data)


class FileStore(KeyValueStore):
    """
    Store backed by a single CBOR file.

    The whole document is kept in memory and rewritten on every mutation:
    - the file is read once, off the event loop (``open()`` or first use)
    - writes go to a temp file in the same directory, then os.replace()
    - the existing file mode is kept (0600 for new files)
    - ``put_many`` commits all of its keys in one replace

    Stored values are never mutated in place, so a commit only copies the
    namespace maps it touches.
    """

    def __init__(self, path: str) -> None:
        self.path = expand_path(path)
        self.log = logging.getLogger("sigrelay.store")
        self._data: dict[str, dict[str, Any]] | None = None
        self._load_lock = asyncio.Lock()
        self._write_lock = asyncio.Lock()

    def _read_file(self) -> dict[str, dict[str, Any]]:
        if not os.path.exists(self.path):
            return {}

        with open(self.path, "rb") as f:
            raw = f.read()

        try:
            return decode_document(raw)
        except ValueError as e:
            raise ValueError(f"store file {self.path}: {e}") from e

    async def _loaded(self) -> dict[str, dict[str, Any]]:
        if self._data is not None:
            return self._data

        async with self._load_lock:
            if self._data is None:
                data = await asyncio.to_thread(self._read_file)
                self.log.info(
                    "Loaded store path=%s namespaces=%s keys=%s",
                    self.path,
                    len(data),
                    sum(len(v) for v in data.values()),
                )
                self._data = data
        return self._data

    async def open(self) -> None:
        await self._loaded()

    def _write(self, snapshot: dict[str, dict[str, Any]]) -> None:
        payload = encode_document(snapshot)

        directory = os.path.dirname(self.path) or "."
        os.makedirs(directory, exist_ok=True)

        mode = 0o600
        try:
            mode = os.stat(self.path).st_mode & 0o777
        except FileNotFoundError:
            pass

        fd, tmp_path = tempfile.mkstemp(prefix=".store-", dir=directory)
        try:
            with os.fdopen(fd, "wb") as f:
                f.write(payload)
                f.flush()
                os.fsync(f.fileno())
            os.chmod(tmp_path, mode)
            os.replace(tmp_path, self.path)
        except BaseException:
            try:
                os.unlink(tmp_path)
            except OSError:
                pass
            raise

    async def _commit(self, updates: dict[tuple[str, str], Any]) -> None:
        async with self._write_lock:
            staged = dict(await self._loaded())
            touched: set[str] = set()
            for (namespace, key), value in updates.items():
                if namespace not in touched:
                    staged[namespace] = dict(staged.get(namespace, {}))
                    touched.add(namespace)
                if value is None:
                    staged[namespace].pop(key, None)
                else:
                    staged[namespace][key] = copy.deepcopy(value)
            for namespace in touched:
                if not staged[namespace]:
                    del staged[namespace]

            await asyncio.to_thread(self._write, staged)
            # Only swap the cache in once the file is on disk.
            self._data = staged

    async def get(self, namespace: str, key: str) -> Any:
        data = await self._loaded()
        return copy.deepcopy(data.get(namespace, {}).get(key))

    async def put(self, namespace: str, key: str, value: Any) -> None:
        if value is None:
            raise ValueError("cannot store None; use delete()")
        await self._commit({(namespace, key): value})

    async def delete(self, namespace: str, key: str) -> None:
        data = await self._loaded()
        if key not in data.get(namespace, {}):
            return
        await self._commit({(namespace, key): None})

    async def put_many(self, items: dict[tuple[str, str], Any]) -> None:
        if any(v is None for v in items.values()):
            raise ValueError("cannot store None; use delete()")
        if items:
            await self._commit(dict(items))


def open_store(backend: str, path: str | None) -> KeyValueStore:
    if backend == "memory":
        return MemoryStore()
    if backend == "file":
        if not path:
            raise ValueError("store_path is required for the file store backend")
        return FileStore(path)
    raise ValueError(f"unknown store backend {backend!r}")
