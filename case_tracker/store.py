
# Version store: one record per tracked case plus an ordered index of cases.

# Persisted layout (keys in the backend):
#   case:<entity_id>   → VersionRecord.to_dict()
#   knownCases         → [IndexEntry.to_dict(), ...] in first-seen order
#
# Backends only need two operations: read one key, and apply a batch of
# writes all-or-nothing. Every state transition the store makes (generation
# shift + index upsert, record + index removal) is a single batch.
#
# A backend may also offer entity_lock(entity_id), an async context manager
# that excludes other processes working on the same case. VersionStore.lock()
# falls back to a no-op when the backend has none.

import asyncio
import hashlib
import json
import logging
import os
from contextlib import asynccontextmanager, nullcontext
from pathlib import Path
from typing import Any, AsyncContextManager, AsyncIterator, Protocol

from filelock import FileLock

from case_tracker.errors import StorageError
from case_tracker.models import IndexEntry, Snapshot, VersionRecord

log = logging.getLogger(__name__)

INDEX_KEY = "knownCases"


def record_key(entity_id: str) -> str:
    return f"case:{entity_id}"


class KeyValueBackend(Protocol):
    async def get(self, key: str) -> Any: ...

    async def apply(self, writes: dict[str, Any]) -> None:
        """Set every key to its value; a value of None deletes the key."""
        ...


class MemoryBackend:
    """Process-local backend. Values are deep-copied through JSON on the way in and out."""

    def __init__(self) -> None:
        self._data: dict[str, str] = {}

    async def get(self, key: str) -> Any:
        raw = self._data.get(key)
        return None if raw is None else json.loads(raw)

    async def apply(self, writes: dict[str, Any]) -> None:
        # encode everything first so a bad value leaves _data untouched
        encoded = {k: None if v is None else json.dumps(v) for k, v in writes.items()}
        for key, raw in encoded.items():
            if raw is None:
                self._data.pop(key, None)
            else:
                self._data[key] = raw


@asynccontextmanager
async def _holding(lock: FileLock) -> AsyncIterator[None]:
    """Acquire a blocking FileLock off the event loop."""
    await asyncio.to_thread(lock.acquire)
    try:
        yield
    finally:
        lock.release()


class JsonFileBackend:
    """
    Whole store in one JSON file.

    Writes go to a sibling temp file which then replaces the original, so a
    crash or a failed write never leaves a half-written store behind.

    Several processes may share the file (a `watch` running while the user
    runs `check` or `forget`), so two OS-level locks sit next to it:
      <store>.lock              held across each read-modify-write in apply()
      <store>.locks/<hash>.lock held by entity_lock() for a whole observation
    """

    def __init__(self, path: Path | str) -> None:
        self.path = Path(path)
        self._lock = asyncio.Lock()
        self._lock_dir = self.path.with_name(self.path.name + ".locks")
        self._file_lock = FileLock(str(self.path) + ".lock", thread_local=False)

    def _read(self) -> dict[str, Any]:
        if not self.path.exists():
            return {}
        with open(self.path, encoding="utf-8") as f:
            return json.load(f)

    def _write(self, data: dict[str, Any]) -> None:
        tmp = self.path.with_suffix(self.path.suffix + ".tmp")
        with open(tmp, "w", encoding="utf-8") as f:
            json.dump(data, f, indent=2)   # ASCII escapes survive lone surrogates
            f.flush()
            os.fsync(f.fileno())
        tmp.replace(self.path)

    async def get(self, key: str) -> Any:
        data = await asyncio.to_thread(self._read)
        return data.get(key)

    async def apply(self, writes: dict[str, Any]) -> None:
        async with self._lock:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            async with _holding(self._file_lock):
                data = await asyncio.to_thread(self._read)
                for key, value in writes.items():
                    if value is None:
                        data.pop(key, None)
                    else:
                        data[key] = value
                await asyncio.to_thread(self._write, data)

    @asynccontextmanager
    async def entity_lock(self, entity_id: str) -> AsyncIterator[None]:
        """Exclusive across processes for one case id."""
        self._lock_dir.mkdir(parents=True, exist_ok=True)
        name = hashlib.sha256(entity_id.encode("utf-8", errors="surrogatepass")).hexdigest()[:32]
        async with _holding(FileLock(str(self._lock_dir / f"{name}.lock"), thread_local=False)):
            yield


class VersionStore:
    """
    Keeps exactly two generations per case: `current` and `previous`.

    Backend failures of any kind surface as StorageError; the store never
    retries and never splits a logical update into several backend writes.

    The index is shared by every case, so put/remove hold `_write_lock`
    across their read-modify-write of it.
    """

    def __init__(self, backend: KeyValueBackend) -> None:
        self._backend = backend
        self._write_lock = asyncio.Lock()

    async def _get(self, key: str) -> Any:
        try:
            return await self._backend.get(key)
        except Exception as exc:
            raise StorageError(f"failed to read {key!r}: {exc}") from exc

    async def _apply(self, writes: dict[str, Any]) -> None:
        try:
            await self._backend.apply(writes)
        except Exception as exc:
            raise StorageError(f"failed to write {', '.join(writes)}: {exc}") from exc

    async def _load_index(self) -> list[IndexEntry]:
        raw = await self._get(INDEX_KEY) or []
        try:
            return [IndexEntry.from_dict(item) for item in raw]
        except (KeyError, TypeError, ValueError) as exc:
            raise StorageError(f"corrupt index: {exc}") from exc

    async def get(self, entity_id: str) -> VersionRecord | None:
        raw = await self._get(record_key(entity_id))
        if raw is None:
            return None
        try:
            return VersionRecord.from_dict(raw)
        except (KeyError, TypeError, ValueError) as exc:
            raise StorageError(f"corrupt record for {entity_id!r}: {exc}") from exc

    async def put(
        self,
        entity_id: str,
        snapshot: Snapshot,
        change_flags: dict[str, bool],
        fingerprints: dict[str, str],
        label: str = "",
    ) -> VersionRecord:
        """
        Accept `snapshot` as the new current generation.

        The old current becomes previous (anything older is dropped),
        fingerprints are replaced wholesale, and the index entry is inserted
        or refreshed in the same write.
        """
        async with self._write_lock:
            return await self._put(entity_id, snapshot, change_flags, fingerprints, label)

    async def _put(
        self,
        entity_id: str,
        snapshot: Snapshot,
        change_flags: dict[str, bool],
        fingerprints: dict[str, str],
        label: str,
    ) -> VersionRecord:
        prior = await self.get(entity_id)
        record = VersionRecord(
            entity_id=entity_id,
            current=snapshot,
            previous=prior.current if prior else None,
            fingerprints=dict(fingerprints),
            change_flags=dict(change_flags),
            last_observed_at=snapshot.captured_at,
        )

        index = await self._load_index()
        entry = IndexEntry(
            entity_id=entity_id,
            label=label,
            last_observed_at=record.last_observed_at,
            has_changes=record.has_changes,
        )
        for i, existing in enumerate(index):
            if existing.entity_id == entity_id:
                entry.label = label or existing.label
                index[i] = entry
                break
        else:
            index.append(entry)

        await self._apply({
            record_key(entity_id): record.to_dict(),
            INDEX_KEY: [e.to_dict() for e in index],
        })
        log.debug("Stored new generation for %s (previous=%s)",
                  entity_id, "yes" if record.previous else "none")
        return record

    async def remove(self, entity_id: str) -> None:
        """Drop the record and its index entry. Unknown ids are a no-op."""
        async with self._write_lock:
            index = await self._load_index()
            remaining = [e for e in index if e.entity_id != entity_id]
            record = await self._get(record_key(entity_id))

            if record is None and len(remaining) == len(index):
                return

            await self._apply({
                record_key(entity_id): None,
                INDEX_KEY: [e.to_dict() for e in remaining],
            })
        log.info("Removed %s from the store", entity_id)

    async def list_index(self) -> list[IndexEntry]:
        return await self._load_index()

    def lock(self, entity_id: str) -> AsyncContextManager:
        """Cross-process lock for one case, if the backend provides one."""
        entity_lock = getattr(self._backend, "entity_lock", None)
        return entity_lock(entity_id) if entity_lock is not None else nullcontext()
