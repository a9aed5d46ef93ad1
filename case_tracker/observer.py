
# CaseObserver: the command surface callers use.
#
#   observe(receipt)  fetch all sources, detect changes, store a generation
#   list_tracked()    index of every tracked case
#   forget(receipt)   drop a case and its index entry
#
# Concurrency: observations of the same case are serialized with a per-case
# asyncio.Lock held for the whole fetch → detect → put sequence. Without it
# two overlapping checks would read the same prior fingerprints and the later
# put would silently overwrite the earlier generation shift. Different cases
# never wait on each other.
#
# Inside one process that is the asyncio.Lock; the store's lock(entity_id)
# is taken too, which for the JSON file store is an OS file lock, so a
# `watch` and a `check` of the same case in two processes are serialized
# the same way.

import asyncio
import logging
from collections import defaultdict
from contextlib import asynccontextmanager
from typing import AsyncIterator

from case_tracker.config import NO_DATA_MESSAGE
from case_tracker.differ import ChangeDetector
from case_tracker.fetcher import SourceFetcher
from case_tracker.models import IndexEntry, ObservationResult
from case_tracker.parser import display_label
from case_tracker.store import VersionStore

log = logging.getLogger(__name__)


class CaseObserver:

    def __init__(self, fetcher: SourceFetcher, store: VersionStore) -> None:
        self._fetcher = fetcher
        self._store = store
        self._detector = ChangeDetector(store)
        self._locks: dict[str, asyncio.Lock] = {}
        self._holders: defaultdict[str, int] = defaultdict(int)

    @asynccontextmanager
    async def _exclusive(self, entity_id: str) -> AsyncIterator[None]:
        lock = self._locks.setdefault(entity_id, asyncio.Lock())
        self._holders[entity_id] += 1
        try:
            async with lock, self._store.lock(entity_id):
                yield
        finally:
            self._holders[entity_id] -= 1
            if not self._holders[entity_id]:
                del self._holders[entity_id]
                del self._locks[entity_id]

    @staticmethod
    def _check_id(entity_id: str) -> None:
        if not isinstance(entity_id, str) or not entity_id:
            raise ValueError("entity id must be a non-empty string")

    async def observe(self, entity_id: str) -> ObservationResult:
        """
        Take one observation of `entity_id`.

        If every source fails the store is left untouched and the result
        carries NO_DATA_MESSAGE in `error`. StorageError propagates.
        """
        self._check_id(entity_id)

        async with self._exclusive(entity_id):
            snapshot = await self._fetcher.fetch(entity_id)

            if snapshot.is_empty():
                log.warning("%s: every source failed, nothing stored", entity_id)
                return ObservationResult(
                    entity_id=entity_id,
                    current=snapshot,
                    previous=None,
                    change_flags={s: False for s in snapshot.payloads},
                    observed_at=snapshot.captured_at,
                    error=NO_DATA_MESSAGE,
                )

            prior = await self._store.get(entity_id)
            flags, fingerprints = self._detector.compare(prior, snapshot)
            await self._store.put(
                entity_id, snapshot, flags, fingerprints, label=display_label(snapshot),
            )

        changed = [s for s, flag in flags.items() if flag]
        if changed:
            log.info("%s: change detected in %s", entity_id, ", ".join(changed))
        elif prior is None:
            log.info("%s: first observation stored", entity_id)
        else:
            log.debug("%s: no changes", entity_id)

        return ObservationResult(
            entity_id=entity_id,
            current=snapshot,
            previous=prior.current if prior else None,
            change_flags=flags,
            observed_at=snapshot.captured_at,
        )

    async def list_tracked(self) -> list[IndexEntry]:
        return await self._store.list_index()

    async def forget(self, entity_id: str) -> None:
        self._check_id(entity_id)
        async with self._exclusive(entity_id):
            await self._store.remove(entity_id)
