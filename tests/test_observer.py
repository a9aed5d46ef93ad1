"""End-to-end observation scenarios: fetch → detect → store."""

import asyncio
import json
from typing import Any

import pytest

from case_tracker.canonical import ABSENT
from case_tracker.config import NO_DATA_MESSAGE
from case_tracker.diff_render import render_diff
from case_tracker.errors import StorageError
from case_tracker.fetcher import SourceFetcher
from case_tracker.observer import CaseObserver
from case_tracker.store import JsonFileBackend, VersionStore
from tests.conftest import BASE, SOURCES


class TestObserve:

    @pytest.mark.asyncio
    async def test_first_observation_has_no_flags(self, observer):
        result = await observer.observe("X-1")

        assert result.ok
        assert result.previous is None
        assert result.change_flags == {"A": False, "B": False, "C": False}
        assert result.current.get("A") == {"status": "pending", "date": "2026-01-01"}

    @pytest.mark.asyncio
    async def test_identical_second_observation_has_no_flags(self, observer):
        await observer.observe("X-1")
        result = await observer.observe("X-1")

        assert result.change_flags == {"A": False, "B": False, "C": False}
        assert result.previous is not None
        assert not result.has_changes

    @pytest.mark.asyncio
    async def test_status_change_flags_only_that_source(self, observer, http):
        await observer.observe("X-1")
        http.responses["A"] = {"status": "approved", "date": "2026-01-01"}

        result = await observer.observe("X-1")

        assert result.change_flags == {"A": True, "B": False, "C": False}
        text = render_diff("A", result.previous.get("A"), result.current.get("A"))
        assert "pending" in text
        assert "approved" in text

    @pytest.mark.asyncio
    async def test_reordered_keys_are_not_a_change(self, observer, http):
        await observer.observe("X-1")
        http.responses["A"] = {"date": "2026-01-01", "status": "pending"}

        result = await observer.observe("X-1")
        assert not result.has_changes

    @pytest.mark.asyncio
    async def test_third_observation_drops_first_generation(self, observer, http, store):
        await observer.observe("X-1")
        http.responses["A"] = {"status": "second"}
        await observer.observe("X-1")
        http.responses["A"] = {"status": "third"}
        result = await observer.observe("X-1")

        assert result.previous.get("A") == {"status": "second"}
        record = await store.get("X-1")
        assert record.previous.get("A") == {"status": "second"}
        assert record.current.get("A") == {"status": "third"}

    @pytest.mark.asyncio
    async def test_total_failure_does_not_touch_store(self, observer, http, store):
        await observer.observe("X-1")
        before_index = await observer.list_tracked()
        before_record = await store.get("X-1")

        http.responses.clear()
        result = await observer.observe("X-1")

        assert result.error == NO_DATA_MESSAGE
        assert not result.ok
        assert result.previous is None
        assert result.change_flags == {"A": False, "B": False, "C": False}
        assert await observer.list_tracked() == before_index
        assert await store.get("X-1") == before_record

    @pytest.mark.asyncio
    async def test_total_failure_on_unknown_case_creates_nothing(self, observer, http):
        http.responses.clear()
        result = await observer.observe("X-9")
        assert result.error
        assert await observer.list_tracked() == []

    @pytest.mark.asyncio
    async def test_partial_failure_is_stored_and_flagged(self, observer, http, store):
        # a source that starts failing overwrites its last good payload and
        # shows up as a change; this is the tracker's documented behaviour
        await observer.observe("X-1")
        http.responses["B"] = ABSENT

        result = await observer.observe("X-1")

        assert result.ok
        assert result.change_flags == {"A": False, "B": True, "C": False}
        record = await store.get("X-1")
        assert record.current.get("B") is ABSENT

        http.responses["B"] = {"formType": "I-485", "events": [{"eventCode": "IAF"}]}
        result = await observer.observe("X-1")
        assert result.change_flags == {"A": False, "B": True, "C": False}

    @pytest.mark.asyncio
    async def test_index_label_and_flag(self, http, store):
        sources = {"caseDetails": "/a/{entity_id}", "caseStatus": "/b/{entity_id}",
                   "receiptInfo": "/c/{entity_id}"}
        observer = CaseObserver(SourceFetcher(http, sources=sources, base_url=BASE), store)

        await observer.observe("X-1")
        [entry] = await observer.list_tracked()
        assert entry.label == "I-485"
        assert entry.has_changes is False

        http.responses["C"] = {"receipt_details": {"form": "I-485", "location": "MSC"}}
        await observer.observe("X-1")
        [entry] = await observer.list_tracked()
        assert entry.has_changes is True

    @pytest.mark.asyncio
    async def test_storage_failure_propagates(self, observer, backend, store):
        await observer.observe("X-1")
        before = await store.get("X-1")
        backend.fail_writes = True

        with pytest.raises(StorageError):
            await observer.observe("X-1")

        backend.fail_writes = False
        assert await store.get("X-1") == before

    @pytest.mark.asyncio
    @pytest.mark.parametrize("bad", ["", None])
    async def test_rejects_empty_id(self, observer, bad):
        with pytest.raises(ValueError):
            await observer.observe(bad)


class TestForget:

    @pytest.mark.asyncio
    async def test_forget_unknown_is_noop(self, observer):
        await observer.observe("X-1")
        before = await observer.list_tracked()
        await observer.forget("never-seen")
        assert await observer.list_tracked() == before

    @pytest.mark.asyncio
    async def test_forget_removes_record_and_entry(self, observer, store):
        await observer.observe("X-1")
        await observer.observe("X-2")
        await observer.forget("X-1")

        assert await store.get("X-1") is None
        assert [e.entity_id for e in await observer.list_tracked()] == ["X-2"]

        result = await observer.observe("X-1")
        assert result.previous is None   # starts over as a first observation


class GatedHTTPClient:
    """Each fetch blocks until the test releases it, returning a per-call payload."""

    def __init__(self) -> None:
        self.round = 0
        self.gate = asyncio.Event()
        self.in_flight = 0
        self.max_in_flight = 0

    async def get_payload(self, url: str) -> Any:
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            await self.gate.wait()
            return {"round": self.round}
        finally:
            self.in_flight -= 1


class TestConcurrency:

    @pytest.mark.asyncio
    async def test_same_case_observations_are_serialized(self, store):
        http = GatedHTTPClient()
        observer = CaseObserver(SourceFetcher(http, sources=SOURCES, base_url=BASE), store)

        # first observation establishes generation 0
        http.gate.set()
        await observer.observe("X-1")
        http.gate.clear()

        http.round = 1
        first = asyncio.create_task(observer.observe("X-1"))
        second = asyncio.create_task(observer.observe("X-1"))
        for _ in range(10):
            await asyncio.sleep(0)

        # only one observation's fetch is in flight at a time
        assert http.in_flight == 3
        http.gate.set()
        r1 = await first
        http.round = 2
        r2 = await second

        assert http.max_in_flight == 3
        assert r1.previous.get("A") == {"round": 0}
        # the second saw the first's generation as its baseline
        assert r2.previous.get("A") == r1.current.get("A")
        record = await store.get("X-1")
        assert record.previous.get("A") == r1.current.get("A")
        assert record.current.get("A") == r2.current.get("A")

    @pytest.mark.asyncio
    async def test_different_cases_do_not_block(self, store):
        http = GatedHTTPClient()
        observer = CaseObserver(SourceFetcher(http, sources=SOURCES, base_url=BASE), store)

        tasks = [asyncio.create_task(observer.observe(eid)) for eid in ("X-1", "X-2")]
        for _ in range(10):
            await asyncio.sleep(0)
        assert http.in_flight == 6
        http.gate.set()
        await asyncio.gather(*tasks)
        assert [e.entity_id for e in await observer.list_tracked()] == ["X-1", "X-2"]
        assert observer._locks == {}

    @pytest.mark.asyncio
    async def test_separate_file_stores_on_one_path_are_serialized(self, tmp_path):
        # two observers over the same store file, as two CLI processes would be
        path = tmp_path / "store.json"
        http = GatedHTTPClient()
        fetcher = SourceFetcher(http, sources=SOURCES, base_url=BASE)
        watching = CaseObserver(fetcher, VersionStore(JsonFileBackend(path)))
        checking = CaseObserver(fetcher, VersionStore(JsonFileBackend(path)))

        http.gate.set()
        await watching.observe("X-1")
        http.gate.clear()

        http.round = 1
        first = asyncio.create_task(watching.observe("X-1"))
        for _ in range(100):
            if http.in_flight == 3:
                break
            await asyncio.sleep(0.01)
        second = asyncio.create_task(checking.observe("X-1"))
        await asyncio.sleep(0.2)
        assert http.in_flight == 3   # the second observer is waiting on the file lock

        http.gate.set()
        r1 = await first
        http.round = 2
        r2 = await asyncio.wait_for(second, timeout=5)

        assert r1.previous.get("A") == {"round": 0}
        assert r2.previous.get("A") == r1.current.get("A")
        record = await VersionStore(JsonFileBackend(path)).get("X-1")
        assert record.previous.get("A") == r1.current.get("A")
        assert record.current.get("A") == r2.current.get("A")


class TestOddPayloads:

    @pytest.mark.asyncio
    async def test_lone_surrogate_in_payload_is_observed(self, observer, http):
        http.responses["A"] = json.loads('{"statusText": "bad \\ud800 char"}')
        result = await observer.observe("X-1")
        assert result.ok

        http.responses["A"] = {"statusText": "fixed"}
        result = await observer.observe("X-1")
        assert result.change_flags["A"] is True
