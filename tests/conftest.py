"""Pytest fixtures for case-tracker tests."""

from typing import Any

import pytest

from case_tracker.canonical import ABSENT
from case_tracker.fetcher import SourceFetcher
from case_tracker.observer import CaseObserver
from case_tracker.store import MemoryBackend, VersionStore

BASE = "https://example.test"
SOURCES = {
    "A": "/a/{entity_id}",
    "B": "/b/{entity_id}",
    "C": "/c/{entity_id}",
}


class FakeHTTPClient:
    """
    Stands in for SourceHTTPClient. `responses` maps source id to the payload
    that source returns (ABSENT for a failure); edit it between observations.
    """

    def __init__(self, responses: dict[str, Any]) -> None:
        self.responses = responses
        self.calls: list[str] = []

    async def get_payload(self, url: str) -> Any:
        self.calls.append(url)
        source_id = url[len(BASE) + 1:].split("/")[0].upper()
        return self.responses.get(source_id, ABSENT)


class FailingBackend(MemoryBackend):
    """MemoryBackend whose writes can be made to fail."""

    def __init__(self) -> None:
        super().__init__()
        self.fail_writes = False
        self.fail_reads = False

    async def get(self, key: str) -> Any:
        if self.fail_reads:
            raise OSError("disk unavailable")
        return await super().get(key)

    async def apply(self, writes: dict[str, Any]) -> None:
        if self.fail_writes:
            raise OSError("disk full")
        await super().apply(writes)


@pytest.fixture
def payload_a() -> dict:
    return {"status": "pending", "date": "2026-01-01"}


@pytest.fixture
def http(payload_a) -> FakeHTTPClient:
    return FakeHTTPClient({
        "A": payload_a,
        "B": {"formType": "I-485", "events": [{"eventCode": "IAF"}]},
        "C": {"receipt_details": {"form": "I-485", "location": "NBC"}},
    })


@pytest.fixture
def backend() -> FailingBackend:
    return FailingBackend()


@pytest.fixture
def store(backend) -> VersionStore:
    return VersionStore(backend)


@pytest.fixture
def fetcher(http) -> SourceFetcher:
    return SourceFetcher(http, sources=SOURCES, base_url=BASE)


@pytest.fixture
def observer(fetcher, store) -> CaseObserver:
    return CaseObserver(fetcher, store)
