
# CaseMonitor: the top-level wiring.

# Responsibilities:
#   - Create the shared aiohttp session (auth cookie, user agent, pool)
#   - Build the fetcher → observer → store chain once per session
#   - Spin up one CaseWatcher task per receipt and run them concurrently
#   - Provide a clean stop() method for graceful shutdown

import asyncio
import logging
from contextlib import asynccontextmanager
from pathlib import Path
from typing import AsyncIterator

import aiohttp

from case_tracker.config import POLL_INTERVAL_SECONDS, STORE_PATH, USER_AGENT
from case_tracker.fetcher import SourceFetcher
from case_tracker.handlers import ConsoleEventHandler
from case_tracker.http_client import SourceHTTPClient
from case_tracker.observer import CaseObserver
from case_tracker.store import JsonFileBackend, VersionStore
from case_tracker.watcher import CaseWatcher

log = logging.getLogger(__name__)


@asynccontextmanager
async def open_observer(
    store_path: Path | str = STORE_PATH,
    cookie: str | None = None,
) -> AsyncIterator[CaseObserver]:
    """Yield a CaseObserver backed by a live HTTP session and the JSON file store."""
    headers = {"User-Agent": USER_AGENT, "Accept": "application/json"}
    if cookie:
        headers["Cookie"] = cookie

    connector = aiohttp.TCPConnector(limit=20)
    async with aiohttp.ClientSession(connector=connector, headers=headers) as session:
        fetcher = SourceFetcher(SourceHTTPClient(session))
        store = VersionStore(JsonFileBackend(store_path))
        yield CaseObserver(fetcher, store)


class CaseMonitor:

    def __init__(
        self,
        receipts: list[str],
        store_path: Path | str = STORE_PATH,
        cookie: str | None = None,
        handler: ConsoleEventHandler | None = None,
        interval: float = POLL_INTERVAL_SECONDS,
    ) -> None:
        self._receipts = receipts
        self._store_path = store_path
        self._cookie = cookie
        self._handler = handler or ConsoleEventHandler()
        self._interval = interval
        self._tasks: list[asyncio.Task] = []

    async def run(self) -> None:
        async with open_observer(self._store_path, self._cookie) as observer:
            for receipt in self._receipts:
                watcher = CaseWatcher(receipt, observer, self._handler, self._interval)
                task = asyncio.create_task(
                    watcher.run_forever(),
                    name=f"watcher-{receipt.lower()}",
                )
                self._tasks.append(task)

            log.info(
                "CaseMonitor running, watching %d case(s). Press Ctrl+C to stop.",
                len(self._receipts),
            )

            # blocks until all tasks finish (normally only on cancellation)
            await asyncio.gather(*self._tasks, return_exceptions=True)

    def stop(self) -> None:
        """Cancel all watcher tasks. The event loop will drain them cleanly."""
        for task in self._tasks:
            task.cancel()
