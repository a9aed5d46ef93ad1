
# CaseWatcher: re-checks a single case on a fixed interval.

# responsibilities:
#   - call observe() once per interval
#   - forward every result (changes, no changes, total failure) to the handler
#   - keep going after failures; there is no retry or backoff, the next
#     attempt is simply the next scheduled check

import asyncio
import logging

from case_tracker.config import POLL_INTERVAL_SECONDS
from case_tracker.handlers import ConsoleEventHandler
from case_tracker.observer import CaseObserver


class CaseWatcher:

    def __init__(
        self,
        entity_id: str,
        observer: CaseObserver,
        handler: ConsoleEventHandler,
        interval: float = POLL_INTERVAL_SECONDS,
    ) -> None:
        self.entity_id = entity_id
        self.interval = interval
        self._observer = observer
        self._handler = handler
        self._log = logging.getLogger(f"watcher.{entity_id.lower()}")

    async def check_once(self) -> None:
        result = await self._observer.observe(self.entity_id)
        if not result.ok:
            self._log.warning("No data for %s: %s", self.entity_id, result.error)
        elif result.has_changes:
            self._log.info("%s changed: %s", self.entity_id, ", ".join(result.changed_sources()))
        await self._handler.handle(result)

    async def run_forever(self) -> None:
        self._log.info("Started watching %s every %ss", self.entity_id, self.interval)

        while True:
            try:
                await self.check_once()

            except asyncio.CancelledError:
                self._log.info("Watcher for %s cancelled.", self.entity_id)
                raise  # propagate so the task terminates cleanly

            except Exception as exc:
                self._log.exception("Unexpected error in watcher for %s: %s", self.entity_id, exc)

            await asyncio.sleep(self.interval)
