import asyncio
import logging

from case_tracker.config import BASE_URL, SOURCES
from case_tracker.http_client import SourceHTTPClient
from case_tracker.models import Snapshot, utcnow

log = logging.getLogger(__name__)


class SourceFetcher:
    """
    Fetches every configured source for one case concurrently.

    All requests are awaited together; a slow or failing source never cuts
    the others short, and nothing is retried. Sources that failed are ABSENT
    in the returned Snapshot.
    """

    def __init__(
        self,
        http_client: SourceHTTPClient,
        sources: dict[str, str] = SOURCES,
        base_url: str = BASE_URL,
    ) -> None:
        self._http = http_client
        self._sources = dict(sources)
        self._base_url = base_url.rstrip("/")

    @property
    def source_ids(self) -> list[str]:
        return list(self._sources)

    def url_for(self, source_id: str, entity_id: str) -> str:
        return self._base_url + self._sources[source_id].format(entity_id=entity_id)

    async def fetch(self, entity_id: str) -> Snapshot:
        captured_at = utcnow()
        payloads = await asyncio.gather(*(
            self._http.get_payload(self.url_for(source_id, entity_id))
            for source_id in self._sources
        ))
        snapshot = Snapshot(payloads=dict(zip(self._sources, payloads)), captured_at=captured_at)

        absent = snapshot.absent_sources()
        if absent:
            log.info("%s: %d/%d source(s) returned no data: %s",
                     entity_id, len(absent), len(self._sources), ", ".join(absent))
        return snapshot
