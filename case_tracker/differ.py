from case_tracker.canonical import fingerprint
from case_tracker.models import Snapshot, VersionRecord
from case_tracker.store import VersionStore


class ChangeDetector:
    """
    Decides, per source, whether a new snapshot differs from the stored one.

    A source is flagged only when a fingerprint was stored for it before and
    the new fingerprint differs. The very first observation of a case never
    flags anything, and sources are judged independently of each other.

    A source that was present last time and is ABSENT now does get flagged:
    absence has its own fingerprint, so "the source started failing" is a
    change just like a content change is.
    """

    def __init__(self, store: VersionStore) -> None:
        self._store = store

    async def detect(
        self, entity_id: str, snapshot: Snapshot,
    ) -> tuple[dict[str, bool], dict[str, str]]:
        """Compare `snapshot` against what the store holds for `entity_id`."""
        prior = await self._store.get(entity_id)
        return self.compare(prior, snapshot)

    @staticmethod
    def compare(
        prior: VersionRecord | None, snapshot: Snapshot,
    ) -> tuple[dict[str, bool], dict[str, str]]:
        """
        Return (change_flags, fingerprints) for `snapshot`.
        Pure: reads `prior` but never touches storage.
        """
        fingerprints = {
            source_id: fingerprint(payload)
            for source_id, payload in snapshot.payloads.items()
        }
        previous = prior.fingerprints if prior else {}

        flags = {
            source_id: source_id in previous and previous[source_id] != digest
            for source_id, digest in fingerprints.items()
        }
        return flags, fingerprints
