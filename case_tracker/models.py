import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from case_tracker.canonical import ABSENT, is_absent

log = logging.getLogger(__name__)


def utcnow() -> datetime:
    return datetime.now(tz=timezone.utc)


def parse_dt(value: str | None) -> datetime | None:
    """
    Parse an ISO 8601 timestamp string into an aware UTC datetime.

    Accepts both '+00:00' and a trailing 'Z'. Unparseable values are logged
    and returned as None rather than raised.
    """
    if not value:
        return None

    try:
        return datetime.fromisoformat(value.replace("Z", "+00:00")).astimezone(timezone.utc)
    except ValueError:
        log.warning("Could not parse datetime string: %r", value)
        return None


def format_dt(dt: datetime | None) -> str:
    """Human-readable UTC timestamp for console display."""
    if dt is None:
        return "Unknown"
    return dt.strftime("%Y-%m-%d %H:%M:%S UTC")


def iso(dt: datetime) -> str:
    """ISO 8601 UTC with a Z suffix, e.g. 2026-02-21T12:39:08.123456Z"""
    return dt.astimezone(timezone.utc).isoformat().replace("+00:00", "Z")


def _require_dt(value: str | None) -> datetime:
    dt = parse_dt(value)
    if dt is None:
        raise ValueError(f"invalid timestamp in stored record: {value!r}")
    return dt


@dataclass
class Snapshot:
    """
    Every source's payload at one point in time.

    `payloads` maps source id to a JSON-like value or ABSENT. A payload of
    None means the source answered with JSON null; ABSENT means it failed.
    """
    payloads: dict[str, Any]
    captured_at: datetime = field(default_factory=utcnow)

    def get(self, source_id: str) -> Any:
        return self.payloads.get(source_id, ABSENT)

    def is_empty(self) -> bool:
        """True when no source produced a payload."""
        return all(is_absent(p) for p in self.payloads.values())

    def absent_sources(self) -> list[str]:
        return [s for s, p in self.payloads.items() if is_absent(p)]

    def to_dict(self) -> dict[str, Any]:
        return {
            "payloads":    {s: p for s, p in self.payloads.items() if not is_absent(p)},
            "absent":      self.absent_sources(),
            "captured_at": iso(self.captured_at),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Snapshot":
        payloads: dict[str, Any] = dict(data.get("payloads", {}))
        for source_id in data.get("absent", []):
            payloads[source_id] = ABSENT
        return cls(payloads=payloads, captured_at=_require_dt(data.get("captured_at")))


@dataclass
class VersionRecord:
    """
    Persisted state of one tracked case: the current generation, at most one
    previous generation, and the fingerprints/flags computed for `current`.
    """
    entity_id: str
    current: Snapshot
    previous: Snapshot | None
    fingerprints: dict[str, str]
    change_flags: dict[str, bool]
    last_observed_at: datetime

    @property
    def has_changes(self) -> bool:
        return any(self.change_flags.values())

    def to_dict(self) -> dict[str, Any]:
        return {
            "entity_id":        self.entity_id,
            "current":          self.current.to_dict(),
            "previous":         self.previous.to_dict() if self.previous else None,
            "fingerprints":     dict(self.fingerprints),
            "change_flags":     dict(self.change_flags),
            "last_observed_at": iso(self.last_observed_at),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "VersionRecord":
        previous = data.get("previous")
        return cls(
            entity_id=data["entity_id"],
            current=Snapshot.from_dict(data["current"]),
            previous=Snapshot.from_dict(previous) if previous else None,
            fingerprints=dict(data.get("fingerprints", {})),
            change_flags={k: bool(v) for k, v in data.get("change_flags", {}).items()},
            last_observed_at=_require_dt(data.get("last_observed_at")),
        )


@dataclass
class IndexEntry:
    """Lightweight summary used to list tracked cases without loading records."""
    entity_id: str
    label: str
    last_observed_at: datetime
    has_changes: bool

    def to_dict(self) -> dict[str, Any]:
        return {
            "entity_id":        self.entity_id,
            "label":            self.label,
            "last_observed_at": iso(self.last_observed_at),
            "has_changes":      self.has_changes,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "IndexEntry":
        return cls(
            entity_id=data["entity_id"],
            label=data.get("label", ""),
            last_observed_at=_require_dt(data.get("last_observed_at")),
            has_changes=bool(data.get("has_changes", False)),
        )


@dataclass
class ObservationResult:
    """
    What one observe() call hands back to its caller.

    `error` is set only when every source failed; in that case nothing was
    stored, `current` is an all-ABSENT snapshot and `previous` is None.
    """
    entity_id: str
    current: Snapshot
    previous: Snapshot | None
    change_flags: dict[str, bool]
    observed_at: datetime
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.error is None

    @property
    def has_changes(self) -> bool:
        return any(self.change_flags.values())

    def changed_sources(self) -> list[str]:
        return [s for s, flag in self.change_flags.items() if flag]
