
# canonical form and content fingerprints for source payloads.

# Every comparison the tracker makes (change flags, "no diff" in the renderer)
# goes through the same canonical value, so a remote API that reorders object
# keys between calls never shows up as a change.

import hashlib
import json
from typing import Any


class Absent:
    """
    Marker for a source that produced no payload (fetch failed, bad status,
    unparseable body). Distinct from JSON null: a source that returns `null`
    and a source that failed are different observations.
    """

    _instance: "Absent | None" = None

    def __new__(cls) -> "Absent":
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "ABSENT"

    def __bool__(self) -> bool:
        return False


ABSENT = Absent()

# neither string is a valid JSON document, so absence never collides with a payload
_ABSENT_SERIALIZED = ""
_ABSENT_RENDERED = "(absent)\n"


def is_absent(value: Any) -> bool:
    return value is ABSENT


def canonicalize(value: Any) -> Any:
    """
    Return a copy of `value` with the keys of every object sorted, at every
    depth. Arrays keep their order; scalars, None and ABSENT pass through.
    """
    if isinstance(value, dict):
        return {key: canonicalize(value[key]) for key in sorted(value)}
    if isinstance(value, (list, tuple)):
        return [canonicalize(item) for item in value]
    return value


def serialize(value: Any) -> str:
    """Compact canonical text. This is what gets hashed."""
    if is_absent(value):
        return _ABSENT_SERIALIZED
    return json.dumps(
        canonicalize(value), sort_keys=True, separators=(",", ":"), ensure_ascii=False,
    )


def render(value: Any) -> str:
    """Multi-line canonical text, one JSON token group per line. Used for diffs."""
    if is_absent(value):
        return _ABSENT_RENDERED
    return json.dumps(canonicalize(value), sort_keys=True, indent=2, ensure_ascii=False) + "\n"


def fingerprint(value: Any) -> str:
    """
    SHA-256 hex digest of the canonical serialization.

    json.loads accepts lone surrogate escapes ("\\ud800"), so they are passed
    through as-is rather than rejected by the UTF-8 encoder.
    """
    return hashlib.sha256(serialize(value).encode("utf-8", errors="surrogatepass")).hexdigest()
