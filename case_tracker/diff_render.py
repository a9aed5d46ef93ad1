
# Human-readable diffs between two generations of a source payload.

# Both sides go through the same canonical rendering the fingerprints are
# built from, so "no diff" here means exactly "same fingerprint" there.
# The side-by-side pairing is presentation only and never decides whether
# there is a diff.

import difflib
from dataclasses import dataclass
from typing import Any, Literal

from case_tracker.canonical import render
from case_tracker.models import Snapshot

PairType = Literal["unchanged", "changed", "removed", "added"]


@dataclass(frozen=True)
class LinePair:
    left: str | None       # None = nothing on this side
    right: str | None
    type: PairType


def render_diff(label: str, old: Any, new: Any) -> str | None:
    """
    Unified diff between two payloads, or None when their canonical
    renderings are identical (key order never counts).
    """
    old_text = render(old)
    new_text = render(new)
    if old_text == new_text:
        return None

    return "".join(difflib.unified_diff(
        old_text.splitlines(keepends=True),
        new_text.splitlines(keepends=True),
        fromfile=label,
        tofile=label,
        fromfiledate="previous",
        tofiledate="current",
    ))


def diff_snapshots(old: Snapshot, new: Snapshot) -> dict[str, str]:
    """Unified diff per source id, only for sources that actually differ."""
    diffs: dict[str, str] = {}
    for source_id in new.payloads.keys() | old.payloads.keys():
        text = render_diff(source_id, old.get(source_id), new.get(source_id))
        if text is not None:
            diffs[source_id] = text
    return dict(sorted(diffs.items()))


def _line_blocks(old_lines: list[str], new_lines: list[str]) -> list[tuple[str, list[str]]]:
    """
    Flatten difflib opcodes into ("equal" | "removed" | "added", lines) blocks.
    A replace becomes a removed block immediately followed by an added block.
    """
    blocks: list[tuple[str, list[str]]] = []
    matcher = difflib.SequenceMatcher(a=old_lines, b=new_lines, autojunk=False)
    for tag, i1, i2, j1, j2 in matcher.get_opcodes():
        if tag == "equal":
            blocks.append(("equal", old_lines[i1:i2]))
        if tag in ("delete", "replace"):
            blocks.append(("removed", old_lines[i1:i2]))
        if tag in ("insert", "replace"):
            blocks.append(("added", new_lines[j1:j2]))
    return blocks


def pair_lines(old: Any, new: Any) -> list[LinePair]:
    """
    Side-by-side rows for two payloads.

    A removed block followed directly by an added block is zipped into
    `changed` rows (the shorter side padded with None). A lone removed block
    gives `removed` rows, a lone added block gives `added` rows, and every
    other line is `unchanged` and paired with itself.
    """
    blocks = _line_blocks(render(old).splitlines(), render(new).splitlines())
    pairs: list[LinePair] = []

    i = 0
    while i < len(blocks):
        kind, lines = blocks[i]

        if kind == "equal":
            pairs.extend(LinePair(line, line, "unchanged") for line in lines)

        elif kind == "removed":
            nxt = blocks[i + 1] if i + 1 < len(blocks) else None
            if nxt is not None and nxt[0] == "added":
                added = nxt[1]
                for j in range(max(len(lines), len(added))):
                    pairs.append(LinePair(
                        lines[j] if j < len(lines) else None,
                        added[j] if j < len(added) else None,
                        "changed",
                    ))
                i += 1
            else:
                pairs.extend(LinePair(line, None, "removed") for line in lines)

        else:
            pairs.extend(LinePair(None, line, "added") for line in lines)

        i += 1

    return pairs
