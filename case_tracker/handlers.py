
# event handlers: the output layer.

# a handler receives an ObservationResult and decides what to do with it.
# formatting lives here, the models stay plain data.

# to add a new output target, implement a class with:
#     async def handle(self, result: ObservationResult) -> None: ...
# and pass it to CaseWatcher / CaseMonitor.

import logging

from case_tracker.canonical import is_absent
from case_tracker.diff_render import render_diff
from case_tracker.models import ObservationResult, iso
from case_tracker.parser import parse_status

log = logging.getLogger(__name__)

_R = "\033[0m"   # reset
_CHANGED = "\033[33m"   # yellow
_ABSENT  = "\033[90m"   # grey
_ERROR   = "\033[31m"   # red


class ConsoleEventHandler:
    """
    Prints one line per observation, optionally followed by unified diffs.

    Format:
        [2026-02-21T12:39:08Z] IOE0912345678 | caseDetails=same | caseStatus=CHANGED | receiptInfo=ABSENT | Status=Case Was Approved (DA: APPROVED/NOTICE ORDERED)

    Total fetch failures print an ERROR line instead; "nothing changed" and
    "could not fetch" never look alike.
    """

    def __init__(self, show_diff: bool = False, color: bool = True) -> None:
        self.show_diff = show_diff
        self.color = color

    async def handle(self, result: ObservationResult) -> None:
        print(self.format(result), flush=True)
        if self.show_diff and result.ok and result.previous is not None:
            for source_id in result.changed_sources():
                text = render_diff(
                    source_id,
                    result.previous.get(source_id),
                    result.current.get(source_id),
                )
                if text:
                    print(text, end="", flush=True)

    def _paint(self, code: str, text: str) -> str:
        return f"{code}{text}{_R}" if self.color else text

    def format(self, r: ObservationResult) -> str:
        head = f"[{iso(r.observed_at.replace(microsecond=0))}] {r.entity_id}"
        if not r.ok:
            return f"{head} | {self._paint(_ERROR, 'ERROR')} | {r.error}"

        fields = []
        for source_id, payload in r.current.payloads.items():
            if r.change_flags.get(source_id):
                state = self._paint(_CHANGED, "CHANGED")
            elif is_absent(payload):
                state = self._paint(_ABSENT, "ABSENT")
            else:
                state = "same" if r.previous is not None else "new"
            fields.append(f"{source_id}={state}")

        status = parse_status(r.current.get("caseStatus"))
        if status:
            fields.append(
                f"Status={status.status_title} "
                f"({status.action_code}: {status.action_code_description})"
            )
        return " | ".join([head, *fields])
