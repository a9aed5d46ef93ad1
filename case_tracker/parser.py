
# Read-only views over the three source payloads, used for display only.

# Nothing here feeds change detection: fingerprints are always computed over
# the whole payload. Every helper accepts ABSENT (or any non-dict) and
# degrades to None / [] / "" instead of raising, because payload shapes are
# not under our control.

from dataclasses import dataclass
from typing import Any

from case_tracker.event_codes import describe
from case_tracker.models import Snapshot


@dataclass
class CaseOverview:
    receipt_number: str
    form_type: str
    form_name: str
    applicant_name: str
    submission_date: str
    channel: str
    closed: bool


@dataclass
class StatusDisplay:
    status_title: str
    status_text: str
    action_code: str
    action_code_description: str
    action_date: str


@dataclass
class ReceiptDisplay:
    form: str
    location: str
    receipt_date: str
    subtype: str


@dataclass
class TimelineEvent:
    event_code: str
    event_description: str
    date: str


def _obj(value: Any) -> dict:
    return value if isinstance(value, dict) else {}


def parse_overview(details: Any) -> CaseOverview | None:
    d = _obj(details)
    if not d:
        return None
    return CaseOverview(
        receipt_number=d.get("receiptNumber", ""),
        form_type=d.get("formType", ""),
        form_name=d.get("formName", ""),
        applicant_name=d.get("applicantName", ""),
        submission_date=d.get("submissionDate", ""),
        channel=d.get("elisChannelType", ""),
        closed=bool(d.get("closed", False)),
    )


def parse_status(status: Any) -> StatusDisplay | None:
    s = _obj(status)
    if not s:
        return None
    code = s.get("currentActionCode", "")
    return StatusDisplay(
        status_title=s.get("statusTitle", ""),
        status_text=s.get("statusText", ""),
        action_code=code,
        action_code_description=describe(code),
        action_date=s.get("currentActionCodeDate", ""),
    )


def parse_receipt(info: Any) -> ReceiptDisplay | None:
    d = _obj(_obj(info).get("receipt_details"))
    if not d:
        return None
    return ReceiptDisplay(
        form=d.get("form", ""),
        location=d.get("location", ""),
        receipt_date=d.get("receipt_date", ""),
        subtype=d.get("subtype", ""),
    )


def parse_timeline(details: Any) -> list[TimelineEvent]:
    events = _obj(details).get("events") or []
    return [
        TimelineEvent(
            event_code=e.get("eventCode", ""),
            event_description=describe(e.get("eventCode", "")),
            date=e.get("eventDateTime", ""),
        )
        for e in events
        if isinstance(e, dict)
    ]


def display_label(snapshot: Snapshot) -> str:
    """Form type for the case list: from case details, else from receipt info."""
    overview = parse_overview(snapshot.get("caseDetails"))
    if overview and overview.form_type:
        return overview.form_type
    receipt = parse_receipt(snapshot.get("receiptInfo"))
    return receipt.form if receipt else ""
