
# Case event / action codes as they appear in `eventCode` and
# `currentActionCode`, mapped to their published descriptions.
# Unknown codes are shown as-is.

from types import MappingProxyType

EVENT_CODES: MappingProxyType = MappingProxyType({
    "IAF": "RECEIPT LETTER EMAILED",
    "DA":  "APPROVED/NOTICE ORDERED",
    "EA":  "DENIAL NOTICE ORDERED",
})


def describe(code: str) -> str:
    """Description for `code`, or `code` itself when it isn't in the table."""
    return EVENT_CODES.get(code, code)
