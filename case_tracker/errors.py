class CaseTrackerError(Exception):
    """Base class for errors raised by the case tracker."""


class StorageError(CaseTrackerError):
    """Reading or writing persisted state failed. Nothing was partially applied."""
