# nsfw_scan/errors.py


class ScanError(Exception):
    pass


class InvalidInput(ScanError):
    """Image cannot be preprocessed (zero-size or undecodable)."""


class BackendUnavailable(ScanError):
    """Inference backend not loaded yet, or failed to load."""


class InferenceFailed(ScanError):
    pass


class AlreadyRunning(ScanError):
    pass


class DeletionFailed(ScanError):
    """External delete failed; `deleted` lists the refs that were removed anyway."""

    def __init__(self, message: str, deleted=(), report=None):
        super().__init__(message)
        self.deleted = tuple(deleted)
        self.report = report


class MoveFailed(ScanError):
    def __init__(self, item, reason: str):
        super().__init__(f"{item.asset.identifier}: {reason}")
        self.item = item
        self.reason = reason
