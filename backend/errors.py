"""Exception hierarchy shared by the scheduler, store and Notion sync."""

from __future__ import annotations


class FreedwiseError(Exception):
    """Base class for application errors."""


class ValidationError(FreedwiseError):
    """Malformed or out-of-range input, rejected before any mutation."""


class NotFoundError(FreedwiseError):
    """A referenced bucket, highlight or remote block does not exist."""


class PersistenceError(FreedwiseError):
    """The underlying store failed a read or write."""

    def __init__(self, action: str, detail: str = "") -> None:
        self.action = action
        self.detail = detail
        message = f"Failed to {action}"
        if detail:
            message = f"{message}: {detail}"
        super().__init__(message)


class PartialApplyError(FreedwiseError):
    """Some remote blocks were updated while others failed."""

    def __init__(self, failed: int, attempted: int) -> None:
        self.failed = failed
        self.attempted = attempted
        super().__init__(f"{failed} of {attempted} block operation(s) failed")
