from __future__ import annotations


class DirectoryError(Exception):
    """A directory API call failed.

    ``code`` carries the service error code (e.g. ``RoleAssignmentExists``)
    when the response included one.
    """

    def __init__(self, message: str, *, code: str | None = None, status: int | None = None) -> None:
        super().__init__(message)
        self.code = code
        self.status = status


class TransientError(DirectoryError):
    """Network failure, timeout, throttling or a server-side error; retryable."""


class NotFoundError(DirectoryError):
    pass


class PermissionDeniedError(DirectoryError):
    pass


class AlreadyActiveError(DirectoryError):
    """The role was already active when activation was submitted."""


class AlreadyInactiveError(DirectoryError):
    """The role was no longer active when deactivation was submitted."""


class FilterNotSupportedError(DirectoryError):
    """The collection rejected a server-side principal filter."""
