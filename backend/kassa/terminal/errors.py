# Overview: Exceptions raised on the till side of the sync engine.


class TerminalError(Exception):
    """Base for till-side failures."""


class StorageError(TerminalError):
    """
    The local journal could not be written or read.

    Fatal to the action that triggered it: a sale whose append failed must
    not be reported as complete.
    """


class NetworkError(TerminalError):
    """
    The server could not be reached or answered with a 5xx.

    Recoverable: affected sales stay in the journal for the next pass.
    """


class ApiError(TerminalError):
    """The server understood the request and refused it (4xx)."""

    def __init__(self, status_code: int, code: str, message: str, details: dict | None = None):
        super().__init__(f"{status_code} {code}: {message}")
        self.status_code = status_code
        self.code = code
        self.message = message
        self.details = details or {}
