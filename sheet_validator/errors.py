from __future__ import annotations


class ParseError(ValueError):
    """The input bytes are not a spreadsheet the loader understands."""


class RuleSetError(ValueError):
    """A rule source does not have the expected sheet or record shape."""


class SessionError(RuntimeError):
    """A report or export was requested before any successful analysis."""


class SourceError(RuntimeError):
    """The remote file or dictionary store could not serve a request."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code
