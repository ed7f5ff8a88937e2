"""Error taxonomy for the analytics engine.

// [LAW:one-source-of-truth] Every error kind the engine raises is declared here.

Malformed reply links are deliberately absent: a missing, self-referential or
forward ReplyTo is steady-state input and resolved by the thread builder.
"""


class FmailLensError(Exception):
    """Base class for engine errors."""


class SourceUnavailable(FmailLensError):
    """A message source call failed (IO, timeout, transport)."""

    def __init__(self, operation: str, cause: BaseException | None = None, detail: str = ""):
        self.operation = operation
        self.cause = cause
        self.detail = detail or (str(cause) if cause is not None else "")
        message = f"{operation} failed"
        if self.detail:
            message = f"{message}: {self.detail}"
        super().__init__(message)


class InvalidWindow(FmailLensError, ValueError):
    """Window bounds or bucket size cannot describe a non-negative span."""
