"""Exception hierarchy for printwatch."""

from __future__ import annotations


class PrintwatchError(Exception):
    """Base exception for all printwatch errors.

    Carries an optional *cause* so callers can inspect the underlying
    transport or parsing failure without unwrapping ``__cause__``.
    """

    def __init__(self, message: str, *, cause: Exception | None = None) -> None:
        super().__init__(message)
        self.cause = cause


class StatusClientError(PrintwatchError):
    """A vendor API call failed: timeout, refused, non-2xx or malformed body.

    Always recoverable.  Callers treat it as "unknown, try later".
    """


class ConfigError(PrintwatchError):
    """Invalid configuration detected at startup."""


class PrinterNotFoundError(PrintwatchError, KeyError):
    """Raised when a printer id is not in the fleet registry."""

    def __init__(self, printer_id: str) -> None:
        super().__init__(f"Printer not found: {printer_id!r}")
        self.printer_id = printer_id

    def __str__(self) -> str:
        return self.args[0]
