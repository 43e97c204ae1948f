"""Exceptions surfaced by the logbook import/export pipeline.

Only failures that stop a batch are raised. Per-field rejections, skipped
records and contact-link failures are counted and logged instead.
"""

from __future__ import annotations


class LogbookError(Exception):
    """Base class for pipeline errors.

    `processed` is the number of records committed before the failure, so a
    caller can report the retained prefix of an interrupted import.
    """

    def __init__(self, message: str, processed: int = 0) -> None:
        super().__init__(message)
        self.processed = processed


class MalformedFormat(LogbookError):
    """The ADIF stream has no usable header or is structurally unrecoverable."""


class TruncatedField(MalformedFormat):
    """A field declares more bytes than remain in the stream."""


class StorageFailure(LogbookError):
    """A database read or write failed; the original error is chained."""


class ImportCanceled(LogbookError):
    """The caller's cancellation signal was observed between records."""
