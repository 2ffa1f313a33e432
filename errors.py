"""
Error kinds raised by the alignment pipeline.

Per-subject errors (malformed input, empty timelines) are caught by the batch
layer and recorded as diagnostics. A degenerate study window is a
configuration error and stops the run.
"""

from typing import Optional


class AlignmentError(Exception):
    """Base class for pipeline errors."""


class MalformedInputError(AlignmentError, ValueError):
    """A raw record could not be parsed (timestamp or field)."""

    def __init__(self, message: str,
                 source: Optional[str] = None,
                 row: Optional[int] = None,
                 value=None):
        self.source = source
        self.row = row
        self.value = value
        details = []
        if source is not None:
            details.append(f"source={source}")
        if row is not None:
            details.append(f"row={row}")
        if value is not None:
            details.append(f"value={value!r}")
        if details:
            message = f"{message} ({', '.join(details)})"
        super().__init__(message)


class EmptyTimelineError(AlignmentError):
    """A metric was requested for a timeline with zero samples."""


class DegenerateWindowError(AlignmentError, ZeroDivisionError):
    """The study window yields no expected instants (or has zero length)."""


class InvariantViolation(UserWarning):
    """Residual duplicate timestamps found after alignment."""
