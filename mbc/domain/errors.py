"""
Exception types raised by the conversion pipeline.

Only queue-build and selection errors ever reach the caller of a run; encode
failures are reported per item through the event bus instead.
"""

from typing import Optional


class MBCError(Exception):
    """Base class for all MBC errors."""

    pass


class ConversionIOError(MBCError):
    """
    Filesystem failure while preparing output.

    Raised when a mirrored output directory cannot be created (permissions,
    path too long, disk full) or when the discard sink for a first pass is
    missing.
    """

    pass


class EncodeError(MBCError):
    """The encoder failed for one item (nonzero exit or failure to spawn)."""

    def __init__(self, message: str, returncode: Optional[int] = None):
        super().__init__(message)
        self.returncode = returncode


class ReaperError(MBCError):
    """Killing encoder processes failed for a reason other than 'none running'."""

    pass


class SelectionCancelled(MBCError):
    """The user aborted an input or output selection."""

    pass


class AlreadyRunningError(MBCError):
    """A run was submitted while another run is still in flight."""

    pass
