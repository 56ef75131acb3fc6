"""
Errors raised while computing and reading BAM splits.

Every error carries enough context (file, offset, interval token) to
diagnose the failure without re-running the job.
"""

from typing import Optional


class BamSplitError(Exception):
    """Base class for split computation and split reading failures."""

    pass


class MalformedIndexError(BamSplitError):
    """The BAM index is structurally inconsistent."""

    pass


class MissingIndexError(MalformedIndexError):
    """An operation needs the BAM index but none was found."""

    pass


class PairLookaheadExceededError(MalformedIndexError):
    """Mate look-ahead at a split boundary ran past the configured cap."""

    def __init__(self, path: str, offset, limit: int):
        self.path = path
        self.offset = offset
        self.limit = limit
        super().__init__(
            f"'{path}': unresolved read pair at {offset} after {limit} records; "
            "input is not grouped by read name or is corrupt"
        )


class InvalidIntervalError(BamSplitError):
    """A user-supplied genomic interval cannot be used."""

    def __init__(self, message: str, token: Optional[str] = None):
        self.token = token
        if token is not None:
            message = f"{message}: '{token}'"
        super().__init__(message)


class EmptyFirstSplitError(BamSplitError):
    """The first split holds no records, typically because the split size is tiny."""

    def __init__(self, path: str, first_record, boundary):
        self.path = path
        self.first_record = first_record
        self.boundary = boundary
        super().__init__(
            f"'{path}': no reads in first split (first record at {first_record}, "
            f"split ends at {boundary}): bad BAM file or tiny split size? "
            "Increase target_split_size_bytes"
        )


class DecodeError(BamSplitError):
    """A record could not be decoded."""

    def __init__(self, path: str, offset, reason: str = ""):
        self.path = path
        self.offset = offset
        message = f"'{path}': failed to decode record at {offset}"
        if reason:
            message += f": {reason}"
        super().__init__(message)
