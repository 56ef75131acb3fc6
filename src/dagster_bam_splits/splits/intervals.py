"""
Genomic intervals: parsing from configuration text, normalization, the
mapping onto index chunks, and the exact per-record overlap test.

Intervals are 1-based and inclusive on both ends, like samtools regions.
"""

import logging
from bisect import bisect_right
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional, Sequence

from .errors import InvalidIntervalError, MissingIndexError
from .virtual_offset import Chunk, VirtualOffset

logger = logging.getLogger(__name__)

# Reference index of unplaced unmapped reads, selected with the "*" token
UNMAPPED = -1
UNMAPPED_TOKEN = "*"
INTERVAL_DELIMITER = ","
MAX_POSITION = (1 << 31) - 1


@dataclass(frozen=True, order=True)
class GenomicInterval:
    reference_index: int
    start: int
    end: int

    @property
    def is_unmapped(self) -> bool:
        return self.reference_index == UNMAPPED


def parse_interval(token: str, reference_names: Sequence[str]) -> GenomicInterval:
    """Parse one ``name:start-end`` (or ``name``, or ``*``) token."""
    token = token.strip()
    if not token:
        raise InvalidIntervalError("Empty interval", token)
    if token == UNMAPPED_TOKEN:
        return GenomicInterval(UNMAPPED, 1, MAX_POSITION)

    name, start, end = token, 1, MAX_POSITION
    if token not in reference_names and ":" in token:
        name, _, span = token.rpartition(":")
        start_text, sep, end_text = span.partition("-")
        try:
            start = int(start_text)
            end = int(end_text) if sep else MAX_POSITION
        except ValueError:
            raise InvalidIntervalError("Malformed interval", token)

    try:
        reference_index = list(reference_names).index(name)
    except ValueError:
        raise InvalidIntervalError("Unknown reference", token)
    if start < 1 or start > end:
        raise InvalidIntervalError("Interval start must be in 1..end", token)
    return GenomicInterval(reference_index, start, end)


def parse_intervals(text: str, reference_names: Sequence[str]) -> List[GenomicInterval]:
    """Parse a delimited list of interval tokens from configuration."""
    tokens = [t for t in text.split(INTERVAL_DELIMITER) if t.strip()]
    if not tokens:
        raise InvalidIntervalError("No intervals given", text)
    return [parse_interval(token, reference_names) for token in tokens]


def format_intervals(
    intervals: Iterable[GenomicInterval], reference_names: Sequence[str]
) -> str:
    tokens = []
    for interval in intervals:
        if interval.is_unmapped:
            tokens.append(UNMAPPED_TOKEN)
        else:
            name = reference_names[interval.reference_index]
            tokens.append(f"{name}:{interval.start}-{interval.end}")
    return INTERVAL_DELIMITER.join(tokens)


def _sort_key(interval: GenomicInterval):
    # unplaced unmapped reads sit after every reference in a sorted BAM
    return (interval.is_unmapped, interval.reference_index, interval.start, interval.end)


def normalize(
    intervals: Iterable[GenomicInterval], reference_count: int
) -> List[GenomicInterval]:
    """
    Validate, sort and coalesce intervals.

    Intervals on the same reference merge when the next one starts at most
    one base after the current one ends. The result does not depend on the
    input order.
    """
    validated = []
    for interval in intervals:
        if not interval.is_unmapped and not 0 <= interval.reference_index < reference_count:
            raise InvalidIntervalError(
                f"Unknown reference index {interval.reference_index}", str(interval)
            )
        if interval.start < 1 or interval.start > interval.end:
            raise InvalidIntervalError("Interval start must be in 1..end", str(interval))
        validated.append(interval)
    if not validated:
        raise InvalidIntervalError("No intervals given")

    merged: List[GenomicInterval] = []
    for interval in sorted(validated, key=_sort_key):
        last = merged[-1] if merged else None
        if (
            last is not None
            and last.reference_index == interval.reference_index
            and interval.start <= last.end + 1
        ):
            merged[-1] = GenomicInterval(
                last.reference_index, last.start, max(last.end, interval.end)
            )
        else:
            merged.append(interval)
    return merged


class IntervalMerger:
    """Maps normalized intervals onto the minimal set of index chunks."""

    def __init__(self, index):
        if index is None:
            raise MissingIndexError("Interval-restricted splitting needs a BAM index")
        self.index = index

    def to_virtual_offset_ranges(
        self,
        intervals: Sequence[GenomicInterval],
        end_of_file: VirtualOffset,
        first_record: Optional[VirtualOffset] = None,
    ) -> List[Chunk]:
        """
        Merged chunks holding candidate records of the intervals.

        Unplaced unmapped reads follow the last indexed chunk, or start at
        first_record when no reference has indexed reads.
        """
        chunks: List[Chunk] = []
        for interval in intervals:
            if interval.is_unmapped:
                start = self.index.last_record_offset_bound() or first_record
                if start is not None and start < end_of_file:
                    chunks.append(Chunk(start, end_of_file))
                continue
            found = self.index.chunks_overlapping(interval)
            logger.debug(f"Interval {interval} -> {len(found)} chunks")
            chunks.extend(found)
        return Chunk.merge(chunks)


class IntervalSet:
    """Exact overlap test of records against normalized intervals."""

    def __init__(self, intervals: Sequence[GenomicInterval]):
        self._starts: Dict[int, List[int]] = {}
        self._ends: Dict[int, List[int]] = {}
        for interval in intervals:
            self._starts.setdefault(interval.reference_index, []).append(interval.start)
            self._ends.setdefault(interval.reference_index, []).append(interval.end)
        self.include_unmapped = UNMAPPED in self._starts

    def overlaps(self, reference_id: int, start: int, end: Optional[int] = None) -> bool:
        """
        Whether the 1-based inclusive span [start, end] on reference_id
        overlaps any interval. Relies on the intervals being disjoint and
        sorted, so their ends are sorted too.
        """
        if reference_id is None or reference_id < 0:
            return self.include_unmapped
        starts = self._starts.get(reference_id)
        if not starts:
            return False
        if end is None or end < start:
            end = start
        i = bisect_right(starts, end) - 1
        return i >= 0 and self._ends[reference_id][i] >= start

    def contains_record(self, record) -> bool:
        """Overlap test for a decoded alignment record (pysam field names)."""
        if record.reference_id is None or record.reference_id < 0:
            return self.include_unmapped
        start = record.reference_start + 1
        end = record.reference_end if record.reference_end is not None else start
        return self.overlaps(record.reference_id, start, end)
