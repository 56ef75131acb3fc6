"""
Split calculation.

Turns the framework's coarse byte ranges into record-aligned virtual offset
splits, optionally restricted to genomic intervals, and hands whole-file
splits to the pair-boundary resolver when read pairs must stay together.
"""

import logging
from dataclasses import dataclass, replace
from typing import List, Optional, Sequence, Tuple

from .errors import EmptyFirstSplitError, MissingIndexError
from .intervals import GenomicInterval, IntervalMerger, normalize
from .pairing import PairBoundaryResolver
from .virtual_offset import Chunk, VirtualOffset

logger = logging.getLogger(__name__)

DEFAULT_SPLIT_SIZE = 128 * 1024 * 1024
DEFAULT_PAIR_LOOKAHEAD = 10000
SPLIT_SLOP = 1.1


@dataclass(frozen=True)
class SplitConfig:
    keep_paired_reads_together: bool = True
    intervals: Optional[Tuple[GenomicInterval, ...]] = None
    target_split_size_bytes: int = DEFAULT_SPLIT_SIZE
    minimum_split_size_bytes: int = 0
    pair_lookahead_limit: int = DEFAULT_PAIR_LOOKAHEAD
    split_slop: float = SPLIT_SLOP

    def __post_init__(self):
        if self.target_split_size_bytes <= 0:
            raise ValueError(
                f"target_split_size_bytes must be positive: {self.target_split_size_bytes}"
            )
        if self.minimum_split_size_bytes < 0:
            raise ValueError(
                f"minimum_split_size_bytes must not be negative: {self.minimum_split_size_bytes}"
            )
        if self.pair_lookahead_limit <= 0:
            raise ValueError(
                f"pair_lookahead_limit must be positive: {self.pair_lookahead_limit}"
            )
        if self.split_slop < 1:
            raise ValueError(f"split_slop must be at least 1: {self.split_slop}")
        if self.intervals is not None:
            object.__setattr__(self, "intervals", tuple(self.intervals))


@dataclass(frozen=True)
class FileSplit:
    """
    A unit of work: records starting in [start, end) of one BAM file.

    Interval-restricted splits also carry the normalized intervals and the
    index chunks, clipped to [start, end), that hold candidate records.
    """

    path: str
    start: VirtualOffset
    end: VirtualOffset
    intervals: Tuple[GenomicInterval, ...] = ()
    chunks: Tuple[Chunk, ...] = ()

    @property
    def is_empty(self) -> bool:
        return self.start >= self.end

    def compressed_span(self) -> int:
        """Approximate size in compressed bytes."""
        return self.end.block_start - self.start.block_start

    def __str__(self):
        return f"{self.path}:[{self.start}, {self.end})"


def propose_byte_ranges(
    file_size: int, target: int, slop: float = SPLIT_SLOP
) -> List[Tuple[int, int]]:
    """
    Fixed-size byte ranges over the file, the way the host framework cuts
    files: the last range absorbs a remainder of up to slop * target.
    """
    ranges = []
    start = 0
    remaining = file_size
    while remaining / target > slop:
        ranges.append((start, start + target))
        start += target
        remaining -= target
    if remaining > 0:
        ranges.append((start, file_size))
    return ranges


class SplitCalculator:
    """
    Computes the splits of one BAM file.

    source  -- record decoder: ``records_from(offset)`` yielding
               ``(VirtualOffset, record)``, plus ``first_record_offset``,
               ``reference_names`` and ``sort_order``
    locator -- ``next_block_start(byte_offset)`` of the BGZF layer
    index   -- parsed BamIndex, or None for an unindexed file
    """

    def __init__(self, path: str, source, locator, index, file_size: int):
        self.path = path
        self.source = source
        self.locator = locator
        self.index = index
        self.file_size = file_size
        self.end_of_file = VirtualOffset(file_size, 0)

    def compute(self, config: SplitConfig) -> List[FileSplit]:
        intervals = None
        if config.intervals is not None:
            intervals = normalize(config.intervals, len(self.source.reference_names))

        first = self.source.first_record_offset
        if self.index is None:
            if intervals is not None:
                raise MissingIndexError(f"'{self.path}': intervals given but no BAM index found")
            logger.warning(f"'{self.path}' has no index, using a single split")
            return [FileSplit(self.path, first, self.end_of_file)]

        splits = self.whole_file_splits(config, first)

        if intervals is not None:
            if config.keep_paired_reads_together:
                logger.info("Pairing preservation does not apply to interval-restricted splits")
            splits = self.restrict_to_intervals(splits, intervals)
        elif config.keep_paired_reads_together:
            if self.source.sort_order == "coordinate":
                logger.debug(f"'{self.path}' is coordinate sorted, only adjacent mates are joined")
            resolver = PairBoundaryResolver(
                self.source, self.anchor_before, config.pair_lookahead_limit, self.path
            )
            splits = resolver.resolve(splits)

        logger.info(f"Computed {len(splits)} splits for '{self.path}'")
        return splits

    def whole_file_splits(self, config: SplitConfig, first: VirtualOffset) -> List[FileSplit]:
        ranges = propose_byte_ranges(
            self.file_size, config.target_split_size_bytes, config.split_slop
        )
        boundaries = [first]
        for byte_start, _ in ranges[1:]:
            boundaries.append(self.snap(byte_start))
        boundaries.append(self.end_of_file)

        if len(boundaries) > 2 and boundaries[1] <= first:
            raise EmptyFirstSplitError(self.path, first, boundaries[1])

        splits = []
        for start, end in zip(boundaries, boundaries[1:]):
            if start >= end:
                logger.debug(f"Dropping empty split at {start}")
                continue
            splits.append(FileSplit(self.path, start, end))

        if len(splits) > 1 and splits[-1].compressed_span() < config.minimum_split_size_bytes:
            tail = splits.pop()
            logger.debug(f"Merging undersized trailing split {tail}")
            splits[-1] = replace(splits[-1], end=tail.end)
        return splits

    def snap(self, byte_offset: int) -> VirtualOffset:
        """First record starting in the first BGZF block at or after byte_offset."""
        block = self.locator.next_block_start(byte_offset)
        if block is None:
            return self.end_of_file
        target = VirtualOffset(block, 0)
        if target >= self.end_of_file:
            return self.end_of_file
        for offset, _ in self.source.records_from(self.anchor_before(target)):
            if offset >= target:
                return offset
        return self.end_of_file

    def anchor_before(self, offset: VirtualOffset) -> VirtualOffset:
        """Record-aligned offset strictly before offset to start decoding from."""
        first = self.source.first_record_offset
        anchor = self.index.anchor_before(offset, strict=True) if self.index else None
        if anchor is None or anchor < first:
            return first
        return anchor

    def restrict_to_intervals(
        self, splits: Sequence[FileSplit], intervals: Sequence[GenomicInterval]
    ) -> List[FileSplit]:
        chunks = IntervalMerger(self.index).to_virtual_offset_ranges(
            intervals, self.end_of_file, self.source.first_record_offset
        )
        restricted = []
        for split in splits:
            clipped = [
                c for c in (chunk.intersect(split.start, split.end) for chunk in chunks) if c
            ]
            if clipped:
                restricted.append(
                    FileSplit(
                        self.path,
                        clipped[0].start,
                        clipped[-1].end,
                        tuple(intervals),
                        tuple(clipped),
                    )
                )
        logger.debug(f"{len(chunks)} index chunks cover {len(intervals)} intervals")
        return restricted
