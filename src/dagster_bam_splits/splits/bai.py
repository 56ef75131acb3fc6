"""
BAM index (.bai) reader.

Parses the binning index and the linear index of every reference and answers
"which chunks can hold reads overlapping this interval" queries. The parsed
structures are immutable and meant to be shared by every split of the file.
"""

import logging
import os
import struct
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence, Tuple

import numpy as np

from .errors import InvalidIntervalError, MalformedIndexError
from .intervals import GenomicInterval
from .virtual_offset import Chunk, VirtualOffset

logger = logging.getLogger(__name__)

BAI_MAGIC = b"BAI\x01"
PSEUDO_BIN = 37450
LINEAR_SHIFT = 14
MAX_INDEXED_POSITION = 1 << 29

# (shift, first bin id) of each level of the binning scheme, coarsest first
BIN_LEVELS = ((26, 1), (23, 9), (20, 73), (17, 585), (14, 4681))


def reg2bin(beg: int, end: int) -> int:
    """Smallest bin fully containing the 0-based half-open range [beg, end)."""
    end -= 1
    for shift, first in reversed(BIN_LEVELS):
        if beg >> shift == end >> shift:
            return first + (beg >> shift)
    return 0


def reg2bins(beg: int, end: int) -> List[int]:
    """All bins that may hold reads overlapping the 0-based range [beg, end)."""
    end = min(end, MAX_INDEXED_POSITION) - 1
    bins = [0]
    for shift, first in BIN_LEVELS:
        bins.extend(range(first + (beg >> shift), first + (end >> shift) + 1))
    return bins


@dataclass(frozen=True)
class ReferenceIndex:
    """Bins, linear index and pseudo-bin counts of one reference sequence."""

    bins: Dict[int, Tuple[Chunk, ...]] = field(default_factory=dict)
    linear: Tuple[VirtualOffset, ...] = ()
    mapped: Optional[int] = None
    unmapped: Optional[int] = None

    def linear_lower_bound(self, beg: int) -> VirtualOffset:
        """Smallest offset of any read overlapping the 16kb window of beg."""
        if not self.linear:
            return VirtualOffset(0, 0)
        window = beg >> LINEAR_SHIFT
        return self.linear[min(window, len(self.linear) - 1)]


class _Cursor:
    def __init__(self, data: bytes, source: str):
        self.data = data
        self.source = source
        self.pos = 0

    def read(self, fmt: str) -> tuple:
        try:
            values = struct.unpack_from(fmt, self.data, self.pos)
        except struct.error:
            raise MalformedIndexError(
                f"'{self.source}': index truncated at byte {self.pos}"
            )
        self.pos += struct.calcsize(fmt)
        return values

    def read_count(self) -> int:
        (count,) = self.read("<i")
        if count < 0:
            raise MalformedIndexError(
                f"'{self.source}': negative count {count} at byte {self.pos - 4}"
            )
        return count


class BamIndex:
    """Parsed BAI file."""

    def __init__(
        self,
        references: Sequence[ReferenceIndex],
        unplaced_unmapped: Optional[int] = None,
        source: str = "<memory>",
    ):
        self.references = tuple(references)
        self.unplaced_unmapped = unplaced_unmapped
        self.source = source

        offsets = []
        for ref in self.references:
            for chunks in ref.bins.values():
                for chunk in chunks:
                    offsets.append(chunk.start.encoded)
                    offsets.append(chunk.end.encoded)
            offsets.extend(v.encoded for v in ref.linear if v.encoded)
        self._offsets = np.unique(np.array(offsets, dtype=np.uint64))

    @classmethod
    def from_file(cls, path: str, reference_names: Optional[Sequence[str]] = None):
        with open(path, "rb") as handle:
            data = handle.read()
        return cls.from_bytes(data, reference_names, source=os.fspath(path))

    @classmethod
    def from_bytes(
        cls,
        data: bytes,
        reference_names: Optional[Sequence[str]] = None,
        source: str = "<memory>",
    ) -> "BamIndex":
        cursor = _Cursor(data, source)
        if cursor.read("<4s")[0] != BAI_MAGIC:
            raise MalformedIndexError(f"'{source}': not a BAI file")

        n_ref = cursor.read_count()
        if reference_names is not None and n_ref != len(reference_names):
            raise MalformedIndexError(
                f"'{source}': index has {n_ref} references, header has {len(reference_names)}"
            )

        references = []
        for _ in range(n_ref):
            bins = {}
            mapped = unmapped = None
            for _ in range(cursor.read_count()):
                (bin_id,) = cursor.read("<I")
                n_chunk = cursor.read_count()
                values = cursor.read(f"<{2 * n_chunk}Q")
                if bin_id == PSEUDO_BIN:
                    if n_chunk == 2:
                        mapped, unmapped = values[2], values[3]
                    continue
                bins[bin_id] = tuple(
                    Chunk(
                        VirtualOffset.from_encoded(values[i]),
                        VirtualOffset.from_encoded(values[i + 1]),
                    )
                    for i in range(0, len(values), 2)
                )
            n_intv = cursor.read_count()
            linear = tuple(
                VirtualOffset.from_encoded(v) for v in cursor.read(f"<{n_intv}Q")
            )
            references.append(ReferenceIndex(bins, linear, mapped, unmapped))

        unplaced_unmapped = None
        remaining = len(data) - cursor.pos
        if remaining == 8:
            (unplaced_unmapped,) = cursor.read("<Q")
        elif remaining:
            raise MalformedIndexError(
                f"'{source}': {remaining} unexpected trailing bytes in index"
            )

        logger.debug(f"Loaded index {source} with {n_ref} references")
        return cls(references, unplaced_unmapped, source)

    def chunks_overlapping(self, interval: GenomicInterval) -> List[Chunk]:
        """
        Merged chunks that may contain reads overlapping the interval.

        May include reads outside the interval, never misses one inside it.
        """
        if not 0 <= interval.reference_index < len(self.references):
            raise InvalidIntervalError(
                f"'{self.source}': no index for reference {interval.reference_index}",
                str(interval),
            )
        ref = self.references[interval.reference_index]
        beg = interval.start - 1
        min_offset = ref.linear_lower_bound(beg)
        chunks = [
            chunk
            for bin_id in reg2bins(beg, interval.end)
            for chunk in ref.bins.get(bin_id, ())
            if chunk.end > min_offset
        ]
        return Chunk.merge(chunks)

    def first_record_offset(self) -> Optional[VirtualOffset]:
        starts = [
            chunk.start
            for ref in self.references
            for chunks in ref.bins.values()
            for chunk in chunks
        ]
        return min(starts) if starts else None

    def last_record_offset_bound(self) -> Optional[VirtualOffset]:
        ends = [
            chunk.end
            for ref in self.references
            for chunks in ref.bins.values()
            for chunk in chunks
        ]
        return max(ends) if ends else None

    def record_offsets(self) -> np.ndarray:
        """Sorted encoded offsets of record starts known to the index."""
        return self._offsets

    def anchor_before(
        self, offset: VirtualOffset, strict: bool = False
    ) -> Optional[VirtualOffset]:
        """Greatest record-aligned offset at (or, if strict, strictly) before offset."""
        side = "left" if strict else "right"
        i = int(np.searchsorted(self._offsets, np.uint64(offset.encoded), side=side)) - 1
        if i < 0:
            return None
        return VirtualOffset.from_encoded(int(self._offsets[i]))

    @property
    def mapped_counts(self) -> List[Optional[int]]:
        return [ref.mapped for ref in self.references]


def find_index(bam_path: str) -> Optional[str]:
    """Locate the .bai next to a BAM file (x.bam.bai, then x.bai)."""
    candidates = [f"{bam_path}.bai"]
    root, ext = os.path.splitext(bam_path)
    if ext == ".bam":
        candidates.append(f"{root}.bai")
    for candidate in candidates:
        if os.path.exists(candidate):
            return candidate
    return None
