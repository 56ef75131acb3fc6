"""
BGZF virtual file offsets and the index chunks built from them.
"""

from dataclasses import dataclass
from typing import Iterable, List

from Bio import bgzf

from .errors import MalformedIndexError


@dataclass(frozen=True, order=True)
class VirtualOffset:
    """
    Position of a record inside a BGZF file.

    Ordered by (compressed block start, offset within the uncompressed block).
    """

    block_start: int
    within_block: int = 0

    def __post_init__(self):
        if not 0 <= self.block_start < 1 << 48:
            raise ValueError(f"Block start out of range: {self.block_start}")
        if not 0 <= self.within_block < 1 << 16:
            raise ValueError(f"Within-block offset out of range: {self.within_block}")

    @classmethod
    def from_encoded(cls, encoded: int) -> "VirtualOffset":
        block_start, within_block = bgzf.split_virtual_offset(int(encoded))
        return cls(block_start, within_block)

    @property
    def encoded(self) -> int:
        return bgzf.make_virtual_offset(self.block_start, self.within_block)

    def byte_offset_floor(self) -> int:
        """Compressed block start, usable as a plain byte offset."""
        return self.block_start

    def __str__(self):
        return f"{self.block_start}:{self.within_block}"


@dataclass(frozen=True)
class Chunk:
    """Half-open virtual offset range [start, end) of the file."""

    start: VirtualOffset
    end: VirtualOffset

    def __post_init__(self):
        if self.end < self.start:
            raise MalformedIndexError(f"Chunk ends before it starts: {self}")

    def intersect(self, start: VirtualOffset, end: VirtualOffset):
        """Clip to [start, end); None when nothing is left."""
        lo = max(self.start, start)
        hi = min(self.end, end)
        if lo >= hi:
            return None
        return Chunk(lo, hi)

    @staticmethod
    def merge(chunks: Iterable["Chunk"]) -> List["Chunk"]:
        """Sort by start and coalesce overlapping or adjacent chunks."""
        merged: List[Chunk] = []
        for chunk in sorted(chunks, key=lambda c: (c.start, c.end)):
            if merged and chunk.start <= merged[-1].end:
                if chunk.end > merged[-1].end:
                    merged[-1] = Chunk(merged[-1].start, chunk.end)
            else:
                merged.append(chunk)
        return merged

    def __str__(self):
        return f"[{self.start}, {self.end})"
