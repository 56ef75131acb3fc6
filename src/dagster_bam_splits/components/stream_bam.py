"""
pysam-backed access to BAM files.

Provides the record decoder used by the split calculator and the split
readers, index statistics for logging, and the ``compute_splits`` entry point
that wires a BAM file, its index and its BGZF layout together.
"""

import logging
import os
from dataclasses import dataclass
from typing import Iterator, List, Optional, Tuple

import pysam

from dagster_bam_splits.splits.bai import BamIndex, find_index
from dagster_bam_splits.splits.bgzf import BgzfBlockLocator
from dagster_bam_splits.splits.calculator import FileSplit, SplitCalculator, SplitConfig
from dagster_bam_splits.splits.errors import DecodeError
from dagster_bam_splits.splits.virtual_offset import VirtualOffset

logger = logging.getLogger(__name__)


@dataclass
class BamStats:
    """Read counts of a BAM file, taken from its index metadata."""

    path: str
    num_references: int
    mapped_reads: int
    unmapped_reads: int

    @property
    def total_reads(self) -> int:
        return self.mapped_reads + self.unmapped_reads

    @classmethod
    def from_index(cls, path: str, index: BamIndex) -> "BamStats":
        """
        Counts from the pseudo-bin of every reference plus the trailing
        unplaced-unmapped count, so no record has to be decoded.
        """
        mapped = sum(ref.mapped or 0 for ref in index.references)
        unmapped = sum(ref.unmapped or 0 for ref in index.references)
        unmapped += index.unplaced_unmapped or 0
        return cls(
            path=path,
            num_references=len(index.references),
            mapped_reads=mapped,
            unmapped_reads=unmapped,
        )


def format_progress(
    split_num: int, total_splits: int, reads_processed: int, rate: float = None
) -> str:
    """Format progress message for consistent logging."""
    base = f"Split {split_num}:{total_splits} | Reads: {reads_processed:8d}"
    if rate is not None:
        base += f" | Rate: {rate:6.0f} reads/sec"
    return base


class PysamRecordSource:
    """
    Decodes BAM records from arbitrary record-aligned virtual offsets.

    Each ``records_from`` call opens its own handle, so several record
    streams over the same file never disturb each other.
    """

    def __init__(self, path: str):
        self.path = os.fspath(path)
        with pysam.AlignmentFile(
            self.path, "rb", check_sq=False, ignore_truncation=True
        ) as samfile:
            self.first_record_offset = VirtualOffset.from_encoded(samfile.tell())
            self.reference_names: Tuple[str, ...] = tuple(samfile.references)
            self.sort_order: Optional[str] = (
                samfile.header.to_dict().get("HD", {}).get("SO")
            )

    def records_from(
        self, offset: VirtualOffset
    ) -> Iterator[Tuple[VirtualOffset, pysam.AlignedSegment]]:
        with pysam.AlignmentFile(
            self.path, "rb", check_sq=False, ignore_truncation=True
        ) as samfile:
            try:
                samfile.seek(offset.encoded)
            except (OSError, ValueError) as e:
                raise DecodeError(self.path, offset, f"cannot seek: {e}") from e
            while True:
                position = VirtualOffset.from_encoded(samfile.tell())
                try:
                    record = next(samfile)
                except StopIteration:
                    return
                except (OSError, ValueError) as e:
                    raise DecodeError(self.path, position, str(e)) from e
                yield position, record


def compute_splits(
    bam_path: str, config: SplitConfig, index_path: Optional[str] = None
) -> List[FileSplit]:
    """Compute the splits of a BAM file, using its .bai when one exists."""
    source = PysamRecordSource(bam_path)
    index_path = index_path or find_index(source.path)
    index = None
    if index_path:
        index = BamIndex.from_file(index_path, source.reference_names)
        stats = BamStats.from_index(source.path, index)
        logger.info(
            f"Using index {index_path}: {stats.total_reads:,} reads "
            f"({stats.unmapped_reads:,} unmapped) on {stats.num_references} references"
        )
    locator = BgzfBlockLocator(source.path)
    calculator = SplitCalculator(source.path, source, locator, index, locator.file_size)
    return calculator.compute(config)
