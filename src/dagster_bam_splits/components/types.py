"""
Shared types for BAM split components.
"""

from dataclasses import asdict, dataclass
from typing import Optional

from dagster_bam_splits.splits.calculator import FileSplit


@dataclass
class BamSplit:
    """Represents one planned split of a BAM file with metadata."""

    split_id: int
    total_splits: int
    split: FileSplit


@dataclass
class SplitSummary:
    """What one reader op saw in its split."""

    split_id: int
    total_splits: int
    bam_path: str
    start: str
    end: str
    reads_in_split: int = 0
    mapped_reads: int = 0
    unmapped_reads: int = 0
    paired_reads: int = 0
    avg_read_length: float = 0.0
    first_key: Optional[int] = None
    last_key: Optional[int] = None
    first_read: Optional[dict] = None  # Serialized read
    last_read: Optional[dict] = None

    def to_dict(self) -> dict:
        return asdict(self)
