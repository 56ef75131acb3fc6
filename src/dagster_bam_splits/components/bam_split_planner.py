"""
BAM Split Planner Component

A reusable op component that computes the splits of an indexed BAM file and
fans them out as dynamic outputs, one per parallel reader.
"""

import time
from typing import Iterator, Optional

import dagster
from dagster import DynamicOut, DynamicOutput, OpExecutionContext, op

from dagster_bam_splits.splits.calculator import (
    DEFAULT_PAIR_LOOKAHEAD,
    DEFAULT_SPLIT_SIZE,
    SplitConfig,
)
from dagster_bam_splits.splits.intervals import parse_intervals

from .stream_bam import PysamRecordSource, compute_splits
from .types import BamSplit


class BamSplitPlanner(dagster.Model, dagster.Resolvable):
    """
    Op component for planning parallel reads of a BAM file.

    Split boundaries are record-aligned virtual offsets; with
    keep_paired_reads_together the boundaries are moved so that mates stay in
    one split. Intervals are given as "chr1:100-200,chr2:5000-6000".
    """

    bam_path: str
    name: str = "plan_bam_splits"
    keep_paired_reads_together: bool = True
    intervals: Optional[str] = None
    target_split_size_bytes: int = DEFAULT_SPLIT_SIZE
    minimum_split_size_bytes: int = 0
    pair_lookahead_limit: int = DEFAULT_PAIR_LOOKAHEAD

    def split_config(self) -> SplitConfig:
        """Translate component configuration into the library's SplitConfig."""
        intervals = None
        if self.intervals:
            reference_names = PysamRecordSource(self.bam_path).reference_names
            intervals = parse_intervals(self.intervals, reference_names)
        return SplitConfig(
            keep_paired_reads_together=self.keep_paired_reads_together,
            intervals=intervals,
            target_split_size_bytes=self.target_split_size_bytes,
            minimum_split_size_bytes=self.minimum_split_size_bytes,
            pair_lookahead_limit=self.pair_lookahead_limit,
        )

    def build_defs(self, context):
        @op(name=self.name, out=DynamicOut())
        def plan_bam_splits(
            context: OpExecutionContext,
        ) -> Iterator[DynamicOutput[BamSplit]]:
            """
            Computes all splits before any reader starts, then yields one
            dynamic output per split. Any failure aborts the whole run.
            """
            bam_path = self.bam_path
            context.log.info(f"Planning splits for: {bam_path}")
            start_time = time.time()

            config = self.split_config()
            splits = compute_splits(bam_path, config)

            context.log.info(
                f"Computed {len(splits)} splits in {time.time() - start_time:.2f} seconds "
                f"(target {config.target_split_size_bytes:,} bytes, "
                f"pairs together: {config.keep_paired_reads_together}, "
                f"intervals: {self.intervals or 'none'})"
            )

            for split_id, split in enumerate(splits):
                yield DynamicOutput(
                    BamSplit(split_id=split_id, total_splits=len(splits), split=split),
                    f"split_{split_id}",
                    metadata={
                        "split_id": split_id,
                        "total_splits": len(splits),
                        "start": str(split.start),
                        "end": str(split.end),
                        "compressed_bytes": split.compressed_span(),
                        "chunks": len(split.chunks),
                    },
                )

        return plan_bam_splits
