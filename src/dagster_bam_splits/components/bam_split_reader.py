"""
BAM Split Reader Component

A configurable component that reads the records of one planned split and
reports what it saw.
"""

import time
from typing import Callable, List, Optional

import dagster
import numpy as np
import pysam
from dagster import OpExecutionContext, op

from dagster_bam_splits.splits.reader import SplitRecordReader

from .stream_bam import PysamRecordSource, format_progress
from .types import BamSplit, SplitSummary


def to_python_types(obj):
    """Recursively convert numpy and array types to Python types."""
    if isinstance(obj, np.ndarray):
        return obj.tolist()
    elif isinstance(obj, np.integer):
        return int(obj)
    elif isinstance(obj, np.floating):
        return float(obj)
    elif isinstance(obj, np.bool_):
        return bool(obj)
    elif isinstance(obj, dict):
        return {k: to_python_types(v) for k, v in obj.items()}
    elif isinstance(obj, (list, tuple)):
        return [to_python_types(item) for item in obj]
    elif hasattr(obj, "tolist"):
        # array.array, as used by pysam for base qualities
        return obj.tolist()
    else:
        return obj


def serialize_reads(reads: List[pysam.AlignedSegment]) -> List[dict]:
    """
    Convert pysam AlignedSegment objects to serializable dictionaries.

    Only extracts the essential read information needed for processing.
    """
    serialized = []
    for read in reads:
        read_dict = {
            "query_name": read.query_name,
            "flag": read.flag,
            "reference_id": read.reference_id,
            "reference_start": read.reference_start,
            "mapping_quality": read.mapping_quality,
            "cigarstring": read.cigarstring,
            "next_reference_id": read.next_reference_id,
            "next_reference_start": read.next_reference_start,
            "template_length": read.template_length,
            "query_sequence": read.query_sequence,
            "query_qualities": read.query_qualities,
        }
        serialized.append(to_python_types(read_dict))
    return serialized


def summarize_split(
    bam_split: BamSplit,
    reader: SplitRecordReader,
    on_progress: Optional[Callable[[int], None]] = None,
    log_every: int = 0,
) -> SplitSummary:
    """Stream the split once and count what it holds."""
    split = bam_split.split
    summary = SplitSummary(
        split_id=bam_split.split_id,
        total_splits=bam_split.total_splits,
        bam_path=split.path,
        start=str(split.start),
        end=str(split.end),
    )
    total_bases = 0
    last = None
    while reader.advance():
        read = reader.current()
        summary.reads_in_split += 1
        if on_progress and log_every and summary.reads_in_split % log_every == 0:
            on_progress(summary.reads_in_split)
        if read.is_unmapped:
            summary.unmapped_reads += 1
        else:
            summary.mapped_reads += 1
        if read.is_paired:
            summary.paired_reads += 1
        total_bases += read.query_length or 0
        if summary.first_key is None:
            summary.first_key = reader.current_key()
            summary.first_read = serialize_reads([read])[0]
        last = read
        summary.last_key = reader.current_key()
    if last is not None:
        summary.last_read = serialize_reads([last])[0]
    if summary.reads_in_split:
        summary.avg_read_length = round(total_bases / summary.reads_in_split, 1)
    return summary


class BamSplitReader(dagster.Model, dagster.Resolvable):
    """
    Op component that reads one BAM split.

    Each instance of the op owns exactly one split; nothing is shared
    between readers except the read-only BAM file.
    """

    name: str = "read_bam_split"
    log_every: int = 100000  # Reads between progress messages

    def build_defs(self, context):
        @op(name=self.name)
        def read_bam_split(context: OpExecutionContext, bam_split: BamSplit) -> dict:
            """
            Reads every record of the split and returns its SplitSummary.
            """
            split = bam_split.split
            context.log.info(
                f"Reading split {bam_split.split_id + 1}/{bam_split.total_splits}: {split}"
            )
            start_time = time.time()

            def log_progress(reads_processed: int) -> None:
                elapsed_time = time.time() - start_time
                rate = reads_processed / elapsed_time if elapsed_time > 0 else 0
                context.log.info(
                    format_progress(
                        bam_split.split_id + 1, bam_split.total_splits, reads_processed, rate
                    )
                )

            source = PysamRecordSource(split.path)
            with SplitRecordReader(split, source) as reader:
                summary = summarize_split(bam_split, reader, log_progress, self.log_every)

            elapsed_time = time.time() - start_time
            rate = summary.reads_in_split / elapsed_time if elapsed_time > 0 else 0
            context.log.info(
                format_progress(
                    bam_split.split_id + 1,
                    bam_split.total_splits,
                    summary.reads_in_split,
                    rate,
                )
                + " (FINAL)"
            )
            context.log.info(
                f"Split {bam_split.split_id} read: {summary.mapped_reads} mapped, "
                f"{summary.unmapped_reads} unmapped, {summary.paired_reads} paired reads"
            )
            return summary.to_dict()

        return read_bam_split

