#!/usr/bin/env python3

import argparse
import logging
import time

from dagster_bam_splits.components.stream_bam import PysamRecordSource, compute_splits
from dagster_bam_splits.splits.calculator import DEFAULT_SPLIT_SIZE, SplitConfig
from dagster_bam_splits.splits.errors import BamSplitError
from dagster_bam_splits.splits.intervals import parse_intervals


def main():
    """Print the splits of a BAM file."""
    parser = argparse.ArgumentParser(description=main.__doc__)
    parser.add_argument("bam", help="Indexed BAM file")
    parser.add_argument("--split-size", type=int, default=DEFAULT_SPLIT_SIZE)
    parser.add_argument("--min-split-size", type=int, default=0)
    parser.add_argument("--intervals", help='e.g. "chr21:5000-9999,chr21:20000-22999"')
    parser.add_argument(
        "--split-pairs",
        action="store_true",
        help="Allow mates of a read pair to land in different splits",
    )
    args = parser.parse_args()

    logging.basicConfig(level=logging.INFO)

    try:
        start_time = time.time()
        intervals = None
        if args.intervals:
            reference_names = PysamRecordSource(args.bam).reference_names
            intervals = parse_intervals(args.intervals, reference_names)
        config = SplitConfig(
            keep_paired_reads_together=not args.split_pairs,
            intervals=intervals,
            target_split_size_bytes=args.split_size,
            minimum_split_size_bytes=args.min_split_size,
        )
        splits = compute_splits(args.bam, config)

        for split_id, split in enumerate(splits):
            print(
                f"   Split {split_id}: [{split.start}, {split.end}) "
                f"~{split.compressed_span():,} bytes, {len(split.chunks)} chunks"
            )

        elapsed = time.time() - start_time
        print(f"✅ {len(splits)} splits computed in {elapsed:.2f} seconds")

    except (BamSplitError, ValueError) as e:
        print(f"❌ Error: {e}")
        return 1

    return 0


if __name__ == "__main__":
    raise SystemExit(main())
