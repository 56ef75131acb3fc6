import logging

import pytest

from dagster_bam_splits.components.stream_bam import (
    BamStats,
    PysamRecordSource,
    compute_splits,
)
from dagster_bam_splits.splits.bai import BamIndex
from dagster_bam_splits.splits.bgzf import BgzfBlockLocator
from dagster_bam_splits.splits.calculator import SplitConfig
from dagster_bam_splits.splits.errors import DecodeError, EmptyFirstSplitError
from dagster_bam_splits.splits.intervals import parse_intervals
from dagster_bam_splits.splits.reader import SplitRecordReader
from dagster_bam_splits.splits.virtual_offset import VirtualOffset

from bam_builder import read_names, write_paired_bam

TARGET = 40000


def split_names(path, splits):
    source = PysamRecordSource(path)
    return [
        [read.query_name for _, read in SplitRecordReader(split, source)]
        for split in splits
    ]


def config(path, intervals=None, **kwargs):
    kwargs.setdefault("target_split_size_bytes", TARGET)
    if intervals:
        intervals = parse_intervals(intervals, PysamRecordSource(path).reference_names)
    return SplitConfig(intervals=intervals, **kwargs)


def test_source_reads_header(paired_bam):
    source = PysamRecordSource(paired_bam)

    assert source.reference_names == ("chr21",)
    assert source.sort_order == "queryname"
    offsets = [offset for offset, _ in source.records_from(source.first_record_offset)]
    assert len(offsets) == 2000
    assert offsets[0] == source.first_record_offset
    assert offsets == sorted(offsets)


def test_bam_stats_from_index(paired_bam, bam_with_unmapped):
    stats = BamStats.from_index(paired_bam, BamIndex.from_file(f"{paired_bam}.bai"))

    assert stats.total_reads == 2000
    assert stats.mapped_reads == 2000
    assert stats.num_references == 1

    stats = BamStats.from_index(
        bam_with_unmapped, BamIndex.from_file(f"{bam_with_unmapped}.bai")
    )
    assert (stats.mapped_reads, stats.unmapped_reads) == (100, 5)


def test_compute_splits_logs_index_statistics(paired_bam, caplog):
    caplog.set_level(logging.INFO, logger="dagster_bam_splits")

    compute_splits(paired_bam, config(paired_bam))

    assert "2,000 reads (0 unmapped) on 1 references" in caplog.text


@pytest.mark.parametrize("keep_pairs", [False, True])
def test_splits_cover_file_without_gaps(paired_bam, keep_pairs):
    splits = compute_splits(paired_bam, config(paired_bam, keep_paired_reads_together=keep_pairs))

    assert len(splits) >= 2
    assert splits[0].start == PysamRecordSource(paired_bam).first_record_offset
    assert splits[-1].end == VirtualOffset(BgzfBlockLocator(paired_bam).file_size, 0)
    for previous, split in zip(splits, splits[1:]):
        assert previous.end == split.start
    names = split_names(paired_bam, splits)
    assert all(names)
    assert [name for chunk in names for name in chunk] == read_names(paired_bam)


def test_pairs_stay_together(paired_bam):
    splits = compute_splits(paired_bam, config(paired_bam, target_split_size_bytes=25000))

    names = split_names(paired_bam, splits)
    for previous, current in zip(names, names[1:]):
        assert previous[-1] != current[0]
    for chunk in names:
        assert len(chunk) % 2 == 0


def test_interval_filtering(paired_bam):
    splits = compute_splits(
        paired_bam, config(paired_bam, "chr21:5000-9999,chr21:20000-22999")
    )

    assert len(splits) == 1
    (names,) = split_names(paired_bam, splits)
    assert len(names) == 16
    assert sorted(set(names)) == [f"test-read-{i:03d}" for i in (4, 5, 6, 7, 8, 19, 20, 21)]


def test_whole_chromosome_interval_matches_whole_file(paired_bam):
    whole = compute_splits(paired_bam, config(paired_bam, keep_paired_reads_together=False))
    restricted = compute_splits(paired_bam, config(paired_bam, "chr21"))

    assert len(restricted) == len(whole)
    assert split_names(paired_bam, restricted) == split_names(paired_bam, whole)


def test_adjacent_intervals_equal_their_union(paired_bam):
    def names_for(text):
        splits = compute_splits(paired_bam, config(paired_bam, text))
        return [name for chunk in split_names(paired_bam, splits) for name in chunk]

    union = names_for("chr21:100000-300000")

    assert union
    assert names_for("chr21:100000-199999,chr21:200000-300000") == union
    assert names_for("chr21:200000-300000,chr21:100000-250000") == union


def test_unmapped_interval(bam_with_unmapped):
    splits = compute_splits(bam_with_unmapped, config(bam_with_unmapped, "*"))

    names = [name for chunk in split_names(bam_with_unmapped, splits) for name in chunk]
    assert names == [f"unmapped-{i:03d}" for i in range(5)]


def test_large_header_tiny_split_size(tmp_path):
    path = write_paired_bam(tmp_path / "big_header.bam", n_pairs=50, comments=3000)

    with pytest.raises(EmptyFirstSplitError, match="big_header.bam"):
        compute_splits(path, config(path, target_split_size_bytes=1000))


def test_unindexed_file_is_one_split(tmp_path):
    path = write_paired_bam(tmp_path / "plain.bam", n_pairs=20)
    (tmp_path / "plain.bam.bai").unlink()

    splits = compute_splits(path, config(path))

    assert len(splits) == 1
    assert split_names(path, splits)[0] == read_names(path)


def test_truncated_file_raises_decode_error(tmp_path):
    whole = write_paired_bam(tmp_path / "whole.bam", n_pairs=200, index=False)
    with open(whole, "rb") as handle:
        data = handle.read()
    # cut inside the compressed data of a block in the middle of the file
    block = BgzfBlockLocator(whole).next_block_start(len(data) // 2)
    path = tmp_path / "truncated.bam"
    path.write_bytes(data[: block + 100])

    source = PysamRecordSource(str(path))
    decoded = []
    with pytest.raises(DecodeError, match="truncated.bam") as excinfo:
        for offset, _ in source.records_from(source.first_record_offset):
            decoded.append(offset)

    assert decoded
    assert excinfo.value.path == str(path)
    assert excinfo.value.offset > decoded[-1]
    assert str(excinfo.value.offset) in str(excinfo.value)


def test_file_without_reference_sequences(tmp_path):
    path = write_paired_bam(tmp_path / "unaligned.bam", n_pairs=0, n_unmapped=6, index=False)

    source = PysamRecordSource(path)
    splits = compute_splits(path, config(path))

    assert source.reference_names == ()
    assert len(splits) == 1
    assert split_names(path, splits) == [[f"unmapped-{i:03d}" for i in range(6)]]
