import pytest

from dagster_bam_splits.splits.calculator import SplitConfig, propose_byte_ranges
from dagster_bam_splits.splits.errors import (
    EmptyFirstSplitError,
    InvalidIntervalError,
    MissingIndexError,
)
from dagster_bam_splits.splits.intervals import GenomicInterval, parse_intervals
from dagster_bam_splits.splits.reader import SplitRecordReader
from dagster_bam_splits.splits.virtual_offset import VirtualOffset

from fake_bam import FakeBam, paired_reads, unmapped_reads

# 100 pairs, 7 records per 1000-byte block after a one-block header:
# the byte boundary at 16000 lands on block 16, whose first record (#105) is
# the second read of pair 52.
SPLIT_SIZE = 16000


def records_of(bam, split):
    return [read for _, read in SplitRecordReader(split, bam)]


def compute(bam, indexed=True, **kwargs):
    kwargs.setdefault("target_split_size_bytes", SPLIT_SIZE)
    return bam.calculator(indexed).compute(SplitConfig(**kwargs))


def test_propose_byte_ranges():
    assert propose_byte_ranges(30028, 16000) == [(0, 16000), (16000, 30028)]
    assert propose_byte_ranges(30028, 10000) == [(0, 10000), (10000, 20000), (20000, 30028)]
    assert propose_byte_ranges(100, 1000) == [(0, 100)]
    assert propose_byte_ranges(1050, 1000) == [(0, 1050)]
    assert propose_byte_ranges(0, 1000) == []


@pytest.mark.parametrize(
    "kwargs",
    [
        {"target_split_size_bytes": 0},
        {"minimum_split_size_bytes": -1},
        {"pair_lookahead_limit": 0},
        {"split_slop": 0.5},
    ],
)
def test_invalid_config(kwargs):
    with pytest.raises(ValueError):
        SplitConfig(**kwargs)


def test_dont_keep_paired_reads_together():
    bam = FakeBam(paired_reads(100))

    splits = compute(bam, keep_paired_reads_together=False)

    assert len(splits) == 2
    split0, split1 = records_of(bam, splits[0]), records_of(bam, splits[1])
    assert len(split0) == 105
    assert len(split1) == 95
    assert split0[-1].query_name == split1[0].query_name
    assert split0[-1].is_read1
    assert split1[0].is_read2


def test_keep_paired_reads_together():
    bam = FakeBam(paired_reads(100))

    splits = compute(bam, keep_paired_reads_together=True)

    assert len(splits) == 2
    split0, split1 = records_of(bam, splits[0]), records_of(bam, splits[1])
    assert len(split0) == 106
    assert len(split1) == 94
    assert split0[-1].query_name != split1[0].query_name


@pytest.mark.parametrize("split_size", [2000, 3000, 4500, 7000, 10000, 16000, 100000])
@pytest.mark.parametrize("keep_pairs", [False, True])
def test_whole_file_splits_are_gap_free(split_size, keep_pairs):
    bam = FakeBam(paired_reads(100))

    splits = compute(
        bam, keep_paired_reads_together=keep_pairs, target_split_size_bytes=split_size
    )

    assert splits[0].start == bam.first_record_offset
    assert splits[-1].end == VirtualOffset(bam.file_size, 0)
    for previous, split in zip(splits, splits[1:]):
        assert previous.end == split.start
        assert not split.is_empty

    per_split = [records_of(bam, split) for split in splits]
    assert [read for reads in per_split for read in reads] == bam.reads
    if keep_pairs:
        owners = {}
        for i, reads in enumerate(per_split):
            for read in reads:
                assert owners.setdefault(read.query_name, i) == i


def test_coordinate_sorted_input_keeps_pairs_together():
    bam = FakeBam(paired_reads(100), sort_order="coordinate")

    splits = compute(bam, keep_paired_reads_together=True)

    per_split = [records_of(bam, split) for split in splits]
    assert [len(reads) for reads in per_split] == [106, 94]
    assert per_split[0][-2].query_name == per_split[0][-1].query_name == "test-read-052"
    assert per_split[1][0].query_name == "test-read-053"


def test_intervals():
    bam = FakeBam(paired_reads(100))
    intervals = parse_intervals("chr21:5000-9999,chr21:20000-22999", bam.reference_names)

    splits = compute(bam, keep_paired_reads_together=False, intervals=intervals)

    assert len(splits) == 1
    reads = records_of(bam, splits[0])
    assert len(reads) == 16
    assert {read.query_name for read in reads} == {
        f"test-read-{i:03d}" for i in [4, 5, 6, 7, 8, 19, 20, 21]
    }


def test_interval_covering_whole_chromosome():
    bam = FakeBam(paired_reads(100))
    intervals = parse_intervals("chr21:1-1000135", bam.reference_names)

    splits = compute(bam, keep_paired_reads_together=False, intervals=intervals)

    assert len(splits) == 2
    assert len(records_of(bam, splits[0])) == 105
    assert len(records_of(bam, splits[1])) == 95


def test_pairing_is_ignored_for_interval_splits():
    bam = FakeBam(paired_reads(100))
    intervals = parse_intervals("chr21", bam.reference_names)

    splits = compute(bam, keep_paired_reads_together=True, intervals=intervals)

    assert [len(records_of(bam, split)) for split in splits] == [105, 95]


def test_adjacent_intervals_match_their_union():
    bam = FakeBam(paired_reads(100))

    def interval_records(text):
        intervals = parse_intervals(text, bam.reference_names)
        splits = compute(bam, target_split_size_bytes=5000, intervals=intervals)
        return [read for split in splits for read in records_of(bam, split)]

    union = interval_records("chr21:5000-40000")
    assert union
    assert interval_records("chr21:20000-40000,chr21:5000-19999") == union
    assert interval_records("chr21:5000-30000,chr21:12000-40000") == union


def test_unmapped_interval_selects_unplaced_reads():
    bam = FakeBam(paired_reads(100) + unmapped_reads(10))

    splits = compute(bam, intervals=[GenomicInterval(-1, 1, 10)])

    reads = [read for split in splits for read in records_of(bam, split)]
    assert [read.query_name for read in reads] == [f"unmapped-{i:03d}" for i in range(10)]


def test_split_size_below_first_record_offset():
    bam = FakeBam(paired_reads(100))

    with pytest.raises(EmptyFirstSplitError, match="Increase target_split_size_bytes"):
        compute(bam, target_split_size_bytes=1000)


def test_large_header_leaves_first_split_empty():
    bam = FakeBam(paired_reads(100), header_blocks=5)

    with pytest.raises(EmptyFirstSplitError) as excinfo:
        compute(bam, target_split_size_bytes=3000)

    assert excinfo.value.path == "fake.bam"
    assert excinfo.value.first_record == bam.first_record_offset


def test_undersized_trailing_split_is_merged():
    bam = FakeBam(paired_reads(100))

    three = compute(bam, keep_paired_reads_together=False, target_split_size_bytes=10000)
    two = compute(
        bam,
        keep_paired_reads_together=False,
        target_split_size_bytes=10000,
        minimum_split_size_bytes=12000,
    )

    assert len(three) == 3
    assert len(two) == 2
    assert two[0] == three[0]
    assert two[1].start == three[1].start
    assert two[1].end == three[2].end


def test_unindexed_file_is_a_single_split():
    bam = FakeBam(paired_reads(100))

    splits = compute(bam, indexed=False)

    assert len(splits) == 1
    assert records_of(bam, splits[0]) == bam.reads


def test_intervals_need_an_index():
    bam = FakeBam(paired_reads(100))

    with pytest.raises(MissingIndexError):
        compute(bam, indexed=False, intervals=[GenomicInterval(0, 1, 100)])


def test_invalid_interval_fails_before_decoding():
    bam = FakeBam(paired_reads(100))

    with pytest.raises(InvalidIntervalError):
        compute(bam, intervals=[GenomicInterval(0, 100, 1), GenomicInterval(0, 1, 5)])

    assert bam.decode_calls == 0


def test_empty_interval_list_is_rejected():
    bam = FakeBam(paired_reads(100))

    with pytest.raises(InvalidIntervalError, match="No intervals given"):
        compute(bam, intervals=[])

    assert bam.decode_calls == 0


def test_unmapped_interval_without_references():
    bam = FakeBam(unmapped_reads(10), reference_names=())

    splits = compute(bam, intervals=[GenomicInterval(-1, 1, 10)])

    assert len(splits) == 1
    assert [read.query_name for read in records_of(bam, splits[0])] == [
        f"unmapped-{i:03d}" for i in range(10)
    ]
