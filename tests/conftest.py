import pytest

from bam_builder import write_paired_bam


@pytest.fixture(scope="session")
def paired_bam(tmp_path_factory):
    return write_paired_bam(tmp_path_factory.mktemp("bam") / "paired.bam")


@pytest.fixture(scope="session")
def bam_with_unmapped(tmp_path_factory):
    return write_paired_bam(
        tmp_path_factory.mktemp("bam") / "unmapped.bam", n_pairs=50, n_unmapped=5
    )
