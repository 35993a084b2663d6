from pathlib import Path

import pysam
import pytest

from scpileup.models import DEFAULT_EXCL_FLAG_UMI, ReadFilter, Site
from scpileup.scanner import SampleLookup, iter_site_records, new_scan_counts
from scpileup.toy_data import TOY_BARCODES, make_toy_data

A, C, G, T, N = range(5)


@pytest.fixture()
def toy(tmp_path: Path) -> dict:
    return make_toy_data(outdir=tmp_path / "toy")


def test_barcode_mode_records(toy: dict) -> None:
    lookup = SampleLookup.from_barcodes("CB", list(TOY_BARCODES))
    counts = new_scan_counts()
    with pysam.AlignmentFile(toy["bam"], "rb") as bam:
        recs = list(iter_site_records(bam, Site("chr1", 50, "G", "A"), sample_lookup=lookup, counts=counts))

    assert counts["reads_seen"] == 27
    assert counts["reads_filtered"] == 1
    assert counts["reads_unknown_barcode"] == 2
    assert counts["records"] == len(recs) == 24

    by_cell = {i: [r.base for r in recs if r.sample_idx == i] for i in range(3)}
    assert by_cell[0] == [G] * 8
    assert sorted(by_cell[1]) == [A] * 4 + [G] * 4
    assert by_cell[2] == [A] * 8
    assert all(r.qual == 40 and r.umi is None for r in recs)


def test_umi_tag_is_attached(toy: dict) -> None:
    lookup = SampleLookup.from_barcodes("CB", list(TOY_BARCODES))
    rf = ReadFilter(excl_flag=DEFAULT_EXCL_FLAG_UMI)
    with pysam.AlignmentFile(toy["bam"], "rb") as bam:
        recs = list(
            iter_site_records(bam, Site("chr1", 120), sample_lookup=lookup, umi_tag="UB", read_filter=rf)
        )
    umis = {r.umi for r in recs if r.sample_idx == 0}
    assert len(umis) == 7


def test_missing_umi_tag_drops_reads(toy: dict) -> None:
    lookup = SampleLookup.fixed(0)
    counts = new_scan_counts()
    with pysam.AlignmentFile(toy["bam"], "rb") as bam:
        recs = list(
            iter_site_records(bam, Site("chr1", 50), sample_lookup=lookup, umi_tag="XX", counts=counts)
        )
    assert recs == []
    assert counts["reads_no_umi"] == 26


def test_fixed_mode_and_read_filter(toy: dict) -> None:
    lookup = SampleLookup.fixed(3)
    with pysam.AlignmentFile(toy["bam"], "rb") as bam:
        recs = list(iter_site_records(bam, Site("chr1", 50), sample_lookup=lookup))
        strict = list(
            iter_site_records(bam, Site("chr1", 50), sample_lookup=lookup, read_filter=ReadFilter(min_len=100))
        )
        relaxed = list(
            iter_site_records(bam, Site("chr1", 50), sample_lookup=lookup, read_filter=ReadFilter(min_mapq=0))
        )
    assert len(recs) == 26
    assert {r.sample_idx for r in recs} == {3}
    assert strict == []
    assert len(relaxed) == 27


def test_sample_lookup_needs_one_mode() -> None:
    with pytest.raises(ValueError):
        SampleLookup()
    with pytest.raises(ValueError):
        SampleLookup(cell_tag="CB")
    with pytest.raises(ValueError):
        SampleLookup(cell_tag="CB", barcodes={}, fixed_idx=0)
