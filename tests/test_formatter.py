import pytest

from scpileup.errors import SerializationError
from scpileup.formatter import (
    MISSING_SAMPLE_FIELD,
    format_base_vcf_line,
    format_cells_vcf_line,
    format_mtx,
    format_mtx_tmp,
    format_sample_field,
    mtx_header,
    render_vcf_header,
)
from scpileup.models import MtxMetric, PileupRecord, Site
from scpileup.mplp import MultiSamplePileup
from scpileup.pileup import SamplePileup

A, C, G, T, N = range(5)


def _site_mplp() -> tuple:
    site = Site("chr1", 99, "A", "G")
    m = MultiSamplePileup()
    m.set_sample_groups(["cell1", "cell2", "cell3"])
    recs = [PileupRecord(0, A, 30)] * 8 + [PileupRecord(0, G, 30)] * 2
    recs += [PileupRecord(2, A, 30)] * 20 + [PileupRecord(2, T, 30)]
    m.run(site, recs)
    return site, m


def test_vcf_header_without_samples() -> None:
    text = render_vcf_header(["chr1", "chr2"])
    lines = text.split("\n")
    assert lines[0] == "##fileformat=VCFv4.2"
    assert "##contig=<ID=chr1>" in lines and "##contig=<ID=chr2>" in lines
    assert not any(line.startswith("##FORMAT") for line in lines)
    assert text.endswith("#CHROM\tPOS\tID\tREF\tALT\tQUAL\tFILTER\tINFO\n")


def test_vcf_header_with_samples() -> None:
    text = render_vcf_header(["chr1"], ["cell1", "cell2"])
    assert "##FORMAT=<ID=PL," in text
    assert "##FORMAT=<ID=ALL," in text
    assert text.endswith("\tINFO\tFORMAT\tcell1\tcell2\n")
    assert "\n\n" not in text


def test_base_line() -> None:
    site, m = _site_mplp()
    assert format_base_vcf_line(site, m) == "chr1\t100\t.\tA\tG\t.\tPASS\tAD=2;DP=30;OTH=1"


def test_cells_line() -> None:
    site, m = _site_mplp()
    cols = format_cells_vcf_line(site, m).split("\t")
    assert len(cols) == 9 + 3
    assert cols[8] == "GT:AD:DP:OTH:PL:ALL"

    gt, ad, dp, oth, pl, counts = cols[9].split(":")
    assert (gt, ad, dp, oth, counts) == ("1/0", "2", "10", "0", "8,0,2,0,0")
    assert len(pl.split(",")) == 3
    assert all(v.isdigit() for v in pl.split(","))

    assert cols[10] == MISSING_SAMPLE_FIELD
    assert cols[11].startswith("0/0:0:20:1:")
    assert cols[11].endswith(":20,0,0,1,0")


def test_sample_field_needs_likelihoods() -> None:
    plp = SamplePileup("lonely")
    plp.record_observation(A, 30)
    with pytest.raises(SerializationError):
        format_sample_field(plp)


def test_mtx_lines() -> None:
    _, m = _site_mplp()
    out = format_mtx(m, 7)
    assert out[MtxMetric.AD] == "7\t1\t2\n"
    assert out[MtxMetric.DP] == "7\t1\t10\n7\t3\t20\n"
    assert out[MtxMetric.OTH] == "7\t3\t1\n"

    tmp = format_mtx_tmp(m)
    assert tmp[MtxMetric.AD] == "1\t2\n\n"
    assert tmp[MtxMetric.DP] == "1\t10\n3\t20\n\n"


def test_mtx_record_count_mismatch() -> None:
    _, m = _site_mplp()
    m.record_counts[MtxMetric.AD] += 1
    with pytest.raises(SerializationError):
        format_mtx(m, 1)


def test_mtx_header() -> None:
    assert mtx_header(2, 3, 4) == "%%MatrixMarket matrix coordinate integer general\n%\n2\t3\t4\n"
