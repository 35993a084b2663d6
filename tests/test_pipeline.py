import json
from pathlib import Path

import pytest

from scpileup.models import GenotypeConfig
from scpileup.pipeline import resolve_sample_groups, run_pileup
from scpileup.toy_data import TOY_BARCODES, make_toy_data


def _body(path: Path) -> list[str]:
    return [line for line in path.read_text().splitlines() if not line.startswith("#")]


def _mtx(path: Path) -> tuple[str, list[str]]:
    lines = path.read_text().splitlines()
    return lines[2], lines[3:]


@pytest.fixture()
def toy(tmp_path: Path) -> dict:
    return make_toy_data(outdir=tmp_path / "toy")


def test_barcode_mode_without_umi(toy: dict, tmp_path: Path) -> None:
    outdir = tmp_path / "out"
    summary = run_pileup(
        bam_paths=[toy["bam"]],
        vcf_path=toy["snp_vcf"],
        outdir=outdir,
        barcodes=list(TOY_BARCODES),
        genotype=True,
        progress=False,
    )
    assert summary["counts"]["sites_written"] == 2
    assert summary["scan_counts"]["records"] == 48
    assert summary["mtx_records"] == {"AD": 3, "DP": 6, "OTH": 0}

    assert _body(outdir / "cellSNP.base.vcf") == [
        "chr1\t51\t.\tG\tA\t.\tPASS\tAD=12;DP=24;OTH=0",
        "chr1\t121\t.\tA\tC\t.\tPASS\tAD=8;DP=24;OTH=0",
    ]
    cells = _body(outdir / "cellSNP.cells.vcf")
    gts = [[f.split(":")[0] for f in line.split("\t")[9:]] for line in cells]
    assert gts == [["0/0", "1/0", "1/1"], ["0/0", "0/0", "1/1"]]

    header, ad = _mtx(outdir / "cellSNP.tag.AD.mtx")
    assert header == "2\t3\t3"
    assert ad == ["1\t2\t4", "1\t3\t8", "2\t3\t8"]
    assert (outdir / "cellSNP.samples.tsv").read_text().split() == list(TOY_BARCODES)

    assert (outdir / "report.html").exists()
    on_disk = json.loads((outdir / "summary.json").read_text())
    assert on_disk["counts"] == summary["counts"]


def test_barcode_mode_with_umi(toy: dict, tmp_path: Path) -> None:
    outdir = tmp_path / "out"
    run_pileup(
        bam_paths=[toy["bam"]],
        vcf_path=toy["snp_vcf"],
        outdir=outdir,
        barcodes=list(TOY_BARCODES),
        umi_tag="UB",
        min_count=0,
        progress=False,
    )
    header, dp = _mtx(outdir / "cellSNP.tag.DP.mtx")
    assert header == "2\t3\t6"
    assert dp[0] == "1\t1\t7"
    assert dp[3] == "2\t1\t7"


def test_sample_mode_and_filters(toy: dict, tmp_path: Path) -> None:
    outdir = tmp_path / "out"
    summary = run_pileup(
        bam_paths=[toy["bam"], toy["bam"]],
        vcf_path=toy["snp_vcf"],
        outdir=outdir,
        sample_ids=["S1", "S2"],
        min_maf=0.4,
        config=GenotypeConfig(doublet_gl=True),
        progress=False,
    )
    # chr1:51 has 14 A of 26 reads per BAM; chr1:121 only 8 C
    assert summary["counts"]["sites_written"] == 1
    assert summary["counts"]["sites_filtered"] == 1
    assert _body(outdir / "cellSNP.base.vcf") == ["chr1\t51\t.\tG\tA\t.\tPASS\tAD=28;DP=52;OTH=0"]
    _, ad = _mtx(outdir / "cellSNP.tag.AD.mtx")
    assert ad == ["1\t1\t14", "1\t2\t14"]


def test_min_count_filters_everything(toy: dict, tmp_path: Path) -> None:
    summary = run_pileup(
        bam_paths=[toy["bam"]],
        vcf_path=toy["snp_vcf"],
        outdir=tmp_path / "out",
        barcodes=list(TOY_BARCODES),
        min_count=1000,
        progress=False,
    )
    assert summary["counts"]["sites_written"] == 0
    header, body = _mtx(tmp_path / "out" / "cellSNP.tag.AD.mtx")
    assert header == "0\t3\t0"
    assert body == []


def test_contig_mismatch_has_no_usable_snps(toy: dict, tmp_path: Path) -> None:
    vcf = tmp_path / "ensembl.vcf"
    vcf.write_text(
        "##fileformat=VCFv4.2\n##contig=<ID=1,length=200>\n"
        "#CHROM\tPOS\tID\tREF\tALT\tQUAL\tFILTER\tINFO\n1\t51\t.\tG\tA\t.\tPASS\t.\n"
    )
    with pytest.raises(ValueError, match="No usable SNPs"):
        run_pileup(
            bam_paths=[toy["bam"]],
            vcf_path=str(vcf),
            outdir=tmp_path / "out",
            contig_style="none",
            progress=False,
        )
    summary = run_pileup(
        bam_paths=[toy["bam"]],
        vcf_path=str(vcf),
        outdir=tmp_path / "out2",
        min_count=0,
        progress=False,
    )
    assert summary["counts"]["sites_written"] == 1


def test_resolve_sample_groups_errors() -> None:
    with pytest.raises(ValueError):
        resolve_sample_groups([])
    with pytest.raises(ValueError):
        resolve_sample_groups(["a.bam", "b.bam"], sample_ids=["only-one"])
    with pytest.raises(ValueError):
        resolve_sample_groups(["a.bam"], barcodes=["AAA"], sample_ids=["x"])
    names, lookups = resolve_sample_groups(["a.bam", "b.bam"])
    assert names == ["Sample_0", "Sample_1"]
    assert [lk.fixed_idx for lk in lookups] == [0, 1]
