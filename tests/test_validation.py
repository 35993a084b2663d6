import shutil
from pathlib import Path

import pytest

from scpileup.toy_data import make_toy_data
from scpileup.validation import check_bam_index, detect_contig_style, remap_contig, resolve_contig_style


def test_detect_contig_style() -> None:
    assert detect_contig_style(["chr1", "chr2", "chrX"]) == "ucsc"
    assert detect_contig_style(["1", "2", "X", "MT"]) == "ensembl"
    assert detect_contig_style([]) == "unknown"


@pytest.mark.parametrize(
    "contig,style,expected",
    [
        ("1", "ucsc", "chr1"),
        ("chr1", "ucsc", "chr1"),
        ("MT", "ucsc", "chrM"),
        ("chr7", "ensembl", "7"),
        ("chrM", "ensembl", "MT"),
        ("7", "ensembl", "7"),
        ("chr7", "none", "chr7"),
    ],
)
def test_remap_contig(contig: str, style: str, expected: str) -> None:
    assert remap_contig(contig, style) == expected


def test_resolve_contig_style() -> None:
    assert resolve_contig_style(["1", "2"], ["chr1", "chr2"]) == "ucsc"
    assert resolve_contig_style(["chr1"], ["chr1", "chr2"]) is None
    assert resolve_contig_style(["chr1"], [], "auto") is None
    assert resolve_contig_style(["chr1"], ["1"], "none") is None
    assert resolve_contig_style(["chr1"], ["chr1"], "ensembl") == "ensembl"
    with pytest.raises(ValueError):
        resolve_contig_style(["chr1"], ["chr1"], "gencode")


def test_check_bam_index(tmp_path: Path) -> None:
    toy = make_toy_data(outdir=tmp_path / "toy")
    check_bam_index(toy["bam"])

    bare = tmp_path / "bare.bam"
    shutil.copy(toy["bam"], bare)
    with pytest.raises(ValueError, match="samtools index"):
        check_bam_index(bare)
