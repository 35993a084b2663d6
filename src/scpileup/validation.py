from __future__ import annotations

import logging
from pathlib import Path
from typing import Iterable, Optional

import pysam

logger = logging.getLogger(__name__)

STYLES = ("ucsc", "ensembl")

# Mitochondrial names do not follow the plain "chr" prefix rule.
_MITO = {"ucsc": "chrM", "ensembl": "MT"}
_MITO_ALIASES = {"chrM", "chrMT", "MT", "M"}


def check_bam_index(bam_path: str | Path) -> None:
    """Raise ValueError unless htslib can load an index for ``bam_path``.

    Pileups jump from SNP to SNP, so every input BAM needs random access.
    """
    with pysam.AlignmentFile(str(bam_path), "rb") as bam:
        if bam.has_index():
            return
    raise ValueError(f"BAM is not indexed. Run: samtools index {bam_path}")


def detect_contig_style(contigs: Iterable[str]) -> str:
    """'ucsc' when at least half the names carry the 'chr' prefix, 'ensembl' otherwise.

    An empty list gives 'unknown'.
    """
    n_total = 0
    n_chr = 0
    for name in contigs:
        if not name:
            continue
        n_total += 1
        if name.startswith("chr"):
            n_chr += 1
    if n_total == 0:
        return "unknown"
    return "ucsc" if n_chr >= max(1, n_total // 2) else "ensembl"


def remap_contig(contig: str, style: str) -> str:
    """Rename ``contig`` into ``style``; other styles leave it untouched."""
    if style not in STYLES:
        return contig
    if contig in _MITO_ALIASES:
        return _MITO[style]
    has_prefix = contig.startswith("chr")
    if style == "ucsc":
        return contig if has_prefix else "chr" + contig
    return contig[3:] if has_prefix else contig


def resolve_contig_style(
    vcf_contigs: Iterable[str],
    bam_contigs: Iterable[str],
    requested: str = "auto",
) -> Optional[str]:
    """Style the SNP chromosomes must be renamed to, or None to keep them.

    ``requested`` is one of 'auto', 'ucsc', 'ensembl' or 'none'. With 'auto'
    the BAM header decides, falling back to the VCF's own style.
    """
    if requested == "none":
        return None
    if requested != "auto" and requested not in STYLES:
        raise ValueError(f"Unknown contig style: {requested!r}")

    vcf_style = detect_contig_style(vcf_contigs)
    if requested == "auto":
        target = detect_contig_style(bam_contigs)
        if target == "unknown":
            target = vcf_style
    else:
        target = requested

    if target == "unknown" or target == vcf_style:
        return None
    logger.warning("SNP contigs look %s but the BAM uses %s names; renaming SNP contigs", vcf_style, target)
    return target
