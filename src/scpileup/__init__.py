"""scpileup: UMI-aware allele counting and genotype likelihoods at known SNPs.

Public API is intentionally small; most users should use the CLI:

    scpileup pileup --bam ... --vcf ... --barcode-file ... --outdir ...

"""

from __future__ import annotations

__all__ = ["__version__"]

__version__ = "0.3.0"
