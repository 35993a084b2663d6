from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Optional

BASES = "ACGTN"
N_BASES = len(BASES)
N_IDX = 4

_BASE_INDEX = {"A": 0, "C": 1, "G": 2, "T": 3, "a": 0, "c": 1, "g": 2, "t": 3}

# SAM flag bits used by the read filters.
FLAG_UNMAP = 0x4
FLAG_SECONDARY = 0x100
FLAG_QCFAIL = 0x200
FLAG_DUP = 0x400

DEFAULT_EXCL_FLAG_UMI = FLAG_UNMAP | FLAG_SECONDARY | FLAG_QCFAIL
DEFAULT_EXCL_FLAG_NO_UMI = DEFAULT_EXCL_FLAG_UMI | FLAG_DUP


def base_to_index(base: Optional[str]) -> int:
    """Map a base call to its index in ``ACGTN``; anything that is not A/C/G/T is N."""
    if not base:
        return N_IDX
    return _BASE_INDEX.get(base, N_IDX)


def allele_to_index(allele: Optional[str]) -> Optional[int]:
    """Like :func:`base_to_index` but keeps "no allele" as ``None``."""
    if allele is None or allele == "":
        return None
    return base_to_index(allele)


@dataclass(frozen=True)
class Site:
    """A candidate SNP.

    Attributes
    ----------
    chrom:
        Contig name as present in the VCF/BAM.
    pos0:
        0-based reference coordinate.
    ref, alt:
        Single uppercase base, or None when the allele should be inferred
        from the pileup.
    """

    chrom: str
    pos0: int
    ref: Optional[str] = None
    alt: Optional[str] = None

    @property
    def ref_idx(self) -> Optional[int]:
        return allele_to_index(self.ref)

    @property
    def alt_idx(self) -> Optional[int]:
        return allele_to_index(self.alt)

    @property
    def pos1(self) -> int:
        return self.pos0 + 1


class ObservationUnit:
    """One base call (as an ``ACGTN`` index) and its base quality."""

    __slots__ = ("base", "qual")

    def __init__(self, base: int = N_IDX, qual: int = 0) -> None:
        self.base = base
        self.qual = qual

    def __repr__(self) -> str:
        return f"ObservationUnit(base={BASES[self.base]!r}, qual={self.qual})"


@dataclass(frozen=True)
class PileupRecord:
    """One read covering one site, already resolved to a sample group."""

    sample_idx: int
    base: int
    qual: int
    umi: Optional[str] = None
    is_refskip: bool = False
    is_del: bool = False


class MtxMetric(Enum):
    """Per-sample counts written to the sparse matrices."""

    AD = "AD"
    DP = "DP"
    OTH = "OTH"

    def value_of(self, sample: Any) -> int:
        if self is MtxMetric.AD:
            return sample.alt_count
        if self is MtxMetric.DP:
            return sample.ref_plus_alt_count
        return sample.other_count

    @property
    def filename(self) -> str:
        return f"cellSNP.tag.{self.value}.mtx"


@dataclass(frozen=True)
class GenotypeConfig:
    """Knobs of the per-sample genotype model.

    cap_bq / min_bq clamp base qualities before they enter the error model.
    """

    cap_bq: int = 45
    min_bq: int = 20
    doublet_gl: bool = False
    umi_aware: bool = False


@dataclass(frozen=True)
class ReadFilter:
    """Read-level filters applied by the pileup scanner."""

    min_mapq: int = 20
    min_len: int = 30
    incl_flag: int = 0
    excl_flag: int = DEFAULT_EXCL_FLAG_NO_UMI
