"""Per-sample pileup accumulator.

One :class:`SamplePileup` holds the reads of one sample group (a cell
barcode or a sample) at the current site. Reads are recorded as they come
off the scanner; :meth:`SamplePileup.finalize` then folds them into the
quality matrix the genotype model works from.

With UMIs, reads sharing a UMI are collapsed into a single consensus
observation before folding, so PCR duplicates of one molecule count once.
"""

from __future__ import annotations

import logging
from typing import Dict, List, Optional

import numpy as np

from .likelihood import compute_log_likelihoods, quality_to_error_vector
from .models import BASES, N_BASES, ObservationUnit
from .pool import PileupPools

logger = logging.getLogger(__name__)


def umi_consensus(units: List[ObservationUnit]) -> ObservationUnit:
    """Collapse the reads of one UMI group into one observation.

    The consensus base is the most frequent base (ties go to the lowest
    ``ACGTN`` index); its quality is the highest quality among the reads
    carrying that base.
    """
    counts = [0] * N_BASES
    for u in units:
        counts[u.base] += 1
    base = 0
    for i in range(1, N_BASES):
        if counts[i] > counts[base]:
            base = i
    qual = max(u.qual for u in units if u.base == base)
    return ObservationUnit(base, qual)


class SamplePileup:
    """Counts, qualities and UMI groups of one sample group at one site.

    Attributes
    ----------
    base_counts:
        Raw read count per ``ACGTN`` base.
    total_count:
        Sum of ``base_counts``.
    alt_count, ref_plus_alt_count, other_count:
        AD / DP / OTH of folded observations (UMIs when UMI-aware).
    folded_counts:
        Per-base count of folded observations.
    quality_lists:
        Per-base qualities of every counted read, in arrival order.
    quality_matrix:
        5x4 sum of error vectors of folded observations.
    log_likelihoods:
        Genotype log-likelihoods (3 or 5 entries) once computed.
    umi_groups:
        UMI -> list of ObservationUnit, or None when not UMI-aware.
    """

    def __init__(self, name: str = "", *, umi_aware: bool = False, pools: Optional[PileupPools] = None) -> None:
        self.name = name
        self.umi_aware = bool(umi_aware)
        self._owns_pools = pools is None
        self.pools = pools if pools is not None else PileupPools()
        self.base_counts = [0] * N_BASES
        self.total_count = 0
        self.alt_count = 0
        self.ref_plus_alt_count = 0
        self.other_count = 0
        self.folded_counts = [0] * N_BASES
        self.quality_lists: List[List[int]] = [[] for _ in range(N_BASES)]
        self.quality_matrix = np.zeros((N_BASES, 4), dtype=np.float64)
        self.log_likelihoods = np.zeros(0, dtype=np.float64)
        self.umi_groups: Optional[Dict[str, List[ObservationUnit]]] = {} if self.umi_aware else None

    @property
    def n_likelihoods(self) -> int:
        return int(self.log_likelihoods.shape[0])

    def record_observation(
        self,
        base: int,
        qual: int,
        umi: Optional[str] = None,
        is_refskip: bool = False,
        is_del: bool = False,
    ) -> bool:
        """Record one read at this site.

        Returns False when the read was skipped (ref-skip or deletion).
        """
        if is_refskip or is_del:
            return False
        # allocate before touching counts or the UMI map
        if self.umi_groups is not None and umi is not None:
            unit = self.pools.units.acquire()
            unit.base = base
            unit.qual = int(qual)
            group = self.umi_groups.get(umi)
            if group is None:
                group = self.pools.lists.acquire()
                self.umi_groups[self.pools.strings.intern(umi)] = group
            group.append(unit)
        self.base_counts[base] += 1
        self.total_count += 1
        self.quality_lists[base].append(int(qual))
        return True

    def _fold(self, base: int, qual: int, ref_idx: int, alt_idx: int, cap_bq: float, min_bq: float) -> None:
        self.quality_matrix[base] += quality_to_error_vector(qual, cap_bq, min_bq)
        self.folded_counts[base] += 1
        if base == alt_idx:
            self.alt_count += 1
        if base == ref_idx or base == alt_idx:
            self.ref_plus_alt_count += 1
        else:
            self.other_count += 1

    def finalize(self, ref_idx: int, alt_idx: int, cap_bq: float = 45, min_bq: float = 20) -> None:
        """Fold the recorded reads (or UMI consensus observations) into the quality matrix."""
        if self.umi_groups is not None:
            for units in self.umi_groups.values():
                cons = umi_consensus(units)
                self._fold(cons.base, cons.qual, ref_idx, alt_idx, cap_bq, min_bq)
        else:
            for base in range(N_BASES):
                for qual in self.quality_lists[base]:
                    self._fold(base, qual, ref_idx, alt_idx, cap_bq, min_bq)

    def compute_likelihoods(self, ref_idx: int, alt_idx: int, doublet_gl: bool = False) -> np.ndarray:
        self.log_likelihoods, _ = compute_log_likelihoods(
            self.quality_matrix, self.folded_counts, ref_idx, alt_idx, doublet_gl
        )
        return self.log_likelihoods

    def reset(self) -> None:
        """Drop all per-site state. Shared pools are reset by their owner."""
        for i in range(N_BASES):
            self.base_counts[i] = 0
            self.folded_counts[i] = 0
            self.quality_lists[i].clear()
        self.total_count = self.alt_count = self.ref_plus_alt_count = self.other_count = 0
        self.quality_matrix.fill(0.0)
        if self.log_likelihoods.shape[0]:
            self.log_likelihoods = np.zeros(0, dtype=np.float64)
        if self.umi_groups is not None:
            self.umi_groups.clear()
        if self._owns_pools:
            self.pools.reset()

    def describe(self, prefix: str = "") -> str:
        lines = [
            f"{prefix}total read count = {self.total_count}",
            f"{prefix}base count (A/C/G/T/N): " + " ".join(str(c) for c in self.base_counts),
            f"{prefix}qual matrix 5x4:",
        ]
        for i in range(N_BASES):
            lines.append(f"{prefix}\t{BASES[i]} " + " ".join(f"{v:.2f}" for v in self.quality_matrix[i]))
        lines.append(f"{prefix}num of geno likelihood = {self.n_likelihoods}")
        if self.n_likelihoods:
            lines.append(f"{prefix}geno likelihood: " + " ".join(f"{v:.2f}" for v in self.log_likelihoods))
        if self.umi_groups is not None:
            lines.append(f"{prefix}num of UMI groups = {len(self.umi_groups)}")
        return "\n".join(lines)
