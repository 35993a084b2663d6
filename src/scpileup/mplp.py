"""Multi-sample pileup aggregator.

One :class:`MultiSamplePileup` is created per worker. It owns a fixed,
ordered set of :class:`~scpileup.pileup.SamplePileup` objects (one per sample
group) plus the pools they draw from, and is reset, not rebuilt, between
sites.

Typical use::

    mplp = MultiSamplePileup(config=GenotypeConfig(umi_aware=True))
    mplp.set_sample_groups(barcodes)
    for site in snplist:
        mplp.run(site, iter_site_records(bam, site, ...))
        out.write(format_base_vcf_line(site, mplp))
"""

from __future__ import annotations

import logging
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from .errors import AlleleCollisionError, DuplicateSampleGroupError, PileupError, ReentrantConfigurationError
from .models import BASES, N_BASES, GenotypeConfig, MtxMetric, PileupRecord, Site
from .pileup import SamplePileup
from .pool import PileupPools

logger = logging.getLogger(__name__)


def infer_alleles(base_counts: Sequence[int]) -> Tuple[int, int]:
    """Pick the two most frequent bases as (ref, alt).

    Counts are compared strictly, so ties go to the lower ``ACGTN`` index.
    """
    if base_counts[0] < base_counts[1]:
        k1, k2 = 1, 0
    else:
        k1, k2 = 0, 1
    m1, m2 = base_counts[k1], base_counts[k2]
    for i in range(2, N_BASES):
        if base_counts[i] > m1:
            m2, k2 = m1, k1
            m1, k1 = base_counts[i], i
        elif base_counts[i] > m2:
            m2, k2 = base_counts[i], i
    return k1, k2


def _top_base_except(base_counts: Sequence[int], skip: int) -> int:
    best: Optional[int] = None
    for i in range(N_BASES):
        if i == skip:
            continue
        if best is None or base_counts[i] > base_counts[best]:
            best = i
    assert best is not None
    return best


class MultiSamplePileup:
    """Pileup state of all sample groups at one site.

    Attributes
    ----------
    ref_idx, alt_idx:
        Allele indices given by the SNP list (None = not given).
    inferred_ref_idx, inferred_alt_idx:
        Indices inferred from the pileup (None unless inference ran).
    base_counts:
        Raw read counts per base, summed over samples.
    total_count, alt_count, ref_plus_alt_count, other_count:
        Site totals summed over samples.
    record_counts:
        Number of samples with a non-zero AD / DP / OTH value.
    """

    def __init__(self, *, config: Optional[GenotypeConfig] = None) -> None:
        self.config = config if config is not None else GenotypeConfig()
        self.pools = PileupPools()
        self.site: Optional[Site] = None
        self.ref_idx: Optional[int] = None
        self.alt_idx: Optional[int] = None
        self.inferred_ref_idx: Optional[int] = None
        self.inferred_alt_idx: Optional[int] = None
        self.base_counts = [0] * N_BASES
        self.total_count = 0
        self.alt_count = 0
        self.ref_plus_alt_count = 0
        self.other_count = 0
        self.record_counts: Dict[MtxMetric, int] = {m: 0 for m in MtxMetric}
        self._names: Tuple[str, ...] = ()
        self._index: Dict[str, int] = {}
        self._samples: List[SamplePileup] = []
        self._configured = False
        self._destroyed = False

    # ---------------------------------------------------------------
    # sample groups
    # ---------------------------------------------------------------
    def set_sample_groups(self, names: Sequence[str]) -> None:
        """Fix the sample-group -> index mapping. Allowed exactly once."""
        if self._configured:
            raise ReentrantConfigurationError(
                "Sample groups are already set for this aggregator; they cannot be changed."
            )
        names = list(names)
        if not names:
            raise ValueError("At least one sample group is required.")
        index: Dict[str, int] = {}
        for i, name in enumerate(names):
            if name is None or str(name) == "":
                raise ValueError(f"Sample group #{i + 1} has an empty name.")
            name = str(name)
            if name in index:
                raise DuplicateSampleGroupError(f"Duplicate sample group name: {name!r}")
            index[name] = i
        self._names = tuple(index)
        self._index = index
        self._samples = [
            SamplePileup(name, umi_aware=self.config.umi_aware, pools=self.pools) for name in self._names
        ]
        self._configured = True
        logger.debug("Configured %d sample groups", len(self._names))

    @property
    def samples(self) -> Tuple[str, ...]:
        return self._names

    @property
    def n_samples(self) -> int:
        return len(self._samples)

    def sample(self, idx: int) -> SamplePileup:
        return self._samples[idx]

    def sample_index(self, name: str) -> Optional[int]:
        return self._index.get(name)

    def __iter__(self):
        return iter(self._samples)

    # ---------------------------------------------------------------
    # per-site lifecycle
    # ---------------------------------------------------------------
    def _check_ready(self) -> None:
        if self._destroyed:
            raise PileupError("Aggregator has been destroyed.")
        if not self._configured:
            raise PileupError("set_sample_groups() must be called before pileup.")

    def reset(self) -> None:
        self.site = None
        self.ref_idx = self.alt_idx = None
        self.inferred_ref_idx = self.inferred_alt_idx = None
        for i in range(N_BASES):
            self.base_counts[i] = 0
        self.total_count = self.alt_count = self.ref_plus_alt_count = self.other_count = 0
        for m in self.record_counts:
            self.record_counts[m] = 0
        for plp in self._samples:
            plp.reset()
        self.pools.reset()

    def set_site(self, site: Site) -> None:
        self._check_ready()
        self.reset()
        self.site = site
        self.ref_idx = site.ref_idx
        self.alt_idx = site.alt_idx

    def record_observation(
        self,
        sample_idx: int,
        base: int,
        qual: int,
        umi: Optional[str] = None,
        is_refskip: bool = False,
        is_del: bool = False,
    ) -> bool:
        return self._samples[sample_idx].record_observation(base, qual, umi, is_refskip, is_del)

    def push(self, record: PileupRecord) -> bool:
        return self.record_observation(
            record.sample_idx, record.base, record.qual, record.umi, record.is_refskip, record.is_del
        )

    @property
    def effective_ref_idx(self) -> Optional[int]:
        return self.ref_idx if self.ref_idx is not None else self.inferred_ref_idx

    @property
    def effective_alt_idx(self) -> Optional[int]:
        return self.alt_idx if self.alt_idx is not None else self.inferred_alt_idx

    def _resolve_alleles(self) -> Tuple[int, int]:
        ref_idx, alt_idx = self.ref_idx, self.alt_idx
        if ref_idx is not None and alt_idx is not None:
            return ref_idx, alt_idx
        if ref_idx is None and alt_idx is None:
            self.inferred_ref_idx, self.inferred_alt_idx = infer_alleles(self.base_counts)
        elif ref_idx is not None:
            self.inferred_alt_idx = _top_base_except(self.base_counts, ref_idx)
        else:
            self.inferred_ref_idx = _top_base_except(self.base_counts, alt_idx)
        ref_idx, alt_idx = self.effective_ref_idx, self.effective_alt_idx
        assert ref_idx is not None and alt_idx is not None
        return ref_idx, alt_idx

    def _site_label(self) -> str:
        if self.site is None:
            return "<no site>"
        return f"{self.site.chrom}:{self.site.pos1}"

    def stat(self) -> None:
        """Finish the site: alleles, per-sample folding, totals, likelihoods."""
        self._check_ready()
        cfg = self.config
        for plp in self._samples:
            for i in range(N_BASES):
                self.base_counts[i] += plp.base_counts[i]
        ref_idx, alt_idx = self._resolve_alleles()
        if ref_idx == alt_idx:
            raise AlleleCollisionError(
                f"ref and alt are both {BASES[ref_idx]!r} at {self._site_label()}", base_idx=ref_idx
            )
        for plp in self._samples:
            plp.finalize(ref_idx, alt_idx, cfg.cap_bq, cfg.min_bq)
            self.total_count += plp.total_count
            self.alt_count += plp.alt_count
            self.ref_plus_alt_count += plp.ref_plus_alt_count
            self.other_count += plp.other_count
            for m in MtxMetric:
                if m.value_of(plp) > 0:
                    self.record_counts[m] += 1
        for plp in self._samples:
            if plp.total_count > 0:
                plp.compute_likelihoods(ref_idx, alt_idx, cfg.doublet_gl)

    def run(self, site: Site, records: Iterable[PileupRecord]) -> "MultiSamplePileup":
        self.set_site(site)
        for rec in records:
            self.push(rec)
        self.stat()
        return self

    def passes_filters(self, min_count: int = 0, min_maf: float = 0.0) -> bool:
        """Site-level filters: total depth and alt-base fraction."""
        if self.total_count < min_count:
            return False
        alt_idx = self.effective_alt_idx
        if alt_idx is None:
            return min_maf <= 0
        return self.base_counts[alt_idx] >= self.total_count * min_maf

    def destroy(self) -> None:
        self.reset()
        self._samples = []
        self.pools.destroy()
        self._destroyed = True

    def describe(self, prefix: str = "") -> str:
        def _b(idx: Optional[int]) -> str:
            return "." if idx is None else BASES[idx]

        lines = [
            f"{prefix}ref = {_b(self.ref_idx)}, alt = {_b(self.alt_idx)}",
            f"{prefix}inferred ref = {_b(self.inferred_ref_idx)}, inferred alt = {_b(self.inferred_alt_idx)}",
            f"{prefix}total base count = {self.total_count}",
            f"{prefix}base count (A/C/G/T/N): " + " ".join(str(c) for c in self.base_counts),
            f"{prefix}num of sample group = {self.n_samples}",
        ]
        for i, plp in enumerate(self._samples):
            lines.append(f"{prefix}SG-{i} = {plp.name}:")
            lines.append(plp.describe(prefix + "\t"))
        return "\n".join(lines)
