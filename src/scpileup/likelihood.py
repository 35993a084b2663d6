"""Genotype likelihood model.

Each folded observation contributes a 4-entry vector of log-probabilities
(see :func:`quality_to_error_vector`) to a per-sample 5x4 quality matrix
(rows ``ACGTN``). :func:`compute_log_likelihoods` combines that matrix with
per-base counts into log-likelihoods for

    0: homozygous ref (RR)
    1: heterozygous (RA)
    2: homozygous alt (AA)
    3: RR+RA doublet   (only with doublet likelihoods)
    4: RA+AA doublet   (only with doublet likelihoods)

following the error model of the Demuxlet paper (Kang et al. 2018, online
methods).
"""

from __future__ import annotations

import math
from functools import lru_cache
from typing import Sequence, Tuple

import numpy as np

from .errors import AlleleCollisionError
from .models import N_BASES

LN10 = math.log(10.0)
_LOG_2_3 = math.log(2.0 / 3)
_LOG_1_3 = math.log(1.0 / 3)
_LOG_1_4 = math.log(1.0 / 4)

N_GENOTYPES = 3
N_GENOTYPES_DOUBLET = 5


def _log(x: float) -> float:
    return math.log(x) if x > 0 else float("-inf")


@lru_cache(maxsize=4096)
def quality_to_error_vector(qual: float, cap: float, floor: float) -> Tuple[float, float, float, float]:
    """Convert a base quality into ``[log(1-p), log(3/4-2p/3), log(1/2-p/3), log(p)]``.

    ``p = 10^(-q/10)`` with ``q`` clamped into ``[floor, cap]``.
    """
    bq = min(max(float(qual), float(floor)), float(cap))
    p = 10.0 ** (-max(bq, 0.0) / 10.0)
    return (
        _log(1.0 - p),
        _log(0.75 - 2.0 / 3 * p),
        _log(0.5 - 1.0 / 3 * p),
        _log(p),
    )


def _check_idx(name: str, idx: int) -> int:
    if idx is None or not 0 <= int(idx) < N_BASES:
        raise ValueError(f"{name} must be an index into 'ACGTN', got {idx!r}")
    return int(idx)


def compute_log_likelihoods(
    quality_matrix: np.ndarray,
    base_counts: Sequence[int],
    ref_idx: int,
    alt_idx: int,
    include_doublet: bool = False,
) -> Tuple[np.ndarray, int]:
    """Translate a 5x4 quality matrix and base counts into genotype log-likelihoods.

    Returns ``(likelihoods, n)`` where ``n`` is 5 with doublet classes and 3
    otherwise.

    Raises
    ------
    AlleleCollisionError
        If ``ref_idx == alt_idx``: the ref/alt/other partition is undefined
        (e.g. a single-letter ref whose inferred alt collapsed onto it).
    """
    ref_idx = _check_idx("ref_idx", ref_idx)
    alt_idx = _check_idx("alt_idx", alt_idx)
    if ref_idx == alt_idx:
        raise AlleleCollisionError(
            f"ref and alt are the same base (index {ref_idx}); genotype classes are undefined",
            base_idx=ref_idx,
        )

    qm = np.asarray(quality_matrix, dtype=np.float64)
    ref_qual = qm[ref_idx]
    alt_qual = qm[alt_idx]
    ref_read = float(base_counts[ref_idx])
    alt_read = float(base_counts[alt_idx])

    # every non-ref/non-alt observation is read as "confidently neither"
    oth_qual = 0.0
    oth_read = 0.0
    for i in range(N_BASES):
        if i != ref_idx and i != alt_idx:
            oth_qual += qm[i][3]
            oth_read += float(base_counts[i])
    oth_qual += _LOG_2_3 * oth_read

    n = N_GENOTYPES_DOUBLET if include_doublet else N_GENOTYPES
    gl = np.empty(n, dtype=np.float64)
    gl[0] = oth_qual + ref_qual[0] + alt_qual[3] + _LOG_1_3 * alt_read
    gl[1] = oth_qual + ref_qual[2] + alt_qual[2]
    gl[2] = oth_qual + ref_qual[3] + alt_qual[0] + _LOG_1_3 * ref_read
    if include_doublet:
        gl[3] = oth_qual + ref_qual[1] + _LOG_1_4 * alt_read
        gl[4] = oth_qual + alt_qual[1] + _LOG_1_4 * ref_read
    return gl, n


def phred_scale(log_likelihoods: Sequence[float]) -> np.ndarray:
    """Rescale natural-log likelihoods to Phred units (``-10 * L / ln 10``)."""
    # + 0.0 turns -0.0 into 0.0 so it never prints as "-0"
    return np.asarray(log_likelihoods, dtype=np.float64) * (-10.0 / LN10) + 0.0


def call_genotype(log_likelihoods: Sequence[float]) -> int:
    """Arg-max over RR/RA/AA; the first maximum wins."""
    best = 0
    for i in range(1, N_GENOTYPES):
        if log_likelihoods[i] > log_likelihoods[best]:
            best = i
    return best
