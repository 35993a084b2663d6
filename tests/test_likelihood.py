import math

import numpy as np
import pytest

from scpileup.errors import AlleleCollisionError
from scpileup.likelihood import (
    LN10,
    call_genotype,
    compute_log_likelihoods,
    phred_scale,
    quality_to_error_vector,
)

A, C, G, T, N = range(5)


def _qm(obs):
    """Build (quality matrix, counts) from {base: [quals]}."""
    qm = np.zeros((5, 4))
    counts = [0] * 5
    for base, quals in obs.items():
        for q in quals:
            qm[base] += quality_to_error_vector(q, 45, 20)
            counts[base] += 1
    return qm, counts


def test_error_vector_q30() -> None:
    v = quality_to_error_vector(30, 45, 20)
    p = 0.001
    assert v[0] == pytest.approx(math.log(1 - p))
    assert v[1] == pytest.approx(math.log(0.75 - 2 * p / 3))
    assert v[2] == pytest.approx(math.log(0.5 - p / 3))
    assert v[3] == pytest.approx(math.log(p))


def test_error_vector_clamps_quality() -> None:
    assert quality_to_error_vector(5, 45, 20) == quality_to_error_vector(20, 45, 20)
    assert quality_to_error_vector(60, 45, 20) == quality_to_error_vector(45, 45, 20)


def test_error_vector_monotonic_in_quality() -> None:
    lo = quality_to_error_vector(10, 60, 0)
    hi = quality_to_error_vector(40, 60, 0)
    assert hi[0] > lo[0]
    assert hi[3] < lo[3]


def test_hom_ref_het_hom_alt() -> None:
    qm, counts = _qm({A: [30] * 20})
    gl, n = compute_log_likelihoods(qm, counts, A, G)
    assert n == 3 and gl.shape == (3,)
    assert call_genotype(gl) == 0

    qm, counts = _qm({A: [30] * 8, G: [30] * 2})
    gl, _ = compute_log_likelihoods(qm, counts, A, G)
    assert call_genotype(gl) == 1

    qm, counts = _qm({G: [30] * 20})
    gl, _ = compute_log_likelihoods(qm, counts, A, G)
    assert call_genotype(gl) == 2


def test_het_formula() -> None:
    qm, counts = _qm({A: [30] * 8, G: [30] * 2})
    gl, _ = compute_log_likelihoods(qm, counts, A, G)
    v = quality_to_error_vector(30, 45, 20)
    assert gl[0] == pytest.approx(8 * v[0] + 2 * v[3] + 2 * math.log(1 / 3))
    assert gl[1] == pytest.approx(10 * v[2])
    assert gl[2] == pytest.approx(8 * v[3] + 2 * v[0] + 8 * math.log(1 / 3))


def test_other_bases_shift_all_genotypes_equally() -> None:
    qm, counts = _qm({A: [30] * 8, G: [30] * 2})
    base, _ = compute_log_likelihoods(qm, counts, A, G)
    qm2, counts2 = _qm({A: [30] * 8, G: [30] * 2, C: [25, 35], N: [20]})
    with_oth, _ = compute_log_likelihoods(qm2, counts2, A, G)
    shift = qm2[C][3] + qm2[N][3] + 3 * math.log(2 / 3)
    assert with_oth - base == pytest.approx(np.full(3, shift))


def test_doublet_likelihoods() -> None:
    qm, counts = _qm({A: [30] * 8, G: [30] * 2})
    gl, n = compute_log_likelihoods(qm, counts, A, G, include_doublet=True)
    assert n == 5 and gl.shape == (5,)
    assert gl[3] == pytest.approx(qm[A][1] + 2 * math.log(1 / 4))
    assert gl[4] == pytest.approx(qm[G][1] + 8 * math.log(1 / 4))


def test_ref_equal_alt_raises() -> None:
    qm, counts = _qm({A: [30] * 3})
    with pytest.raises(AlleleCollisionError) as ei:
        compute_log_likelihoods(qm, counts, A, A)
    assert ei.value.base_idx == A


def test_bad_index_raises() -> None:
    qm, counts = _qm({A: [30]})
    with pytest.raises(ValueError):
        compute_log_likelihoods(qm, counts, A, 5)


def test_phred_scale() -> None:
    pl = phred_scale([0.0, -LN10, -2 * LN10])
    assert pl.tolist() == pytest.approx([0.0, 10.0, 20.0])
    assert f"{phred_scale([0.0])[0]:.0f}" == "0"


def test_call_genotype_first_max_wins() -> None:
    assert call_genotype([-1.0, -1.0, -2.0]) == 0
    assert call_genotype([-3.0, -1.0, -1.0]) == 1


@pytest.mark.parametrize("qual", range(20, 46))
def test_error_vector_entries_are_ordered(qual: int) -> None:
    v = quality_to_error_vector(qual, 45, 20)
    assert v[0] >= v[1] >= v[2] >= v[3]
