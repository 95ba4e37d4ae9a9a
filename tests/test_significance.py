import math

import pytest

from expcore.errors import DomainError, InvalidInput
from expcore.significance import Observation, cohens_h, pooled_z, two_proportion_test


def test_reference_scenario_not_significant():
    res = two_proportion_test(Observation(1000, 50), Observation(1000, 60), confidence_level=0.95)

    assert 0.9 < res.z_score < 1.1
    assert res.p_value > 0.05
    assert not res.is_significant
    assert abs(res.rate_control - 0.05) < 1e-12
    assert abs(res.rate_treatment - 0.06) < 1e-12
    assert abs(res.relative_improvement - 0.2) < 1e-9

    lo, hi = res.confidence_interval
    assert lo < 0 < hi
    assert abs((lo + hi) / 2 - 0.01) < 1e-12

    assert res.effect_size_h > 0
    assert res.effect_size_label == "small"
    assert 0.0 <= res.achieved_power <= 1.0


def test_large_effect_is_significant_with_high_power():
    res = two_proportion_test(Observation(5000, 250), Observation(5000, 400))
    assert res.is_significant
    assert res.p_value < 1e-6
    assert res.achieved_power > 0.9


def test_confidence_level_widens_interval():
    a, b = Observation(1000, 50), Observation(1000, 60)
    ci95 = two_proportion_test(a, b, 0.95).confidence_interval
    ci99 = two_proportion_test(a, b, 0.99).confidence_interval
    assert (ci99[1] - ci99[0]) > (ci95[1] - ci95[0])


def test_zero_variance_gives_neutral_statistic():
    res = two_proportion_test(Observation(100, 0), Observation(100, 0))
    assert res.z_score == 0.0
    assert res.p_value == 1.0
    assert res.relative_improvement == 0.0
    assert math.isfinite(res.achieved_power)


def test_invalid_inputs():
    with pytest.raises(InvalidInput):
        two_proportion_test(Observation(0, 0), Observation(100, 5))
    with pytest.raises(InvalidInput):
        pooled_z(Observation(100, 5), Observation(0, 0))
    with pytest.raises(InvalidInput):
        Observation(10, 11)
    with pytest.raises(InvalidInput):
        Observation(10, -1)
    with pytest.raises(DomainError):
        two_proportion_test(Observation(100, 5), Observation(100, 6), confidence_level=1.0)


def test_cohens_h_is_antisymmetric():
    assert abs(cohens_h(0.05, 0.06) + cohens_h(0.06, 0.05)) < 1e-12
