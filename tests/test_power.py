import math

import numpy as np
import pytest

from expcore.errors import DomainError, InvalidInput, NonConvergence
from expcore.power import (
    analyze_power,
    mde_from_n,
    plan_sample_size,
    power_curve_effect,
    power_curve_sample_size,
    power_proportions,
    sample_size_proportions,
)


def test_reference_sample_size():
    res = sample_size_proportions(0.05, 20, alpha=0.05, power=0.8)
    assert 8135 <= res.n_per_group <= 8185
    assert res.n_total == 2 * res.n_per_group
    assert abs(res.p_treatment - 0.06) < 1e-12
    assert abs(res.absolute_effect - 0.01) < 1e-12


def test_sample_size_decreases_with_effect():
    sizes = [sample_size_proportions(0.05, e).n_per_group for e in range(5, 101, 5)]
    assert all(a >= b for a, b in zip(sizes, sizes[1:]))


def test_one_sided_needs_fewer_observations():
    two = sample_size_proportions(0.1, 10, tail="two-sided").n_per_group
    one = sample_size_proportions(0.1, 10, tail="one-sided").n_per_group
    assert one < two


def test_power_round_trip():
    res = sample_size_proportions(0.05, 20, alpha=0.05, power=0.8)
    pw = power_proportions(0.05, 20, res.n_per_group, alpha=0.05)
    assert 0.79 <= pw <= 0.81
    assert power_proportions(0.05, 20, res.n_per_group - 500) < pw


@pytest.mark.parametrize(
    "kwargs",
    [
        dict(p_baseline=0.0, effect_pct=20),
        dict(p_baseline=1.0, effect_pct=20),
        dict(p_baseline=0.05, effect_pct=0),
        dict(p_baseline=0.6, effect_pct=100),
        dict(p_baseline=0.05, effect_pct=20, power=1.0),
        dict(p_baseline=0.05, effect_pct=20, alpha=0.0),
    ],
)
def test_sample_size_domain_errors(kwargs):
    with pytest.raises(DomainError):
        sample_size_proportions(**kwargs)


def test_power_requires_positive_n():
    with pytest.raises(InvalidInput):
        power_proportions(0.05, 20, 0)


def test_mde_recovers_effect():
    n = sample_size_proportions(0.05, 20).n_per_group
    res = mde_from_n(0.05, n, power=0.8)
    assert res.converged
    assert res.reached_target
    assert abs(res.effect_pct - 20) < 0.5
    assert res.iterations <= 50


def test_mde_non_convergence_warns():
    with pytest.warns(NonConvergence):
        res = mde_from_n(0.05, 5000, tol=1e-9, max_iter=3)
    assert not res.converged
    assert res.iterations == 3
    assert 1.0 <= res.effect_pct <= 100.0


def test_mde_unreachable_target_is_flagged():
    res = mde_from_n(0.05, 10, power=0.8)
    assert not res.reached_target


def test_power_curves_are_monotone():
    by_effect = power_curve_effect(0.05, 1000)
    assert list(by_effect.columns) == ["effect_pct", "power"]
    assert len(by_effect) == 25
    assert np.all(np.diff(by_effect["power"].to_numpy()) >= 0)

    by_n = power_curve_sample_size(0.05, 20)
    assert list(by_n.columns) == ["n_per_group", "power"]
    assert len(by_n) == 50
    assert np.all(np.diff(by_n["power"].to_numpy()) >= 0)
    assert by_n["power"].between(0, 1).all()


def test_analyze_power_modes():
    ss = analyze_power("sample-size", 0.05, effect_pct=20, power=0.8)
    assert 8135 <= ss.n_per_group <= 8185
    assert abs(ss.beta - 0.2) < 1e-12

    pw = analyze_power("power", 0.05, effect_pct=20, n_per_group=ss.n_per_group)
    assert 0.79 <= pw.power <= 0.81

    mde = analyze_power("mde", 0.05, n_per_group=ss.n_per_group, power=0.8)
    assert mde.mde is not None
    assert abs(mde.effect_pct - 20) < 0.5
    assert mde.as_dict()["mde"]["converged"] is True

    with pytest.raises(ValueError):
        analyze_power("speed", 0.05)


def test_plan_sample_size_traffic_and_duration():
    plan = plan_sample_size(0.05, 20, traffic_allocation_pct=50, daily_traffic=1000, n_variants=2)
    assert plan.adjusted_per_variant == math.ceil(plan.n_per_variant / 0.5)
    assert plan.total_sample_size == 2 * plan.adjusted_per_variant
    assert plan.expected_duration_days == math.ceil(plan.adjusted_per_variant / 1000)
    assert abs(plan.absolute_effect - 0.01) < 1e-12
    lo, hi = plan.expected_ci
    assert lo < 0.01 < hi
    assert 0.0 <= plan.actual_power <= 1.0


def test_plan_sample_size_absolute_effect():
    rel = plan_sample_size(0.05, 20)
    absolute = plan_sample_size(0.05, 1.0, relative=False)
    assert rel.n_per_variant == absolute.n_per_variant
    with pytest.raises(InvalidInput):
        plan_sample_size(0.05, 20, daily_traffic=0)


def test_power_curve_skips_impossible_lifts():
    curve = power_curve_effect(0.7, 1000)
    assert len(curve) > 0
    assert (0.7 * (1 + curve["effect_pct"] / 100) < 1).all()
