import math

import numpy as np
import pytest

from expcore.distributions import z_critical
from expcore.errors import DomainError, InvalidInput
from expcore.sequential import (
    BoundaryFamily,
    BoundaryHistory,
    Decision,
    SequentialBounds,
    SequentialConfig,
    analyze_sequential,
)
from expcore.sequential.group_sequential import (
    boundary_obrien_fleming,
    boundary_pocock,
    boundary_wang_tsiatis,
    evaluate_bounds,
    evaluate_decision,
    expected_sample_size,
    futility_boundary,
    information_fraction,
    probability_of_success,
)
from expcore.significance import Observation


def test_information_fraction_bounds():
    assert information_fraction(10, 100) > 0
    assert information_fraction(100, 100) == 1.0
    assert information_fraction(200, 100) == 1.0
    with pytest.raises(InvalidInput):
        information_fraction(0, 100)
    with pytest.raises(InvalidInput):
        information_fraction(10, 0)


@pytest.mark.parametrize("family", list(BoundaryFamily))
def test_bounds_are_symmetric(family):
    cfg = SequentialConfig(boundary=family)
    for n in (100, 500, 1000):
        b = evaluate_bounds(n, 1000, cfg)
        assert np.isfinite(b.upper)
        assert b.lower == -b.upper


def test_obrien_fleming_is_strictly_decreasing():
    ts = np.linspace(0.05, 1.0, 20)
    zs = [boundary_obrien_fleming(0.05, float(t)) for t in ts]
    assert all(a > b for a, b in zip(zs, zs[1:]))
    assert abs(zs[-1] - math.sqrt(-2 * math.log(0.025))) < 1e-12


def test_pocock_is_constant_and_matches_table():
    cfg = SequentialConfig(boundary=BoundaryFamily.POCOCK, n_analyses=5)
    uppers = {evaluate_bounds(n, 1000, cfg).upper for n in (100, 400, 1000)}
    assert len(uppers) == 1
    assert abs(boundary_pocock(0.05, 5) - 2.413) < 0.03
    assert abs(boundary_pocock(0.05, 1) - 1.959964) < 1e-5


def test_wang_tsiatis_shape():
    assert abs(boundary_wang_tsiatis(0.05, 0.3, delta=0.5) - 1.959964) < 1e-5
    assert boundary_wang_tsiatis(0.05, 0.2) > boundary_wang_tsiatis(0.05, 0.8)


def test_futility_boundary():
    assert abs(futility_boundary(SequentialConfig(beta=0.2)) + 0.841621) < 1e-5
    assert futility_boundary(SequentialConfig(futility_enabled=False)) == -math.inf
    with pytest.raises(DomainError):
        futility_boundary(SequentialConfig(beta=1.0))


def test_success_takes_precedence():
    weird = SequentialBounds(upper=2.9, lower=5.0, futility=10.0, information_fraction=0.5)
    assert evaluate_decision(3.0, weird) == Decision.STOP_SUCCESS

    cfg = SequentialConfig()
    b = evaluate_bounds(1000, 1000, cfg)
    assert evaluate_decision(3.0, b) == Decision.STOP_SUCCESS


def test_harm_and_futility_decisions():
    b = SequentialBounds(upper=2.0, lower=-2.0, futility=-0.84, information_fraction=0.5)
    assert evaluate_decision(-2.5, b) == Decision.STOP_HARM
    assert evaluate_decision(-2.5, b, harm_enabled=False) == Decision.CONTINUE
    assert evaluate_decision(-1.0, b) == Decision.STOP_FUTILITY
    assert evaluate_decision(-1.0, b, futility_enabled=False) == Decision.CONTINUE
    assert evaluate_decision(0.5, b) == Decision.CONTINUE


def test_probability_of_success_limits():
    b = SequentialBounds(upper=2.0, lower=-2.0, futility=-0.84, information_fraction=1.0)
    assert probability_of_success(2.5, 1000, 1000, b) == 1.0
    assert probability_of_success(1.5, 1000, 1000, b) == 0.0

    cfg = SequentialConfig()
    mid = evaluate_bounds(500, 1000, cfg)
    low = probability_of_success(0.5, 500, 1000, mid)
    high = probability_of_success(2.0, 500, 1000, mid)
    assert 0.0 <= low < high <= 1.0

    assert expected_sample_size(500, 1000, 1.0) == 500
    assert expected_sample_size(500, 1000, 0.0) == 1000


def test_boundary_history_is_restartable_and_annotated():
    cfg = SequentialConfig()
    hist = BoundaryHistory(2000, cfg, current_n=500, current_z=1.2)
    first = list(hist)
    second = list(hist)
    assert len(hist) == 20
    assert first == second

    marked = [p for p in first if p.observed_z is not None]
    assert len(marked) == 1
    assert marked[0].n == 500
    assert marked[0].observed_z == 1.2

    df = hist.to_frame()
    assert list(df.columns) == ["n", "t", "upper", "lower", "futility", "observed_z"]
    assert df["t"].iloc[-1] == 1.0
    assert df["observed_z"].notna().sum() == 1


def test_analyze_sequential_default_scenario():
    cfg = SequentialConfig()
    res = analyze_sequential(Observation(250, 25), Observation(250, 35), max_n=2000, cfg=cfg)
    assert res.current_n == 500
    assert 1.2 < res.current_z < 1.5
    assert res.decision == Decision.CONTINUE
    assert abs(res.bounds.information_fraction - 0.25) < 1e-12
    assert 0.0 < res.probability_of_success < 1.0
    assert 500 <= res.expected_sample_size <= 2000
    assert len(res.history) == cfg.history_steps
    assert res.warnings == []

    d = res.to_dict()
    assert d["decision"] == "continue"
    assert isinstance(d["history"], dict)


def test_analyze_sequential_warnings():
    cfg = SequentialConfig(boundary=BoundaryFamily.FIXED)
    res = analyze_sequential(Observation(1500, 150), Observation(1500, 150), max_n=2000, cfg=cfg)
    assert res.bounds.information_fraction == 1.0
    assert res.expected_sample_size == 3000
    assert any("exceeds" in w for w in res.warnings)

    flat = analyze_sequential(Observation(100, 0), Observation(100, 0), max_n=1000, cfg=cfg)
    assert flat.current_z == 0.0
    assert any("zero" in w for w in flat.warnings)


def test_pocock_shares_the_package_quantile():
    c2 = boundary_pocock(0.05, 2)
    assert abs(c2 - 2.178) < 0.02
    assert c2 > z_critical(0.05, "two-sided")
    assert boundary_pocock(0.05, 3) > c2
