import math
import threading
import time

import numpy as np
import pytest

from expcore.errors import DomainError, InvalidInput, SimulationCancelled
from expcore.power import power_proportions
import expcore.simulate as simulate_module
from expcore.simulate import (
    BehaviorProfile,
    MonteCarloSimulator,
    SimulationConfig,
    run_monte_carlo,
    simulate_run,
    summarize_runs,
    traffic_multiplier,
)


def test_traffic_multipliers():
    assert traffic_multiplier(5, BehaviorProfile.UNIFORM) == 1.0
    assert traffic_multiplier(30, BehaviorProfile.INCREASING, 30) == 1.0
    assert traffic_multiplier(0, BehaviorProfile.INCREASING, 30) == 0.5
    assert traffic_multiplier(30, BehaviorProfile.DECREASING, 30) == 1.0
    assert abs(traffic_multiplier(7, BehaviorProfile.SEASONAL) - 1.0) < 1e-12
    assert abs(traffic_multiplier(6, BehaviorProfile.WEEKEND) - 1.1) < 1e-12
    assert abs(traffic_multiplier(7, BehaviorProfile.WEEKEND) - 1.1) < 1e-12
    assert traffic_multiplier(3, BehaviorProfile.WEEKEND) == 1.0
    assert traffic_multiplier(6, "weekend_effect", weekend_effect_pct=-95) == 0.1


def test_single_run_shape_and_determinism():
    cfg = SimulationConfig(n_per_variant=1000, horizon_days=30)
    a = simulate_run(cfg, np.random.default_rng(7))
    b = simulate_run(cfg, np.random.default_rng(7))
    assert a == b
    assert len(a.days) == 30
    assert a.final.cum_visitors == 33 * 30
    assert all(0.0 <= d.p_value <= 1.0 for d in a.days)
    assert list(a.to_frame()["day"]) == list(range(1, 31))


def test_serial_and_parallel_agree():
    cfg = SimulationConfig(n_simulations=40, n_per_variant=600, horizon_days=20, seed=11)
    serial = MonteCarloSimulator(cfg).run()
    parallel = MonteCarloSimulator(cfg).run_parallel(max_workers=4)
    assert serial.as_dict() == parallel.as_dict()
    assert serial.daily_significance.equals(parallel.daily_significance)
    assert run_monte_carlo(cfg, workers=2).as_dict() == serial.as_dict()


def test_injected_seed_sequence():
    cfg = SimulationConfig(n_simulations=20, n_per_variant=300, horizon_days=10)
    a = MonteCarloSimulator(cfg, np.random.SeedSequence(123)).run()
    b = MonteCarloSimulator(cfg, np.random.SeedSequence(123)).run()
    c = MonteCarloSimulator(cfg, np.random.SeedSequence(124)).run()
    assert a.as_dict() == b.as_dict()
    assert a.mean_p_value != c.mean_p_value


def test_progress_is_monotone_and_finishes():
    cfg = SimulationConfig(n_simulations=25, n_per_variant=300, horizon_days=30, yield_every=10)
    sim = MonteCarloSimulator(cfg)
    steps = list(sim.iter_progress())
    pcts = [s.progress_pct for s in steps]
    assert [s.run_index for s in steps] == [0, 10, 20, 25]
    assert pcts == sorted(pcts)
    assert pcts[-1] == 100.0
    assert sim.summary is not None
    assert sim.summary.n_simulations == 25


def test_cancel_then_reset():
    cfg = SimulationConfig(n_simulations=25, n_per_variant=300, horizon_days=30, yield_every=10)
    sim = MonteCarloSimulator(cfg)
    it = sim.iter_progress()
    next(it)
    next(it)
    sim.cancel()
    assert list(it) == []
    assert sim.cancelled
    assert sim.summary is None

    with pytest.raises(SimulationCancelled):
        sim.run()

    sim.reset()
    summary = sim.run()
    assert summary.n_simulations == 25


def test_aa_false_positive_rate():
    aa = run_monte_carlo(SimulationConfig(effect_pct=0, n_simulations=50, n_per_variant=600, horizon_days=10))
    assert aa.false_positive_rate == aa.power
    assert abs(aa.mean_effect_gap) < 0.02

    ab = run_monte_carlo(SimulationConfig(effect_pct=20, n_simulations=20, n_per_variant=600, horizon_days=10))
    assert ab.false_positive_rate == 0.0


def test_empirical_power_converges_to_analytic():
    cfg = SimulationConfig(baseline_rate=0.1, effect_pct=30, n_per_variant=1500, horizon_days=30, n_simulations=400)
    summary = run_monte_carlo(cfg)
    analytic = power_proportions(0.1, 30, 1500, alpha=0.05)
    se = math.sqrt(analytic * (1 - analytic) / cfg.n_simulations)
    assert abs(summary.power - analytic) <= 4 * se
    assert abs(summary.power_se - math.sqrt(summary.power * (1 - summary.power) / 400)) < 1e-12


def test_daily_significance_table():
    cfg = SimulationConfig(n_simulations=10, n_per_variant=300, horizon_days=15)
    sim = MonteCarloSimulator(cfg)
    summary = sim.run()
    d = summary.daily_significance
    assert list(d.columns) == ["day", "share_significant"]
    assert len(d) == 15
    assert d["share_significant"].between(0, 1).all()
    assert summarize_runs(cfg, [summary.example_run]).n_simulations == 1


def test_config_validation():
    with pytest.raises(InvalidInput):
        MonteCarloSimulator(SimulationConfig(n_simulations=200_000, horizon_days=30, n_per_variant=1000))
    with pytest.raises(InvalidInput):
        MonteCarloSimulator(SimulationConfig(n_per_variant=10, horizon_days=30))
    with pytest.raises(DomainError):
        MonteCarloSimulator(SimulationConfig(baseline_rate=0.6, effect_pct=100))
    with pytest.raises(InvalidInput):
        summarize_runs(SimulationConfig(), [])


def _cancel_while_running(sim, target):
    errors = []

    def work():
        try:
            target()
        except SimulationCancelled as e:
            errors.append(e)

    worker = threading.Thread(target=work)
    worker.start()
    deadline = time.monotonic() + 30
    while sim.current_run == 0 and time.monotonic() < deadline:
        time.sleep(0.005)
    sim.cancel()
    worker.join(timeout=60)
    assert not worker.is_alive()
    return errors


def test_cancel_from_another_thread_during_run():
    cfg = SimulationConfig(n_simulations=50_000, n_per_variant=300, horizon_days=30)
    sim = MonteCarloSimulator(cfg)
    errors = _cancel_while_running(sim, sim.run)
    assert len(errors) == 1
    assert sim.cancelled
    assert sim.summary is None
    assert sim.current_run < cfg.n_simulations
    assert sim.progress_pct < 100.0


def test_cancel_before_parallel_run_reports_no_progress():
    cfg = SimulationConfig(n_simulations=50, n_per_variant=300, horizon_days=10)
    sim = MonteCarloSimulator(cfg)
    sim.cancel()
    with pytest.raises(SimulationCancelled):
        sim.run_parallel(max_workers=2)
    assert sim.cancelled
    assert sim.summary is None
    assert sim.current_run == 0
    assert sim.progress_pct == 0.0


def test_cancel_from_another_thread_during_parallel_run():
    cfg = SimulationConfig(n_simulations=50_000, n_per_variant=300, horizon_days=30)
    sim = MonteCarloSimulator(cfg)
    errors = _cancel_while_running(sim, lambda: sim.run_parallel(max_workers=2))
    assert len(errors) == 1
    assert sim.cancelled
    assert sim.summary is None
    assert 0 < sim.current_run < cfg.n_simulations
    assert sim.progress_pct < 100.0


def test_parallel_keeps_only_the_example_run(monkeypatch):
    monkeypatch.setattr(simulate_module, "PARALLEL_CHUNK", 7)
    cfg = SimulationConfig(n_simulations=30, n_per_variant=300, horizon_days=10, seed=5)
    sim = MonteCarloSimulator(cfg)

    outcome, run = sim._run_trial(3)
    assert run is None
    assert outcome.daily_significant.shape == (10,)
    assert sim._run_trial(0)[1] is not None

    parallel = sim.run_parallel(max_workers=3)
    serial = MonteCarloSimulator(cfg).run()
    assert parallel.as_dict() == serial.as_dict()
    assert parallel.example_run == serial.example_run
    assert sim.progress_pct == 100.0
