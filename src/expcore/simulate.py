"""
Monte Carlo simulation of conversion experiments.

Each simulated run streams visitors into a control and a treatment arm over
a fixed horizon of days, draws binomial conversions per day and re-reads the
test on the cumulative counts every day, the way an analyst peeking at a
dashboard would. Aggregating many independent runs gives the empirical
power (or false-positive rate when the true effect is zero) of the design.

Design goals:
- Traffic shape is configurable through a behavioral profile (flat,
  trending, weekly seasonality, weekend bump).
- Randomness only comes from explicitly passed generators; every trial gets
  its own child seed, so results are reproducible and independent of the
  execution order (serial or threaded).
- Long run sets report progress, can be cancelled between trials and reset.

Notes:
- Daily visitors are `floor(n_per_variant / horizon_days)` scaled by the
  profile multiplier, so the realized sample per arm may differ from
  `n_per_variant` for non-uniform profiles.
"""

from __future__ import annotations

import logging
import math
import threading
from concurrent.futures import ThreadPoolExecutor
from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any, Dict, Iterator, List, Optional, Sequence, Tuple

import numpy as np
import pandas as pd

from expcore.errors import DomainError, InvalidInput, SimulationCancelled
from expcore.significance import Observation, two_proportion_test


logger = logging.getLogger(__name__)

# Trials in flight per batch in threaded mode.
PARALLEL_CHUNK = 256


class BehaviorProfile(str, Enum):
    UNIFORM = "uniform"
    INCREASING = "increasing"
    DECREASING = "decreasing"
    SEASONAL = "seasonal"
    WEEKEND = "weekend_effect"


@dataclass(frozen=True)
class SimulationConfig:
    """Configuration for a Monte Carlo run set."""

    baseline_rate: float = 0.05
    effect_pct: float = 20.0  # relative lift of the treatment, 0 for A/A
    n_per_variant: int = 1000
    n_simulations: int = 100
    horizon_days: int = 30

    profile: BehaviorProfile = BehaviorProfile.UNIFORM
    weekend_effect_pct: float = 10.0

    alpha: float = 0.05
    seed: int = 42

    # Progress is reported every `yield_every` runs.
    yield_every: int = 10
    # Upper bound on n_simulations * horizon_days.
    max_total_periods: int = 5_000_000

    @property
    def treatment_rate(self) -> float:
        return self.baseline_rate * (1.0 + self.effect_pct / 100.0)

    def validate(self) -> None:
        if not 0 < self.baseline_rate < 1:
            raise DomainError("baseline_rate must be in (0, 1).")
        if not 0 <= self.treatment_rate <= 1:
            raise DomainError("baseline_rate * (1 + effect_pct / 100) must be in [0, 1].")
        if self.n_simulations <= 0:
            raise InvalidInput("n_simulations must be positive.")
        if self.horizon_days <= 0:
            raise InvalidInput("horizon_days must be positive.")
        if self.n_per_variant < self.horizon_days:
            raise InvalidInput("n_per_variant must be at least horizon_days (one visitor per day).")
        if not 0 < self.alpha < 1:
            raise DomainError("alpha must be in (0, 1).")
        if self.yield_every <= 0:
            raise InvalidInput("yield_every must be positive.")
        if self.n_simulations * self.horizon_days > self.max_total_periods:
            raise InvalidInput(
                f"n_simulations * horizon_days = {self.n_simulations * self.horizon_days} "
                f"exceeds max_total_periods = {self.max_total_periods}."
            )
        BehaviorProfile(self.profile)


def traffic_multiplier(
    day: int,
    profile: BehaviorProfile,
    horizon_days: int = 30,
    weekend_effect_pct: float = 10.0,
) -> float:
    """
    Multiplier applied to the baseline daily traffic on `day` (1-based).

    - uniform: 1
    - increasing: 0.5 -> 1.0 linearly over the horizon
    - decreasing: 1.5 -> 1.0 linearly over the horizon
    - seasonal: 1 + 0.3 sin(2 pi day / 7)
    - weekend_effect: 1 + weekend_effect_pct / 100 when day % 7 is 0 or 6

    Never below 0.1.
    """
    profile = BehaviorProfile(profile)
    if profile == BehaviorProfile.INCREASING:
        m = 0.5 + (day * 0.5) / horizon_days
    elif profile == BehaviorProfile.DECREASING:
        m = 1.5 - (day * 0.5) / horizon_days
    elif profile == BehaviorProfile.SEASONAL:
        m = 1.0 + 0.3 * math.sin((day * 2.0 * math.pi) / 7.0)
    elif profile == BehaviorProfile.WEEKEND:
        m = 1.0 + weekend_effect_pct / 100.0 if day % 7 in (0, 6) else 1.0
    else:
        m = 1.0
    return max(0.1, m)


@dataclass(frozen=True)
class DayStats:
    """Daily draws plus cumulative statistics at the end of `day`."""

    day: int
    visitors: int  # per arm, this day
    control_conversions: int
    treatment_conversions: int
    cum_visitors: int  # per arm
    cum_control_conversions: int
    cum_treatment_conversions: int
    control_rate: float
    treatment_rate: float
    p_value: float
    is_significant: bool


@dataclass
class SimulationRun:
    days: List[DayStats]

    @property
    def final(self) -> DayStats:
        return self.days[-1]

    @property
    def effect_gap(self) -> float:
        return self.final.treatment_rate - self.final.control_rate

    def to_frame(self) -> pd.DataFrame:
        return pd.DataFrame([asdict(d) for d in self.days])


def simulate_run(cfg: SimulationConfig, rng: np.random.Generator) -> SimulationRun:
    """Simulate one experiment; the last day is the run's outcome."""
    daily_visitors = cfg.n_per_variant // cfg.horizon_days
    p_control = cfg.baseline_rate
    p_treatment = cfg.treatment_rate

    cum_n = 0
    cum_c = 0
    cum_t = 0
    days: List[DayStats] = []

    for day in range(1, cfg.horizon_days + 1):
        mult = traffic_multiplier(day, cfg.profile, cfg.horizon_days, cfg.weekend_effect_pct)
        visitors = int(math.floor(daily_visitors * mult))

        conv_c = int(rng.binomial(visitors, p_control))
        conv_t = int(rng.binomial(visitors, p_treatment))
        cum_n += visitors
        cum_c += conv_c
        cum_t += conv_t

        if cum_n > 0:
            test = two_proportion_test(
                Observation(cum_n, cum_c),
                Observation(cum_n, cum_t),
                confidence_level=1.0 - cfg.alpha,
            )
            p_value = test.p_value
            rate_c, rate_t = test.rate_control, test.rate_treatment
        else:
            p_value, rate_c, rate_t = 1.0, 0.0, 0.0

        days.append(
            DayStats(
                day=day,
                visitors=visitors,
                control_conversions=conv_c,
                treatment_conversions=conv_t,
                cum_visitors=cum_n,
                cum_control_conversions=cum_c,
                cum_treatment_conversions=cum_t,
                control_rate=rate_c,
                treatment_rate=rate_t,
                p_value=p_value,
                is_significant=bool(p_value < cfg.alpha),
            )
        )

    return SimulationRun(days=days)


@dataclass
class SimulationSummary:
    """
    Aggregate over independent runs (final-day outcomes).

    Attributes
    ----------
    power : float
        Share of runs significant on the final day.
    power_se : float
        Binomial standard error of `power`.
    false_positive_rate : float
        Equal to `power` when the configured effect is exactly zero, else 0.
    mean_effect_gap : float
        Mean of (treatment rate - control rate) on the final day.
    daily_significance : pandas.DataFrame
        Share of runs significant on each day (`day`, `share_significant`).
    example_run : SimulationRun
        The first run, for visualisation.
    """

    n_simulations: int
    significant_results: int
    power: float
    power_se: float
    mean_p_value: float
    mean_effect_gap: float
    false_positive_rate: float
    daily_significance: pd.DataFrame = field(repr=False)
    example_run: SimulationRun = field(repr=False)

    def as_dict(self) -> Dict[str, Any]:
        return {
            "n_simulations": self.n_simulations,
            "significant_results": self.significant_results,
            "power": self.power,
            "power_se": self.power_se,
            "mean_p_value": self.mean_p_value,
            "mean_effect_gap": self.mean_effect_gap,
            "false_positive_rate": self.false_positive_rate,
        }


@dataclass(frozen=True)
class _TrialOutcome:
    """What the summary needs from one run; the day-level records are dropped."""

    significant: bool
    p_value: float
    effect_gap: float
    daily_significant: np.ndarray

    @classmethod
    def from_run(cls, run: SimulationRun) -> "_TrialOutcome":
        return cls(
            significant=run.final.is_significant,
            p_value=run.final.p_value,
            effect_gap=run.effect_gap,
            daily_significant=np.array([d.is_significant for d in run.days], dtype=bool),
        )


@dataclass
class _Tally:
    """Counts and sums over run outcomes; merged by simple addition."""

    horizon_days: int
    runs: int = 0
    significant: int = 0
    p_sum: float = 0.0
    gap_sum: float = 0.0
    daily_significant: np.ndarray = None  # type: ignore[assignment]

    def __post_init__(self) -> None:
        if self.daily_significant is None:
            self.daily_significant = np.zeros(self.horizon_days, dtype=int)

    def add(self, run: SimulationRun) -> None:
        self.add_outcome(_TrialOutcome.from_run(run))

    def add_outcome(self, outcome: _TrialOutcome) -> None:
        self.runs += 1
        self.significant += int(outcome.significant)
        self.p_sum += outcome.p_value
        self.gap_sum += outcome.effect_gap
        self.daily_significant += outcome.daily_significant.astype(int)

    def summary(self, cfg: SimulationConfig, example_run: SimulationRun) -> SimulationSummary:
        n = self.runs
        power = self.significant / n
        return SimulationSummary(
            n_simulations=n,
            significant_results=self.significant,
            power=power,
            power_se=math.sqrt(power * (1.0 - power) / n),
            mean_p_value=self.p_sum / n,
            mean_effect_gap=self.gap_sum / n,
            false_positive_rate=power if cfg.effect_pct == 0 else 0.0,
            daily_significance=pd.DataFrame(
                {
                    "day": np.arange(1, self.horizon_days + 1),
                    "share_significant": self.daily_significant / n,
                }
            ),
            example_run=example_run,
        )


def summarize_runs(cfg: SimulationConfig, runs: Sequence[SimulationRun]) -> SimulationSummary:
    if not runs:
        raise InvalidInput("at least one run is required.")
    tally = _Tally(horizon_days=cfg.horizon_days)
    for run in runs:
        tally.add(run)
    return tally.summary(cfg, runs[0])


@dataclass(frozen=True)
class SimulationProgress:
    run_index: int  # 1-based index of the last finished run (0 before the first)
    total: int
    progress_pct: float


class MonteCarloSimulator:
    """
    Run a set of independent simulated experiments.

    Parameters
    ----------
    cfg : SimulationConfig
        Validated on construction.
    seed_sequence : numpy.random.SeedSequence, optional
        Root of the per-trial seeds, by default `SeedSequence(cfg.seed)`.
        Trial i always uses the i-th child, whatever the execution order.
    """

    def __init__(self, cfg: SimulationConfig, seed_sequence: Optional[np.random.SeedSequence] = None) -> None:
        cfg.validate()
        self.cfg = cfg
        self._root = seed_sequence if seed_sequence is not None else np.random.SeedSequence(int(cfg.seed))
        self.reset()

    def reset(self) -> None:
        """Forget any previous result and clear the cancellation flag."""
        self._cancel = threading.Event()
        self.summary: Optional[SimulationSummary] = None
        self.current_run = 0
        self.progress_pct = 0.0
        self.cancelled = False

    def cancel(self) -> None:
        """Request cancellation; honoured before the next trial starts."""
        self._cancel.set()

    def trial_rng(self, index: int) -> np.random.Generator:
        child = np.random.SeedSequence(
            entropy=self._root.entropy,
            spawn_key=tuple(self._root.spawn_key) + (int(index),),
            pool_size=self._root.pool_size,
        )
        return np.random.default_rng(child)

    def _run_trial(self, index: int) -> Optional[Tuple[_TrialOutcome, Optional[SimulationRun]]]:
        # Only trial 0 keeps its day-level records (example run).
        if self._cancel.is_set():
            return None
        run = simulate_run(self.cfg, self.trial_rng(index))
        return _TrialOutcome.from_run(run), (run if index == 0 else None)

    def iter_progress(self) -> Iterator[SimulationProgress]:
        """
        Run all trials serially, yielding control every `yield_every` runs.

        The summary is only published (`self.summary`) once every trial has
        finished; a cancelled run set leaves it as None.
        """
        cfg = self.cfg
        total = cfg.n_simulations
        self.summary = None
        self.cancelled = False

        tally = _Tally(horizon_days=cfg.horizon_days)
        example: Optional[SimulationRun] = None

        yield SimulationProgress(run_index=0, total=total, progress_pct=0.0)

        for i in range(total):
            if self._cancel.is_set():
                self.cancelled = True
                logger.info("Simulation cancelled after %d of %d runs.", i, total)
                return

            self.current_run = i + 1
            run = simulate_run(cfg, self.trial_rng(i))
            tally.add(run)
            if example is None:
                example = run

            self.progress_pct = 100.0 * (i + 1) / total
            if (i + 1) % cfg.yield_every == 0 and (i + 1) < total:
                logger.debug("Simulation progress: %d/%d runs", i + 1, total)
                yield SimulationProgress(run_index=i + 1, total=total, progress_pct=self.progress_pct)

        self.summary = tally.summary(cfg, example)
        logger.info(
            "Simulation finished: %d runs, power=%.4f, mean p=%.4f",
            total,
            self.summary.power,
            self.summary.mean_p_value,
        )
        yield SimulationProgress(run_index=total, total=total, progress_pct=100.0)

    def run(self) -> SimulationSummary:
        for _ in self.iter_progress():
            pass
        if self.cancelled or self.summary is None:
            raise SimulationCancelled("Simulation was cancelled before all runs finished.")
        return self.summary

    def run_parallel(self, max_workers: Optional[int] = None) -> SimulationSummary:
        """
        Distribute trials over a thread pool and reduce their outcomes.

        Trials are submitted in chunks of `PARALLEL_CHUNK` and folded into the
        tally in index order, so the summary equals `run()` for the same seeds.
        Progress only counts trials that actually finished.
        """
        cfg = self.cfg
        total = cfg.n_simulations
        self.summary = None
        self.cancelled = False
        self.current_run = 0
        self.progress_pct = 0.0

        tally = _Tally(horizon_days=cfg.horizon_days)
        example: Optional[SimulationRun] = None

        with ThreadPoolExecutor(max_workers=max_workers) as pool:
            for start in range(0, total, PARALLEL_CHUNK):
                if self._cancel.is_set():
                    break
                indices = range(start, min(total, start + PARALLEL_CHUNK))
                for res in pool.map(self._run_trial, indices):
                    if res is None:
                        continue
                    outcome, run = res
                    tally.add_outcome(outcome)
                    if run is not None:
                        example = run
                    self.current_run = tally.runs
                    self.progress_pct = 100.0 * tally.runs / total

        if tally.runs < total or example is None:
            self.cancelled = True
            logger.info("Parallel simulation cancelled after %d of %d runs.", tally.runs, total)
            raise SimulationCancelled("Simulation was cancelled before all runs finished.")

        self.summary = tally.summary(cfg, example)
        logger.info("Parallel simulation finished: %d runs, power=%.4f", total, self.summary.power)
        return self.summary


def run_monte_carlo(cfg: SimulationConfig, workers: int = 1) -> SimulationSummary:
    """Convenience wrapper: serial when `workers <= 1`, threaded otherwise."""
    sim = MonteCarloSimulator(cfg)
    if workers and workers > 1:
        return sim.run_parallel(max_workers=workers)
    return sim.run()
