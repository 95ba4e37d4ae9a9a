"""
Power and sample size utilities for conversion-rate experiments.

Three-way solver over {power, sample size, minimal detectable effect}:
fix two of them and solve for the third.

Effects are expressed as **relative lifts in percent**: `effect_pct=20`
means the treatment rate is `p_baseline * 1.2`. The formulas are the usual
normal-approximation formulas for two independent proportions with equal
group sizes, with the variance under the null taken at the average rate
and the variance under the alternative at the two arm rates.
"""

from __future__ import annotations

import logging
import math
import warnings
from dataclasses import asdict, dataclass, field
from typing import Any, Dict, Iterable, Literal, Optional

import numpy as np
import pandas as pd

from expcore.distributions import TailType, normal_cdf, normal_ppf, z_critical
from expcore.errors import DomainError, InvalidInput, NonConvergence


logger = logging.getLogger(__name__)

SolveMode = Literal["power", "sample-size", "mde"]

DEFAULT_CURVE_EFFECTS = tuple(range(1, 50, 2))
DEFAULT_CURVE_SIZES = tuple(range(100, 5001, 100))


@dataclass
class SampleSizeResult:
    """
    Container for sample size calculations.

    Attributes
    ----------
    n_per_group : int
        Required number of observations in each group.
    n_total : int
        Total number of observations across both groups.
    alpha : float
        Significance level used in the calculation.
    power : float
        Target statistical power of the test.
    effect_pct : float
        Relative lift the test is powered for, in percent.
    p_baseline, p_treatment : float
        Control and treatment conversion rates.
    """
    n_per_group: int
    n_total: int
    alpha: float
    power: float
    effect_pct: float
    p_baseline: float
    p_treatment: float

    @property
    def absolute_effect(self) -> float:
        return self.p_treatment - self.p_baseline


def _z_beta(power: float) -> float:
    """Return z-value corresponding to the desired power (1 - beta)."""
    if not 0 < power < 1:
        raise DomainError("power must be in (0, 1).")
    return normal_ppf(power)


def treatment_rate(p_baseline: float, effect_pct: float) -> float:
    """Treatment rate implied by a relative lift; raises DomainError outside (0, 1)."""
    if not 0 < p_baseline < 1:
        raise DomainError("p_baseline must be in (0, 1).")
    p_treatment = p_baseline * (1 + effect_pct / 100.0)
    if not 0 < p_treatment < 1:
        raise DomainError(
            "p_baseline * (1 + effect_pct / 100) must be in (0, 1). "
            "Check that your minimal detectable effect is realistic."
        )
    return p_treatment


def power_proportions(
    p_baseline: float,
    effect_pct: float,
    n_per_group: int,
    alpha: float = 0.05,
    tail: TailType = "two-sided",
) -> float:
    """
    Compute achieved power for a two-sample test on proportions.

    Parameters
    ----------
    p_baseline : float
        Baseline conversion rate in the control group (0 < p < 1).
    effect_pct : float
        Relative lift in percent. Treatment rate is p_baseline * (1 + effect_pct / 100).
    n_per_group : int
        Sample size per group.
    alpha : float, optional
        Significance level, by default 0.05.
    tail : {"two-sided", "one-sided"}, optional
        Type of test, by default "two-sided".

    Returns
    -------
    float
        Approximate statistical power, Phi(z_beta) with
        z_beta = (|p2 - p1| - z_alpha * SE_null) / SE_alt.
    """
    if n_per_group <= 0:
        raise InvalidInput("n_per_group must be positive.")

    p1 = p_baseline
    p2 = treatment_rate(p_baseline, effect_pct)
    z_a = z_critical(alpha, tail)

    p_bar = (p1 + p2) / 2.0
    se_null = math.sqrt(2.0 * p_bar * (1 - p_bar) / n_per_group)
    se_alt = math.sqrt((p1 * (1 - p1) + p2 * (1 - p2)) / n_per_group)

    z_b = (abs(p2 - p1) - z_a * se_null) / se_alt
    return normal_cdf(z_b)


def sample_size_proportions(
    p_baseline: float,
    effect_pct: float,
    alpha: float = 0.05,
    power: float = 0.8,
    tail: TailType = "two-sided",
) -> SampleSizeResult:
    """
    Compute required sample size per group for a two-sample test on proportions.

    Closed form with equal group sizes:

        n = (z_a * sqrt(2 p_bar (1 - p_bar)) + z_b * sqrt(p1 q1 + p2 q2))^2 / (p2 - p1)^2

    rounded up to the next integer.

    Parameters
    ----------
    p_baseline : float
        Baseline conversion rate in the control group (0 < p < 1).
    effect_pct : float
        Minimal detectable effect as a relative lift in percent (non-zero).
    alpha : float, optional
        Significance level of the test, by default 0.05.
    power : float, optional
        Desired power (1 - beta), by default 0.8.
    tail : {"two-sided", "one-sided"}, optional
        Type of test, by default "two-sided".

    Returns
    -------
    SampleSizeResult
        Required sample size per group and related parameters.
    """
    if effect_pct == 0:
        raise DomainError("effect_pct must be non-zero.")
    p1 = p_baseline
    p2 = treatment_rate(p_baseline, effect_pct)

    z_a = z_critical(alpha, tail)
    z_b = _z_beta(power)

    p_bar = (p1 + p2) / 2.0
    numerator = (
        z_a * math.sqrt(2.0 * p_bar * (1 - p_bar))
        + z_b * math.sqrt(p1 * (1 - p1) + p2 * (1 - p2))
    ) ** 2
    n_per_group = math.ceil(numerator / (p2 - p1) ** 2)

    return SampleSizeResult(
        n_per_group=n_per_group,
        n_total=2 * n_per_group,
        alpha=alpha,
        power=power,
        effect_pct=effect_pct,
        p_baseline=p1,
        p_treatment=p2,
    )

# Reverse design: fixed n -> what lift can we detect?

@dataclass
class MdeResult:
    """
    Minimal detectable effect found by bisection.

    `converged` is False when the iteration cap was hit before the bracket
    shrank below the tolerance; `effect_pct` is then the last midpoint.
    `reached_target` is False when even the upper end of the search range
    does not give the requested power.
    """

    effect_pct: float
    converged: bool
    iterations: int
    achieved_power: float
    reached_target: bool = True


def _max_relative_lift(p_baseline: float) -> float:
    # Largest lift keeping the treatment rate strictly below 1.
    return 100.0 * (1.0 - p_baseline) / p_baseline * (1 - 1e-9)


def mde_from_n(
    p_baseline: float,
    n_per_group: int,
    power: float = 0.8,
    alpha: float = 0.05,
    tail: TailType = "two-sided",
    effect_min: float = 1.0,
    effect_max: float = 100.0,
    tol: float = 0.1,
    max_iter: int = 50,
) -> MdeResult:
    """
    Compute the minimal detectable relative lift for a fixed sample size.

    Binary search on `effect_pct` so that

        power_proportions(p_baseline, effect_pct, n_per_group, alpha) ~= power

    Parameters
    ----------
    p_baseline : float
        Baseline conversion rate in the control group (0 < p < 1).
    n_per_group : int
        Fixed sample size per group.
    power : float, optional
        Desired power, by default 0.8.
    alpha : float, optional
        Significance level, by default 0.05.
    tail : {"two-sided", "one-sided"}, optional
        Type of test, by default "two-sided".
    effect_min, effect_max : float, optional
        Search range in percent, by default [1, 100]. The upper end is
        clamped so that the treatment rate stays below 1.
    tol : float, optional
        Stop when the bracket is narrower than this many percentage points,
        by default 0.1.
    max_iter : int, optional
        Iteration cap, by default 50.

    Returns
    -------
    MdeResult
        Best estimate with a convergence flag. A `NonConvergence` warning is
        emitted when the cap is reached.
    """
    if n_per_group <= 0:
        raise InvalidInput("n_per_group must be positive.")
    if not 0 < p_baseline < 1:
        raise DomainError("p_baseline must be in (0, 1).")
    _z_beta(power)
    if not 0 < effect_min < effect_max:
        raise ValueError("search range must satisfy 0 < effect_min < effect_max.")

    lo = effect_min
    hi = min(effect_max, _max_relative_lift(p_baseline))
    if hi <= lo:
        raise DomainError("p_baseline is too high for the requested effect range.")

    def f(effect: float) -> float:
        return power_proportions(p_baseline, effect, n_per_group, alpha=alpha, tail=tail)

    reached = f(hi) >= power

    iterations = 0
    while hi - lo > tol and iterations < max_iter:
        mid = 0.5 * (lo + hi)
        if f(mid) < power:
            # We need a larger effect to reach the target power
            lo = mid
        else:
            hi = mid
        iterations += 1

    converged = hi - lo <= tol
    best = 0.5 * (lo + hi)
    if not converged:
        msg = (
            f"MDE bisection did not converge after {iterations} iterations "
            f"(bracket width {hi - lo:.4g} > tol {tol:.4g}); returning midpoint {best:.4g}."
        )
        logger.warning(msg)
        warnings.warn(msg, NonConvergence, stacklevel=2)

    return MdeResult(
        effect_pct=best,
        converged=converged,
        iterations=iterations,
        achieved_power=f(best),
        reached_target=reached,
    )

# Sweep curves

def power_curve_effect(
    p_baseline: float,
    n_per_group: int,
    alpha: float = 0.05,
    tail: TailType = "two-sided",
    effects: Optional[Iterable[float]] = None,
) -> pd.DataFrame:
    """
    Power as a function of relative lift at a fixed sample size.

    Lifts that would push the treatment rate to 1 or above are dropped.
    """
    if not 0 < p_baseline < 1:
        raise DomainError("p_baseline must be in (0, 1).")
    xs = np.asarray(list(effects if effects is not None else DEFAULT_CURVE_EFFECTS), dtype=float)
    xs = xs[xs < _max_relative_lift(p_baseline)]
    powers = [power_proportions(p_baseline, float(e), n_per_group, alpha=alpha, tail=tail) for e in xs]
    return pd.DataFrame({"effect_pct": xs, "power": powers})


def power_curve_sample_size(
    p_baseline: float,
    effect_pct: float,
    alpha: float = 0.05,
    tail: TailType = "two-sided",
    sizes: Optional[Iterable[int]] = None,
) -> pd.DataFrame:
    """Power as a function of per-group sample size at a fixed relative lift."""
    ns = np.asarray(list(sizes if sizes is not None else DEFAULT_CURVE_SIZES), dtype=int)
    powers = [power_proportions(p_baseline, effect_pct, int(n), alpha=alpha, tail=tail) for n in ns]
    return pd.DataFrame({"n_per_group": ns, "power": powers})

# One-shot analysis

@dataclass
class PowerAnalysis:
    """Solved design plus both sweep curves."""

    mode: SolveMode
    p_baseline: float
    power: float
    n_per_group: int
    effect_pct: float
    alpha: float
    beta: float
    tail: TailType
    power_curve: pd.DataFrame = field(repr=False)
    sample_size_curve: pd.DataFrame = field(repr=False)
    mde: Optional[MdeResult] = None

    def as_dict(self) -> Dict[str, Any]:
        return {
            "mode": self.mode,
            "p_baseline": self.p_baseline,
            "power": self.power,
            "n_per_group": self.n_per_group,
            "effect_pct": self.effect_pct,
            "alpha": self.alpha,
            "beta": self.beta,
            "tail": self.tail,
            "mde": asdict(self.mde) if self.mde is not None else None,
        }


def analyze_power(
    mode: SolveMode,
    p_baseline: float,
    effect_pct: float = 20.0,
    n_per_group: int = 1000,
    power: float = 0.8,
    alpha: float = 0.05,
    tail: TailType = "two-sided",
) -> PowerAnalysis:
    """
    Solve for the quantity selected by `mode`, holding the other two fixed.

    - "power": uses `n_per_group` and `effect_pct`;
    - "sample-size": uses `power` and `effect_pct`;
    - "mde": uses `n_per_group` and `power`.

    The power curve is evaluated at the (possibly solved) sample size and the
    sample size curve at the (possibly solved) effect.
    """
    mde_res: Optional[MdeResult] = None

    if mode == "power":
        power = power_proportions(p_baseline, effect_pct, n_per_group, alpha=alpha, tail=tail)
    elif mode == "sample-size":
        n_per_group = sample_size_proportions(p_baseline, effect_pct, alpha=alpha, power=power, tail=tail).n_per_group
    elif mode == "mde":
        mde_res = mde_from_n(p_baseline, n_per_group, power=power, alpha=alpha, tail=tail)
        effect_pct = mde_res.effect_pct
    else:
        raise ValueError("mode must be one of: power, sample-size, mde.")

    return PowerAnalysis(
        mode=mode,
        p_baseline=p_baseline,
        power=power,
        n_per_group=int(n_per_group),
        effect_pct=float(effect_pct),
        alpha=alpha,
        beta=1.0 - power,
        tail=tail,
        power_curve=power_curve_effect(p_baseline, n_per_group, alpha=alpha, tail=tail),
        sample_size_curve=power_curve_sample_size(p_baseline, effect_pct, alpha=alpha, tail=tail),
        mde=mde_res,
    )

# Planning with traffic

@dataclass
class SampleSizePlan:
    """
    Sample size translated into traffic and calendar time.

    Attributes
    ----------
    n_per_variant : int
        Required sample size per arm before traffic adjustment.
    adjusted_per_variant : int
        Visitors needed per arm once only `traffic_allocation_pct` of the
        traffic enters the test.
    total_sample_size : int
        `adjusted_per_variant * n_variants`.
    expected_duration_days : int
        Days of `daily_traffic` needed to collect `adjusted_per_variant`.
    absolute_effect : float
        |p2 - p1|.
    actual_power : float
        Power at `n_per_variant` against the unpooled alternative variance.
    expected_ci : tuple of float
        Expected CI of p2 - p1 at `n_per_variant`.
    """

    n_per_variant: int
    adjusted_per_variant: int
    total_sample_size: int
    expected_duration_days: int
    absolute_effect: float
    actual_power: float
    expected_ci: tuple

    def as_dict(self) -> Dict[str, Any]:
        d = asdict(self)
        d["expected_ci"] = list(self.expected_ci)
        return d


def plan_sample_size(
    p_baseline: float,
    effect: float,
    power: float = 0.8,
    alpha: float = 0.05,
    traffic_allocation_pct: float = 50.0,
    daily_traffic: int = 1000,
    n_variants: int = 2,
    relative: bool = True,
) -> SampleSizePlan:
    """
    Size a two-sided test and translate it into traffic and duration.

    `effect` is a relative lift in percent when `relative` is True, otherwise
    an absolute difference in percentage points (effect=1 -> p2 = p1 + 0.01).
    """
    if daily_traffic <= 0:
        raise InvalidInput("daily_traffic must be positive.")
    if not 0 < traffic_allocation_pct <= 100:
        raise InvalidInput("traffic_allocation_pct must be in (0, 100].")
    if n_variants < 2:
        raise InvalidInput("n_variants must be at least 2.")
    if not 0 < p_baseline < 1:
        raise DomainError("p_baseline must be in (0, 1).")

    effect_pct = effect if relative else 100.0 * (effect / 100.0) / p_baseline
    res = sample_size_proportions(p_baseline, effect_pct, alpha=alpha, power=power, tail="two-sided")

    p1, p2 = res.p_baseline, res.p_treatment
    n = res.n_per_group
    adjusted = math.ceil(n / (traffic_allocation_pct / 100.0))

    z_a = z_critical(alpha, "two-sided")
    se = math.sqrt((p1 * (1 - p1) + p2 * (1 - p2)) / n)
    actual_power = 1.0 - normal_cdf(z_a - abs(p2 - p1) / se)
    margin = z_a * se

    return SampleSizePlan(
        n_per_variant=n,
        adjusted_per_variant=adjusted,
        total_sample_size=adjusted * n_variants,
        expected_duration_days=math.ceil(adjusted / daily_traffic),
        absolute_effect=abs(p2 - p1),
        actual_power=actual_power,
        expected_ci=((p2 - p1) - margin, (p2 - p1) + margin),
    )
