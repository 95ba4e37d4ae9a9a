from __future__ import annotations

import math
from functools import lru_cache
from typing import Callable, Dict, Iterator, List, Optional, Tuple

import numpy as np
import pandas as pd
from scipy import optimize
from scipy.stats import multivariate_normal

from expcore.distributions import normal_cdf, normal_ppf, z_critical
from expcore.errors import DomainError, InvalidInput
from expcore.sequential.schema import (
    BoundaryFamily,
    BoundaryPoint,
    Decision,
    SequentialBounds,
    SequentialConfig,
    SequentialResult,
)
from expcore.significance import Observation, pooled_z, two_sided_p_value


def information_fraction(n: float, n_max: float) -> float:
    """n / n_max, capped at 1."""
    if not np.isfinite(n) or n <= 0:
        raise InvalidInput("current sample size must be positive.")
    if not np.isfinite(n_max) or n_max <= 0:
        raise InvalidInput("maximum sample size must be positive.")
    return float(min(1.0, n / n_max))


def _check_alpha(alpha: float) -> None:
    if not 0 < alpha < 1:
        raise DomainError("alpha must be in (0, 1).")


def boundary_obrien_fleming(alpha: float, t: float) -> float:
    """O'Brien-Fleming style z-boundary: sqrt(-2 ln(alpha/2)) / sqrt(t)."""
    _check_alpha(alpha)
    if t <= 0:
        return math.inf
    return math.sqrt(-2.0 * math.log(alpha / 2.0)) / math.sqrt(t)


def boundary_wang_tsiatis(alpha: float, t: float, delta: float = 0.25) -> float:
    """Wang-Tsiatis z-boundary: Phi^-1(1 - alpha/2) * t^(delta - 0.5)."""
    _check_alpha(alpha)
    if t <= 0:
        return math.inf
    return z_critical(alpha, "two-sided") * t ** (delta - 0.5)


def boundary_fixed(alpha: float) -> float:
    """Single-look critical value, no interim adjustment."""
    _check_alpha(alpha)
    return z_critical(alpha, "two-sided")


def _corr_from_information(infos: List[float]) -> np.ndarray:
    """Canonical joint correlation for Z at information times (Brownian motion)."""
    t = np.maximum(np.asarray(infos, dtype=float), 1e-12)
    C = np.sqrt(np.minimum.outer(t, t) / np.maximum.outer(t, t))
    np.fill_diagonal(C, 1.0)
    return C


def _pocock_alpha_equation(c: float, cov: np.ndarray, alpha: float) -> float:
    K = cov.shape[0]
    mvn = multivariate_normal(mean=np.zeros(K), cov=cov, allow_singular=False)
    p_inside = float(mvn.cdf(np.full(K, c), lower_limit=np.full(K, -c)))
    return (1.0 - p_inside) - float(alpha)


@lru_cache(maxsize=64)
def boundary_pocock(alpha: float, n_analyses: int) -> float:
    """
    Constant two-sided Pocock z boundary for K equally spaced looks.

    Solves P(|Z_k| >= c for some k) = alpha under the Brownian-motion joint
    law of the look statistics. Falls back to a Bonferroni split of alpha if
    the root cannot be bracketed.
    """
    _check_alpha(alpha)
    K = int(n_analyses)
    if K <= 0:
        raise InvalidInput("n_analyses must be positive.")
    if K == 1:
        return z_critical(alpha, "two-sided")

    cov = _corr_from_information([(k + 1) / K for k in range(K)])

    lo = z_critical(alpha, "two-sided")
    hi = 6.0

    f = lambda c: _pocock_alpha_equation(float(c), cov=cov, alpha=float(alpha))

    try:
        return float(optimize.brentq(f, lo, hi, maxiter=200, xtol=1e-4))
    except (ValueError, RuntimeError):
        return normal_ppf(1 - alpha / (2 * K))


_UPPER_BOUNDARY: Dict[BoundaryFamily, Callable[[float, SequentialConfig], float]] = {
    BoundaryFamily.OBRIEN_FLEMING: lambda t, cfg: boundary_obrien_fleming(cfg.alpha, t),
    BoundaryFamily.POCOCK: lambda t, cfg: boundary_pocock(cfg.alpha, cfg.n_analyses),
    BoundaryFamily.WANG_TSIATIS: lambda t, cfg: boundary_wang_tsiatis(cfg.alpha, t, cfg.wt_delta),
    BoundaryFamily.FIXED: lambda t, cfg: boundary_fixed(cfg.alpha),
}


def upper_boundary(t: float, cfg: SequentialConfig) -> float:
    try:
        fn = _UPPER_BOUNDARY[BoundaryFamily(cfg.boundary)]
    except ValueError as e:
        raise ValueError(f"Unknown boundary family '{cfg.boundary}'.") from e
    return fn(t, cfg)


def futility_boundary(cfg: SequentialConfig) -> float:
    # Constant in t: Phi^-1(beta), not an information-dependent beta-spending bound.
    if not cfg.futility_enabled:
        return -math.inf
    if not 0 < cfg.beta < 1:
        raise DomainError("beta must be in (0, 1).")
    return normal_ppf(cfg.beta)


def evaluate_bounds(n: float, n_max: float, cfg: SequentialConfig) -> SequentialBounds:
    """Efficacy, harm and futility z-boundaries at information fraction n / n_max."""
    t = information_fraction(n, n_max)
    upper = upper_boundary(t, cfg)
    return SequentialBounds(
        upper=upper,
        lower=-upper,
        futility=futility_boundary(cfg),
        information_fraction=t,
    )


# Ordered: success is checked before harm, harm before futility.
_DECISION_RULES: Tuple[Tuple[Decision, Callable[[float, SequentialBounds, bool, bool], bool]], ...] = (
    (Decision.STOP_SUCCESS, lambda z, b, harm, fut: z >= b.upper),
    (Decision.STOP_HARM, lambda z, b, harm, fut: harm and z <= b.lower),
    (Decision.CONTINUE, lambda z, b, harm, fut: z <= b.lower),
    (Decision.STOP_FUTILITY, lambda z, b, harm, fut: fut and z <= b.futility),
)


def evaluate_decision(
    z: float,
    bounds: SequentialBounds,
    harm_enabled: bool = True,
    futility_enabled: bool = True,
) -> Decision:
    """Decision for the current z-score; first matching rule wins."""
    for decision, rule in _DECISION_RULES:
        if rule(z, bounds, harm_enabled, futility_enabled):
            return decision
    return Decision.CONTINUE


def probability_of_success(z: float, n: float, n_max: float, bounds: SequentialBounds) -> float:
    """
    Heuristic conditional power: chance of ending above the efficacy boundary.

    Brownian-motion drift approximation; at (or past) the maximum sample size
    it degenerates to 1 if z is above the boundary and 0 otherwise.
    """
    t = information_fraction(n, n_max)
    remaining = 1.0 - t
    if remaining <= 0:
        return 1.0 if z > bounds.upper else 0.0

    drift = z * math.sqrt(t)
    adjusted_upper = bounds.upper * math.sqrt(1.0 - remaining)
    adjusted_z = z + drift * math.sqrt(remaining)
    return 1.0 - normal_cdf(adjusted_upper - adjusted_z)


def expected_sample_size(n: float, n_max: float, prob_success: float) -> float:
    """Planning heuristic: remaining sample weighted by the chance of not stopping for success."""
    return n + (n_max - n) * (1.0 - prob_success)


class BoundaryHistory:
    """
    Boundaries at `steps` equally spaced sample sizes up to `n_max`.

    Iterating is lazy and can be repeated. When `current_n` is given, the point
    nearest to it is annotated with `current_z`.
    """

    def __init__(
        self,
        n_max: float,
        cfg: SequentialConfig,
        current_n: Optional[float] = None,
        current_z: Optional[float] = None,
        steps: Optional[int] = None,
    ) -> None:
        if n_max <= 0:
            raise InvalidInput("maximum sample size must be positive.")
        self.n_max = float(n_max)
        self.cfg = cfg
        self.current_n = current_n
        self.current_z = current_z
        self.steps = int(steps if steps is not None else cfg.history_steps)
        if self.steps <= 0:
            raise InvalidInput("steps must be positive.")

    def _annotated_step(self) -> Optional[int]:
        if self.current_n is None or self.current_z is None:
            return None
        k = int(round(self.current_n * self.steps / self.n_max))
        return min(self.steps, max(1, k))

    def __len__(self) -> int:
        return self.steps

    def __iter__(self) -> Iterator[BoundaryPoint]:
        mark = self._annotated_step()
        for i in range(1, self.steps + 1):
            n = self.n_max * i / self.steps
            b = evaluate_bounds(n, self.n_max, self.cfg)
            yield BoundaryPoint(
                n=n,
                information_fraction=b.information_fraction,
                upper=b.upper,
                lower=b.lower,
                futility=b.futility,
                observed_z=self.current_z if i == mark else None,
            )

    def to_frame(self) -> pd.DataFrame:
        rows = [
            {
                "n": p.n,
                "t": p.information_fraction,
                "upper": p.upper,
                "lower": p.lower,
                "futility": p.futility,
                "observed_z": p.observed_z if p.observed_z is not None else np.nan,
            }
            for p in self
        ]
        return pd.DataFrame(rows)


def analyze_sequential(
    control: Observation,
    treatment: Observation,
    max_n: int,
    cfg: SequentialConfig,
) -> SequentialResult:
    """Evaluate the monitoring state from cumulative counts of both arms."""
    warnings: List[str] = []

    current_n = int(control.visitors + treatment.visitors)
    if max_n <= 0:
        raise InvalidInput("max_n must be positive.")
    if current_n > max_n:
        warnings.append(
            f"Current sample ({current_n}) exceeds the planned maximum ({max_n}); information fraction capped at 1."
        )

    z, se = pooled_z(control, treatment)
    if se == 0:
        warnings.append("Pooled standard error is zero (no variance); z set to 0.")

    bounds = evaluate_bounds(current_n, max_n, cfg)
    decision = evaluate_decision(z, bounds, harm_enabled=cfg.harm_enabled, futility_enabled=cfg.futility_enabled)
    pos = probability_of_success(z, current_n, max_n, bounds)
    ess = expected_sample_size(current_n, max_n, pos) if current_n <= max_n else float(current_n)

    history = BoundaryHistory(max_n, cfg, current_n=current_n, current_z=z).to_frame()

    return SequentialResult(
        current_n=current_n,
        max_n=int(max_n),
        current_z=z,
        current_p=two_sided_p_value(z),
        bounds=bounds,
        decision=decision,
        probability_of_success=pos,
        expected_sample_size=ess,
        history=history,
        diagnostics={
            "boundary": BoundaryFamily(cfg.boundary).value,
            "alpha": cfg.alpha,
            "beta": cfg.beta,
            "n_analyses": cfg.n_analyses,
            "wt_delta": cfg.wt_delta,
            "futility_enabled": cfg.futility_enabled,
            "harm_enabled": cfg.harm_enabled,
            "rate_control": control.rate,
            "rate_treatment": treatment.rate,
        },
        warnings=warnings,
    )
