"""
Significance testing for two independent proportions.

The classic pooled two-proportion z-test used to read out a finished
(or in-flight) A/B test on a binary metric: conversion rate, click-through,
retention flag, etc. Alongside the p-value the result reports the quantities
analysts usually ask for next: a confidence interval for the absolute
difference, Cohen's h, relative lift and the power achieved by the observed
effect.
"""

from __future__ import annotations

import math
from dataclasses import asdict, dataclass
from typing import Any, Dict, Tuple

from expcore.distributions import normal_cdf, z_critical
from expcore.errors import DomainError, InvalidInput


@dataclass(frozen=True)
class Observation:
    """
    Cumulative counts for one arm of an experiment.

    Attributes
    ----------
    visitors : int
        Number of exposed units (users, sessions, ...).
    conversions : int
        Number of units with a positive outcome (0 <= conversions <= visitors).
    """

    visitors: int
    conversions: int

    def __post_init__(self) -> None:
        if self.visitors < 0:
            raise InvalidInput("visitors must be non-negative.")
        if self.conversions < 0:
            raise InvalidInput("conversions must be non-negative.")
        if self.conversions > self.visitors:
            raise InvalidInput(
                f"conversions ({self.conversions}) cannot exceed visitors ({self.visitors})."
            )

    @property
    def rate(self) -> float:
        if self.visitors <= 0:
            raise InvalidInput("rate is undefined for an arm with zero visitors.")
        return self.conversions / self.visitors


@dataclass
class SignificanceResult:
    """
    Output of `two_proportion_test`.

    Rates, differences and the confidence interval are fractions
    (0.05 = 5 %). `relative_improvement` is (pB - pA) / pA.
    """

    rate_control: float
    rate_treatment: float
    z_score: float
    p_value: float
    is_significant: bool
    alpha: float
    standard_error: float
    confidence_level: float
    confidence_interval: Tuple[float, float]
    effect_size_h: float
    effect_size_label: str
    relative_improvement: float
    achieved_power: float

    @property
    def absolute_difference(self) -> float:
        return self.rate_treatment - self.rate_control

    def as_dict(self) -> Dict[str, Any]:
        d = asdict(self)
        d["confidence_interval"] = list(self.confidence_interval)
        d["absolute_difference"] = self.absolute_difference
        return d


def pooled_z(control: Observation, treatment: Observation) -> Tuple[float, float]:
    """
    Return (z, pooled standard error) for treatment minus control.

    z is 0 when the pooled standard error is 0 (both arms at 0 % or 100 %).
    """
    if control.visitors <= 0 or treatment.visitors <= 0:
        raise InvalidInput("both arms must have at least one visitor.")

    n_a, n_b = control.visitors, treatment.visitors
    p_pool = (control.conversions + treatment.conversions) / (n_a + n_b)
    se = math.sqrt(p_pool * (1 - p_pool) * (1.0 / n_a + 1.0 / n_b))
    if se == 0:
        return 0.0, 0.0
    return (treatment.rate - control.rate) / se, se


def two_sided_p_value(z: float) -> float:
    return 2.0 * (1.0 - normal_cdf(abs(z)))


def cohens_h(p_a: float, p_b: float) -> float:
    """Arcsine-transformed difference between two proportions."""
    return 2.0 * (math.asin(math.sqrt(p_b)) - math.asin(math.sqrt(p_a)))


def effect_size_label(h: float) -> str:
    a = abs(h)
    if a < 0.2:
        return "small"
    if a < 0.5:
        return "medium"
    return "large"


def two_proportion_test(
    control: Observation,
    treatment: Observation,
    confidence_level: float = 0.95,
) -> SignificanceResult:
    """
    Pooled two-proportion z-test (treatment vs control).

    Parameters
    ----------
    control, treatment : Observation
        Cumulative counts per arm. Both arms need at least one visitor.
    confidence_level : float, optional
        Confidence level of the interval and complement of the significance
        threshold, by default 0.95.

    Returns
    -------
    SignificanceResult
        z-score, two-sided p-value, Wald CI of the difference (unpooled SE),
        Cohen's h, relative improvement and achieved power.
    """
    if not 0 < confidence_level < 1:
        raise DomainError("confidence_level must be in (0, 1).")

    z, se_pooled = pooled_z(control, treatment)
    p_a, p_b = control.rate, treatment.rate
    alpha = 1.0 - confidence_level

    p_value = two_sided_p_value(z)
    z_crit = z_critical(alpha, "two-sided")

    se_unpooled = math.sqrt(p_a * (1 - p_a) / control.visitors + p_b * (1 - p_b) / treatment.visitors)
    diff = p_b - p_a
    margin = z_crit * se_unpooled

    h = cohens_h(p_a, p_b)
    relative = diff / p_a if p_a > 0 else 0.0

    achieved = normal_cdf(abs(z) - z_crit)
    achieved = max(0.0, min(1.0, achieved))

    return SignificanceResult(
        rate_control=p_a,
        rate_treatment=p_b,
        z_score=z,
        p_value=p_value,
        is_significant=bool(p_value < alpha),
        alpha=alpha,
        standard_error=se_pooled,
        confidence_level=confidence_level,
        confidence_interval=(diff - margin, diff + margin),
        effect_size_h=h,
        effect_size_label=effect_size_label(h),
        relative_improvement=relative,
        achieved_power=achieved,
    )
