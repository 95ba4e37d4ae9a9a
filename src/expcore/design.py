"""
Utilities for high-level experiment design with several variants.

This module builds on top of `expcore.power` and provides:

- a description of the variants of an A/B/n test (one control, any number
  of treatments, a traffic split);
- validation of that description;
- sizing of the whole design:
    * per-comparison sample size with a Bonferroni-adjusted alpha,
    * the uniform per-arm size implied by the hardest comparison,
    * total traffic, calendar duration and cost.

The goal is to give analysts a quick answer to "how long and how much"
before an A/B/n test is launched.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field, replace
from typing import Dict, List, Sequence

from .distributions import TailType
from .errors import DomainError, InvalidDesignError
from .power import power_proportions, sample_size_proportions


logger = logging.getLogger(__name__)

ALLOCATION_TOLERANCE = 1e-6


@dataclass(frozen=True)
class ExperimentVariant:
    """
    One arm of an experiment.

    Attributes
    ----------
    id : str
        Stable identifier used as key in the analysis output.
    name : str
        Display name.
    traffic_allocation : float
        Share of the experiment's traffic, in percent.
    expected_rate : float
        Expected conversion rate (0..1).
    is_control : bool
        Exactly one variant of a design is the control.
    """

    id: str
    name: str
    traffic_allocation: float
    expected_rate: float
    is_control: bool = False
    description: str = ""


@dataclass(frozen=True)
class DesignParameters:
    """
    Statistical settings shared by all comparisons.

    `experiment_traffic_pct` is the share of total site traffic that enters
    the experiment at all; the variant allocations split that share.
    """

    alpha: float = 0.05
    power: float = 0.8
    tail: TailType = "two-sided"
    experiment_traffic_pct: float = 100.0


@dataclass
class DesignAnalysis:
    """
    Sizing of an A/B/n design.

    Attributes
    ----------
    total_sample_size : int
        Visitors needed across all arms, inflated for traffic outside the
        experiment.
    per_variant_sample_size : dict
        Required size per variant id for its comparison with the control;
        the control carries the uniform (maximum) size.
    uniform_sample_size : int
        Per-arm size used for every arm.
    expected_duration_days : int
    adjusted_alpha : float
        Bonferroni-adjusted per-comparison alpha.
    estimated_cost : float
    power_by_variant : dict
        Achieved power of each comparison at the uniform size.
    """

    total_sample_size: int
    per_variant_sample_size: Dict[str, int]
    uniform_sample_size: int
    expected_duration_days: int
    adjusted_alpha: float
    estimated_cost: float
    power_by_variant: Dict[str, float] = field(default_factory=dict)
    n_comparisons: int = 0

    def as_dict(self) -> dict:
        """Return the analysis as a plain dictionary (convenient for logging/JSON)."""
        return {
            "total_sample_size": self.total_sample_size,
            "per_variant_sample_size": dict(self.per_variant_sample_size),
            "uniform_sample_size": self.uniform_sample_size,
            "expected_duration_days": self.expected_duration_days,
            "adjusted_alpha": self.adjusted_alpha,
            "estimated_cost": self.estimated_cost,
            "power_by_variant": dict(self.power_by_variant),
            "n_comparisons": self.n_comparisons,
        }


def bonferroni_alpha(alpha: float, n_comparisons: int) -> float:
    """Per-comparison alpha controlling the family-wise error rate."""
    if not 0 < alpha < 1:
        raise DomainError("alpha must be in (0, 1).")
    if n_comparisons <= 0:
        raise InvalidDesignError("n_comparisons must be positive.")
    return alpha / n_comparisons


def balance_allocations(variants: Sequence[ExperimentVariant]) -> List[ExperimentVariant]:
    """
    Split 100 % of the traffic into equal integer shares.

    Each variant gets floor(100 / k); the first `100 % k` variants get one
    extra point, so the shares always sum to exactly 100.
    """
    k = len(variants)
    if k == 0:
        raise InvalidDesignError("Cannot balance an empty list of variants.")
    share, remainder = divmod(100, k)
    return [replace(v, traffic_allocation=float(share + (1 if i < remainder else 0))) for i, v in enumerate(variants)]


def validate_variants(variants: Sequence[ExperimentVariant]) -> ExperimentVariant:
    """
    Check that a set of variants forms a complete design and return the control.

    Raises
    ------
    InvalidDesignError
        Fewer than two variants, duplicate ids, not exactly one control,
        allocations outside [0, 100] or not summing to 100, rates outside [0, 1].
    """
    if len(variants) < 2:
        raise InvalidDesignError("A design needs at least two variants.")

    ids = [v.id for v in variants]
    if len(set(ids)) != len(ids):
        raise InvalidDesignError(f"Variant ids must be unique, got {ids}.")

    controls = [v for v in variants if v.is_control]
    if len(controls) != 1:
        raise InvalidDesignError(f"Exactly one control variant is required, found {len(controls)}.")

    for v in variants:
        if not 0 <= v.traffic_allocation <= 100:
            raise InvalidDesignError(f"Variant '{v.id}': traffic_allocation must be in [0, 100].")
        if not 0 <= v.expected_rate <= 1:
            raise InvalidDesignError(f"Variant '{v.id}': expected_rate must be in [0, 1].")

    total = sum(v.traffic_allocation for v in variants)
    if abs(total - 100.0) > ALLOCATION_TOLERANCE:
        raise InvalidDesignError(f"Traffic allocations must sum to 100, got {total:g}.")

    return controls[0]


def design_multi_variant(
    variants: Sequence[ExperimentVariant],
    params: DesignParameters = DesignParameters(),
    daily_traffic: float = 1000.0,
    cost_per_visitor: float = 0.5,
) -> DesignAnalysis:
    """
    Size an A/B/n test with Bonferroni correction.

    Every treatment is compared with the control using
    `alpha / n_treatments`. The largest per-comparison sample size becomes
    the uniform per-arm size, so

        total = ceil(max_n * n_variants / (experiment_traffic_pct / 100))
        duration = ceil(total / daily_traffic)
        cost = total * cost_per_visitor

    Parameters
    ----------
    variants : sequence of ExperimentVariant
        Complete design (see `validate_variants`).
    params : DesignParameters, optional
        alpha, power, tail and the experiment's share of traffic.
    daily_traffic : float, optional
        Visitors per day available to the site, by default 1000.
    cost_per_visitor : float, optional
        Cost attributed to each visitor, by default 0.5.

    Returns
    -------
    DesignAnalysis
        Fully computed analysis; invalid inputs raise instead of returning a
        partial result.
    """
    control = validate_variants(variants)
    if daily_traffic <= 0:
        raise InvalidDesignError("daily_traffic must be positive.")
    if cost_per_visitor < 0:
        raise InvalidDesignError("cost_per_visitor must be non-negative.")
    if not 0 < params.experiment_traffic_pct <= 100:
        raise InvalidDesignError("experiment_traffic_pct must be in (0, 100].")

    p_control = control.expected_rate
    if not 0 < p_control < 1:
        raise DomainError("The control's expected_rate must be in (0, 1).")

    treatments: List[ExperimentVariant] = [v for v in variants if not v.is_control]
    adjusted_alpha = bonferroni_alpha(params.alpha, len(treatments))

    per_variant: Dict[str, int] = {}
    effects: Dict[str, float] = {}
    for v in treatments:
        effect_pct = (v.expected_rate - p_control) / p_control * 100.0
        if effect_pct == 0:
            raise DomainError(f"Variant '{v.id}' has the same expected rate as the control.")
        res = sample_size_proportions(
            p_baseline=p_control,
            effect_pct=effect_pct,
            alpha=adjusted_alpha,
            power=params.power,
            tail=params.tail,
        )
        per_variant[v.id] = res.n_per_group
        effects[v.id] = effect_pct

    uniform = max(per_variant.values())
    per_variant = {control.id: uniform, **per_variant}

    total = math.ceil(uniform * len(variants) / (params.experiment_traffic_pct / 100.0))
    duration = math.ceil(total / daily_traffic)

    power_by_variant = {
        vid: power_proportions(p_control, eff, uniform, alpha=adjusted_alpha, tail=params.tail)
        for vid, eff in effects.items()
    }

    logger.debug(
        "Design: %d variants, adjusted alpha %.5g, uniform n %d, total %d",
        len(variants),
        adjusted_alpha,
        uniform,
        total,
    )

    return DesignAnalysis(
        total_sample_size=total,
        per_variant_sample_size=per_variant,
        uniform_sample_size=uniform,
        expected_duration_days=duration,
        adjusted_alpha=adjusted_alpha,
        estimated_cost=total * cost_per_visitor,
        power_by_variant=power_by_variant,
        n_comparisons=len(treatments),
    )


def variants_from_records(records: Sequence[dict]) -> List[ExperimentVariant]:
    """Build variants from plain mappings (JSON / YAML input)."""
    out: List[ExperimentVariant] = []
    for i, r in enumerate(records):
        if not isinstance(r, dict):
            raise InvalidDesignError(f"Variant #{i} must be a mapping.")
        try:
            out.append(
                ExperimentVariant(
                    id=str(r["id"]),
                    name=str(r.get("name", r["id"])),
                    traffic_allocation=float(r["traffic_allocation"]),
                    expected_rate=float(r["expected_rate"]),
                    is_control=bool(r.get("is_control", False)),
                    description=str(r.get("description", "")),
                )
            )
        except KeyError as e:
            raise InvalidDesignError(f"Variant #{i} is missing field {e}.") from e
    return out
