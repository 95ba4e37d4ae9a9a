"""
Standard normal distribution helpers.

Closed-form rational approximations, so every solver in the package shares
one consistent definition of Phi and Phi^-1:

- `erf` follows Abramowitz & Stegun 7.1.26 (absolute error <= 1.5e-7);
- `normal_ppf` is Acklam's approximation of the probit function
  (relative error about 1.15e-9).

They agree with `scipy.stats.norm` well within the precision that matters
for sample size planning.
"""

from __future__ import annotations

import math
from typing import Literal

from expcore.errors import DomainError


TailType = Literal["two-sided", "one-sided"]

# Abramowitz & Stegun 7.1.26
_AS_P = 0.3275911
_AS_A = (0.254829592, -0.284496736, 1.421413741, -1.453152027, 1.061405429)

# Acklam's coefficients
_A = (
    -3.969683028665376e01,
    2.209460984245205e02,
    -2.759285104469687e02,
    1.383577518672690e02,
    -3.066479806614716e01,
    2.506628277459239e00,
)
_B = (
    -5.447609879822406e01,
    1.615858368580409e02,
    -1.556989798598866e02,
    6.680131188771972e01,
    -1.328068155288572e01,
)
_C = (
    -7.784894002430293e-03,
    -3.223964580411365e-01,
    -2.400758277161838e00,
    -2.549732539343734e00,
    4.374664141464968e00,
    2.938163982698783e00,
)
_D = (
    7.784695709041462e-03,
    3.224671290700398e-01,
    2.445134137142996e00,
    3.754408661907416e00,
)

_P_LOW = 0.02425
_P_HIGH = 1 - _P_LOW


def erf(x: float) -> float:
    """Error function; odd, with erf(0) == 0."""
    if x == 0:
        return 0.0
    sign = 1.0 if x > 0 else -1.0
    x = abs(x)

    t = 1.0 / (1.0 + _AS_P * x)
    a1, a2, a3, a4, a5 = _AS_A
    poly = ((((a5 * t + a4) * t + a3) * t + a2) * t + a1) * t
    return sign * (1.0 - poly * math.exp(-x * x))


def normal_cdf(x: float) -> float:
    """Standard normal CDF, Phi(x)."""
    return 0.5 * (1.0 + erf(x / math.sqrt(2.0)))


def normal_sf(x: float) -> float:
    """Survival function 1 - Phi(x)."""
    return 1.0 - normal_cdf(x)


def _tail_quantile(q: float) -> float:
    c1, c2, c3, c4, c5, c6 = _C
    d1, d2, d3, d4 = _D
    num = ((((c1 * q + c2) * q + c3) * q + c4) * q + c5) * q + c6
    den = (((d1 * q + d2) * q + d3) * q + d4) * q + 1.0
    return num / den


def normal_ppf(p: float) -> float:
    """
    Inverse standard normal CDF (probit).

    Parameters
    ----------
    p : float
        Probability strictly inside (0, 1).

    Returns
    -------
    float
        z such that Phi(z) ~= p. Exactly 0 for p = 0.5.

    Raises
    ------
    DomainError
        If p is not a finite number in (0, 1).
    """
    if not math.isfinite(p) or p <= 0 or p >= 1:
        raise DomainError(f"p must be in (0, 1), got {p!r}.")

    if p < _P_LOW:
        return _tail_quantile(math.sqrt(-2.0 * math.log(p)))

    if p > _P_HIGH:
        return -_tail_quantile(math.sqrt(-2.0 * math.log(1.0 - p)))

    q = p - 0.5
    r = q * q
    a1, a2, a3, a4, a5, a6 = _A
    b1, b2, b3, b4, b5 = _B
    num = (((((a1 * r + a2) * r + a3) * r + a4) * r + a5) * r + a6) * q
    den = ((((b1 * r + b2) * r + b3) * r + b4) * r + b5) * r + 1.0
    return num / den


def z_critical(alpha: float, tail: TailType = "two-sided") -> float:
    """Return the critical z-value for a given alpha and tail type."""
    if not 0 < alpha < 1:
        raise DomainError("alpha must be in (0, 1).")
    if tail == "two-sided":
        return normal_ppf(1 - alpha / 2.0)
    elif tail == "one-sided":
        return normal_ppf(1 - alpha)
    else:
        raise ValueError("tail must be 'two-sided' or 'one-sided'.")
