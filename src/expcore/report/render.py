from __future__ import annotations

from expcore.design import DesignAnalysis, ExperimentVariant, DesignParameters
from expcore.power import PowerAnalysis
from expcore.significance import SignificanceResult
from expcore.simulate import SimulationConfig, SimulationSummary


def _pct(x: float, digits: int = 2) -> str:
    return f"{100.0 * x:.{digits}f}%"


def render_significance_report(res: SignificanceResult, inputs: dict) -> str:
    lines: list[str] = []
    lines.append("# Significance test report")
    lines.append("")

    lines.append("## Input")
    lines.append(f"- control: {inputs.get('conversions_a')} / {inputs.get('visitors_a')}")
    lines.append(f"- treatment: {inputs.get('conversions_b')} / {inputs.get('visitors_b')}")
    lines.append(f"- confidence level: {_pct(res.confidence_level, 1)}")

    lines.append("")
    lines.append("## Results")
    lines.append(f"- conversion rate (control): {_pct(res.rate_control)}")
    lines.append(f"- conversion rate (treatment): {_pct(res.rate_treatment)}")
    lines.append(f"- z-score: {res.z_score:.4f}")
    lines.append(f"- p-value (two-sided): {res.p_value:.6f}")
    lines.append(f"- significant at alpha={res.alpha:.3g}: {res.is_significant}")
    lo, hi = res.confidence_interval
    lines.append(f"- CI of difference: [{_pct(lo, 3)}, {_pct(hi, 3)}]")
    lines.append(f"- relative improvement: {_pct(res.relative_improvement)}")
    lines.append(f"- Cohen's h: {res.effect_size_h:.4f} ({res.effect_size_label} effect)")
    lines.append(f"- achieved power: {_pct(res.achieved_power, 1)}")

    lines.append("")
    lines.append("## Notes")
    lines.append("- The z-test uses the pooled standard error; the CI uses the unpooled standard error.")
    lines.append("- Achieved (observed) power is a function of the p-value and should not be used to justify a null result.")
    lines.append("")

    return "\n".join(lines)


def render_power_report(res: PowerAnalysis) -> str:
    lines: list[str] = []
    lines.append("# Power analysis report")
    lines.append("")

    lines.append("## Input")
    lines.append(f"- solved for: {res.mode}")
    lines.append(f"- baseline rate: {_pct(res.p_baseline)}")
    lines.append(f"- alpha: {res.alpha} ({res.tail})")

    lines.append("")
    lines.append("## Results")
    lines.append(f"- power: {_pct(res.power, 1)} (beta = {res.beta:.3f})")
    lines.append(f"- sample size per group: {res.n_per_group:,}")
    lines.append(f"- relative effect: {res.effect_pct:.2f}%")
    if res.mde is not None:
        lines.append(f"- bisection: {res.mde.iterations} iterations, converged={res.mde.converged}")
        if not res.mde.reached_target:
            lines.append("- target power is not reachable within the search range; the MDE is the range limit.")

    lines.append("")
    lines.append("## Artifacts")
    lines.append("- tables/power_curve.csv")
    lines.append("- tables/sample_size_curve.csv")
    lines.append("- plots/power_curve.png")
    lines.append("- plots/sample_size_curve.png")
    lines.append("")

    return "\n".join(lines)


def render_simulation_report(summary: SimulationSummary, cfg: SimulationConfig) -> str:
    lines: list[str] = []
    lines.append("# Monte Carlo simulation report")
    lines.append("")

    lines.append("## Input")
    lines.append(f"- baseline rate: {_pct(cfg.baseline_rate)}")
    lines.append(f"- treatment effect: {cfg.effect_pct:g}% relative")
    lines.append(f"- sample size per variant: {cfg.n_per_variant:,}")
    lines.append(f"- runs: {cfg.n_simulations}, horizon: {cfg.horizon_days} days")
    lines.append(f"- traffic profile: {cfg.profile.value}")
    lines.append(f"- alpha: {cfg.alpha}, seed: {cfg.seed}")

    lines.append("")
    lines.append("## Results")
    lines.append(f"- significant runs: {summary.significant_results} / {summary.n_simulations}")
    lines.append(f"- empirical power: {_pct(summary.power, 1)} (± {_pct(summary.power_se, 1)} s.e.)")
    lines.append(f"- mean final p-value: {summary.mean_p_value:.4f}")
    lines.append(f"- mean effect gap: {_pct(summary.mean_effect_gap, 3)}")
    lines.append(f"- false-positive rate: {_pct(summary.false_positive_rate, 1)}")

    lines.append("")
    lines.append("## Notes")
    if cfg.effect_pct == 0:
        lines.append("- The true effect is zero (A/A): every significant run is a false positive.")
    else:
        lines.append("- The false-positive rate is only measured when the true effect is zero.")
    lines.append("- Daily significance shares show how often peeking would have declared a winner on each day.")
    lines.append("")

    return "\n".join(lines)


def render_design_report(
    analysis: DesignAnalysis,
    variants: list[ExperimentVariant],
    params: DesignParameters,
) -> str:
    lines: list[str] = []
    lines.append("# Experiment design report")
    lines.append("")

    lines.append("## Variants")
    for v in variants:
        role = "control" if v.is_control else "treatment"
        lines.append(f"- {v.name} (`{v.id}`, {role}): {v.traffic_allocation:g}% traffic, expected rate {_pct(v.expected_rate)}")

    lines.append("")
    lines.append("## Settings")
    lines.append(f"- alpha: {params.alpha} -> {analysis.adjusted_alpha:.5g} per comparison (Bonferroni, {analysis.n_comparisons} comparisons)")
    lines.append(f"- power: {params.power} ({params.tail})")
    lines.append(f"- experiment traffic: {params.experiment_traffic_pct:g}%")

    lines.append("")
    lines.append("## Results")
    lines.append(f"- sample size per arm: {analysis.uniform_sample_size:,}")
    for vid, n in analysis.per_variant_sample_size.items():
        pw = analysis.power_by_variant.get(vid)
        suffix = f", power at uniform size {_pct(pw, 1)}" if pw is not None else ""
        lines.append(f"  - `{vid}`: {n:,}{suffix}")
    lines.append(f"- total sample size: {analysis.total_sample_size:,}")
    lines.append(f"- expected duration: {analysis.expected_duration_days} days")
    lines.append(f"- estimated cost: {analysis.estimated_cost:,.2f}")
    lines.append("")

    return "\n".join(lines)
