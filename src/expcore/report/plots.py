from __future__ import annotations

from typing import Dict

import pandas as pd
from matplotlib.figure import Figure
import matplotlib.pyplot as plt

from expcore.power import PowerAnalysis
from expcore.simulate import SimulationConfig, SimulationSummary


def _curve(df: pd.DataFrame, x: str, title: str, xlabel: str, target: float) -> Figure:
    fig = plt.figure(figsize=(8, 4.5))
    ax = fig.add_subplot(111)
    ax.plot(df[x], df["power"], label="power")
    ax.axhline(target, linestyle="--", linewidth=1.0, label="target")
    ax.set_ylim(0.0, 1.0)
    ax.set_title(title)
    ax.set_xlabel(xlabel)
    ax.set_ylabel("power")
    ax.legend(loc="best")
    fig.tight_layout()
    return fig


def make_power_plots(res: PowerAnalysis, target_power: float = 0.8) -> Dict[str, Figure]:
    return {
        "power_curve": _curve(
            res.power_curve, "effect_pct", f"Power vs effect (n={res.n_per_group:,} per group)", "relative effect (%)", target_power
        ),
        "sample_size_curve": _curve(
            res.sample_size_curve, "n_per_group", f"Power vs sample size (effect={res.effect_pct:.1f}%)", "n per group", target_power
        ),
    }


def make_pvalue_trajectory_plot(summary: SimulationSummary, cfg: SimulationConfig) -> Figure:
    run = summary.example_run.to_frame()
    fig = plt.figure(figsize=(8, 4.5))
    ax = fig.add_subplot(111)
    ax.plot(run["day"], run["p_value"], label="p-value (run 1)")
    ax.axhline(cfg.alpha, linestyle="--", linewidth=1.0, label="alpha")
    ax.set_title("Cumulative p-value by day")
    ax.set_xlabel("day")
    ax.set_ylabel("p-value")
    ax.legend(loc="best")
    fig.tight_layout()
    return fig


def make_daily_significance_plot(summary: SimulationSummary) -> Figure:
    d = summary.daily_significance
    fig = plt.figure(figsize=(8, 4.5))
    ax = fig.add_subplot(111)
    ax.bar(d["day"], d["share_significant"])
    ax.set_ylim(0.0, 1.0)
    ax.set_title("Share of runs significant by day")
    ax.set_xlabel("day")
    ax.set_ylabel("share significant")
    fig.tight_layout()
    return fig


def make_simulation_plots(summary: SimulationSummary, cfg: SimulationConfig) -> Dict[str, Figure]:
    return {
        "p_value_trajectory": make_pvalue_trajectory_plot(summary, cfg),
        "daily_significance": make_daily_significance_plot(summary),
    }
