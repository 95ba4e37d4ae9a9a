from __future__ import annotations

from typing import Dict

import numpy as np
from matplotlib.figure import Figure
import matplotlib.pyplot as plt

from expcore.sequential.schema import Decision, SequentialConfig, SequentialResult


_DECISION_TEXT = {
    Decision.CONTINUE: "Continue collecting data.",
    Decision.STOP_SUCCESS: "Stop for efficacy: the treatment crossed the upper boundary.",
    Decision.STOP_FUTILITY: "Stop for futility: the effect is unlikely to reach significance.",
    Decision.STOP_HARM: "Stop for harm: the treatment crossed the lower boundary.",
}


def _fmt(x: float) -> str:
    return f"{x:.4f}" if np.isfinite(x) else str(x)


def render_sequential_md(result: SequentialResult, cfg: SequentialConfig) -> str:
    b = result.bounds
    warn_block = ("- " + "\n- ".join(result.warnings)) if result.warnings else "(none)"

    notes: list[str] = [
        "Boundaries are on the z scale of a pooled two-proportion test; lower = -upper for every family.",
        "The futility boundary is constant (Phi^-1(beta)) and does not depend on the information fraction.",
        "Probability of success and expected sample size are planning heuristics (drift approximation), "
        "not exact boundary-crossing probabilities.",
    ]
    if result.decision == Decision.CONTINUE:
        notes.append(f"Expected total sample size: {result.expected_sample_size:,.0f}.")
    note_block = "\n".join([f"- {x}" for x in notes])

    return f"""# expcore sequential report

## Inputs
- current sample (both arms): `{result.current_n}` of max `{result.max_n}`
- boundary: `{cfg.boundary.value}` (looks={cfg.n_analyses}, delta={cfg.wt_delta})
- alpha: `{cfg.alpha}`, beta: `{cfg.beta}`
- futility monitoring: `{cfg.futility_enabled}`, harm monitoring: `{cfg.harm_enabled}`

## Current state
- information fraction: `{b.information_fraction:.4f}`
- z: `{result.current_z:.4f}` (p = `{result.current_p:.6g}`)
- upper / lower / futility: `{_fmt(b.upper)}` / `{_fmt(b.lower)}` / `{_fmt(b.futility)}`

## Decision
- **{result.decision.value}**: {_DECISION_TEXT[result.decision]}
- probability of success: `{result.probability_of_success:.4f}`
- expected sample size: `{result.expected_sample_size:,.0f}`

## Notes
{note_block}

## Warnings
{warn_block}

## Artifacts
- tables/boundary_history.csv
- plots/boundaries.png
"""


def make_boundary_plot(result: SequentialResult) -> Figure:
    h = result.history
    fig = plt.figure(figsize=(8, 4.5))
    ax = fig.add_subplot(111)
    ax.plot(h["n"], h["upper"], linestyle="--", label="efficacy")
    ax.plot(h["n"], h["lower"], linestyle="--", label="harm")
    fut = h["futility"].to_numpy(dtype=float)
    if np.isfinite(fut).any():
        ax.plot(h["n"], fut, linestyle=":", label="futility")
    ax.scatter([result.current_n], [result.current_z], color="black", zorder=3, label="current z")
    ax.axhline(0.0, linewidth=1.0)
    ax.set_title("Sequential boundaries")
    ax.set_xlabel("sample size (both arms)")
    ax.set_ylabel("z")
    ax.legend(loc="best")
    fig.tight_layout()
    return fig


def make_sequential_plots(result: SequentialResult) -> Dict[str, Figure]:
    return {"boundaries": make_boundary_plot(result)}
