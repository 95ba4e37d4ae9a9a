from __future__ import annotations

from expcore.cli.bundle import finish_bundle, prepare_out_dir
from expcore.power import analyze_power
from expcore.report.plots import make_power_plots
from expcore.report.render import render_power_report


def cmd_power(args) -> int:
    mode = str(getattr(args, "mode", "sample-size"))
    if mode not in {"power", "sample-size", "mde"}:
        raise ValueError("--mode must be power|sample-size|mde")

    tail = str(getattr(args, "tail", "two-sided"))
    if tail not in {"two-sided", "one-sided"}:
        raise ValueError("--tail must be two-sided|one-sided")

    inputs = {
        "mode": mode,
        "baseline": float(getattr(args, "baseline", 0.05)),
        "effect_pct": float(getattr(args, "effect_pct", 20.0)),
        "n": int(getattr(args, "n", 1000)),
        "power": float(getattr(args, "power", 0.8)),
        "alpha": float(getattr(args, "alpha", 0.05)),
        "tail": tail,
    }

    res = analyze_power(
        mode,
        p_baseline=inputs["baseline"],
        effect_pct=inputs["effect_pct"],
        n_per_group=inputs["n"],
        power=inputs["power"],
        alpha=inputs["alpha"],
        tail=tail,
    )

    warnings: list[str] = []
    if res.mde is not None and not res.mde.converged:
        warnings.append(f"MDE search did not converge after {res.mde.iterations} iterations.")
    if res.mde is not None and not res.mde.reached_target:
        warnings.append("Target power is not reachable within the MDE search range.")

    out_dir = prepare_out_dir(getattr(args, "out", None), command="power")
    finish_bundle(
        out_dir,
        command="power",
        args=args,
        inputs=inputs,
        estimates=res.as_dict(),
        report=render_power_report(res),
        tables={"power_curve": res.power_curve, "sample_size_curve": res.sample_size_curve},
        plots=make_power_plots(res, target_power=inputs["power"]),
        warnings=warnings,
    )
    print(f"power={res.power:.4f} n_per_group={res.n_per_group} effect_pct={res.effect_pct:.3f}")
    return 0
