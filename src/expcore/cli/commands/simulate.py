from __future__ import annotations

from expcore.cli.bundle import finish_bundle, prepare_out_dir
from expcore.report.plots import make_simulation_plots
from expcore.report.render import render_simulation_report
from expcore.simulate import BehaviorProfile, SimulationConfig, run_monte_carlo


def cmd_simulate(args) -> int:
    profile = str(getattr(args, "profile", "uniform"))
    if profile not in {p.value for p in BehaviorProfile}:
        raise ValueError("--profile must be uniform|increasing|decreasing|seasonal|weekend_effect")

    cfg = SimulationConfig(
        baseline_rate=float(getattr(args, "baseline", 0.05)),
        effect_pct=float(getattr(args, "effect_pct", 20.0)),
        n_per_variant=int(getattr(args, "n_per_variant", 1000)),
        n_simulations=int(getattr(args, "runs", 100)),
        horizon_days=int(getattr(args, "horizon", 30)),
        profile=BehaviorProfile(profile),
        weekend_effect_pct=float(getattr(args, "weekend_effect", 10.0)),
        alpha=float(getattr(args, "alpha", 0.05)),
        seed=int(getattr(args, "seed", 42)),
    )
    workers = int(getattr(args, "workers", 1) or 1)

    summary = run_monte_carlo(cfg, workers=workers)

    out_dir = prepare_out_dir(getattr(args, "out", None), command="simulate")
    finish_bundle(
        out_dir,
        command="simulate",
        args=args,
        inputs={"sim_config": cfg, "workers": workers},
        estimates=summary.as_dict(),
        report=render_simulation_report(summary, cfg),
        tables={
            "daily_significance": summary.daily_significance,
            "example_run": summary.example_run.to_frame(),
        },
        plots=make_simulation_plots(summary, cfg),
    )
    print(f"power={summary.power:.4f} mean_p={summary.mean_p_value:.4f} runs={summary.n_simulations}")
    return 0
