from __future__ import annotations

from expcore.cli.bundle import finish_bundle, prepare_out_dir
from expcore.sequential import BoundaryFamily, SequentialConfig, analyze_sequential
from expcore.sequential.reporting import make_sequential_plots, render_sequential_md
from expcore.significance import Observation


def cmd_sequential(args) -> int:
    boundary = str(getattr(args, "boundary", "obrien_fleming"))
    if boundary not in {b.value for b in BoundaryFamily}:
        raise ValueError("--boundary must be obrien_fleming|pocock|wang_tsiatis|fixed")

    cfg = SequentialConfig(
        alpha=float(getattr(args, "alpha", 0.05)),
        beta=float(getattr(args, "beta", 0.2)),
        boundary=BoundaryFamily(boundary),
        n_analyses=int(getattr(args, "n_analyses", 5)),
        wt_delta=float(getattr(args, "wt_delta", 0.25)),
        futility_enabled=not bool(getattr(args, "no_futility", False)),
        harm_enabled=not bool(getattr(args, "no_harm", False)),
    )

    control = Observation(int(getattr(args, "n_control")), int(getattr(args, "conv_control")))
    treatment = Observation(int(getattr(args, "n_treatment")), int(getattr(args, "conv_treatment")))
    max_n = int(getattr(args, "max_n"))

    res = analyze_sequential(control, treatment, max_n, cfg)

    out_dir = prepare_out_dir(getattr(args, "out", None), command="sequential")
    finish_bundle(
        out_dir,
        command="sequential",
        args=args,
        inputs={
            "control": {"visitors": control.visitors, "conversions": control.conversions},
            "treatment": {"visitors": treatment.visitors, "conversions": treatment.conversions},
            "max_n": max_n,
            "config": cfg,
        },
        estimates={
            "decision": res.decision.value,
            "current_z": res.current_z,
            "current_p": res.current_p,
            "bounds": res.bounds,
            "probability_of_success": res.probability_of_success,
            "expected_sample_size": res.expected_sample_size,
        },
        report=render_sequential_md(res, cfg),
        tables={"boundary_history": res.history},
        plots=make_sequential_plots(res),
        diagnostics=res.diagnostics,
        warnings=res.warnings,
    )
    print(f"decision={res.decision.value} z={res.current_z:.4f} upper={res.bounds.upper:.4f}")
    return 0
