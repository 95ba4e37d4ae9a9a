from __future__ import annotations

from expcore.cli.bundle import finish_bundle, prepare_out_dir
from expcore.report.render import render_significance_report
from expcore.significance import Observation, two_proportion_test


def cmd_significance(args) -> int:
    inputs = {
        "visitors_a": int(getattr(args, "visitors_a")),
        "conversions_a": int(getattr(args, "conversions_a")),
        "visitors_b": int(getattr(args, "visitors_b")),
        "conversions_b": int(getattr(args, "conversions_b")),
        "confidence": float(getattr(args, "confidence", 0.95)),
    }

    res = two_proportion_test(
        Observation(inputs["visitors_a"], inputs["conversions_a"]),
        Observation(inputs["visitors_b"], inputs["conversions_b"]),
        confidence_level=inputs["confidence"],
    )

    out_dir = prepare_out_dir(getattr(args, "out", None), command="significance")
    finish_bundle(
        out_dir,
        command="significance",
        args=args,
        inputs=inputs,
        estimates=res.as_dict(),
        report=render_significance_report(res, inputs),
    )
    print(f"z={res.z_score:.4f} p={res.p_value:.6f} significant={res.is_significant}")
    return 0
