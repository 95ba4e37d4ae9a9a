from __future__ import annotations

import json
from pathlib import Path
from typing import Any

import pandas as pd

from expcore.cli.bundle import finish_bundle, prepare_out_dir
from expcore.design import DesignParameters, balance_allocations, design_multi_variant, variants_from_records
from expcore.errors import InvalidDesignError
from expcore.report.render import render_design_report


def _load_variant_records(args) -> list[dict[str, Any]]:
    records = getattr(args, "variants", None)
    if records is None:
        src = getattr(args, "variants_json", None)
        if not src:
            raise InvalidDesignError("Provide variants (--variants-json FILE_OR_JSON or `params.variants` in a config).")
        text = str(src)
        if not text.lstrip().startswith("["):
            try:
                text = Path(text).read_text(encoding="utf-8")
            except OSError as e:
                raise InvalidDesignError(
                    f"--variants-json is neither a JSON list nor a readable file: {text[:80]}"
                ) from e
        records = json.loads(text)
    if not isinstance(records, list):
        raise InvalidDesignError("Variants must be a list of mappings.")
    return records


def cmd_design(args) -> int:
    variants = variants_from_records(_load_variant_records(args))
    if bool(getattr(args, "balance_traffic", False)):
        variants = balance_allocations(variants)

    tail = str(getattr(args, "tail", "two-sided"))
    if tail not in {"two-sided", "one-sided"}:
        raise ValueError("--tail must be two-sided|one-sided")

    params = DesignParameters(
        alpha=float(getattr(args, "alpha", 0.05)),
        power=float(getattr(args, "power", 0.8)),
        tail=tail,
        experiment_traffic_pct=float(getattr(args, "experiment_traffic", 100.0)),
    )
    daily_traffic = float(getattr(args, "daily_traffic", 1000.0))
    cost_per_visitor = float(getattr(args, "cost_per_visitor", 0.5))

    analysis = design_multi_variant(variants, params, daily_traffic=daily_traffic, cost_per_visitor=cost_per_visitor)

    table = pd.DataFrame(
        [
            {
                "variant": v.id,
                "is_control": v.is_control,
                "traffic_allocation": v.traffic_allocation,
                "expected_rate": v.expected_rate,
                "required_n": analysis.per_variant_sample_size[v.id],
                "power_at_uniform_n": analysis.power_by_variant.get(v.id),
            }
            for v in variants
        ]
    )

    out_dir = prepare_out_dir(getattr(args, "out", None), command="design")
    finish_bundle(
        out_dir,
        command="design",
        args=args,
        inputs={
            "variants": variants,
            "params": params,
            "daily_traffic": daily_traffic,
            "cost_per_visitor": cost_per_visitor,
        },
        estimates=analysis.as_dict(),
        report=render_design_report(analysis, variants, params),
        tables={"variants": table},
    )
    print(
        f"n_per_arm={analysis.uniform_sample_size} total={analysis.total_sample_size} "
        f"days={analysis.expected_duration_days} adjusted_alpha={analysis.adjusted_alpha:.5g}"
    )
    return 0
