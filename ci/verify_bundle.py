import json
from pathlib import Path
import sys


class BundleError(Exception):
    pass


def _die(msg: str) -> None:
    raise BundleError(msg)


def _ok(msg: str) -> None:
    print(f"[verify_bundle] {msg}")


def _read_json(p: Path) -> dict:
    try:
        return json.loads(p.read_text(encoding="utf-8"))
    except (OSError, ValueError) as e:
        _die(f"Failed to read json: {p} ({e})")


def _require_file(p: Path) -> None:
    if not p.exists() or not p.is_file():
        _die(f"Missing file: {p}")
    if p.stat().st_size <= 0:
        _die(f"Empty file: {p}")


def _is_list_of_str(x) -> bool:
    return isinstance(x, list) and all(isinstance(i, str) for i in x)


def verify_bundle_common(out_dir: Path) -> dict:
    """
    Structural + integrity checks:
      - results.json, report.md and run_meta.json exist and are non-empty
      - results.json has the common top-level keys
      - every artifact path exists and is non-empty
    """
    if not out_dir.is_dir():
        _die(f"Missing dir: {out_dir}")

    for name in ("results.json", "report.md", "run_meta.json"):
        _require_file(out_dir / name)

    payload = _read_json(out_dir / "results.json")
    for key in ("command", "inputs", "estimates", "artifacts"):
        if key not in payload:
            _die(f"{out_dir}: results.json missing '{key}'")

    artifacts = payload.get("artifacts", {})
    tables = artifacts.get("tables", [])
    plots = artifacts.get("plots", [])

    if not _is_list_of_str(tables):
        _die(f"{out_dir}: artifacts.tables must be list[str]")
    if not _is_list_of_str(plots):
        _die(f"{out_dir}: artifacts.plots must be list[str]")

    for rel in tables + plots:
        _require_file(out_dir / str(rel).replace("\\", "/"))

    return payload


def _require_estimates(payload: dict, keys: list[str]) -> None:
    est = payload.get("estimates", {})
    missing = [k for k in keys if k not in est]
    if missing:
        _die(f"results.json estimates missing {missing}")


def verify_significance(out_dir: Path, payload: dict) -> None:
    _require_estimates(payload, ["z_score", "p_value", "is_significant", "confidence_interval"])


def verify_power(out_dir: Path, payload: dict) -> None:
    _require_estimates(payload, ["power", "n_per_group", "effect_pct"])
    _require_file(out_dir / "tables" / "power_curve.csv")
    _require_file(out_dir / "tables" / "sample_size_curve.csv")
    _require_file(out_dir / "plots" / "power_curve.png")


def verify_sequential(out_dir: Path, payload: dict) -> None:
    _require_estimates(payload, ["decision", "current_z", "bounds", "probability_of_success"])
    _require_file(out_dir / "tables" / "boundary_history.csv")
    _require_file(out_dir / "plots" / "boundaries.png")


def verify_simulate(out_dir: Path, payload: dict) -> None:
    _require_estimates(payload, ["power", "mean_p_value", "false_positive_rate"])
    _require_file(out_dir / "tables" / "daily_significance.csv")
    _require_file(out_dir / "plots" / "p_value_trajectory.png")


def verify_design(out_dir: Path, payload: dict) -> None:
    _require_estimates(payload, ["total_sample_size", "per_variant_sample_size", "adjusted_alpha"])
    _require_file(out_dir / "tables" / "variants.csv")


_VERIFIERS = {
    "significance": verify_significance,
    "power": verify_power,
    "sequential": verify_sequential,
    "simulate": verify_simulate,
    "design": verify_design,
}


def verify_one(out_dir: Path) -> str:
    payload = verify_bundle_common(out_dir)
    cmd = str(payload.get("command", "")).strip()

    fn = _VERIFIERS.get(cmd)
    if fn is None:
        _ok(f"{out_dir}: unknown command '{cmd}', only common checks applied")
    else:
        fn(out_dir, payload)

    _ok(f"{out_dir}: OK")
    return cmd


def main(argv: list[str]) -> int:
    if len(argv) < 2:
        print("Usage: python ci/verify_bundle.py <out_dir> [<out_dir> ...]")
        return 2

    out_dirs = [Path(a) for a in argv[1:]]
    try:
        for d in out_dirs:
            verify_one(d)
    except BundleError as e:
        print(f"[verify_bundle][FAIL] {e}", file=sys.stderr)
        return 2

    _ok(f"OK ({len(out_dirs)} bundles)")
    return 0


if __name__ == "__main__":
    raise SystemExit(main(sys.argv))
