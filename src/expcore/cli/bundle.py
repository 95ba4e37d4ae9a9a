from __future__ import annotations

import json
import logging
import math
import platform
import sys
from dataclasses import asdict, is_dataclass
from datetime import datetime, timezone
from enum import Enum
from importlib.metadata import PackageNotFoundError, version as pkg_version
from pathlib import Path
from typing import Any

import numpy as np


logger = logging.getLogger(__name__)

DIST_NAME = "experiment-design-core"


def installed_version() -> str | None:
    try:
        return pkg_version(DIST_NAME)
    except PackageNotFoundError:
        return None


def _safe_json(obj: Any) -> Any:
    """
    Make an object JSON-serializable (best-effort).

    Non-finite floats become strings ("inf", "-inf", "nan") so results.json
    stays strict JSON.
    """
    if obj is None or isinstance(obj, (str, bool)):
        return obj
    if isinstance(obj, Enum):
        return obj.value
    if isinstance(obj, (int, np.integer)):
        return int(obj)
    if isinstance(obj, (float, np.floating)):
        x = float(obj)
        return x if math.isfinite(x) else str(x)
    if isinstance(obj, Path):
        return str(obj)
    if isinstance(obj, (list, tuple, np.ndarray)):
        return [_safe_json(x) for x in obj]
    if isinstance(obj, dict):
        return {str(k): _safe_json(v) for k, v in obj.items()}
    if is_dataclass(obj):
        return _safe_json(asdict(obj))
    if hasattr(obj, "__dict__"):
        return _safe_json(vars(obj))
    return str(obj)


def prepare_out_dir(out: str | None, command: str) -> Path:
    if out is None or str(out).strip() == "":
        ts = datetime.now().strftime("%Y%m%d_%H%M%S")
        out_dir = Path("results") / command / ts
    else:
        out_dir = Path(out)

    for sub in ("", "tables", "plots"):
        (out_dir / sub).mkdir(parents=True, exist_ok=True)
    logger.info("Writing %s bundle to %s", command, out_dir)
    return out_dir


def write_text(path: Path, text: str) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(text, encoding="utf-8")


def write_json(path: Path, payload: dict[str, Any]) -> None:
    write_text(path, json.dumps(_safe_json(payload), ensure_ascii=False, indent=2) + "\n")


def write_run_meta(out_dir: Path, args: Any, extra: dict[str, Any] | None = None) -> None:
    args_dict = dict(args) if isinstance(args, dict) else dict(vars(args))
    # argparse dispatch function
    args_dict.pop("func", None)

    meta: dict[str, Any] = {
        "timestamp_utc": datetime.now(timezone.utc).replace(microsecond=0).isoformat(),
        "expcore_version": installed_version(),
        "python_version": sys.version,
        "platform": {
            "system": platform.system(),
            "machine": platform.machine(),
            "python_implementation": platform.python_implementation(),
        },
        "args": _safe_json(args_dict),
    }
    if extra:
        meta["extra"] = _safe_json(extra)

    write_json(out_dir / "run_meta.json", meta)


def write_results_json(out_dir: Path, payload: dict[str, Any]) -> None:
    write_json(out_dir / "results.json", payload)


def write_report_md(out_dir: Path, text: str) -> None:
    write_text(out_dir / "report.md", text)


def write_table(out_dir: Path, name: str, df) -> str:
    """
    Writes tables/<name>.csv and returns relative path for artifacts registry.
    """
    rel = Path("tables") / f"{name}.csv"
    path = out_dir / rel
    path.parent.mkdir(parents=True, exist_ok=True)
    df.to_csv(path, index=False)
    return rel.as_posix()


def save_plot(out_dir: Path, name: str, fig, dpi: int = 120) -> str:
    """
    Saves plots/<name>.png, closes the figure and returns the relative path.
    """
    rel = Path("plots") / f"{name}.png"
    path = out_dir / rel
    path.parent.mkdir(parents=True, exist_ok=True)

    import matplotlib.pyplot as plt  # local import to keep import-time light

    fig.savefig(path, dpi=dpi, bbox_inches="tight")
    plt.close(fig)
    return rel.as_posix()


def finish_bundle(
    out_dir: Path,
    command: str,
    args: Any,
    inputs: dict[str, Any],
    estimates: dict[str, Any],
    report: str,
    tables: dict[str, Any] | None = None,
    plots: dict[str, Any] | None = None,
    diagnostics: dict[str, Any] | None = None,
    warnings: list[str] | None = None,
) -> dict[str, Any]:
    """Write tables, plots, report, run_meta and results.json; return the payload."""
    artifacts: dict[str, Any] = {"report_md": "report.md", "tables": [], "plots": []}
    for name, df in (tables or {}).items():
        artifacts["tables"].append(write_table(out_dir, name, df))
    for name, fig in (plots or {}).items():
        artifacts["plots"].append(save_plot(out_dir, name, fig))

    payload: dict[str, Any] = {
        "command": command,
        "inputs": inputs,
        "estimates": estimates,
        "diagnostics": diagnostics or {},
        "warnings": list(warnings or []),
        "artifacts": artifacts,
    }

    write_run_meta(out_dir, args, extra={"command": command})
    write_report_md(out_dir, report)
    write_results_json(out_dir, payload)
    return payload
