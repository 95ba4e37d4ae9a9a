from __future__ import annotations

import sys
from pathlib import Path
from types import SimpleNamespace
from typing import Any, Callable

import yaml

from expcore.cli.commands.design import cmd_design
from expcore.cli.commands.power import cmd_power
from expcore.cli.commands.sequential import cmd_sequential
from expcore.cli.commands.significance import cmd_significance
from expcore.cli.commands.simulate import cmd_simulate


_COMMANDS: dict[str, Callable[[Any], int]] = {
    "significance": cmd_significance,
    "power": cmd_power,
    "sequential": cmd_sequential,
    "simulate": cmd_simulate,
    "design": cmd_design,
}

# Required `params` keys per command; everything else has a default.
_REQUIRED: dict[str, list[str]] = {
    "significance": ["visitors_a", "conversions_a", "visitors_b", "conversions_b"],
    "sequential": ["n_control", "conv_control", "n_treatment", "conv_treatment", "max_n"],
    "design": ["variants"],
}


def _fail(msg: str) -> int:
    print(f"[expcore][error] {msg}", file=sys.stderr)
    return 2


def _as_args(d: dict[str, Any]) -> SimpleNamespace:
    # cmd_* functions expect attribute access (args.foo)
    return SimpleNamespace(**d)


def _load_yaml(path: str) -> dict[str, Any]:
    p = Path(path)
    if not p.exists():
        raise FileNotFoundError(f"Config not found: {path}")
    data = yaml.safe_load(p.read_text(encoding="utf-8"))
    if not isinstance(data, dict):
        raise ValueError("Config root must be a mapping (YAML dict).")
    return data


def cmd_run_config(args) -> int:
    cfg_path = str(args.config)
    try:
        cfg = _load_yaml(cfg_path)
    except (FileNotFoundError, ValueError, yaml.YAMLError) as e:
        return _fail(str(e))

    command = str(cfg.get("command", "")).strip().replace("_", "-")
    if not command:
        return _fail("Missing required field: command")
    if command not in _COMMANDS:
        return _fail(f"Unknown command: {command}")

    params = cfg.get("params", {}) or {}
    if not isinstance(params, dict):
        return _fail("Field `params` must be a mapping (YAML dict).")

    params = {str(k).replace("-", "_"): v for k, v in params.items()}
    missing = [k for k in _REQUIRED.get(command, []) if params.get(k) is None]
    if missing:
        return _fail(f"{command} requires params: {missing}")

    merged = {"out": cfg.get("out", None), **params}
    return int(_COMMANDS[command](_as_args(merged)))
