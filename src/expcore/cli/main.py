from __future__ import annotations

import argparse
import logging
import sys

from expcore.cli.commands.design import cmd_design
from expcore.cli.commands.power import cmd_power
from expcore.cli.commands.run_config import cmd_run_config
from expcore.cli.commands.sequential import cmd_sequential
from expcore.cli.commands.significance import cmd_significance
from expcore.cli.commands.simulate import cmd_simulate
from expcore.cli.commands.version import cmd_version


def _add_out(sp: argparse.ArgumentParser) -> None:
    sp.add_argument("--out", default=None, help="Bundle directory (default: results/<command>/<timestamp>).")


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(prog="expcore", description="Experiment design and monitoring statistics.")
    p.add_argument("-v", "--verbose", action="store_true", help="Log progress at INFO level.")
    sub = p.add_subparsers(dest="command", required=True)

    sp = sub.add_parser("version", help="Print installed package version.")
    sp.set_defaults(func=cmd_version)

    sp = sub.add_parser("significance", help="Two-proportion z-test for a finished test.")
    sp.add_argument("--visitors-a", type=int, required=True)
    sp.add_argument("--conversions-a", type=int, required=True)
    sp.add_argument("--visitors-b", type=int, required=True)
    sp.add_argument("--conversions-b", type=int, required=True)
    sp.add_argument("--confidence", type=float, default=0.95)
    _add_out(sp)
    sp.set_defaults(func=cmd_significance)

    sp = sub.add_parser("power", help="Solve for power, sample size or MDE.")
    sp.add_argument("--mode", choices=["power", "sample-size", "mde"], default="sample-size")
    sp.add_argument("--baseline", type=float, default=0.05, help="Baseline conversion rate (0..1).")
    sp.add_argument("--effect-pct", type=float, default=20.0, help="Relative lift in percent.")
    sp.add_argument("--n", type=int, default=1000, help="Sample size per group.")
    sp.add_argument("--power", type=float, default=0.8)
    sp.add_argument("--alpha", type=float, default=0.05)
    sp.add_argument("--tail", choices=["two-sided", "one-sided"], default="two-sided")
    _add_out(sp)
    sp.set_defaults(func=cmd_power)

    sp = sub.add_parser("sequential", help="Group sequential monitoring from current counts.")
    sp.add_argument("--n-control", type=int, required=True)
    sp.add_argument("--conv-control", type=int, required=True)
    sp.add_argument("--n-treatment", type=int, required=True)
    sp.add_argument("--conv-treatment", type=int, required=True)
    sp.add_argument("--max-n", type=int, required=True, help="Planned maximum sample size (both arms).")
    sp.add_argument("--alpha", type=float, default=0.05)
    sp.add_argument("--beta", type=float, default=0.2)
    sp.add_argument("--boundary", choices=["obrien_fleming", "pocock", "wang_tsiatis", "fixed"], default="obrien_fleming")
    sp.add_argument("--n-analyses", type=int, default=5)
    sp.add_argument("--wt-delta", type=float, default=0.25)
    sp.add_argument("--no-futility", action="store_true")
    sp.add_argument("--no-harm", action="store_true")
    _add_out(sp)
    sp.set_defaults(func=cmd_sequential)

    sp = sub.add_parser("simulate", help="Monte Carlo simulation of a conversion test.")
    sp.add_argument("--baseline", type=float, default=0.05)
    sp.add_argument("--effect-pct", type=float, default=20.0)
    sp.add_argument("--n-per-variant", type=int, default=1000)
    sp.add_argument("--runs", type=int, default=100)
    sp.add_argument("--horizon", type=int, default=30)
    sp.add_argument(
        "--profile",
        choices=["uniform", "increasing", "decreasing", "seasonal", "weekend_effect"],
        default="uniform",
    )
    sp.add_argument("--weekend-effect", type=float, default=10.0)
    sp.add_argument("--alpha", type=float, default=0.05)
    sp.add_argument("--seed", type=int, default=42)
    sp.add_argument("--workers", type=int, default=1)
    _add_out(sp)
    sp.set_defaults(func=cmd_simulate)

    sp = sub.add_parser("design", help="Size an A/B/n design with Bonferroni correction.")
    sp.add_argument("--variants-json", required=True, help="JSON list of variants, or a path to a JSON file.")
    sp.add_argument("--alpha", type=float, default=0.05)
    sp.add_argument("--power", type=float, default=0.8)
    sp.add_argument("--tail", choices=["two-sided", "one-sided"], default="two-sided")
    sp.add_argument("--daily-traffic", type=float, default=1000.0)
    sp.add_argument("--cost-per-visitor", type=float, default=0.5)
    sp.add_argument("--experiment-traffic", type=float, default=100.0)
    sp.add_argument("--balance-traffic", action="store_true", help="Replace allocations with equal integer shares.")
    _add_out(sp)
    sp.set_defaults(func=cmd_design)

    sp = sub.add_parser("run-config", help="Run a command described by a YAML file.")
    sp.add_argument("config")
    sp.set_defaults(func=cmd_run_config)

    return p


def main(argv: list[str] | None = None) -> int:
    p = build_parser()
    args = p.parse_args(argv)
    logging.basicConfig(
        level=logging.INFO if args.verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    try:
        return int(args.func(args))
    except ValueError as e:
        print(f"[expcore][error] {e}", file=sys.stderr)
        return 2


if __name__ == "__main__":
    raise SystemExit(main())
