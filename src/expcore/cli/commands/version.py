from __future__ import annotations

from expcore.cli.bundle import installed_version


def cmd_version(args) -> int:
    print(installed_version() or "unknown")
    return 0
