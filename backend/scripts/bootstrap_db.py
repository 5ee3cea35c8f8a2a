"""Idempotent database bootstrap for init jobs: tables, permission catalog, first Super Admin."""

from __future__ import annotations

import os
import sys

from dotenv import load_dotenv

CURRENT_DIR = os.path.dirname(os.path.abspath(__file__))
BACKEND_ROOT = os.path.dirname(CURRENT_DIR)
if BACKEND_ROOT not in sys.path:
    sys.path.insert(0, BACKEND_ROOT)

load_dotenv(os.path.join(BACKEND_ROOT, ".env"))

from plantops.startup import run_startup  # noqa: E402


def main() -> None:
    diagnostics = run_startup()
    for issue in diagnostics.env_issues:
        print(f"config: {issue}", file=sys.stderr)
    if diagnostics.errors or not diagnostics.db_initialized:
        for error in diagnostics.errors:
            print(f"bootstrap failed: {error}", file=sys.stderr)
        sys.exit(1)

    print("db ok")
    print(f"permissions ok ({diagnostics.permissions_seeded} seeded)")
    print(f"plant units ok ({diagnostics.plant_units_seeded} seeded)")
    print(f"bootstrap admin {'created' if diagnostics.bootstrap_admin_created else 'skipped'}")


if __name__ == "__main__":
    main()
