#!/usr/bin/env python3
"""Run the demo integrity checks against an existing job database.

Usage: python -m scripts.verify_data [--db PATH]
"""
from __future__ import annotations

import argparse
import sqlite3
from pathlib import Path

from scripts.seed_demo import db_path, run_integrity_checks


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Check task, line item and time entry links.")
    parser.add_argument("--db", type=Path, default=None, help="Database file (defaults to DATABASE_PATH)")
    return parser.parse_args()


def main() -> None:
    args = parse_args()
    path = args.db or db_path()
    if not path.exists():
        raise SystemExit(f"No job database at {path}. Seed it with `python -m scripts.seed_demo`.")

    with sqlite3.connect(path) as conn:
        findings = run_integrity_checks(conn)
    conn.close()

    if findings:
        print(f"{path}: {len(findings)} check(s) failed")
        for finding in findings:
            print(f"  {finding}")
        raise SystemExit(1)
    print(f"{path}: all integrity checks passed.")


if __name__ == "__main__":
    main()
