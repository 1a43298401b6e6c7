"""Commission engine CLI for batch runs outside the web service.

Recalculates one employee-month or a whole month, imports rate-table tiers
from CSV or Excel, and exports a month's commissions to an xlsx workbook.
"""
from __future__ import annotations

import argparse
import logging
from pathlib import Path
from typing import Optional, Sequence

from commission_desk.config import configure_logging
from commission_desk.core.periods import normalize_month
from commission_desk.database import SessionLocal, init_db
from commission_desk.errors import CommissionError
from commission_desk.exporting import export_commission_workbook
from commission_desk.importers.rate_tables import import_rate_tables
from commission_desk.services import CommissionService

logger = logging.getLogger("commissions")


def _month(value: str) -> str:
    try:
        return normalize_month(value)
    except ValueError as exc:
        raise argparse.ArgumentTypeError(str(exc)) from exc


def parse_args(argv: Optional[Sequence[str]] = None) -> argparse.Namespace:
    """Parse CLI arguments."""

    parser = argparse.ArgumentParser(description="Compute, import and export monthly commissions.")
    parser.add_argument("--log-level", default=None, help="Override COMMISSION_LOG_LEVEL.")
    subparsers = parser.add_subparsers(dest="command", required=True)

    recalc = subparsers.add_parser("recalculate", help="Recompute one employee for one month.")
    recalc.add_argument("--employee", type=int, required=True, help="Employee id.")
    recalc.add_argument("--month", type=_month, required=True, help="Target month in YYYY-MM format.")

    recalc_all = subparsers.add_parser("recalculate-all", help="Recompute every employee with facts in a month.")
    recalc_all.add_argument("--month", type=_month, required=True, help="Target month in YYYY-MM format.")

    importer = subparsers.add_parser("import-tiers", help="Publish rate-table versions from a tier sheet.")
    importer.add_argument("--input", required=True, help="Path to a tiers CSV or Excel file.")

    exporter = subparsers.add_parser("export", help="Write a month's current commissions to xlsx.")
    exporter.add_argument("--month", type=_month, required=True, help="Target month in YYYY-MM format.")
    exporter.add_argument("--department", default=None, help="Limit to one department.")
    exporter.add_argument("--out", default="./dist", help="Output directory (default: ./dist).")

    return parser.parse_args(argv)


def run_recalculate(args: argparse.Namespace) -> int:
    with SessionLocal() as db:
        record = CommissionService(db).recalculate(args.employee, args.month)
        print(
            f"Employee {record.employee_id} {record.month}: "
            f"{record.total_commission} ({record.status}, record {record.id})"
        )
    return 0


def run_recalculate_all(args: argparse.Namespace) -> int:
    with SessionLocal() as db:
        result = CommissionService(db).recalculate_month(args.month)
    print(f"Computed {len(result.records)} commission(s) for {result.month}.")
    for failure in result.failures:
        print(f"  employee {failure.employee_id}: {failure.code} - {failure.detail}")
    return 1 if result.failures else 0


def run_import(args: argparse.Namespace) -> int:
    input_path = Path(args.input)
    if not input_path.exists():
        raise SystemExit(f"Input file not found: {input_path}")
    with SessionLocal() as db:
        summary = import_rate_tables(db, input_path)
    if summary.errors:
        print("Import rejected:")
        for error in summary.errors:
            print(f"  {error}")
        return 1
    print(f"Published rate table(s): {', '.join(str(table_id) for table_id in summary.tables_created)}")
    return 0


def run_export(args: argparse.Namespace) -> int:
    out_dir = Path(args.out)
    out_dir.mkdir(parents=True, exist_ok=True)
    suffix = f"_{args.department}" if args.department else ""
    target = out_dir / f"commissions_{args.month}{suffix}.xlsx"
    with SessionLocal() as db:
        target.write_bytes(export_commission_workbook(db, args.month, args.department))
    print(f"Wrote {target}")
    return 0


COMMANDS = {
    "recalculate": run_recalculate,
    "recalculate-all": run_recalculate_all,
    "import-tiers": run_import,
    "export": run_export,
}


def main(argv: Optional[Sequence[str]] = None) -> int:
    """CLI entry point."""

    args = parse_args(argv)
    configure_logging(args.log_level.upper() if args.log_level else None)
    init_db()
    try:
        return COMMANDS[args.command](args)
    except CommissionError as exc:
        logger.error("%s failed: %s", args.command, exc.message)
        return 2


if __name__ == "__main__":
    raise SystemExit(main())
