from __future__ import annotations

import argparse
import logging
import sys
from datetime import date
from pathlib import Path

sys.path.append(str(Path(__file__).resolve().parents[2]))

from backend.app.db import SessionLocal  # noqa: E402
from backend.app.sales.store import SqlSaleStore  # noqa: E402
from backend.app.services import sales_csv_service, sales_validation_service  # noqa: E402


def _export(args: argparse.Namespace, store: SqlSaleStore) -> int:
    content = sales_csv_service.export_sales_csv(
        store,
        date.fromisoformat(args.start),
        date.fromisoformat(args.end),
        args.machine,
    )
    if args.output:
        Path(args.output).write_text(content, encoding="utf-8")
        print(f"wrote {args.output}")
    else:
        sys.stdout.write(content)
    return 0


def _import(args: argparse.Namespace, store: SqlSaleStore) -> int:
    content = Path(args.path).read_text(encoding="utf-8-sig")
    result = sales_csv_service.import_sales_csv(store, content, operator_id=args.operator)
    print(f"imported {result.imported} readings")
    for error in result.errors:
        print(f"  line {error.line}: {error.message}")
    return 1 if result.errors else 0


def _validate(args: argparse.Namespace, store: SqlSaleStore) -> int:
    day = date.fromisoformat(args.date)
    if args.fix:
        result = sales_validation_service.fix_day_deltas(store, day)
        print(f"fixed {result.fixed} amounts, {result.skipped} already correct")
    report = sales_validation_service.validate_day(store, day)
    print(sales_validation_service.summarize_report(report))
    return 1 if report.has_issues else 0


def main() -> None:
    parser = argparse.ArgumentParser(description="Hourly sales CSV import/export and day validation.")
    sub = parser.add_subparsers(dest="command", required=True)

    export = sub.add_parser("export", help="write readings for a date range as CSV")
    export.add_argument("--start", required=True, help="YYYY-MM-DD")
    export.add_argument("--end", required=True, help="YYYY-MM-DD")
    export.add_argument("--machine", default=None)
    export.add_argument("--output", default=None, help="file path; stdout when omitted")
    export.set_defaults(handler=_export)

    imp = sub.add_parser("import", help="load readings from a CSV file")
    imp.add_argument("path")
    imp.add_argument("--operator", default=None)
    imp.set_defaults(handler=_import)

    validate = sub.add_parser("validate", help="report hourly inconsistencies for a day")
    validate.add_argument("date", help="YYYY-MM-DD")
    validate.add_argument("--fix", action="store_true", help="rewrite stale hourly amounts first")
    validate.set_defaults(handler=_validate)

    args = parser.parse_args()
    logging.basicConfig(level=logging.INFO, format="%(levelname)s %(name)s: %(message)s")

    db = SessionLocal()
    try:
        code = args.handler(args, SqlSaleStore(db))
    finally:
        db.close()
    raise SystemExit(code)


if __name__ == "__main__":
    main()
