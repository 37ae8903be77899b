"""
Print the vendor compliance aging report as JSON.

Intended for a periodic trigger (cron / scheduled job):

    python scripts/aging_report.py --month Jan --as-of 2026-01-31
"""
import argparse
import json
import sys
from datetime import date
from pathlib import Path

from dotenv import load_dotenv

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from app.vendorflow.modules.compliance.service import (  # noqa: E402
    DEFAULT_WINDOW_DAYS,
    ReportingMonth,
    compute_fleet_report,
)
from scripts._db_utils import database_url, script_session  # noqa: E402


def build_parser() -> argparse.ArgumentParser:
    ap = argparse.ArgumentParser(description="Vendor compliance aging report.")
    ap.add_argument("--database-url", default=None, help="Overrides DATABASE_URL")
    ap.add_argument("--month", default=None, help="Reporting month: Jan, January or 1 (default: month of --as-of)")
    ap.add_argument("--as-of", default=None, type=date.fromisoformat, help="Reference date YYYY-MM-DD (default: now)")
    ap.add_argument("--vendor", dest="vendor_ids", type=int, action="append", help="Limit to vendor id (repeatable)")
    ap.add_argument("--window-days", type=int, default=DEFAULT_WINDOW_DAYS)
    ap.add_argument("--summary-only", action="store_true")
    return ap


def main(argv: list[str] | None = None) -> int:
    load_dotenv()
    args = build_parser().parse_args(argv)
    period = ReportingMonth.parse(args.month, reference=args.as_of)
    with script_session(database_url(args.database_url)) as s:
        report = compute_fleet_report(s, args.vendor_ids, period, window=args.window_days)
    out = report["summary"] if args.summary_only else report
    print(json.dumps(out, indent=2, sort_keys=True))
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
