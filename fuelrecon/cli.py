#!/usr/bin/env python3
"""
Fuel Recon CLI — import provider statements, run reconciliation and budget
reports, and start the API server.

USAGE:
  python -m fuelrecon.cli validate statement.csv --tenant acme      # Dry run, nothing saved
  python -m fuelrecon.cli import statement.xlsx --tenant acme --provider-label "Allstar May"
  python -m fuelrecon.cli import --tenant acme                      # Every statement in the inbox

  python -m fuelrecon.cli reconcile --tenant acme                   # Summary to stdout
  python -m fuelrecon.cli reconcile --tenant acme --start 2025-01-01 --end 2025-03-31 --excel

  python -m fuelrecon.cli budget --tenant acme
  python -m fuelrecon.cli analytics --tenant acme --months 12 --json

  python -m fuelrecon.cli serve --port 8000
"""
from __future__ import annotations

import argparse
import datetime as dt
import json
import os
import sys
from pathlib import Path

from fuelrecon.config import INBOX_FOLDER, REPORTS_FOLDER
from fuelrecon.data.importer import import_batch, validate_batch
from fuelrecon.data.loader import discover_imports, load_rows
from fuelrecon.data.store import DataStore
from fuelrecon.errors import FuelReconError
from fuelrecon.logging_config import setup_logging


def _banner(title: str) -> None:
    print("\n" + "=" * 70)
    print(f"  FUEL RECON — {title}")
    print("=" * 70)


def _date(value: str) -> dt.date:
    try:
        return dt.date.fromisoformat(value)
    except ValueError:
        raise argparse.ArgumentTypeError(f"expected YYYY-MM-DD, got '{value}'")


def _files(args) -> list[Path]:
    if args.files:
        return [Path(f) for f in args.files]
    found = discover_imports(INBOX_FOLDER)
    if not found:
        print(f"  No statements found in {INBOX_FOLDER}")
    return found


def _print_details(result: dict, bad_statuses: set[str]) -> None:
    for d in result["details"]:
        if d["status"] in bad_statuses:
            print(f"      row {d['row']:>4}: {d['status']:<17} {'; '.join(d['reasons'])}")
        for w in d["warnings"]:
            print(f"      row {d['row']:>4}: warning           {w}")


def cmd_validate(args):
    """Validate statements without importing anything."""
    _banner("VALIDATE")
    store = DataStore().load(INBOX_FOLDER)
    for path in _files(args):
        rows = load_rows(path)
        result = validate_batch(store, args.tenant, rows, args.provider_label)
        print(f"\n   {path.name}: {result['valid']}/{result['total']} valid, {result['invalid']} invalid")
        already = sum(1 for d in result["details"] if d.get("already_imported"))
        if already:
            print(f"      ({already} already imported)")
        _print_details(result, {"invalid"})
    print("=" * 70 + "\n")


def cmd_import(args):
    """Import statements and save the store back to the inbox."""
    _banner("IMPORT")
    store = DataStore().load(INBOX_FOLDER)
    imported = 0
    for path in _files(args):
        rows = load_rows(path)
        result = import_batch(store, args.tenant, rows, args.provider_label or path.stem)
        imported += result["imported"]
        print(f"\n   {path.name}: {result['imported']} imported, {result['failed']} failed, "
              f"{result['skipped_duplicate']} already imported")
        _print_details(result, {"failed"})
    if imported:
        store.save(INBOX_FOLDER)
        print(f"\n  Saved {imported:,} new transaction(s) to {INBOX_FOLDER}")
    print("=" * 70 + "\n")


def cmd_reconcile(args):
    """Reconciliation summary, optionally written to Excel."""
    from fuelrecon.reports.reconciliation_report import generate_excel, generate_json

    _banner("RECONCILIATION")
    store = DataStore().load(INBOX_FOLDER)
    data = generate_json(store, args.tenant, args.start, args.end)
    if args.json:
        print(json.dumps(data, indent=2))
        return

    s = data["reconciliation"]["summary"]
    print(f"\n  Unmatched:        {s['unmatched_transactions']:>6}")
    print(f"  Over limit:       {s['cards_exceeding_limits']:>6}")
    print(f"  Unusual:          {s['unusual_transactions']:>6}")
    print(f"  Suspicious:       {s['suspicious_transactions']:>6}")
    print(f"  Total issues:     {s['total_issues']:>6}")
    for card in data["reconciliation"]["exceeded"]:
        print(f"   Card {card['card_id']} (…{card['last_four']}): £{card['monthly_total']:,.2f} "
              f"of £{card['monthly_limit']:,.2f}, over by £{card['overage']:,.2f}")

    if args.excel:
        stamp = dt.datetime.now().strftime("%Y%m%d_%H%M%S")
        out = REPORTS_FOLDER / f"Fuel_Reconciliation_{args.tenant}_{stamp}.xlsx"
        generate_excel(store, args.tenant, out, args.start, args.end)
        print(f"\n  Report saved to: {out}")
    print("=" * 70 + "\n")


def cmd_budget(args):
    """Month-to-date spend, projection and alerts."""
    from fuelrecon.analytics.budget import get_budget_projection

    store = DataStore().load(INBOX_FOLDER)
    data = get_budget_projection(store, args.tenant, args.card)
    if args.json:
        print(json.dumps(data, indent=2))
        return

    _banner("BUDGET")
    p = data["projected"]
    change = data["changes"]["cost_change_percent"]
    print(f"\n  This month:       £{p['current_month_total']:>12,.2f}")
    print(f"  Last month:       £{p['previous_month_total']:>12,.2f}")
    print(f"  Change:           {'n/a' if change is None else f'{change:+.1f}%':>13}")
    print(f"  Daily average:    £{p['daily_average']:>12,.2f}  ({p['days_elapsed_in_month']}/{p['days_in_month']} days)")
    print(f"  Projected:        £{p['projected_month_total']:>12,.2f}")
    if data["alerts"]:
        print("\n  Alerts:")
        for a in data["alerts"]:
            print(f"   [{a['severity']}] {a['message']}")
    print("=" * 70 + "\n")


def cmd_analytics(args):
    """Trend and ranking rollups."""
    from fuelrecon.analytics.trends import get_analytics

    store = DataStore().load(INBOX_FOLDER)
    data = get_analytics(store, args.tenant, args.months)
    if args.json:
        print(json.dumps(data, indent=2))
        return

    _banner("ANALYTICS")
    print(f"\n  {'Month':<16}{'Txns':>6}{'Cost':>14}{'Litres':>12}{'£/L':>8}")
    for m in data["trend"]:
        ppl = "" if m["avg_price_per_litre"] is None else f"{m['avg_price_per_litre']:.3f}"
        print(f"  {m['label']:<16}{m['transactions']:>6}{m['total_cost']:>14,.2f}{m['total_litres']:>12,.1f}{ppl:>8}")
    if data["driver_rankings"]:
        print("\n  Top drivers:")
        for i, d in enumerate(data["driver_rankings"][:10], 1):
            print(f"  {i:<4}{(d['driver_name'] or d['driver_id'])[:30]:<32}£{d['total_spent']:>10,.2f}")
    if data["station_comparison"]:
        print("\n  Cheapest stations:")
        for s in data["station_comparison"][:5]:
            print(f"   {s['station_name'][:36]:<38}£{s['avg_price_per_litre']:.3f}/L ({s['transaction_count']} fills)")
    print("=" * 70 + "\n")


def cmd_serve(args):
    """Start the API server."""
    import uvicorn
    print(f"\nStarting Fuel Recon API on port {args.port}...")
    uvicorn.run("fuelrecon.main:app", host="0.0.0.0", port=args.port, reload=args.reload,
                timeout_keep_alive=65)


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(
        description="Fuel Recon — fuel card import, reconciliation and budget engine",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument("--log-level", default=None, help="DEBUG, INFO, WARNING (default from env)")
    subparsers = parser.add_subparsers(dest="command", help="Command")

    for name, func, help_text in [
        ("validate", cmd_validate, "Validate statement file(s) without importing"),
        ("import", cmd_import, "Import statement file(s)"),
    ]:
        p = subparsers.add_parser(name, help=help_text)
        p.add_argument("files", nargs="*", help="CSV/XLSX file(s); default: every statement in the inbox")
        p.add_argument("--tenant", required=True, help="Tenant ID")
        p.add_argument("--provider-label", help="Display label for this statement")
        p.set_defaults(func=func)

    recon_parser = subparsers.add_parser("reconcile", help="Reconciliation report")
    recon_parser.add_argument("--tenant", required=True, help="Tenant ID")
    recon_parser.add_argument("--start", type=_date, help="Start date YYYY-MM-DD")
    recon_parser.add_argument("--end", type=_date, help="End date YYYY-MM-DD")
    recon_parser.add_argument("--excel", action="store_true", help="Also write an Excel report")
    recon_parser.add_argument("--json", action="store_true", help="Print JSON instead of a summary")
    recon_parser.set_defaults(func=cmd_reconcile)

    budget_parser = subparsers.add_parser("budget", help="Budget projection and alerts")
    budget_parser.add_argument("--tenant", required=True, help="Tenant ID")
    budget_parser.add_argument("--card", help="Restrict to one card")
    budget_parser.add_argument("--json", action="store_true", help="Print JSON instead of a summary")
    budget_parser.set_defaults(func=cmd_budget)

    analytics_parser = subparsers.add_parser("analytics", help="Trends, rankings, stations")
    analytics_parser.add_argument("--tenant", required=True, help="Tenant ID")
    analytics_parser.add_argument("--months", type=int, default=6, help="Months of history (default 6)")
    analytics_parser.add_argument("--json", action="store_true", help="Print JSON instead of a summary")
    analytics_parser.set_defaults(func=cmd_analytics)

    serve_parser = subparsers.add_parser("serve", help="Start API server")
    serve_parser.add_argument("--port", type=int, default=int(os.environ.get("PORT", "8000")), help="Port (default 8000)")
    serve_parser.add_argument("--reload", action="store_true", help="Enable auto-reload")
    serve_parser.set_defaults(func=cmd_serve)

    args = parser.parse_args(argv)
    if not args.command:
        parser.print_help()
        return 0

    setup_logging(args.log_level)
    try:
        args.func(args)
    except FuelReconError as exc:
        print(f"\n  Error: {exc.message}", file=sys.stderr)
        return 2
    return 0


if __name__ == "__main__":
    sys.exit(main())
