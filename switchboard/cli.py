#!/usr/bin/env python3
"""
Switchboard CLI — patch the call through, count the minutes.

Every command has an operator name and a standard alias:

    OPERATOR        STANDARD        WHAT IT DOES
    --------        --------        ----------------------------------
    dial            serve, start    Start the Switchboard API server
    lineup          models          List models for configured providers
    reconcile       audit           Check (or repair) usage aggregates
    flash           stats           Show cost totals at a glance
"""

import argparse
import sys

from switchboard import __version__

BANNER = r"""
    ┌──────────────────────────────────────────────┐
    │   SWITCHBOARD   ·   one line, many carriers  │
    └──────────────────────────────────────────────┘
"""


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------

def cmd_dial(args):
    """Start the Switchboard API server."""
    import uvicorn
    from switchboard.config import get_config

    cfg = get_config()
    host = args.host or cfg["server"]["host"]
    port = args.port or cfg["server"]["port"]

    print(BANNER)
    print(f"  Dialing up on {host}:{port}")
    print()

    uvicorn.run(
        "switchboard.main:app",
        host=host,
        port=port,
        reload=args.reload,
        log_level="info",
    )


def cmd_lineup(args):
    """List the models clients can pick from."""
    from switchboard.adapters.registry import AdapterRegistry
    from switchboard.config import get_config
    from switchboard.pricing import PricingTable

    cfg = get_config()
    registry = AdapterRegistry.from_config(cfg.get("providers"))
    pricing = PricingTable(cfg.get("pricing") or {})
    models = registry.available_models()

    if not models:
        print("  ✗  No providers configured. Set API keys or OLLAMA_BASE_URL.")
        return

    for m in models:
        price = pricing.price_for(m["model"])
        print(
            f"  {m['provider']:<10} {m['model']:<28} "
            f"in {price.input:>5}¢/M  out {price.output:>5}¢/M  {m['label']}"
        )


def cmd_reconcile(args):
    """Compare stored aggregates against message sums."""
    from switchboard.config import get_config
    from switchboard.costs import CostTracker
    from switchboard.storage.sqlite_store import SQLiteStore

    cfg = get_config()
    tracker = CostTracker(SQLiteStore(cfg["storage"]["sqlite_path"]))
    drift = tracker.audit()

    if not drift:
        print("  ✓  Books balance — every conversation matches its messages")
        return

    for d in drift:
        print(
            f"  ✗  {d['conversation_id']}: tokens {d['stored_tokens']} vs {d['summed_tokens']}, "
            f"cost {d['stored_cost']} vs {d['summed_cost']}"
        )
        if args.repair:
            tracker.repair(d["conversation_id"])
            print("     repaired")

    if not args.repair:
        print(f"\n  {len(drift)} conversation(s) out of balance. Re-run with --repair to fix.")
        sys.exit(1)


def cmd_flash(args):
    """Show cost totals at a glance."""
    from switchboard.config import get_config
    from switchboard.costs import CostTracker
    from switchboard.storage.sqlite_store import SQLiteStore

    cfg = get_config()
    tracker = CostTracker(SQLiteStore(cfg["storage"]["sqlite_path"]))
    stats = tracker.get_stats(days=args.days, user_id=args.user)

    print(BANNER)
    print(f"  Last {stats['days_queried']} days: {stats['tokens']:,} tokens, "
          f"${stats['total'] / 100:.2f}")
    for model, row in stats["by_model"].items():
        print(f"    {model or '(unknown)':<28} {row['messages']:>5} msgs  "
              f"{row['tokens']:>10,} tok  ${row['cost'] / 100:.2f}")


# ---------------------------------------------------------------------------
# Parser with aliases
# ---------------------------------------------------------------------------

def _add_command(subparsers, names, help_text, func, setup_fn=None):
    """Register a command under multiple names (operator + standard)."""
    p = subparsers.add_parser(names[0], help=help_text, aliases=names[1:])
    p.set_defaults(func=func)
    if setup_fn:
        setup_fn(p)
    return p


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="switchboard",
        description="Switchboard — one line, many carriers.",
        epilog="Run 'switchboard <command> --help' for command-specific options.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument(
        "--version", "-V", action="version",
        version=f"switchboard {__version__}",
    )

    sub = parser.add_subparsers(dest="command", metavar="<command>")

    def setup_dial(p):
        p.add_argument("--host", default=None, help="Override listen host")
        p.add_argument("--port", "-p", type=int, default=None, help="Override listen port")
        p.add_argument("--reload", action="store_true", help="Auto-reload on code changes (dev)")

    _add_command(sub, ["dial", "serve", "start"],
                 "Start the Switchboard API server", cmd_dial, setup_dial)

    _add_command(sub, ["lineup", "models"],
                 "List models for configured providers", cmd_lineup)

    def setup_reconcile(p):
        p.add_argument("--repair", action="store_true",
                       help="Rewrite drifted aggregates from message sums")

    _add_command(sub, ["reconcile", "audit"],
                 "Check usage aggregates against messages", cmd_reconcile, setup_reconcile)

    def setup_flash(p):
        p.add_argument("--days", "-d", type=int, default=30,
                       help="Days of cost history to show (default: 30)")
        p.add_argument("--user", "-u", default=None, help="Limit to one user id")

    _add_command(sub, ["flash", "stats"],
                 "Show cost totals at a glance", cmd_flash, setup_flash)

    return parser


def main(argv=None):
    parser = build_parser()
    args = parser.parse_args(argv)
    if not args.command:
        print(BANNER)
        parser.print_help()
        return

    args.func(args)


if __name__ == "__main__":
    main()
