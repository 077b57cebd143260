"""
Lifecycle operations CLI.

Usage:
    lifecycle init-db [--drop-existing]
    lifecycle sweep
    lifecycle breached [--domain order] [--no-sweep] [--json]
    lifecycle at-risk [--domain shipment] [--window-hours 4] [--json]
    lifecycle stats [--domain return_request]
    lifecycle list <domain> [--state S] [--sla-status at_risk] [--owner ID] [--search TEXT]
                   [--limit 50] [--offset 0] [--order-by -created_at]
    lifecycle state-counts <domain> [--owner ID]
    lifecycle timeline <domain> <entity-id>
    lifecycle status-options <domain>
    lifecycle run-scheduler

Global options:
    --config PATH   settings YAML (default lifecycle_config/sets/default.yaml)
    --db-url URL    overrides database.url and LIFECYCLE_DATABASE_URL
"""

from __future__ import annotations

import argparse
import json
import signal
import sys
import threading
from dataclasses import replace
from datetime import timedelta
from uuid import UUID

from lifecycle_config import get_active_config
from lifecycle_kernel.db.engine import create_tables, drop_tables, session_scope
from lifecycle_kernel.domain.sla import SLAStatus
from lifecycle_kernel.domain.states import Domain
from lifecycle_kernel.exceptions import LifecycleKernelError
from lifecycle_kernel.selectors.entity_selector import EntitySelector
from lifecycle_services.runtime import LifecycleRuntime

W = 80


def _print_json(payload) -> None:
    print(json.dumps(payload, indent=2, default=str))


def _section(title: str) -> None:
    print()
    print("=" * W)
    print(f"  {title}")
    print("=" * W)


def _runtime(args) -> LifecycleRuntime:
    settings = get_active_config(args.config)
    if args.db_url:
        settings = replace(settings, database=replace(settings.database, url=args.db_url))
    return LifecycleRuntime.from_settings(settings)


def cmd_init_db(args, runtime: LifecycleRuntime) -> int:
    if args.drop_existing:
        drop_tables()
        print("Tables dropped.")
    create_tables()
    print("Tables created.")
    return 0


def cmd_sweep(args, runtime: LifecycleRuntime) -> int:
    with session_scope() as session:
        count = runtime.breach_report(session).sweep()
    print(f"Newly breached: {count}")
    return 0


def cmd_breached(args, runtime: LifecycleRuntime) -> int:
    with session_scope() as session:
        items = runtime.breach_report(session).breached(args.domain, sweep=not args.no_sweep)
        if args.json:
            _print_json([item.to_dict() for item in items])
            return 0
        _section(f"SLA BREACHES ({len(items)})")
        for item in items:
            print(
                f"  {item.domain.value:<15} {item.reference:<20} "
                f"{item.state_display:<22} overdue {item.hours_overdue:>7.1f}h"
            )
    return 0


def cmd_at_risk(args, runtime: LifecycleRuntime) -> int:
    window = timedelta(hours=args.window_hours) if args.window_hours is not None else None
    with session_scope() as session:
        items = runtime.breach_report(session).at_risk(args.domain, window)
        if args.json:
            _print_json([item.to_dict() for item in items])
            return 0
        _section(f"AT RISK ({len(items)})")
        for item in items:
            print(
                f"  {item.domain.value:<15} {item.reference:<20} "
                f"{item.state_display:<22} remaining {item.hours_remaining:>5.1f}h"
            )
    return 0


def cmd_stats(args, runtime: LifecycleRuntime) -> int:
    with session_scope() as session:
        _print_json(runtime.breach_report(session).stats(args.domain).to_dict())
    return 0


def _coordinator(runtime: LifecycleRuntime, session, domain: str):
    factories = {
        Domain.ORDER: runtime.orders,
        Domain.RETURN_REQUEST: runtime.returns,
        Domain.SHIPMENT: runtime.shipments,
    }
    return factories[Domain(domain)](session)


def cmd_list(args, runtime: LifecycleRuntime) -> int:
    with session_scope() as session:
        page = _coordinator(runtime, session, args.domain).list_entities(
            state=args.state,
            sla_status=args.sla_status,
            owner_id=args.owner,
            search=args.search,
            limit=args.limit,
            offset=args.offset,
            order_by=args.order_by,
        )
        if args.json:
            _print_json(page.to_dict())
            return 0
        shown = f"{page.offset + 1}-{page.offset + len(page.items)}" if page.items else "0"
        _section(f"{args.domain.upper()} ({shown} of {page.total})")
        for item in page.items:
            print(
                f"  {item.reference:<20} {item.current_state:<22} "
                f"{item.owner_id or '-':<20} {item.created_at:%Y-%m-%d %H:%M}"
            )
    return 0


def cmd_state_counts(args, runtime: LifecycleRuntime) -> int:
    with session_scope() as session:
        _print_json(_coordinator(runtime, session, args.domain).stats(args.owner))
    return 0


def cmd_timeline(args, runtime: LifecycleRuntime) -> int:
    with session_scope() as session:
        selector = EntitySelector(session, runtime.clock, runtime.registry)
        if selector.get_snapshot(args.entity_id, args.domain) is None:
            print(f"{args.domain} {args.entity_id} not found", file=sys.stderr)
            return 1
        _print_json([entry.to_dict() for entry in selector.timeline(args.entity_id)])
    return 0


def cmd_status_options(args, runtime: LifecycleRuntime) -> int:
    _print_json(runtime.registry.for_domain(args.domain).status_options())
    return 0


def cmd_run_scheduler(args, runtime: LifecycleRuntime) -> int:
    from lifecycle_batch.scheduler import SweepScheduler
    from lifecycle_kernel.db.engine import get_session_factory

    scheduler = SweepScheduler(
        get_session_factory(),
        clock=runtime.clock,
        registry=runtime.registry,
        dispatcher=runtime.dispatcher,
        tick_interval_seconds=runtime.settings.scheduler.tick_interval_seconds,
    )
    done = threading.Event()
    signal.signal(signal.SIGINT, lambda *_: done.set())
    signal.signal(signal.SIGTERM, lambda *_: done.set())

    scheduler.start()
    print(
        f"Scheduler running every {runtime.settings.scheduler.tick_interval_seconds}s. "
        "Ctrl-C to stop."
    )
    done.wait()
    scheduler.stop()
    return 0


def build_parser() -> argparse.ArgumentParser:
    domains = [d.value for d in Domain]
    parser = argparse.ArgumentParser(
        prog="lifecycle",
        description="Order, return and shipment lifecycle operations.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument("--config", default=None, help="Settings YAML file")
    parser.add_argument("--db-url", default=None, help="Database URL override")
    sub = parser.add_subparsers(dest="command", required=True)

    p = sub.add_parser("init-db", help="Create tables")
    p.add_argument("--drop-existing", action="store_true", help="Drop every table first")
    p.set_defaults(func=cmd_init_db)

    sub.add_parser("sweep", help="Flag overdue SLA records").set_defaults(func=cmd_sweep)

    p = sub.add_parser("breached", help="List breached SLA records")
    p.add_argument("--domain", choices=domains)
    p.add_argument("--no-sweep", action="store_true", help="Skip the fresh sweep")
    p.add_argument("--json", action="store_true")
    p.set_defaults(func=cmd_breached)

    p = sub.add_parser("at-risk", help="List SLA records near their deadline")
    p.add_argument("--domain", choices=domains)
    p.add_argument("--window-hours", type=float, default=None)
    p.add_argument("--json", action="store_true")
    p.set_defaults(func=cmd_at_risk)

    p = sub.add_parser("stats", help="SLA counts by status")
    p.add_argument("--domain", choices=domains)
    p.set_defaults(func=cmd_stats)

    p = sub.add_parser("list", help="Filtered, paged entity listing")
    p.add_argument("domain", choices=domains)
    p.add_argument("--state")
    p.add_argument("--sla-status", choices=[s.value for s in SLAStatus])
    p.add_argument("--owner")
    p.add_argument("--search")
    p.add_argument("--limit", type=int, default=50)
    p.add_argument("--offset", type=int, default=0)
    p.add_argument("--order-by", default="-created_at")
    p.add_argument("--json", action="store_true")
    p.set_defaults(func=cmd_list)

    p = sub.add_parser("state-counts", help="Entity counts by state")
    p.add_argument("domain", choices=domains)
    p.add_argument("--owner")
    p.set_defaults(func=cmd_state_counts)

    p = sub.add_parser("timeline", help="Event history of one entity")
    p.add_argument("domain", choices=domains)
    p.add_argument("entity_id", type=UUID)
    p.set_defaults(func=cmd_timeline)

    p = sub.add_parser("status-options", help="States, labels and transitions")
    p.add_argument("domain", choices=domains)
    p.set_defaults(func=cmd_status_options)

    sub.add_parser("run-scheduler", help="Run the SLA sweep loop").set_defaults(
        func=cmd_run_scheduler
    )
    return parser


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    try:
        runtime = _runtime(args)
    except (LifecycleKernelError, FileNotFoundError) as exc:
        print(f"Configuration error: {exc}", file=sys.stderr)
        return 2
    try:
        return args.func(args, runtime)
    except LifecycleKernelError as exc:
        print(f"{exc.code}: {exc}", file=sys.stderr)
        return 1
    finally:
        runtime.shutdown()


if __name__ == "__main__":
    sys.exit(main())
