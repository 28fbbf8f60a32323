"""Billing engine command line interface.

Provides operational tools for:
- Schema creation
- Scheduled summary generation
- Serving the API

Usage:
    python -m billing_engine.cli init-db
    python -m billing_engine.cli generate-summaries --org-id X --month 2024-05
    python -m billing_engine.cli generate-summaries --org-id X --month 2024-05 --collector-id Y
    python -m billing_engine.cli serve
"""

from __future__ import annotations

import argparse
import asyncio
import sys
from datetime import date
from typing import Callable
from uuid import UUID

from billing_engine.auth import Principal
from billing_engine.config import configure_logging, get_settings
from billing_engine.database import create_tables, dispose_db, get_session, init_db
from billing_engine.errors import BillingError
from billing_engine.services.summary_service import SummaryService


def parse_uuid(s: str) -> UUID:
    """Parse UUID string."""
    return UUID(s)


def parse_month(s: str) -> date:
    """Parse "YYYY-MM" or an ISO date into the first day of its month."""
    if len(s) == 7:
        s = f"{s}-01"
    return date.fromisoformat(s).replace(day=1)


class BillingCli:
    """Billing engine command line interface."""

    def __init__(self) -> None:
        self.parser = self._build_parser()

    def _build_parser(self) -> argparse.ArgumentParser:
        """Build argument parser."""
        parser = argparse.ArgumentParser(
            prog="python -m billing_engine.cli",
            description="Billing settlement engine tools",
        )
        parser.add_argument(
            "--database-url",
            type=str,
            help="Override DATABASE_URL",
        )
        subparsers = parser.add_subparsers(dest="command", help="Commands")

        # init-db command
        subparsers.add_parser(
            "init-db",
            help="Create all tables",
        )

        # generate-summaries command
        generate = subparsers.add_parser(
            "generate-summaries",
            help="Generate billing summaries for a month (safe to re-run)",
        )
        generate.add_argument(
            "--org-id",
            type=parse_uuid,
            required=True,
            help="Organization to generate summaries for",
        )
        generate.add_argument(
            "--month",
            type=parse_month,
            required=True,
            help="Billing month (YYYY-MM)",
        )
        generate.add_argument(
            "--collector-id",
            type=parse_uuid,
            help="Only generate the summary of this collector",
        )

        # serve command
        serve = subparsers.add_parser(
            "serve",
            help="Run the API server",
        )
        serve.add_argument("--host", type=str, help="Bind host (default: HOST)")
        serve.add_argument("--port", type=int, help="Bind port (default: PORT)")
        serve.add_argument("--reload", action="store_true", help="Reload on code changes")

        return parser

    def run(self, args: list[str] | None = None) -> int:
        """Run the CLI with given arguments."""
        parsed = self.parser.parse_args(args)

        if not parsed.command:
            self.parser.print_help()
            return 1

        configure_logging()

        # Dispatch to command handler
        handlers: dict[str, Callable[..., int]] = {
            "init-db": self._cmd_init_db,
            "generate-summaries": self._cmd_generate_summaries,
            "serve": self._cmd_serve,
        }

        handler = handlers.get(parsed.command)
        if handler:
            return handler(parsed)

        print(f"Unknown command: {parsed.command}", file=sys.stderr)
        return 1

    def _cmd_init_db(self, args: argparse.Namespace) -> int:
        """Create tables."""

        async def _run() -> None:
            engine, _ = init_db(args.database_url)
            try:
                await create_tables(engine)
            finally:
                await dispose_db()

        asyncio.run(_run())
        print("Tables created.")
        return 0

    def _cmd_generate_summaries(self, args: argparse.Namespace) -> int:
        """Generate summaries as the scheduled generator."""
        print(f"Generating summaries for org: {args.org_id}")
        print(f"  Month: {args.month.isoformat()}")
        if args.collector_id:
            print(f"  Collector: {args.collector_id}")

        async def _run() -> list[tuple[str, str]]:
            init_db(args.database_url)
            principal = Principal.system()
            try:
                async with get_session() as session:
                    service = SummaryService(session)
                    if args.collector_id:
                        result = await service.generate_summary(
                            principal, args.org_id, args.collector_id, args.month
                        )
                        outcome = result.reason if result.skipped else "generated"
                        return [(str(args.collector_id), outcome)]

                    bulk = await service.generate_all_summaries(principal, args.org_id, args.month)
                    rows = [(str(s.collector_id), "generated") for s in bulk.generated]
                    rows += [(str(cid), reason) for cid, reason in bulk.skipped.items()]
                    return rows
            finally:
                await dispose_db()

        try:
            rows = asyncio.run(_run())
        except BillingError as e:
            print(f"ERROR [{e.code}]: {e.message}", file=sys.stderr)
            return 1

        for collector_id, outcome in rows:
            print(f"  {collector_id}: {outcome}")
        generated = sum(1 for _, outcome in rows if outcome == "generated")
        print(f"\n{generated} generated, {len(rows) - generated} skipped.")
        return 0

    def _cmd_serve(self, args: argparse.Namespace) -> int:
        """Run uvicorn."""
        import uvicorn

        settings = get_settings()
        uvicorn.run(
            "billing_engine.api.app:app",
            host=args.host or settings.host,
            port=args.port or settings.port,
            reload=args.reload or settings.debug,
            log_level=settings.log_level.lower(),
        )
        return 0


def main() -> int:
    """CLI entry point."""
    cli = BillingCli()
    return cli.run()


if __name__ == "__main__":
    sys.exit(main())
