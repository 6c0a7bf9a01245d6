"""Funding payroll command line interface.

Operational tools for:
- The daily probation-completion sweep
- Running or resuming a bulk payroll batch synchronously
- Batch status queries
- Schema creation

Usage:
    funding-payroll process-probation-transitions [--date 2025-03-01] [--dry-run]
    funding-payroll run-batch --batch-id X
    funding-payroll batch-status --batch-id X
    funding-payroll init-db
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from datetime import date
from typing import Any, Callable
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from funding_payroll.config import configure_logging, get_settings
from funding_payroll.database import create_schema, dispose_db, init_db
from funding_payroll.services.batch_processor import BatchNotFoundError, BulkPayrollProcessor
from funding_payroll.services.batch_service import BulkPayrollService
from funding_payroll.services.probation_service import ProbationTransitionService
from funding_payroll.services.state_machine import BatchStatus

logger = logging.getLogger(__name__)


def parse_date(s: str) -> date:
    """Parse ISO date string."""
    return date.fromisoformat(s)


def parse_uuid(s: str) -> UUID:
    """Parse UUID string."""
    return UUID(s)


class FundingPayrollCli:
    """Funding payroll command line interface."""

    def __init__(
        self, session_factory: async_sessionmaker[AsyncSession] | None = None
    ) -> None:
        self.session_factory = session_factory
        self.parser = self._build_parser()

    def _build_parser(self) -> argparse.ArgumentParser:
        """Build argument parser."""
        parser = argparse.ArgumentParser(
            prog="funding-payroll",
            description="Funding payroll operational tools",
        )
        subparsers = parser.add_subparsers(dest="command", help="Commands")

        probation = subparsers.add_parser(
            "process-probation-transitions",
            help="Move employments whose probation ends on a date to the passed salary",
        )
        probation.add_argument(
            "--date",
            type=parse_date,
            help="Pass date to process (default: today)",
        )
        probation.add_argument(
            "--dry-run",
            action="store_true",
            help="List due employments without changing anything",
        )
        probation.add_argument(
            "--employment",
            type=parse_uuid,
            help="Process a single employment",
        )

        run_batch = subparsers.add_parser(
            "run-batch",
            help="Process or resume a bulk payroll batch in the foreground",
        )
        run_batch.add_argument("--batch-id", type=parse_uuid, required=True)

        status = subparsers.add_parser("batch-status", help="Show batch progress")
        status.add_argument("--batch-id", type=parse_uuid, required=True)

        subparsers.add_parser("init-db", help="Create database tables")

        return parser

    def run(self, args: list[str] | None = None) -> int:
        """Run the CLI with given arguments."""
        parsed = self.parser.parse_args(args)

        if not parsed.command:
            self.parser.print_help()
            return 1

        handlers: dict[str, Callable[[argparse.Namespace], Any]] = {
            "process-probation-transitions": self._cmd_probation_transitions,
            "run-batch": self._cmd_run_batch,
            "batch-status": self._cmd_batch_status,
            "init-db": self._cmd_init_db,
        }

        handler = handlers.get(parsed.command)
        if handler is None:
            print(f"Unknown command: {parsed.command}", file=sys.stderr)
            return 1

        configure_logging()
        return asyncio.run(self._run_async(handler, parsed))

    async def _run_async(
        self, handler: Callable[[argparse.Namespace], Any], args: argparse.Namespace
    ) -> int:
        owns_engine = self.session_factory is None
        if owns_engine:
            _, self.session_factory = init_db()
        try:
            return await handler(args)
        finally:
            if owns_engine:
                await dispose_db()
                self.session_factory = None

    async def _cmd_probation_transitions(self, args: argparse.Namespace) -> int:
        """Run the probation-completion sweep."""
        as_of = args.date or date.today()
        service = ProbationTransitionService(self.session_factory)
        sweep = await service.process_due(as_of, dry_run=args.dry_run, employment_id=args.employment)

        mode = " (dry run)" if sweep.dry_run else ""
        print(f"Probation transitions for {as_of}{mode}")
        print("=" * 40)
        for outcome in sweep.outcomes:
            mark = "OK" if outcome.success else "FAILED"
            print(f"  [{mark}] {outcome.staff_id}: {outcome.message}")
        print(f"Processed: {sweep.processed}  Succeeded: {sweep.succeeded}  Failed: {sweep.failed}")
        return 1 if sweep.failed else 0

    async def _cmd_run_batch(self, args: argparse.Namespace) -> int:
        """Process or resume a batch synchronously."""
        processor = BulkPayrollProcessor(self.session_factory, settings=get_settings())
        logger.info("Running batch %s in the foreground", args.batch_id)
        final = await processor.process(args.batch_id)
        print(f"Batch {args.batch_id}: {final}")
        return 0 if final in (BatchStatus.COMPLETED, BatchStatus.COMPLETED_WITH_ERRORS) else 1

    async def _cmd_batch_status(self, args: argparse.Namespace) -> int:
        """Print batch status as JSON."""
        async with self.session_factory() as session:
            try:
                status = await BulkPayrollService(session).get_batch_status(args.batch_id)
            except BatchNotFoundError as e:
                print(f"ERROR: {e}", file=sys.stderr)
                return 1
        print(json.dumps(status, indent=2, default=str))
        return 0

    async def _cmd_init_db(self, args: argparse.Namespace) -> int:
        """Create all tables."""
        engine = self.session_factory.kw["bind"]
        await create_schema(engine)
        print("Database schema created")
        return 0


def main() -> int:
    """CLI entry point."""
    cli = FundingPayrollCli()
    return cli.run()


if __name__ == "__main__":
    sys.exit(main())
