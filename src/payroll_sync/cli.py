"""Payroll sync command line interface.

Provides operational tools for:
- Pay period preview
- Schema bootstrap
- Poll reconciliation
- Metrics emission

Usage:
    payroll-sync period 2025-01-17
    payroll-sync init-db
    payroll-sync poll --location Manheim --start 2025-01-01 --end 2025-01-14 --kind time
    payroll-sync metrics --format prometheus
"""

from __future__ import annotations

import argparse
import asyncio
import json
import sys
from collections.abc import Callable
from datetime import date

from payroll_sync.calculators.period import (
    derive_pay_period,
    is_pay_weekday,
    parse_pay_date,
)
from payroll_sync.config import Settings, configure_logging, get_settings
from payroll_sync.database import create_schema, dispose_db, get_session
from payroll_sync.errors import PayrollSyncError, ValidationError
from payroll_sync.metrics import sync_metrics
from payroll_sync.providers.base import WorkforcePlatform
from payroll_sync.providers.connecteam import ConnecteamProvider
from payroll_sync.services.identity_resolver import IdentityResolver
from payroll_sync.services.ingestion import PollReconciliationService, PollResult


def parse_date(s: str) -> date:
    """Parse ISO date string."""
    try:
        return parse_pay_date(s)
    except ValidationError as e:
        raise argparse.ArgumentTypeError(str(e)) from e


class PayrollSyncCli:
    """Payroll sync Command Line Interface."""

    def __init__(
        self,
        settings_factory: Callable[[], Settings] = get_settings,
        platform_factory: Callable[[Settings], WorkforcePlatform] | None = None,
    ) -> None:
        self.settings_factory = settings_factory
        self.platform_factory = platform_factory or _connecteam_platform
        self.parser = self._build_parser()

    def _build_parser(self) -> argparse.ArgumentParser:
        """Build argument parser."""
        parser = argparse.ArgumentParser(
            prog="payroll-sync",
            description="Payroll sync operational tools",
        )
        subparsers = parser.add_subparsers(dest="command", help="Commands")

        # period command
        period = subparsers.add_parser(
            "period",
            help="Show the pay period and payroll group for a pay date",
        )
        period.add_argument("pay_date", type=parse_date, help="Pay date (YYYY-MM-DD)")
        period.add_argument(
            "--json",
            action="store_true",
            help="Print as JSON",
        )

        # init-db command
        subparsers.add_parser(
            "init-db",
            help="Create missing tables",
        )

        # poll command
        poll = subparsers.add_parser(
            "poll",
            help="Run one poll reconciliation cycle",
        )
        poll.add_argument("--location", required=True, help="Configured location label")
        poll.add_argument("--start", type=parse_date, required=True, help="Window start")
        poll.add_argument("--end", type=parse_date, required=True, help="Window end (inclusive)")
        poll.add_argument(
            "--kind",
            choices=["forms", "time"],
            default="forms",
            help="Form submissions or time clock activities",
        )

        # metrics command
        metrics = subparsers.add_parser(
            "metrics",
            help="Emit sync metrics",
        )
        metrics.add_argument(
            "--format",
            type=str,
            choices=["json", "prometheus"],
            default="json",
            help="Output format",
        )

        return parser

    def run(self, args: list[str] | None = None) -> int:
        """Run the CLI with given arguments."""
        parsed = self.parser.parse_args(args)

        if not parsed.command:
            self.parser.print_help()
            return 1

        handlers: dict[str, Callable[[argparse.Namespace], int]] = {
            "period": self._cmd_period,
            "init-db": self._cmd_init_db,
            "poll": self._cmd_poll,
            "metrics": self._cmd_metrics,
        }

        handler = handlers.get(parsed.command)
        if handler is None:
            print(f"Unknown command: {parsed.command}", file=sys.stderr)
            return 1
        try:
            return handler(parsed)
        except PayrollSyncError as e:
            print(f"Error [{e.code}]: {e}", file=sys.stderr)
            return 2

    def _cmd_period(self, args: argparse.Namespace) -> int:
        """Show the derived pay period."""
        settings = self.settings_factory()
        period = derive_pay_period(args.pay_date, settings.pay_reference_date)
        if args.json:
            print(json.dumps(period.to_dict(), indent=2))
            return 0

        print(f"Pay date:      {period.pay_date.isoformat()}")
        print(f"Period:        {period.period_start.isoformat()} .. {period.period_end.isoformat()}")
        print(f"Payroll group: {period.payroll_group.value}")
        if not is_pay_weekday(period.pay_date):
            print("Warning: pay date is not a Friday", file=sys.stderr)
        return 0

    def _cmd_init_db(self, args: argparse.Namespace) -> int:
        """Create missing tables."""
        configure_logging(self.settings_factory().log_level)

        async def _run() -> None:
            try:
                await create_schema()
            finally:
                await dispose_db()

        asyncio.run(_run())
        print("Schema ready.")
        return 0

    def _cmd_poll(self, args: argparse.Namespace) -> int:
        """Run one poll cycle and print its result."""
        settings = self.settings_factory()
        configure_logging(settings.log_level)
        result = asyncio.run(self._poll(settings, args))
        print(json.dumps(result.to_dict(), indent=2))
        return 0 if result.success else 3

    async def _poll(self, settings: Settings, args: argparse.Namespace) -> PollResult:
        platform = self.platform_factory(settings)
        try:
            async with get_session() as session:
                resolver = IdentityResolver(
                    platform,
                    page_size=settings.user_page_size,
                    max_pages=settings.user_page_cap,
                )
                service = PollReconciliationService(
                    session,
                    platform,
                    resolver,
                    settings.locations,
                    page_size=settings.poll_page_size,
                    max_pages=settings.poll_page_cap,
                )
                if args.kind == "time":
                    return await service.poll_time_activities(args.location, args.start, args.end)
                return await service.poll_form_submissions(args.location, args.start, args.end)
        finally:
            close = getattr(platform, "close", None)
            if close is not None:
                await close()
            await dispose_db()

    def _cmd_metrics(self, args: argparse.Namespace) -> int:
        """Emit sync metrics."""
        if args.format == "prometheus":
            print(sync_metrics.to_prometheus(), end="")
        else:
            print(sync_metrics.to_json())
        return 0


def _connecteam_platform(settings: Settings) -> WorkforcePlatform:
    if not settings.connecteam_api_key:
        raise ValidationError("CONNECTEAM_API_KEY is not configured")
    return ConnecteamProvider(
        settings.connecteam_api_key,
        base_url=settings.connecteam_api_base_url,
        timeout_seconds=settings.request_timeout_seconds,
        retry_count=settings.retry_count,
        backoff_seconds=settings.retry_backoff_seconds,
    )


def main() -> None:
    """Main entry point."""
    cli = PayrollSyncCli()
    sys.exit(cli.run())


if __name__ == "__main__":
    main()
