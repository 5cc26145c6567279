#!/usr/bin/env python3
"""Command-line interface for the gateway sync.

This CLI runs the Paystack reconciliation against the marketplace database
and prints gateway balances and settlements.

Usage:
    marketplace-sync all --deadline 600 --output run.json
    marketplace-sync transactions --format text
    marketplace-sync balance
"""

import argparse
import asyncio
import json
import logging
import signal
import sys
from typing import Optional

from ..config import SyncSettings
from ..database import (
    create_async_engine,
    create_schema,
    get_async_session_factory,
    get_database_url,
)
from ..errors import NetworkError
from .control import RunControl
from .models import StageFailurePolicy, SyncRunReport
from .service import SyncService

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_ISSUES = 1
EXIT_FAILED = 2


def exit_code_for(report: SyncRunReport) -> int:
    """Map a run report to the process exit code.

    Returns:
        0 for a clean run, 1 when records were skipped or failed or a drain
        was truncated, 2 when a stage failed or the run was interrupted.
    """
    if not report.succeeded:
        logger.error(f"Sync run {report.id} ended with status {report.status.value}")
        return EXIT_FAILED
    if report.has_issues:
        logger.warning(f"Sync run {report.id} completed with skipped or failed records")
        return EXIT_ISSUES
    return EXIT_OK


def _write_output(output: str, output_file: Optional[str]) -> None:
    if output_file:
        with open(output_file, 'w') as f:
            f.write(output)
        logger.info(f"Report written to {output_file}")
    else:
        print(output)


def _install_cancel_handler(control: RunControl) -> None:
    try:
        loop = asyncio.get_running_loop()
        loop.add_signal_handler(signal.SIGTERM, control.cancel, "received SIGTERM")
    except (NotImplementedError, RuntimeError):
        # Signal handlers are not available on every platform
        pass


async def run_sync_async(
    command: str = "all",
    provider: str = "paystack",
    deadline_seconds: Optional[float] = None,
    continue_on_failure: bool = False,
    output_file: Optional[str] = None,
    output_format: str = "json",
    include_details: bool = True,
    settings: Optional[SyncSettings] = None,
) -> int:
    """Run a sync command asynchronously.

    Args:
        command: One of 'all', 'transactions', 'transfers', 'balance', 'settlements'.
        provider: Gateway provider name.
        deadline_seconds: Per-run deadline; defaults to the configured one.
        continue_on_failure: Run every stage even after one fails.
        output_file: Optional output file path.
        output_format: Output format ('json', 'text', 'csv').
        include_details: Include record issues in JSON output.
        settings: Sync settings. Read from the environment if omitted.

    Returns:
        Exit code (0 for success, non-zero for failure).
    """
    settings = settings or SyncSettings.from_env()
    database_url = get_database_url()
    engine = create_async_engine(database_url=database_url)
    await create_schema(engine)

    session_factory = get_async_session_factory(engine)

    try:
        async with session_factory() as session:
            service = SyncService(session, settings=settings, provider=provider)
            try:
                if command == "balance":
                    balances = await service.fetch_balance()
                    _write_output(
                        json.dumps([b.model_dump(mode="json") for b in balances], indent=2),
                        output_file,
                    )
                    return EXIT_OK

                if command == "settlements":
                    settlements = await service.fetch_settlements()
                    _write_output(
                        json.dumps([s.model_dump(mode="json") for s in settlements], indent=2),
                        output_file,
                    )
                    return EXIT_OK

                control = RunControl(
                    deadline_seconds if deadline_seconds is not None else settings.deadline_seconds
                )
                _install_cancel_handler(control)

                if command == "transactions":
                    report = await service.sync_transactions(control=control)
                elif command == "transfers":
                    report = await service.sync_transfers(control=control)
                else:
                    policy = StageFailurePolicy.CONTINUE if continue_on_failure else None
                    report = await service.sync_all(failure_policy=policy, control=control)

                _write_output(
                    service.generate_report(report, format=output_format, include_details=include_details),
                    output_file,
                )
                return exit_code_for(report)
            except NetworkError as e:
                logger.error(f"Gateway request failed: {e}")
                return EXIT_FAILED
            except ValueError as e:
                logger.error(f"Gateway client not configured: {e}")
                return EXIT_FAILED
            finally:
                await service.close()

    finally:
        await engine.dispose()


def run_sync(**kwargs) -> int:
    """Run a sync command (sync wrapper).

    Returns:
        Exit code.
    """
    return asyncio.run(run_sync_async(**kwargs))


def create_parser() -> argparse.ArgumentParser:
    """Create the argument parser for the CLI.

    Returns:
        Configured ArgumentParser.
    """
    parser = argparse.ArgumentParser(
        prog="marketplace-sync",
        description="Reconcile Paystack transactions and transfers into marketplace records.",
    )
    parser.add_argument(
        "--provider", "-p",
        default="paystack",
        help="Gateway provider (default: paystack)",
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    for name, help_text in (
        ("all", "Sync transactions, then transfers"),
        ("transactions", "Sync transactions into payments"),
        ("transfers", "Sync transfers into payouts"),
    ):
        sync_parser = subparsers.add_parser(name, help=help_text)
        sync_parser.add_argument(
            "--deadline", "-d",
            type=float,
            default=None,
            help="Stop the run after this many seconds",
        )
        sync_parser.add_argument(
            "--output", "-o",
            help="Output file path (default: stdout)",
        )
        sync_parser.add_argument(
            "--format", "-f",
            choices=["json", "text", "csv"],
            default="json",
            help="Output format (default: json)",
        )
        sync_parser.add_argument(
            "--summary-only",
            action="store_true",
            help="Only include summary statistics, not record issues",
        )
        if name == "all":
            sync_parser.add_argument(
                "--continue-on-failure",
                action="store_true",
                help="Run the transfer stage even if the transaction stage fails",
            )

    for name, help_text in (
        ("balance", "Print the gateway balance"),
        ("settlements", "Print the first page of gateway settlements"),
    ):
        info_parser = subparsers.add_parser(name, help=help_text)
        info_parser.add_argument(
            "--output", "-o",
            help="Output file path (default: stdout)",
        )

    return parser


def main(args: Optional[list] = None) -> int:
    """Main entry point for the CLI.

    Args:
        args: Optional list of command-line arguments (for testing).

    Returns:
        Exit code.
    """
    parser = create_parser()
    parsed_args = parser.parse_args(args)

    if not parsed_args.command:
        parser.print_help()
        return 1

    if parsed_args.command in ("balance", "settlements"):
        return run_sync(
            command=parsed_args.command,
            provider=parsed_args.provider,
            output_file=parsed_args.output,
        )

    if parsed_args.deadline is not None and parsed_args.deadline <= 0:
        logger.error("--deadline must be positive")
        return 1

    return run_sync(
        command=parsed_args.command,
        provider=parsed_args.provider,
        deadline_seconds=parsed_args.deadline,
        continue_on_failure=getattr(parsed_args, "continue_on_failure", False),
        output_file=parsed_args.output,
        output_format=parsed_args.format,
        include_details=not parsed_args.summary_only,
    )


if __name__ == "__main__":
    sys.exit(main())
