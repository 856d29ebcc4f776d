#!/usr/bin/env python3
"""Command-line interface for ledger maintenance and webhook setup.

Usage:
    python -m intent_adapter.cli sync --pid 3f0c8a52-...
    python -m intent_adapter.cli sync-range --start 2024-01-01 --end 2024-01-31
    python -m intent_adapter.cli up
    python -m intent_adapter.cli down
    python -m intent_adapter.cli ping
"""

import argparse
import asyncio
import json
import logging
import sys
from datetime import datetime, timedelta
from typing import Optional

from .config import ProviderConfig
from .database import (
    Base,
    TransactionRepository,
    create_async_engine,
    get_async_session_factory,
    get_database_url,
    get_db_context,
)
from .gateway import PaymentGateway, StripeGateway
from .provider import StripeIntentProvider
from .responses import SimpleResponse

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)

COMMANDS = ("sync", "sync-range", "up", "down", "ping")


def parse_datetime(dt_string: str) -> datetime:
    """Parse datetime string in various formats.

    Args:
        dt_string: Datetime string in ISO format or date format.

    Returns:
        Parsed datetime object.

    Raises:
        ValueError: If the string cannot be parsed.
    """
    formats = [
        "%Y-%m-%dT%H:%M:%S",
        "%Y-%m-%dT%H:%M:%S.%f",
        "%Y-%m-%d %H:%M:%S",
        "%Y-%m-%d",
    ]

    for fmt in formats:
        try:
            return datetime.strptime(dt_string, fmt)
        except ValueError:
            continue

    raise ValueError(
        f"Unable to parse datetime: {dt_string}. "
        f"Expected formats: YYYY-MM-DD or YYYY-MM-DDTHH:MM:SS"
    )


def build_gateway(config: ProviderConfig) -> PaymentGateway:
    return StripeGateway(config)


def _print_response(response: SimpleResponse) -> None:
    print(json.dumps(response.model_dump(mode="json"), indent=2))


async def run_command_async(
    command: str,
    pid: Optional[str] = None,
    start_time: Optional[datetime] = None,
    end_time: Optional[datetime] = None,
    database_url: Optional[str] = None,
) -> int:
    """Run one command against the ledger and the gateway.

    Args:
        command: One of COMMANDS.
        pid: Transaction to sync, for ``sync``.
        start_time: Window start, for ``sync-range``.
        end_time: Window end, for ``sync-range``.
        database_url: Ledger database; defaults to DATABASE_URL.

    Returns:
        Exit code (0 for success, non-zero for failure).
    """
    engine = create_async_engine(database_url=database_url or get_database_url())

    # Create tables if they don't exist
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    session_factory = get_async_session_factory(engine)
    config = ProviderConfig.from_env()

    try:
        async with get_db_context(session_factory) as session:
            provider = StripeIntentProvider(session, config, gateway=build_gateway(config))

            if command == "sync":
                transaction = await TransactionRepository(session).get_by_pid(pid)
                if transaction is None:
                    logger.error(f"Transaction {pid} not found")
                    return 1
                response = await provider.sync_transaction(transaction)
                print(json.dumps(response.to_dict(), indent=2))
                return 0 if response.success else 2

            if command == "sync-range":
                responses = await provider.sync_range(start_time, end_time)
                failed = [r for r in responses if not r.success]
                print(f"Synced {len(responses) - len(failed)} of {len(responses)} transaction(s)")
                if failed:
                    logger.warning(f"{len(failed)} transaction(s) could not be synced")
                    return 1
                return 0

            if command == "up":
                response = await provider.up()
            elif command == "down":
                response = await provider.down()
            else:
                response = await provider.ping()
            _print_response(response)
            return 0 if response.success else 2

    finally:
        await engine.dispose()


def create_parser() -> argparse.ArgumentParser:
    """Create the argument parser for the CLI.

    Returns:
        Configured ArgumentParser.
    """
    parser = argparse.ArgumentParser(
        prog="intent-adapter",
        description="Keep the transaction ledger in step with Stripe payment intents.",
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    sync_parser = subparsers.add_parser("sync", help="Sync one transaction with its payment intent")
    sync_parser.add_argument("--pid", required=True, help="Transaction public id")

    range_parser = subparsers.add_parser(
        "sync-range",
        help="Sync every transaction created in a time window",
    )
    range_parser.add_argument(
        "--start", "-s",
        required=True,
        help="Start date/time (YYYY-MM-DD or YYYY-MM-DDTHH:MM:SS)",
    )
    range_parser.add_argument(
        "--end", "-e",
        required=True,
        help="End date/time (YYYY-MM-DD or YYYY-MM-DDTHH:MM:SS)",
    )

    subparsers.add_parser("up", help="Register the webhook endpoint")
    subparsers.add_parser("down", help="Delete the webhook endpoint")
    subparsers.add_parser("ping", help="Check the Stripe credentials")

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

    start_time = end_time = None
    if parsed_args.command == "sync-range":
        try:
            start_time = parse_datetime(parsed_args.start)
            end_time = parse_datetime(parsed_args.end)

            # A bare end date covers the whole day; the window end is exclusive
            if "T" not in parsed_args.end and " " not in parsed_args.end:
                end_time = end_time + timedelta(days=1)

        except ValueError as e:
            logger.error(str(e))
            return 1

        if start_time >= end_time:
            logger.error("start must be before end")
            return 1

    try:
        return asyncio.run(run_command_async(
            command=parsed_args.command,
            pid=getattr(parsed_args, "pid", None),
            start_time=start_time,
            end_time=end_time,
        ))
    except ValueError as e:
        # Raised when the Stripe client cannot be configured
        logger.error(str(e))
        return 1


if __name__ == "__main__":
    sys.exit(main())
