"""Command-line entrypoint.

Usage:
    python -m wallet_tracker init-db
    python -m wallet_tracker add <address>
    python -m wallet_tracker sync <address>
    python -m wallet_tracker balance <address>
    python -m wallet_tracker transactions <address>
    python -m wallet_tracker detect <file.json | ->
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from collections.abc import Sequence
from datetime import timedelta
from typing import Any

from pydantic import ValidationError

from wallet_tracker.config import Settings, get_settings, load_transfer_settings
from wallet_tracker.detector.models import WalletTransaction
from wallet_tracker.detector.transfers import TransferDetector, TransferDetectorConfig
from wallet_tracker.errors import WalletTrackerError
from wallet_tracker.storage.database import DatabaseManager
from wallet_tracker.tracker import open_tracker

logger = logging.getLogger("wallet_tracker")


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="wallet_tracker", description="Track Bitcoin addresses via Blockchair.")
    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("init-db", help="Create the database schema")
    for name, help_text in (
        ("add", "Start tracking an address"),
        ("sync", "Reconcile an address with the provider"),
        ("balance", "Sync and print the balance of a tracked address"),
        ("transactions", "Sync and list the transactions of a tracked address"),
    ):
        cmd = sub.add_parser(name, help=help_text)
        cmd.add_argument("address")

    detect = sub.add_parser("detect", help="Detect transfers in a JSON list of wallet transactions")
    detect.add_argument("path", help="JSON file, or - for stdin")
    return parser


def _load_wallet_transactions(path: str) -> list[WalletTransaction]:
    if path == "-":
        payload = json.load(sys.stdin)
    else:
        with open(path, encoding="utf-8") as f:
            payload = json.load(f)
    if isinstance(payload, dict):
        payload = payload.get("transactions")
    if not isinstance(payload, list):
        raise ValueError("Expected a JSON list of transactions (or {'transactions': [...]})")
    return [WalletTransaction.from_dict(item) for item in payload]


def _detect(path: str) -> dict[str, str]:
    transfers = load_transfer_settings()
    detector = TransferDetector(
        config=TransferDetectorConfig(
            window=timedelta(seconds=transfers.window_seconds),
            amount_tolerance=transfers.amount_tolerance,
        )
    )
    return detector.detect(_load_wallet_transactions(path))


async def _run(args: argparse.Namespace, settings: Settings) -> Any:
    if args.command == "init-db":
        db = DatabaseManager(settings.database.url)
        try:
            await db.create_schema()
        finally:
            await db.dispose()
        return {"status": "ok"}

    async with open_tracker(settings) as tracker:
        if args.command == "add":
            return {"address": (await tracker.add_address(args.address)).to_dict()}
        if args.command == "sync":
            result = await tracker.sync_address(args.address)
            return {
                "address": result.address.to_dict(),
                "new_transactions": [t.to_dict() for t in result.new_transactions],
            }
        if args.command == "balance":
            return {"balance": str(await tracker.get_balance(args.address))}
        if args.command == "transactions":
            return {"transactions": [t.to_dict() for t in await tracker.list_transactions(args.address)]}
    raise ValueError(f"Unknown command: {args.command}")


def main(argv: Sequence[str] | None = None) -> int:
    args = _build_parser().parse_args(argv)

    try:
        if args.command == "detect":
            logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
            output: Any = _detect(args.path)
        else:
            settings = get_settings()
            logging.basicConfig(
                level=settings.get_logging_level(),
                format="%(asctime)s %(levelname)s %(name)s: %(message)s",
            )
            logger.debug("Settings: %s", settings.redacted_summary())
            output = asyncio.run(_run(args, settings))
    except WalletTrackerError as e:
        logger.error("%s", e)
        print(json.dumps(e.to_dict()), file=sys.stderr)
        return 1
    except (ValidationError, ValueError, OSError) as e:
        logger.error("%s", e)
        return 1

    print(json.dumps(output, indent=2))
    return 0


if __name__ == "__main__":
    sys.exit(main())
