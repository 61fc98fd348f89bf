# task_mirror/main.py
"""Command line entry point for the Google Tasks mirror."""
from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from typing import Any, Optional, Sequence

from storage.db import init_db
from services.sync_service import SyncService, get_sync_logger


def _print(payload: Any) -> None:
    print(json.dumps(payload, indent=2, ensure_ascii=False, default=str))


def _setup_console_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s [%(levelname)s] %(message)s",
    )


def _serve(service: SyncService) -> int:
    try:
        asyncio.run(service.scheduler.run_forever())
    except KeyboardInterrupt:
        logging.info("Scheduler interrupted, shutting down")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description=__doc__ or "")
    parser.add_argument("-v", "--verbose", action="store_true", help="Log debug output to the console.")
    commands = parser.add_subparsers(dest="command", required=True)

    commands.add_parser("serve", help="Run the status and import jobs until interrupted.")
    sync_now = commands.add_parser("sync-now", help="Import Google Tasks for one account now.")
    sync_now.add_argument("account_id", type=int)
    commands.add_parser("status-sync-once", help="Reconcile every mirrored task once.")
    commands.add_parser("import-once", help="Import Google Tasks for every connected account once.")
    commands.add_parser("status", help="Show sync counters and scheduler flags.")
    return parser


def main(argv: Optional[Sequence[str]] = None, service: Optional[SyncService] = None) -> int:
    args = build_parser().parse_args(argv)
    _setup_console_logging(args.verbose)

    init_db()
    service = service or SyncService()
    get_sync_logger()

    if args.command == "serve":
        return _serve(service)
    if args.command == "sync-now":
        result = service.sync_now(args.account_id)
        _print(result)
        return 0 if result.get("success") else 1
    if args.command == "status-sync-once":
        _print(service.run_status_sync_once().as_dict())
        return 0
    if args.command == "import-once":
        _print(service.run_import_once().as_dict())
        return 0
    _print(service.status())
    return 0


if __name__ == "__main__":  # pragma: no cover - CLI entry point
    sys.exit(main())
