"""Command line entry point.

Usage:
    python -m tms_financials serve
    python -m tms_financials worker
    python -m tms_financials drain --limit 50
    python -m tms_financials init-db
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import signal
import sys
from typing import Callable

import uvicorn

from tms_financials.config import Settings, get_settings
from tms_financials.database import dispose_db, init_db
from tms_financials.models import Base
from tms_financials.services.worker import OutboxWorker


def configure_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level, logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


class FinancialsCli:
    """Financials engine command line interface."""

    def __init__(self, settings: Settings | None = None) -> None:
        self.settings = settings or get_settings()
        self.parser = self._build_parser()

    def _build_parser(self) -> argparse.ArgumentParser:
        parser = argparse.ArgumentParser(
            prog="python -m tms_financials",
            description="Timesheet financials engine",
        )
        subparsers = parser.add_subparsers(dest="command", help="Commands")

        serve = subparsers.add_parser("serve", help="Run the HTTP API")
        serve.add_argument("--host", default=self.settings.host)
        serve.add_argument("--port", type=int, default=self.settings.port)

        subparsers.add_parser("worker", help="Drain the outbox until interrupted")

        drain = subparsers.add_parser("drain", help="Run a single outbox cycle")
        drain.add_argument(
            "--limit",
            type=int,
            default=self.settings.worker_batch_size,
            help="Maximum entries to lease",
        )

        subparsers.add_parser("init-db", help="Create any missing tables")
        return parser

    def run(self, args: list[str] | None = None) -> int:
        """Run the CLI with given arguments."""
        parsed = self.parser.parse_args(args)

        if not parsed.command:
            self.parser.print_help()
            return 1

        configure_logging(self.settings.log_level)

        handlers: dict[str, Callable[..., int]] = {
            "serve": self._cmd_serve,
            "worker": self._cmd_worker,
            "drain": self._cmd_drain,
            "init-db": self._cmd_init_db,
        }
        handler = handlers.get(parsed.command)
        if handler:
            return handler(parsed)

        print(f"Unknown command: {parsed.command}", file=sys.stderr)
        return 1

    def _cmd_serve(self, args: argparse.Namespace) -> int:
        uvicorn.run(
            "tms_financials.api.app:app",
            host=args.host,
            port=args.port,
            reload=self.settings.debug,
            log_level=self.settings.log_level.lower(),
        )
        return 0

    def _cmd_worker(self, args: argparse.Namespace) -> int:
        asyncio.run(self._run_worker())
        return 0

    async def _run_worker(self) -> None:
        _, factory = init_db(self.settings.database_url)
        stop_event = asyncio.Event()
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.add_signal_handler(sig, stop_event.set)
            except NotImplementedError:
                # Signal handlers are unavailable on some platforms
                pass
        try:
            await OutboxWorker(factory, self.settings).run_forever(stop_event)
        finally:
            await dispose_db()

    def _cmd_drain(self, args: argparse.Namespace) -> int:
        result = asyncio.run(self._drain(args.limit))
        print(
            f"leased={result.leased} succeeded={len(result.succeeded)} "
            f"failed={len(result.failed)} parked={len(result.parked)}"
        )
        for item in result.failed.values():
            print(f"  FAILED {item.timesheet_id} ({item.reason}): {item.error}")
        for item in result.parked.values():
            print(f"  PARKED {item.timesheet_id} ({item.reason}): {item.error}")
        return 1 if result.failed else 0

    async def _drain(self, limit: int):
        _, factory = init_db(self.settings.database_url)
        try:
            return await OutboxWorker(factory, self.settings).run_once(limit)
        finally:
            await dispose_db()

    def _cmd_init_db(self, args: argparse.Namespace) -> int:
        asyncio.run(self._init_db())
        print("Schema ready.")
        return 0

    async def _init_db(self) -> None:
        engine, _ = init_db(self.settings.database_url)
        try:
            async with engine.begin() as conn:
                await conn.run_sync(Base.metadata.create_all)
        finally:
            await dispose_db()


def main() -> int:
    """CLI entry point."""
    cli = FinancialsCli()
    return cli.run()


if __name__ == "__main__":
    sys.exit(main())
