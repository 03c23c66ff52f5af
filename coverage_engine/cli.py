"""Operator command line for the coverage-attribute migration.

    coverage-engine migrate --mode=dry-run [--product=<id>] [--concurrency=N] [--report-out=<path>]
    coverage-engine rollback --product=<id> --coverage=<id> [--confirm]
    coverage-engine status --product=<id>

Reports are printed to stdout as JSON; logs go to stderr. ``migrate`` exits
0 when every coverage migrated, 1 when some coverage failed and 2 when the
run was aborted.
"""

import argparse
import asyncio
import json
import signal
from pathlib import Path
from typing import List, Optional

from coverage_engine.core.config import settings, to_async_url
from coverage_engine.core.database import (
    DatabaseClient,
    close_database,
    get_db_client,
    init_database,
    set_db_client,
)
from coverage_engine.core.exceptions import (
    CoverageNotFoundError,
    FatalRunError,
    RollbackNotConfirmedError,
    RollbackUnsafeError,
)
from coverage_engine.repositories.record_store import RecordStore
from coverage_engine.services.compatibility.compatibility_service import CompatibilityService
from coverage_engine.services.migration.migration_service import MigrationService
from coverage_engine.services.migration.report import MigrationMode, MigrationReport
from coverage_engine.services.rollback.rollback_service import RollbackService
from coverage_engine.utils.logging import get_logger, set_log_level

LOGGER = get_logger(__name__)

EXIT_ABORTED = 2


def _positive_int(value: str) -> int:
    number = int(value)
    if number < 1:
        raise argparse.ArgumentTypeError(f"must be at least 1, got {number}")
    return number


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="coverage-engine",
        description="Migrate coverage limits and deductibles from legacy arrays to typed records.",
    )
    parser.add_argument("--database-url", default=None, help="Override DATABASE_URL.")
    parser.add_argument("--log-level", default=None, help="Override LOG_LEVEL.")
    commands = parser.add_subparsers(dest="command", required=True)

    migrate = commands.add_parser("migrate", help="Convert legacy arrays into typed records.")
    migrate.add_argument(
        "--mode",
        choices=[mode.value for mode in MigrationMode],
        default=MigrationMode.DRY_RUN.value,
        help="dry-run reports only; live persists.",
    )
    migrate.add_argument("--product", default=None, help="Only migrate this product.")
    migrate.add_argument(
        "--concurrency",
        type=_positive_int,
        default=None,
        help=f"Coverages migrated at once (default {settings.migration.concurrency}).",
    )
    migrate.add_argument("--report-out", default="", help="Optional JSON report path.")
    migrate.add_argument("--compact", action="store_true", help="Emit compact JSON.")

    rollback = commands.add_parser("rollback", help="Undo the migration of one coverage.")
    rollback.add_argument("--product", required=True, help="Product id.")
    rollback.add_argument("--coverage", required=True, help="Coverage id.")
    rollback.add_argument(
        "--mode",
        choices=[mode.value for mode in MigrationMode],
        default=None,
        help="dry-run lists what would be deleted; live deletes. Defaults to live with --confirm, else dry-run.",
    )
    rollback.add_argument("--confirm", action="store_true", help="Confirm a live rollback.")
    rollback.add_argument("--reason", default=None, help="Reason recorded in the log.")

    status = commands.add_parser("status", help="Show how much of a product is migrated.")
    status.add_argument("--product", required=True, help="Product id.")

    return parser


def _emit(payload: str, report_out: str = "") -> None:
    print(payload)
    if report_out:
        out_path = Path(report_out)
        out_path.parent.mkdir(parents=True, exist_ok=True)
        out_path.write_text(payload + "\n", encoding="utf-8")


def _dump_report(report: MigrationReport, compact: bool) -> str:
    return report.model_dump_json(indent=None if compact else 2)


def _build_store() -> RecordStore:
    return RecordStore.from_settings(get_db_client().session_maker, settings.store)


async def _migrate(args: argparse.Namespace) -> int:
    cancel_event = asyncio.Event()
    loop = asyncio.get_running_loop()
    installed = []
    for signum in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(signum, _request_abort, cancel_event, signum)
            installed.append(signum)
        except (NotImplementedError, RuntimeError):
            LOGGER.debug(f"Cannot install handler for {signum!r}; Ctrl-C will not abort cleanly")

    service = MigrationService.from_settings(_build_store(), settings)
    try:
        report = await service.run(
            args.mode,
            product_id=args.product,
            concurrency=args.concurrency,
            cancel_event=cancel_event,
        )
    except FatalRunError as e:
        LOGGER.error(f"Migration aborted: {e}")
        if e.report is not None:
            _emit(_dump_report(e.report, args.compact), args.report_out)
        return EXIT_ABORTED
    finally:
        for signum in installed:
            loop.remove_signal_handler(signum)

    _emit(_dump_report(report, args.compact), args.report_out)
    return report.exit_code


def _request_abort(cancel_event: asyncio.Event, signum: int) -> None:
    LOGGER.warning(f"Received signal {signum}, stopping after the coverages in progress")
    cancel_event.set()


def _rollback_is_dry_run(args: argparse.Namespace) -> bool:
    if args.mode is None:
        return not args.confirm
    return args.mode == MigrationMode.DRY_RUN.value


async def _rollback(args: argparse.Namespace) -> int:
    service = RollbackService(_build_store())
    try:
        report = await service.rollback(
            args.product,
            args.coverage,
            dry_run=_rollback_is_dry_run(args),
            confirm=args.confirm,
            reason=args.reason,
        )
    except (RollbackNotConfirmedError, RollbackUnsafeError) as e:
        LOGGER.error(str(e))
        return EXIT_ABORTED
    except CoverageNotFoundError as e:
        LOGGER.error(str(e))
        return 1
    _emit(report.model_dump_json(indent=2))
    return 0


async def _status(args: argparse.Namespace) -> int:
    service = CompatibilityService(_build_store(), dual_write=settings.dual_write_enabled)
    status = await service.migration_status(args.product)
    _emit(json.dumps({"product_id": args.product, **status}, indent=2))
    return 0


COMMANDS = {
    "migrate": _migrate,
    "rollback": _rollback,
    "status": _status,
}


async def _run(args: argparse.Namespace) -> int:
    if args.database_url:
        set_db_client(DatabaseClient.from_url(to_async_url(args.database_url), echo=settings.store.echo))
    try:
        await init_database()
        return await COMMANDS[args.command](args)
    finally:
        await close_database()
        set_db_client(None)


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    if args.command == "rollback" and args.confirm and args.mode == MigrationMode.DRY_RUN.value:
        parser.error("--confirm applies to live rollbacks; drop it or use --mode=live")
    set_log_level(args.log_level or settings.log_level)
    return asyncio.run(_run(args))


if __name__ == "__main__":
    raise SystemExit(main())
