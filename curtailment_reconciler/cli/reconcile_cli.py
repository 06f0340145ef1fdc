"""
Command-line interface for curtailment reconciliation.

Usage:
    curtailment-reconcile status [--date D | --start S --end E]
    curtailment-reconcile reconcile [--date D | --start S --end E] [options]
    curtailment-reconcile date YYYY-MM-DD [options]
    curtailment-reconcile range START END [options]
    curtailment-reconcile history --run-id ID
    curtailment-reconcile runs

Exit status is 0 only when verification reports full completion (within the
configured tolerance); outstanding partitions are printed to stderr.
"""

import argparse
import signal
import sys

from curtailment_reconciler.core.config import RunConfigLoader
from curtailment_reconciler.core.exceptions import ReconciliationError
from curtailment_reconciler.core.models import ReconcileScope, VerificationSummary
from curtailment_reconciler.observability.logger import get_logger, setup_logger
from curtailment_reconciler.observability.metrics import start_metrics_server
from curtailment_reconciler.utils.validation import (
    ValidationError,
    validate_date_range,
    validate_run_id,
    validate_settlement_date,
    validate_variant,
)

logger = get_logger()

EXIT_OK = 0
EXIT_INCOMPLETE = 1
EXIT_ERROR = 2


def _date_arg(value: str):
    return validate_settlement_date(value)


def _positive_int(value: str) -> int:
    number = int(value)
    if number < 1:
        raise ValueError(f"must be >= 1, got {number}")
    return number


def _variant_list(value: str) -> list[str]:
    return [validate_variant(v) for v in value.split(",") if v.strip()]


def scope_from_args(args: argparse.Namespace) -> ReconcileScope:
    """
    Build the scope selected on the command line.

    Raises:
        ValidationError: If the scope options are inconsistent
    """
    if args.command == "date":
        return ReconcileScope.single(args.day)
    if args.command == "range":
        start, end = validate_date_range(args.range_start, args.range_end)
        return ReconcileScope.between(start, end)

    day = getattr(args, "date", None)
    start = getattr(args, "start", None)
    end = getattr(args, "end", None)
    if day is not None:
        if start is not None or end is not None:
            raise ValidationError("--date cannot be combined with --start/--end")
        return ReconcileScope.single(day)
    if start is not None or end is not None:
        if start is None or end is None:
            raise ValidationError("--start and --end must be given together")
        start, end = validate_date_range(start, end)
        return ReconcileScope.between(start, end)
    return ReconcileScope.everything()


def print_outstanding(summary: VerificationSummary, stream=None) -> None:
    """Write every partition that is not complete to stderr."""
    stream = stream or sys.stderr
    print(
        f"{len(summary.outstanding)} partition(s) not complete "
        f"({summary.completion_pct:.2f}% of {summary.scope}):",
        file=stream,
    )
    for item in summary.outstanding:
        print(
            f"  {item.key}  {item.state.value:<10} {item.completion_pct:6.2f}%  "
            f"{item.derived_count}/{item.source_count}  {item.last_error or ''}".rstrip(),
            file=stream,
        )


def status_command(args, engine) -> int:
    scope = scope_from_args(args)
    summary = engine.status(scope)
    print(summary.render())
    if summary.is_successful(engine.config.completion_tolerance_pct):
        return EXIT_OK
    print_outstanding(summary)
    return EXIT_INCOMPLETE


def reconcile_command(args, engine) -> int:
    scope = scope_from_args(args)

    def handle_signal(signum, frame):
        logger.warning("Signal received, stopping after the current batch", extra={"signal": signum})
        engine.stop()

    previous = {sig: signal.signal(sig, handle_signal) for sig in (signal.SIGINT, signal.SIGTERM)}
    try:
        result = engine.reconcile(scope)
    finally:
        for sig, handler in previous.items():
            signal.signal(sig, handler)

    report = result.report
    print("=" * 72)
    print(f"RUN {result.run_id}")
    print(f"Scheduled:        {result.scheduled}")
    print(f"Skipped (done):   {result.skipped_already_succeeded}")
    print(f"Succeeded:        {len(report.succeeded)}")
    print(f"Failed:           {len(report.failed)}")
    print(f"Records written:  {report.records_written}")
    if report.cancelled:
        print(f"Cancelled:        {len(report.not_attempted)} partition(s) not attempted")
        print(f"Resume with:      --run-id {result.run_id}")
    if report.progress_write_failures:
        print(f"Progress log write failures: {report.progress_write_failures}")
    print(result.summary.render())

    if result.successful:
        return EXIT_OK
    print_outstanding(result.summary)
    return EXIT_INCOMPLETE


def history_command(args, engine) -> int:
    entries = engine.history(args.run_id)
    if not entries:
        print(f"No progress entries for run {args.run_id}", file=sys.stderr)
        return EXIT_INCOMPLETE
    for entry in entries:
        print(entry.to_log_line())
    return EXIT_OK


def runs_command(args, engine) -> int:
    overviews = engine.runs()
    if not overviews:
        print("No runs recorded")
        return EXIT_OK
    print(f"{'Run':<36} {'Started':<20} {'OK':>6} {'Failed':>6} {'Records':>9}")
    for run in overviews:
        print(
            f"{run.run_id:<36} {run.started_at.strftime('%Y-%m-%d %H:%M:%S'):<20} "
            f"{run.succeeded:>6} {run.failed:>6} {run.records_written:>9}"
        )
    return EXIT_OK


COMMANDS = {
    "status": status_command,
    "reconcile": reconcile_command,
    "date": reconcile_command,
    "range": reconcile_command,
    "history": history_command,
    "runs": runs_command,
}


def _add_common_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--config", help="Path to YAML configuration file")
    parser.add_argument("--env-file", help="Path to a .env file loaded before reading DB_* variables")
    parser.add_argument("--variants", type=_variant_list, help="Comma-separated miner models (default: all)")
    parser.add_argument(
        "--progress-backend",
        choices=["postgres", "file"],
        help="Where the progress log is kept (default: postgres)",
    )
    parser.add_argument("--progress-dir", help="Directory for the file progress log")
    parser.add_argument("--metrics-port", type=int, help="Expose Prometheus metrics on this port")
    parser.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Log level (default: env LOG_LEVEL or INFO)",
    )
    parser.add_argument("--log-format", choices=["json", "text"], help="Log format (default: json)")
    parser.add_argument(
        "--ensure-schema",
        action="store_true",
        help="Create missing tables before running",
    )

    # Database connection arguments
    parser.add_argument("--db-host", help="Database host (default: env DB_HOST or localhost)")
    parser.add_argument("--db-port", type=int, help="Database port (default: env DB_PORT or 5432)")
    parser.add_argument("--db-name", help="Database name (default: env DB_NAME)")
    parser.add_argument("--db-user", help="Database user (default: env DB_USER)")
    parser.add_argument("--db-password", help="Database password (default: env DB_PASSWORD)")


def _add_scope_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--date", type=_date_arg, help="Single settlement date (YYYY-MM-DD)")
    parser.add_argument("--start", type=_date_arg, help="First date of an inclusive range")
    parser.add_argument("--end", type=_date_arg, help="Last date of an inclusive range")


def _add_run_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--batch-size", type=_positive_int, help="Partitions per batch (default: 5)")
    parser.add_argument(
        "--concurrency",
        type=_positive_int,
        help="Partitions reprocessed in parallel (default: 3)",
    )
    parser.add_argument("--delay", type=float, help="Seconds between batches (default: 1.0)")
    parser.add_argument("--run-id", type=validate_run_id, help="Run ID; reuse one to resume a run")
    parser.add_argument("--force", action="store_true", help="Also recompute complete partitions")
    parser.add_argument(
        "--tolerance",
        type=float,
        help="Completion shortfall in percent still reported as success (default: 0)",
    )
    parser.add_argument(
        "--verify-every",
        type=int,
        help="Log interim completion every N batches (default: off)",
    )
    parser.add_argument("--difficulty-file", help="YAML file of observed network difficulty")
    parser.add_argument(
        "--no-summaries",
        action="store_true",
        help="Skip refreshing the daily/monthly/yearly summaries",
    )


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="curtailment-reconcile",
        description="Reconcile bitcoin calculations with curtailment records",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Show completion for one day
  curtailment-reconcile status --date 2025-03-21

  # Reconcile everything outstanding
  curtailment-reconcile reconcile --batch-size 10 --concurrency 4

  # Reconcile a single day or a range
  curtailment-reconcile date 2025-03-21
  curtailment-reconcile range 2025-03-01 2025-03-31 --delay 2

  # Resume an interrupted run
  curtailment-reconcile reconcile --run-id reconcile_20250321T120000

  # Audit trail of a run
  curtailment-reconcile history --run-id reconcile_20250321T120000
        """,
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    status_parser = subparsers.add_parser("status", help="Report completion without changing anything")
    _add_scope_arguments(status_parser)
    status_parser.add_argument("--run-id", type=validate_run_id, help="Annotate with failures of this run")
    status_parser.add_argument("--tolerance", type=float, help="Accepted completion shortfall in percent")
    _add_common_arguments(status_parser)

    reconcile_parser = subparsers.add_parser("reconcile", help="Reconcile a scope (default: all dates)")
    _add_scope_arguments(reconcile_parser)
    _add_run_arguments(reconcile_parser)
    _add_common_arguments(reconcile_parser)

    date_parser = subparsers.add_parser("date", help="Reconcile one settlement date")
    date_parser.add_argument("day", type=_date_arg, help="Settlement date (YYYY-MM-DD)")
    _add_run_arguments(date_parser)
    _add_common_arguments(date_parser)

    range_parser = subparsers.add_parser("range", help="Reconcile an inclusive date range")
    range_parser.add_argument("range_start", metavar="START", type=_date_arg, help="First date")
    range_parser.add_argument("range_end", metavar="END", type=_date_arg, help="Last date")
    _add_run_arguments(range_parser)
    _add_common_arguments(range_parser)

    history_parser = subparsers.add_parser("history", help="Show the progress log of a run")
    history_parser.add_argument("--run-id", type=validate_run_id, required=True, help="Run ID")
    _add_common_arguments(history_parser)

    runs_parser = subparsers.add_parser("runs", help="List recorded runs")
    _add_common_arguments(runs_parser)

    return parser


def config_overrides(args: argparse.Namespace) -> dict:
    """RunConfig overrides taken from command-line flags; unset flags are None."""
    return {
        "run_id": getattr(args, "run_id", None),
        "variants": args.variants,
        "batch_size": getattr(args, "batch_size", None),
        "concurrency": getattr(args, "concurrency", None),
        "inter_batch_delay_seconds": getattr(args, "delay", None),
        "force": True if getattr(args, "force", False) else None,
        "completion_tolerance_pct": getattr(args, "tolerance", None),
        "verify_every_batches": getattr(args, "verify_every", None),
        "difficulty_file": getattr(args, "difficulty_file", None),
        "refresh_summaries": False if getattr(args, "no_summaries", False) else None,
        "progress_backend": args.progress_backend,
        "progress_dir": args.progress_dir,
        "database": {
            "host": args.db_host,
            "port": args.db_port,
            "database": args.db_name,
            "user": args.db_user,
            "password": args.db_password,
        },
    }


def main(argv: list[str] | None = None) -> int:
    """Main CLI entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        return EXIT_ERROR

    setup_logger(level=args.log_level, format_type=args.log_format)

    if args.command in ("status", "reconcile", "date", "range"):
        try:
            scope_from_args(args)
        except ValidationError as e:
            parser.error(str(e))

    # Imported here so --help works without a database driver configured
    from curtailment_reconciler.reconcile.engine import ReconciliationEngine
    from curtailment_reconciler.warehouse.connection import DatabaseConnectionPool
    from curtailment_reconciler.warehouse.schema_mgmt import ensure_schema

    try:
        run_config, db_config = RunConfigLoader(args.config, args.env_file).load(**config_overrides(args))
    except (ReconciliationError, FileNotFoundError) as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        return EXIT_ERROR

    if args.metrics_port:
        start_metrics_server(args.metrics_port)

    try:
        pool = DatabaseConnectionPool.from_config(db_config)
        pool.open()
    except Exception as e:
        print(f"Could not connect to the database: {e}", file=sys.stderr)
        return EXIT_ERROR

    try:
        if args.ensure_schema:
            ensure_schema(pool)
        engine = ReconciliationEngine.from_pool(run_config, pool)
        return COMMANDS[args.command](args, engine)
    except ValidationError as e:
        print(f"Invalid arguments: {e}", file=sys.stderr)
        return EXIT_ERROR
    except ReconciliationError as e:
        logger.error(f"Reconciliation failed: {e}", exc_info=True)
        print(f"Reconciliation failed: {e}", file=sys.stderr)
        return EXIT_ERROR
    finally:
        pool.close()


if __name__ == "__main__":
    sys.exit(main())
