"""CLI entry point for the CV distribution service."""

import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path

import yaml

from src.admin.importer import AgencyFile, import_agencies, load_candidate
from src.admin.ops import AdminOps
from src.core.config import Settings
from src.core.db import init_db, insert_candidate
from src.core.errors import PreconditionError
from src.core.schemas import Candidate, DistributionResult
from src.notify.base import DeliveryChannel, LoggingChannel
from src.notify.smtp import HealthAlertMailer, SmtpChannel, SmtpMailer
from src.pipeline.jobs import BackgroundJobs
from src.pipeline.orchestrator import DistributionSystem, build_distribution_system

logger = logging.getLogger(__name__)


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="CV distribution - send new candidates to recruitment agencies",
    )
    parser.add_argument(
        "--config",
        default="config/settings.yaml",
        help="Path to settings YAML file (default: config/settings.yaml)",
    )
    parser.add_argument(
        "--verbose", "-v",
        action="store_true",
        help="Enable verbose (DEBUG) logging",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    # --- submit ---
    submit_parser = subparsers.add_parser(
        "submit",
        help="Store a candidate and distribute it to eligible agencies",
    )
    submit_parser.add_argument("candidate", help="Path to candidate YAML file")
    submit_parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Log notifications instead of sending email",
    )

    # --- import-agencies ---
    import_parser = subparsers.add_parser(
        "import-agencies",
        help="Load agencies and subscriptions from YAML",
    )
    import_parser.add_argument("file", help="Path to agencies YAML file")

    # --- approve-agency ---
    approve_parser = subparsers.add_parser(
        "approve-agency",
        help="Approve (or deny) a recruitment agency",
    )
    approve_parser.add_argument("agency_id")
    approve_parser.add_argument(
        "--deny",
        action="store_true",
        help="Deny instead of approve",
    )

    # --- overview ---
    overview_parser = subparsers.add_parser(
        "overview",
        help="Print health, statistics, validation and metrics as JSON",
    )
    overview_parser.add_argument(
        "--days",
        type=int,
        default=7,
        help="Statistics period in days (default: 7)",
    )

    # --- serve ---
    serve_parser = subparsers.add_parser(
        "serve",
        help="Distribute candidate files dropped into a directory, with health and maintenance timers",
    )
    serve_parser.add_argument(
        "--watch",
        required=True,
        help="Directory polled for candidate YAML files",
    )
    serve_parser.add_argument(
        "--poll-interval",
        type=float,
        default=5.0,
        help="Seconds between directory scans (default: 5)",
    )
    serve_parser.add_argument(
        "--duration",
        type=float,
        default=None,
        help="Stop after this many seconds (default: run until interrupted)",
    )
    serve_parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Log notifications instead of sending email",
    )

    # --- run-job ---
    job_parser = subparsers.add_parser("run-job", help="Run a maintenance job now")
    job_parser.add_argument(
        "name",
        choices=["reset_counters", "subscription_check", "health_check"],
    )

    return parser.parse_args(argv)


def setup_logging(verbose: bool) -> None:
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%H:%M:%S",
    )


def build(
    settings: Settings, dry_run: bool = False,
) -> tuple[DistributionSystem, AdminOps, BackgroundJobs]:
    """Open the database and wire the pipeline for one CLI run."""
    conn = init_db(settings.database.path)
    mailer = SmtpMailer(settings.email)
    channel: DeliveryChannel = LoggingChannel() if dry_run else SmtpChannel(mailer)
    system = build_distribution_system(
        settings,
        conn,
        channel,
        alert_sink=HealthAlertMailer(mailer, settings.monitoring.admin_emails),
    )
    admin = AdminOps(system)
    jobs = BackgroundJobs(
        conn,
        system.monitor,
        settings.jobs,
        validate=admin.validate_system_configuration,
        health_check_interval_s=settings.monitoring.health_check_interval_s,
    )
    admin.jobs = jobs
    return system, admin, jobs


async def store_and_distribute(
    system: DistributionSystem, candidate: Candidate,
) -> DistributionResult | None:
    """Persist a candidate and enqueue its distribution.

    Returns None when the candidate cannot be distributed; it stays stored.
    """
    if not insert_candidate(system.conn, candidate):
        print(f"Candidate {candidate.id} already stored - distributing again")
    try:
        result = await system.service.distribute_cv_to_agencies(candidate)
    except PreconditionError as e:
        logger.warning("CV distribution skipped: %s", e)
        print(f"Candidate {candidate.id} stored, not distributed: {e}")
        return None
    print(f"Candidate {candidate.id}: {result.distributed_count} eligible agencies")
    return result


async def cmd_submit(settings: Settings, args: argparse.Namespace) -> None:
    """Handle submit subcommand."""
    candidate = load_candidate(args.candidate)
    system, admin, _ = build(settings, dry_run=args.dry_run)
    try:
        if await store_and_distribute(system, candidate) is None:
            return

        await system.service.wait_until_idle()
        for summary in system.queue.completed:
            print(f"  Job {summary.job_id}: {summary.success_count} sent, "
                  f"{summary.error_count} failed in {summary.batches} batches")

        health = admin.get_health_status()
        print(f"Health: {health.status} - {health.message}")
    finally:
        await system.shutdown()
        system.conn.close()


async def _scan_inbox(system: DistributionSystem, inbox: Path) -> int:
    """Distribute every candidate file in ``inbox`` and move it aside."""
    processed = 0
    for path in sorted(inbox.glob("*.yaml")):
        try:
            candidate = load_candidate(path)
        except (ValueError, yaml.YAMLError) as e:
            logger.error("Rejected candidate file %s: %s", path.name, e)
            path.replace(inbox / "failed" / path.name)
            continue
        await store_and_distribute(system, candidate)
        path.replace(inbox / "processed" / path.name)
        processed += 1
    return processed


async def cmd_serve(settings: Settings, args: argparse.Namespace) -> None:
    """Handle serve subcommand.

    Polls ``--watch`` for candidate YAML files while the periodic health
    check and the maintenance jobs run. Stops after ``--duration`` seconds
    or when interrupted, then drains the queue and stops every timer.
    """
    inbox = Path(args.watch)
    if not inbox.is_dir():
        msg = f"Watch directory not found: {inbox}"
        raise FileNotFoundError(msg)
    (inbox / "processed").mkdir(exist_ok=True)
    (inbox / "failed").mkdir(exist_ok=True)

    system, admin, jobs = build(settings, dry_run=args.dry_run)
    loop = asyncio.get_running_loop()
    deadline = None if args.duration is None else loop.time() + args.duration
    processed = 0
    system.monitor.start()
    jobs.start()
    logger.info("Watching %s for candidates", inbox)
    try:
        while deadline is None or loop.time() < deadline:
            processed += await _scan_inbox(system, inbox)
            await asyncio.sleep(args.poll_interval)
        await system.service.wait_until_idle()
        health = admin.get_health_status()
        print(f"Processed {processed} candidates. Health: {health.status} - {health.message}")
    finally:
        await jobs.shutdown()
        await system.shutdown()
        system.conn.close()


def cmd_import_agencies(settings: Settings, args: argparse.Namespace) -> None:
    """Handle import-agencies subcommand."""
    data = AgencyFile.from_yaml(args.file)
    conn = init_db(settings.database.path)
    try:
        agencies, subscriptions = import_agencies(conn, data)
    finally:
        conn.close()
    print(f"Imported {agencies} agencies and {subscriptions} subscriptions.")


def cmd_approve_agency(settings: Settings, args: argparse.Namespace) -> None:
    """Handle approve-agency subcommand."""
    system, admin, _ = build(settings)
    try:
        if not admin.set_agency_approval(args.agency_id, approve=not args.deny):
            msg = f"Recruitment agency not found: {args.agency_id}"
            raise ValueError(msg)
    finally:
        system.conn.close()
    print(f"Agency {args.agency_id} {'denied' if args.deny else 'approved'}.")


def cmd_overview(settings: Settings, args: argparse.Namespace) -> None:
    """Handle overview subcommand."""
    system, admin, _ = build(settings)
    try:
        print(json.dumps(admin.overview(days=args.days), indent=2, ensure_ascii=False))
    finally:
        system.conn.close()


async def cmd_run_job(settings: Settings, args: argparse.Namespace) -> None:
    """Handle run-job subcommand."""
    system, _, jobs = build(settings)
    try:
        await jobs.trigger(args.name)
    finally:
        system.conn.close()
    print(f"Job {args.name} completed.")


def main(argv: list[str] | None = None) -> None:
    args = parse_args(argv)
    setup_logging(args.verbose)

    try:
        settings = Settings.from_yaml(args.config)
    except (FileNotFoundError, ValueError) as e:
        print(f"Error loading config: {e}", file=sys.stderr)
        sys.exit(1)

    try:
        if args.command == "submit":
            asyncio.run(cmd_submit(settings, args))
        elif args.command == "import-agencies":
            cmd_import_agencies(settings, args)
        elif args.command == "approve-agency":
            cmd_approve_agency(settings, args)
        elif args.command == "overview":
            cmd_overview(settings, args)
        elif args.command == "run-job":
            asyncio.run(cmd_run_job(settings, args))
        elif args.command == "serve":
            asyncio.run(cmd_serve(settings, args))
    except (FileNotFoundError, ValueError) as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)
    except KeyboardInterrupt:
        logger.info("Interrupted by user")


if __name__ == "__main__":
    main()
