"""
CLI entry point for bencher.

Commands:
- run <version> <command...>  create the job container and dispatch a coordinator
- sched <version>             submit a job (what the coordinator runs)
- get [version]               list jobs or show one job's detail
- rm [-f] [--all] versions... remove jobs
- lock                        show the execution slot
- recover [--requeue]         release a stale lock, list/requeue stuck jobs
"""

import argparse
import logging
import signal
import sys
from typing import List, Optional

from .infra.config import SchedulerConfig, load_config
from .infra.logging_config import setup_logging
from .scheduler.entities import JobView, JobViewStatus, SubmitOutcome
from .scheduler.errors import SchedulerError
from .scheduler.service import SchedulerService


logger = logging.getLogger(__name__)

EXIT_SUCCESS = 0
EXIT_ERROR = 1
EXIT_USAGE = 2


def build_service(config: SchedulerConfig) -> SchedulerService:
    """Create the service for one invocation."""
    return SchedulerService.create(config)


def _format_status(view: JobView) -> str:
    if view.status == JobViewStatus.QUEUED:
        return f"scheduled at order #{view.order}"
    return view.status.value


def _indent(text: str) -> str:
    return "\t" + text.rstrip("\n").replace("\n", "\n\t")


# =============================================================================
# Commands
# =============================================================================

def cmd_run(service: SchedulerService, args: argparse.Namespace) -> int:
    """Prepare the job container, then hand the job to a coordinator."""
    if not args.job_command:
        print("Error: missing command to run", file=sys.stderr)
        return EXIT_USAGE

    service.prepare(args.version, args.job_command, workdir=args.workdir)
    handle = service.launch(args.version, debug=args.debug or None)
    print(f"{args.version} dispatched ({handle.name})")
    return EXIT_SUCCESS


def cmd_sched(service: SchedulerService, args: argparse.Namespace) -> int:
    """Submit a job; blocks while this process owns the execution slot."""

    def signal_handler(signum, frame):
        signal_name = "SIGINT" if signum == signal.SIGINT else "SIGTERM"
        logger.info(f"{signal_name} received - finishing current job, then stopping")
        service.request_stop()

    previous_int = signal.signal(signal.SIGINT, signal_handler)
    previous_term = signal.signal(signal.SIGTERM, signal_handler)
    try:
        outcome = service.schedule(args.version)
    finally:
        signal.signal(signal.SIGINT, previous_int)
        signal.signal(signal.SIGTERM, previous_term)

    if outcome == SubmitOutcome.QUEUED:
        print(f"{args.version} scheduled")
    else:
        print(f"{args.version} completed")
    return EXIT_SUCCESS


def cmd_get(service: SchedulerService, args: argparse.Namespace) -> int:
    """Print one job's detail or the job list."""
    if args.version:
        view = service.query(args.version)
        print(f"name: {view.version}")
        print(f"status: {_format_status(view)}")
        if view.stdout:
            print("output:")
            print(_indent(view.stdout))
        if view.stderr:
            print("error:")
            print(_indent(view.stderr))
        return EXIT_SUCCESS

    snapshot = service.query_all()
    rows = [(view.version, _format_status(view)) for view in snapshot.jobs]
    width = max([len("name")] + [len(name) for name, _ in rows]) + 3

    print(f"{'name':<{width}}status")
    for name, status in rows:
        print(f"{name:<{width}}{status}")
    return EXIT_SUCCESS


def cmd_rm(service: SchedulerService, args: argparse.Namespace) -> int:
    """Remove jobs (or everything with --all)."""
    if args.all:
        service.remove_all(force=args.force)
        print("removed all jobs")
        return EXIT_SUCCESS

    if not args.versions:
        print("Error: no versions given", file=sys.stderr)
        return EXIT_USAGE

    removed = service.remove(*args.versions, force=args.force)
    for version in args.versions:
        if version not in removed:
            print(f"job {version} not found")
    if removed:
        print(f"removed {', '.join(removed)}")
    return EXIT_SUCCESS


def cmd_lock(service: SchedulerService, args: argparse.Namespace) -> int:
    """Show who holds the execution slot."""
    status = service.lock_status()
    if not status.held:
        print("free")
        return EXIT_SUCCESS

    print(f"held: running {status.running}")
    if status.holder is not None:
        print(f"holder: {status.holder}")
        print(f"since: {status.holder.acquired_at}")
    return EXIT_SUCCESS


def cmd_recover(service: SchedulerService, args: argparse.Namespace) -> int:
    """Reconcile a stale lock and stuck jobs."""
    stats = service.recover(requeue_stuck=args.requeue)

    print(f"stale lock released: {'yes' if stats['stale_lock_released'] else 'no'}")
    print(f"stuck jobs: {', '.join(stats['stuck_jobs']) or '-'}")
    if args.requeue:
        print(f"requeued: {', '.join(stats['requeued']) or '-'}")
    for error in stats["errors"]:
        print(f"error: {error}", file=sys.stderr)

    return EXIT_ERROR if stats["errors"] else EXIT_SUCCESS


COMMANDS = {
    "run": cmd_run,
    "sched": cmd_sched,
    "get": cmd_get,
    "ls": cmd_get,
    "rm": cmd_rm,
    "lock": cmd_lock,
    "recover": cmd_recover,
}


def create_parser() -> argparse.ArgumentParser:
    """
    Create argument parser.

    Returns:
        Configured ArgumentParser
    """
    parser = argparse.ArgumentParser(
        prog="bencher",
        description="bencher - run benchmark jobs one at a time in container sandboxes",
    )

    parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Enable verbose logging"
    )

    subparsers = parser.add_subparsers(dest="command", help="Commands")

    # run command
    run_parser = subparsers.add_parser("run", help="Create a job container and dispatch it")
    run_parser.add_argument("version", help="Job identifier (also the container name)")
    run_parser.add_argument(
        "-w", "--workdir",
        default="",
        help="Working directory relative to the version workspace"
    )
    run_parser.add_argument(
        "--debug",
        action="store_true",
        help="Wait for the coordinator to exit"
    )
    run_parser.add_argument(
        "job_command",
        nargs=argparse.REMAINDER,
        help="Command to run inside the job container"
    )

    # sched command
    sched_parser = subparsers.add_parser("sched", help="Submit a prepared job")
    sched_parser.add_argument("version", help="Job identifier")

    # get command
    for name in ("get", "ls"):
        get_parser = subparsers.add_parser(name, help="Show a job, or list all jobs")
        get_parser.add_argument("version", nargs="?", help="Job identifier")

    # rm command
    rm_parser = subparsers.add_parser("rm", help="Remove jobs")
    rm_parser.add_argument("versions", nargs="*", help="Job identifiers")
    rm_parser.add_argument(
        "-f", "--force",
        action="store_true",
        help="Also stop a running job"
    )
    rm_parser.add_argument(
        "--all",
        action="store_true",
        help="Remove every job and queue entry"
    )

    # lock command
    subparsers.add_parser("lock", help="Show the execution slot")

    # recover command
    recover_parser = subparsers.add_parser("recover", help="Release a stale lock, find stuck jobs")
    recover_parser.add_argument(
        "--requeue",
        action="store_true",
        help="Append stuck jobs to the queue"
    )

    return parser


def main(argv: Optional[List[str]] = None) -> int:
    """
    Main entry point.

    Args:
        argv: Command line arguments (default: sys.argv[1:])

    Returns:
        Exit code
    """
    parser = create_parser()
    args = parser.parse_args(argv)

    if args.command is None:
        parser.print_help()
        return EXIT_USAGE

    config = load_config()
    setup_logging("DEBUG" if args.verbose else config.log_level, config.log_dir)

    try:
        service = build_service(config)
    except SchedulerError as e:
        logger.error(f"{args.command}: {e}")
        return EXIT_ERROR

    try:
        return COMMANDS[args.command](service, args)
    except SchedulerError as e:
        logger.error(f"{args.command}: {e}")
        return EXIT_ERROR
    finally:
        service.close()


if __name__ == "__main__":
    sys.exit(main())
