from __future__ import annotations

import argparse
import logging
import re
import sys
from pathlib import Path
from typing import Iterable, Optional

from botocore.exceptions import BotoCoreError, ClientError
from rich.console import Console
from rich.logging import RichHandler

from .config import (
    DEFAULT_CACHE_CONTROL,
    DEFAULT_FAILURE_FILE,
    DEFAULT_PAGE_SIZE,
    DEFAULT_REGION,
    DEFAULT_WORKERS_TEXT,
    RunSettings,
    compile_exclude,
)
from .estimate import start_estimate
from .fixup import RunContext
from .keys import enumerate_keys, read_keys
from .pool import FailureSink, FailureSinkError, WorkerPool
from .popular import main as popular_main
from .progress import ProgressTracker
from .s3 import S3Service

logger = logging.getLogger("cachectl")

EXIT_OK = 0
EXIT_FAILURES = 1
EXIT_FATAL = 3
EXIT_INCOMPLETE = 4

RETRY_SUFFIX = ".retrying"


def configure_logging(verbose: bool = False) -> None:
    root = logging.getLogger()
    if root.handlers:
        return
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
        handlers=[RichHandler(console=Console(stderr=True), show_path=False)],
    )
    # boto's own INFO chatter drowns the progress output.
    for name in ("boto3", "botocore", "urllib3"):
        logging.getLogger(name).setLevel(logging.WARNING)


def _build_parser(prog: str, include_input: bool = True) -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog=prog,
        description=(
            "Set Cache-Control on every object of an S3 bucket, in place or "
            "while copying to another bucket."
        ),
    )
    parser.add_argument(
        "-t",
        "--target-bucket",
        required=True,
        help="Bucket whose objects receive the Cache-Control header",
    )
    parser.add_argument(
        "--from-bucket",
        help="Bucket to copy objects from (defaults to the target, i.e. in place)",
    )
    parser.add_argument(
        "--cache-control",
        default=DEFAULT_CACHE_CONTROL,
        help=f"Desired Cache-Control value (default: {DEFAULT_CACHE_CONTROL!r})",
    )
    parser.add_argument(
        "-w",
        "--workers",
        type=int,
        default=DEFAULT_WORKERS_TEXT,
        help=f"Concurrent workers (default: {DEFAULT_WORKERS_TEXT})",
    )
    parser.add_argument(
        "--dry-run",
        "--noop",
        dest="dry_run",
        action="store_true",
        help="Report what would change without writing anything",
    )
    parser.add_argument(
        "--exclude",
        help="Regular expression; matching jpeg/png objects are left untouched",
    )
    parser.add_argument(
        "--max-objects",
        type=int,
        help="Stop after writing this many objects",
    )
    parser.add_argument(
        "--role-arn",
        help="Role to assume when the bucket's CloudWatch metrics live in another account",
    )
    parser.add_argument(
        "-p",
        "--profile",
        help="AWS profile to use",
    )
    parser.add_argument(
        "--region",
        default=DEFAULT_REGION,
        help="AWS region override",
    )
    parser.add_argument(
        "--failure-file",
        default=DEFAULT_FAILURE_FILE,
        help=f"File collecting keys that failed (default: {DEFAULT_FAILURE_FILE})",
    )
    parser.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        help="Debug logging",
    )
    if include_input:
        parser.add_argument(
            "--start-after",
            help="Resume listing after this key",
        )
        parser.add_argument(
            "--stdin",
            action="store_true",
            help="Read object keys from standard input, one per line, instead of listing",
        )
    return parser


def _settings_from_args(
    args: argparse.Namespace, parser: argparse.ArgumentParser
) -> RunSettings:
    if args.workers < 1:
        parser.error("--workers must be at least 1")
    if args.max_objects is not None and args.max_objects < 0:
        parser.error("--max-objects must not be negative")
    try:
        exclude = compile_exclude(args.exclude)
    except re.error as exc:
        parser.error(f"--exclude is not a valid regular expression: {exc}")
    return RunSettings(
        target_bucket=args.target_bucket,
        source_bucket=args.from_bucket or args.target_bucket,
        cache_control=args.cache_control,
        workers=args.workers,
        dry_run=args.dry_run,
        exclude=exclude,
        max_objects=args.max_objects,
        start_after=getattr(args, "start_after", None),
        page_size=DEFAULT_PAGE_SIZE,
        failure_file=Path(args.failure_file),
        role_arn=args.role_arn,
        profile=args.profile,
        region=args.region,
    )


def run(
    settings: RunSettings,
    keys: Optional[Iterable[str]] = None,
    store: Optional[S3Service] = None,
    console: Optional[Console] = None,
    expected_total: Optional[int] = None,
) -> int:
    console = console or Console(highlight=False)
    sink = FailureSink(settings.failure_file)
    try:
        sink.check()
    except FailureSinkError as exc:
        logger.error("%s", exc)
        return EXIT_FATAL

    if store is None:
        store = S3Service(
            profile=settings.profile,
            region=settings.region,
            max_connections=settings.workers,
        )
    try:
        store.connect()
    except (BotoCoreError, ClientError) as exc:
        logger.error("Cannot create AWS session: %s", exc)
        return EXIT_FATAL

    tracker = ProgressTracker(
        expected_total=expected_total,
        max_objects=settings.max_objects,
        console=console,
    )
    context = RunContext(settings=settings, store=store, tracker=tracker)
    if keys is None:
        start_estimate(store, settings, tracker)
        keys = enumerate_keys(
            store,
            settings.source_bucket,
            tracker,
            page_size=settings.page_size,
            start_after=settings.start_after,
        )

    mode = " (dry run)" if settings.dry_run else ""
    console.print(
        f"Setting Cache-Control {settings.cache_control!r} on "
        f"s3://{settings.source_bucket} -> s3://{settings.target_bucket} "
        f"with {settings.workers} workers{mode}",
        markup=False,
    )
    pool = WorkerPool(context, sink, settings.workers, queue_size=settings.queue_size)
    try:
        result = pool.run(keys)
    except FailureSinkError:
        tracker.show_summary()
        return EXIT_FATAL

    tracker.show_summary()
    console.print("Done.")
    if result.failures:
        console.print(
            f"{result.failures} keys added to {settings.failure_file}; "
            "run `cachectl retry` with the same options to process them again.",
            markup=False,
        )
    if result.listing_error is not None:
        if result.last_listed is None:
            resume = "no key was listed; run again with the same options"
        else:
            resume = f"resume with --start-after {result.last_listed!r}"
        logger.error(
            "Listing s3://%s stopped early (%s); %s",
            settings.source_bucket,
            result.listing_error,
            resume,
        )
        return EXIT_INCOMPLETE
    if result.failures:
        return EXIT_FAILURES
    return EXIT_OK


def _run_fix_command(argv: list[str]) -> int:
    parser = _build_parser("cachectl")
    args = parser.parse_args(argv)
    configure_logging(args.verbose)
    settings = _settings_from_args(args, parser)
    if args.stdin:
        return run(settings, keys=read_keys(sys.stdin))
    return run(settings)


def _run_retry_command(argv: list[str]) -> int:
    parser = _build_parser("cachectl retry", include_input=False)
    parser.description = (
        "Process the keys collected in the failure file again. The file is moved "
        "aside first, so keys failing again are collected afresh."
    )
    args = parser.parse_args(argv)
    configure_logging(args.verbose)
    settings = _settings_from_args(args, parser)

    failure_file = settings.failure_file
    retry_file = failure_file.with_name(failure_file.name + RETRY_SUFFIX)
    if retry_file.exists():
        logger.error(
            "%s is left over from an interrupted retry; merge it back into %s first",
            retry_file,
            failure_file,
        )
        return EXIT_FATAL
    if not failure_file.exists():
        print(f"Nothing to retry: {failure_file} does not exist.", file=sys.stderr)
        return EXIT_OK
    if failure_file.stat().st_size == 0:
        print(f"Nothing to retry: {failure_file} is empty.", file=sys.stderr)
        failure_file.unlink()
        return EXIT_OK
    failure_file.replace(retry_file)
    with retry_file.open(encoding="utf-8") as handle:
        keys = list(read_keys(handle))
    code = run(settings, keys=keys, expected_total=len(keys))
    if code != EXIT_FATAL:
        retry_file.unlink()
    return code


def main(argv: Optional[list[str]] = None) -> int:
    args = list(sys.argv[1:] if argv is None else argv)
    if args and args[0] == "popular":
        return popular_main(args[1:])
    if args and args[0] == "retry":
        return _run_retry_command(args[1:])
    return _run_fix_command(args)


if __name__ == "__main__":
    raise SystemExit(main())
