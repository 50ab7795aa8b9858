"""Command-line entry point for running and controlling jobs."""

import argparse
import asyncio
import json
import logging
import sys
from typing import Any

from pydantic import BaseModel, ValidationError

from makergrade.core.config import settings
from makergrade.core.database import close_db, init_db
from makergrade.extraction.base import ExtractionError
from makergrade.jobs.service import JobService
from makergrade.models.job import JobKind
from makergrade.observability import setup_observability
from makergrade.repositories.jobs import JobNotFoundError
from makergrade.schemas.items import ItemImportRequest
from makergrade.schemas.jobs import CrawlJobConfig, LabelJobConfig

logger = logging.getLogger("makergrade.cli")

KINDS = [kind.value for kind in JobKind]


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="makergrade",
        description="Crawl MakerWorld listings and grade item presentation",
    )
    parser.add_argument("--log-level", default=None, help="Logging level (default: LOG_LEVEL)")
    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("serve", help="Recover interrupted jobs and run them to completion")

    crawl = sub.add_parser("crawl", help="Create a crawl job and run it in the foreground")
    crawl.add_argument("--start-url", help="Listing URL (default: CRAWL_DEFAULT_START_URL)")
    crawl.add_argument("--limit", type=int, help="Maximum distinct items to discover")
    crawl.add_argument("--max-scrolls", type=int, help="Scroll iterations before discovery stops")
    crawl.add_argument("--concurrency", type=int, help="Concurrent scrape workers (1-5)")
    crawl.add_argument("--delay-ms", type=int, help="Pause after each item, per worker")
    crawl.add_argument("--cookie", dest="cookie_header", help="Cookie header for the browser")
    crawl.add_argument(
        "--keep-history",
        action="store_true",
        help="Do not clear previous jobs and items before starting",
    )

    label = sub.add_parser("label", help="Create a label job and run it in the foreground")
    label.add_argument("--limit", type=int, help="Maximum unlabeled items to grade")

    for name, help_text in (("pause", "Pause a running job"), ("resume", "Resume a paused job")):
        cmd = sub.add_parser(name, help=help_text)
        cmd.add_argument("kind", choices=KINDS)
        cmd.add_argument("job_id")

    status = sub.add_parser("status", help="Show a job (the latest of its kind by default)")
    status.add_argument("kind", choices=KINDS)
    status.add_argument("job_id", nargs="?")

    sub.add_parser("clear-history", help="Fail unfinished jobs and delete all items")

    imp = sub.add_parser("import", help="Scrape item pages directly, without discovery")
    imp.add_argument("urls", nargs="+")
    imp.add_argument("--cookie", dest="cookie_header", help="Cookie header for the browser")
    imp.add_argument("--keep-history", action="store_true", help="Do not clear existing items")

    sub.add_parser("stats", help="Item and grade totals")

    probe = sub.add_parser("probe", help="Scrape one item page and print the result")
    probe.add_argument("url", nargs="?", default="https://makerworld.com/zh/models/242239")
    probe.add_argument("--cookie", dest="cookie_header", help="Cookie header for the browser")

    return parser.parse_args(argv)


def _print_json(value: Any) -> None:
    if isinstance(value, BaseModel):
        value = value.model_dump(mode="json")
    print(json.dumps(value, indent=2, ensure_ascii=False, default=str))


def _options(args: argparse.Namespace, *names: str) -> dict[str, Any]:
    """Only the options given on the command line, so config defaults apply."""
    return {name: getattr(args, name) for name in names if getattr(args, name) is not None}


async def _run_foreground(service: JobService, kind: JobKind, job_id: str) -> int:
    try:
        await service.wait_all()
    except asyncio.CancelledError:
        await service.shutdown()
        raise
    snapshot = await service.get_status(kind, job_id)
    _print_json(snapshot)
    return 0 if snapshot.status.value == "completed" else 1


async def run_command(args: argparse.Namespace, service: JobService | None = None) -> int:
    """Execute one parsed command; returns the process exit code."""
    service = service or JobService()
    command = args.command

    if command == "serve":
        recovered = await service.recover()
        logger.info(
            "Serving recovered jobs",
            extra={"jobs": [job_id for _, job_id in recovered]},
        )
        try:
            await service.wait_all()
        finally:
            await service.shutdown()
        return 0

    if command == "crawl":
        config = CrawlJobConfig(
            **_options(
                args,
                "start_url",
                "limit",
                "max_scrolls",
                "concurrency",
                "delay_ms",
                "cookie_header",
            )
        )
        snapshot = await service.create_crawl_job(config, clear_history=not args.keep_history)
        logger.info("Crawl job created", extra={"job_id": snapshot.id})
        return await _run_foreground(service, JobKind.CRAWL, snapshot.id)

    if command == "label":
        snapshot = await service.create_label_job(LabelJobConfig(**_options(args, "limit")))
        logger.info("Label job created", extra={"job_id": snapshot.id})
        return await _run_foreground(service, JobKind.LABEL, snapshot.id)

    if command in ("pause", "resume"):
        kind = JobKind(args.kind)
        flip = service.pause if command == "pause" else service.resume
        changed = await flip(kind, args.job_id)
        _print_json(await service.get_status(kind, args.job_id))
        return 0 if changed else 1

    if command == "status":
        kind = JobKind(args.kind)
        if args.job_id:
            _print_json(await service.get_status(kind, args.job_id))
            return 0
        snapshot = await service.latest(kind)
        if snapshot is None:
            print(f"No {kind.value} jobs", file=sys.stderr)
            return 1
        _print_json(snapshot)
        return 0

    if command == "clear-history":
        swept = await service.clear_history()
        _print_json({"jobs_failed": swept})
        return 0

    if command == "import":
        request = ItemImportRequest(
            urls=args.urls,
            cookie_header=args.cookie_header,
            clear_history=not args.keep_history,
        )
        _print_json({"ids": await service.import_items(request)})
        return 0

    if command == "stats":
        _print_json(await service.stats())
        return 0

    if command == "probe":
        session = await service.open_session(args.cookie_header)
        try:
            scraped = await session.extractor.extract(args.url)
        finally:
            await session.close()
        _print_json(scraped)
        return 0

    raise ValueError(f"Unknown command {command!r}")


async def _main(args: argparse.Namespace) -> int:
    setup_observability(settings.METRICS_PORT if args.command == "serve" else None)
    await init_db()
    try:
        return await run_command(args)
    finally:
        await close_db()


def main(argv: list[str] | None = None) -> None:
    args = parse_args(argv)
    if args.log_level:
        settings.LOG_LEVEL = args.log_level

    try:
        code = asyncio.run(_main(args))
    except KeyboardInterrupt:
        sys.exit(130)
    except ValidationError as e:
        print(f"Invalid configuration: {e}", file=sys.stderr)
        sys.exit(2)
    except JobNotFoundError as e:
        print(str(e), file=sys.stderr)
        sys.exit(1)
    except ExtractionError as e:
        print(f"Extraction failed: {e}", file=sys.stderr)
        sys.exit(1)
    sys.exit(code)


if __name__ == "__main__":
    main()
