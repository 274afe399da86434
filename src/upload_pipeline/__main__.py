"""
Entry point for running the upload pipeline.

Usage:
    # Decode notification files, run every consumer until the queues are
    # empty, then print queue depths and the catalog
    python -m upload_pipeline ingest notifications/*.json

    # Long-running: read one JSON notification per line from stdin while the
    # queue workers run; stops on EOF, SIGINT or SIGTERM
    python -m upload_pipeline serve < notifications.jsonl

    # Custom config, debug logging and a Prometheus endpoint
    python -m upload_pipeline --config my.yaml --log-level DEBUG --metrics-port 9100 serve

Configuration:
    --config or UPLOAD_PIPELINE_CONFIG selects the YAML file (default:
    src/config/config.yaml). A .env file in the project root is loaded first,
    so SES_EMAIL_FROM / SES_EMAIL_TO and friends can live there.
"""

import argparse
import asyncio
import json
import logging
import os
import sys
import threading
from pathlib import Path

from dotenv import load_dotenv

from config.config import PipelineSettings, load_config
from core.errors.exceptions import ConfigurationError
from core.logging.context_managers import log_phase
from core.logging.setup import get_logger, setup_logging
from core.logging.utilities import log_exception, log_startup_banner
from core.utils.json_serializers import json_serializer
from upload_pipeline.app import UploadPipeline
from upload_pipeline.common.metrics import start_metrics_server
from upload_pipeline.common.signals import install_shutdown_handlers

# __main__.py is at src/upload_pipeline/__main__.py, so root is 3 levels up
PROJECT_ROOT = Path(__file__).parent.parent.parent

# Placeholder logger until setup_logging() is called in main()
logger = logging.getLogger(__name__)


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="upload_pipeline",
        description="Run the upload event pipeline",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
    python -m upload_pipeline ingest event.json
    python -m upload_pipeline serve < events.jsonl
        """,
    )
    parser.add_argument("--config", type=Path, default=None, help="Path to config.yaml")
    parser.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        default=None,
        help="Logging level (default: from config)",
    )
    parser.add_argument(
        "--log-dir", type=str, default=None, help="Log directory (default: from config)"
    )
    parser.add_argument(
        "--log-to-file",
        action="store_true",
        help="Also write rotating JSON log files instead of stdout only",
    )
    parser.add_argument(
        "--metrics-port",
        type=int,
        default=None,
        help="Port for the Prometheus metrics server (default: from config, 0 disables)",
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    ingest = subparsers.add_parser("ingest", help="Ingest notification files and drain the queues")
    ingest.add_argument("files", nargs="+", type=Path, help="JSON notification files")

    subparsers.add_parser("serve", help="Read JSON notifications from stdin, one per line")

    return parser.parse_args(argv)


def configure_logging(args: argparse.Namespace, settings: PipelineSettings) -> None:
    level_name = args.log_level or settings.logging.level
    log_to_stdout = settings.logging.log_to_stdout and not args.log_to_file
    setup_logging(
        name="upload_pipeline",
        stage=args.command,
        log_dir=Path(args.log_dir or settings.logging.log_dir),
        json_format=settings.logging.json_format,
        console_level=getattr(logging, level_name, logging.INFO),
        worker_id=os.getenv("WORKER_ID"),
        log_to_stdout=log_to_stdout,
    )


def print_summary(summary: dict) -> None:
    print(json.dumps(summary, indent=2, default=json_serializer))


async def run_ingest(pipeline: UploadPipeline, files: list[Path]) -> int:
    exit_code = 0
    dropped = 0
    for path in files:
        try:
            raw = path.read_text(encoding="utf-8")
        except OSError as e:
            log_exception(logger, e, "Could not read notification file", path=str(path))
            exit_code = 2
            continue
        report = await pipeline.ingest(raw)
        dropped += len(report.dropped)

    with log_phase(logger, "drain_queues", level=logging.INFO, files=len(files)):
        handled = await pipeline.drain()
    summary = await pipeline.snapshot()
    summary["messages_handled"] = handled
    summary["source_elements_dropped"] = dropped
    print_summary(summary)
    return exit_code


async def _read_stdin_lines(pipeline: UploadPipeline) -> None:
    # stdin is read on a daemon thread so a blocked read never holds up exit
    loop = asyncio.get_running_loop()
    lines: asyncio.Queue[str | None] = asyncio.Queue()

    def _reader() -> None:
        try:
            for line in sys.stdin:
                loop.call_soon_threadsafe(lines.put_nowait, line)
            loop.call_soon_threadsafe(lines.put_nowait, None)
        except RuntimeError:
            # Loop already closed during shutdown
            return

    threading.Thread(target=_reader, name="stdin-reader", daemon=True).start()

    while not pipeline.shutdown_event.is_set():
        line = await lines.get()
        if line is None:
            logger.info("End of input reached")
            return
        if line.strip():
            await pipeline.ingest(line)


async def run_serve(pipeline: UploadPipeline) -> int:
    install_shutdown_handlers(pipeline.shutdown_event)
    workers_task = asyncio.create_task(pipeline.run())
    reader_task = asyncio.create_task(_read_stdin_lines(pipeline))

    done, _ = await asyncio.wait(
        {workers_task, reader_task}, return_when=asyncio.FIRST_COMPLETED
    )
    if reader_task in done:
        # Input exhausted: let in-flight work finish, then flush what is left
        pipeline.request_shutdown()
        await workers_task
        await pipeline.drain()
    else:
        reader_task.cancel()

    print_summary(await pipeline.snapshot())
    return 0


async def async_main(args: argparse.Namespace, settings: PipelineSettings) -> int:
    pipeline = UploadPipeline(settings)
    try:
        if args.command == "ingest":
            return await run_ingest(pipeline, args.files)
        return await run_serve(pipeline)
    finally:
        await pipeline.close()


def main(argv: list[str] | None = None) -> int:
    load_dotenv(PROJECT_ROOT / ".env")

    global logger
    args = parse_args(argv)

    try:
        settings = load_config(config_path=args.config)
    except (FileNotFoundError, ConfigurationError) as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    configure_logging(args, settings)
    logger = get_logger(__name__)

    metrics_port = args.metrics_port if args.metrics_port is not None else settings.metrics_port
    log_startup_banner(
        logger,
        "Upload Pipeline",
        {
            "command": args.command,
            "store": settings.store.backend,
            "sink": settings.sink.backend,
            "recipient": settings.notifications.recipient,
            "metrics_port": metrics_port or "disabled",
            **{
                f"{name}.max_attempts": q.max_attempts
                for name, q in settings.queues.items()
            },
        },
    )

    if metrics_port:
        start_metrics_server(metrics_port)

    try:
        return asyncio.run(async_main(args, settings))
    except KeyboardInterrupt:
        logger.info("Interrupted")
        return 130


if __name__ == "__main__":
    sys.exit(main())
