"""
Sluice command line runner.

Runs one batch of prompts against the remote generation service through
the HTTP ports until every job is completed or failed, then prints the
final stats.

Prompt file format (JSON):
    ["prompt one", "prompt two"]
or
    [{"text": "...", "image": "path/or/url", "label": "scene 1"}, ...]
"""

import argparse
import asyncio
import dataclasses
import json
import logging
import os
import signal
import sys
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

from sluice.infra.config import SchedulerConfig
from sluice.infra.logging_config import setup_logging
from sluice.remote.api_client import HttpObservationPort, HttpSubmissionPort
from sluice.scheduler.entities import JobPayload
from sluice.scheduler.errors import InvalidInputError, InvalidOperationError
from sluice.scheduler.service import SchedulerService


logger = logging.getLogger("sluice.cli")


def load_prompts(path: str | Path) -> list[JobPayload]:
    """
    Load payloads from a JSON prompt file.

    Accepts plain strings or objects with text/prompt, image/attachment_ref
    and label/scene keys.

    Raises:
        InvalidInputError: If the file is not a JSON list of prompts
    """
    with open(path, "r", encoding="utf-8") as f:
        data = json.load(f)

    if isinstance(data, dict):
        data = data.get("prompts", data.get("items"))
    if not isinstance(data, list):
        raise InvalidInputError(f"{path}: expected a JSON list of prompts")

    payloads = []
    for index, entry in enumerate(data):
        if isinstance(entry, str):
            payloads.append(JobPayload(text=entry))
        elif isinstance(entry, dict):
            payloads.append(
                JobPayload(
                    text=entry.get("text") or entry.get("prompt") or "",
                    attachment_ref=entry.get("image") or entry.get("attachment_ref"),
                    label=entry.get("label") or entry.get("scene"),
                )
            )
        else:
            raise InvalidInputError(f"{path}: entry {index} is not a prompt")

    return payloads


def parse_args(argv: Optional[list[str]] = None) -> argparse.Namespace:
    """Parse CLI arguments."""
    parser = argparse.ArgumentParser(
        description="Sluice - bounded-concurrency prompt submission",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Run a batch with defaults from .env
  python main.py prompts.json

  # Tighter cap, shorter burst
  python main.py prompts.json --max-concurrent 3 --burst-size 3

  # Resume the saved run after a crash (optionally adding more prompts)
  python main.py --resume
        """
    )
    parser.add_argument(
        "prompts_file",
        nargs="?",
        default=None,
        help="JSON file with prompts to enqueue"
    )
    parser.add_argument(
        "--max-concurrent",
        type=int,
        default=None,
        help="Hard cap on jobs in flight (default: SLUICE_MAX_CONCURRENT or 5)"
    )
    parser.add_argument(
        "--burst-size",
        type=int,
        default=None,
        help="Jobs sent in the initial burst (default: SLUICE_BURST_SIZE or 5)"
    )
    parser.add_argument(
        "--db-path",
        type=str,
        default=None,
        help="Snapshot database path (default: SLUICE_DB_PATH or data/sluice.db)"
    )
    parser.add_argument(
        "--resume",
        action="store_true",
        default=False,
        help="Restore the saved run instead of discarding it"
    )
    return parser.parse_args(argv)


def build_config(args: argparse.Namespace) -> SchedulerConfig:
    """Environment config with CLI overrides applied."""
    config = SchedulerConfig.from_env()
    overrides = {}
    if args.max_concurrent is not None:
        overrides["max_concurrent"] = args.max_concurrent
    if args.burst_size is not None:
        overrides["burst_size"] = args.burst_size
    if args.db_path is not None:
        overrides["db_path"] = args.db_path

    config = dataclasses.replace(config, **overrides)
    config.validate()
    return config


async def run_batch(args: argparse.Namespace) -> dict:
    """
    Run the scheduler until the batch is done or a stop signal arrives.

    Returns:
        Final status dict
    """
    config = build_config(args)
    if not config.submit_url or not config.observe_url:
        raise InvalidOperationError("SLUICE_SUBMIT_URL and SLUICE_OBSERVE_URL must be set")

    payloads = load_prompts(args.prompts_file) if args.prompts_file else []

    async with HttpSubmissionPort(
        config.submit_url, token=config.api_token, timeout=config.http_timeout
    ) as submission_port, HttpObservationPort(
        config.observe_url, token=config.api_token, timeout=config.http_timeout
    ) as observation_port:
        service = SchedulerService.create(config, submission_port, observation_port)

        if args.resume:
            stats = await service.recover()
            logger.info(f"Recovery: {stats}")
        elif service.persistence.has_snapshot():
            logger.warning("Discarding saved run (use --resume to continue it)")
            await service.clear()

        if payloads:
            await service.accept_batch(payloads)

        if not service.is_running:
            await service.start()

        shutdown_requested = asyncio.Event()
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.add_signal_handler(
                    sig, lambda s=sig: _signal_handler(s, shutdown_requested)
                )
            except NotImplementedError:
                logger.debug(f"Signal handlers unsupported for {sig.name}")

        finished = asyncio.create_task(service.wait_until_stopped())
        interrupted = asyncio.create_task(shutdown_requested.wait())
        _, pending = await asyncio.wait(
            {finished, interrupted}, return_when=asyncio.FIRST_COMPLETED
        )
        for task in pending:
            task.cancel()

        if shutdown_requested.is_set():
            await service.stop()

        return service.get_status()


def _signal_handler(sig: signal.Signals, shutdown_requested: asyncio.Event) -> None:
    """SIGINT / SIGTERM handler - stop the scheduler; unfinished work stays saved."""
    logger.info("=" * 60)
    logger.info(f"{sig.name} received - stopping, unfinished work stays saved")
    logger.info("=" * 60)
    shutdown_requested.set()


def main(argv: Optional[list[str]] = None) -> int:
    """CLI entry point. Returns the process exit code."""
    load_dotenv()
    setup_logging(os.getenv("LOG_LEVEL", "INFO").upper())

    args = parse_args(argv)
    if not args.prompts_file and not args.resume:
        logger.error("Nothing to do: pass a prompts file or --resume")
        return 2

    try:
        status = asyncio.run(run_batch(args))
    except (InvalidInputError, InvalidOperationError, ValueError, OSError) as e:
        logger.error(f"Cannot run batch: {e}")
        return 2

    logger.info("=" * 60)
    logger.info(
        f"Final: {status['completed']} completed, {status['failed']} failed, "
        f"{status['remaining']} unfinished of {status['total']} "
        f"(sent={status['stats']['total_sent']}, errors={status['stats']['total_errors']})"
    )
    logger.info("=" * 60)

    return 1 if status["failed"] or status["remaining"] else 0


if __name__ == "__main__":
    sys.exit(main())
