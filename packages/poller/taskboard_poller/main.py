"""
Poller entry point.

Loads configuration, configures logging, and runs the poll loop (or a single
cycle with ``--once``).
"""

from __future__ import annotations

import argparse
import asyncio
import sys
from typing import Callable

import structlog

from taskboard_shared.logging import configure_logging

from .config import PollerConfig, load_config
from .poller import TriggerPoller


async def _run_once(poller: TriggerPoller) -> None:
    await poller.open()
    try:
        await poller.poll_once()
    finally:
        await poller.close()


def run(
    argv: list[str] | None = None,
    poller_factory: Callable[[PollerConfig], TriggerPoller] = TriggerPoller,
) -> None:
    """CLI entry point for the poller."""
    parser = argparse.ArgumentParser(description="Task board trigger poller")
    parser.add_argument(
        "-c", "--config",
        default="trigger-poller.yaml",
        help="Path to configuration file (default: trigger-poller.yaml)",
    )
    parser.add_argument("--once", action="store_true", help="Run a single poll cycle and exit")
    args = parser.parse_args(argv)

    try:
        config = load_config(args.config)
        configure_logging(config.logging.level, config.logging.format)
    except FileNotFoundError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        sys.exit(1)
    except Exception as exc:
        print(f"Configuration error: {exc}", file=sys.stderr)
        sys.exit(1)

    log = structlog.get_logger()
    log.info("poller.config_loaded", config_path=args.config, board=config.board.url)

    poller = poller_factory(config)
    try:
        asyncio.run(_run_once(poller) if args.once else poller.run_forever())
    except KeyboardInterrupt:
        pass


if __name__ == "__main__":
    run()
