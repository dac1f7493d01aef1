from __future__ import annotations

import argparse
import asyncio
import logging
import signal
import sys
from pathlib import Path
from typing import Optional, Sequence

from cyclefuzz import common, config as cf, scheduler, scope as sc, workspace


async def run(cfg: cf.Config, cycle_duration: float) -> None:
    root = sc.Scope()

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, root.cancel)

    try:
        await scheduler.run_fuzzing_cycles(root, cfg, cycle_duration)
    finally:
        for sig in (signal.SIGINT, signal.SIGTERM):
            loop.remove_signal_handler(sig)


def main(argv: Optional[Sequence[str]] = None) -> None:
    parser = argparse.ArgumentParser(
        description="Continuously fuzz Go packages and persist the resulting corpus.",
        epilog=cf.HELP_TEXT,
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument(
        "--env-file",
        type=Path,
        default=Path(".env"),
        help="File to load environment variables from, if present (default: %(default)s).",
    )
    parser.add_argument(
        "--cycle-duration",
        type=int,
        help="Seconds per fuzzing cycle (default: FUZZ_CYCLE_DURATION or 3600).",
    )

    args = parser.parse_args(argv)

    if args.cycle_duration is not None and args.cycle_duration <= 0:
        parser.error("--cycle-duration must be positive")

    logging.basicConfig(format="[%(asctime)s] %(levelname)s %(message)s", level=logging.INFO)

    try:
        cf.load_env(args.env_file)
        cfg = cf.load_config()
    except common.ConfigError as e:
        logging.error("Failed to load configuration: %s", e)
        sys.exit(1)

    workspace.cleanup_workspace(cfg)

    try:
        asyncio.run(run(cfg, args.cycle_duration or cfg.cycle_duration))
    except KeyboardInterrupt:
        sys.exit("\nUser cancellation. Exiting.\n")
