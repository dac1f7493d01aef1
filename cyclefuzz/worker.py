from __future__ import annotations

import asyncio
import logging
import time

from cyclefuzz import config as cf, fuzz, repo, scope as sc


async def run_worker(scope: sc.Scope, cfg: cf.Config, done: asyncio.Event) -> None:
    """
    Clone the repositories and fuzz all configured packages until finished or scope is cancelled.

    Errors are logged and never propagated. The done event is set on every exit path and
    signals the scheduler that the workspace is no longer in use.
    """

    try:
        logging.info("Starting fuzzing worker at %s", time.strftime("%a, %d %b %Y %H:%M:%S %Z"))

        if scope.cancelled:
            logging.info("Fuzzing worker cycle canceled.")
            return

        await repo.clone_repositories(scope, cfg)
        await fuzz.run_fuzzing(scope, cfg)
    except Exception as e:  # noqa: BLE001
        logging.error("Fuzzing process failed: %s", e)
    finally:
        done.set()
