from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, Optional

from cyclefuzz import config as cf, scope as sc, worker, workspace

Cleanup = Callable[[cf.Config], Awaitable[None]]


async def run_fuzzing_cycles(
    root: sc.Scope,
    cfg: cf.Config,
    cycle_duration: float,
    cleanup: Optional[Cleanup] = None,
) -> None:
    """
    Run fuzzing cycles until root is cancelled.

    Each cycle runs a worker in a child scope of root for cycle_duration seconds. When the
    duration elapses or root is cancelled, the child scope is cancelled and cleanup is run
    once the worker has signalled completion.

    Arguments:
    ---------
    root:           Application scope. Cancelling it ends the current cycle and returns.
    cfg:            Fuzzing configuration.
    cycle_duration: Number of seconds per cycle.
    cleanup:        Called after each cycle (default: persist corpus and reset workspace).
    """

    cleanup = cleanup or workspace.persist_results

    while True:
        if root.cancelled:
            logging.info("Shutdown requested; exiting fuzzing cycles.")
            return

        cycle = root.child()
        done = asyncio.Event()
        worker_task = asyncio.create_task(worker.run_worker(cycle, cfg, done))

        timer = asyncio.create_task(asyncio.sleep(cycle_duration))
        shutdown = asyncio.create_task(root.wait())
        try:
            await asyncio.wait({timer, shutdown}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            timer.cancel()
            shutdown.cancel()

        if root.cancelled:
            logging.info("Shutdown initiated during fuzzing cycle; performing final cleanup.")
        else:
            logging.info("Cycle duration complete; initiating cleanup.")

        cycle.cancel()
        await done.wait()
        await worker_task

        try:
            await cleanup(cfg)
        except Exception as e:  # noqa: BLE001
            logging.error("Cleanup failed: %s", e)

        if root.cancelled:
            return
