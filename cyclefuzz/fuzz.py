from __future__ import annotations

import asyncio
import logging
import os
import signal
from dataclasses import dataclass
from pathlib import Path
from typing import AsyncIterator, Optional

from cyclefuzz import common, config as cf, parser, scope as sc, workspace

TARGET_PREFIX = "Fuzz"

# Maximum length of a single output line
STREAM_LIMIT = 1024 * 1024


@dataclass(frozen=True)
class FuzzTarget:
    package: str
    name: str


def list_command(cfg: cf.Config) -> list[str]:
    return [cfg.go_binary, "test", f"-list=^{TARGET_PREFIX}", "."]


def fuzz_command(cfg: cf.Config, target: str, corpus_path: Path) -> list[str]:
    return [
        cfg.go_binary,
        "test",
        f"-fuzz=^{target}$",
        f"-test.fuzzcachedir={corpus_path}",
        f"-fuzztime={cfg.fuzz_time}",
        f"-parallel={cfg.num_processes}",
    ]


def _signal_group(proc: asyncio.subprocess.Process, sig: signal.Signals) -> None:
    # The process runs in its own session, its pid is the process group id until it is reaped
    try:
        os.killpg(proc.pid, sig)
    except (ProcessLookupError, PermissionError):
        pass


def _kill_unfinished(proc: asyncio.subprocess.Process) -> None:
    # Kills test binaries left behind by an interrupted go toolchain
    if proc.returncode is None:
        _signal_group(proc, signal.SIGKILL)


async def _stop_on_cancel(
    scope: sc.Scope,
    proc: asyncio.subprocess.Process,
    kill_timeout: float,
) -> None:
    await scope.wait()
    if proc.returncode is not None:
        return
    logging.debug("Stopping process %d", proc.pid)
    _signal_group(proc, signal.SIGINT)
    try:
        await asyncio.wait_for(proc.wait(), timeout=kill_timeout)
    except asyncio.TimeoutError:
        logging.warning("Process %d did not stop within %.1fs, killing", proc.pid, kill_timeout)
        _kill_unfinished(proc)


async def _spawn(cmd: list[str], cwd: Path) -> asyncio.subprocess.Process:
    try:
        return await asyncio.create_subprocess_exec(
            *cmd,
            cwd=cwd,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
            start_new_session=True,
            limit=STREAM_LIMIT,
        )
    except OSError as e:
        raise common.ExecutionError(f"command start failed: {e}") from e


async def list_fuzz_targets(scope: sc.Scope, cfg: cf.Config, package: str) -> list[str]:
    """
    Discover fuzz targets of package.

    Targets are returned in the order they are listed by the toolchain. An empty list is
    returned if the scope was cancelled while listing.
    """

    logging.info("Discovering fuzz targets in %s", package)

    proc = await _spawn(list_command(cfg), cwd=cfg.project_dir / package)
    stopper = asyncio.create_task(_stop_on_cancel(scope, proc, cfg.kill_timeout))
    try:
        stdout, stderr = await proc.communicate()
    finally:
        stopper.cancel()
        _kill_unfinished(proc)

    if proc.returncode != 0:
        if scope.cancelled:
            return []
        raise common.DiscoveryError(
            f"go test failed for {package!r}: exit status {proc.returncode} "
            f"(output: {stderr.decode('utf-8', errors='replace').strip()!r})",
        )

    targets = []
    for line in stdout.decode("utf-8", errors="replace").splitlines():
        clean_line = line.strip()
        if clean_line.startswith(TARGET_PREFIX):
            targets.append(clean_line)

    if not targets:
        logging.warning("No valid fuzz targets found in %s", package)

    return targets


async def _skip_line(stream: asyncio.StreamReader, consumed: int) -> None:
    while True:
        await stream.readexactly(consumed)
        try:
            await stream.readuntil(b"\n")
        except asyncio.IncompleteReadError:
            return
        except asyncio.LimitOverrunError as e:
            consumed = e.consumed
        else:
            return


async def read_lines(stream: asyncio.StreamReader, label: str) -> AsyncIterator[str]:
    while True:
        try:
            raw = await stream.readuntil(b"\n")
        except asyncio.IncompleteReadError as e:
            # Last line without trailing newline, empty at end of stream
            raw = e.partial
        except asyncio.LimitOverrunError as e:
            logging.warning("[%s] Discarding line longer than %d bytes", label, STREAM_LIMIT)
            await _skip_line(stream, e.consumed)
            continue
        if not raw:
            return
        line = raw.decode("utf-8", errors="replace").rstrip("\r\n")
        logging.info("[%s] %s", label, line)
        yield line


async def stream_output(
    stream: asyncio.StreamReader,
    label: str,
    processor: Optional[parser.FuzzProcessor] = None,
) -> None:
    lines = read_lines(stream, label)
    if processor:
        await processor.process_stream(lines)
        return
    async for _ in lines:
        pass


async def execute_fuzz_target(
    scope: sc.Scope,
    cfg: cf.Config,
    package: str,
    target: str,
) -> None:
    """
    Run a single fuzz target until its time budget is exhausted or scope is cancelled.

    A non-zero exit status is only considered an error if the scope has not been cancelled.
    """

    logging.info("Executing fuzz target %s/%s", package, target)

    corpus_path = cfg.package_corpus(package).resolve()
    proc = await _spawn(fuzz_command(cfg, target, corpus_path), cwd=cfg.project_dir / package)
    assert proc.stdout is not None
    assert proc.stderr is not None

    processor = parser.FuzzProcessor(
        target=target,
        corpus_path=corpus_path,
        results_path=cfg.fuzz_results_path,
    )
    stopper = asyncio.create_task(_stop_on_cancel(scope, proc, cfg.kill_timeout))

    try:
        # Both pipes must be drained before waiting, a full pipe blocks the process
        await asyncio.gather(
            stream_output(proc.stdout, f"{target}:stdout", processor),
            stream_output(proc.stderr, f"{target}:stderr"),
        )
        returncode = await proc.wait()
    finally:
        stopper.cancel()
        _kill_unfinished(proc)

    if returncode != 0:
        if scope.cancelled:
            logging.info("Fuzz target %s/%s stopped", package, target)
            return
        raise common.ExecutionError(
            f"fuzz execution failed for {package}/{target}: exit status {returncode}",
        )

    logging.info("Fuzz target %s/%s completed successfully", package, target)


async def run_fuzzing(scope: sc.Scope, cfg: cf.Config) -> None:
    for package in cfg.fuzz_pkgs:
        if scope.cancelled:
            return

        try:
            names = await list_fuzz_targets(scope, cfg, package)
        except common.Error as e:
            raise common.DiscoveryError(f"failed to list targets for {package!r}: {e}") from e

        for target in [FuzzTarget(package=package, name=n) for n in names]:
            if scope.cancelled:
                return
            await execute_fuzz_target(scope, cfg, target.package, target.name)
            workspace.save_corpus(cfg, target.package, target.name)
