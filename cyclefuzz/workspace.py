from __future__ import annotations

import asyncio
import logging
import shutil

from cyclefuzz import common, config as cf, repo


def save_corpus(cfg: cf.Config, package: str, target: str) -> None:
    """Copy the corpus of a fuzz target into the results directory."""

    corpus_path = cfg.package_corpus(package) / target
    if not corpus_path.is_dir():
        logging.info("No corpus directory to output for %s/%s", package, target)
        return

    results_path = cfg.fuzz_results_path / package / "testdata" / "fuzz" / target
    try:
        results_path.mkdir(parents=True, exist_ok=True)
        shutil.copytree(corpus_path, results_path, dirs_exist_ok=True)
    except OSError as e:
        raise common.WorkspaceError(f"failed to copy corpus of {package}/{target}: {e}") from e

    logging.info("Updated corpus directory %s", results_path)


def cleanup_workspace(cfg: cf.Config) -> None:
    if not cfg.workspace_dir.exists():
        return
    try:
        shutil.rmtree(cfg.workspace_dir)
    except OSError as e:
        logging.error("Cleanup failed: %s", e)
        return
    logging.info("Removed workspace %s", cfg.workspace_dir)


async def persist_results(cfg: cf.Config) -> None:
    """Commit and push corpus changes, then reset the workspace."""

    if (cfg.corpus_dir / ".git").exists():
        try:
            await asyncio.to_thread(repo.commit_and_push_results, cfg)
        except common.RepositoryError as e:
            logging.error("Failed to commit/push results: %s", e)
    else:
        logging.info("No corpus repository at %s, nothing to persist", cfg.corpus_dir)

    cleanup_workspace(cfg)
