from __future__ import annotations

import asyncio
import logging
import re
from dataclasses import dataclass
from pathlib import Path

import git

from cyclefuzz import common, config as cf, scope as sc

_CREDENTIALS_RE = re.compile(r"(?<=://)[^/@\s]+@")


def sanitize_url(url: str) -> str:
    """Replace credentials contained in url (or any text containing URLs) by a placeholder."""

    return _CREDENTIALS_RE.sub("*****@", url)


@dataclass
class Cloner:
    url: str
    path: Path
    desc: str

    def clone(self) -> None:
        logging.info(
            "Cloning %s repository %s into %s",
            self.desc,
            sanitize_url(self.url),
            self.path,
        )
        try:
            git.Repo.clone_from(self.url, self.path)
        except (git.GitCommandError, OSError) as e:
            raise common.RepositoryError(
                f"{self.desc} repository clone failed: {sanitize_url(str(e))}",
            ) from None


async def clone_repositories(scope: sc.Scope, cfg: cf.Config) -> None:
    if scope.cancelled:
        return

    cloners = [
        Cloner(url=cfg.project_src_path, path=cfg.project_dir, desc="project"),
        Cloner(url=cfg.git_storage_repo, path=cfg.corpus_dir, desc="storage"),
    ]

    results = await asyncio.gather(
        *[asyncio.to_thread(c.clone) for c in cloners],
        return_exceptions=True,
    )
    for result in results:
        if isinstance(result, BaseException):
            raise common.RepositoryError(f"error cloning repository: {result}") from result


def commit_and_push_results(cfg: cf.Config) -> None:
    try:
        repository = git.Repo(cfg.corpus_dir)
        if not repository.is_dirty(untracked_files=True):
            logging.info("No corpus changes to commit")
            return

        repository.git.add(A=True)
        actor = git.Actor(cfg.git_user_name, cfg.git_user_email)
        repository.index.commit(cfg.commit_message, author=actor, committer=actor)
        repository.remote("origin").push().raise_if_error()
    except (git.GitError, ValueError) as e:
        raise common.RepositoryError(f"failed to commit corpus: {sanitize_url(str(e))}") from None

    logging.info("Successfully updated corpus repository")
