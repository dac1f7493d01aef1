from __future__ import annotations

import sys
import textwrap
from pathlib import Path
from typing import Optional

from cyclefuzz import config as cf, parser


def do_raise(e: type[BaseException], cond: bool = True, message: Optional[str] = None) -> None:
    if cond:
        raise e(message)


class MemoryLogWriter(parser.LogWriter):
    def __init__(self) -> None:
        self.initialized: list[Path] = []
        self.lines: list[str] = []
        self.error_data: list[str] = []
        self.closed = 0

    def initialize(self, log_path: Path) -> None:
        self.initialized.append(log_path)

    def write_line(self, line: str) -> None:
        self.lines.append(line)

    def write_error_data(self, data: str) -> None:
        self.error_data.append(data)

    def close(self, error_data: str) -> None:
        if not self.initialized:
            return
        self.write_error_data(error_data)
        self.closed += 1


def fake_go(directory: Path, body: str) -> Path:
    """Create an executable Python script standing in for the go binary."""

    path = directory / "go"
    path.write_text(f"#!{sys.executable} -u\nimport sys\n{textwrap.dedent(body)}")
    path.chmod(0o755)
    return path


def make_config(
    tmp_path: Path,
    go_binary: Optional[Path] = None,
    packages: Optional[list[str]] = None,
) -> cf.Config:
    packages = packages or ["pkg"]
    workspace = tmp_path / "out"
    results = tmp_path / "fuzz_results"
    results.mkdir(parents=True, exist_ok=True)
    for package in packages:
        (workspace / "project" / package).mkdir(parents=True, exist_ok=True)

    return cf.Config(
        project_src_path="https://example.com/project.git",
        git_storage_repo="https://example.com/corpus.git",
        fuzz_results_path=results,
        fuzz_pkgs=packages,
        fuzz_time="1s",
        num_processes=1,
        workspace_dir=workspace,
        project_dir=workspace / "project",
        corpus_dir=workspace / "corpus",
        kill_timeout=2.0,
        go_binary=str(go_binary) if go_binary else "go",
    )


def test_memory_log_writer() -> None:
    w = MemoryLogWriter()
    w.close("data")
    assert w.closed == 0
    assert not w.error_data

    w.initialize(Path("log"))
    w.write_line("line")
    w.close("data")
    assert w.lines == ["line"]
    assert w.error_data == ["data"]
    assert w.closed == 1
