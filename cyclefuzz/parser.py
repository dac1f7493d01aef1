from __future__ import annotations

import logging
import re
from abc import abstractmethod
from dataclasses import dataclass
from pathlib import Path
from typing import AsyncIterator, Optional, TextIO

from cyclefuzz import common

FAILURE_MARKER = "--- FAIL:"

# Matches both ways the Go toolchain reports a failing input:
#   failure while testing seed corpus entry: FuzzFoo/771e938e4458e983
#   Failing input written to testdata/fuzz/FuzzFoo/771e938e4458e983
FUZZ_FAILURE_RE = re.compile(
    r"(?:failure while testing seed corpus entry:\s*|Failing input written to\s*testdata/fuzz/)"
    r"(?P<target>[^/\s]+)/(?P<id>[0-9a-f]+)",
)


@dataclass
class ProcessState:
    seen_failure: bool = False
    error_data: str = ""
    input_printed: bool = False


class LogWriter:
    @abstractmethod
    def initialize(self, log_path: Path) -> None:
        """Create (or truncate) the failure log at log_path."""
        raise NotImplementedError

    @abstractmethod
    def write_line(self, line: str) -> None:
        raise NotImplementedError

    @abstractmethod
    def write_error_data(self, data: str) -> None:
        raise NotImplementedError

    @abstractmethod
    def close(self, error_data: str) -> None:
        """Write the trailing testcase block and release the sink. No-op if never initialized."""
        raise NotImplementedError


class FileLogWriter(LogWriter):
    def __init__(self) -> None:
        self._file: Optional[TextIO] = None

    def initialize(self, log_path: Path) -> None:
        try:
            self._file = log_path.open("w", encoding="utf-8")
        except OSError as e:
            raise common.FailureLogError(f"failed to create log file {log_path}: {e}") from e

    def _write(self, data: str) -> None:
        if self._file is None:
            raise common.FailureLogError("log file not initialized")
        try:
            self._file.write(data)
        except OSError as e:
            raise common.FailureLogError(f"failed to write log file: {e}") from e

    def write_line(self, line: str) -> None:
        self._write(line + "\n")

    def write_error_data(self, data: str) -> None:
        self._write(data + "\n")

    def close(self, error_data: str) -> None:
        if self._file is None:
            return
        try:
            self.write_error_data(error_data)
        finally:
            self._file.close()
            self._file = None


def parse_failure_line(line: str) -> Optional[tuple[str, str]]:
    """Return (target, id) of a failing input reported in line, if any."""

    match = FUZZ_FAILURE_RE.search(line)
    if not match:
        return None
    return match.group("target"), match.group("id")


class FuzzProcessor:
    def __init__(
        self,
        target: str,
        corpus_path: Path,
        results_path: Path,
        log_writer: Optional[LogWriter] = None,
    ):
        """
        Detect failures in the standard output of a single fuzz target run.

        Once the failure marker has been seen, every subsequent line is written to
        <results_path>/<target>_failure.log. The first failing input reported by the
        toolchain is read from corpus_path and appended to the log when the stream ends.

        Arguments:
        ---------
        target:       Name of the fuzz target producing the output.
        corpus_path:  Directory containing <target>/<id> input files.
        results_path: Directory to create the failure log in.
        log_writer:   Sink for the failure log (default: file).
        """

        self.target = target
        self.state = ProcessState()
        self._corpus_path = corpus_path
        self._results_path = results_path
        self._log_writer = log_writer or FileLogWriter()
        self._closed = False

    @property
    def log_path(self) -> Path:
        return self._results_path / f"{self.target}_failure.log"

    async def process_stream(self, lines: AsyncIterator[str]) -> None:
        try:
            async for line in lines:
                self.feed(line)
        finally:
            self.close()

    def feed(self, line: str) -> None:
        try:
            self.process_line(line)
        except common.FailureLogError as e:
            logging.error("Error processing line of %s: %s", self.target, e)

    def process_line(self, line: str) -> None:
        if not self.state.seen_failure and FAILURE_MARKER in line:
            self._handle_failure_detection()
            return

        if self.state.seen_failure:
            self._handle_failure_line(line)

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        try:
            self._log_writer.close(self.state.error_data)
        except common.FailureLogError as e:
            logging.error("Failed to finalize failure log of %s: %s", self.target, e)

    def _handle_failure_detection(self) -> None:
        self.state.seen_failure = True
        self._log_writer.initialize(self.log_path)
        logging.info("Failure log initialized: %s", self.log_path)

    def _handle_failure_line(self, line: str) -> None:
        write_error: Optional[common.FailureLogError] = None
        try:
            self._log_writer.write_line(line)
        except common.FailureLogError as e:
            write_error = e

        if not self.state.input_printed:
            parsed = parse_failure_line(line)
            if parsed:
                self.state.error_data = self._read_input_data(*parsed)
                self.state.input_printed = True

        if write_error:
            raise write_error

    def _read_input_data(self, target: str, input_id: str) -> str:
        failing_input = f"{target}/{input_id}"
        try:
            data = (self._corpus_path / target / input_id).read_bytes()
        except OSError as e:
            logging.warning("Failed to read failing input %s: %s", failing_input, e)
            return f"\n<< failed to read {failing_input}: {e} >>\n"
        logging.info("Captured failing input %s (%d bytes)", failing_input, len(data))
        return (
            f"\n\n=== Failing testcase ({failing_input}) ===\n"
            f"{data.decode('utf-8', errors='replace')}"
        )
