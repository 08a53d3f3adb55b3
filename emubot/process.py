"""Launch the emulator against a movie and classify how the run ended."""
from __future__ import annotations

import logging
import shutil
import subprocess
import threading
import time
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import IO, Callable, List

from emubot.cache import ArtifactCache
from emubot.models import Build, RunOutcome, RunResult
from emubot.profile import ProfileInjector

LOGGER = logging.getLogger(__name__)
DEFAULT_TIMEOUT_SECONDS = 5 * 60
READER_JOIN_SECONDS = 5


class RunMode(str, Enum):
    TEST = "--movie-test"
    CONTINUOUS = "--movie-test-continuous"


@dataclass(frozen=True)
class RunSettings:
    region_value: int | None = None


class LogBuffer:
    """Collects lines from stdout and stderr readers running concurrently."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._lines: List[str] = []

    def append(self, line: str) -> None:
        with self._lock:
            self._lines.append(line.rstrip("\r\n"))

    def text(self) -> str:
        with self._lock:
            if not self._lines:
                return ""
            return "\n".join(self._lines) + "\n"


def _pump(stream: IO[str] | None, buffer: LogBuffer) -> None:
    if stream is None:
        return
    try:
        for line in stream:
            buffer.append(line)
    finally:
        stream.close()


class ProcessRunner:
    """Runs one build/ROM/movie combination with a hard wall-clock limit.

    A run is Running until the process exits or the limit passes, then it
    settles as Completed (exit 0), Crashed (any other exit) or TimedOut. There
    are no retries.
    """

    def __init__(
        self,
        cache: ArtifactCache,
        profile: ProfileInjector,
        scratch_dir: Path,
        *,
        timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
        popen_cls=subprocess.Popen,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.cache = cache
        self.profile = profile
        self.scratch_dir = scratch_dir
        self.timeout_seconds = timeout_seconds
        self._popen_cls = popen_cls
        self._clock = clock

    def run(
        self,
        build: Build,
        rom_path: Path,
        movie_path: Path,
        mode: RunMode,
        settings: RunSettings | None = None,
    ) -> RunResult:
        self.profile.place(region=settings.region_value if settings else None)
        self.clear_scratch()
        executable = self.cache.executable_path(build.build_id)
        command = [
            str(executable),
            "--movie-play",
            str(movie_path),
            mode.value,
            str(rom_path),
        ]
        log = LogBuffer()
        LOGGER.info("Starting %s for build %s", mode.value, build.build_id)
        start = self._clock()
        process = self._popen_cls(
            command,
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
            cwd=str(self.scratch_dir.resolve()),
            text=True,
            encoding="utf-8",
            errors="replace",
        )
        readers = [
            threading.Thread(target=_pump, args=(process.stdout, log), daemon=True),
            threading.Thread(target=_pump, args=(process.stderr, log), daemon=True),
        ]
        for reader in readers:
            reader.start()

        try:
            exit_code = process.wait(timeout=self.timeout_seconds)
            outcome = RunOutcome.COMPLETED if exit_code == 0 else RunOutcome.CRASHED
        except subprocess.TimeoutExpired:
            LOGGER.warning("Run exceeded %s seconds; killing emulator", self.timeout_seconds)
            process.kill()
            exit_code = process.wait()
            outcome = RunOutcome.TIMED_OUT
        elapsed = self._clock() - start

        for reader in readers:
            reader.join(timeout=READER_JOIN_SECONDS)
        text = log.text()
        LOGGER.info("Test finished, result %s", outcome.name)
        LOGGER.info("Got %d bytes of logs", len(text))
        return RunResult(outcome=outcome, elapsed_seconds=elapsed, log=text, exit_code=exit_code)

    def clear_scratch(self) -> None:
        self.scratch_dir.mkdir(parents=True, exist_ok=True)
        for entry in self.scratch_dir.iterdir():
            if entry.is_dir() and not entry.is_symlink():
                shutil.rmtree(entry)
            else:
                entry.unlink()
