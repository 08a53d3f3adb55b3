"""Tests for emulator process supervision."""
from __future__ import annotations

import io
import subprocess
import sys
from pathlib import Path

import pytest

from emubot.models import Build, RunOutcome
from emubot.process import LogBuffer, ProcessRunner, RunMode, RunSettings


class _FakeCache:
    def __init__(self, executable: Path):
        self.executable = executable

    def executable_path(self, build_id):
        return self.executable


class _FakeProfile:
    def __init__(self) -> None:
        self.regions: list[int | None] = []

    def place(self, region=None) -> None:
        self.regions.append(region)


class _FakeProcess:
    instances: list["_FakeProcess"] = []

    def __init__(self, command, stdout=None, stderr=None, cwd=None, **kwargs):
        self.command = command
        self.cwd = cwd
        self.kwargs = kwargs
        self.stdout = io.StringIO(self.stdout_text)
        self.stderr = io.StringIO(self.stderr_text)
        self.killed = False
        self.scratch_contents = sorted(p.name for p in Path(cwd).iterdir())
        _FakeProcess.instances.append(self)

    stdout_text = "booting\nframe 1\n"
    stderr_text = "warning: audio\n"
    exit_code = 0
    hangs = False

    def wait(self, timeout=None):
        if self.hangs and not self.killed:
            raise subprocess.TimeoutExpired(self.command, timeout)
        return -9 if self.killed else self.exit_code

    def kill(self) -> None:
        self.killed = True


def _fake_popen(**attrs):
    _FakeProcess.instances = []
    return type("_ConfiguredProcess", (_FakeProcess,), attrs)


def _make_runner(tmp_path: Path, popen_cls, **kwargs) -> tuple[ProcessRunner, _FakeProfile]:
    profile = _FakeProfile()
    runner = ProcessRunner(
        _FakeCache(tmp_path / "Builds" / "1" / "citra.exe"),
        profile,
        tmp_path / "TempOutput",
        popen_cls=popen_cls,
        **kwargs,
    )
    return runner, profile


def _clock(*values: float):
    ticks = iter(values)
    return lambda: next(ticks)


BUILD = Build(build_id=1, windows_url="http://b/1.zip")


def test_exit_zero_is_completed(tmp_path) -> None:
    popen = _fake_popen()
    runner, profile = _make_runner(tmp_path, popen, clock=_clock(10.0, 12.5))

    result = runner.run(BUILD, Path("/roms/game.3ds"), Path("/movies/abc"), RunMode.TEST)

    assert result.outcome is RunOutcome.COMPLETED
    assert result.exit_code == 0
    assert result.elapsed_seconds == pytest.approx(2.5)
    assert "booting" in result.log
    assert "warning: audio" in result.log
    assert profile.regions == [None]
    process = popen.instances[0]
    assert process.command == [
        str(tmp_path / "Builds" / "1" / "citra.exe"),
        "--movie-play",
        "/movies/abc",
        "--movie-test",
        "/roms/game.3ds",
    ]
    assert Path(process.cwd) == (tmp_path / "TempOutput").resolve()


def test_nonzero_exit_is_crashed(tmp_path) -> None:
    runner, _ = _make_runner(tmp_path, _fake_popen(exit_code=3))

    result = runner.run(BUILD, Path("rom"), Path("movie"), RunMode.TEST)

    assert result.outcome is RunOutcome.CRASHED
    assert result.exit_code == 3


def test_hang_is_timed_out_and_killed(tmp_path) -> None:
    popen = _fake_popen(hangs=True, exit_code=1)
    runner, _ = _make_runner(tmp_path, popen, timeout_seconds=300)

    result = runner.run(BUILD, Path("rom"), Path("movie"), RunMode.CONTINUOUS)

    assert result.outcome is RunOutcome.TIMED_OUT
    assert popen.instances[0].killed is True
    assert "booting" in result.log


def test_region_settings_and_continuous_flag(tmp_path) -> None:
    popen = _fake_popen()
    runner, profile = _make_runner(tmp_path, popen)

    runner.run(BUILD, Path("rom"), Path("movie"), RunMode.CONTINUOUS, RunSettings(region_value=2))

    assert profile.regions == [2]
    assert "--movie-test-continuous" in popen.instances[0].command


def test_scratch_is_cleared_before_launch(tmp_path) -> None:
    scratch = tmp_path / "TempOutput"
    (scratch / "old").mkdir(parents=True)
    (scratch / "screenshot_1_top.bmp").write_bytes(b"stale")
    popen = _fake_popen()
    runner, _ = _make_runner(tmp_path, popen)

    runner.run(BUILD, Path("rom"), Path("movie"), RunMode.TEST)

    assert popen.instances[0].scratch_contents == []


def _python_popen(script: str, started: list):
    def popen(command, **kwargs):
        process = subprocess.Popen([sys.executable, "-c", script], **kwargs)
        started.append(process)
        return process

    return popen


def test_real_process_output_and_crash(tmp_path) -> None:
    started: list = []
    script = "import sys; print('hello out'); print('hello err', file=sys.stderr); sys.exit(4)"
    runner, _ = _make_runner(tmp_path, _python_popen(script, started), timeout_seconds=30)

    result = runner.run(BUILD, Path("rom"), Path("movie"), RunMode.TEST)

    assert result.outcome is RunOutcome.CRASHED
    assert "hello out" in result.log
    assert "hello err" in result.log


def test_real_process_timeout_is_terminated(tmp_path) -> None:
    started: list = []
    script = "import time; print('started', flush=True); time.sleep(60)"
    runner, _ = _make_runner(tmp_path, _python_popen(script, started), timeout_seconds=0.5)

    result = runner.run(BUILD, Path("rom"), Path("movie"), RunMode.TEST)

    assert result.outcome is RunOutcome.TIMED_OUT
    assert started[0].poll() is not None
    assert result.elapsed_seconds < 30


def test_log_buffer_joins_lines() -> None:
    buffer = LogBuffer()
    buffer.append("one\n")
    buffer.append("two\r\n")

    assert buffer.text() == "one\ntwo\n"
    assert LogBuffer().text() == ""
