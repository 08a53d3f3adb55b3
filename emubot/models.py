"""Data model shared by the planner, runner and coordinator client."""
from __future__ import annotations

import base64
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Mapping


class RunOutcome(str, Enum):
    """Terminal classification of a single emulator run."""

    COMPLETED = "Completed"
    CRASHED = "Crash"
    TIMED_OUT = "Timeout"


class ScenarioKind(str, Enum):
    TEST = "test"
    ROM_MOVIE = "rom_movie"


@dataclass(frozen=True)
class Build:
    build_id: int
    windows_url: str | None = None
    linux_url: str | None = None
    osx_url: str | None = None

    def url_for(self, platform_name: str) -> str | None:
        urls = {
            "windows": self.windows_url,
            "linux": self.linux_url,
            "osx": self.osx_url,
        }
        return urls.get(platform_name) or None

    @classmethod
    def from_json(cls, raw: Mapping[str, Any]) -> "Build":
        return cls(
            build_id=int(raw["citraBuildId"]),
            windows_url=raw.get("windowsUrl"),
            linux_url=raw.get("linuxUrl"),
            osx_url=raw.get("osxUrl"),
        )


@dataclass(frozen=True)
class TestDefinition:
    """A discrete movie + test ROM pair with a pass/fail expectation."""

    __test__ = False  # not a pytest class

    test_definition_id: int
    movie_sha256: str
    movie_url: str
    test_rom_sha256: str
    test_rom_url: str

    @property
    def scenario_id(self) -> int:
        return self.test_definition_id

    @classmethod
    def from_json(cls, raw: Mapping[str, Any]) -> "TestDefinition":
        test_rom = raw.get("testRom") or {}
        return cls(
            test_definition_id=int(raw["testDefinitionId"]),
            movie_sha256=str(raw["movieSha256"]).lower(),
            movie_url=str(raw["movieUrl"]),
            test_rom_sha256=str(test_rom["romSha256"]).lower(),
            test_rom_url=str(test_rom["romUrl"]),
        )


@dataclass(frozen=True)
class CatalogRom:
    """A ROM the coordinator knows about; the bytes live on the bot host."""

    rom_id: int
    name: str
    rom_file_name: str
    rom_sha256: str

    @classmethod
    def from_json(cls, raw: Mapping[str, Any]) -> "CatalogRom":
        return cls(
            rom_id=int(raw["romId"]),
            name=str(raw.get("name") or raw["romFileName"]),
            rom_file_name=str(raw["romFileName"]),
            rom_sha256=str(raw["romSha256"]).lower(),
        )


@dataclass(frozen=True)
class RomMovie:
    rom_movie_id: int
    rom_id: int
    name: str
    movie_sha256: str
    movie_url: str
    region_value: int | None = None

    @property
    def scenario_id(self) -> int:
        return self.rom_movie_id

    @classmethod
    def from_json(cls, raw: Mapping[str, Any]) -> "RomMovie":
        region = raw.get("citraRegionValue")
        return cls(
            rom_movie_id=int(raw["romMovieId"]),
            rom_id=int(raw["romId"]),
            name=str(raw.get("name") or raw["romMovieId"]),
            movie_sha256=str(raw["movieSha256"]).lower(),
            movie_url=str(raw["movieUrl"]),
            region_value=int(region) if region is not None else None,
        )


@dataclass(frozen=True)
class ExistingResult:
    """A (build, scenario) pair this bot has already reported."""

    build_id: int
    scenario_id: int

    @classmethod
    def from_test_json(cls, raw: Mapping[str, Any]) -> "ExistingResult":
        return cls(int(raw["citraBuildId"]), int(raw["testDefinitionId"]))

    @classmethod
    def from_movie_json(cls, raw: Mapping[str, Any]) -> "ExistingResult":
        return cls(int(raw["citraBuildId"]), int(raw["romMovieId"]))


@dataclass(frozen=True)
class LocalRom:
    full_path: Path
    sha256: str

    @property
    def file_name(self) -> str:
        return self.full_path.name


@dataclass
class RunResult:
    outcome: RunOutcome
    elapsed_seconds: float
    log: str
    exit_code: int | None = None


@dataclass
class ScreenshotPair:
    top: bytes | None
    bottom: bytes | None
    frame_number: int | None = None


def _b64(value: bytes | None) -> str | None:
    if value is None:
        return None
    return base64.b64encode(value).decode("ascii")


@dataclass
class ResultRecord:
    """Everything the coordinator needs to accept one run."""

    bot_id: int
    access_key: str
    build_id: int
    scenario_kind: ScenarioKind
    scenario_id: int
    result: RunResult
    screenshots: List[ScreenshotPair] = field(default_factory=list)

    @property
    def outcome(self) -> RunOutcome:
        return self.result.outcome

    def to_payload(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "janitraBotId": self.bot_id,
            "accessKey": self.access_key,
            "citraBuildId": self.build_id,
            "log": _b64(self.result.log.encode("utf-8")),
            "executionResult": self.result.outcome.value,
            "timeTakenSeconds": round(self.result.elapsed_seconds, 3),
        }
        if self.scenario_kind is ScenarioKind.TEST:
            payload["testDefinitionId"] = self.scenario_id
            pair = self.screenshots[0] if self.screenshots else ScreenshotPair(None, None)
            payload["screenshotTop"] = _b64(pair.top)
            payload["screenshotBottom"] = _b64(pair.bottom)
        else:
            payload["romMovieId"] = self.scenario_id
            payload["screenshots"] = [
                {
                    "frameNumber": pair.frame_number,
                    "topImage": _b64(pair.top),
                    "bottomImage": _b64(pair.bottom),
                }
                for pair in self.screenshots
            ]
        return payload
