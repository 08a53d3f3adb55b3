"""Work planning: which (build, scenario) pairs still need a run."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Iterable, List, Mapping, Sequence, Set, Tuple

from emubot.models import (
    Build,
    CatalogRom,
    ExistingResult,
    LocalRom,
    RomMovie,
    ScenarioKind,
    TestDefinition,
)
from emubot.roms import select_local_rom

LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True)
class WorkItem:
    build: Build
    kind: ScenarioKind
    scenario: TestDefinition | RomMovie
    catalog_rom: CatalogRom | None = None
    local_rom: LocalRom | None = None

    @property
    def scenario_id(self) -> int:
        return self.scenario.scenario_id

    @property
    def key(self) -> Tuple[int, str, int]:
        return (self.build.build_id, self.kind.value, self.scenario_id)

    def describe(self) -> str:
        if isinstance(self.scenario, RomMovie):
            rom = self.catalog_rom.name if self.catalog_rom else self.scenario.rom_id
            return f"rom {rom} movie {self.scenario.name} on build {self.build.build_id}"
        return f"test {self.scenario_id} on build {self.build.build_id}"


def _reported(results: Iterable[ExistingResult]) -> Set[Tuple[int, int]]:
    return {(result.build_id, result.scenario_id) for result in results}


class WorkPlanner:
    """Diffs the coordinator's catalogs against what this bot already reported."""

    def __init__(self, platform_name: str):
        self.platform_name = platform_name

    def runnable_builds(self, builds: Sequence[Build]) -> List[Build]:
        return [build for build in builds if build.url_for(self.platform_name)]

    def plan_tests(
        self,
        builds: Sequence[Build],
        tests: Sequence[TestDefinition],
        results: Iterable[ExistingResult],
    ) -> List[WorkItem]:
        done = _reported(results)
        pending: List[WorkItem] = []
        for build in self.runnable_builds(builds):
            for test in tests:
                if (build.build_id, test.test_definition_id) in done:
                    continue
                pending.append(WorkItem(build=build, kind=ScenarioKind.TEST, scenario=test))
        LOGGER.info("%d test runs pending", len(pending))
        return pending

    def available_roms(
        self, roms: Sequence[CatalogRom], local_roms: Sequence[LocalRom]
    ) -> List[Tuple[CatalogRom, LocalRom]]:
        """Pair catalog ROMs with the local file to run; drop ones we lack."""
        available: List[Tuple[CatalogRom, LocalRom]] = []
        for rom in roms:
            local = select_local_rom(local_roms, rom.rom_file_name, rom.rom_sha256)
            if local is None:
                LOGGER.debug("Not running %s, we don't have it", rom.name)
                continue
            available.append((rom, local))
        return available

    def plan_rom_movies(
        self,
        builds: Sequence[Build],
        available: Sequence[Tuple[CatalogRom, LocalRom]],
        movies_by_rom: Mapping[int, Sequence[RomMovie]],
        results: Iterable[ExistingResult],
    ) -> List[WorkItem]:
        done = _reported(results)
        pending: List[WorkItem] = []
        for build in self.runnable_builds(builds):
            for rom, local in available:
                for movie in movies_by_rom.get(rom.rom_id, ()):
                    if (build.build_id, movie.rom_movie_id) in done:
                        continue
                    pending.append(
                        WorkItem(
                            build=build,
                            kind=ScenarioKind.ROM_MOVIE,
                            scenario=movie,
                            catalog_rom=rom,
                            local_rom=local,
                        )
                    )
        LOGGER.info("%d rom movie runs pending", len(pending))
        return pending
