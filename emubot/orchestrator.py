"""The bot's main loop: plan, fetch, run, report, sleep."""
from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Sequence, Tuple

from emubot.cache import ArtifactCache
from emubot.config import BotConfig, BotIdentity
from emubot.coordinator import CoordinatorClient
from emubot.errors import BotError
from emubot.models import LocalRom, ResultRecord, RomMovie, ScreenshotPair
from emubot.planner import WorkItem, WorkPlanner
from emubot.platforms import PlatformSupport, detect_platform
from emubot.process import ProcessRunner, RunMode, RunSettings
from emubot.profile import ProfileInjector
from emubot.screenshots import collect_frame_screenshots, collect_test_screenshots

LOGGER = logging.getLogger(__name__)

# The live emulator profile and scratch directory are host-wide; one run at a time.
EMULATOR_LOCK = threading.Lock()


@dataclass
class CycleSummary:
    """Counts for one pass over the pending work."""

    planned: int = 0
    submitted: int = 0
    failed: int = 0
    skipped: int = 0
    outcomes: Dict[str, int] = field(default_factory=dict)

    def record(self, record: ResultRecord) -> None:
        self.submitted += 1
        name = record.outcome.name
        self.outcomes[name] = self.outcomes.get(name, 0) + 1


class Orchestrator:
    """Drives the plan/run/report cycle for one bot identity."""

    def __init__(
        self,
        config: BotConfig,
        identity: BotIdentity,
        client: CoordinatorClient,
        cache: ArtifactCache,
        runner: ProcessRunner,
        planner: WorkPlanner,
        local_roms: Sequence[LocalRom] = (),
        *,
        sleep: Callable[[float], None] = time.sleep,
        run_lock: threading.Lock | None = None,
    ) -> None:
        self.config = config
        self.identity = identity
        self.client = client
        self.cache = cache
        self.runner = runner
        self.planner = planner
        self.local_roms = list(local_roms)
        self._sleep = sleep
        self.run_lock = run_lock if run_lock is not None else EMULATOR_LOCK
        self._failures: Dict[Tuple[int, str, int], int] = {}

    @classmethod
    def create(
        cls,
        config: BotConfig,
        identity: BotIdentity,
        local_roms: Sequence[LocalRom] = (),
        platform: PlatformSupport | None = None,
    ) -> "Orchestrator":
        platform = platform or detect_platform()
        cache = ArtifactCache.from_config(config, platform)
        profile = ProfileInjector(
            config.profiles_dir / identity.profile_dir, platform.profile_directory()
        )
        runner = ProcessRunner(
            cache,
            profile,
            config.scratch_dir,
            timeout_seconds=config.run_timeout_seconds,
        )
        client = CoordinatorClient(identity, timeout_seconds=config.http_timeout_seconds)
        return cls(config, identity, client, cache, runner, WorkPlanner(platform.name), local_roms)

    def ensure_directories(self) -> None:
        for directory in (
            self.config.builds_dir,
            self.config.movies_dir,
            self.config.test_roms_dir,
            self.config.scratch_dir,
        ):
            directory.mkdir(parents=True, exist_ok=True)

    def run_forever(self, max_cycles: int | None = None) -> None:
        LOGGER.info("Bot %s starting to run forever", self.identity.bot_id)
        cycles = 0
        while True:
            try:
                self.run_once()
            except Exception:
                LOGGER.critical("Error in run_once for bot %s", self.identity.bot_id, exc_info=True)
                raise
            cycles += 1
            if max_cycles is not None and cycles >= max_cycles:
                return
            self._sleep(self.config.cycle_interval_seconds)

    def run_once(self) -> CycleSummary:
        self.ensure_directories()
        LOGGER.info("Bot %s checking in", self.identity.bot_id)
        builds = self.client.list_builds()
        items: List[WorkItem] = []

        if "tests" in self.config.scenario_kinds:
            tests = self.client.list_test_definitions()
            LOGGER.info("Found %d active builds, %d active tests", len(builds), len(tests))
            results = self.client.list_test_results()
            LOGGER.info("We have %d test results already", len(results))
            items.extend(self.planner.plan_tests(builds, tests, results))

        if "movies" in self.config.scenario_kinds:
            roms = self.client.list_roms()
            results = self.client.list_rom_movie_results()
            LOGGER.info("Found %d active builds, %d testable roms", len(builds), len(roms))
            available = self.planner.available_roms(roms, self.local_roms)
            movies_by_rom = {rom.rom_id: self.client.list_rom_movies(rom.rom_id) for rom, _ in available}
            items.extend(self.planner.plan_rom_movies(builds, available, movies_by_rom, results))

        summary = CycleSummary(planned=len(items))
        for item in items:
            if self._should_skip(item):
                summary.skipped += 1
                continue
            try:
                record = self.process_item(item)
            except BotError as exc:
                failures = self._failures.get(item.key, 0) + 1
                self._failures[item.key] = failures
                summary.failed += 1
                LOGGER.error("Giving up on %s this cycle (failure %d): %s", item.describe(), failures, exc)
                continue
            self._failures.pop(item.key, None)
            summary.record(record)

        LOGGER.info(
            "Cycle done for bot %s: %d planned, %d submitted, %d failed, %d skipped",
            self.identity.bot_id,
            summary.planned,
            summary.submitted,
            summary.failed,
            summary.skipped,
        )
        return summary

    def process_item(self, item: WorkItem) -> ResultRecord:
        LOGGER.info("Preparing to run %s", item.describe())
        self.cache.ensure_build(item.build)
        scenario = item.scenario
        movie_path = self.cache.ensure_movie(scenario.movie_sha256, scenario.movie_url)

        if isinstance(scenario, RomMovie):
            assert item.local_rom is not None
            with self.run_lock:
                result = self.runner.run(
                    item.build,
                    item.local_rom.full_path,
                    movie_path,
                    RunMode.CONTINUOUS,
                    RunSettings(region_value=scenario.region_value),
                )
                screenshots = self._collect(collect_frame_screenshots)
        else:
            rom_path = self.cache.ensure_test_rom(scenario.test_rom_sha256, scenario.test_rom_url)
            with self.run_lock:
                result = self.runner.run(item.build, rom_path, movie_path, RunMode.TEST)
                screenshots = self._collect(collect_test_screenshots)

        LOGGER.info("Finished %s, result: %s", item.describe(), result.outcome.name)
        record = ResultRecord(
            bot_id=self.identity.bot_id,
            access_key=self.identity.access_key,
            build_id=item.build.build_id,
            scenario_kind=item.kind,
            scenario_id=item.scenario_id,
            result=result,
            screenshots=screenshots,
        )
        self.client.submit_result(record)
        return record

    def _collect(self, collector: Callable[..., List[ScreenshotPair]]) -> List[ScreenshotPair]:
        try:
            return collector(self.runner.scratch_dir)
        except OSError as exc:
            LOGGER.error("Unreadable screenshot output, submitting without screenshots: %s", exc)
            return []

    def _should_skip(self, item: WorkItem) -> bool:
        limit = self.config.max_item_failures
        if not limit:
            return False
        failures = self._failures.get(item.key, 0)
        if failures < limit:
            return False
        LOGGER.warning("Skipping %s after %d failed attempts", item.describe(), failures)
        return True
