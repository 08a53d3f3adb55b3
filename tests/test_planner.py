"""Tests for pending work planning."""
from __future__ import annotations

import logging
from pathlib import Path

from emubot.models import (
    Build,
    CatalogRom,
    ExistingResult,
    LocalRom,
    RomMovie,
    ScenarioKind,
    TestDefinition,
)
from emubot.planner import WorkPlanner


def _builds() -> list[Build]:
    return [
        Build(build_id=1, windows_url="http://b/1.zip", linux_url="http://b/1.tar.xz"),
        Build(build_id=2, windows_url="http://b/2.zip"),
        Build(build_id=3, linux_url="http://b/3.tar.xz"),
    ]


def _tests() -> list[TestDefinition]:
    return [
        TestDefinition(10, "m10", "http://m/10", "r10", "http://r/10"),
        TestDefinition(11, "m11", "http://m/11", "r11", "http://r/11"),
    ]


def test_plan_tests_skips_reported_pairs() -> None:
    planner = WorkPlanner("windows")
    results = [ExistingResult(1, 10), ExistingResult(2, 11)]

    pending = planner.plan_tests(_builds(), _tests(), results)

    assert [(i.build.build_id, i.scenario_id) for i in pending] == [(1, 11), (2, 10)]
    assert all(item.kind is ScenarioKind.TEST for item in pending)


def test_plan_tests_excludes_builds_without_platform_url() -> None:
    planner = WorkPlanner("linux")

    pending = planner.plan_tests(_builds(), _tests(), [])

    assert {item.build.build_id for item in pending} == {1, 3}


def test_plan_tests_is_order_stable() -> None:
    planner = WorkPlanner("windows")

    first = planner.plan_tests(_builds(), _tests(), [ExistingResult(1, 11)])
    second = planner.plan_tests(_builds(), _tests(), [ExistingResult(1, 11)])

    assert [item.key for item in first] == [item.key for item in second]
    assert [item.key for item in first] == [
        (1, "test", 10),
        (2, "test", 10),
        (2, "test", 11),
    ]


def test_plan_tests_nothing_pending_when_all_reported() -> None:
    planner = WorkPlanner("windows")
    results = [ExistingResult(b, t) for b in (1, 2, 3) for t in (10, 11)]

    assert planner.plan_tests(_builds(), _tests(), results) == []


def test_available_roms_prefers_matching_hash(tmp_path, caplog) -> None:
    planner = WorkPlanner("windows")
    first = LocalRom(tmp_path / "a" / "Game.3ds", "1111")
    second = LocalRom(tmp_path / "b" / "game.3ds", "2222")
    rom = CatalogRom(rom_id=5, name="Game", rom_file_name="game.3DS", rom_sha256="2222")

    with caplog.at_level(logging.WARNING):
        available = planner.available_roms([rom], [first, second])

    assert available == [(rom, second)]
    assert "hashes dont match" not in caplog.text


def test_available_roms_falls_back_to_first_match(tmp_path, caplog) -> None:
    planner = WorkPlanner("windows")
    first = LocalRom(tmp_path / "a" / "game.3ds", "1111")
    second = LocalRom(tmp_path / "b" / "game.3ds", "2222")
    rom = CatalogRom(rom_id=5, name="Game", rom_file_name="game.3ds", rom_sha256="9999")

    with caplog.at_level(logging.WARNING):
        available = planner.available_roms([rom], [first, second])

    assert available == [(rom, first)]
    assert "hashes dont match" in caplog.text


def test_available_roms_skips_unknown_files() -> None:
    planner = WorkPlanner("windows")
    rom = CatalogRom(rom_id=5, name="Game", rom_file_name="game.3ds", rom_sha256="1")

    assert planner.available_roms([rom], [LocalRom(Path("other.3ds"), "1")]) == []


def test_plan_rom_movies_walks_builds_then_movies() -> None:
    planner = WorkPlanner("windows")
    rom = CatalogRom(rom_id=5, name="Game", rom_file_name="game.3ds", rom_sha256="1")
    local = LocalRom(Path("game.3ds"), "1")
    movies = {
        5: [
            RomMovie(100, 5, "intro", "aa", "http://m/100", region_value=1),
            RomMovie(101, 5, "boss", "bb", "http://m/101"),
        ]
    }

    pending = planner.plan_rom_movies(
        _builds(), [(rom, local)], movies, [ExistingResult(1, 100)]
    )

    assert [item.key for item in pending] == [
        (1, "rom_movie", 101),
        (2, "rom_movie", 100),
        (2, "rom_movie", 101),
    ]
    assert pending[0].local_rom == local
    assert pending[0].catalog_rom == rom
