"""Tests for settings loading."""
from __future__ import annotations

import json

import pytest

from emubot.config import (
    DEFAULT_CYCLE_INTERVAL_SECONDS,
    DEFAULT_RUN_TIMEOUT_SECONDS,
    BotConfigError,
    load_bot_config,
    redact_secret,
)


def _write(tmp_path, **overrides):
    settings = {
        "RomsDirectory": "roms",
        "JanitraBots": [
            {"JanitraBotId": 1, "AccessKey": "abcd1234", "ProfileDir": "default", "BaseUrl": "https://janitra.example/"}
        ],
    }
    settings.update(overrides)
    path = tmp_path / "appsettings.json"
    path.write_text(json.dumps(settings), encoding="utf-8")
    return path


def test_load_defaults(tmp_path) -> None:
    config = load_bot_config(_write(tmp_path), env={})

    assert len(config.bots) == 1
    bot = config.bots[0]
    assert bot.bot_id == 1
    assert bot.base_url == "https://janitra.example"
    assert bot.endpoint("api/Roms/List") == "https://janitra.example/api/Roms/List"
    assert config.roms_directory == (tmp_path / "roms").resolve()
    assert config.working_root == tmp_path.resolve()
    assert config.scratch_dir == tmp_path.resolve() / "TempOutput"
    assert config.run_timeout_seconds == DEFAULT_RUN_TIMEOUT_SECONDS
    assert config.cycle_interval_seconds == DEFAULT_CYCLE_INTERVAL_SECONDS
    assert config.hash_verification == "off"
    assert config.scenario_kinds == ("movies",)


def test_env_overrides_settings(tmp_path) -> None:
    env = {
        "EMUBOT_RUN_TIMEOUT_SECONDS": "90",
        "EMUBOT_HASH_VERIFICATION": "Reject",
        "EMUBOT_SCENARIOS": "tests, movies",
        "EMUBOT_MAX_ITEM_FAILURES": "0",
        "EMUBOT_WORKING_DIRECTORY": str(tmp_path / "work"),
    }

    config = load_bot_config(_write(tmp_path, RunTimeoutSeconds=30), env=env)

    assert config.run_timeout_seconds == 90
    assert config.hash_verification == "reject"
    assert config.scenario_kinds == ("tests", "movies")
    assert config.max_item_failures == 0
    assert config.builds_dir == (tmp_path / "work").resolve() / "Builds"


@pytest.mark.parametrize(
    "overrides, message",
    [
        ({"JanitraBots": []}, "Bots"),
        ({"RunTimeoutSeconds": 0}, "RunTimeoutSeconds"),
        ({"HashVerification": "maybe"}, "HashVerification"),
        ({"Scenarios": ["everything"]}, "Scenarios"),
        (
            {"JanitraBots": [{"JanitraBotId": 1, "AccessKey": "k", "ProfileDir": "p", "BaseUrl": "ftp://x"}]},
            "BaseUrl",
        ),
        (
            {"JanitraBots": [{"JanitraBotId": 1, "ProfileDir": "p", "BaseUrl": "https://x"}]},
            "AccessKey",
        ),
    ],
)
def test_invalid_settings_raise(tmp_path, overrides, message) -> None:
    with pytest.raises(BotConfigError, match=message):
        load_bot_config(_write(tmp_path, **overrides), env={})


def test_duplicate_bot_ids_rejected(tmp_path) -> None:
    bot = {"JanitraBotId": 1, "AccessKey": "k", "ProfileDir": "p", "BaseUrl": "https://x"}
    with pytest.raises(BotConfigError, match="more than once"):
        load_bot_config(_write(tmp_path, JanitraBots=[bot, bot]), env={})


def test_missing_or_broken_file(tmp_path) -> None:
    with pytest.raises(BotConfigError):
        load_bot_config(tmp_path / "missing.json", env={})
    broken = tmp_path / "broken.json"
    broken.write_text("{", encoding="utf-8")
    with pytest.raises(BotConfigError):
        load_bot_config(broken, env={})


def test_redact_secret() -> None:
    assert redact_secret("abcd1234") == "****1234"
    assert redact_secret("abc") == "***"
    assert redact_secret("") == ""
