"""Configuration helpers for the validation bot."""
from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, List, Mapping
from urllib.parse import urljoin, urlparse

LOGGER = logging.getLogger(__name__)

DEFAULT_RUN_TIMEOUT_SECONDS = 5 * 60
DEFAULT_CYCLE_INTERVAL_SECONDS = 60
DEFAULT_HTTP_TIMEOUT_SECONDS = 60
DEFAULT_MAX_ITEM_FAILURES = 3
DEFAULT_HASH_VERIFICATION = "off"
DEFAULT_SCENARIO_KINDS = ("movies",)

ALLOWED_HASH_VERIFICATION = {"off", "warn", "reject"}
ALLOWED_SCENARIO_KINDS = {"tests", "movies"}


class BotConfigError(ValueError):
    """Raised when bot configuration is invalid."""


@dataclass(frozen=True)
class BotIdentity:
    bot_id: int
    access_key: str
    profile_dir: str
    base_url: str

    def endpoint(self, path: str) -> str:
        return urljoin(self.base_url.rstrip("/") + "/", path.lstrip("/"))


@dataclass
class BotConfig:
    bots: List[BotIdentity]
    working_root: Path = field(default_factory=Path.cwd)
    roms_directory: Path | None = None
    run_timeout_seconds: int = DEFAULT_RUN_TIMEOUT_SECONDS
    cycle_interval_seconds: int = DEFAULT_CYCLE_INTERVAL_SECONDS
    http_timeout_seconds: int = DEFAULT_HTTP_TIMEOUT_SECONDS
    hash_verification: str = DEFAULT_HASH_VERIFICATION
    max_item_failures: int = DEFAULT_MAX_ITEM_FAILURES
    scenario_kinds: tuple[str, ...] = DEFAULT_SCENARIO_KINDS

    @property
    def builds_dir(self) -> Path:
        return self.working_root / "Builds"

    @property
    def movies_dir(self) -> Path:
        return self.working_root / "Movies"

    @property
    def test_roms_dir(self) -> Path:
        return self.working_root / "TestRoms"

    @property
    def scratch_dir(self) -> Path:
        return self.working_root / "TempOutput"

    @property
    def profiles_dir(self) -> Path:
        return self.working_root / "Profiles"


def load_bot_config(path: Path, env: Mapping[str, str] | None = None) -> BotConfig:
    """Read the JSON settings file and apply EMUBOT_* environment overrides."""
    env = os.environ if env is None else env
    try:
        raw = json.loads(Path(path).read_text(encoding="utf-8"))
    except FileNotFoundError as exc:
        raise BotConfigError(f"Settings file does not exist: {path}") from exc
    except json.JSONDecodeError as exc:
        raise BotConfigError(f"Settings file is not valid JSON: {exc}") from exc
    if not isinstance(raw, dict):
        raise BotConfigError("Settings file must contain a JSON object")

    base_dir = Path(path).resolve().parent
    bots = _parse_bots(raw.get("Bots", raw.get("JanitraBots")))

    working_raw = env.get("EMUBOT_WORKING_DIRECTORY") or raw.get("WorkingDirectory")
    working_root = _resolve_dir(working_raw, base_dir) if working_raw else base_dir

    roms_raw = env.get("EMUBOT_ROMS_DIRECTORY") or raw.get("RomsDirectory")
    roms_directory = _resolve_dir(roms_raw, base_dir) if roms_raw else None

    config = BotConfig(
        bots=bots,
        working_root=working_root,
        roms_directory=roms_directory,
        run_timeout_seconds=_parse_positive_int(
            _pick(env, "EMUBOT_RUN_TIMEOUT_SECONDS", raw, "RunTimeoutSeconds"),
            DEFAULT_RUN_TIMEOUT_SECONDS,
            "RunTimeoutSeconds",
        ),
        cycle_interval_seconds=_parse_positive_int(
            _pick(env, "EMUBOT_CYCLE_INTERVAL_SECONDS", raw, "CycleIntervalSeconds"),
            DEFAULT_CYCLE_INTERVAL_SECONDS,
            "CycleIntervalSeconds",
        ),
        http_timeout_seconds=_parse_positive_int(
            _pick(env, "EMUBOT_HTTP_TIMEOUT_SECONDS", raw, "HttpTimeoutSeconds"),
            DEFAULT_HTTP_TIMEOUT_SECONDS,
            "HttpTimeoutSeconds",
        ),
        hash_verification=_parse_hash_verification(
            _pick(env, "EMUBOT_HASH_VERIFICATION", raw, "HashVerification")
        ),
        max_item_failures=_parse_non_negative_int(
            _pick(env, "EMUBOT_MAX_ITEM_FAILURES", raw, "MaxItemFailures"),
            DEFAULT_MAX_ITEM_FAILURES,
            "MaxItemFailures",
        ),
        scenario_kinds=_parse_scenario_kinds(
            _pick(env, "EMUBOT_SCENARIOS", raw, "Scenarios")
        ),
    )
    LOGGER.info(
        "Loaded %d bot identities (working root %s)", len(config.bots), config.working_root
    )
    return config


def redact_secret(value: str, visible: int = 4) -> str:
    """Redact sensitive values for logging."""
    if not value:
        return ""
    cleaned = value.strip()
    if len(cleaned) <= visible:
        return "*" * len(cleaned)
    hidden = "*" * (len(cleaned) - visible)
    return f"{hidden}{cleaned[-visible:]}"


def _pick(env: Mapping[str, str], env_name: str, raw: Mapping[str, Any], key: str) -> Any:
    value = env.get(env_name)
    if value is not None and str(value).strip() != "":
        return value
    return raw.get(key)


def _parse_bots(raw_value: Any) -> List[BotIdentity]:
    if not isinstance(raw_value, list) or not raw_value:
        raise BotConfigError("Bots must be a non-empty list")
    bots: List[BotIdentity] = []
    seen: set[int] = set()
    for index, entry in enumerate(raw_value):
        if not isinstance(entry, dict):
            raise BotConfigError(f"Bots[{index}] must be an object")
        label = f"Bots[{index}]"
        bot_id = _parse_positive_int(
            entry.get("JanitraBotId", entry.get("BotId")), None, f"{label}.BotId"
        )
        if bot_id in seen:
            raise BotConfigError(f"Bot id {bot_id} is configured more than once")
        seen.add(bot_id)
        bots.append(
            BotIdentity(
                bot_id=bot_id,
                access_key=_require_non_empty(entry.get("AccessKey"), f"{label}.AccessKey"),
                profile_dir=_require_non_empty(entry.get("ProfileDir"), f"{label}.ProfileDir"),
                base_url=_parse_base_url(entry.get("BaseUrl"), f"{label}.BaseUrl"),
            )
        )
    return bots


def _resolve_dir(raw_value: Any, base_dir: Path) -> Path:
    candidate = Path(str(raw_value)).expanduser()
    if not candidate.is_absolute():
        candidate = base_dir / candidate
    return candidate.resolve()


def _parse_positive_int(raw_value: Any, default: int | None, name: str) -> int:
    if raw_value is None or str(raw_value).strip() == "":
        if default is None:
            raise BotConfigError(f"{name} is required")
        return default
    try:
        value = int(raw_value)
    except (TypeError, ValueError) as exc:
        raise BotConfigError(f"{name} must be an integer") from exc
    if value <= 0:
        raise BotConfigError(f"{name} must be greater than zero")
    return value


def _parse_non_negative_int(raw_value: Any, default: int, name: str) -> int:
    if raw_value is None or str(raw_value).strip() == "":
        return default
    try:
        value = int(raw_value)
    except (TypeError, ValueError) as exc:
        raise BotConfigError(f"{name} must be an integer") from exc
    if value < 0:
        raise BotConfigError(f"{name} must be zero or positive")
    return value


def _parse_hash_verification(raw_value: Any) -> str:
    if raw_value is None or str(raw_value).strip() == "":
        return DEFAULT_HASH_VERIFICATION
    value = str(raw_value).strip().lower()
    if value not in ALLOWED_HASH_VERIFICATION:
        allowed = ", ".join(sorted(ALLOWED_HASH_VERIFICATION))
        raise BotConfigError(f"HashVerification must be one of: {allowed}")
    return value


def _parse_scenario_kinds(raw_value: Any) -> tuple[str, ...]:
    if raw_value is None:
        return DEFAULT_SCENARIO_KINDS
    if isinstance(raw_value, str):
        parts = [piece.strip().lower() for piece in raw_value.split(",")]
    elif isinstance(raw_value, list):
        parts = [str(piece).strip().lower() for piece in raw_value]
    else:
        raise BotConfigError("Scenarios must be a list or comma separated string")
    kinds: list[str] = []
    for part in parts:
        if not part:
            continue
        if part not in ALLOWED_SCENARIO_KINDS:
            allowed = ", ".join(sorted(ALLOWED_SCENARIO_KINDS))
            raise BotConfigError(f"Scenarios entries must be one of: {allowed}")
        if part not in kinds:
            kinds.append(part)
    if not kinds:
        raise BotConfigError("Scenarios must list at least one kind")
    return tuple(kinds)


def _parse_base_url(raw_value: Any, name: str) -> str:
    base = _require_non_empty(raw_value, name).rstrip("/")
    parsed = urlparse(base)
    if parsed.scheme not in {"http", "https"}:
        raise BotConfigError(f"{name} must include http or https scheme")
    if not parsed.netloc:
        raise BotConfigError(f"{name} must include a hostname")
    return base


def _require_non_empty(raw_value: Any, name: str) -> str:
    if raw_value is None or not str(raw_value).strip():
        raise BotConfigError(f"{name} is required")
    return str(raw_value).strip()
