"""Command line entrypoint for the validation bot."""
from __future__ import annotations

import argparse
import logging
import os
import sys
import threading
from pathlib import Path
from typing import List, Mapping, Sequence

from emubot.config import BotConfig, BotConfigError, load_bot_config, redact_secret
from emubot.errors import BotError
from emubot.orchestrator import Orchestrator
from emubot.roms import scan_rom_directory

LOGGER = logging.getLogger(__name__)
LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"
FILE_LOG_FORMAT = "%(asctime)s %(levelname)s [%(threadName)s] %(name)s: %(message)s"
DEFAULT_SETTINGS_FILE = Path("appsettings.json")
_TRUTHY = {"1", "true", "yes", "on"}


def parse_args(argv: Sequence[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="emubot",
        description="Run emulator builds against movies and report results.",
    )
    parser.add_argument(
        "--settings",
        type=Path,
        default=Path(os.environ.get("EMUBOT_SETTINGS", DEFAULT_SETTINGS_FILE)),
        help="Path to the JSON settings file (default: appsettings.json)",
    )
    parser.add_argument(
        "--once",
        action="store_true",
        help="Run a single cycle for every bot and exit",
    )
    parser.add_argument("--debug", action="store_true", help="Enable debug logging")
    parser.add_argument("--log-file", type=Path, default=None, help="Also write logs here")
    return parser.parse_args(argv)


def _debug_enabled(args: argparse.Namespace, env: Mapping[str, str]) -> bool:
    return bool(args.debug) or env.get("EMUBOT_DEBUG", "").strip().lower() in _TRUTHY


def _log_handlers(debug: bool, log_file: Path | None = None) -> List[logging.Handler]:
    """Console at INFO (DEBUG with --debug); the log file always gets DEBUG.

    Bots run on their own threads, so the file records carry the thread name.
    """
    console = logging.StreamHandler()
    console.setLevel(logging.DEBUG if debug else logging.INFO)
    console.setFormatter(logging.Formatter(LOG_FORMAT))
    handlers: List[logging.Handler] = [console]
    if log_file:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_file, encoding="utf-8")
        file_handler.setLevel(logging.DEBUG)
        file_handler.setFormatter(logging.Formatter(FILE_LOG_FORMAT))
        handlers.append(file_handler)
    return handlers


def _configure_logging(debug: bool, log_file: Path | None = None) -> None:
    handlers = _log_handlers(debug, log_file)
    logging.basicConfig(level=min(handler.level for handler in handlers), handlers=handlers)


def build_orchestrators(config: BotConfig) -> List[Orchestrator]:
    local_roms = scan_rom_directory(config.roms_directory) if config.roms_directory else []
    bots = []
    for identity in config.bots:
        LOGGER.info(
            "Configuring bot %s against %s (key %s)",
            identity.bot_id,
            identity.base_url,
            redact_secret(identity.access_key),
        )
        bots.append(Orchestrator.create(config, identity, local_roms))
    return bots


def run_bots(bots: Sequence[Orchestrator], once: bool = False) -> int:
    """Run every bot; return a non-zero code when any of them died."""
    if once:
        for bot in bots:
            LOGGER.info("Running bot %s", bot.identity.bot_id)
            bot.run_once()
        return 0

    failed = threading.Event()

    def _loop(bot: Orchestrator) -> None:
        try:
            bot.run_forever()
        except Exception:
            # run_forever already logged the traceback
            failed.set()

    threads = [
        threading.Thread(target=_loop, args=(bot,), name=f"bot-{bot.identity.bot_id}", daemon=True)
        for bot in bots
    ]
    for thread in threads:
        thread.start()
    while not failed.is_set() and any(thread.is_alive() for thread in threads):
        failed.wait(timeout=1)
    return 1 if failed.is_set() else 0


def main(argv: Sequence[str] | None = None) -> int:
    args = parse_args(argv)
    _configure_logging(_debug_enabled(args, os.environ), args.log_file)
    try:
        config = load_bot_config(args.settings)
        bots = build_orchestrators(config)
    except (BotConfigError, BotError) as exc:
        LOGGER.error("Invalid configuration: %s", exc)
        return 2
    return run_bots(bots, once=args.once)


if __name__ == "__main__":
    sys.exit(main())
