"""Emulator profile placement before each run."""
from __future__ import annotations

import logging
import shutil
from pathlib import Path

from emubot.errors import ProfileConfigError

LOGGER = logging.getLogger(__name__)

REGION_KEY = "region_value"
CONFIG_RELATIVE_PATH = Path("config") / "sdl2-config.ini"


class ProfileInjector:
    """Copies a profile template over the emulator's live configuration."""

    def __init__(self, template_dir: Path, live_dir: Path):
        self.template_dir = template_dir
        self.live_dir = live_dir

    @property
    def config_file(self) -> Path:
        return self.live_dir / CONFIG_RELATIVE_PATH

    def place(self, region: int | None = None) -> None:
        LOGGER.info("Placing profile from %s", self.template_dir)
        if not self.template_dir.is_dir():
            raise ProfileConfigError(f"Profile template does not exist: {self.template_dir}")
        if self.live_dir.exists():
            LOGGER.info("Removing existing profile dir %s", self.live_dir)
            shutil.rmtree(self.live_dir)
        self.live_dir.parent.mkdir(parents=True, exist_ok=True)
        shutil.copytree(self.template_dir, self.live_dir)
        if region is not None:
            self.set_region(region)

    def set_region(self, region: int) -> None:
        LOGGER.info("Setting region to %s", region)
        try:
            lines = self.config_file.read_text(encoding="utf-8").splitlines()
        except FileNotFoundError as exc:
            raise ProfileConfigError(f"Profile config missing: {self.config_file}") from exc
        found = False
        for index, line in enumerate(lines):
            if line.startswith(f"{REGION_KEY} ="):
                lines[index] = f"{REGION_KEY} = {region}"
                found = True
        if not found:
            raise ProfileConfigError(
                f"Couldn't find {REGION_KEY} in {self.config_file} to replace"
            )
        self.config_file.write_text("\n".join(lines) + "\n", encoding="utf-8")
