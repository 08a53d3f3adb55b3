"""Per-OS details: executable name, profile location and archive format."""
from __future__ import annotations

import logging
import os
import sys
import tarfile
import zipfile
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Mapping

from emubot.errors import BotError, UnsupportedPlatformError

LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True)
class PlatformSupport:
    """What the bot needs to know about the host to run a build."""

    name: str
    executable_name: str
    _profile_resolver: Callable[[Mapping[str, str]], Path]

    def profile_directory(self, env: Mapping[str, str] | None = None) -> Path:
        return self._profile_resolver(os.environ if env is None else env)

    def extract_archive(self, archive: Path, destination: Path) -> None:
        """Unpack a build archive, overwriting files already present."""
        destination.mkdir(parents=True, exist_ok=True)
        if zipfile.is_zipfile(archive):
            with zipfile.ZipFile(archive) as bundle:
                for member in bundle.namelist():
                    _ensure_inside(destination, member)
                bundle.extractall(destination)
        elif tarfile.is_tarfile(archive):
            with tarfile.open(archive) as bundle:
                for member in bundle.getmembers():
                    _ensure_inside(destination, member.name)
                bundle.extractall(destination, filter="data")
        else:
            raise BotError(f"Unrecognised archive format for {archive}")
        if self.name != "windows":
            for candidate in destination.rglob(self.executable_name):
                candidate.chmod(candidate.stat().st_mode | 0o111)


def _ensure_inside(destination: Path, member: str) -> None:
    root = destination.resolve()
    target = (root / member).resolve()
    if target != root and root not in target.parents:
        raise BotError(f"Archive member escapes build directory: {member}")


def _windows_profile(env: Mapping[str, str]) -> Path:
    appdata = env.get("APPDATA")
    if not appdata:
        raise UnsupportedPlatformError("APPDATA is not set; cannot locate the Citra profile")
    return Path(appdata) / "Citra"


def _linux_profile(env: Mapping[str, str]) -> Path:
    data_home = env.get("XDG_DATA_HOME")
    base = Path(data_home) if data_home else Path(env.get("HOME", "~")).expanduser() / ".local" / "share"
    return base / "citra-emu"


def _osx_profile(env: Mapping[str, str]) -> Path:
    home = Path(env.get("HOME", "~")).expanduser()
    return home / "Library" / "Application Support" / "Citra"


WINDOWS = PlatformSupport("windows", "citra.exe", _windows_profile)
LINUX = PlatformSupport("linux", "citra", _linux_profile)
OSX = PlatformSupport("osx", "citra", _osx_profile)


def detect_platform(sys_platform: str | None = None) -> PlatformSupport:
    value = sys_platform or sys.platform
    if value.startswith("win") or value == "cygwin":
        return WINDOWS
    if value.startswith("linux"):
        return LINUX
    if value == "darwin":
        return OSX
    raise UnsupportedPlatformError(f"Don't know what platform matches {value}")
