"""Local ROM catalog: scan a directory once and match coordinator entries."""
from __future__ import annotations

import hashlib
import logging
from pathlib import Path
from typing import Iterable, List

from emubot.models import LocalRom

LOGGER = logging.getLogger(__name__)
_CHUNK_SIZE = 1024 * 1024


def hash_file(path: Path) -> str:
    """Return the lowercase hex SHA-256 of a file."""
    digest = hashlib.sha256()
    with path.open("rb") as handle:
        for chunk in iter(lambda: handle.read(_CHUNK_SIZE), b""):
            digest.update(chunk)
    return digest.hexdigest()


def scan_rom_directory(roms_path: Path) -> List[LocalRom]:
    if not roms_path.is_dir():
        LOGGER.warning("ROM directory %s does not exist; no ROM movies can run", roms_path)
        return []
    roms: List[LocalRom] = []
    for path in sorted(p for p in roms_path.rglob("*") if p.is_file()):
        LOGGER.info("Hashing %s", path.name)
        roms.append(LocalRom(full_path=path.resolve(), sha256=hash_file(path)))
    LOGGER.info("Found %d local ROM files", len(roms))
    return roms


def select_local_rom(
    local_roms: Iterable[LocalRom], file_name: str, sha256: str
) -> LocalRom | None:
    """Pick the local file for a catalog ROM.

    Files are matched on name, case-insensitively. Among the matches the one
    whose hash equals the declared hash wins; otherwise the first match is used
    and a warning is logged.
    """
    wanted = file_name.lower()
    matching = [rom for rom in local_roms if rom.file_name.lower() == wanted]
    if not matching:
        return None
    declared = sha256.lower()
    for rom in matching:
        if rom.sha256 == declared:
            return rom
    chosen = matching[0]
    LOGGER.warning(
        "Will run rom %s but hashes dont match (local %s, declared %s)",
        file_name,
        chosen.sha256,
        declared,
    )
    return chosen
