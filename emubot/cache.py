"""Lazily populated on-disk store for builds, movies and test ROMs."""
from __future__ import annotations

import hashlib
import logging
import os
import shutil
import tempfile
import time
import uuid
from contextlib import contextmanager
from enum import Enum
from pathlib import Path
from typing import Callable, Iterator
from urllib import error, request

from emubot.config import BotConfig
from emubot.errors import (
    BotError,
    DownloadError,
    ExecutableNotFoundError,
    HashMismatchError,
    UnsupportedPlatformError,
)
from emubot.models import Build
from emubot.platforms import PlatformSupport

LOGGER = logging.getLogger(__name__)
_CHUNK_SIZE = 1024 * 1024
DEFAULT_CLAIM_WAIT_SECONDS = 30 * 60
DEFAULT_CLAIM_STALE_SECONDS = 60 * 60


class ArtifactKind(str, Enum):
    BUILD = "build"
    MOVIE = "movie"
    TEST_ROM = "test_rom"


class ArtifactCache:
    """Content addressed artifact store.

    Movies and test ROMs are stored under their SHA-256, builds under their
    id. A key is only ever visible once its bytes are complete: downloads go to
    a temporary file in the same directory and are renamed into place. A claim
    file per key keeps two bots sharing the store from fetching it together.
    """

    def __init__(
        self,
        builds_dir: Path,
        movies_dir: Path,
        test_roms_dir: Path,
        platform: PlatformSupport,
        *,
        hash_verification: str = "off",
        timeout_seconds: int = 60,
        opener: Callable[..., object] = request.urlopen,
        claim_wait_seconds: float = DEFAULT_CLAIM_WAIT_SECONDS,
        claim_stale_seconds: float = DEFAULT_CLAIM_STALE_SECONDS,
        poll_interval: float = 1.0,
    ) -> None:
        self.builds_dir = builds_dir
        self.movies_dir = movies_dir
        self.test_roms_dir = test_roms_dir
        self.platform = platform
        self.hash_verification = hash_verification
        self.timeout_seconds = timeout_seconds
        self._opener = opener
        self._claim_wait_seconds = claim_wait_seconds
        self._claim_stale_seconds = claim_stale_seconds
        self._poll_interval = poll_interval
        self.downloads = 0

    @classmethod
    def from_config(cls, config: BotConfig, platform: PlatformSupport, **kwargs) -> "ArtifactCache":
        return cls(
            config.builds_dir,
            config.movies_dir,
            config.test_roms_dir,
            platform,
            hash_verification=config.hash_verification,
            timeout_seconds=config.http_timeout_seconds,
            **kwargs,
        )

    def ensure(self, kind: ArtifactKind, key: str, source_url: str) -> Path:
        """Return the local path for an artifact, downloading it if needed."""
        _check_key(key)
        if kind is ArtifactKind.BUILD:
            return self._ensure_build(key, source_url)
        directory = self.movies_dir if kind is ArtifactKind.MOVIE else self.test_roms_dir
        return self._ensure_file(directory, key.lower(), source_url, kind)

    def ensure_build(self, build: Build) -> Path:
        url = build.url_for(self.platform.name)
        if url is None:
            raise UnsupportedPlatformError(
                f"Build {build.build_id} has no download for {self.platform.name}"
            )
        return self.ensure(ArtifactKind.BUILD, str(build.build_id), url)

    def ensure_movie(self, sha256: str, url: str) -> Path:
        return self.ensure(ArtifactKind.MOVIE, sha256, url)

    def ensure_test_rom(self, sha256: str, url: str) -> Path:
        return self.ensure(ArtifactKind.TEST_ROM, sha256, url)

    def executable_path(self, build_id: int | str) -> Path:
        build_dir = self.builds_dir / str(build_id)
        found = self._find_executable(build_dir)
        if found is None:
            raise ExecutableNotFoundError(
                f"{self.platform.executable_name} not found under {build_dir}"
            )
        return found.resolve()

    def movie_path(self, sha256: str) -> Path:
        return (self.movies_dir / sha256.lower()).resolve()

    def test_rom_path(self, sha256: str) -> Path:
        return (self.test_roms_dir / sha256.lower()).resolve()

    def _find_executable(self, build_dir: Path) -> Path | None:
        if not build_dir.is_dir():
            return None
        matches = sorted(build_dir.rglob(self.platform.executable_name))
        if len(matches) > 1:
            LOGGER.warning("Multiple executables under %s; using %s", build_dir, matches[0])
        return matches[0] if matches else None

    def _ensure_build(self, key: str, url: str) -> Path:
        build_dir = self.builds_dir / key
        if self._find_executable(build_dir) is not None:
            return build_dir
        self.builds_dir.mkdir(parents=True, exist_ok=True)
        with self._claim(build_dir):
            if self._find_executable(build_dir) is not None:
                return build_dir
            LOGGER.info("Need to download build %s", key)
            archive = self._download(url, self.builds_dir)
            staging = self.builds_dir / f".{key}.staging-{uuid.uuid4().hex}"
            try:
                LOGGER.info("Download Completed, Extracting")
                self.platform.extract_archive(archive, staging)
                if self._find_executable(staging) is None:
                    raise ExecutableNotFoundError(
                        f"Build {key} archive does not contain {self.platform.executable_name}"
                    )
                if build_dir.exists():
                    shutil.rmtree(build_dir)
                staging.rename(build_dir)
            finally:
                archive.unlink(missing_ok=True)
                if staging.exists():
                    shutil.rmtree(staging, ignore_errors=True)
        return build_dir

    def _ensure_file(self, directory: Path, key: str, url: str, kind: ArtifactKind) -> Path:
        target = directory / key
        if target.is_file():
            return target
        directory.mkdir(parents=True, exist_ok=True)
        with self._claim(target):
            if target.is_file():
                return target
            LOGGER.info("Need to download %s %s", kind.value, key)
            temp_path = self._download(url, directory)
            try:
                self._verify_hash(temp_path, key)
                os.replace(temp_path, target)
            finally:
                temp_path.unlink(missing_ok=True)
            LOGGER.info("Download Completed, Saved %s", target)
        return target

    def _download(self, url: str, directory: Path) -> Path:
        fd, raw_path = tempfile.mkstemp(prefix=".download-", suffix=".part", dir=directory)
        temp_path = Path(raw_path)
        try:
            with os.fdopen(fd, "wb") as handle:
                with self._opener(url, timeout=self.timeout_seconds) as resp:
                    status = getattr(resp, "status", None) or resp.getcode()
                    if not 200 <= status < 300:
                        LOGGER.error("Download Failed %s %s", status, url)
                        raise DownloadError(url, status=status)
                    shutil.copyfileobj(resp, handle, _CHUNK_SIZE)
        except error.HTTPError as http_exc:
            temp_path.unlink(missing_ok=True)
            LOGGER.error("Download Failed %s %s", http_exc.code, http_exc.reason)
            raise DownloadError(url, status=http_exc.code) from http_exc
        except error.URLError as net_exc:
            temp_path.unlink(missing_ok=True)
            LOGGER.error("Download Failed %s: %s", url, net_exc.reason)
            raise DownloadError(url, reason=str(net_exc.reason)) from net_exc
        except BaseException:
            temp_path.unlink(missing_ok=True)
            raise
        self.downloads += 1
        return temp_path

    def _verify_hash(self, path: Path, expected: str) -> None:
        if self.hash_verification == "off":
            return
        digest = hashlib.sha256()
        with path.open("rb") as handle:
            for chunk in iter(lambda: handle.read(_CHUNK_SIZE), b""):
                digest.update(chunk)
        actual = digest.hexdigest()
        if actual == expected:
            return
        if self.hash_verification == "reject":
            LOGGER.error("Rejecting artifact %s: content hashed to %s", expected, actual)
            raise HashMismatchError(expected, actual)
        LOGGER.warning("Artifact %s content hashed to %s; keeping it", expected, actual)

    @contextmanager
    def _claim(self, target: Path) -> Iterator[None]:
        lock_path = target.with_name(target.name + ".lock")
        deadline = time.monotonic() + self._claim_wait_seconds
        while True:
            try:
                fd = os.open(lock_path, os.O_CREAT | os.O_EXCL | os.O_WRONLY)
            except FileExistsError:
                if self._claim_is_stale(lock_path):
                    LOGGER.warning("Removing stale claim %s", lock_path)
                    lock_path.unlink(missing_ok=True)
                    continue
                if time.monotonic() >= deadline:
                    raise BotError(f"Timed out waiting for claim on {target.name}")
                time.sleep(self._poll_interval)
                continue
            with os.fdopen(fd, "w") as handle:
                handle.write(str(os.getpid()))
            break
        try:
            yield
        finally:
            lock_path.unlink(missing_ok=True)

    def _claim_is_stale(self, lock_path: Path) -> bool:
        try:
            age = time.time() - lock_path.stat().st_mtime
        except FileNotFoundError:
            return False
        return age > self._claim_stale_seconds


def _check_key(key: str) -> None:
    if not key or key in {".", ".."} or "/" in key or "\\" in key:
        raise BotError(f"Invalid artifact key: {key!r}")
