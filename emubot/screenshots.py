"""Turn the emulator's raw framebuffer dumps into upright PNGs."""
from __future__ import annotations

import io
import logging
import re
from pathlib import Path
from typing import List

from PIL import Image

from emubot.models import ScreenshotPair

LOGGER = logging.getLogger(__name__)

TEST_TOP_NAME = "screenshot_top.bmp"
TEST_BOTTOM_NAME = "screenshot_bottom.bmp"
_FRAME_TOP = re.compile(r"^screenshot_(\d+)_top\.bmp$")


def normalize(raw_frame_path: Path) -> bytes:
    """Rotate a framebuffer dump 270 degrees and encode it as a PNG.

    The dump is stored in the console's native orientation, which is sideways.
    A 270 degree clockwise turn is a quarter turn counter-clockwise.
    """
    with Image.open(raw_frame_path) as image:
        rotated = image.transpose(Image.Transpose.ROTATE_90)
    if rotated.mode != "RGB":
        rotated = rotated.convert("RGB")
    output = io.BytesIO()
    rotated.save(output, format="PNG", optimize=True, compress_level=9)
    return output.getvalue()


def normalize_optional(raw_frame_path: Path) -> bytes | None:
    """Like normalize, but a missing or unreadable dump yields None."""
    if not raw_frame_path.is_file():
        LOGGER.info("No screenshot at %s", raw_frame_path)
        return None
    try:
        return normalize(raw_frame_path)
    except OSError as exc:
        LOGGER.error("Skipping unreadable screenshot %s: %s", raw_frame_path, exc)
        return None


def collect_test_screenshots(scratch_dir: Path) -> List[ScreenshotPair]:
    top = normalize_optional(scratch_dir / TEST_TOP_NAME)
    bottom = normalize_optional(scratch_dir / TEST_BOTTOM_NAME)
    if top is None and bottom is None:
        return []
    return [ScreenshotPair(top=top, bottom=bottom)]


def collect_frame_screenshots(scratch_dir: Path) -> List[ScreenshotPair]:
    """Gather screenshot_<frame>_top.bmp / _bottom.bmp pairs in frame order.

    A frame whose top dump cannot be decoded is dropped; the others are kept.
    """
    frames: list[tuple[int, Path]] = []
    for path in scratch_dir.glob("screenshot_*_top.bmp"):
        match = _FRAME_TOP.match(path.name)
        if match:
            frames.append((int(match.group(1)), path))
    pairs: List[ScreenshotPair] = []
    for frame, top_path in sorted(frames):
        top = normalize_optional(top_path)
        if top is None:
            continue
        bottom_path = top_path.with_name(top_path.name.replace("_top.bmp", "_bottom.bmp"))
        pairs.append(
            ScreenshotPair(top=top, bottom=normalize_optional(bottom_path), frame_number=frame)
        )
    LOGGER.info("Collected %d screenshot frames", len(pairs))
    return pairs
