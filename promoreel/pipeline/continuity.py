"""Continuity engine: which frames seed each shot's clip.

Modes:
- independent: every clip starts from its own keyframe.
- last_frame: a clip starts from the predecessor's extracted last frame
  (or its keyframe when no clip has been made yet).
- bridging: a clip starts from its own keyframe and targets the
  predecessor's last frame as its end frame. Needs a backend with
  first + last frame support; otherwise it runs as last_frame.

The first shot always starts from its own keyframe with no end target.
"""

import asyncio
import logging
import subprocess
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Optional

from promoreel.errors import ResourceMissingError
from promoreel.providers.placeholders import write_placeholder_png
from promoreel.schemas.project import Shot
from promoreel.services import media

logger = logging.getLogger(__name__)


class ContinuityMode(str, Enum):
    INDEPENDENT = "independent"
    LAST_FRAME = "last_frame"
    BRIDGING = "bridging"


_MODE_ALIASES = {
    "independent": ContinuityMode.INDEPENDENT,
    "last_frame": ContinuityMode.LAST_FRAME,
    "last-frame": ContinuityMode.LAST_FRAME,
    "maintain": ContinuityMode.LAST_FRAME,
    "bridging": ContinuityMode.BRIDGING,
}


def normalize_mode(value: str | ContinuityMode) -> ContinuityMode:
    """Map a configured mode (or alias) onto ContinuityMode.

    Raises:
        ValueError: Unrecognised mode.
    """
    if isinstance(value, ContinuityMode):
        return value
    try:
        return _MODE_ALIASES[str(value).strip().lower()]
    except KeyError:
        raise ValueError(
            f"Unknown continuity mode {value!r}; expected one of {', '.join(_MODE_ALIASES)}"
        ) from None


@dataclass(frozen=True)
class FrameResolution:
    """Frames chosen for one clip and the mode that actually applied."""

    first_frame_path: Path
    target_last_frame_path: Optional[Path]
    mode: ContinuityMode
    requested_mode: ContinuityMode
    prev_last_frame_path: Optional[Path] = None

    @property
    def degraded(self) -> bool:
        return self.mode is not self.requested_mode


def _require_frame(path: Optional[Path], description: str) -> Path:
    if path is None:
        raise ResourceMissingError(f"{description} has not been generated")
    if not Path(path).exists():
        raise ResourceMissingError(f"{description} not found: {path}")
    return Path(path)


def predecessor_frame(previous: Shot) -> Path:
    """The predecessor's current last frame, else its keyframe."""
    if previous.continuity.last_frame_path is not None:
        return _require_frame(
            previous.continuity.last_frame_path, f"Last frame of shot {previous.id}"
        )
    return _require_frame(previous.keyframe_image_path, f"Keyframe of shot {previous.id}")


def resolve_frames(
    shot: Shot,
    previous: Optional[Shot],
    mode: str | ContinuityMode,
    *,
    supports_first_last: bool,
) -> FrameResolution:
    """Pick the seed frame(s) for ``shot``'s clip.

    Args:
        shot: Shot about to get a clip.
        previous: Preceding shot in order, or None for the first shot.
        mode: Project continuity mode (aliases accepted).
        supports_first_last: Whether the video backend that will run accepts
            a target end frame.

    Raises:
        ResourceMissingError: A frame the mode needs does not exist.
    """
    requested = normalize_mode(mode)

    if previous is None or requested is ContinuityMode.INDEPENDENT:
        own = _require_frame(shot.keyframe_image_path, f"Keyframe of shot {shot.id}")
        return FrameResolution(own, None, requested, requested)

    anchor = predecessor_frame(previous)
    prev_last = previous.continuity.last_frame_path

    if requested is ContinuityMode.BRIDGING:
        if supports_first_last:
            own = _require_frame(shot.keyframe_image_path, f"Keyframe of shot {shot.id}")
            return FrameResolution(own, anchor, requested, requested, prev_last)
        logger.info(
            f"Shot {shot.id}: video backend has no first/last frame support, "
            f"bridging runs as last_frame"
        )

    return FrameResolution(anchor, None, ContinuityMode.LAST_FRAME, requested, prev_last)


def _extract_or_placeholder(clip_path: Path, frame_path: Path) -> Path:
    if media.ffmpeg_available() and Path(clip_path).exists():
        try:
            return media.extract_last_frame(clip_path, frame_path)
        except subprocess.CalledProcessError as e:
            stderr = e.stderr.decode(errors="replace") if e.stderr else "No error output"
            logger.warning(f"Last frame extraction failed for {clip_path}: {stderr[:300]}")
    return write_placeholder_png(frame_path)


async def store_last_frame(shot: Shot, clip_path: Path, frame_path: Path) -> Path:
    """Extract the clip's final frame to ``frame_path`` and point the shot at it.

    ``frame_path`` is per clip version, so repeating this for a version
    overwrites the same file and the same pointer.
    """
    path = await asyncio.to_thread(_extract_or_placeholder, Path(clip_path), Path(frame_path))
    shot.continuity.last_frame_path = path
    return path
