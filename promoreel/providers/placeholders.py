"""Synthetic stand-in assets used when no backend can deliver.

Every function here succeeds for any writable destination.
"""

import io
import json
import logging
import subprocess
from pathlib import Path
from typing import Optional

from PIL import Image

from promoreel.schemas.script import ScriptSections
from promoreel.services import media
from promoreel.services.file_manager import atomic_write_bytes

logger = logging.getLogger(__name__)

PLACEHOLDER_NAME = "placeholder"


def _render_png(size: tuple[int, int] = (1, 1)) -> bytes:
    buffer = io.BytesIO()
    Image.new("RGB", size, (128, 128, 128)).save(buffer, format="PNG")
    return buffer.getvalue()


# 1x1 opaque grey PNG
PLACEHOLDER_PNG = _render_png()
PLACEHOLDER_CLIP = b"placeholder clip"
PLACEHOLDER_EXPORT = b"export placeholder"


def write_placeholder_png(path: Path) -> Path:
    return atomic_write_bytes(path, PLACEHOLDER_PNG)


def write_placeholder_clip(
    path: Path, first_frame: Optional[Path] = None, duration_sec: float = 3
) -> Path:
    """Loop ``first_frame`` into a short clip, or write a marker file.

    The marker file is used when ffmpeg is missing, there is no first
    frame, or ffmpeg fails on it.
    """
    if first_frame is not None and Path(first_frame).exists() and media.ffmpeg_available():
        try:
            return media.loop_image_to_clip(Path(first_frame), Path(path), duration_sec)
        except subprocess.CalledProcessError as e:
            stderr = e.stderr.decode(errors="replace") if e.stderr else "No error output"
            logger.warning(f"ffmpeg could not loop {first_frame}: {stderr[:300]}")
    return atomic_write_bytes(path, PLACEHOLDER_CLIP)


def placeholder_script(brief: str) -> ScriptSections:
    """Generic four-part script that still mentions the brief."""
    brief = " ".join(brief.split())
    summary = brief[:100] + ("..." if len(brief) > 100 else "")
    return ScriptSections(
        hook="Tired of the same old problems? There's a better way.",
        problem=(
            "We know how frustrating it can be when things don't work the way you "
            "need them to. You've tried everything, but nothing seems to stick."
        ),
        solution=f"That's why we created something different. {summary}".strip(),
        cta="Ready to make a change? Get started today and see the difference for yourself.",
    )


def write_script_json(path: Path, script: ScriptSections) -> Path:
    return atomic_write_bytes(path, json.dumps(script.model_dump(), indent=2).encode("utf-8"))
