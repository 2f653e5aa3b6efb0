"""ffmpeg/ffprobe wrappers.

Both tools are optional and detected at runtime. Every function here is
synchronous (subprocess); async callers run them with ``asyncio.to_thread``.
Failures raise ``subprocess.CalledProcessError`` and callers decide how to
degrade.
"""

import json
import logging
import os
import shutil
import subprocess
from pathlib import Path
from typing import Optional

from promoreel.services.file_manager import temp_path_for

logger = logging.getLogger(__name__)


def ffmpeg_available() -> bool:
    return shutil.which("ffmpeg") is not None


def ffprobe_available() -> bool:
    return shutil.which("ffprobe") is not None


def _run(args: list[str]) -> subprocess.CompletedProcess:
    return subprocess.run(args, check=True, capture_output=True)


def _ffmpeg_to(output_path: Path, args: list[str]) -> Path:
    """Run ffmpeg writing to a temp file beside ``output_path``, then move it in place."""
    output_path = Path(output_path)
    tmp_path = temp_path_for(output_path)
    try:
        _run(["ffmpeg", "-y", *args, str(tmp_path)])
        os.replace(tmp_path, output_path)
    finally:
        tmp_path.unlink(missing_ok=True)
    return output_path


def extract_frame(video_path: Path, offset_sec: float, output_path: Path) -> Path:
    """Grab the frame ``offset_sec`` seconds into ``video_path`` as an image."""
    return _ffmpeg_to(
        output_path,
        ["-ss", f"{offset_sec}", "-i", str(video_path), "-vframes", "1"],
    )


def extract_last_frame(video_path: Path, output_path: Path) -> Path:
    """Grab the final frame of ``video_path`` (seeking 0.1s before the end)."""
    return _ffmpeg_to(
        output_path,
        ["-sseof", "-0.1", "-i", str(video_path), "-vframes", "1"],
    )


def loop_image_to_clip(image_path: Path, output_path: Path, duration_sec: float) -> Path:
    """Render a still image as a silent clip of ``duration_sec`` seconds."""
    return _ffmpeg_to(
        output_path,
        [
            "-loop", "1",
            "-i", str(image_path),
            "-t", f"{duration_sec}",
            # libx264 needs even dimensions
            "-vf", "scale=trunc(iw/2)*2:trunc(ih/2)*2",
            "-pix_fmt", "yuv420p",
        ],
    )


def concatenate(clip_paths: list[Path], output_path: Path) -> Path:
    """Join clips with the concat demuxer (stream copy, hard cuts).

    Args:
        clip_paths: Clips in playback order
        output_path: Destination of the joined video

    Returns:
        output_path
    """
    output_path = Path(output_path)
    list_file = temp_path_for(output_path.with_suffix(".txt"))

    try:
        with open(list_file, "w") as f:
            for clip_path in clip_paths:
                # -safe 0 below allows absolute paths
                f.write(f"file '{Path(clip_path).resolve()}'\n")

        _ffmpeg_to(
            output_path,
            ["-f", "concat", "-safe", "0", "-i", str(list_file), "-c", "copy"],
        )
        logger.info(f"Concatenated {len(clip_paths)} clips -> {output_path}")
    finally:
        list_file.unlink(missing_ok=True)

    return output_path


def probe_duration(video_path: Path) -> Optional[float]:
    """Container duration in seconds, or None when unknown."""
    if not ffprobe_available():
        return None
    try:
        result = _run([
            "ffprobe", "-v", "error",
            "-show_entries", "format=duration",
            "-of", "json",
            str(video_path),
        ])
        return float(json.loads(result.stdout)["format"]["duration"])
    except (subprocess.CalledProcessError, KeyError, ValueError, TypeError) as e:
        logger.warning(f"ffprobe could not read duration of {video_path}: {e}")
        return None


def probe_metadata(video_path: Path) -> dict[str, Optional[float | str]]:
    """Frame rate and aspect ratio (``"W:H"``) of the first video stream."""
    empty: dict[str, Optional[float | str]] = {"fps": None, "aspect_ratio": None}
    if not ffprobe_available():
        return empty
    try:
        result = _run([
            "ffprobe", "-v", "error",
            "-select_streams", "v:0",
            "-show_entries", "stream=width,height,r_frame_rate",
            "-of", "json",
            str(video_path),
        ])
        streams = json.loads(result.stdout).get("streams") or []
    except (subprocess.CalledProcessError, ValueError) as e:
        logger.warning(f"ffprobe could not read metadata of {video_path}: {e}")
        return empty
    if not streams:
        return empty

    stream = streams[0]
    num, _, den = (stream.get("r_frame_rate") or "0/1").partition("/")
    try:
        fps = round(float(num) / float(den), 2) if float(den or 0) else None
    except ValueError:
        fps = None
    width, height = stream.get("width"), stream.get("height")
    aspect_ratio = f"{width}:{height}" if width and height else None
    return {"fps": fps, "aspect_ratio": aspect_ratio}
