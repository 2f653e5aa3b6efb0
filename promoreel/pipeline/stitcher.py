"""Export: concatenate the active clip of every ready shot into one file.

Uses the ffmpeg concat demuxer. Without ffmpeg (or when it fails) a
placeholder export is written instead and the attempt is still recorded,
with the reason attached as a warning.
"""

import asyncio
import logging
import subprocess
from pathlib import Path
from typing import Optional

from promoreel.errors import NoClipsAvailableError
from promoreel.providers.placeholders import PLACEHOLDER_EXPORT
from promoreel.schemas.project import ExportRecord, Project
from promoreel.services import media
from promoreel.services.file_manager import FileManager, atomic_write_bytes

logger = logging.getLogger(__name__)


def ready_clip_paths(project: Project) -> list[Path]:
    """Active clips of shots whose clip is ready, in shot order."""
    shots = sorted(project.shots, key=lambda shot: shot.order)
    return [
        Path(shot.clip_path)
        for shot in shots
        if shot.status.clip_status == "ready" and shot.clip_path is not None
    ]


async def export_project(
    project: Project,
    file_manager: FileManager,
    *,
    audio_path: Optional[Path] = None,
) -> ExportRecord:
    """Write ``exports/final_v{n}.mp4`` and append an ExportRecord.

    Args:
        project: Project to export; ``project.exports`` is appended to
        file_manager: Resolves the export path
        audio_path: Soundtrack to note on the record

    Raises:
        NoClipsAvailableError: No shot has a ready clip. Nothing is written.
    """
    clip_paths = ready_clip_paths(project)
    if not clip_paths:
        logger.error(f"Project {project.id}: no ready clips to export")
        raise NoClipsAvailableError("No clips available for export")

    output_path = file_manager.export_path(project.id, len(project.exports) + 1)
    logger.info(f"Project {project.id}: exporting {len(clip_paths)} clips to {output_path}")

    warning = None
    if media.ffmpeg_available():
        try:
            await asyncio.to_thread(media.concatenate, clip_paths, output_path)
        except subprocess.CalledProcessError as e:
            stderr = e.stderr.decode(errors="replace") if e.stderr else "No error output"
            logger.warning(f"Project {project.id}: ffmpeg concat failed: {stderr[:500]}")
            warning = "ffmpeg failed: wrote placeholder export"
    else:
        warning = "ffmpeg missing: wrote placeholder export"

    if warning is not None:
        atomic_write_bytes(output_path, PLACEHOLDER_EXPORT)
        logger.warning(f"Project {project.id}: {warning}")

    record = ExportRecord(
        path=output_path,
        audio_path=audio_path,
        clip_paths=clip_paths,
        warning=warning,
    )
    project.exports.append(record)
    return record
