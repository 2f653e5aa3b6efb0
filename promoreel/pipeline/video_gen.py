"""Clip stage: one video per shot, seeded by the continuity engine.

Shots run strictly in order; shot i reads shot i-1's last frame as it is
at the moment shot i starts, so a regenerated or rolled-back predecessor is
always picked up.
"""

import logging
from pathlib import Path
from typing import Optional

from promoreel.pipeline.continuity import ContinuityMode, resolve_frames, store_last_frame
from promoreel.pipeline.versions import mark_failed, next_version, record_version
from promoreel.providers.video import VideoProvider
from promoreel.schemas.generation import GenerationRequest
from promoreel.schemas.project import Project, VersionEntry
from promoreel.services.file_manager import FileManager

logger = logging.getLogger(__name__)


def _path_str(path: Optional[Path]) -> Optional[str]:
    return str(path) if path is not None else None


async def generate_clip(
    project: Project,
    index: int,
    video_provider: VideoProvider,
    file_manager: FileManager,
    *,
    spine: str,
    reference_images: list[Path] | None = None,
) -> VersionEntry:
    """Generate a new clip version for ``project.shots[index]``.

    A failure marks the shot's clip as failed before propagating.

    Raises:
        ResourceMissingError: A frame the continuity mode needs is missing.
    """
    try:
        return await _generate_clip(
            project,
            index,
            video_provider,
            file_manager,
            spine=spine,
            reference_images=reference_images,
        )
    except Exception as e:
        mark_failed(project.shots[index], "clip", str(e))
        raise


async def _generate_clip(
    project: Project,
    index: int,
    video_provider: VideoProvider,
    file_manager: FileManager,
    *,
    spine: str,
    reference_images: list[Path] | None = None,
) -> VersionEntry:
    shot = project.shots[index]
    previous = project.shots[index - 1] if index > 0 else None
    frames = resolve_frames(
        shot,
        previous,
        project.continuity_mode,
        supports_first_last=video_provider.supports_first_last(),
    )
    if frames.degraded:
        logger.warning(
            f"Shot {shot.id}: continuity {frames.requested_mode.value} "
            f"ran as {frames.mode.value}"
        )

    version = next_version(shot, "clip")
    request = GenerationRequest(
        prompt=f"{shot.video_prompt}\n{spine}",
        negative_prompt=shot.video_negative_prompt or None,
        output_path=file_manager.clip_path(project.id, shot.id, version),
        reference_images=tuple(reference_images or ()),
        first_frame_path=frames.first_frame_path,
        last_frame_path=frames.target_last_frame_path,
        aspect_ratio=project.aspect_ratio,
        duration_sec=shot.duration_sec,
        params={"continuity_mode": frames.mode.value},
    )
    result = await video_provider.generate(request)
    mode = ContinuityMode(result.params.get("continuity_mode", frames.mode.value))
    if mode is not frames.mode:
        logger.warning(
            f"Shot {shot.id}: {result.provider_used} ran {frames.mode.value} as {mode.value}"
        )

    last_frame = await store_last_frame(
        shot, result.asset_path, file_manager.last_frame_path(project.id, shot.id, version)
    )
    if mode is ContinuityMode.INDEPENDENT:
        shot.continuity.prev_last_frame_path = None
    else:
        shot.continuity.prev_last_frame_path = frames.prev_last_frame_path

    entry = record_version(
        shot,
        "clip",
        version,
        result,
        last_frame_path=last_frame,
        settings={
            "continuity_mode": mode.value,
            "requested_continuity_mode": frames.requested_mode.value,
            "first_frame_path": _path_str(result.first_frame_path),
            "target_last_frame_path": _path_str(result.last_frame_path),
        },
    )
    logger.info(
        f"Shot {shot.id}: clip v{version} via {result.provider_used}"
        + (" (fallback)" if result.fallback_used else "")
    )
    return entry


async def generate_clips(
    project: Project,
    video_provider: VideoProvider,
    file_manager: FileManager,
    *,
    spine: str,
    reference_images: list[Path] | None = None,
) -> list[VersionEntry]:
    """New clip version for every shot, strictly in shot order."""
    entries = []
    for index in range(len(project.shots)):
        entries.append(
            await generate_clip(
                project,
                index,
                video_provider,
                file_manager,
                spine=spine,
                reference_images=reference_images,
            )
        )
    return entries
