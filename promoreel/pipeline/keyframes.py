"""Keyframe stage: one image per shot, conditioned on brand and style pack.

Every keyframe prompt carries the same spine (brand voice, colors and the
style pack's visual summary), and the style pack's best reference frames
are passed as reference images.
"""

import logging
from pathlib import Path
from typing import Optional

from promoreel.providers.image import ImageProvider
from promoreel.schemas.generation import MAX_REFERENCE_IMAGES, GenerationRequest
from promoreel.schemas.project import Project, VersionEntry
from promoreel.schemas.style_pack import StylePack
from promoreel.pipeline.versions import mark_failed, next_version, record_version
from promoreel.services.file_manager import FileManager
from promoreel.services.style_packs import select_style_refs

logger = logging.getLogger(__name__)


def build_prompt_spine(project: Project, style_pack: Optional[StylePack]) -> str:
    brand = project.brand_kit
    voice = brand.brand_voice
    voice_text = (
        f"Voice: playful {voice.playful}, luxury {voice.luxury}, minimal {voice.minimal}."
    )
    colors = ", ".join(brand.colors)
    color_text = f"Brand colors: {colors}." if colors else "Brand colors: none."
    if style_pack is not None and style_pack.prompt_spine:
        style_text = f"Style Pack: {style_pack.prompt_spine}"
    else:
        style_text = "Style Pack: none."
    return f"{voice_text} {color_text} {style_text}".strip()


def cache_style_refs(
    project: Project,
    style_pack: Optional[StylePack],
    file_manager: FileManager,
    count: int = MAX_REFERENCE_IMAGES,
) -> list[Path]:
    """Copy the pack's top-scored refs into the project and return the copies.

    Refs whose source file is gone are skipped.
    """
    refs = select_style_refs(style_pack, min(count, MAX_REFERENCE_IMAGES))
    cached = []
    for ref in refs:
        if not Path(ref.path).exists():
            logger.warning(f"Style ref missing, skipped: {ref.path}")
            continue
        cached.append(file_manager.cache_style_ref(project.id, Path(ref.path)))
    return cached


async def generate_keyframe(
    project: Project,
    index: int,
    image_provider: ImageProvider,
    file_manager: FileManager,
    *,
    spine: str,
    reference_images: list[Path],
) -> VersionEntry:
    """Generate a new keyframe version for ``project.shots[index]``.

    A failure marks the shot's keyframe as failed before propagating.
    """
    shot = project.shots[index]
    version = next_version(shot, "keyframe")
    request = GenerationRequest(
        prompt=f"{shot.keyframe_prompt}\n{spine}",
        negative_prompt=shot.negative_prompt or None,
        output_path=file_manager.keyframe_path(project.id, shot.id, version),
        reference_images=tuple(reference_images),
        aspect_ratio=project.aspect_ratio,
    )
    try:
        result = await image_provider.generate(request)
    except Exception as e:
        mark_failed(shot, "keyframe", str(e))
        raise
    entry = record_version(shot, "keyframe", version, result)
    logger.info(
        f"Shot {shot.id}: keyframe v{version} via {result.provider_used}"
        + (" (fallback)" if result.fallback_used else "")
    )
    return entry


async def generate_keyframes(
    project: Project,
    image_provider: ImageProvider,
    file_manager: FileManager,
    style_pack: Optional[StylePack] = None,
    *,
    ref_count: int = MAX_REFERENCE_IMAGES,
) -> list[VersionEntry]:
    """New keyframe version for every shot, in shot order."""
    spine = build_prompt_spine(project, style_pack)
    refs = cache_style_refs(project, style_pack, file_manager, ref_count)

    entries = []
    for index in range(len(project.shots)):
        entries.append(
            await generate_keyframe(
                project,
                index,
                image_provider,
                file_manager,
                spine=spine,
                reference_images=refs,
            )
        )
    return entries
