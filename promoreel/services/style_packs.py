"""Style pack processing: sample reference frames from example videos.

Frames are taken at fixed fractions of each video's duration, scored on
sharpness and contrast, and summarised into a one-line visual style prompt
that keyframe generation appends to every shot.
"""

import asyncio
import logging
import subprocess
from pathlib import Path
from statistics import fmean
from typing import Iterable, Optional

from promoreel.errors import ResourceMissingError
from promoreel.providers.placeholders import write_placeholder_png
from promoreel.schemas.style_pack import SourceVideo, StylePack, StyleRef, StyleSummary
from promoreel.services import media
from promoreel.services.file_manager import FileManager
from promoreel.services.image_analysis import score_image

logger = logging.getLogger(__name__)

SAMPLE_FRACTIONS = (0.0, 0.25, 0.5, 0.75, 0.9)
FALLBACK_OFFSETS = (0.0, 1.0, 2.0, 3.0, 4.0)
SUMMARY_REF_COUNT = 3
SUMMARY_PALETTE_SIZE = 5


def sample_offsets(duration: Optional[float]) -> list[float]:
    if duration:
        return [duration * fraction for fraction in SAMPLE_FRACTIONS]
    return list(FALLBACK_OFFSETS)


def extract_reference_frames(video_path: Path, output_dir: Path) -> list[Path]:
    """Write one PNG per sample offset; placeholders stand in for failures."""
    video_path = Path(video_path)
    stem = video_path.stem
    targets = [output_dir / f"{stem}_ref_{i + 1}.png" for i in range(len(SAMPLE_FRACTIONS))]

    if not media.ffmpeg_available():
        logger.warning(f"ffmpeg missing: placeholder reference frames for {video_path.name}")
        return [write_placeholder_png(target) for target in targets]

    offsets = sample_offsets(media.probe_duration(video_path))
    frames = []
    for offset, target in zip(offsets, targets):
        try:
            frames.append(media.extract_frame(video_path, offset, target))
        except subprocess.CalledProcessError as e:
            logger.warning(f"Frame at {offset:.2f}s of {video_path.name} failed: {e}")
            frames.append(write_placeholder_png(target))
    return frames


def score_reference(frame_path: Path, source: Path) -> StyleRef:
    image_score = score_image(frame_path)
    return StyleRef(
        path=frame_path,
        source=source,
        brightness=image_score.brightness,
        contrast=image_score.contrast,
        sharpness=image_score.sharpness,
        palette=image_score.palette,
        score=image_score.sharpness + image_score.contrast,
    )


def summarize_refs(refs: list[StyleRef]) -> StyleSummary:
    """Average brightness/contrast over all refs, palette from the best three."""
    if not refs:
        return StyleSummary()
    ranked = sorted(refs, key=lambda ref: ref.score, reverse=True)
    palette = [color for ref in ranked[:SUMMARY_REF_COUNT] for color in ref.palette]
    summary = StyleSummary(
        brightness=fmean(ref.brightness for ref in refs),
        contrast=fmean(ref.contrast for ref in refs),
        palette=palette[:SUMMARY_PALETTE_SIZE],
    )
    if refs[0].source is not None:
        meta = media.probe_metadata(refs[0].source)
        summary.fps = meta["fps"]
        summary.aspect_ratio = meta["aspect_ratio"]
    return summary


def build_style_spine(summary: StyleSummary) -> str:
    palette = ", ".join(summary.palette[:3]) if summary.palette else "neutral tones"
    brightness = round(summary.brightness) if summary.brightness else 120
    contrast = round(summary.contrast) if summary.contrast else 30
    return (
        f"Visual style: {palette} palette, brightness around {brightness}, "
        f"contrast around {contrast}, cinematic framing, polished marketing tone."
    )


def select_style_refs(pack: Optional[StylePack], count: int = 3) -> list[StyleRef]:
    if pack is None or not pack.extracted_ref_images:
        return []
    return sorted(pack.extracted_ref_images, key=lambda ref: ref.score, reverse=True)[:count]


def _process_sync(pack: StylePack, video_paths: list[Path], file_manager: FileManager) -> StylePack:
    refs_dir = file_manager.stylepack_refs_dir(pack.pack_id)

    added = []
    for source in video_paths:
        stored = file_manager.import_stylepack_video(pack.pack_id, source)
        added.append(SourceVideo(filename=stored.name, path=stored))
    pack.source_videos = [*pack.source_videos, *added]

    refs = []
    for video in added:
        for frame in extract_reference_frames(video.path, refs_dir):
            refs.append(score_reference(frame, video.path))

    pack.metadata_summary = summarize_refs(refs)
    pack.extracted_ref_images = sorted(refs, key=lambda ref: ref.score, reverse=True)
    pack.prompt_spine = pack.prompt_spine or build_style_spine(pack.metadata_summary)
    logger.info(
        f"Style pack {pack.pack_id}: {len(added)} video(s), {len(refs)} reference frame(s)"
    )
    return pack


async def process_style_pack_videos(
    pack: StylePack,
    video_paths: Iterable[Path],
    file_manager: Optional[FileManager] = None,
) -> StylePack:
    """Import server-side videos into ``pack`` and rebuild its references.

    The reference set and summary are rebuilt from the videos in this call;
    an existing ``prompt_spine`` is kept.
    """
    file_manager = file_manager or FileManager()
    paths = [Path(p) for p in video_paths]
    missing = [p for p in paths if not p.exists()]
    if missing:
        raise ResourceMissingError(f"Video not found: {missing[0]}")
    return await asyncio.to_thread(_process_sync, pack, paths, file_manager)
