"""Storyboard stage: one shot per script section.

Deterministic: the same script, target duration and pipeline settings
always give the same shots.
"""

import logging
import math

from promoreel.config import PipelineConfig
from promoreel.schemas.project import Project, Shot
from promoreel.schemas.script import SCRIPT_SECTIONS

logger = logging.getLogger(__name__)

SECTION_FALLBACKS = {
    "hook": "Open with the hook.",
    "problem": "Highlight the problem.",
    "solution": "Show the solution.",
    "cta": "Close with the CTA.",
}

MIN_SHOT_SECONDS = 2


def shot_duration(target_duration: int, shot_count: int = len(SCRIPT_SECTIONS)) -> int:
    """Even split of the target duration, rounded half up, at least 2 seconds."""
    return max(MIN_SHOT_SECONDS, math.floor(target_duration / shot_count + 0.5))


def build_storyboard(project: Project, pipeline: PipelineConfig) -> list[Shot]:
    """Replace ``project.shots`` with a fresh storyboard from the script."""
    sections = project.script.sections
    duration = shot_duration(project.target_duration or pipeline.default_target_duration)

    shots = []
    for index, section in enumerate(SCRIPT_SECTIONS):
        text = (sections.get(section) or "").strip() or SECTION_FALLBACKS[section]
        shots.append(
            Shot(
                id=f"{section}-{index + 1}",
                order=index + 1,
                duration_sec=duration,
                keyframe_prompt=f"{text} {pipeline.house_style}",
                negative_prompt=pipeline.negative_prompt,
                video_prompt=f"{text} {pipeline.video_house_style}",
                video_negative_prompt=pipeline.video_negative_prompt,
                on_screen_text=text,
                camera_notes=pipeline.camera_notes,
            )
        )

    project.shots = shots
    logger.info(f"Project {project.id}: storyboard with {len(shots)} shots of {duration}s")
    return shots
