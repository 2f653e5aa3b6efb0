"""Script stage: a pasted script or a brief sent to the text provider."""

import logging
from typing import Optional

from promoreel.providers.text import TextProvider
from promoreel.schemas.generation import GenerationRequest
from promoreel.schemas.project import Project
from promoreel.schemas.script import SCRIPT_SECTIONS, ProjectScript
from promoreel.services.file_manager import FileManager

logger = logging.getLogger(__name__)

DEFAULT_BRIEF = (
    "Introduce the product, highlight the problem, show the solution, and finish with a CTA."
)


def split_script_sections(raw: str) -> dict[str, str]:
    """Parse ``Label: text`` lines into the four sections.

    Labels are case-insensitive; unknown labels are ignored and missing
    sections stay empty.
    """
    sections = {name: "" for name in SCRIPT_SECTIONS}
    for line in raw.splitlines():
        label, sep, content = line.partition(":")
        if not sep:
            continue
        key = label.strip().lower()
        if key in sections:
            sections[key] = content.strip()
    return sections


async def generate_script(
    project: Project,
    text_provider: TextProvider,
    file_manager: FileManager,
    *,
    brief: Optional[str] = None,
    raw_script: Optional[str] = None,
) -> ProjectScript:
    """Fill ``project.script``.

    A ``raw_script`` is split locally and never reaches a backend.
    """
    if raw_script:
        project.script = ProjectScript(raw=raw_script, sections=split_script_sections(raw_script))
        logger.info(f"Project {project.id}: using supplied script")
        return project.script

    request = GenerationRequest(
        prompt=brief or DEFAULT_BRIEF,
        output_path=file_manager.script_path(project.id),
    )
    result = await text_provider.generate(request)
    script = result.script
    project.script = ProjectScript(
        raw=script.as_raw(),
        sections=script.model_dump(),
        provider=result.provider_used,
        model=result.model_used,
        error=result.error,
    )
    logger.info(f"Project {project.id}: script generated by {result.provider_used}")
    return project.script
