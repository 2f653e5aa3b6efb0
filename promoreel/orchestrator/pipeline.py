"""Pipeline orchestrator: stage execution, regenerate and rollback.

Coordinates the shot pipeline with:
- Per-stage entry points (script, storyboard, keyframes, clips, export)
- A full run that resumes from the first stage without durable output
- Single-shot regenerate and rollback
- Per-stage timing and logging
- Project persisted after every stage, including failures
"""

import logging
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Awaitable, Callable, Optional, TypeVar

from promoreel.config import Settings, settings as default_settings
from promoreel.errors import ShotNotFoundError
from promoreel.orchestrator.state import STEP_TRANSITIONS, completed_steps, get_resume_step
from promoreel.pipeline.keyframes import build_prompt_spine, cache_style_refs, generate_keyframe, generate_keyframes
from promoreel.pipeline.script import generate_script
from promoreel.pipeline.storyboard import build_storyboard
from promoreel.pipeline.stitcher import export_project
from promoreel.pipeline.versions import rollback
from promoreel.pipeline.video_gen import generate_clip, generate_clips
from promoreel.providers import ProviderSet, build_providers
from promoreel.schemas.project import AssetKind, BrandKit, ExportRecord, Project, Shot
from promoreel.schemas.script import ProjectScript
from promoreel.schemas.style_pack import StylePack
from promoreel.services.costs import CostLedger, default_ledger
from promoreel.services.file_manager import FileManager
from promoreel.services.project_store import ProjectStore, StylePackStore

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass
class PipelineContext:
    """Collaborators shared by every stage."""

    store: ProjectStore
    style_packs: StylePackStore
    providers: ProviderSet
    file_manager: FileManager
    settings: Settings = field(default_factory=lambda: default_settings)
    ledger: CostLedger = field(default_factory=lambda: default_ledger)

    @classmethod
    def create(
        cls,
        settings: Optional[Settings] = None,
        ledger: Optional[CostLedger] = None,
        session_factory=None,
    ) -> "PipelineContext":
        settings = settings or default_settings
        ledger = ledger if ledger is not None else default_ledger
        file_manager = FileManager(settings.storage.data_dir)
        return cls(
            store=ProjectStore(session_factory, file_manager, settings),
            style_packs=StylePackStore(session_factory, file_manager),
            providers=build_providers(settings, ledger),
            file_manager=file_manager,
            settings=settings,
            ledger=ledger,
        )


async def _run_stage(
    ctx: PipelineContext,
    project: Project,
    status: str,
    stage: Callable[[], Awaitable[T]],
) -> T:
    """Run one stage with status bookkeeping; persist on success and failure."""
    project.status = status
    project.error_message = None
    await ctx.store.save(project)

    start = time.monotonic()
    try:
        result = await stage()
    except Exception as e:
        project.status = "failed"
        project.error_message = f"{status}: {e}"
        logger.error(f"Project {project.id}: {status} failed: {type(e).__name__}: {e}")
        await ctx.store.save(project)
        raise

    project.status = STEP_TRANSITIONS.get(status, project.status)
    await ctx.store.save(project)
    logger.info(f"Project {project.id}: {status} finished in {time.monotonic() - start:.1f}s")
    return result


async def _style_pack(ctx: PipelineContext, project: Project) -> Optional[StylePack]:
    if not project.selected_style_pack_id:
        return None
    pack = await ctx.style_packs.load(project.selected_style_pack_id)
    if pack is None:
        logger.warning(
            f"Project {project.id}: style pack {project.selected_style_pack_id} not found, ignoring"
        )
    return pack


def _find_shot(project: Project, shot_id: str) -> tuple[int, Shot]:
    index = project.shot_index(shot_id)
    if index is None:
        raise ShotNotFoundError(f"Project {project.id} has no shot {shot_id}")
    return index, project.shots[index]


# ---------------------------------------------------------------------------
# Stages
# ---------------------------------------------------------------------------
async def run_script_stage(
    ctx: PipelineContext,
    project_id: str,
    *,
    brief: Optional[str] = None,
    raw_script: Optional[str] = None,
) -> ProjectScript:
    project = await ctx.store.get(project_id)
    return await _run_stage(
        ctx,
        project,
        "scripting",
        lambda: generate_script(
            project,
            ctx.providers.text,
            ctx.file_manager,
            brief=brief,
            raw_script=raw_script,
        ),
    )


async def run_storyboard_stage(ctx: PipelineContext, project_id: str) -> list[Shot]:
    project = await ctx.store.get(project_id)

    async def stage():
        return build_storyboard(project, ctx.settings.pipeline)

    return await _run_stage(ctx, project, "storyboarding", stage)


async def run_keyframe_stage(ctx: PipelineContext, project_id: str) -> list[Shot]:
    project = await ctx.store.get(project_id)
    ctx.store.ensure_directories(project.id)
    style_pack = await _style_pack(ctx, project)

    async def stage():
        await generate_keyframes(
            project,
            ctx.providers.image,
            ctx.file_manager,
            style_pack,
            ref_count=ctx.settings.pipeline.style_ref_count,
        )
        return project.shots

    return await _run_stage(ctx, project, "keyframing", stage)


async def run_clip_stage(ctx: PipelineContext, project_id: str) -> list[Shot]:
    project = await ctx.store.get(project_id)
    ctx.store.ensure_directories(project.id)
    style_pack = await _style_pack(ctx, project)

    async def stage():
        refs = cache_style_refs(
            project, style_pack, ctx.file_manager, ctx.settings.pipeline.style_ref_count
        )
        await generate_clips(
            project,
            ctx.providers.video,
            ctx.file_manager,
            spine=build_prompt_spine(project, style_pack),
            reference_images=refs,
        )
        return project.shots

    return await _run_stage(ctx, project, "video_gen", stage)


async def run_export_stage(
    ctx: PipelineContext,
    project_id: str,
    *,
    audio_path: Optional[Path] = None,
) -> ExportRecord:
    project = await ctx.store.get(project_id)
    ctx.store.ensure_directories(project.id)
    return await _run_stage(
        ctx,
        project,
        "exporting",
        lambda: export_project(project, ctx.file_manager, audio_path=audio_path),
    )


async def run_pipeline(
    ctx: PipelineContext,
    project_id: str,
    *,
    brief: Optional[str] = None,
    raw_script: Optional[str] = None,
    run_through: Optional[str] = None,
) -> Project:
    """Run every stage from the first one without durable output.

    Args:
        ctx: Pipeline collaborators
        project_id: Project to run
        brief: Brief for the script stage when it runs
        raw_script: Pasted script used instead of the text provider
        run_through: Stop after this stage (``scripting``, ``storyboarding``,
            ``keyframing``, ``video_gen``); None runs through export

    Returns:
        The project as persisted after the last stage.
    """
    project = await ctx.store.get(project_id)
    step = get_resume_step(project.status, completed_steps(project))
    if brief or raw_script:
        step = "scripting"
    logger.info(f"Project {project_id}: pipeline starting at {step}")

    stages = {
        "scripting": lambda: run_script_stage(ctx, project_id, brief=brief, raw_script=raw_script),
        "storyboarding": lambda: run_storyboard_stage(ctx, project_id),
        "keyframing": lambda: run_keyframe_stage(ctx, project_id),
        "video_gen": lambda: run_clip_stage(ctx, project_id),
        "exporting": lambda: run_export_stage(ctx, project_id),
    }
    while step in stages:
        await stages[step]()
        if step == run_through:
            break
        step = STEP_TRANSITIONS[step]

    return await ctx.store.get(project_id)


# ---------------------------------------------------------------------------
# Single-shot operations
# ---------------------------------------------------------------------------
async def regenerate_shot(
    ctx: PipelineContext,
    project_id: str,
    shot_id: str,
    *,
    keyframe: bool = True,
    clip: bool = True,
) -> Shot:
    """New keyframe and/or clip version for one shot.

    The clip resolves continuity against the predecessor exactly as it is
    stored now, so earlier rollbacks or regenerations carry forward.

    Raises:
        ShotNotFoundError: No shot ``shot_id`` in the project.
    """
    project = await ctx.store.get(project_id)
    index, shot = _find_shot(project, shot_id)
    ctx.store.ensure_directories(project.id)
    style_pack = await _style_pack(ctx, project)
    spine = build_prompt_spine(project, style_pack)
    refs = cache_style_refs(
        project, style_pack, ctx.file_manager, ctx.settings.pipeline.style_ref_count
    )

    try:
        if keyframe:
            await generate_keyframe(
                project, index, ctx.providers.image, ctx.file_manager,
                spine=spine, reference_images=refs,
            )
            await ctx.store.save(project)
        if clip:
            await generate_clip(
                project, index, ctx.providers.video, ctx.file_manager,
                spine=spine, reference_images=refs,
            )
    except Exception as e:
        await ctx.store.save(project)
        logger.error(f"Shot {shot_id}: regenerate failed: {e}")
        raise

    await ctx.store.save(project)
    return shot


async def rollback_shot(
    ctx: PipelineContext,
    project_id: str,
    shot_id: str,
    kind: AssetKind,
    version: int,
) -> Shot:
    """Point one shot's keyframe or clip back at an earlier version.

    Raises:
        ShotNotFoundError: No shot ``shot_id`` in the project.
        VersionNotFoundError: The version is not in the shot's history.
    """
    project = await ctx.store.get(project_id)
    _, shot = _find_shot(project, shot_id)
    if rollback(shot, kind, version) is not None:
        await ctx.store.save(project)
    return shot


async def update_brand_kit(ctx: PipelineContext, project_id: str, brand_kit: BrandKit) -> Project:
    project = await ctx.store.get(project_id)
    project.brand_kit = brand_kit
    return await ctx.store.save(project)
