"""API route handlers and request/response schemas.

Handlers are thin: load, call the orchestrator, return the stored models.
Domain errors are translated to HTTP status codes by the handlers
registered in ``promoreel.api.app``.
"""

import logging
from datetime import datetime
from pathlib import Path
from typing import Literal, Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field

from promoreel.orchestrator.pipeline import (
    PipelineContext,
    regenerate_shot,
    rollback_shot,
    run_clip_stage,
    run_export_stage,
    run_keyframe_stage,
    run_script_stage,
    run_storyboard_stage,
    update_brand_kit,
)
from promoreel.pipeline.continuity import normalize_mode
from promoreel.pipeline.storyboard import shot_duration
from promoreel.schemas.project import BrandKit, ExportRecord, Project, ProjectCreate, Shot
from promoreel.schemas.script import ProjectScript
from promoreel.schemas.style_pack import StylePack, StylePackCreate
from promoreel.services import media
from promoreel.services.costs import estimate_project_cost
from promoreel.services.style_packs import process_style_pack_videos

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api")

_context: Optional[PipelineContext] = None


def get_context() -> PipelineContext:
    """Process-wide pipeline context, built on first use."""
    global _context
    if _context is None:
        _context = PipelineContext.create()
    return _context


# ---------------------------------------------------------------------------
# Schemas
# ---------------------------------------------------------------------------
class ProjectListItem(BaseModel):
    id: str
    name: str
    status: str
    created_at: datetime
    last_updated: datetime


class ProjectListResponse(BaseModel):
    projects: list[ProjectListItem]


class ScriptRequest(BaseModel):
    brief: Optional[str] = None
    raw_script: Optional[str] = None


class ShotsResponse(BaseModel):
    shots: list[Shot]


class ExportRequest(BaseModel):
    audio_path: Optional[Path] = None


class RegenerateRequest(BaseModel):
    keyframe: bool = True
    clip: bool = True


class RollbackRequest(BaseModel):
    kind: Literal["keyframe", "clip"]
    version: int = Field(ge=1)


class StylePackListItem(BaseModel):
    pack_id: str
    name: str
    description: str
    created_at: datetime


class StylePackListResponse(BaseModel):
    stylepacks: list[StylePackListItem]


class StylePackUpdate(BaseModel):
    name: Optional[str] = None
    description: Optional[str] = None
    prompt_spine: Optional[str] = None


class StylePackVideosRequest(BaseModel):
    """Server-side video paths to import."""

    paths: list[Path] = Field(min_length=1)


# ---------------------------------------------------------------------------
# Health
# ---------------------------------------------------------------------------
@router.get("/health")
async def health():
    return {
        "status": "ok",
        "ffmpeg": media.ffmpeg_available(),
        "ffprobe": media.ffprobe_available(),
    }


# ---------------------------------------------------------------------------
# Projects
# ---------------------------------------------------------------------------
@router.get("/projects", response_model=ProjectListResponse)
async def list_projects(ctx: PipelineContext = Depends(get_context)):
    projects = await ctx.store.list()
    return ProjectListResponse(
        projects=[ProjectListItem.model_validate(p, from_attributes=True) for p in projects]
    )


@router.post("/projects", status_code=201, response_model=Project)
async def create_project(request: ProjectCreate, ctx: PipelineContext = Depends(get_context)):
    if request.continuity_mode is not None:
        try:
            request.continuity_mode = normalize_mode(request.continuity_mode).value
        except ValueError as e:
            raise HTTPException(status_code=422, detail=str(e))
    return await ctx.store.create(request)


@router.get("/projects/{project_id}", response_model=Project)
async def get_project(project_id: str, ctx: PipelineContext = Depends(get_context)):
    return await ctx.store.get(project_id)


@router.delete("/projects/{project_id}", status_code=204)
async def delete_project(project_id: str, ctx: PipelineContext = Depends(get_context)):
    await ctx.store.delete(project_id)


@router.post("/projects/{project_id}/brand-kit", response_model=Project)
async def set_brand_kit(
    project_id: str, brand_kit: BrandKit, ctx: PipelineContext = Depends(get_context)
):
    return await update_brand_kit(ctx, project_id, brand_kit)


@router.post("/projects/{project_id}/script", response_model=ProjectScript)
async def create_script(
    project_id: str, request: ScriptRequest, ctx: PipelineContext = Depends(get_context)
):
    return await run_script_stage(
        ctx, project_id, brief=request.brief, raw_script=request.raw_script
    )


@router.post("/projects/{project_id}/storyboard", response_model=ShotsResponse)
async def create_storyboard(project_id: str, ctx: PipelineContext = Depends(get_context)):
    return ShotsResponse(shots=await run_storyboard_stage(ctx, project_id))


@router.post("/projects/{project_id}/keyframes", response_model=ShotsResponse)
async def create_keyframes(project_id: str, ctx: PipelineContext = Depends(get_context)):
    return ShotsResponse(shots=await run_keyframe_stage(ctx, project_id))


@router.post("/projects/{project_id}/clips", response_model=ShotsResponse)
async def create_clips(project_id: str, ctx: PipelineContext = Depends(get_context)):
    return ShotsResponse(shots=await run_clip_stage(ctx, project_id))


@router.post("/projects/{project_id}/export", response_model=ExportRecord)
async def export(
    project_id: str,
    request: Optional[ExportRequest] = None,
    ctx: PipelineContext = Depends(get_context),
):
    audio_path = request.audio_path if request else None
    return await run_export_stage(ctx, project_id, audio_path=audio_path)


@router.post("/projects/{project_id}/shots/{shot_id}/regenerate", response_model=Shot)
async def regenerate(
    project_id: str,
    shot_id: str,
    request: Optional[RegenerateRequest] = None,
    ctx: PipelineContext = Depends(get_context),
):
    request = request or RegenerateRequest()
    if not (request.keyframe or request.clip):
        raise HTTPException(status_code=422, detail="Nothing to regenerate")
    return await regenerate_shot(
        ctx, project_id, shot_id, keyframe=request.keyframe, clip=request.clip
    )


@router.post("/projects/{project_id}/shots/{shot_id}/rollback", response_model=Shot)
async def rollback(
    project_id: str,
    shot_id: str,
    request: RollbackRequest,
    ctx: PipelineContext = Depends(get_context),
):
    return await rollback_shot(ctx, project_id, shot_id, request.kind, request.version)


@router.get("/projects/{project_id}/cost-estimate")
async def project_cost_estimate(
    project_id: str,
    regenerations: int = 0,
    ctx: PipelineContext = Depends(get_context),
):
    """Estimate for the backends that would run right now."""
    project = await ctx.store.get(project_id)
    providers = ctx.providers
    text = providers.text.select_backends().active
    image = providers.image.select_backends().active
    video = providers.video.select_backends().active
    shot_count = len(project.shots) or 4
    duration = project.shots[0].duration_sec if project.shots else shot_duration(project.target_duration)
    return estimate_project_cost(
        image_provider=image.name,
        image_model=image.model,
        video_provider=video.name,
        video_model=video.model,
        text_provider=text.name,
        text_model=text.model,
        shot_count=shot_count,
        video_duration=duration,
        regenerations=regenerations,
    )


# ---------------------------------------------------------------------------
# Style packs
# ---------------------------------------------------------------------------
@router.get("/stylepacks", response_model=StylePackListResponse)
async def list_stylepacks(ctx: PipelineContext = Depends(get_context)):
    packs = await ctx.style_packs.list()
    return StylePackListResponse(
        stylepacks=[StylePackListItem.model_validate(p, from_attributes=True) for p in packs]
    )


@router.post("/stylepacks", status_code=201, response_model=StylePack)
async def create_stylepack(request: StylePackCreate, ctx: PipelineContext = Depends(get_context)):
    return await ctx.style_packs.create(request)


@router.get("/stylepacks/{pack_id}", response_model=StylePack)
async def get_stylepack(pack_id: str, ctx: PipelineContext = Depends(get_context)):
    return await ctx.style_packs.get(pack_id)


@router.post("/stylepacks/{pack_id}", response_model=StylePack)
async def update_stylepack(
    pack_id: str, request: StylePackUpdate, ctx: PipelineContext = Depends(get_context)
):
    pack = await ctx.style_packs.get(pack_id)
    updated = pack.model_copy(update=request.model_dump(exclude_unset=True, exclude_none=True))
    return await ctx.style_packs.save(updated)


@router.post("/stylepacks/{pack_id}/videos", response_model=StylePack)
async def add_stylepack_videos(
    pack_id: str, request: StylePackVideosRequest, ctx: PipelineContext = Depends(get_context)
):
    pack = await ctx.style_packs.get(pack_id)
    pack = await process_style_pack_videos(pack, request.paths, ctx.file_manager)
    return await ctx.style_packs.save(pack)


# ---------------------------------------------------------------------------
# Costs
# ---------------------------------------------------------------------------
@router.get("/costs")
async def cost_summary(ctx: PipelineContext = Depends(get_context)):
    return {
        **ctx.ledger.summary(),
        "operations": [entry.model_dump(mode="json") for entry in ctx.ledger.operations()],
    }


@router.post("/costs/reset")
async def reset_costs(ctx: PipelineContext = Depends(get_context)):
    ctx.ledger.reset()
    logger.info("Cost ledger reset")
    return ctx.ledger.summary()
