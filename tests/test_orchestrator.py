"""Pipeline orchestration end to end with offline backends."""

import pytest

from conftest import FakeBackend, make_providers
from promoreel.errors import (
    NoClipsAvailableError,
    ResourceMissingError,
    ShotNotFoundError,
    VersionNotFoundError,
)
from promoreel.orchestrator.pipeline import (
    regenerate_shot,
    rollback_shot,
    run_clip_stage,
    run_export_stage,
    run_keyframe_stage,
    run_pipeline,
    run_script_stage,
    run_storyboard_stage,
    update_brand_kit,
)
from promoreel.orchestrator.state import completed_steps, get_resume_step
from promoreel.providers.placeholders import PLACEHOLDER_EXPORT
from promoreel.schemas.project import BrandKit, BrandVoice, ProjectCreate
from promoreel.schemas.style_pack import StyleRef

RAW_SCRIPT = (
    "Hook: Still juggling five apps?\n"
    "Problem: Nothing talks to anything.\n"
    "Solution: Acme puts it in one place.\n"
    "CTA: Try Acme free today."
)


async def new_project(context, **kwargs):
    return await context.store.create(ProjectCreate(target_duration=32, **kwargs))


# ---------------------------------------------------------------------------
# Resume logic
# ---------------------------------------------------------------------------

def test_resume_step_follows_stored_output():
    nothing = {"has_script": False}
    assert get_resume_step("pending", nothing) == "scripting"
    assert get_resume_step("failed", {"has_script": True, "has_storyboard": True}) == "keyframing"
    done = {"has_script": True, "has_storyboard": True, "has_keyframes": True, "has_clips": True}
    assert get_resume_step("complete", done) == "exporting"


def test_resume_rejects_unknown_status():
    with pytest.raises(ValueError):
        get_resume_step("exploded", {})


# ---------------------------------------------------------------------------
# Full run
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_full_run_from_brief(context, text_backend, image_backend, video_backend):
    project = await new_project(context)

    project = await run_pipeline(context, project.id, brief="Acme project planner")

    assert project.status == "complete"
    assert project.error_message is None
    assert project.script.provider == "fake-text"
    assert project.script.sections["cta"] == "Start your free trial today."
    assert [s.id for s in project.shots] == ["hook-1", "problem-2", "solution-3", "cta-4"]
    assert all(s.duration_sec == 8 for s in project.shots)
    assert len(image_backend.calls) == 4
    assert len(video_backend.calls) == 4
    assert text_backend.requests[0].prompt == "Acme project planner"

    for shot in project.shots:
        assert shot.keyframe_version == 1 and shot.clip_version == 1
        assert shot.clip_path.exists()
        assert shot.continuity.last_frame_path.exists()

    export = project.exports[0]
    assert export.path.name == "final_v1.mp4"
    assert export.path.read_bytes() == PLACEHOLDER_EXPORT
    assert export.warning == "ffmpeg missing: wrote placeholder export"
    assert export.clip_paths == [s.clip_path for s in project.shots]


@pytest.mark.asyncio
async def test_last_frame_chain_seeds_each_clip(context, video_backend):
    project = await new_project(context, continuity_mode="last_frame")
    project = await run_pipeline(context, project.id, raw_script=RAW_SCRIPT)

    first_frames = [request.first_frame_path for request in video_backend.requests]
    assert first_frames[0] == project.shots[0].keyframe_image_path
    for previous, frame in zip(project.shots, first_frames[1:]):
        assert frame == previous.continuity.last_frame_path
    assert all(request.last_frame_path is None for request in video_backend.requests)
    assert project.shots[1].continuity.prev_last_frame_path == project.shots[0].continuity.last_frame_path


@pytest.mark.asyncio
async def test_raw_script_skips_text_backend(context, text_backend):
    project = await new_project(context)
    script = await run_script_stage(context, project.id, raw_script=RAW_SCRIPT)

    assert text_backend.calls == []
    assert script.sections["solution"] == "Acme puts it in one place."
    stored = await context.store.get(project.id)
    assert stored.script.raw == RAW_SCRIPT
    assert stored.status == "storyboarding"


@pytest.mark.asyncio
async def test_run_through_stops_after_stage(context, video_backend):
    project = await new_project(context)
    project = await run_pipeline(context, project.id, raw_script=RAW_SCRIPT, run_through="keyframing")

    assert video_backend.calls == []
    assert completed_steps(project) == {
        "has_script": True,
        "has_storyboard": True,
        "has_keyframes": True,
        "has_clips": False,
    }


@pytest.mark.asyncio
async def test_failed_stage_is_persisted_and_resumable(context, image_backend, video_backend):
    project = await new_project(context)
    project = await run_pipeline(context, project.id, raw_script=RAW_SCRIPT, run_through="keyframing")
    keyframe = project.shots[0].keyframe_image_path
    keyframe.unlink()

    with pytest.raises(ResourceMissingError):
        await run_pipeline(context, project.id)

    failed = await context.store.get(project.id)
    assert failed.status == "failed"
    assert failed.error_message.startswith("video_gen:")
    assert failed.shots[0].status.clip_status == "failed"
    assert "Keyframe of shot hook-1" in failed.shots[0].status.error

    keyframe.write_bytes(b"keyframe")
    resumed = await run_pipeline(context, project.id)

    assert resumed.status == "complete"
    assert len(image_backend.calls) == 4
    assert all(shot.status.clip_status == "ready" for shot in resumed.shots)
    assert len(resumed.exports) == 1


@pytest.mark.asyncio
async def test_stages_run_individually(context):
    project = await new_project(context)
    await run_script_stage(context, project.id, raw_script=RAW_SCRIPT)
    shots = await run_storyboard_stage(context, project.id)
    assert len(shots) == 4
    shots = await run_keyframe_stage(context, project.id)
    assert all(s.status.keyframe_status == "ready" for s in shots)
    shots = await run_clip_stage(context, project.id)
    assert all(s.status.clip_status == "ready" for s in shots)
    record = await run_export_stage(context, project.id)
    assert record.path.exists()
    assert (await context.store.get(project.id)).status == "complete"


# ---------------------------------------------------------------------------
# Continuity modes through the providers
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_bridging_sends_target_frame(context, video_backend):
    project = await new_project(context, continuity_mode="bridging")
    project = await run_pipeline(context, project.id, raw_script=RAW_SCRIPT)

    second = video_backend.requests[1]
    assert second.first_frame_path == project.shots[1].keyframe_image_path
    assert second.last_frame_path == project.shots[0].continuity.last_frame_path
    settings = project.shots[1].provider_config.video_settings
    assert settings["continuity_mode"] == "bridging"


@pytest.mark.asyncio
async def test_bridging_degrades_on_backend_without_support(
    context, test_settings, ledger, text_backend, image_backend
):
    first_frame_only = FakeBackend("kling", supports_first_last=False)
    context.providers = make_providers(
        test_settings, ledger, text=[text_backend], image=[image_backend], video=[first_frame_only]
    )
    project = await new_project(context, continuity_mode="bridging")
    project = await run_pipeline(context, project.id, raw_script=RAW_SCRIPT)

    assert all(request.last_frame_path is None for request in first_frame_only.requests)
    settings = project.shots[2].provider_config.video_settings
    assert settings["continuity_mode"] == "last_frame"
    assert settings["requested_continuity_mode"] == "bridging"
    assert project.continuity_mode == "bridging"


@pytest.mark.asyncio
async def test_bridging_fallback_without_end_frame_chains_from_previous_shot(
    context, test_settings, ledger, text_backend, image_backend
):
    from promoreel.errors import TerminalBackendError

    veo = FakeBackend("veo", errors=[TerminalBackendError("quota")] * 4, supports_first_last=True)
    kling = FakeBackend("kling", supports_first_last=False)
    context.providers = make_providers(
        test_settings, ledger, text=[text_backend], image=[image_backend], video=[veo, kling]
    )
    project = await new_project(context, continuity_mode="bridging")
    project = await run_pipeline(context, project.id, raw_script=RAW_SCRIPT)

    assert len(kling.requests) == 4
    for index in range(1, 4):
        request = kling.requests[index]
        assert request.first_frame_path == project.shots[index - 1].continuity.last_frame_path
        assert request.last_frame_path is None

    second = project.shots[1]
    assert second.provider_config.video_provider == "kling"
    assert second.provider_config.video_settings["continuity_mode"] == "last_frame"
    assert second.provider_config.video_settings["requested_continuity_mode"] == "bridging"
    assert second.continuity.first_frame_path == project.shots[0].continuity.last_frame_path
    assert second.continuity.target_last_frame_path is None


@pytest.mark.asyncio
async def test_independent_mode_uses_own_keyframes(context, video_backend):
    project = await new_project(context, continuity_mode="independent")
    project = await run_pipeline(context, project.id, raw_script=RAW_SCRIPT)

    for shot, request in zip(project.shots, video_backend.requests):
        assert request.first_frame_path == shot.keyframe_image_path
        assert shot.continuity.prev_last_frame_path is None


@pytest.mark.asyncio
async def test_video_failure_degrades_to_placeholder_clip(
    context, test_settings, ledger, text_backend, image_backend
):
    from promoreel.errors import TerminalBackendError

    broken = FakeBackend("veo", errors=[TerminalBackendError("quota")] * 4)
    context.providers = make_providers(
        test_settings, ledger, text=[text_backend], image=[image_backend], video=[broken]
    )
    project = await new_project(context)
    project = await run_pipeline(context, project.id, raw_script=RAW_SCRIPT)

    assert project.status == "complete"
    assert all(s.provider_config.video_provider == "placeholder" for s in project.shots)
    assert all(s.status.error == "veo: quota" for s in project.shots)
    assert len(project.exports) == 1


# ---------------------------------------------------------------------------
# Regenerate and rollback
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_regenerate_after_upstream_rollback_uses_restored_frame(context, video_backend, file_manager):
    project = await new_project(context, continuity_mode="last_frame")
    project = await run_pipeline(context, project.id, raw_script=RAW_SCRIPT)

    hook = await regenerate_shot(context, project.id, "hook-1", keyframe=False, clip=True)
    assert hook.clip_version == 2
    assert hook.continuity.last_frame_path == file_manager.last_frame_path(project.id, "hook-1", 2)

    hook = await rollback_shot(context, project.id, "hook-1", "clip", 1)
    v1_frame = file_manager.last_frame_path(project.id, "hook-1", 1)
    assert hook.continuity.last_frame_path == v1_frame

    problem = await regenerate_shot(context, project.id, "problem-2", keyframe=False, clip=True)

    assert video_backend.requests[-1].first_frame_path == v1_frame
    assert problem.clip_version == 2
    assert problem.continuity.prev_last_frame_path == v1_frame


@pytest.mark.asyncio
async def test_regenerate_keyframe_only(context, image_backend, video_backend):
    project = await new_project(context)
    project = await run_pipeline(context, project.id, raw_script=RAW_SCRIPT)

    shot = await regenerate_shot(context, project.id, "cta-4", keyframe=True, clip=False)

    assert shot.keyframe_version == 2
    assert shot.clip_version == 1
    assert len(image_backend.calls) == 5
    assert len(video_backend.calls) == 4
    stored = await context.store.get(project.id)
    assert stored.shots[3].keyframe_version == 2


@pytest.mark.asyncio
async def test_failed_keyframe_regenerate_marks_keyframe_failed(context, image_backend):
    project = await new_project(context)
    project = await run_pipeline(context, project.id, raw_script=RAW_SCRIPT)
    image_backend.errors.append(ResourceMissingError("reference image gone"))

    with pytest.raises(ResourceMissingError):
        await regenerate_shot(context, project.id, "hook-1", keyframe=True, clip=False)

    stored = await context.store.get(project.id)
    assert stored.shots[0].status.keyframe_status == "failed"
    assert stored.shots[0].status.error == "reference image gone"
    assert stored.shots[0].keyframe_version == 1
    assert stored.shots[0].status.clip_status == "ready"


@pytest.mark.asyncio
async def test_rollback_is_persisted_and_idempotent(context):
    project = await new_project(context)
    project = await run_pipeline(context, project.id, raw_script=RAW_SCRIPT)
    await regenerate_shot(context, project.id, "hook-1", keyframe=True, clip=False)

    await rollback_shot(context, project.id, "hook-1", "keyframe", 1)
    once = (await context.store.get(project.id)).shots[0]
    again = await rollback_shot(context, project.id, "hook-1", "keyframe", 1)

    assert once.keyframe_version == again.keyframe_version == 1
    assert [e.version for e in once.versions("keyframe")] == [1, 2]
    assert again.history == once.history


@pytest.mark.asyncio
async def test_rollback_unknown_version_or_shot(context):
    project = await new_project(context)
    project = await run_pipeline(context, project.id, raw_script=RAW_SCRIPT, run_through="keyframing")

    with pytest.raises(VersionNotFoundError):
        await rollback_shot(context, project.id, "hook-1", "clip", 1)
    with pytest.raises(ShotNotFoundError):
        await regenerate_shot(context, project.id, "outro-9")


# ---------------------------------------------------------------------------
# Export
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_export_without_clips_writes_nothing(context, file_manager):
    project = await new_project(context)

    with pytest.raises(NoClipsAvailableError, match="No clips available for export"):
        await run_export_stage(context, project.id)

    exports_dir = file_manager.asset_dir(project.id, "exports")
    assert list(exports_dir.iterdir()) == []
    stored = await context.store.get(project.id)
    assert stored.exports == []
    assert stored.status == "failed"


@pytest.mark.asyncio
async def test_exports_are_numbered(context, tmp_path):
    project = await new_project(context)
    await run_pipeline(context, project.id, raw_script=RAW_SCRIPT)
    audio = tmp_path / "track.mp3"

    record = await run_export_stage(context, project.id, audio_path=audio)

    assert record.path.name == "final_v2.mp4"
    assert record.audio_path == audio
    stored = await context.store.get(project.id)
    assert [e.path.name for e in stored.exports] == ["final_v1.mp4", "final_v2.mp4"]


# ---------------------------------------------------------------------------
# Brand kit and style packs
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_brand_and_style_pack_reach_keyframe_requests(context, image_backend, tmp_path):
    ref_paths = []
    for i in range(4):
        ref = tmp_path / f"ref_{i}.png"
        ref.write_bytes(b"ref")
        ref_paths.append(ref)

    pack = await context.style_packs.create()
    pack.prompt_spine = "Visual style: warm palette."
    pack.extracted_ref_images = [
        StyleRef(path=path, score=float(score)) for path, score in zip(ref_paths, [1, 4, 3, 2])
    ]
    await context.style_packs.save(pack)

    project = await new_project(context, selected_style_pack_id=pack.pack_id)
    await update_brand_kit(
        context,
        project.id,
        BrandKit(colors=["#112233"], brand_voice=BrandVoice(playful=0.9, luxury=0.1, minimal=0.5)),
    )
    await run_pipeline(context, project.id, raw_script=RAW_SCRIPT, run_through="keyframing")

    request = image_backend.requests[0]
    assert "Voice: playful 0.9, luxury 0.1, minimal 0.5." in request.prompt
    assert "Brand colors: #112233." in request.prompt
    assert "Style Pack: Visual style: warm palette." in request.prompt
    assert [p.name for p in request.reference_images] == ["ref_1.png", "ref_2.png", "ref_3.png"]
    assert all("stylepacks" in p.parts for p in request.reference_images)


@pytest.mark.asyncio
async def test_missing_style_pack_is_ignored(context, image_backend):
    project = await new_project(context, selected_style_pack_id="does-not-exist")
    await run_pipeline(context, project.id, raw_script=RAW_SCRIPT, run_through="keyframing")
    assert "Style Pack: none." in image_backend.requests[0].prompt
    assert image_backend.requests[0].reference_images == ()
