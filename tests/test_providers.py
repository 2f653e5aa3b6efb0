"""Generation providers: selection, fallback, degradation to placeholders."""

import json

import pytest
from PIL import Image

from conftest import FakeBackend, FakeTextBackend, no_sleep
from promoreel.config import PipelineConfig, ProvidersConfig, Settings
from promoreel.errors import (
    PollTimeoutError,
    ResourceMissingError,
    ScriptValidationError,
    TerminalBackendError,
    TransientBackendError,
)
from promoreel.providers import BackendOutput, BackendRole, ImageProvider, TextProvider, VideoProvider, build_providers
from promoreel.providers.placeholders import PLACEHOLDER_CLIP, PLACEHOLDER_PNG
from promoreel.providers.text import parse_script
from promoreel.providers.video import classify_veo_operation, veo_duration
from promoreel.schemas.generation import GenerationRequest
from promoreel.services.polling import OperationState, PollStatus, poll_operation


def image_provider(settings, ledger, *backends, **kwargs) -> ImageProvider:
    return ImageProvider(list(backends), settings=settings, ledger=ledger, sleep=no_sleep, **kwargs)


def video_provider(settings, ledger, *backends, **kwargs) -> VideoProvider:
    return VideoProvider(list(backends), settings=settings, ledger=ledger, sleep=no_sleep, **kwargs)


def text_provider(settings, ledger, *backends, **kwargs) -> TextProvider:
    return TextProvider(list(backends), settings=settings, ledger=ledger, sleep=no_sleep, **kwargs)


# ---------------------------------------------------------------------------
# Selection
# ---------------------------------------------------------------------------

def test_preferred_backend_is_active(test_settings, ledger):
    a, b = FakeBackend("a"), FakeBackend("b")
    selection = image_provider(test_settings, ledger, a, b, preferred="b").select_backends()
    assert selection.active.backend is b
    assert selection.fallback.backend is a


def test_unconfigured_backends_are_skipped(test_settings, ledger):
    a, b = FakeBackend("a", configured=False), FakeBackend("b")
    selection = image_provider(test_settings, ledger, a, b, preferred="a").select_backends()
    assert selection.active.backend is b
    assert selection.fallback is None


def test_disabled_provider_selects_placeholder(test_settings, ledger):
    selection = image_provider(test_settings, ledger, FakeBackend("a"), enabled=False).select_backends()
    assert selection.active.role is BackendRole.PLACEHOLDER
    assert selection.attempts() == []


def test_selection_is_reevaluated_each_call(test_settings, ledger):
    backend = FakeBackend("a", configured=False)
    provider = image_provider(test_settings, ledger, backend)
    assert provider.select_backends().active.role is BackendRole.PLACEHOLDER
    backend._configured = True
    assert provider.select_backends().active.backend is backend


def test_build_providers_without_credentials_uses_placeholders():
    settings = Settings(providers=ProvidersConfig(use_real_image=True, use_real_video=True))
    providers = build_providers(settings)
    for provider in (providers.text, providers.image, providers.video):
        assert provider.select_backends().active.name == "placeholder"


def test_build_providers_orders_gemini_before_replicate():
    settings = Settings(
        providers=ProvidersConfig(
            gemini_api_key="test-key",
            replicate_api_token="test-token",
            use_real_image=True,
            use_real_video=True,
        )
    )
    providers = build_providers(settings)
    video = providers.video.select_backends()
    assert (video.active.name, video.fallback.name) == ("veo", "replicate")
    assert providers.video.supports_first_last()

    image = providers.image.select_backends()
    assert (image.active.name, image.fallback.name) == ("gemini", "replicate")


def test_preferring_replicate_video_loses_first_last_support():
    settings = Settings(
        providers=ProvidersConfig(
            gemini_api_key="test-key",
            replicate_api_token="test-token",
            use_real_video=True,
            video_backend="replicate",
        )
    )
    providers = build_providers(settings)
    assert providers.video.select_backends().active.name == "replicate"
    assert not providers.video.supports_first_last()


# ---------------------------------------------------------------------------
# Fallback and degradation
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_primary_success(test_settings, ledger, tmp_path):
    primary, secondary = FakeBackend("a"), FakeBackend("b")
    provider = image_provider(test_settings, ledger, primary, secondary)

    result = await provider.generate(GenerationRequest(prompt="p", output_path=tmp_path / "k.png"))

    assert result.provider_used == "a"
    assert result.fallback_used is False
    assert result.error is None
    assert result.asset_path.read_bytes() == b"fake asset"
    assert secondary.calls == []
    assert provider.descriptor.active_backend == "a"


@pytest.mark.asyncio
async def test_transient_errors_are_retried_on_the_same_backend(test_settings, ledger, tmp_path):
    primary = FakeBackend("a", errors=[TransientBackendError("503"), TransientBackendError("429")])
    provider = image_provider(test_settings, ledger, primary)

    result = await provider.generate(GenerationRequest(prompt="p", output_path=tmp_path / "k.png"))

    assert result.provider_used == "a"
    assert [attempt for _, attempt in primary.calls] == [1, 2, 3]


@pytest.mark.asyncio
async def test_terminal_error_moves_to_fallback(test_settings, ledger, tmp_path):
    primary = FakeBackend("a", errors=[TerminalBackendError("401 unauthorized")])
    secondary = FakeBackend("b")
    provider = image_provider(test_settings, ledger, primary, secondary)

    result = await provider.generate(GenerationRequest(prompt="p", output_path=tmp_path / "k.png"))

    assert result.provider_used == "b"
    assert result.fallback_used is True
    assert len(primary.calls) == 1
    assert secondary.requests[0] == primary.requests[0]


@pytest.mark.asyncio
async def test_all_backends_failing_writes_placeholder_image(test_settings, ledger, tmp_path):
    primary = FakeBackend("a", errors=[TerminalBackendError("content policy")])
    secondary = FakeBackend("b", errors=[TerminalBackendError("quota gone")])
    provider = image_provider(test_settings, ledger, primary, secondary)

    result = await provider.generate(GenerationRequest(prompt="p", output_path=tmp_path / "k.png"))

    assert result.provider_used == "placeholder"
    assert result.fallback_used is False
    assert "content policy" in result.error and "quota gone" in result.error
    assert result.asset_path.read_bytes() == PLACEHOLDER_PNG


@pytest.mark.asyncio
async def test_placeholder_keyframe_is_a_readable_image(test_settings, ledger, tmp_path):
    provider = image_provider(test_settings, ledger)

    result = await provider.generate(GenerationRequest(prompt="p", output_path=tmp_path / "k.png"))

    with Image.open(result.asset_path) as image:
        image.load()
        assert image.format == "PNG"
        assert image.size == (1, 1)


@pytest.mark.asyncio
async def test_no_backend_configured_is_not_an_error(test_settings, ledger, tmp_path):
    provider = image_provider(test_settings, ledger, FakeBackend("a", configured=False))
    result = await provider.generate(GenerationRequest(prompt="p", output_path=tmp_path / "k.png"))
    assert result.is_placeholder
    assert result.error is None


@pytest.mark.asyncio
async def test_missing_output_path_escapes(test_settings, ledger):
    provider = image_provider(test_settings, ledger, FakeBackend("a"))
    with pytest.raises(ResourceMissingError):
        await provider.generate(GenerationRequest(prompt="p"))


@pytest.mark.asyncio
async def test_resource_missing_from_backend_is_not_absorbed(test_settings, ledger, tmp_path):
    primary = FakeBackend("a", errors=[ResourceMissingError("no credentials")])
    secondary = FakeBackend("b")
    provider = image_provider(test_settings, ledger, primary, secondary)
    with pytest.raises(ResourceMissingError):
        await provider.generate(GenerationRequest(prompt="p", output_path=tmp_path / "k.png"))
    assert secondary.calls == []


@pytest.mark.asyncio
async def test_every_call_is_recorded_in_the_ledger(test_settings, ledger, tmp_path):
    provider = image_provider(test_settings, ledger, FakeBackend("a", configured=False))
    await provider.generate(GenerationRequest(prompt="first", output_path=tmp_path / "1.png"))
    await provider.generate(GenerationRequest(prompt="second", output_path=tmp_path / "2.png"))

    operations = ledger.operations()
    assert [op.kind for op in operations] == ["image", "image"]
    assert operations[0].provider == "placeholder"
    assert operations[1].metadata["prompt"] == "second"


def test_too_many_reference_images_rejected(tmp_path):
    refs = tuple(tmp_path / f"{i}.png" for i in range(4))
    with pytest.raises(ValueError):
        GenerationRequest(prompt="p", reference_images=refs)


# ---------------------------------------------------------------------------
# Text
# ---------------------------------------------------------------------------

def test_parse_script_accepts_fenced_and_nested_json():
    body = {"script": {"hook": "h", "problem": "p", "solution": "s", "cta": "c"}}
    script = parse_script(f"```json\n{json.dumps(body)}\n```")
    assert script.cta == "c"


def test_parse_script_reports_missing_sections():
    with pytest.raises(ScriptValidationError, match="cta"):
        parse_script(json.dumps({"hook": "h", "problem": "p", "solution": "s"}))


def test_parse_script_rejects_blank_section():
    with pytest.raises(ScriptValidationError):
        parse_script(json.dumps({"hook": "h", "problem": " ", "solution": "s", "cta": "c"}))


@pytest.mark.asyncio
async def test_script_without_cta_falls_back_then_degrades(test_settings, ledger, tmp_path):
    def missing_cta():
        return ScriptValidationError("Script missing required sections: cta")

    primary = FakeTextBackend("gemini", errors=[missing_cta()])
    secondary = FakeTextBackend("ollama", errors=[missing_cta()])
    provider = text_provider(test_settings, ledger, primary, secondary)

    result = await provider.generate(
        GenerationRequest(prompt="Acme project planner", output_path=tmp_path / "script.json")
    )

    assert len(primary.calls) == 1
    assert result.provider_used == "placeholder"
    assert "cta" in result.error
    assert "Acme project planner" in result.script.solution
    assert json.loads(result.asset_path.read_text())["cta"]


@pytest.mark.asyncio
async def test_text_result_without_output_path(test_settings, ledger):
    provider = text_provider(test_settings, ledger, FakeTextBackend())
    result = await provider.generate(GenerationRequest(prompt="brief"))
    assert result.asset_path is None
    assert result.script.hook


# ---------------------------------------------------------------------------
# Video
# ---------------------------------------------------------------------------

class PollingVideoBackend(FakeBackend):
    """Submits a job that never finishes within the allowed polls."""

    def __init__(self, name, pipeline: PipelineConfig, **kwargs):
        super().__init__(name, **kwargs)
        self.pipeline = pipeline
        self.checks = 0

    async def generate(self, request, attempt):
        self.calls.append((request, attempt))

        async def check(handle):
            self.checks += 1
            return PollStatus(OperationState.POLLING, handle)

        await poll_operation(
            f"{self.name}-job",
            {"id": "job"},
            check,
            interval=self.pipeline.video_poll_interval,
            max_attempts=self.pipeline.video_poll_max,
            sleep=no_sleep,
        )
        return BackendOutput()


@pytest.mark.asyncio
async def test_video_poll_timeout_goes_to_fallback(test_settings, ledger, tmp_path):
    primary = PollingVideoBackend("veo", test_settings.pipeline, supports_first_last=True)
    secondary = FakeBackend("replicate")
    provider = video_provider(test_settings, ledger, primary, secondary)

    result = await provider.generate(GenerationRequest(prompt="p", output_path=tmp_path / "c.mp4"))

    assert len(primary.calls) == 1
    assert primary.checks == test_settings.pipeline.video_poll_max
    assert result.provider_used == "replicate"
    assert result.fallback_used is True


@pytest.mark.asyncio
async def test_video_placeholder_without_ffmpeg(test_settings, ledger, tmp_path):
    primary = FakeBackend("veo", errors=[PollTimeoutError("veo-job", 3)])
    provider = video_provider(test_settings, ledger, primary)

    result = await provider.generate(GenerationRequest(prompt="p", output_path=tmp_path / "c.mp4"))

    assert result.is_placeholder
    assert "still processing after 3 polls" in result.error
    assert result.asset_path.read_bytes() == PLACEHOLDER_CLIP
    assert result.settings["duration_sec"] == test_settings.pipeline.placeholder_clip_seconds


@pytest.mark.asyncio
async def test_video_missing_first_frame_escapes(test_settings, ledger, tmp_path):
    provider = video_provider(test_settings, ledger, FakeBackend("veo"))
    request = GenerationRequest(
        prompt="p", output_path=tmp_path / "c.mp4", first_frame_path=tmp_path / "gone.png"
    )
    with pytest.raises(ResourceMissingError):
        await provider.generate(request)


@pytest.mark.asyncio
async def test_video_result_echoes_frames(test_settings, ledger, tmp_path):
    first = tmp_path / "first.png"
    last = tmp_path / "last.png"
    first.write_bytes(PLACEHOLDER_PNG)
    last.write_bytes(PLACEHOLDER_PNG)
    provider = video_provider(test_settings, ledger, FakeBackend("veo", supports_first_last=True))

    result = await provider.generate(
        GenerationRequest(
            prompt="p", output_path=tmp_path / "c.mp4", first_frame_path=first, last_frame_path=last
        )
    )
    assert result.first_frame_path == first
    assert result.last_frame_path == last


def test_veo_duration_snaps_to_allowed_lengths():
    assert veo_duration(2) == 4
    assert veo_duration(5) == 4
    assert veo_duration(7) == 6
    assert veo_duration(8) == 8
    assert veo_duration(30) == 8


class _Obj:
    def __init__(self, **kwargs):
        self.__dict__.update(kwargs)


def test_classify_veo_operation_states():
    pending = _Obj(done=False)
    assert classify_veo_operation(pending).state is OperationState.POLLING

    overloaded = _Obj(done=True, error={"code": 8, "message": "resource exhausted"}, response=None)
    status = classify_veo_operation(overloaded)
    assert status.state is OperationState.FAILED and status.transient

    filtered = _Obj(
        done=True,
        error=None,
        response=_Obj(rai_media_filtered_count=1, rai_media_filtered_reasons=["people"], generated_videos=[]),
    )
    status = classify_veo_operation(filtered)
    assert status.state is OperationState.FAILED
    assert not status.transient
    assert "people" in status.error

    finished = _Obj(
        done=True,
        error=None,
        response=_Obj(rai_media_filtered_count=0, generated_videos=[_Obj(video=None)]),
    )
    assert classify_veo_operation(finished).state is OperationState.SUCCEEDED


@pytest.mark.asyncio
async def test_bridged_request_is_reseeded_for_first_frame_only_fallback(test_settings, ledger, tmp_path):
    own, previous = tmp_path / "own.png", tmp_path / "previous.png"
    own.write_bytes(PLACEHOLDER_PNG)
    previous.write_bytes(PLACEHOLDER_PNG)
    veo = FakeBackend("veo", errors=[TerminalBackendError("quota")], supports_first_last=True)
    kling = FakeBackend("kling", supports_first_last=False)
    provider = video_provider(test_settings, ledger, veo, kling)

    result = await provider.generate(
        GenerationRequest(
            prompt="p",
            output_path=tmp_path / "clip.mp4",
            first_frame_path=own,
            last_frame_path=previous,
            params={"continuity_mode": "bridging"},
        )
    )

    assert veo.requests[0].first_frame_path == own
    assert veo.requests[0].last_frame_path == previous
    assert kling.requests[0].first_frame_path == previous
    assert kling.requests[0].last_frame_path is None
    assert result.provider_used == "kling"
    assert result.first_frame_path == previous
    assert result.last_frame_path is None
    assert result.params["continuity_mode"] == "last_frame"
