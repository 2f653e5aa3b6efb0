"""Clip generation: Veo primary (first + last frame), Replicate Kling secondary.

Both backends submit a long-running job and poll it with a fixed interval
and a bounded number of checks. A job still running after the last check is
a PollTimeoutError, which is terminal for that backend, so the provider
moves straight to the fallback with the same request.
"""

import asyncio
import base64
import logging
from pathlib import Path
from typing import Any, Awaitable, Callable, Optional

from google.genai import types as genai_types

from promoreel.config import PipelineConfig, ProvidersConfig
from promoreel.errors import ResourceMissingError, TerminalBackendError
from promoreel.providers.base import Backend, BackendOutput, GenerationProvider
from promoreel.providers.placeholders import write_placeholder_clip
from promoreel.schemas.generation import CostEstimate, GenerationRequest
from promoreel.services.costs import estimate_video_cost
from promoreel.services.file_manager import atomic_write_bytes
from promoreel.services.genai_client import gemini_configured, get_genai_client
from promoreel.services.polling import OperationState, PollStatus, poll_operation
from promoreel.services.replicate_client import ReplicateClient, prediction_output_url

logger = logging.getLogger(__name__)

Sleep = Callable[[float], Awaitable[Any]]

VEO_DURATIONS = (4, 6, 8)

# DEADLINE_EXCEEDED, RESOURCE_EXHAUSTED, INTERNAL, UNAVAILABLE
_TRANSIENT_GRPC_CODES = {4, 8, 13, 14}


def _read_frame(path: Optional[Path]) -> Optional[bytes]:
    if path is None:
        return None
    try:
        return Path(path).read_bytes()
    except FileNotFoundError as e:
        raise ResourceMissingError(f"Input frame not found: {path}") from e


def veo_duration(duration_sec: int) -> int:
    """Nearest clip length Veo accepts."""
    return min(VEO_DURATIONS, key=lambda allowed: (abs(allowed - duration_sec), allowed))


# ---------------------------------------------------------------------------
# Veo
# ---------------------------------------------------------------------------
def classify_veo_operation(operation) -> PollStatus:
    """Map a Veo operation snapshot onto the polling states."""
    if not operation.done:
        return PollStatus(OperationState.POLLING, operation)

    error = getattr(operation, "error", None)
    if error:
        error_text = str(error.get("message", error) if isinstance(error, dict) else error)
        code = error.get("code") if isinstance(error, dict) else getattr(error, "code", None)
        return PollStatus(
            OperationState.FAILED,
            operation,
            error=f"Veo operation failed: {error_text}",
            transient=code in _TRANSIENT_GRPC_CODES,
        )

    response = getattr(operation, "response", None)
    if response is None:
        return PollStatus(OperationState.FAILED, operation, error="Veo operation returned no response")

    if getattr(response, "rai_media_filtered_count", None):
        reasons = getattr(response, "rai_media_filtered_reasons", None) or []
        return PollStatus(
            OperationState.FAILED,
            operation,
            error=f"Content filtered by responsible AI: {'; '.join(reasons) or 'no reason given'}",
        )

    if not response.generated_videos:
        return PollStatus(OperationState.FAILED, operation, error="No video data in response")

    return PollStatus(OperationState.SUCCEEDED, operation)


class VeoVideoBackend(Backend):
    """Veo via google-genai ``generate_videos`` with first/last frame control."""

    name = "veo"
    policy_name = "gemini"
    supports_first_last = True

    def __init__(self, providers: ProvidersConfig, pipeline: PipelineConfig, sleep: Sleep = asyncio.sleep):
        self.providers = providers
        self.pipeline = pipeline
        self.sleep = sleep

    @property
    def model(self) -> str:
        return self.providers.veo_model

    def configured(self) -> bool:
        return gemini_configured(self.providers)

    def describe(self) -> dict[str, Any]:
        return {"supports_first_last": True}

    async def generate(self, request: GenerationRequest, attempt: int) -> BackendOutput:
        client = get_genai_client(self.providers, self.model)
        first_frame = _read_frame(request.first_frame_path)
        last_frame = _read_frame(request.last_frame_path)
        duration = veo_duration(request.duration_sec)

        config = genai_types.GenerateVideosConfig(
            aspect_ratio=request.aspect_ratio,
            duration_seconds=duration,
            number_of_videos=1,
            negative_prompt=request.negative_prompt or None,
        )
        if last_frame is not None:
            config.last_frame = genai_types.Image(image_bytes=last_frame, mime_type="image/png")

        # Veo rejects reference_images together with image + last_frame
        if request.reference_images:
            logger.info(
                f"Dropping {len(request.reference_images)} reference image(s): "
                "frame conditioning takes priority"
            )

        operation = await client.aio.models.generate_videos(
            model=self.model,
            prompt=request.prompt,
            image=(
                genai_types.Image(image_bytes=first_frame, mime_type="image/png")
                if first_frame is not None
                else None
            ),
            config=config,
        )

        async def check(handle):
            refreshed = await client.aio.operations.get(operation=handle)
            return classify_veo_operation(refreshed)

        outcome = await poll_operation(
            operation.name or "veo",
            operation,
            check,
            interval=self.pipeline.video_poll_interval,
            max_attempts=self.pipeline.video_poll_max,
            sleep=self.sleep,
        )

        video = outcome.handle.response.generated_videos[0].video
        if video is not None and video.video_bytes:
            data = video.video_bytes
        elif video is not None and video.uri:
            data = await client.aio.files.download(file=video)
        else:
            raise TerminalBackendError("No video data in Veo response", category="processing")

        path = atomic_write_bytes(Path(request.output_path), data)
        logger.info(f"Veo clip saved to {path}")
        return BackendOutput(
            asset_path=path,
            settings={
                "duration_sec": duration,
                "aspect_ratio": request.aspect_ratio,
                "first_last": last_frame is not None,
            },
        )


# ---------------------------------------------------------------------------
# Replicate (Kling)
# ---------------------------------------------------------------------------
def _data_uri(data: bytes, mime_type: str = "image/png") -> str:
    return f"data:{mime_type};base64,{base64.b64encode(data).decode('ascii')}"


class ReplicateVideoBackend(Backend):
    """Kling on Replicate. Conditions on the first frame only."""

    name = "replicate"
    policy_name = "replicate"
    supports_first_last = False

    def __init__(self, providers: ProvidersConfig, pipeline: PipelineConfig, sleep: Sleep = asyncio.sleep):
        self.providers = providers
        self.pipeline = pipeline
        self.sleep = sleep

    @property
    def model(self) -> str:
        return self.providers.replicate_video_model

    def configured(self) -> bool:
        return bool(self.providers.replicate_api_token)

    def describe(self) -> dict[str, Any]:
        return {"supports_first_last": False}

    async def generate(self, request: GenerationRequest, attempt: int) -> BackendOutput:
        client = ReplicateClient(self.providers.replicate_api_token)
        first_frame = _read_frame(request.first_frame_path)
        duration = 10 if request.duration_sec > 5 else 5

        model_input: dict[str, Any] = {
            "prompt": request.prompt,
            "duration": duration,
            "aspect_ratio": request.aspect_ratio,
        }
        if request.negative_prompt:
            model_input["negative_prompt"] = request.negative_prompt
        if first_frame is not None:
            model_input["start_image"] = _data_uri(first_frame)

        prediction = await client.create_prediction(self.model, model_input)
        outcome = await poll_operation(
            f"replicate:{prediction['id']}",
            prediction,
            client.check,
            interval=self.pipeline.video_poll_interval,
            max_attempts=self.pipeline.video_poll_max,
            sleep=self.sleep,
        )
        path = await client.download(prediction_output_url(outcome.handle), Path(request.output_path))
        logger.info(f"Replicate clip saved to {path}")
        return BackendOutput(
            asset_path=path,
            settings={
                "duration_sec": duration,
                "aspect_ratio": request.aspect_ratio,
                "prediction_id": prediction["id"],
                "first_last": False,
            },
        )


class VideoProvider(GenerationProvider):
    """Clips seeded from the frames chosen by the continuity engine."""

    kind = "video"

    def validate(self, request: GenerationRequest) -> None:
        if request.output_path is None:
            raise ResourceMissingError("output_path is required for video generation")
        for frame in (request.first_frame_path, request.last_frame_path):
            if frame is not None and not Path(frame).exists():
                raise ResourceMissingError(f"Input frame not found: {frame}")

    def prepare(self, backend: Backend, request: GenerationRequest) -> GenerationRequest:
        """Reseed a bridged request for a backend that takes no end frame.

        The bridge target (the previous shot's frame) becomes the start frame,
        which is exactly what last_frame continuity would have sent.
        """
        if request.last_frame_path is None or backend.supports_first_last:
            return request
        logger.info(
            f"video: {backend.name} has no first/last frame support, "
            f"seeding from {request.last_frame_path} instead"
        )
        params = dict(request.params)
        if params.get("continuity_mode") == "bridging":
            params["continuity_mode"] = "last_frame"
        return request.model_copy(
            update={
                "first_frame_path": request.last_frame_path,
                "last_frame_path": None,
                "params": params,
            }
        )

    def supports_first_last(self) -> bool:
        """Whether the backend that would run right now accepts a target end frame."""
        return self.select_backends().active.supports_first_last

    async def write_placeholder(self, request: GenerationRequest) -> BackendOutput:
        logger.info("video: generating placeholder clip")
        seconds = self.settings.pipeline.placeholder_clip_seconds
        path = await asyncio.to_thread(
            write_placeholder_clip, Path(request.output_path), request.first_frame_path, seconds
        )
        return BackendOutput(asset_path=path, settings={"duration_sec": seconds})

    def estimate(self, provider: str, model: str, request: GenerationRequest) -> CostEstimate:
        duration = request.duration_sec
        if provider == "veo":
            duration = veo_duration(duration)
        return estimate_video_cost(provider, model, duration)
