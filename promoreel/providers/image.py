"""Keyframe image generation: Gemini image model primary, Replicate Flux secondary."""

import asyncio
import logging
from pathlib import Path
from typing import Any, Awaitable, Callable

from google.genai import types as genai_types

from promoreel.config import PipelineConfig, ProvidersConfig
from promoreel.errors import ResourceMissingError, TerminalBackendError
from promoreel.providers.base import Backend, BackendOutput, GenerationProvider
from promoreel.providers.placeholders import write_placeholder_png
from promoreel.schemas.generation import CostEstimate, GenerationRequest
from promoreel.services.costs import estimate_image_cost
from promoreel.services.file_manager import atomic_write_bytes
from promoreel.services.genai_client import gemini_configured, get_genai_client
from promoreel.services.polling import poll_operation
from promoreel.services.replicate_client import ReplicateClient, prediction_output_url

logger = logging.getLogger(__name__)

_REFERENCE_PREFIX = (
    "The following reference image(s) define the visual style of the brand: "
    "palette, lighting and framing. Match that look.\n\n"
)


def _with_negative(prompt: str, negative_prompt: str | None) -> str:
    if negative_prompt:
        return f"{prompt}\nAvoid: {negative_prompt}"
    return prompt


class GeminiImageBackend(Backend):
    """Gemini ``generate_content`` with ``response_modalities=["IMAGE"]``."""

    name = "gemini"
    policy_name = "gemini"

    def __init__(self, providers: ProvidersConfig):
        self.providers = providers

    @property
    def model(self) -> str:
        return self.providers.gemini_image_model

    def configured(self) -> bool:
        return gemini_configured(self.providers)

    def describe(self) -> dict[str, Any]:
        return {"image_size": self.providers.gemini_image_size}

    async def generate(self, request: GenerationRequest, attempt: int) -> BackendOutput:
        client = get_genai_client(self.providers, self.model)

        # Contents: [prefix, ref_image_1, ..., prompt]
        contents: list = []
        if request.reference_images:
            contents.append(_REFERENCE_PREFIX)
            for ref_path in request.reference_images:
                contents.append(
                    genai_types.Part.from_bytes(
                        data=Path(ref_path).read_bytes(), mime_type="image/png"
                    )
                )
        contents.append(_with_negative(request.prompt, request.negative_prompt))

        image_config = genai_types.ImageConfig(aspect_ratio=request.aspect_ratio)
        if "gemini-3" in self.model:
            image_config.image_size = self.providers.gemini_image_size

        response = await client.aio.models.generate_content(
            model=self.model,
            contents=contents,
            config=genai_types.GenerateContentConfig(
                response_modalities=["IMAGE"],
                image_config=image_config,
            ),
        )

        candidates = response.candidates or []
        parts = candidates[0].content.parts if candidates and candidates[0].content else []
        for part in parts or []:
            if part.inline_data and part.inline_data.data:
                path = atomic_write_bytes(Path(request.output_path), part.inline_data.data)
                logger.info(f"Gemini image saved to {path}")
                return BackendOutput(
                    asset_path=path,
                    settings={**self.describe(), "aspect_ratio": request.aspect_ratio},
                )

        raise TerminalBackendError("No image data in Gemini response", category="processing")


class ReplicateImageBackend(Backend):
    """Replicate Flux 1.1 Pro prediction, polled until it settles."""

    name = "replicate"
    policy_name = "replicate"

    def __init__(
        self,
        providers: ProvidersConfig,
        pipeline: PipelineConfig,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self.providers = providers
        self.pipeline = pipeline
        self.sleep = sleep

    @property
    def model(self) -> str:
        return self.providers.replicate_image_model

    def configured(self) -> bool:
        return bool(self.providers.replicate_api_token)

    async def generate(self, request: GenerationRequest, attempt: int) -> BackendOutput:
        client = ReplicateClient(self.providers.replicate_api_token)
        # Flux 1.1 Pro takes aspect_ratio as a string, not width/height
        model_input = {
            "prompt": request.prompt,
            "aspect_ratio": request.aspect_ratio or "16:9",
            "output_format": "png",
            "output_quality": 90,
        }
        prediction = await client.create_prediction(self.model, model_input)
        outcome = await poll_operation(
            f"replicate:{prediction['id']}",
            prediction,
            client.check,
            interval=self.pipeline.image_poll_interval,
            max_attempts=self.pipeline.image_poll_max,
            sleep=self.sleep,
        )
        path = await client.download(prediction_output_url(outcome.handle), Path(request.output_path))
        logger.info(f"Replicate image saved to {path}")
        return BackendOutput(
            asset_path=path,
            settings={"aspect_ratio": model_input["aspect_ratio"], "prediction_id": prediction["id"]},
        )


class ImageProvider(GenerationProvider):
    """Keyframe images, conditioned on up to three style references."""

    kind = "image"

    def validate(self, request: GenerationRequest) -> None:
        if request.output_path is None:
            raise ResourceMissingError("output_path is required for image generation")

    async def write_placeholder(self, request: GenerationRequest) -> BackendOutput:
        logger.info("image: generating placeholder image")
        return BackendOutput(asset_path=write_placeholder_png(Path(request.output_path)))

    def estimate(self, provider: str, model: str, request: GenerationRequest) -> CostEstimate:
        return estimate_image_cost(provider, model)
