"""Generation providers for text, image and video.

Usage:
    from promoreel.providers import build_providers

    providers = build_providers(settings, ledger)
    result = await providers.image.generate(request)
"""

import asyncio
from dataclasses import dataclass
from typing import Optional

from promoreel.config import Settings, settings as default_settings
from promoreel.providers.base import (
    Backend,
    BackendChoice,
    BackendOutput,
    BackendRole,
    BackendSelection,
    GenerationProvider,
    Sleep,
)
from promoreel.providers.image import GeminiImageBackend, ImageProvider, ReplicateImageBackend
from promoreel.providers.text import GeminiTextBackend, OllamaTextBackend, TextProvider
from promoreel.providers.video import ReplicateVideoBackend, VeoVideoBackend, VideoProvider
from promoreel.services.costs import CostLedger


@dataclass
class ProviderSet:
    text: TextProvider
    image: ImageProvider
    video: VideoProvider


def build_providers(
    settings: Optional[Settings] = None,
    ledger: Optional[CostLedger] = None,
    sleep: Sleep = asyncio.sleep,
) -> ProviderSet:
    """Wire the configured backends into one provider per media kind."""
    settings = settings or default_settings
    cfg = settings.providers
    pipeline = settings.pipeline

    text = TextProvider(
        [GeminiTextBackend(cfg), OllamaTextBackend(cfg)],
        preferred=cfg.text_backend,
        enabled=cfg.use_real_text,
        settings=settings,
        ledger=ledger,
        sleep=sleep,
    )
    image = ImageProvider(
        [GeminiImageBackend(cfg), ReplicateImageBackend(cfg, pipeline, sleep)],
        preferred=cfg.image_backend,
        enabled=cfg.use_real_image,
        settings=settings,
        ledger=ledger,
        sleep=sleep,
    )
    video = VideoProvider(
        [VeoVideoBackend(cfg, pipeline, sleep), ReplicateVideoBackend(cfg, pipeline, sleep)],
        preferred=cfg.video_backend,
        enabled=cfg.use_real_video,
        settings=settings,
        ledger=ledger,
        sleep=sleep,
    )
    return ProviderSet(text=text, image=image, video=video)


__all__ = [
    "Backend",
    "BackendChoice",
    "BackendOutput",
    "BackendRole",
    "BackendSelection",
    "GenerationProvider",
    "ImageProvider",
    "ProviderSet",
    "TextProvider",
    "VideoProvider",
    "build_providers",
]
