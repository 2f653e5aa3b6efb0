"""Request/result shapes shared by every generation provider."""

from pathlib import Path
from typing import Any, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from promoreel.schemas.script import ScriptSections

MAX_REFERENCE_IMAGES = 3

MediaKind = Literal["text", "image", "video"]


class GenerationRequest(BaseModel):
    """Everything a backend needs for one generation call. Immutable once built."""

    model_config = ConfigDict(frozen=True)

    prompt: str
    negative_prompt: Optional[str] = None
    output_path: Optional[Path] = None
    reference_images: tuple[Path, ...] = ()
    first_frame_path: Optional[Path] = None
    last_frame_path: Optional[Path] = None
    aspect_ratio: str = "16:9"
    duration_sec: int = 4
    params: dict[str, Any] = Field(default_factory=dict)

    @field_validator("reference_images")
    @classmethod
    def limit_reference_images(cls, v: tuple[Path, ...]) -> tuple[Path, ...]:
        if len(v) > MAX_REFERENCE_IMAGES:
            raise ValueError(
                f"At most {MAX_REFERENCE_IMAGES} reference images are accepted, got {len(v)}"
            )
        return v


class CostEstimate(BaseModel):
    """Estimated cost of one operation with a human-readable breakdown."""

    cost: float = 0.0
    formatted: str = "Unknown"
    provider: str
    model: str
    description: Optional[str] = None
    breakdown: Optional[str] = None


class GenerationResult(BaseModel):
    """Uniform provider result.

    ``provider_used`` is ``"placeholder"`` when every backend failed or none
    was configured; ``error`` then carries the triggering failure.
    """

    asset_path: Optional[Path] = None
    provider_used: str
    model_used: str
    cost_estimate: CostEstimate
    fallback_used: bool = False
    error: Optional[str] = None
    first_frame_path: Optional[Path] = None
    last_frame_path: Optional[Path] = None
    script: Optional[ScriptSections] = None
    settings: dict[str, Any] = Field(default_factory=dict)
    params: dict[str, Any] = Field(default_factory=dict)

    @property
    def is_placeholder(self) -> bool:
        return self.provider_used == "placeholder"


class ProviderDescriptor(BaseModel):
    """Which backend a provider currently routes to."""

    name: MediaKind
    active_backend: str = "placeholder"
    model: str = "placeholder"
    settings: dict[str, Any] = Field(default_factory=dict)
