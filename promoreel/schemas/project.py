"""Project and shot models.

A shot's keyframe and clip are versioned independently. ``keyframe_version``
and ``clip_version`` are pointers into the shot's append-only ``history``;
version 0 means the asset was never generated.
"""

from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

from promoreel.schemas.script import ProjectScript

AssetKind = Literal["keyframe", "clip"]
AssetStatus = Literal["pending", "ready", "failed"]


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class VersionEntry(BaseModel):
    """Immutable snapshot of one generated keyframe or clip."""

    model_config = ConfigDict(frozen=True)

    kind: AssetKind
    version: int
    asset_path: Path
    provider: str
    model: str
    settings: dict[str, Any] = Field(default_factory=dict)
    fallback_used: bool = False
    last_frame_path: Optional[Path] = None
    error: Optional[str] = None
    created_at: datetime = Field(default_factory=utcnow)


class ContinuityRecord(BaseModel):
    """Frames used to seed a clip and the frame it produced for its successor."""

    prev_last_frame_path: Optional[Path] = None
    first_frame_path: Optional[Path] = None
    target_last_frame_path: Optional[Path] = None
    last_frame_path: Optional[Path] = None


class ShotProviderConfig(BaseModel):
    """Backends and models that produced the shot's active assets."""

    image_provider: Optional[str] = None
    image_model: Optional[str] = None
    image_settings: dict[str, Any] = Field(default_factory=dict)
    video_provider: Optional[str] = None
    video_model: Optional[str] = None
    video_settings: dict[str, Any] = Field(default_factory=dict)


class ShotStatus(BaseModel):
    keyframe_status: AssetStatus = "pending"
    clip_status: AssetStatus = "pending"
    error: Optional[str] = None


class Shot(BaseModel):
    """One storyboard unit."""

    id: str
    order: int
    duration_sec: int
    keyframe_prompt: str
    negative_prompt: str = ""
    video_prompt: str
    video_negative_prompt: str = ""
    on_screen_text: str = ""
    camera_notes: str = ""
    keyframe_image_path: Optional[Path] = None
    keyframe_version: int = 0
    clip_path: Optional[Path] = None
    clip_version: int = 0
    continuity: ContinuityRecord = Field(default_factory=ContinuityRecord)
    provider_config: ShotProviderConfig = Field(default_factory=ShotProviderConfig)
    status: ShotStatus = Field(default_factory=ShotStatus)
    history: list[VersionEntry] = Field(default_factory=list)

    def versions(self, kind: AssetKind) -> list[VersionEntry]:
        return [entry for entry in self.history if entry.kind == kind]

    def latest_version(self, kind: AssetKind) -> int:
        """Highest version ever recorded for ``kind`` (0 if none)."""
        return max((entry.version for entry in self.versions(kind)), default=0)

    def find_version(self, kind: AssetKind, version: int) -> Optional[VersionEntry]:
        for entry in self.history:
            if entry.kind == kind and entry.version == version:
                return entry
        return None


class BrandVoice(BaseModel):
    playful: float = 0.5
    luxury: float = 0.5
    minimal: float = 0.5


class BrandKit(BaseModel):
    colors: list[str] = Field(default_factory=list)
    logo_path: Optional[Path] = None
    product_photo_paths: list[Path] = Field(default_factory=list)
    brand_voice: BrandVoice = Field(default_factory=BrandVoice)


class ExportRecord(BaseModel):
    """One export attempt. Appended even when the export is a placeholder."""

    model_config = ConfigDict(frozen=True)

    path: Path
    created_at: datetime = Field(default_factory=utcnow)
    audio_path: Optional[Path] = None
    clip_paths: list[Path] = Field(default_factory=list)
    warning: Optional[str] = None


class Project(BaseModel):
    """Persisted project document."""

    id: str
    name: str
    created_at: datetime = Field(default_factory=utcnow)
    last_updated: datetime = Field(default_factory=utcnow)
    aspect_ratio: str = "16:9"
    continuity_mode: str = "last_frame"
    fps_target: int = 30
    target_duration: int = 30
    selected_style_pack_id: Optional[str] = None
    brand_kit: BrandKit = Field(default_factory=BrandKit)
    script: ProjectScript = Field(default_factory=ProjectScript)
    shots: list[Shot] = Field(default_factory=list)
    exports: list[ExportRecord] = Field(default_factory=list)
    status: str = "pending"
    error_message: Optional[str] = None

    def shot_index(self, shot_id: str) -> Optional[int]:
        for index, shot in enumerate(self.shots):
            if shot.id == shot_id:
                return index
        return None


class ProjectCreate(BaseModel):
    """Fields accepted when creating a project."""

    name: Optional[str] = None
    aspect_ratio: Optional[str] = None
    continuity_mode: Optional[str] = None
    target_duration: Optional[int] = Field(default=None, ge=2)
    selected_style_pack_id: Optional[str] = None
