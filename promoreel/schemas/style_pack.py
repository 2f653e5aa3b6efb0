"""Style pack models: reference frames sampled from example videos."""

from datetime import datetime
from pathlib import Path
from typing import Optional

from pydantic import BaseModel, Field

from promoreel.schemas.project import utcnow


class SourceVideo(BaseModel):
    filename: str
    path: Path
    added_at: datetime = Field(default_factory=utcnow)


class StyleRef(BaseModel):
    """A scored reference frame. Higher ``score`` ranks first."""

    path: Path
    source: Optional[Path] = None
    brightness: float = 0.0
    contrast: float = 0.0
    sharpness: float = 0.0
    palette: list[str] = Field(default_factory=list)
    score: float = 0.0


class StyleSummary(BaseModel):
    aspect_ratio: Optional[str] = None
    fps: Optional[float] = None
    brightness: Optional[float] = None
    contrast: Optional[float] = None
    palette: list[str] = Field(default_factory=list)


class StylePack(BaseModel):
    pack_id: str
    name: str
    description: str = ""
    created_at: datetime = Field(default_factory=utcnow)
    source_videos: list[SourceVideo] = Field(default_factory=list)
    extracted_ref_images: list[StyleRef] = Field(default_factory=list)
    metadata_summary: StyleSummary = Field(default_factory=StyleSummary)
    prompt_spine: str = ""


class StylePackCreate(BaseModel):
    name: Optional[str] = None
    description: Optional[str] = None
