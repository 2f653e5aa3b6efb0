"""Configuration management with YAML and environment variable support."""

from pathlib import Path
from typing import ClassVar, Optional

import yaml
from pydantic import BaseModel, Field, field_validator
from pydantic_settings import (
    BaseSettings,
    PydanticBaseSettingsSource,
    SettingsConfigDict,
)


class YamlConfigSettingsSource(PydanticBaseSettingsSource):
    """Custom settings source that loads configuration from YAML file."""

    def get_field_value(self, field, field_name: str):
        # Not used with prepare method
        pass

    def prepare_field_value(self, field_name: str, field, value, value_is_complex: bool):
        return value

    def __call__(self):
        yaml_path = Path("config.yaml")
        if not yaml_path.exists():
            return {}

        with open(yaml_path) as f:
            data = yaml.safe_load(f) or {}

        return data


class ProvidersConfig(BaseModel):
    """Backend credentials, model identifiers and per-kind switches.

    A backend counts as configured only when its credentials are present;
    the use_real_* flags force the placeholder path regardless.
    """

    use_real_text: bool = True
    use_real_image: bool = False
    use_real_video: bool = False

    text_backend: str = "gemini"
    image_backend: str = "gemini"
    video_backend: str = "veo"

    gemini_api_key: Optional[str] = None
    google_cloud_project: Optional[str] = None
    google_cloud_location: str = "us-central1"

    replicate_api_token: Optional[str] = None
    ollama_host: Optional[str] = None
    ollama_api_key: Optional[str] = None

    text_model: str = "gemini-2.0-flash"
    ollama_model: str = "llama3.1"
    gemini_image_model: str = "gemini-3-pro-image-preview"
    gemini_image_size: str = "2K"
    replicate_image_model: str = "black-forest-labs/flux-1.1-pro"
    veo_model: str = "veo-3.1-generate-preview"
    replicate_video_model: str = "kwaivgi/kling-v2.6"


class RetryPolicy(BaseModel):
    """Thresholds for one backend's retry policy (delays in seconds)."""

    max_retries: int = 3
    initial_delay: float = 1.0
    max_delay: float = 30.0
    backoff_multiplier: float = 2.0
    retryable_errors: list[str] = Field(
        default_factory=lambda: [
            "econnreset",
            "connection reset",
            "etimedout",
            "timeout",
            "enotfound",
            "rate limit",
            "quota exceeded",
            "429",
            "500",
            "502",
            "503",
            "504",
        ]
    )


class RetryConfig(BaseModel):
    """Per-backend retry policies. Unknown backends use ``default``."""

    default: RetryPolicy = Field(default_factory=RetryPolicy)
    gemini: RetryPolicy = Field(
        default_factory=lambda: RetryPolicy(
            initial_delay=2.0,
            retryable_errors=[
                "rate limit",
                "quota exceeded",
                "timeout",
                "429",
                "500",
                "503",
                "resource_exhausted",
            ],
        )
    )
    replicate: RetryPolicy = Field(
        default_factory=lambda: RetryPolicy(
            initial_delay=1.0,
            retryable_errors=[
                "rate limit",
                "timeout",
                "429",
                "500",
                "503",
                "processing",
            ],
        )
    )
    ollama: RetryPolicy = Field(
        default_factory=lambda: RetryPolicy(max_retries=2, initial_delay=2.0)
    )


class PipelineConfig(BaseModel):
    """Pipeline execution parameters."""

    continuity_mode: str = "last_frame"
    default_aspect_ratio: str = "16:9"
    default_target_duration: int = 30
    fps_target: int = 30
    video_poll_interval: float = 10.0
    video_poll_max: int = 60
    image_poll_interval: float = 2.0
    image_poll_max: int = 60
    placeholder_clip_seconds: int = 3
    style_ref_count: int = 3
    house_style: str = "Visualize with marketing polish."
    video_house_style: str = "Maintain continuity and brand style."
    negative_prompt: str = "blurry, distorted, low quality"
    video_negative_prompt: str = "flicker, jitter, low fidelity"
    camera_notes: str = "Smooth push-in, steady framing."


class StorageConfig(BaseModel):
    """Storage and database configuration."""

    data_dir: Path = Path("data")
    database_url: str = "sqlite+aiosqlite:///data/promoreel.db"

    @field_validator("data_dir", mode="before")
    @classmethod
    def convert_data_dir_to_path(cls, v):
        """Convert string to Path object."""
        if isinstance(v, str):
            return Path(v)
        return v


class ServerConfig(BaseModel):
    """Server configuration."""

    host: str = "127.0.0.1"
    port: int = 8000


class Settings(BaseSettings):
    """Main application settings with YAML and environment variable support.

    Configuration sources (in priority order):
    1. Environment variables (prefix: PROMOREEL_, delimiter: __)
    2. .env file
    3. YAML file (config.yaml)
    4. Field defaults
    """

    model_config: ClassVar[SettingsConfigDict] = SettingsConfigDict(
        env_nested_delimiter="__",
        env_prefix="PROMOREEL_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    providers: ProvidersConfig = Field(default_factory=ProvidersConfig)
    retry: RetryConfig = Field(default_factory=RetryConfig)
    pipeline: PipelineConfig = Field(default_factory=PipelineConfig)
    storage: StorageConfig = Field(default_factory=StorageConfig)
    server: ServerConfig = Field(default_factory=ServerConfig)

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ):
        """Customize settings sources to include YAML configuration.

        Priority order (highest to lowest):
        1. Init settings (explicit keyword arguments, used by tests)
        2. Environment variables
        3. .env file
        4. YAML file
        """
        return (
            init_settings,
            env_settings,
            dotenv_settings,
            YamlConfigSettingsSource(settings_cls),
        )


# Singleton instance
settings = Settings()
