"""google-genai client wrapper shared by the Gemini and Veo backends.

Uses an API key when one is configured, otherwise Vertex AI mode with
Application Default Credentials for the configured project.

Usage:
    from promoreel.services.genai_client import get_genai_client

    client = get_genai_client(settings.providers)
"""

from pathlib import Path
from typing import Optional

from dotenv import load_dotenv
from google import genai

from promoreel.config import ProvidersConfig
from promoreel.errors import ResourceMissingError

# Load .env for GOOGLE_APPLICATION_CREDENTIALS (ADC)
load_dotenv(Path.cwd() / ".env")

# Per-credential client cache
_clients: dict[tuple, genai.Client] = {}

# Models that must use the global endpoint in Vertex mode
GLOBAL_REGION_MODELS = {
    "gemini-3-flash-preview",
    "gemini-3-pro-preview",
    "gemini-3-pro-image-preview",
}


def gemini_configured(providers: ProvidersConfig) -> bool:
    """True when either an API key or a Vertex project is set."""
    return bool(providers.gemini_api_key or providers.google_cloud_project)


def location_for_model(model_id: str, providers: ProvidersConfig) -> str:
    """Return the Vertex AI location needed for a given model ID."""
    if model_id in GLOBAL_REGION_MODELS:
        return "global"
    return providers.google_cloud_location


def get_genai_client(
    providers: ProvidersConfig, model_id: Optional[str] = None
) -> genai.Client:
    """Get or create a client for the configured credentials.

    Clients are cached per credential/location so repeated calls are cheap.

    Raises:
        ResourceMissingError: Neither an API key nor a Vertex project is set.
    """
    if providers.gemini_api_key:
        key = ("api_key", providers.gemini_api_key)
        if key not in _clients:
            _clients[key] = genai.Client(api_key=providers.gemini_api_key)
        return _clients[key]

    if not providers.google_cloud_project:
        raise ResourceMissingError("No Gemini API key or Google Cloud project configured")

    location = (
        location_for_model(model_id, providers)
        if model_id
        else providers.google_cloud_location
    )
    key = ("vertex", providers.google_cloud_project, location)
    if key not in _clients:
        _clients[key] = genai.Client(
            vertexai=True,
            project=providers.google_cloud_project,
            location=location,
        )
    return _clients[key]
