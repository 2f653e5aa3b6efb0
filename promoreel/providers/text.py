"""Script generation: Gemini (JSON output) primary, Ollama secondary.

Both backends must return all four script sections; anything less is a
ScriptValidationError, which goes through the same retry and fallback chain
as a network failure.
"""

import json
import logging
from pathlib import Path
from typing import Any, Optional

from google.genai import types as genai_types
from ollama import AsyncClient
from pydantic import ValidationError

from promoreel.config import ProvidersConfig
from promoreel.errors import ScriptValidationError
from promoreel.providers.base import Backend, BackendOutput, GenerationProvider
from promoreel.providers.placeholders import placeholder_script, write_script_json
from promoreel.schemas.generation import CostEstimate, GenerationRequest
from promoreel.schemas.script import ScriptSections
from promoreel.services.costs import estimate_text_cost
from promoreel.services.genai_client import gemini_configured, get_genai_client

logger = logging.getLogger(__name__)

SCRIPT_SYSTEM_PROMPT = """You are a professional marketing copywriter. Your task is to create compelling video marketing scripts.

Given a brief description of a product, service, or campaign, generate a structured marketing script with these sections:

1. hook - A compelling opening (1-2 sentences) that grabs attention immediately. Use questions, surprising facts, or emotional triggers.
2. problem - Identify the pain point or challenge the target audience faces (2-3 sentences). Make them feel understood.
3. solution - Present the product/service as the answer (2-3 sentences). Highlight key benefits and unique value.
4. cta - A clear call-to-action (1-2 sentences). Tell them exactly what to do next.

Keep the tone conversational and engaging. Each section should flow naturally into the next.

Return ONLY a JSON object with the keys "hook", "problem", "solution" and "cta"."""


def _strip_code_fence(raw: str) -> str:
    # Some models wrap JSON in markdown code fences
    stripped = raw.strip()
    if stripped.startswith("```"):
        first_newline = stripped.find("\n")
        stripped = stripped[first_newline + 1:] if first_newline != -1 else ""
        if stripped.endswith("```"):
            stripped = stripped[:-3].rstrip()
    return stripped


def parse_script(raw: Optional[str]) -> ScriptSections:
    """Parse a backend's JSON answer into validated script sections.

    Accepts either the four keys at the top level or nested under
    ``"script"``.

    Raises:
        ScriptValidationError: Empty, unparsable, or missing a section.
    """
    if not raw or not raw.strip():
        raise ScriptValidationError("No text in response")
    try:
        data = json.loads(_strip_code_fence(raw))
    except json.JSONDecodeError as e:
        raise ScriptValidationError(f"Failed to parse script JSON: {raw[:200]}") from e

    if isinstance(data, dict) and isinstance(data.get("script"), dict):
        data = data["script"]
    if not isinstance(data, dict):
        raise ScriptValidationError("Script response is not a JSON object")

    try:
        return ScriptSections.model_validate(data)
    except ValidationError as e:
        missing = sorted({str(err["loc"][0]) for err in e.errors() if err.get("loc")})
        raise ScriptValidationError(
            f"Script missing required sections: {', '.join(missing)}"
        ) from e


def _user_prompt(brief: str) -> str:
    return f"Create a marketing script for: {brief}"


class GeminiTextBackend(Backend):
    """Gemini ``generate_content`` with a JSON response schema."""

    name = "gemini"
    policy_name = "gemini"

    def __init__(self, providers: ProvidersConfig, temperature: float = 0.7):
        self.providers = providers
        self.temperature = temperature

    @property
    def model(self) -> str:
        return self.providers.text_model

    def configured(self) -> bool:
        return gemini_configured(self.providers)

    def describe(self) -> dict[str, Any]:
        return {"temperature": self.temperature}

    async def generate(self, request: GenerationRequest, attempt: int) -> BackendOutput:
        client = get_genai_client(self.providers, self.model)
        config = genai_types.GenerateContentConfig(
            temperature=self.temperature,
            response_mime_type="application/json",
            response_schema=ScriptSections,
            system_instruction=SCRIPT_SYSTEM_PROMPT,
        )
        response = await client.aio.models.generate_content(
            model=self.model,
            contents=_user_prompt(request.prompt),
            config=config,
        )
        script = parse_script(response.text)
        logger.info(f"Script generated with {self.model}")
        return BackendOutput(script=script, settings=self.describe())


class OllamaTextBackend(Backend):
    """Local or hosted Ollama chat model with ``format='json'``."""

    name = "ollama"
    policy_name = "ollama"

    def __init__(self, providers: ProvidersConfig, temperature: float = 0.7):
        self.providers = providers
        self.temperature = temperature

    @property
    def model(self) -> str:
        # The library uses bare model names
        return self.providers.ollama_model.removeprefix("ollama/")

    def configured(self) -> bool:
        return bool(self.providers.ollama_host)

    def describe(self) -> dict[str, Any]:
        return {"temperature": self.temperature, "host": self.providers.ollama_host}

    def _client(self) -> AsyncClient:
        api_key = self.providers.ollama_api_key
        headers = {"Authorization": f"Bearer {api_key}"} if api_key else {}
        return AsyncClient(host=self.providers.ollama_host, headers=headers)

    async def generate(self, request: GenerationRequest, attempt: int) -> BackendOutput:
        response = await self._client().chat(
            model=self.model,
            messages=[
                {"role": "system", "content": SCRIPT_SYSTEM_PROMPT},
                {"role": "user", "content": _user_prompt(request.prompt)},
            ],
            format="json",
            options={"temperature": self.temperature},
            stream=False,
        )
        script = parse_script(response.message.content)
        logger.info(f"Script generated with ollama/{self.model}")
        return BackendOutput(script=script, settings=self.describe())


class TextProvider(GenerationProvider):
    """Four-section marketing script from a short brief (``request.prompt``)."""

    kind = "text"

    async def finalize(self, request: GenerationRequest, output: BackendOutput) -> BackendOutput:
        if request.output_path is not None and output.script is not None:
            output.asset_path = write_script_json(Path(request.output_path), output.script)
        return output

    async def write_placeholder(self, request: GenerationRequest) -> BackendOutput:
        logger.info("text: generating placeholder script")
        output = BackendOutput(script=placeholder_script(request.prompt))
        return await self.finalize(request, output)

    def estimate(self, provider: str, model: str, request: GenerationRequest) -> CostEstimate:
        return estimate_text_cost(provider, model)
