"""Generation provider core: backend selection, fallback and degradation.

A provider owns an ordered set of backends for one media kind. Each call to
``generate`` resolves which backend is active right now (credentials and
switches are re-read every call), runs it through the retry executor, moves
to the secondary backend if the primary gives up, and finally writes a
placeholder asset. Only ``ResourceMissingError`` escapes; every backend
failure is absorbed and reported on the result.
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Awaitable, Callable, Optional, Sequence

from promoreel.config import Settings, settings as default_settings
from promoreel.errors import ResourceMissingError
from promoreel.providers.placeholders import PLACEHOLDER_NAME
from promoreel.schemas.generation import (
    CostEstimate,
    GenerationRequest,
    GenerationResult,
    MediaKind,
    ProviderDescriptor,
)
from promoreel.schemas.script import ScriptSections
from promoreel.services.costs import CostLedger, default_ledger
from promoreel.services.resilience import execute, policy_for

logger = logging.getLogger(__name__)

Sleep = Callable[[float], Awaitable[Any]]


@dataclass
class BackendOutput:
    """What a backend hands back after finalizing its asset."""

    asset_path: Optional[Path] = None
    script: Optional[ScriptSections] = None
    settings: dict[str, Any] = field(default_factory=dict)


class Backend(ABC):
    """One vendor endpoint for one media kind.

    Attributes:
        name: Backend identifier reported as ``provider_used``.
        policy_name: Key of the retry policy in ``settings.retry``.
        supports_first_last: Whether the backend can condition on both a
            start and a target end frame.
    """

    name: str
    policy_name: str = "default"
    supports_first_last: bool = False

    @property
    @abstractmethod
    def model(self) -> str:
        ...

    @abstractmethod
    def configured(self) -> bool:
        """True when credentials for this backend are present."""
        ...

    @abstractmethod
    async def generate(self, request: GenerationRequest, attempt: int) -> BackendOutput:
        """Run one attempt. Assets must be finalized atomically at ``request.output_path``."""
        ...

    def describe(self) -> dict[str, Any]:
        return {}


class BackendRole(str, Enum):
    PRIMARY = "primary"
    SECONDARY = "secondary"
    PLACEHOLDER = "placeholder"


@dataclass(frozen=True)
class BackendChoice:
    role: BackendRole
    backend: Optional[Backend] = None

    @property
    def name(self) -> str:
        return self.backend.name if self.backend else PLACEHOLDER_NAME

    @property
    def model(self) -> str:
        return self.backend.model if self.backend else PLACEHOLDER_NAME

    @property
    def supports_first_last(self) -> bool:
        return bool(self.backend and self.backend.supports_first_last)


PLACEHOLDER_CHOICE = BackendChoice(BackendRole.PLACEHOLDER)


@dataclass(frozen=True)
class BackendSelection:
    """Backends resolved for a single call."""

    active: BackendChoice
    fallback: Optional[BackendChoice] = None

    def attempts(self) -> list[BackendChoice]:
        return [
            choice
            for choice in (self.active, self.fallback)
            if choice is not None and choice.role is not BackendRole.PLACEHOLDER
        ]


class GenerationProvider(ABC):
    """Uniform ``generate(request) -> GenerationResult`` for one media kind."""

    kind: MediaKind

    def __init__(
        self,
        backends: Sequence[Backend],
        *,
        preferred: Optional[str] = None,
        enabled: bool = True,
        settings: Optional[Settings] = None,
        ledger: Optional[CostLedger] = None,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        self.backends = list(backends)
        self.preferred = preferred
        self.enabled = enabled
        self.settings = settings or default_settings
        self.ledger = ledger if ledger is not None else default_ledger
        self.sleep = sleep
        self.descriptor = ProviderDescriptor(name=self.kind)

    # ------------------------------------------------------------------
    # Backend selection
    # ------------------------------------------------------------------
    def select_backends(self) -> BackendSelection:
        """Resolve the active and fallback backends from live configuration.

        The preferred backend wins when configured; otherwise the first
        configured backend in declaration order. The fallback is the next
        configured backend that is not the active one.
        """
        if not self.enabled:
            return BackendSelection(active=PLACEHOLDER_CHOICE)

        configured = [backend for backend in self.backends if backend.configured()]
        if not configured:
            return BackendSelection(active=PLACEHOLDER_CHOICE)

        primary = next((b for b in configured if b.name == self.preferred), configured[0])
        secondary = next((b for b in configured if b is not primary), None)
        return BackendSelection(
            active=BackendChoice(BackendRole.PRIMARY, primary),
            fallback=BackendChoice(BackendRole.SECONDARY, secondary) if secondary else None,
        )

    def _update_descriptor(self, choice: BackendChoice) -> None:
        self.descriptor.active_backend = choice.name
        self.descriptor.model = choice.model
        self.descriptor.settings = choice.backend.describe() if choice.backend else {}

    # ------------------------------------------------------------------
    # Per-kind hooks
    # ------------------------------------------------------------------
    def validate(self, request: GenerationRequest) -> None:
        """Raise ResourceMissingError for requests no backend could serve."""

    @abstractmethod
    async def write_placeholder(self, request: GenerationRequest) -> BackendOutput:
        ...

    @abstractmethod
    def estimate(self, provider: str, model: str, request: GenerationRequest) -> CostEstimate:
        ...

    def prepare(self, backend: Backend, request: GenerationRequest) -> GenerationRequest:
        """Adapt the request to what ``backend`` accepts before it runs."""
        return request

    async def finalize(self, request: GenerationRequest, output: BackendOutput) -> BackendOutput:
        return output

    # ------------------------------------------------------------------
    # Generation
    # ------------------------------------------------------------------
    async def _attempt(self, backend: Backend, request: GenerationRequest) -> BackendOutput:
        policy = policy_for(backend.policy_name, self.settings)

        async def operation(attempt: int) -> BackendOutput:
            if attempt > 1:
                logger.info(f"{self.kind}: {backend.name} retry attempt {attempt}")
            return await backend.generate(request, attempt)

        output = await execute(operation, policy, sleep=self.sleep)
        return await self.finalize(request, output)

    async def generate(self, request: GenerationRequest) -> GenerationResult:
        """Generate one asset, degrading instead of failing.

        Args:
            request: Immutable generation request.

        Returns:
            GenerationResult whose ``asset_path`` exists on disk (text results
            carry ``script`` and a path only when ``output_path`` was given).

        Raises:
            ResourceMissingError: The request itself is unusable.
        """
        self.validate(request)
        selection = self.select_backends()
        self._update_descriptor(selection.active)

        errors: list[str] = []
        for choice in selection.attempts():
            backend = choice.backend
            logger.info(f"{self.kind}: generating with {backend.name} ({choice.role.value})")
            attempt_request = self.prepare(backend, request)
            try:
                output = await self._attempt(backend, attempt_request)
            except ResourceMissingError:
                raise
            except Exception as e:
                message = f"{backend.name}: {e}"
                errors.append(message)
                logger.warning(f"{self.kind}: {choice.role.value} backend failed: {message}")
                continue

            return self._result(
                attempt_request,
                output,
                provider=backend.name,
                model=backend.model,
                fallback_used=choice.role is BackendRole.SECONDARY,
            )

        if errors:
            logger.warning(f"{self.kind}: all backends failed, using placeholder")
        output = await self.write_placeholder(request)
        return self._result(
            request,
            output,
            provider=PLACEHOLDER_NAME,
            model=PLACEHOLDER_NAME,
            fallback_used=False,
            error="; ".join(errors) or None,
        )

    def _result(
        self,
        request: GenerationRequest,
        output: BackendOutput,
        *,
        provider: str,
        model: str,
        fallback_used: bool,
        error: Optional[str] = None,
    ) -> GenerationResult:
        cost = self.estimate(provider, model, request)
        try:
            self.ledger.add_operation(
                self.kind,
                provider,
                model,
                cost.cost,
                {"prompt": request.prompt[:50], "fallback_used": fallback_used},
            )
        except Exception as e:
            # Cost tracking is informational only
            logger.error(f"Failed to record {self.kind} cost: {e}")

        return GenerationResult(
            asset_path=output.asset_path,
            provider_used=provider,
            model_used=model,
            cost_estimate=cost,
            fallback_used=fallback_used,
            error=error,
            first_frame_path=request.first_frame_path,
            last_frame_path=request.last_frame_path,
            script=output.script,
            settings=output.settings,
            params=dict(request.params),
        )
