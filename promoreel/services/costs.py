"""Cost estimation for generation operations and the session cost ledger.

Prices are per-vendor, per-model approximations used for reporting only;
nothing here ever blocks or fails a generation. Unknown provider/model pairs
estimate to zero and are labelled ``Unknown``.
"""

import logging
import threading
import time
from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field

from promoreel.schemas.generation import CostEstimate, MediaKind
from promoreel.schemas.project import utcnow

logger = logging.getLogger(__name__)

# Pricing per vendor and model (USD)
PRICING: dict[str, dict[str, dict[str, Any]]] = {
    "gemini": {
        "gemini-3-pro-image-preview": {
            "type": "image",
            "cost_per": 0.04,
            "unit": "image",
            "description": "Gemini 3 Pro Image - best quality image generation",
        },
        "gemini-2.5-flash-image": {
            "type": "image",
            "cost_per": 0.04,
            "unit": "image",
            "description": "Gemini 2.5 Flash Image - fast image generation",
        },
        "gemini-2.0-flash": {
            "type": "text",
            "input_cost_per_1k": 0.0001,
            "output_cost_per_1k": 0.0004,
            "unit": "tokens",
            "description": "Gemini 2.0 Flash - fast text generation",
        },
        "veo-3.0-fast-generate-001": {
            "type": "video",
            "cost_per_sec": 0.15,
            "unit": "second",
            "description": "Veo 3.0 Fast - quick video generation",
        },
        "veo-3.0-generate-001": {
            "type": "video",
            "cost_per_sec": 0.40,
            "unit": "second",
            "description": "Veo 3.0 Standard - higher quality",
        },
        "veo-3.1-generate-preview": {
            "type": "video",
            "cost_per_sec": 0.40,
            "unit": "second",
            "description": "Veo 3.1 Preview - first and last frame control",
        },
        "veo-3.1-fast-generate-001": {
            "type": "video",
            "cost_per_sec": 0.10,
            "unit": "second",
            "description": "Veo 3.1 Fast",
        },
        "veo-2.0-generate-001": {
            "type": "video",
            "cost_per_sec": 0.35,
            "unit": "second",
            "description": "Veo 2.0 - stable video generation",
        },
    },
    "replicate": {
        "black-forest-labs/flux-1.1-pro": {
            "type": "image",
            "cost_per": 0.04,
            "unit": "image",
            "description": "Flux 1.1 Pro - high quality images",
        },
        "kwaivgi/kling-v2.6": {
            "type": "video",
            "cost_per": 0.35,
            "cost_per_10s": 0.70,
            "unit": "run",
            "description": "Kling 2.6 - video with native audio",
        },
    },
    "placeholder": {
        "placeholder": {
            "type": "any",
            "cost_per": 0.0,
            "unit": "run",
            "description": "Local placeholder - free",
        },
    },
}

# Backend names that bill under another vendor's price list
PRICING_ALIASES = {"veo": "gemini"}


def _pricing(provider: str, model: str) -> Optional[dict[str, Any]]:
    vendor = PRICING_ALIASES.get(provider, provider)
    return PRICING.get(vendor, {}).get(model)


def format_cost(cost: float) -> str:
    """Format a USD amount for display ("Free", "<$0.01", "$1.23")."""
    if cost == 0:
        return "Free"
    if cost < 0.01:
        return "<$0.01"
    return f"${cost:.2f}"


def _unknown(provider: str, model: str) -> CostEstimate:
    return CostEstimate(cost=0.0, formatted="Unknown", provider=provider, model=model)


def estimate_image_cost(provider: str, model: str, count: int = 1) -> CostEstimate:
    pricing = _pricing(provider, model)
    if pricing is None or "cost_per" not in pricing:
        return _unknown(provider, model)

    cost = pricing["cost_per"] * count
    plural = "s" if count > 1 else ""
    return CostEstimate(
        cost=cost,
        formatted=format_cost(cost),
        provider=provider,
        model=model,
        description=pricing["description"],
        breakdown=f"{count} image{plural} @ ${pricing['cost_per']:.3f}/image",
    )


def estimate_video_cost(provider: str, model: str, duration_sec: float = 5) -> CostEstimate:
    """Estimate one clip.

    Per-second pricing (Veo) scales with duration; tiered pricing (Kling)
    switches to the 10s price above 5 seconds; otherwise one flat run price.
    """
    pricing = _pricing(provider, model)
    if pricing is None:
        return _unknown(provider, model)

    if pricing.get("cost_per_sec"):
        cost = pricing["cost_per_sec"] * duration_sec
        breakdown = f"{duration_sec}s @ ${pricing['cost_per_sec']:.2f}/sec"
    elif pricing.get("cost_per_10s") and duration_sec > 5:
        cost = pricing["cost_per_10s"]
        breakdown = f"10s video @ ${pricing['cost_per_10s']:.2f}"
    elif "cost_per" in pricing:
        cost = pricing["cost_per"]
        breakdown = f"{duration_sec}s video @ ${pricing['cost_per']:.2f}/run"
    else:
        return _unknown(provider, model)

    return CostEstimate(
        cost=cost,
        formatted=format_cost(cost),
        provider=provider,
        model=model,
        description=pricing["description"],
        breakdown=breakdown,
    )


def estimate_text_cost(
    provider: str, model: str, input_tokens: int = 500, output_tokens: int = 500
) -> CostEstimate:
    pricing = _pricing(provider, model)
    if pricing is None:
        return _unknown(provider, model)

    if "input_cost_per_1k" not in pricing:
        cost = pricing.get("cost_per", 0.0)
        return CostEstimate(
            cost=cost,
            formatted=format_cost(cost),
            provider=provider,
            model=model,
            description=pricing["description"],
        )

    cost = (input_tokens / 1000) * pricing["input_cost_per_1k"] + (
        output_tokens / 1000
    ) * pricing["output_cost_per_1k"]
    return CostEstimate(
        cost=cost,
        formatted="<$0.01" if cost < 0.001 else format_cost(cost),
        provider=provider,
        model=model,
        description=pricing["description"],
        breakdown=f"~{input_tokens + output_tokens} tokens",
    )


def estimate_project_cost(
    *,
    image_provider: str = "gemini",
    image_model: str = "gemini-3-pro-image-preview",
    video_provider: str = "veo",
    video_model: str = "veo-3.0-fast-generate-001",
    text_provider: str = "gemini",
    text_model: str = "gemini-2.0-flash",
    shot_count: int = 4,
    video_duration: float = 4,
    regenerations: int = 0,
) -> dict[str, Any]:
    """Estimate a whole project: one script, a keyframe and a clip per shot."""
    count = shot_count + regenerations
    images = estimate_image_cost(image_provider, image_model, count)
    per_video = estimate_video_cost(video_provider, video_model, video_duration)
    videos_cost = per_video.cost * count
    text = estimate_text_cost(text_provider, text_model)
    total = images.cost + videos_cost + text.cost

    return {
        "total": {"cost": total, "formatted": format_cost(total)},
        "breakdown": {
            "images": {**images.model_dump(), "count": count},
            "videos": {
                "cost": videos_cost,
                "formatted": format_cost(videos_cost),
                "count": count,
                "per_video": per_video.model_dump(),
            },
            "text": text.model_dump(),
        },
        "summary": f"Est. ${total:.2f} for {shot_count} shots",
    }


# ---------------------------------------------------------------------------
# Session ledger
# ---------------------------------------------------------------------------
class LedgerEntry(BaseModel):
    """One recorded operation. Never modified after it is appended."""

    model_config = ConfigDict(frozen=True)

    timestamp: datetime = Field(default_factory=utcnow)
    kind: MediaKind
    provider: str
    model: str
    cost: float
    metadata: dict[str, Any] = Field(default_factory=dict)


class CostLedger:
    """Append-only, thread-safe accumulator of estimated costs.

    Components receive a ledger explicitly; ``default_ledger`` is the
    instance shared by the API and CLI for the lifetime of the process.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self.reset()

    def reset(self) -> None:
        with self._lock:
            self._started = time.monotonic()
            self._entries: list[LedgerEntry] = []
            self._totals: dict[str, float] = {"text": 0.0, "image": 0.0, "video": 0.0}

    def add_operation(
        self,
        kind: MediaKind,
        provider: str,
        model: str,
        cost: float,
        metadata: Optional[dict[str, Any]] = None,
    ) -> LedgerEntry:
        entry = LedgerEntry(
            kind=kind, provider=provider, model=model, cost=cost, metadata=metadata or {}
        )
        with self._lock:
            self._entries.append(entry)
            self._totals[kind] = self._totals.get(kind, 0.0) + cost
        logger.debug(f"Ledger: {kind} {provider}/{model} {format_cost(cost)}")
        return entry

    def operations(self) -> list[LedgerEntry]:
        with self._lock:
            return list(self._entries)

    def summary(self) -> dict[str, Any]:
        with self._lock:
            totals = dict(self._totals)
            count = len(self._entries)
            elapsed = time.monotonic() - self._started
        total = sum(totals.values())
        return {
            "duration_sec": round(elapsed, 3),
            "operation_count": count,
            "totals": {**totals, "total": total},
            "formatted": format_cost(total),
        }


default_ledger = CostLedger()
