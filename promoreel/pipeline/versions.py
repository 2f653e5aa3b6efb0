"""Shot version history.

History is append-only. Each generation appends one VersionEntry and moves
the shot's active pointer to it; rollback only moves the pointer back to an
existing entry. Version numbers keep increasing after a rollback because the
next number is derived from history, not from the active pointer.
"""

import logging
from pathlib import Path
from typing import Any, Optional

from promoreel.errors import VersionNotFoundError
from promoreel.schemas.generation import GenerationResult
from promoreel.schemas.project import AssetKind, Shot, VersionEntry

logger = logging.getLogger(__name__)

ASSET_KINDS: tuple[AssetKind, ...] = ("keyframe", "clip")


def _check_kind(kind: str) -> None:
    if kind not in ASSET_KINDS:
        raise ValueError(f"Unknown asset kind {kind!r}; expected keyframe or clip")


def next_version(shot: Shot, kind: AssetKind) -> int:
    _check_kind(kind)
    return shot.latest_version(kind) + 1


def active_version(shot: Shot, kind: AssetKind) -> int:
    _check_kind(kind)
    return shot.keyframe_version if kind == "keyframe" else shot.clip_version


def _activate(shot: Shot, entry: VersionEntry) -> None:
    cfg = shot.provider_config
    if entry.kind == "keyframe":
        shot.keyframe_version = entry.version
        shot.keyframe_image_path = entry.asset_path
        cfg.image_provider = entry.provider
        cfg.image_model = entry.model
        cfg.image_settings = dict(entry.settings)
        shot.status.keyframe_status = "ready"
    else:
        shot.clip_version = entry.version
        shot.clip_path = entry.asset_path
        cfg.video_provider = entry.provider
        cfg.video_model = entry.model
        cfg.video_settings = dict(entry.settings)
        shot.continuity.last_frame_path = entry.last_frame_path
        first = entry.settings.get("first_frame_path")
        target = entry.settings.get("target_last_frame_path")
        shot.continuity.first_frame_path = Path(first) if first else None
        shot.continuity.target_last_frame_path = Path(target) if target else None
        shot.status.clip_status = "ready"


def record_version(
    shot: Shot,
    kind: AssetKind,
    version: int,
    result: GenerationResult,
    *,
    last_frame_path: Optional[Path] = None,
    settings: Optional[dict[str, Any]] = None,
) -> VersionEntry:
    """Append a history entry for a finished generation and make it active."""
    _check_kind(kind)
    if version <= shot.latest_version(kind):
        raise ValueError(
            f"Shot {shot.id}: {kind} version {version} is not newer than "
            f"{shot.latest_version(kind)}"
        )
    entry = VersionEntry(
        kind=kind,
        version=version,
        asset_path=result.asset_path,
        provider=result.provider_used,
        model=result.model_used,
        settings={**result.settings, **(settings or {})},
        fallback_used=result.fallback_used,
        last_frame_path=last_frame_path,
        error=result.error,
    )
    shot.history.append(entry)
    _activate(shot, entry)
    shot.status.error = result.error
    return entry


def mark_failed(shot: Shot, kind: AssetKind, error: str) -> None:
    """Flag the shot's ``kind`` asset as failed; the active version is kept."""
    _check_kind(kind)
    if kind == "keyframe":
        shot.status.keyframe_status = "failed"
    else:
        shot.status.clip_status = "failed"
    shot.status.error = error


def rollback(shot: Shot, kind: AssetKind, version: int) -> Optional[VersionEntry]:
    """Point the shot's active ``kind`` asset at an earlier (or later) version.

    Rolling back to the active version changes nothing. Rolling back a clip
    also restores that version's last frame, so the next shot's continuity
    follows the restored clip.

    Returns:
        The now-active entry, or None when nothing changed.

    Raises:
        VersionNotFoundError: ``version`` is not in the shot's history.
    """
    _check_kind(kind)
    entry = shot.find_version(kind, version)
    if entry is None:
        raise VersionNotFoundError(f"Shot {shot.id} has no {kind} version {version}")
    if active_version(shot, kind) == version:
        return None
    _activate(shot, entry)
    logger.info(f"Shot {shot.id}: {kind} rolled back to v{version}")
    return entry
