"""promoreel - resilient multi-provider marketing video generation.

The media tool (ffmpeg) is optional: every stage that needs it degrades to a
placeholder asset when it is missing. Call validate_dependencies() during
startup to log which capabilities are available.
"""

import logging

__version__ = "0.1.0"

logger = logging.getLogger(__name__)


def validate_dependencies() -> dict[str, bool]:
    """Report which optional system tools are available.

    Unlike a hard dependency check this never raises; missing tools are
    logged once so degraded exports and placeholder clips are explainable.

    Returns:
        Mapping of tool name to availability.
    """
    from promoreel.services import media

    tools = {
        "ffmpeg": media.ffmpeg_available(),
        "ffprobe": media.ffprobe_available(),
    }
    for name, available in tools.items():
        if available:
            logger.info(f"{name} available")
        else:
            logger.warning(
                f"{name} not found on PATH: clips, frame extraction and exports "
                f"will fall back to placeholders"
            )
    return tools
