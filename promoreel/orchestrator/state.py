"""State machine constants and transition logic for the pipeline orchestrator.

Defines the ordered stage sequence and the resume point for a project whose
run was interrupted or failed.
"""

from typing import Dict

from promoreel.schemas.project import Project

# Pipeline states in execution order
PIPELINE_STATES = {
    "pending": "Initial state after project creation",
    "scripting": "Generating the four-section script",
    "storyboarding": "Splitting the script into shots",
    "keyframing": "Generating keyframe images shot by shot",
    "video_gen": "Generating clips shot by shot",
    "exporting": "Concatenating clips into the final MP4",
    "complete": "Pipeline finished successfully",
    "failed": "Pipeline encountered unrecoverable error",
}

# State transitions for active pipeline steps
STEP_TRANSITIONS = {
    "pending": "scripting",
    "scripting": "storyboarding",
    "storyboarding": "keyframing",
    "keyframing": "video_gen",
    "video_gen": "exporting",
    "exporting": "complete",
}

# States from which pipeline can resume
RESUMABLE_STATES = {
    "pending",
    "failed",
    "complete",
    "scripting",
    "storyboarding",
    "keyframing",
    "video_gen",
    "exporting",
}


def can_resume(status: str) -> bool:
    """Check if pipeline can resume from given status."""
    return status in RESUMABLE_STATES


def completed_steps(project: Project) -> Dict[str, bool]:
    """Which stages have durable output on the project document."""
    shots = project.shots
    return {
        "has_script": any(text.strip() for text in project.script.sections.values()),
        "has_storyboard": bool(shots),
        "has_keyframes": bool(shots) and all(s.status.keyframe_status == "ready" for s in shots),
        "has_clips": bool(shots) and all(s.status.clip_status == "ready" for s in shots),
    }


def get_resume_step(status: str, completed: Dict[str, bool]) -> str:
    """Determine which pipeline step to resume from.

    Stored output decides, not the last recorded status: a run that failed
    during clip generation resumes at ``video_gen`` because every keyframe is
    already ready.

    Examples:
        >>> get_resume_step("failed", {"has_script": True, "has_storyboard": False})
        'storyboarding'
    """
    if not can_resume(status):
        raise ValueError(f"Cannot resume a project in status {status!r}")
    if not completed.get("has_script", False):
        return "scripting"
    if not completed.get("has_storyboard", False):
        return "storyboarding"
    if not completed.get("has_keyframes", False):
        return "keyframing"
    if not completed.get("has_clips", False):
        return "video_gen"
    return "exporting"
