"""Pydantic schemas for the four-section marketing script.

The text backends request this structure as JSON output; a response missing
any section (or with an empty one) fails validation and is treated as a
processing error by the text provider.
"""

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

SCRIPT_SECTIONS = ("hook", "problem", "solution", "cta")


class ScriptSections(BaseModel):
    """Hook, problem, solution and call-to-action, all non-empty."""

    model_config = ConfigDict(str_strip_whitespace=True)

    hook: str = Field(
        min_length=1,
        description="Compelling opening (1-2 sentences) that grabs attention immediately",
    )
    problem: str = Field(
        min_length=1,
        description="Pain point or challenge the target audience faces (2-3 sentences)",
    )
    solution: str = Field(
        min_length=1,
        description="The product or service as the answer, with key benefits (2-3 sentences)",
    )
    cta: str = Field(
        min_length=1,
        description="Clear call-to-action (1-2 sentences)",
    )

    def as_raw(self) -> str:
        """Render as the labelled plain-text form used by ``split_script_sections``."""
        return (
            f"Hook: {self.hook}\n"
            f"Problem: {self.problem}\n"
            f"Solution: {self.solution}\n"
            f"CTA: {self.cta}"
        )


class ProjectScript(BaseModel):
    """Script as stored on a project."""

    raw: str = ""
    sections: dict[str, str] = Field(
        default_factory=lambda: {name: "" for name in SCRIPT_SECTIONS}
    )
    provider: Optional[str] = None
    model: Optional[str] = None
    error: Optional[str] = None
