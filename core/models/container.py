# ============================================================================
# CONTAINER PROFILE MODEL
# ============================================================================
# STATUS: Core model - Sandbox image profile
# PURPOSE: Describe how to run a job inside a container image
# CREATED: 05 MAR 2026
# EXPORTS: ContainerProfile
# DEPENDENCIES: pydantic
# ============================================================================
"""
Container Profile Model

A named profile for sandboxed execution: the image to run, the paths to
bind into it, and shell lines to run before the first wrapped command.
Profiles are loaded from configuration, never from job submissions.
"""

from typing import List

from pydantic import BaseModel, Field


class ContainerProfile(BaseModel):
    """A sandbox image plus everything needed to enter it."""

    id: str = Field(..., max_length=64, description="Profile id referenced by jobs")
    sif_path: str = Field(..., description="Path to the container image")
    binds: List[str] = Field(
        default_factory=list,
        description="Host paths bound into the container"
    )
    prelaunch_commands: List[str] = Field(
        default_factory=list,
        description="Shell lines run before the wrapped command (scratch dirs, exports)"
    )

    model_config = {"frozen": True}


__all__ = ["ContainerProfile"]
