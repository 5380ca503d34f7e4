# ============================================================================
# COMMANDS MODEL
# ============================================================================
# STATUS: Core model - What a cluster job runs
# PURPOSE: Tagged union of flat scripts and per-index command grids
# CREATED: 05 MAR 2026
# EXPORTS: CommandsScript, CommandsGrid, Commands
# DEPENDENCIES: pydantic
# ============================================================================
"""
Commands Model

Two ways to describe the work of a cluster job:

- CommandsScript: one ordered command list. With array_size set, the same
  script runs array_size times, told apart only by SLURM_ARRAY_TASK_ID.
- CommandsGrid: one command group per array index. The array size is the
  number of groups.

Rendering into shell scripts lives in orchestrator.engine.commands.
"""

from typing import Annotated, ClassVar, List, Literal, Optional, Union

from pydantic import BaseModel, Field, computed_field


class CommandsScript(BaseModel):
    """Run the same command list once, or as an array job."""

    ID: ClassVar[str] = "script"

    type: Literal["script"] = "script"
    commands: List[str] = Field(default_factory=list)
    array_size: Optional[int] = Field(default=None, ge=0)
    bundle_size: Optional[int] = Field(
        default=None,
        ge=1,
        description="Maximum number of array elements running at once"
    )

    @property
    def is_array(self) -> bool:
        return self.array_size is not None

    @property
    def num_jobs(self) -> int:
        return self.array_size if self.array_size is not None else 1

    def display_lists(self) -> List[List[str]]:
        return [list(self.commands)]

    def representative_command(self) -> str:
        return self.commands[0] if self.commands else ""


class CommandsGrid(BaseModel):
    """Run command group N as array element N (1-based)."""

    ID: ClassVar[str] = "grid"

    type: Literal["grid"] = "grid"
    commands: List[List[str]] = Field(default_factory=list)
    bundle_size: Optional[int] = Field(default=None, ge=1)

    @computed_field
    @property
    def array_size(self) -> int:
        return len(self.commands)

    @property
    def is_array(self) -> bool:
        return True

    @property
    def num_jobs(self) -> int:
        return self.array_size

    def display_lists(self) -> List[List[str]]:
        return [list(group) for group in self.commands]

    def representative_command(self) -> str:
        if self.commands and self.commands[0]:
            return self.commands[0][0]
        return ""


Commands = Annotated[Union[CommandsScript, CommandsGrid], Field(discriminator="type")]


__all__ = ["CommandsScript", "CommandsGrid", "Commands"]
