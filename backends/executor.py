# ============================================================================
# COMMAND EXECUTOR
# ============================================================================
# STATUS: Core - External command execution for backends
# PURPOSE: Run scheduler CLIs (sbatch, scancel, squeue) and capture output
# CREATED: 12 MAR 2026
# ============================================================================
"""
Command Executor

Backends never call subprocess directly; they build a Command and hand it
to a CommandExecutor, which tests replace with a fake.
"""

import asyncio
import logging
import os
import shlex
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Dict, List

logger = logging.getLogger(__name__)


@dataclass
class Command:
    """A program, its arguments and extra environment variables."""
    program: str
    args: List[str] = field(default_factory=list)
    env: Dict[str, str] = field(default_factory=dict)

    def argv(self) -> List[str]:
        # program may carry its own arguments, e.g. "sudo -u alice sbatch"
        return shlex.split(self.program) + list(self.args)

    def to_shell_safe_string(self) -> str:
        env = [f"{name}={shlex.quote(value)}" for name, value in self.env.items()]
        return " ".join(env + [shlex.join(self.argv())])


@dataclass
class CommandResult:
    """Exit code and combined stdout/stderr lines."""
    exit_code: int
    console: List[str]


class CommandExecutor(ABC):
    """Runs commands somewhere (locally, or on a login node)."""

    @abstractmethod
    async def exec(self, command: Command) -> CommandResult:
        """Run a command to completion."""


class LocalCommandExecutor(CommandExecutor):
    """Runs commands on this machine."""

    async def exec(self, command: Command) -> CommandResult:
        logger.debug(f"exec: {command.to_shell_safe_string()}")
        process = await asyncio.create_subprocess_exec(
            *command.argv(),
            env={**os.environ, **command.env},
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.STDOUT,
        )
        stdout, _ = await process.communicate()
        console = stdout.decode("utf-8", errors="replace").splitlines()
        return CommandResult(exit_code=process.returncode, console=console)


__all__ = ["Command", "CommandResult", "CommandExecutor", "LocalCommandExecutor"]
