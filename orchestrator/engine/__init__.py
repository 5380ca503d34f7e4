# ============================================================================
# ORCHESTRATOR ENGINE
# ============================================================================
# STATUS: Core - Engine components
# PURPOSE: Script rendering and container wrapping
# CREATED: 11 MAR 2026
# ============================================================================
"""
Orchestrator Engine Components

- commands: render job commands into staged shell scripts
- container: wrap commands in a container runtime invocation
"""

from orchestrator.engine.commands import (
    CommandsConfig,
    FileInfo,
    Rendered,
    batch_header,
    render,
    files_to_delete,
    parse_grid_script,
    submission_script,
)
from orchestrator.engine.container import (
    Wrapper,
    container_wrapper,
    requests_gpu,
    wrap,
)

__all__ = [
    # Commands
    "CommandsConfig",
    "FileInfo",
    "Rendered",
    "batch_header",
    "render",
    "files_to_delete",
    "parse_grid_script",
    "submission_script",
    # Container
    "Wrapper",
    "container_wrapper",
    "requests_gpu",
    "wrap",
]
