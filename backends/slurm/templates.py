# ============================================================================
# SLURM LAUNCH TEMPLATES
# ============================================================================
# STATUS: Backend - Jinja2 rendering of sbatch launch scripts
# PURPOSE: Turn job arguments into #SBATCH directives
# CREATED: 13 MAR 2026
# ============================================================================
"""
SLURM Launch Templates

Launch scripts are Jinja2 templates rendered with two namespaces:

- ``job``: arguments of this job (cpus-per-task, mem, time, gres,
  partition, dependency, array, name, type, commands)
- ``user``: per-user values, empty unless a caller supplies them

Templates come from SLURM_TEMPLATES_DIR, or the builtin default when a job
names none. Undefined variables fail loudly (StrictUndefined), and the
``quote`` filter shell-quotes a value.
"""

import logging
import shlex
from pathlib import Path
from typing import Any, Dict, List, Optional

from jinja2 import (
    Environment,
    FileSystemLoader,
    StrictUndefined,
    TemplateNotFound,
    TemplateSyntaxError,
    UndefinedError,
)

logger = logging.getLogger(__name__)

# Arguments rendered as #SBATCH directives by the default template, in order
DIRECTIVE_ARGS = ["cpus-per-task", "mem", "time", "gres", "partition", "dependency", "array"]

DEFAULT_TEMPLATE = """#!/bin/bash
{%- if job.name is defined %}
#SBATCH --job-name={{ job.name | quote }}
{%- endif %}
{%- for name in directives %}
{%- if name in job %}
#SBATCH --{{ name }}={{ job[name] | quote }}
{%- endif %}
{%- endfor %}

{{ job.commands }}
"""


class TemplateRenderError(Exception):
    """Raised when a launch template can't be found or rendered."""

    def __init__(self, message: str, template: Optional[str] = None):
        self.template = template
        super().__init__(message)


class SlurmTemplateEngine:
    """Jinja2 environment for SLURM launch scripts."""

    def __init__(self, templates_dir: Optional[Path] = None):
        self.templates_dir = templates_dir
        loader = FileSystemLoader(str(templates_dir)) if templates_dir is not None else None
        self._env = Environment(
            loader=loader,
            autoescape=False,
            undefined=StrictUndefined,
            keep_trailing_newline=True,
        )
        self._env.filters["quote"] = lambda value: shlex.quote(str(value))

    def list_templates(self) -> List[str]:
        """Names of the templates found in the templates dir."""
        if self._env.loader is None:
            return []
        return sorted(self._env.list_templates())

    def render(
        self,
        template_name: Optional[str],
        job: Dict[str, Any],
        user: Optional[Dict[str, Any]] = None,
    ) -> str:
        """
        Render a launch script.

        Args:
            template_name: Template path under the templates dir, or None for the default
            job: Job namespace
            user: User namespace

        Raises:
            TemplateRenderError: If the template is missing or fails to render
        """
        try:
            if template_name is None:
                template = self._env.from_string(DEFAULT_TEMPLATE)
            elif self._env.loader is None:
                raise TemplateRenderError(
                    f"SLURM template {template_name} requested, but no templates dir is configured",
                    template=template_name,
                )
            else:
                template = self._env.get_template(template_name)
            return template.render(job=job, user=user or {}, directives=DIRECTIVE_ARGS)
        except TemplateNotFound:
            raise TemplateRenderError(
                f"SLURM template not found: {template_name}", template=template_name
            ) from None
        except (TemplateSyntaxError, UndefinedError) as e:
            raise TemplateRenderError(
                f"There was an error processing the SLURM template: {e}", template=template_name
            ) from e


__all__ = ["DIRECTIVE_ARGS", "DEFAULT_TEMPLATE", "TemplateRenderError", "SlurmTemplateEngine"]
