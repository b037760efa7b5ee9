# prompt_renderer.py
"""Utilities for rendering provider prompts using Jinja2 templates."""

from pathlib import Path
from typing import Any

from jinja2 import Environment, FileSystemLoader, StrictUndefined

from config import settings

PROMPTS_PATH = Path(__file__).parent / "prompts"
_env = Environment(
    loader=FileSystemLoader(PROMPTS_PATH),
    autoescape=False,
    undefined=StrictUndefined,
    keep_trailing_newline=False,
)


def render_prompt(template_name: str, context: dict[str, Any]) -> str:
    """Render a Jinja2 template from the prompts directory."""
    template = _env.get_template(template_name)
    values = {"no_think": settings.ENABLE_LLM_NO_THINK_DIRECTIVE}
    values.update(context)
    return template.render(**values).strip()


def render_system_prompt(agent_name: str) -> str:
    """Render the fixed system prompt of an agent's template folder."""
    return render_prompt(f"{agent_name}/system.j2", {})
