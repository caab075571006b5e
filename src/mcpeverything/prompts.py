"""Prompt template loading and rendering."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Optional

import yaml
from jinja2 import Environment, StrictUndefined, TemplateError

from .json_utils import truncate

logger = logging.getLogger(__name__)

BUILTIN_PROMPTS_PATH = Path(__file__).parent / "prompts.yaml"


@dataclass
class Prompt:
    """A prompt template with metadata."""

    id: str
    goal: str
    template: str
    stage: str = ""


def _environment() -> Environment:
    env = Environment(
        undefined=StrictUndefined,
        trim_blocks=True,
        lstrip_blocks=True,
        keep_trailing_newline=False,
        autoescape=False,
    )
    env.filters["truncate_chars"] = truncate
    env.filters["pyrepr"] = repr
    return env


class PromptLibrary:
    """Loads prompt templates and renders them with Jinja2.

    Built-in templates ship with the package. A ``prompts.yaml`` passed as
    ``override_path`` replaces built-in templates that share an id.
    """

    def __init__(
        self,
        prompts_path: Optional[Path] = None,
        override_path: Optional[Path] = None,
    ):
        self.prompts_path = prompts_path or BUILTIN_PROMPTS_PATH
        self.override_path = override_path
        self._prompts: dict[str, Prompt] = {}
        self._env = _environment()
        self._loaded = False

    def load(self) -> None:
        """Load prompts from the YAML files."""
        if self._loaded:
            return

        self._load_file(self.prompts_path)
        if self.override_path and self.override_path.exists():
            logger.debug(f"Loading prompt overrides from: {self.override_path}")
            self._load_file(self.override_path)
        self._loaded = True
        logger.debug(f"Prompt library loaded: {len(self._prompts)} prompts")

    def _load_file(self, path: Path) -> None:
        with open(path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}

        for prompt_id, prompt_data in (data.get("prompts") or {}).items():
            self._prompts[prompt_id] = Prompt(
                id=prompt_id,
                goal=prompt_data.get("goal", ""),
                template=prompt_data.get("template", ""),
                stage=prompt_data.get("stage", ""),
            )

    def get_prompt(self, prompt_id: str) -> Optional[Prompt]:
        """Get a prompt by ID."""
        self.load()
        return self._prompts.get(prompt_id)

    def list_prompts(self) -> list[Prompt]:
        """List all available prompts."""
        self.load()
        return list(self._prompts.values())

    def render(self, prompt_id: str, **variables: Any) -> str:
        """Render a prompt template.

        The shared tool JSON format is always available as ``tool_format``.

        Args:
            prompt_id: ID of the prompt to render.
            **variables: Template variables.

        Returns:
            Rendered prompt text.

        Raises:
            KeyError: If no prompt has that ID.
            jinja2.TemplateError: If rendering fails, e.g. on a missing variable.
        """
        prompt = self.get_prompt(prompt_id)
        if prompt is None:
            raise KeyError(f"Unknown prompt: {prompt_id}")

        if "tool_format" not in variables and prompt_id != "tool_json_format":
            fmt = self._prompts.get("tool_json_format")
            variables["tool_format"] = (
                self._env.from_string(fmt.template).render().strip() if fmt else ""
            )

        try:
            return self._env.from_string(prompt.template).render(**variables).strip()
        except TemplateError as e:
            logger.error(f"Jinja2 template error in prompt '{prompt_id}': {e}")
            raise


_default_library: Optional[PromptLibrary] = None


def get_prompt_library(config_dir: Optional[Path] = None) -> PromptLibrary:
    """Shared prompt library, honoring ``<config_dir>/prompts.yaml`` overrides."""
    global _default_library
    override = config_dir / "prompts.yaml" if config_dir else None
    if _default_library is None or _default_library.override_path != override:
        _default_library = PromptLibrary(override_path=override)
    return _default_library
