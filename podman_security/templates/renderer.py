"""
Template renderer for managed configuration files.

Templates carry ``{{NAME}}`` placeholders and nothing else. Rendering
fails loudly when a placeholder has no value, so an unsubstituted
placeholder can never reach the target.
"""

import re
from pathlib import Path
from typing import Dict, Optional, Set

from jinja2 import Environment, FileSystemLoader, StrictUndefined, TemplateNotFound, TemplateSyntaxError, meta
from jinja2.exceptions import UndefinedError

from ..core.errors import TemplateRenderError
from ..resource_finder import find_templates_directory


LEFTOVER_RE = re.compile(r"\{\{\s*[A-Za-z_][A-Za-z0-9_]*\s*\}\}")


class TemplateRenderer:
    """
    Substitutes named placeholders in text templates.

    Uses Jinja2 for parsing and substitution; templates must not contain
    control flow.
    """

    def __init__(self, templates_dir: Optional[Path] = None):
        """
        Initialize renderer.

        Args:
            templates_dir: Template root (operator override or bundled templates)
        """
        resolved = find_templates_directory(templates_dir)
        if resolved is None:
            raise TemplateRenderError(f"Templates directory not found: {templates_dir or 'bundled templates'}")

        self.templates_dir = resolved
        self.env = Environment(
            loader=FileSystemLoader(str(resolved)),
            undefined=StrictUndefined,
            keep_trailing_newline=True,
            autoescape=False,
        )

    def exists(self, name: str) -> bool:
        return (self.templates_dir / name).is_file()

    def source(self, name: str) -> str:
        try:
            source, _, _ = self.env.loader.get_source(self.env, name)
        except TemplateNotFound:
            raise TemplateRenderError(f"Template not found: {name}")
        return source

    def placeholders(self, name: str) -> Set[str]:
        """Names of the placeholders a template declares."""
        try:
            ast = self.env.parse(self.source(name))
        except TemplateSyntaxError as e:
            raise TemplateRenderError(f"Invalid template {name}: {e}")
        return set(meta.find_undeclared_variables(ast))

    def render(self, name: str, variables: Dict[str, str]) -> str:
        """
        Render a template with the given substitution values.

        Raises:
            TemplateRenderError: If the template is missing or a placeholder is unresolved
        """
        missing = sorted(self.placeholders(name) - set(variables))
        if missing:
            raise TemplateRenderError(f"Unresolved placeholders in {name}: {', '.join(missing)}")

        try:
            rendered = self.env.get_template(name).render(**variables)
        except UndefinedError as e:
            raise TemplateRenderError(f"Unresolved placeholder in {name}: {e}")

        leftover = LEFTOVER_RE.search(rendered)
        if leftover:
            raise TemplateRenderError(f"Placeholder left in rendered {name}: {leftover.group(0)}")
        return rendered
