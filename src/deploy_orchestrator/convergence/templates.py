"""
Template rendering.

Templates use {{ name }} placeholders. Only plain variable names are
supported, no filters, loops or attribute access.

{{! renders a literal {{ so templates can still emit braces.

Everything else in a template is copied verbatim. This matters for web server
configs, which use $variables of their own.
"""

from __future__ import annotations

import string
from typing import Any


class _PlaceholderTemplate(string.Template):
    delimiter = "{{"
    pattern = r"""
    \{\{(?:
      (?P<escaped>!)                              |
      \s*(?P<named>[_a-z][_a-z0-9]*)\s*\}\}       |
      (?P<braced>(?!))                            |
      (?P<invalid>)
    )
    """


class TemplateError(ValueError):
    """Raised when a template has an invalid placeholder or an undefined variable."""


class TemplateRenderer:
    """Render templates from a variable mapping."""

    def render(self, text: str, variables: dict[str, Any]) -> str:
        template = _PlaceholderTemplate(text)
        try:
            return template.substitute({k: _stringify(v) for k, v in variables.items()})
        except KeyError as exc:
            raise TemplateError(f"undefined variable {exc.args[0]!r}") from exc
        except ValueError as exc:
            raise TemplateError(str(exc)) from exc

    def identifiers(self, text: str) -> list[str]:
        """
        Return placeholder names in first appearance order.

        Raises TemplateError on an invalid placeholder.
        """
        template = _PlaceholderTemplate(text)
        if not template.is_valid():
            raise TemplateError("template contains an invalid placeholder")
        return template.get_identifiers()


def _stringify(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (list, tuple)):
        return " ".join(str(v) for v in value)
    return str(value)
