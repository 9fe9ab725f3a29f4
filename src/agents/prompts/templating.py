"""
Logic-less prompt templates.

Mustache (``{{variable}}``, ``{{{raw}}}``, ``{{#section}}...{{/section}}``)
rendered with chevron, the same syntax as the named prompts in
config/param.yaml. Partials are disabled: templates never read files.
"""

from typing import Any, List, Mapping

import chevron
from chevron.tokenizer import tokenize
from loguru import logger

from agents.errors import TemplateRenderError

_SUBSTITUTIONS = ("variable", "no escape")
_OPENERS = ("section", "inverted section")


def missing_keys(template: str, data: Mapping[str, Any]) -> List[str]:
    """
    Top-level substitution keys of ``template`` that ``data`` does not provide.

    Tags inside sections resolve against the section's scope and are not
    checked. Raises ``chevron.ChevronError`` for a malformed template.
    """
    missing: List[str] = []
    depth = 0
    for tag, key in tokenize(template):
        if tag in _OPENERS:
            depth += 1
        elif tag == "end":
            depth -= 1
        elif tag in _SUBSTITUTIONS and depth == 0 and key != ".":
            if key.split(".", 1)[0] not in data and key not in missing:
                missing.append(key)
    return missing


def render_template(template: str, data: Mapping[str, Any]) -> str:
    """
    Render ``template`` with ``data``.

    Missing keys render as empty text and are logged as a warning.

    Raises:
        ValueError: template is blank or data is missing.
        TemplateRenderError: the template is malformed.
    """
    if not isinstance(template, str) or not template.strip():
        raise ValueError("Template must be a non-empty string")
    if data is None:
        raise ValueError("Template data must not be None")
    try:
        missing = missing_keys(template, data)
        rendered = chevron.render(template, dict(data), partials_path=None)
    except Exception as exc:
        logger.error("Template rendering failed: {}", exc)
        raise TemplateRenderError(f"Cannot render template: {exc}") from exc
    if missing:
        logger.warning("Template keys missing from data, rendered empty: {}", ", ".join(missing))
    return rendered
