"""Notification templates with Handlebars-style blocks, rendered by Jinja2.

Authors write ``{{name}}``, ``{{#each items}}…{{/each}}``,
``{{#if flag}}…{{else}}…{{/if}}`` and ``{{#unless flag}}…{{/unless}}``.
Inside ``#each`` the current item is ``this`` (``{{this.field}}``), a bare
``{{field}}`` reads the item before the outer variables, and
``{{@index}}``, ``{{@first}}`` and ``{{@last}}`` describe the position.
``{{{raw}}}`` skips HTML escaping.

Templates are translated to Jinja2 once, compiled in a sandboxed
environment and cached by source. Rendering never raises: a template that
fails to compile or render comes back as its raw input.
"""

import logging
import re
from dataclasses import dataclass
from typing import Any, Iterable, Optional

from jinja2 import ChainableUndefined, TemplateError
from jinja2.sandbox import SandboxedEnvironment

from core.exceptions import ValidationError

logger = logging.getLogger(__name__)

_MUSTACHE = re.compile(r"\{\{\{\s*(.+?)\s*\}\}\}|\{\{(!--.*?--|!.*?|[^{}]+?)\}\}", re.DOTALL)
_POSITION_VARS = {"@index": "loop.index0", "@first": "loop.first", "@last": "loop.last", "@key": "loop.index0"}
_BARE_PATH = re.compile(r"^[A-Za-z_]\w*(?:\.\w+)*$")
_SCOPE_HELPERS = {"each", "with"}


@dataclass
class TemplateVariable:
    """A declared template variable."""

    name: str
    description: Optional[str] = None
    default_value: Optional[Any] = None
    required: bool = False


@dataclass
class RenderResult:
    content: str
    subject: Optional[str] = None


def _translate_path(expr: str, scoped: bool = False) -> str:
    """Jinja2 expression for a Handlebars path.

    With ``scoped`` set (inside ``#each`` or ``#with``) a bare path is
    looked up on the current item first and on the outer variables second.
    A ``../`` prefix always reads the outer variables.
    """
    expr = expr.strip()
    if expr in _POSITION_VARS:
        return _POSITION_VARS[expr]
    outer = expr.startswith("../")
    while expr.startswith("../"):
        expr = expr[3:]
    if expr.startswith("this/"):
        expr = "this." + expr[5:]
    expr = expr.replace("/", ".")
    if not scoped or outer or not _BARE_PATH.match(expr):
        return expr
    head, _, rest = expr.partition(".")
    if head == "this":
        return expr
    item = f"this['{head}']" + (f".{rest}" if rest else "")
    return f"({item} if this is mapping and '{head}' in this else {expr})"


def to_jinja(template: str) -> str:
    """Translate Handlebars-style tags into Jinja2 syntax."""
    stack: list[str] = []

    def _scoped() -> bool:
        return any(helper in _SCOPE_HELPERS for helper in stack)

    def _sub(match: re.Match) -> str:
        raw, tag = match.group(1), match.group(2)
        if raw is not None:
            return "{{ " + _translate_path(raw, _scoped()) + " | safe }}"

        tag = tag.strip()
        if tag.startswith("!"):
            return ""
        if tag.startswith("#"):
            helper, _, arg = tag[1:].partition(" ")
            arg = _translate_path(arg, _scoped())
            stack.append(helper)
            if helper == "each":
                return "{% for this in " + arg + " %}"
            if helper == "if":
                return "{% if " + arg + " %}"
            if helper == "unless":
                return "{% if not " + arg + " %}"
            if helper == "with":
                return "{% with this = " + arg + " %}"
            raise TemplateError(f"Unknown block helper: {helper}")
        if tag.startswith("/"):
            helper = tag[1:].strip()
            if not stack or stack.pop() != helper:
                raise TemplateError(f"Unbalanced block close: {helper}")
            if helper == "each":
                return "{% endfor %}"
            if helper == "with":
                return "{% endwith %}"
            return "{% endif %}"
        if tag == "else":
            return "{% else %}"
        return "{{ " + _translate_path(tag, _scoped()) + " }}"

    translated = _MUSTACHE.sub(_sub, template)
    if stack:
        raise TemplateError(f"Unclosed block: {stack[-1]}")
    return translated


class TemplateService:
    """Compiles, caches and renders notification templates."""

    def __init__(self):
        self._env = SandboxedEnvironment(
            autoescape=True,
            keep_trailing_newline=True,
            undefined=ChainableUndefined,
        )
        self._cache: dict[str, Any] = {}

    def compile(self, template: str):
        """Compiled template for ``template``, cached by source.

        Raises:
            ValidationError: The template is malformed.
        """
        cached = self._cache.get(template)
        if cached is not None:
            return cached
        try:
            compiled = self._env.from_string(to_jinja(template))
        except TemplateError as exc:
            raise ValidationError(f"Invalid template: {exc}") from exc
        self._cache[template] = compiled
        return compiled

    def render_string(self, template: str, variables: Optional[dict[str, Any]] = None) -> str:
        """Render one template; the raw input comes back if it cannot be rendered."""
        try:
            return self.compile(template).render(**(variables or {}))
        except (ValidationError, TemplateError, TypeError, ValueError) as exc:
            logger.warning("Template render failed, returning raw input: %s", exc)
            return template

    def render(
        self,
        content: str,
        subject: Optional[str] = None,
        variables: Optional[dict[str, Any]] = None,
    ) -> RenderResult:
        return RenderResult(
            content=self.render_string(content, variables),
            subject=self.render_string(subject, variables) if subject else None,
        )

    @staticmethod
    def extract_variables(template: str) -> list[str]:
        """Top-level names referenced by ``template``, in first-use order.

        Block helper names, closing tags, ``else`` and comments are skipped;
        for block tags the argument name is reported.
        """
        names: list[str] = []
        for match in _MUSTACHE.finditer(template):
            tag = (match.group(1) or match.group(2) or "").strip()
            if not tag or tag.startswith(("!", "/", "@")) or tag == "else":
                continue
            if tag.startswith("#"):
                _, _, tag = tag[1:].partition(" ")
            name = tag.split(" ")[0].split(".")[0].strip()
            if name and name != "this" and not name.startswith("..") and name not in names:
                names.append(name)
        return names

    @staticmethod
    def validate_variables(
        variables: dict[str, Any],
        definitions: Iterable[TemplateVariable],
    ) -> tuple[bool, list[str]]:
        """Required variables that are neither supplied nor defaulted.

        Returns:
            Tuple of (valid, missing_names)
        """
        missing = [
            d.name
            for d in definitions
            if d.required and d.name not in variables and not d.default_value
        ]
        return not missing, missing

    @staticmethod
    def apply_defaults(
        variables: dict[str, Any],
        definitions: Iterable[TemplateVariable],
    ) -> dict[str, Any]:
        """Copy of ``variables`` with declared defaults filled in."""
        result = dict(variables)
        for d in definitions:
            if d.name not in result and d.default_value is not None:
                result[d.name] = d.default_value
        return result

    def clear_cache(self) -> None:
        self._cache.clear()

    @property
    def cache_size(self) -> int:
        return len(self._cache)
