"""Placeholder rendering for automation templates.

Tokens look like ``{{donor_name}}`` or ``{{ donor.address.city }}``. Sections
written as ``{{#if is_virtual}}...{{/if}}`` render only when the value is truthy.

Resolution order for a token:
1. dot-path lookup in the event payload
2. each fallback mapping in the order given (action literals, organization context)
3. the missing policy: ``blank`` renders "", ``keep`` leaves the token, ``error`` raises
"""

from __future__ import annotations

import re
from typing import Any, Iterable, Literal, Mapping, Sequence

from app.automation.errors import TemplateError

MissingPolicy = Literal["blank", "keep", "error"]

_PATH = r"[A-Za-z_][\w]*(?:\.[\w]+)*"
_TOKEN_RE = re.compile(r"\{\{\s*(" + _PATH + r")\s*\}\}")
_SECTION_RE = re.compile(r"\{\{#if\s+(" + _PATH + r")\s*\}\}(.*?)\{\{/if\}\}", re.DOTALL)


class _Missing:
    __slots__ = ()

    def __repr__(self) -> str:
        return "MISSING"

    def __bool__(self) -> bool:
        return False


MISSING: Any = _Missing()


def resolve_path(payload: Any, path: str) -> Any:
    """Walk a dot path through mappings and sequences; return MISSING when absent."""
    current = payload
    for segment in path.split("."):
        if isinstance(current, Mapping):
            if segment not in current:
                return MISSING
            current = current[segment]
        elif isinstance(current, Sequence) and not isinstance(current, (str, bytes)):
            try:
                current = current[int(segment)]
            except (ValueError, IndexError):
                return MISSING
        else:
            return MISSING
        if current is None:
            return None
    return current


def lookup(path: str, payload: Mapping[str, Any], fallbacks: Iterable[Mapping[str, Any]] = ()) -> Any:
    """Resolve a path against the payload, then each fallback in order."""
    value = resolve_path(payload, path)
    if value is not MISSING and value is not None:
        return value
    for scope in fallbacks:
        candidate = resolve_path(scope, path)
        if candidate is not MISSING and candidate is not None:
            return candidate
    return value


def _stringify(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (list, tuple, set)):
        return ", ".join(_stringify(item) for item in value)
    return str(value)


def render_template(
    template: str,
    payload: Mapping[str, Any],
    *,
    fallbacks: Sequence[Mapping[str, Any]] = (),
    missing: MissingPolicy = "blank",
) -> str:
    """Render ``{{path}}`` tokens and ``{{#if}}`` sections against a payload."""
    if not template:
        return template

    def _section(match: re.Match[str]) -> str:
        value = lookup(match.group(1), payload, fallbacks)
        return match.group(2) if value is not MISSING and value else ""

    def _token(match: re.Match[str]) -> str:
        path = match.group(1)
        value = lookup(path, payload, fallbacks)
        if value is MISSING or value is None:
            if missing == "keep":
                return match.group(0)
            if missing == "error":
                raise TemplateError(f"unresolved placeholder: {path}", placeholder=path)
            return ""
        return _stringify(value)

    expanded = _SECTION_RE.sub(_section, template)
    return _TOKEN_RE.sub(_token, expanded)


def template_placeholders(template: str | None) -> set[str]:
    """Return every path referenced by tokens and sections in a template."""
    if not template:
        return set()
    paths = {match.group(1) for match in _TOKEN_RE.finditer(template)}
    paths.update(match.group(1) for match in _SECTION_RE.finditer(template))
    return paths


def render_object(
    value: Any,
    payload: Mapping[str, Any],
    *,
    fallbacks: Sequence[Mapping[str, Any]] = (),
    missing: MissingPolicy = "blank",
) -> Any:
    """Render every string inside a nested structure of dicts and lists."""
    if isinstance(value, str):
        return render_template(value, payload, fallbacks=fallbacks, missing=missing)
    if isinstance(value, Mapping):
        return {
            key: render_object(item, payload, fallbacks=fallbacks, missing=missing)
            for key, item in value.items()
        }
    if isinstance(value, list):
        return [render_object(item, payload, fallbacks=fallbacks, missing=missing) for item in value]
    return value
