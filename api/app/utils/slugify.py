"""Slug helpers for organization identifiers."""

from slugify import slugify


def organization_slug(value: str, suffix: str | None = None) -> str:
    """Slugify an organization name with an optional suffix."""
    base = slugify(value) or "org"
    if suffix:
        return f"{base}-{slugify(suffix)}"
    return base
