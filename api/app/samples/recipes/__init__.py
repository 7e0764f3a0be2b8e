from __future__ import annotations

from importlib import resources
from pathlib import Path

FOUNDATION_CATALOG = "foundation_pack_v2.yaml"


def foundation_catalog_path() -> Path:
    """Return the filesystem path of the packaged foundation recipe catalog."""
    resource = resources.files(__name__).joinpath(FOUNDATION_CATALOG)
    if not resource.is_file():
        raise FileNotFoundError(f"No recipe catalog named {FOUNDATION_CATALOG}")
    return Path(str(resource))


def catalog_paths() -> list[Path]:
    """Return every packaged recipe catalog, sorted by name."""
    root = Path(str(resources.files(__name__)))
    return sorted(root.glob("*.yaml")) + sorted(root.glob("*.yml"))
