"""Validate recipe catalog files."""

from __future__ import annotations

import argparse
from pathlib import Path

from app.automation.recipes import validate_recipe_paths
from app.samples.recipes import catalog_paths


def _collect_catalog_files(target: Path) -> list[Path]:
    if target.is_dir():
        return sorted(target.glob("*.yaml")) + sorted(target.glob("*.yml"))
    if target.is_file():
        return [target]
    raise FileNotFoundError(f"Path not found: {target}")


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Validate automation recipe catalogs")
    parser.add_argument(
        "--path",
        default=None,
        help="Path to a catalog file or directory (default: the packaged catalogs)",
    )
    args = parser.parse_args(argv)
    paths = _collect_catalog_files(Path(args.path).resolve()) if args.path else catalog_paths()

    errors = validate_recipe_paths(paths)
    if errors:
        for error in errors:
            print(error)
        return 1

    print(f"Validated {len(paths)} recipe catalog(s).")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
