"""Dependency catalog loading.

The bundled catalog ships as package data; a different catalog can be
supplied as a YAML or JSON file.
"""

import json
from importlib import resources
from pathlib import Path
from typing import Any

import yaml

from nvim_crossbuild.deps.schema import DependencyCatalog

BUNDLED_CATALOG = "catalog.yaml"


def load_yaml(path: Path) -> dict[str, Any]:
    """Load a YAML file and return its contents as a dict.

    Raises:
        FileNotFoundError: If the file does not exist.
        yaml.YAMLError: If the file is not valid YAML.
        ValueError: If the document is not a mapping.
    """
    with open(path, encoding="utf-8") as f:
        data = yaml.safe_load(f)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValueError(f"Expected a YAML mapping, got {type(data).__name__}")
    return data


def load_json(path: Path) -> dict[str, Any]:
    """Load a JSON file and return its contents as a dict.

    Raises:
        FileNotFoundError: If the file does not exist.
        json.JSONDecodeError: If the file is not valid JSON.
        ValueError: If the document is not an object.
    """
    with open(path, encoding="utf-8") as f:
        data = json.load(f)
    if not isinstance(data, dict):
        raise ValueError(f"Expected a JSON object, got {type(data).__name__}")
    return data


def parse_catalog_data(data: dict[str, Any]) -> DependencyCatalog:
    """Validate catalog data.

    Raises:
        pydantic.ValidationError: If data does not match the schema.
    """
    return DependencyCatalog.model_validate(data)


def load_catalog(path: Path | None = None) -> DependencyCatalog:
    """Load the dependency catalog.

    Args:
        path: YAML/JSON catalog file; the bundled catalog when omitted.

    Returns:
        Validated DependencyCatalog.

    Raises:
        ValueError: If the file extension is not supported.
    """
    if path is None:
        text = resources.files("nvim_crossbuild.deps").joinpath(BUNDLED_CATALOG)
        return parse_catalog_data(yaml.safe_load(text.read_text(encoding="utf-8")))

    suffix = path.suffix.lower()
    if suffix in (".yaml", ".yml"):
        return parse_catalog_data(load_yaml(path))
    if suffix == ".json":
        return parse_catalog_data(load_json(path))
    raise ValueError(f"Unsupported catalog format: {path.suffix}")


def catalog_to_yaml_string(catalog: DependencyCatalog) -> str:
    """Render a catalog as YAML."""
    return yaml.safe_dump(
        catalog.model_dump(exclude_defaults=True),
        sort_keys=False,
        default_flow_style=False,
    )


__all__ = [
    "BUNDLED_CATALOG",
    "catalog_to_yaml_string",
    "load_catalog",
    "load_json",
    "load_yaml",
    "parse_catalog_data",
]
