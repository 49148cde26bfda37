"""Scenario Loader for the webhook probe harness.

This module loads scenarios from YAML files, converting them to Pydantic
Scenario models, and discovers the scenarios bundled with the package.
"""

import logging
from pathlib import Path
from typing import Any

import yaml
from pydantic import ValidationError

from .models import Scenario


logger = logging.getLogger(__name__)

BUNDLED_DIR = Path(__file__).parent / "scenarios"


class ScenarioLoadError(ValueError):
    """A scenario file is malformed or fails validation."""


def load_scenario(path: str | Path) -> Scenario:
    """Load a scenario from a YAML file.

    The file holds one scenario mapping. `id` defaults to the file stem.

    Args:
        path: Path to the YAML file.

    Returns:
        Scenario object.

    Raises:
        FileNotFoundError: If the file doesn't exist.
        ScenarioLoadError: If the YAML is malformed or invalid.
    """
    logger.info(f"Loading scenario from {path}")

    file_path = Path(path)
    if not file_path.exists():
        raise FileNotFoundError(f"Scenario file not found: {path}")

    try:
        with open(file_path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f)
    except yaml.YAMLError as e:
        logger.exception(f"Failed to parse YAML file: {path}")
        raise ScenarioLoadError(f"Invalid YAML in {path}: {e}") from e

    if data is None:
        raise ScenarioLoadError(f"Empty YAML file: {path}")
    if not isinstance(data, dict):
        raise ScenarioLoadError(f"Invalid scenario format in {path}: expected a mapping")

    scenario = parse_scenario(data, default_id=file_path.stem, source=str(path))
    logger.info(f"Loaded scenario '{scenario.id}' with {len(scenario.steps)} step(s)")
    return scenario


def parse_scenario(data: dict[str, Any], default_id: str = "scenario", source: str = "<data>") -> Scenario:
    """Validate a scenario mapping.

    Keys starting with `x-` are ignored, so files can hold YAML anchors there.

    Raises:
        ScenarioLoadError: If validation fails.
    """
    fields = {k: v for k, v in data.items() if not str(k).startswith("x-")}
    fields.setdefault("id", default_id)
    fields.setdefault("name", str(fields["id"]).replace("_", " ").title())
    try:
        return Scenario.model_validate(fields)
    except ValidationError as e:
        logger.error(f"Invalid scenario in {source}: {e}")
        raise ScenarioLoadError(f"Invalid scenario in {source}: {e}") from e


def bundled_scenarios() -> dict[str, Path]:
    """Bundled scenario files keyed by id."""
    return {p.stem: p for p in sorted(BUNDLED_DIR.glob("*.yaml"))}


def resolve_scenario(name_or_path: str) -> Scenario:
    """Load a scenario by file path or by bundled id.

    Raises:
        FileNotFoundError: If neither a file nor a bundled scenario matches.
        ScenarioLoadError: If the scenario is invalid.
    """
    candidate = Path(name_or_path)
    if candidate.suffix in (".yaml", ".yml") or candidate.exists():
        return load_scenario(candidate)

    bundled = bundled_scenarios()
    if name_or_path not in bundled:
        available = ", ".join(bundled) or "none"
        raise FileNotFoundError(f"Unknown scenario '{name_or_path}' (bundled: {available})")
    return load_scenario(bundled[name_or_path])
