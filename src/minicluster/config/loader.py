import os
import re
from pathlib import Path
from typing import Any, Dict

import yaml
from pydantic import ValidationError

from minicluster.core.models import ClusterEnvironment, ClusterOptions
from minicluster.utils.errors import ConfigurationError

ENV_VAR_PATTERN = re.compile(r"\$\{([^}:]+)(?::([^}]+))?\}")

ALLOWED_SECTIONS = {"cluster", "environment"}


def interpolate_env_vars(content: str) -> str:
    """Replace ${VAR} or ${VAR:default} with environment variables.

    ${index} is left alone; it is the per-daemon flag placeholder, not a variable.
    """
    def replace_match(match: re.Match) -> str:
        var_name = match.group(1)
        if var_name == "index":
            return match.group(0)
        default_value = match.group(2) if match.group(2) is not None else ""
        return os.environ.get(var_name, default_value)

    return ENV_VAR_PATTERN.sub(replace_match, content)


def load_config(path: Path) -> Dict[str, Any]:
    """
    Load a cluster definition YAML file with environment variable interpolation.

    Only the `cluster` and `environment` sections are kept.
    """
    if not path.exists():
        return {}

    try:
        content = path.read_text(encoding="utf-8")
        full_config = yaml.safe_load(interpolate_env_vars(content)) or {}
    except (OSError, yaml.YAMLError) as exc:
        raise ConfigurationError(f"Could not load cluster definition {path}: {exc}") from exc

    if not isinstance(full_config, dict):
        raise ConfigurationError(f"Cluster definition {path} must be a mapping.")

    return {k: v for k, v in full_config.items() if k in ALLOWED_SECTIONS}


def load_cluster_options(path: Path) -> ClusterOptions:
    """Build `ClusterOptions` from the `cluster` section of a definition file."""
    config = load_config(path)
    try:
        return ClusterOptions(**(config.get("cluster") or {}))
    except ValidationError as exc:
        raise ConfigurationError(f"Invalid cluster options in {path}: {exc}") from exc


def load_cluster_environment(path: Path) -> ClusterEnvironment:
    """Build `ClusterEnvironment` from the `environment` section of a definition file.

    Keys the section leaves out still fall back to MINICLUSTER_* variables.
    """
    config = load_config(path)
    try:
        return ClusterEnvironment(**(config.get("environment") or {}))
    except ValidationError as exc:
        raise ConfigurationError(f"Invalid environment settings in {path}: {exc}") from exc
