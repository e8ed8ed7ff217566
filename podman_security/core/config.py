"""
Configuration loading for the Podman security baseline.

Values are layered: built-in defaults, then an optional YAML file, then
command-line overrides. The merged mapping is validated exactly once into
an immutable RunConfiguration.
"""

import os
import platform
from pathlib import Path
from typing import Any, Dict, Optional

import yaml
from pydantic import ValidationError

from .errors import PreconditionError
from .models import RunConfiguration


DEFAULT_DISTRO = "FedoraLinux-42"


def default_backup_root() -> Path:
    """Default bundle location based on the host OS."""
    if platform.system() == "Windows":
        program_data = os.environ.get("ProgramData", r"C:\ProgramData")
        return Path(program_data) / "PodmanSecurity" / "backups"
    return Path.home() / ".local" / "share" / "podman-security" / "backups"


def default_config() -> Dict[str, Any]:
    return {
        "distro": DEFAULT_DISTRO,
        "backup_root": str(default_backup_root()),
        "dns_search_domain": "internal.company.com",
        "command_timeout": 120,
        "backup_provider": "auto",
        "verify_provider": "auto",
    }


def load_config_file(config_path: Optional[str]) -> Dict[str, Any]:
    """Read a YAML configuration file.

    The file may either hold the keys at top level or nest them under a
    ``podman_security`` section.
    """
    if not config_path:
        return {}

    path = Path(config_path)
    if not path.exists():
        raise PreconditionError([f"Configuration file not found: {config_path}"])

    try:
        with open(path, "r") as f:
            data = yaml.safe_load(f) or {}
    except yaml.YAMLError as e:
        raise PreconditionError([f"Invalid YAML in {config_path}: {e}"])

    if not isinstance(data, dict):
        raise PreconditionError([f"Configuration file {config_path} must contain a mapping"])

    section = data.get("podman_security", data)
    return {key.replace("-", "_"): value for key, value in section.items()}


def build_run_configuration(config_path: Optional[str] = None, **overrides) -> RunConfiguration:
    """
    Build the immutable run configuration.

    Args:
        config_path: Optional YAML file with defaults for this site
        **overrides: Command-line values; ``None`` means "not given"

    Returns:
        RunConfiguration: Validated configuration

    Raises:
        PreconditionError: If the file is unreadable or a value is invalid
    """
    merged = default_config()
    merged.update(load_config_file(config_path))
    merged.update({k: v for k, v in overrides.items() if v is not None})

    try:
        return RunConfiguration(**merged)
    except ValidationError as e:
        failures = [
            f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}"
            for err in e.errors()
        ]
        raise PreconditionError(failures)
