"""Project configuration for sandbox-ci.

Settings come from built-in defaults, optionally overridden by a TOML file
at the repository top level (``sandbox-ci.toml``, or ``[tool.sandbox-ci]``
in ``pyproject.toml``), and finally by command-line flags.
"""

import os
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional

import toml

CONFIG_FILENAME = "sandbox-ci.toml"

DEFAULT_IMAGE_TEMPLATE = "centos:{version}"
DEFAULT_USER = "builder"
DEFAULT_PROBE_HOST = "mirrorlist.centos.org"
DEFAULT_BOOTSTRAP_PACKAGES = ["tar", "git", "python-argparse", "make", "rpm-build"]
DEFAULT_ARTIFACT_PATTERNS = ["*.rpm"]

DEFAULT_PHASE_COMMANDS: Dict[str, List[str]] = {
    "deps": ["make", "deps"],
    "status": ["git", "status"],
    "unit_test": ["make", "check"],
    "srpm": ["make", "srpm"],
    "rpm": ["make", "rpm"],
}

PROXY_ENV_VARS = ("http_proxy", "HTTP_PROXY", "https_proxy", "HTTPS_PROXY")


@dataclass
class ProjectConfig:
    """Per-project settings that shape the sandbox and its phases."""

    image_template: str = DEFAULT_IMAGE_TEMPLATE
    user: str = DEFAULT_USER
    probe_host: str = DEFAULT_PROBE_HOST
    bootstrap_packages: List[str] = field(default_factory=lambda: list(DEFAULT_BOOTSTRAP_PACKAGES))
    artifact_patterns: List[str] = field(default_factory=lambda: list(DEFAULT_ARTIFACT_PATTERNS))
    phase_commands: Dict[str, List[str]] = field(
        default_factory=lambda: {k: list(v) for k, v in DEFAULT_PHASE_COMMANDS.items()}
    )

    def image_for(self, version: str) -> str:
        return self.image_template.format(version=version)


def _as_argv(value: Any, key: str) -> List[str]:
    if isinstance(value, str):
        raise ValueError(f"phases.{key} must be a list of strings, not a shell string")
    if not isinstance(value, list) or not value or not all(isinstance(v, str) for v in value):
        raise ValueError(f"phases.{key} must be a non-empty list of strings")
    return list(value)


def _as_str_list(value: Any, key: str) -> List[str]:
    if not isinstance(value, list) or not all(isinstance(v, str) for v in value):
        raise ValueError(f"{key} must be a list of strings")
    return list(value)


def parse_config(data: Mapping[str, Any]) -> ProjectConfig:
    """Build a ProjectConfig from a parsed TOML table.

    Raises:
        ValueError: On unknown phases or wrongly typed values.
    """
    cfg = ProjectConfig()
    for key in ("image_template", "user", "probe_host"):
        if key in data:
            if not isinstance(data[key], str) or not data[key]:
                raise ValueError(f"{key} must be a non-empty string")
            setattr(cfg, key, data[key])
    if "bootstrap_packages" in data:
        cfg.bootstrap_packages = _as_str_list(data["bootstrap_packages"], "bootstrap_packages")
    if "artifact_patterns" in data:
        cfg.artifact_patterns = _as_str_list(data["artifact_patterns"], "artifact_patterns")
    phases = data.get("phases") or {}
    if not isinstance(phases, dict):
        raise ValueError("phases must be a table of phase = [argv...]")
    for key, value in phases.items():
        if key not in DEFAULT_PHASE_COMMANDS:
            raise ValueError(
                f"Unknown phase {key!r}; expected one of {', '.join(DEFAULT_PHASE_COMMANDS)}"
            )
        cfg.phase_commands[key] = _as_argv(value, key)
    return cfg


def load_config(repo_dir: str, path: Optional[str] = None) -> ProjectConfig:
    """Load project configuration.

    Args:
        repo_dir: Top level of the host repository.
        path: Explicit config file; when given it must exist.

    Returns:
        ProjectConfig, with defaults when no config file is present.
    """
    if path:
        return parse_config(toml.load(path))

    candidate = os.path.join(repo_dir, CONFIG_FILENAME)
    if os.path.exists(candidate):
        return parse_config(toml.load(candidate))

    pyproject = os.path.join(repo_dir, "pyproject.toml")
    if os.path.exists(pyproject):
        section = toml.load(pyproject).get("tool", {}).get("sandbox-ci")
        if section:
            return parse_config(section)

    return ProjectConfig()


def proxy_from_env(environ: Optional[Mapping[str, str]] = None) -> Optional[str]:
    """Return the first proxy URL set in the environment, if any."""
    environ = os.environ if environ is None else environ
    for name in PROXY_ENV_VARS:
        value = (environ.get(name) or "").strip()
        if value:
            return value
    return None
