"""
Configuration loading and remote credential providers.

Settings come from built-in defaults, an optional YAML file and the
environment, in that order of precedence. Remote credentials are supplied
separately by a ``ConfigProvider`` so the same pipeline code runs with
Jenkins environment variables or GitHub Actions secrets.
"""

from __future__ import annotations

import logging
import os
import stat
import tempfile
from abc import ABC, abstractmethod
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional

import yaml

from .errors import ConfigError

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_FILE = "deploykit.yml"

# "deploykit" on PyPI is an unrelated project; CI installs this tool from git
DEFAULT_TOOL_REQUIREMENT = "git+https://github.com/example/deploykit.git#egg=deploykit"

# Jenkins pipeline environment names accepted alongside DEPLOYKIT_* names
ENV_ALIASES = {
    "APP_DIR": "app_dir",
    "REPO_URL": "repo_url",
    "BRANCH": "branch",
}


@dataclass
class Settings:
    """Everything a pipeline run needs except remote credentials."""
    repo_url: Optional[str] = None
    branch: str = "main"
    app_dir: str = "flaskapp"            # local checkout directory (Jenkins)
    remote_dir: str = "~/flaskapp"       # working copy on the deploy host
    venv_dir: str = "venv"
    manifest: str = "requirements.txt"
    entrypoint: str = "app.py"
    process_log: str = "app.log"
    service_unit: str = "flaskapp.service"
    python: str = "python3"
    test_command: str = "pytest"
    deploy_branches: List[str] = field(default_factory=lambda: ["staging", "main"])
    health_url: Optional[str] = None
    timeout: Optional[float] = None
    tool_requirement: str = DEFAULT_TOOL_REQUIREMENT  # pip requirement CI uses to install this tool

    def require_repo_url(self) -> str:
        if not self.repo_url:
            raise ConfigError("repo_url is not configured (set REPO_URL or repo_url in deploykit.yml)",
                              missing=["repo_url"])
        return self.repo_url


def _coerce(name: str, value: Any) -> Any:
    if value is None:
        return None
    if name == "timeout":
        try:
            return float(value)
        except (TypeError, ValueError):
            raise ConfigError(f"timeout must be a number of seconds, got {value!r}")
    if name == "deploy_branches":
        if isinstance(value, str):
            return [b.strip() for b in value.split(",") if b.strip()]
        return [str(b) for b in value]
    return str(value)


def _read_yaml(path: Path) -> Dict[str, Any]:
    with open(path, "r") as f:
        try:
            data = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ConfigError(f"Invalid YAML in {path}: {e}")
    if not isinstance(data, dict):
        raise ConfigError(f"{path} must contain a mapping at the top level")
    return data


def load_settings(config_path: Optional[str] = None,
                  env: Optional[Mapping[str, str]] = None) -> Settings:
    """
    Load settings from defaults, YAML file and environment.

    Args:
        config_path: Explicit YAML path. When omitted, ``deploykit.yml`` in the
            current directory is used if it exists.
        env: Environment mapping, defaults to ``os.environ``

    Returns:
        Settings instance

    Raises:
        ConfigError: If the file is unreadable or contains unknown keys
    """
    env = os.environ if env is None else env
    known = {f.name for f in fields(Settings)}
    values: Dict[str, Any] = {}

    path = Path(config_path) if config_path else Path(DEFAULT_CONFIG_FILE)
    if path.exists():
        data = _read_yaml(path)
        unknown = sorted(set(data) - known)
        if unknown:
            raise ConfigError(f"Unknown settings in {path}: {', '.join(unknown)}")
        values.update(data)
        logger.debug(f"Loaded settings from {path}")
    elif config_path:
        raise ConfigError(f"Config file not found: {config_path}")

    for env_name, key in ENV_ALIASES.items():
        if env.get(env_name):
            values[key] = env[env_name]
    for key in known:
        env_name = f"DEPLOYKIT_{key.upper()}"
        if env.get(env_name):
            values[key] = env[env_name]

    return Settings(**{k: _coerce(k, v) for k, v in values.items()})


@dataclass
class RemoteTarget:
    """Host, user and private key used for the deploy session."""
    host: str
    user: str
    key_path: str

    @property
    def destination(self) -> str:
        return f"{self.user}@{self.host}"


class ConfigProvider(ABC):
    """Supplies {host, user, key} for the remote session at run time."""

    @abstractmethod
    def remote_target(self) -> RemoteTarget:
        pass

    def close(self) -> None:
        """Release anything created by remote_target()."""

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.close()
        return False


class EnvironmentProvider(ConfigProvider):
    """
    Reads the fixed host/user/key path that the Jenkins pipeline declares in
    its ``environment`` block (REMOTE_HOST, REMOTE_USER, SSH_KEY).
    """

    def __init__(self, env: Optional[Mapping[str, str]] = None):
        self.env = os.environ if env is None else env

    def remote_target(self) -> RemoteTarget:
        values = {
            "REMOTE_HOST": self.env.get("REMOTE_HOST"),
            "REMOTE_USER": self.env.get("REMOTE_USER"),
            "SSH_KEY": self.env.get("SSH_KEY"),
        }
        missing = [k for k, v in values.items() if not v]
        if missing:
            raise ConfigError(f"Missing environment variables: {', '.join(missing)}", missing=missing)

        key_path = os.path.expanduser(values["SSH_KEY"])
        if not Path(key_path).exists():
            raise ConfigError(f"SSH key not found: {key_path}", missing=["SSH_KEY"])

        return RemoteTarget(host=values["REMOTE_HOST"], user=values["REMOTE_USER"], key_path=key_path)


class SecretsProvider(ConfigProvider):
    """
    Reads repository secrets that the Actions workflow exposes as
    environment variables (SSH_HOST, SSH_USER, SSH_PRIVATE_KEY).

    The private key arrives as key material, so it is written to a
    temporary 0600 file for the ssh client and removed on close().
    """

    def __init__(self, env: Optional[Mapping[str, str]] = None):
        self.env = os.environ if env is None else env
        self._key_file: Optional[str] = None

    def remote_target(self) -> RemoteTarget:
        values = {
            "SSH_HOST": self.env.get("SSH_HOST"),
            "SSH_USER": self.env.get("SSH_USER"),
            "SSH_PRIVATE_KEY": self.env.get("SSH_PRIVATE_KEY"),
        }
        missing = [k for k, v in values.items() if not v]
        if missing:
            raise ConfigError(f"Missing secrets: {', '.join(missing)}", missing=missing)

        if self._key_file is None:
            fd, path = tempfile.mkstemp(prefix="deploykit-key-")
            with os.fdopen(fd, "w") as f:
                material = values["SSH_PRIVATE_KEY"]
                f.write(material if material.endswith("\n") else material + "\n")
            os.chmod(path, stat.S_IRUSR | stat.S_IWUSR)
            self._key_file = path

        return RemoteTarget(host=values["SSH_HOST"], user=values["SSH_USER"], key_path=self._key_file)

    def close(self) -> None:
        if self._key_file and os.path.exists(self._key_file):
            os.remove(self._key_file)
        self._key_file = None
