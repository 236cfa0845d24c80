"""
Ways of (re)starting the application after a deploy.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from shlex import quote
from typing import List

from .base import DeployState, marker, qpath


class RestartStrategy(ABC):

    @abstractmethod
    def render(self, venv_dir: str) -> List[str]:
        pass

    @property
    @abstractmethod
    def final_state(self) -> DeployState:
        pass


class DetachedProcess(RestartStrategy):
    """
    Start ``python <entrypoint>`` in the background, detached from the SSH
    session. Nothing checks for, or stops, an instance that is already
    running.
    """

    def __init__(self, entrypoint: str = "app.py", log_file: str = "app.log"):
        self.entrypoint = entrypoint
        self.log_file = log_file

    @property
    def final_state(self) -> DeployState:
        return DeployState.PROCESS_STARTED

    def render(self, venv_dir: str) -> List[str]:
        return [
            f"nohup {qpath(venv_dir)}/bin/python {quote(self.entrypoint)} "
            f"> {quote(self.log_file)} 2>&1 < /dev/null &",
            marker(self.final_state),
        ]


class ServiceUnit(RestartStrategy):
    """
    Restart a systemd unit, but only if it is registered. A missing unit
    or a failed restart is reported and does not fail the deploy.
    """

    def __init__(self, unit: str = "flaskapp.service"):
        self.unit = unit

    @property
    def final_state(self) -> DeployState:
        return DeployState.SERVICE_RESTARTED

    def render(self, venv_dir: str) -> List[str]:
        u = quote(self.unit)
        missing = f"Warning: {self.unit} not found. Ensure it's set up."
        return [
            "set +e",
            f"if systemctl list-unit-files | grep -qF {u}; then",
            f"  if sudo systemctl restart {u}; then",
            f"    {marker(self.final_state)}",
            "  else",
            f"    echo {quote(f'Warning: failed to restart {self.unit}.')}",
            "  fi",
            "else",
            f"  echo {quote(missing)}",
            "fi",
        ]


def render_unit(working_dir: str, user: str, entrypoint: str = "app.py",
                venv_dir: str = "venv", description: str = "Flask application") -> str:
    """Render a systemd unit file for operators to register on the host."""
    return f"""
[Unit]
Description={description}
After=network-online.target
Wants=network-online.target

[Service]
Type=simple
User={user}
WorkingDirectory={working_dir}
ExecStart={working_dir}/{venv_dir}/bin/python {entrypoint}
Restart=always
RestartSec=5

[Install]
WantedBy=multi-user.target
""".strip() + "\n"
