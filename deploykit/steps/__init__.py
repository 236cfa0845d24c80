"""
Bash renderers for the commands each pipeline stage runs.
"""

from .base import DeployState, STATE_MARKER, parse_state_marker
from .repo import RepoStrategy, get_strategy, ensure_repository
from .restart import RestartStrategy, DetachedProcess, ServiceUnit, render_unit
from .remote import render_deploy_script

__all__ = [
    "DeployState",
    "STATE_MARKER",
    "parse_state_marker",
    "RepoStrategy",
    "get_strategy",
    "ensure_repository",
    "RestartStrategy",
    "DetachedProcess",
    "ServiceUnit",
    "render_unit",
    "render_deploy_script",
]
