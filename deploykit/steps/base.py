from __future__ import annotations

import shlex
from enum import Enum
from typing import List, Optional

STATE_MARKER = "::deploykit-state::"


class DeployState(Enum):
    """States of one remote deploy, in the order the script reaches them."""
    START = "start"
    DIRECTORY_READY = "directory-ready"
    REPO_READY = "repo-ready"
    ENV_READY = "env-ready"
    MANIFEST_VERIFIED = "manifest-verified"
    SERVICE_RESTARTED = "service-restarted"
    PROCESS_STARTED = "process-started"
    END = "end"


def marker(state: DeployState) -> str:
    return f"echo '{STATE_MARKER}{state.value}'"


def parse_state_marker(line: str) -> Optional[DeployState]:
    line = line.strip()
    if not line.startswith(STATE_MARKER):
        return None
    try:
        return DeployState(line[len(STATE_MARKER):])
    except ValueError:
        return None


def qpath(path: str) -> str:
    """Quote a path for bash while keeping a leading ~/ expandable."""
    if path == "~":
        return path
    if path.startswith("~/"):
        return "~/" + shlex.quote(path[2:])
    return shlex.quote(path)


def script(lines: List[str], errexit: bool = True) -> str:
    header = ["#!/usr/bin/env bash"]
    if errexit:
        header.append("set -e")
    return "\n".join(header + lines) + "\n"
