"""
The script a deploy runs on the remote host.
"""

from __future__ import annotations

from typing import List

from .base import DeployState, marker, qpath, script
from .repo import ensure_repository
from .restart import RestartStrategy
from .venv import create_env, ensure_venv_tool, install_manifest, verify_manifest


def render_deploy_script(repo_url: str, branch: str, remote_dir: str,
                         repo_strategy: str, restart: RestartStrategy,
                         venv_dir: str = "venv", manifest: str = "requirements.txt",
                         python: str = "python3", install_venv_tool: bool = False) -> str:
    """
    Render the remote deploy as one bash script.

    Everything up to the dependency install runs under ``set -e``; the
    restart step sets its own error policy. Each state the deploy reaches is
    echoed as a marker line so the caller can tell how far it got.
    """
    lines: List[str] = [marker(DeployState.START)]

    lines += [
        f"mkdir -p {qpath(remote_dir)}",
        f"cd {qpath(remote_dir)}",
        marker(DeployState.DIRECTORY_READY),
    ]

    lines += ensure_repository(repo_strategy, repo_url, branch, ".")
    lines.append(marker(DeployState.REPO_READY))

    if install_venv_tool:
        lines += ensure_venv_tool(python)
    lines += create_env(venv_dir, python)
    lines.append(marker(DeployState.ENV_READY))

    lines += verify_manifest(manifest)
    lines.append(marker(DeployState.MANIFEST_VERIFIED))
    lines += install_manifest(manifest)

    lines += restart.render(venv_dir)
    lines.append(marker(DeployState.END))

    return script(lines)
