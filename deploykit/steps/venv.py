"""
Dependency environment commands: venv creation, installer upgrade,
manifest install and the test runner.
"""

from __future__ import annotations

from shlex import quote
from typing import List

from .base import qpath


def ensure_venv_tool(python: str = "python3") -> List[str]:
    """Install the OS venv package when the interpreter cannot create venvs."""
    py = quote(python)
    return [
        f"if ! {py} -c 'import venv, ensurepip' >/dev/null 2>&1; then",
        "  echo 'python3-venv missing, installing'",
        "  sudo apt-get update -y",
        "  sudo apt-get install -y python3-venv",
        "fi",
    ]


def create_env(venv_dir: str = "venv", python: str = "python3") -> List[str]:
    v = qpath(venv_dir)
    return [
        f"if [ ! -d {v} ]; then",
        f"  {quote(python)} -m venv {v}",
        "fi",
        f". {v}/bin/activate",
        "python -m pip install --upgrade pip",
    ]


def verify_manifest(manifest: str = "requirements.txt") -> List[str]:
    """Abort the script when the manifest is missing."""
    m = quote(manifest)
    return [
        f"if [ ! -f {m} ]; then",
        f"  echo {quote(f'ERROR: {manifest} not found!')}",
        "  exit 1",
        "fi",
    ]


def install_manifest(manifest: str = "requirements.txt") -> List[str]:
    return [f"pip install -r {quote(manifest)}"]


def install_manifest_if_present(manifest: str = "requirements.txt") -> List[str]:
    """Install from the manifest, or warn and carry on without it."""
    m = quote(manifest)
    return [
        f"if [ -f {m} ]; then",
        f"  pip install -r {m}",
        "else",
        f"  echo {quote(f'Warning: {manifest} not found, skipping dependency install.')}",
        "fi",
    ]


def run_tests(venv_dir: str = "venv", test_command: str = "pytest") -> List[str]:
    return [
        f". {qpath(venv_dir)}/bin/activate",
        test_command,
    ]
