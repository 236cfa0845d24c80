"""
Exceptions raised by deploykit stages and configuration.
"""

from typing import List, Optional


class DeployKitError(Exception):
    """Base class for all deploykit errors."""


class ConfigError(DeployKitError):
    """Configuration is missing or invalid."""

    def __init__(self, message: str, missing: Optional[List[str]] = None):
        super().__init__(message)
        self.missing = missing or []


class CommandFailed(DeployKitError):
    """A shelled-out command exited non-zero."""

    def __init__(self, stage: str, returncode: int, last_lines: Optional[List[str]] = None):
        super().__init__(f"Stage '{stage}' failed with exit code {returncode}")
        self.stage = stage
        self.returncode = returncode
        self.last_lines = last_lines or []


class ManifestMissing(CommandFailed):
    """The deploy target has no dependency manifest."""

    def __init__(self, stage: str, manifest: str, returncode: int = 1,
                 last_lines: Optional[List[str]] = None):
        super().__init__(stage, returncode, last_lines)
        self.manifest = manifest
        self.args = (f"{manifest} not found on deploy target",)


class DeployIncomplete(CommandFailed):
    """The deploy script exited before reaching its end marker."""

    def __init__(self, stage: str, last_state: Optional[str], returncode: int = 0,
                 last_lines: Optional[List[str]] = None):
        super().__init__(stage, returncode, last_lines)
        self.last_state = last_state
        self.args = (f"Deploy stopped after state '{last_state or 'none'}' without reaching the end",)
