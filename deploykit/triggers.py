"""
Trigger events that start a pipeline run.
"""

from __future__ import annotations

import json
import os
from dataclasses import dataclass, asdict
from pathlib import Path
from typing import Any, Dict, Iterable, Mapping, Optional

SUPPORTED_EVENTS = ("push", "pull_request")


@dataclass
class Trigger:
    """A push or pull request event against a git ref."""
    event: str       # "push" | "pull_request"
    ref: str         # e.g. "refs/heads/main" or "refs/pull/7/merge"
    base_ref: Optional[str] = None   # target branch of a pull request

    def __post_init__(self):
        if self.event not in SUPPORTED_EVENTS:
            raise ValueError(f"Unsupported event: {self.event}")
        if not self.ref.startswith("refs/"):
            self.ref = f"refs/heads/{self.ref}"

    @property
    def branch(self) -> Optional[str]:
        """Branch name for branch refs, None for pull request merge refs."""
        if self.ref.startswith("refs/heads/"):
            return self.ref[len("refs/heads/"):]
        return None

    def targets_branch(self, branches: Iterable[str]) -> bool:
        return self.branch is not None and self.branch in set(branches)

    def matches_filter(self, branches: Iterable[str]) -> bool:
        """
        Branch filter applied before a run starts. Pushes match on the pushed
        branch, pull requests on the branch they target.
        """
        if self.event == "pull_request":
            return self.base_ref is None or self.base_ref in set(branches)
        return self.targets_branch(branches)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def from_github_env(env: Optional[Mapping[str, str]] = None) -> Trigger:
    """
    Build a trigger from the variables GitHub Actions sets on every job.

    ``GITHUB_REF`` already distinguishes pushes (refs/heads/<branch>) from
    pull requests (refs/pull/<n>/merge); the event payload is only read when
    GITHUB_REF is absent.
    """
    env = os.environ if env is None else env
    event = env.get("GITHUB_EVENT_NAME", "push")
    ref = env.get("GITHUB_REF")
    if not ref and env.get("GITHUB_EVENT_PATH"):
        return from_payload(event, json.loads(Path(env["GITHUB_EVENT_PATH"]).read_text()))
    if not ref:
        raise ValueError("GITHUB_REF is not set")
    return Trigger(event=event, ref=ref, base_ref=env.get("GITHUB_BASE_REF") or None)


def from_payload(event: str, payload: Dict[str, Any]) -> Trigger:
    """
    Build a trigger from a webhook payload.

    Push payloads carry ``ref``; pull request payloads carry the PR number,
    which maps to the merge ref GitHub checks out for PR builds.
    """
    if event == "pull_request":
        number = payload.get("number") or payload.get("pull_request", {}).get("number")
        if number is None:
            raise ValueError("pull_request payload has no number")
        base = payload.get("pull_request", {}).get("base", {}).get("ref")
        return Trigger(event=event, ref=f"refs/pull/{number}/merge", base_ref=base)
    ref = payload.get("ref")
    if not ref:
        raise ValueError("push payload has no ref")
    return Trigger(event="push", ref=ref)
