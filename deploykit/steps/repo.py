"""
Strategies for "ensure repository at branch".

Jenkins re-clones its workspace checkout from scratch, while both remote
deploys keep a long-lived working copy and decide between clone and pull
by looking for the .git marker.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from shlex import quote
from typing import Dict, List

from .base import qpath


class RepoStrategy(ABC):
    """Renders the bash that leaves ``directory`` checked out at ``branch``."""

    name: str = ""

    @abstractmethod
    def render(self, repo_url: str, branch: str, directory: str) -> List[str]:
        pass


class FreshClone(RepoStrategy):
    """Delete the directory and clone again."""

    name = "fresh-clone"

    def render(self, repo_url: str, branch: str, directory: str) -> List[str]:
        d = qpath(directory)
        return [
            f"rm -rf {d}",
            f"git clone -b {quote(branch)} {quote(repo_url)} {d}",
        ]


class CloneOrPull(RepoStrategy):
    """Clone when .git is absent, otherwise pull the branch."""

    name = "clone-or-pull"

    def render(self, repo_url: str, branch: str, directory: str) -> List[str]:
        d, b = qpath(directory), quote(branch)
        return [
            f"if [ ! -d {d}/.git ]; then",
            f"  echo {quote('Cloning ' + repo_url + ' (' + branch + ')')}",
            f"  git clone -b {b} {quote(repo_url)} {d}",
            "else",
            f"  echo {quote('Pulling ' + branch)}",
            f"  git -C {d} pull origin {b}",
            "fi",
        ]


class CloneOrSync(RepoStrategy):
    """
    Clone when .git is absent. Otherwise fetch, create the local branch from
    origin if it does not exist yet, check it out and pull.
    """

    name = "clone-or-sync"

    def render(self, repo_url: str, branch: str, directory: str) -> List[str]:
        d, b = qpath(directory), quote(branch)
        return [
            f"if [ ! -d {d}/.git ]; then",
            f"  echo {quote('Cloning ' + repo_url + ' (' + branch + ')')}",
            f"  git clone -b {b} {quote(repo_url)} {d}",
            "else",
            f"  git -C {d} fetch origin",
            f"  if git -C {d} show-ref --verify --quiet refs/heads/{b}; then",
            f"    git -C {d} checkout {b}",
            "  else",
            f"    echo {quote('Creating local branch ' + branch)}",
            f"    git -C {d} checkout -b {b} origin/{b}",
            "  fi",
            f"  git -C {d} pull origin {b}",
            "fi",
        ]


STRATEGIES: Dict[str, RepoStrategy] = {
    s.name: s for s in (FreshClone(), CloneOrPull(), CloneOrSync())
}


def get_strategy(name: str) -> RepoStrategy:
    try:
        return STRATEGIES[name]
    except KeyError:
        raise ValueError(f"Unknown repository strategy: {name} (choose from {', '.join(STRATEGIES)})")


def ensure_repository(strategy: str, repo_url: str, branch: str, directory: str) -> List[str]:
    """Render the commands for ``strategy`` against one working copy."""
    return get_strategy(strategy).render(repo_url, branch, directory)
