"""
Pipeline stages: Checkout, Build, Test and Deploy.

Each stage renders a bash script from the step renderers, hands it to an
executor and raises on a non-zero exit. Whether a failure stops the run is
decided by the pipeline, not by the stage.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Callable, List, Optional

from .config import ConfigProvider, Settings
from .errors import CommandFailed, ConfigError, DeployIncomplete, ManifestMissing
from .events import emit_event, EventTypes
from .shell import CommandResult, LineCallback, LocalExecutor, SSHExecutor
from .smoke import run_smoke_check
from .steps import ensure_repository, render_deploy_script, RestartStrategy
from .steps.base import DeployState, script
from .steps import venv

logger = logging.getLogger(__name__)


class StageStatus(Enum):
    SUCCESS = "success"
    UNSTABLE = "unstable"
    FAILED = "failed"
    SKIPPED = "skipped"


@dataclass
class StageResult:
    name: str
    status: StageStatus
    returncode: Optional[int] = None
    last_state: Optional[DeployState] = None
    warnings: List[str] = field(default_factory=list)
    error: Optional[str] = None


@dataclass
class StageContext:
    """What a stage needs to run: where, with which settings and credentials."""
    run_id: str
    settings: Settings
    branch: str
    workdir: str
    provider: Optional[ConfigProvider] = None
    on_line: Optional[LineCallback] = None


StageAction = Callable[[StageContext], StageResult]


@dataclass
class Stage:
    name: str
    action: StageAction
    continue_on_failure: bool = False


def _check(ctx: StageContext, stage: str, result: CommandResult) -> None:
    if result.timed_out:
        logger.error(f"[{stage}] timed out after {ctx.settings.timeout}s")
    if not result.ok:
        raise CommandFailed(stage, result.returncode, result.tail())


def _warn(ctx: StageContext, stage: str, message: str, warnings: List[str]) -> None:
    logger.warning(f"[{stage}] {message}")
    emit_event(ctx.run_id, EventTypes.WARNING, {"stage": stage, "message": message})
    warnings.append(message)


def checkout(strategy: str) -> StageAction:
    """
    Checkout stage bound to a repository strategy.

    The working copy is ``ctx.workdir``; the script runs from its parent so
    the fresh-clone strategy can delete and recreate it.
    """
    def action(ctx: StageContext) -> StageResult:
        repo_url = ctx.settings.require_repo_url()
        target = Path(ctx.workdir).resolve()
        target.parent.mkdir(parents=True, exist_ok=True)

        lines = ensure_repository(strategy, repo_url, ctx.branch, target.name)
        executor = LocalExecutor(cwd=str(target.parent))
        result = executor.run(script(lines), ctx.run_id, "checkout",
                              timeout=ctx.settings.timeout, on_line=ctx.on_line)
        _check(ctx, "checkout", result)
        return StageResult("checkout", StageStatus.SUCCESS, returncode=result.returncode)

    return action


def build(install_venv_tool: bool = False) -> StageAction:
    """Build stage: venv, pip upgrade, manifest install."""
    def action(ctx: StageContext) -> StageResult:
        s = ctx.settings
        warnings: List[str] = []
        if not (Path(ctx.workdir) / s.manifest).exists():
            _warn(ctx, "build", f"{s.manifest} not found, skipping dependency install", warnings)

        lines: List[str] = []
        if install_venv_tool:
            lines += venv.ensure_venv_tool(s.python)
        lines += venv.create_env(s.venv_dir, s.python)
        lines += venv.install_manifest_if_present(s.manifest)

        result = LocalExecutor(cwd=ctx.workdir).run(script(lines), ctx.run_id, "build",
                                                    timeout=s.timeout, on_line=ctx.on_line)
        _check(ctx, "build", result)
        return StageResult("build", StageStatus.SUCCESS, returncode=result.returncode, warnings=warnings)

    return action


def run_test_suite(ctx: StageContext) -> StageResult:
    s = ctx.settings
    lines = venv.run_tests(s.venv_dir, s.test_command)
    result = LocalExecutor(cwd=ctx.workdir).run(script(lines), ctx.run_id, "test",
                                                timeout=s.timeout, on_line=ctx.on_line)
    _check(ctx, "test", result)
    return StageResult("test", StageStatus.SUCCESS, returncode=result.returncode)


def deploy(repo_strategy: str, restart: RestartStrategy,
           install_venv_tool: bool = False) -> StageAction:
    """
    Deploy stage: one SSH session running the rendered remote script,
    followed by an optional smoke check against ``settings.health_url``.
    """
    def action(ctx: StageContext) -> StageResult:
        s = ctx.settings
        if ctx.provider is None:
            raise ConfigError("deploy stage needs remote credentials (no config provider)")

        target = ctx.provider.remote_target()
        logger.info(f"Deploying {ctx.branch} to {target.destination}:{s.remote_dir}")
        deploy_script = render_deploy_script(
            repo_url=s.require_repo_url(),
            branch=ctx.branch,
            remote_dir=s.remote_dir,
            repo_strategy=repo_strategy,
            restart=restart,
            venv_dir=s.venv_dir,
            manifest=s.manifest,
            python=s.python,
            install_venv_tool=install_venv_tool,
        )
        result = SSHExecutor(target).run(deploy_script, ctx.run_id, "deploy",
                                         timeout=s.timeout, on_line=ctx.on_line)

        if not result.ok:
            if result.contains(f"ERROR: {s.manifest} not found!"):
                raise ManifestMissing("deploy", s.manifest, result.returncode, result.tail())
            _check(ctx, "deploy", result)
        if result.last_state != DeployState.END:
            state = result.last_state.value if result.last_state else None
            raise DeployIncomplete("deploy", state, result.returncode, result.tail())

        warnings: List[str] = []
        for line in result.lines:
            if line.startswith("Warning:"):
                _warn(ctx, "deploy", line, warnings)

        if s.health_url:
            smoke = run_smoke_check(s.health_url)
            if smoke.success:
                emit_event(ctx.run_id, EventTypes.SMOKE_OK, {"url": s.health_url, "message": smoke.message})
            else:
                emit_event(ctx.run_id, EventTypes.SMOKE_FAIL, {"url": s.health_url, **smoke.details})
                _warn(ctx, "deploy", smoke.message, warnings)

        return StageResult("deploy", StageStatus.SUCCESS, returncode=result.returncode,
                           last_state=result.last_state, warnings=warnings)

    return action
