"""
The two pipeline variants and the runner that executes them.

Both variants run Checkout, Build, Test and Deploy in a straight line. They
differ in how the working copy is ensured, how test failures propagate,
how the application is restarted and where credentials come from:

jenkins
    one job; fresh re-clone into APP_DIR; test failures mark the run
    unstable and deploy still runs; remote clone-or-pull; detached
    ``python app.py``; credentials from the pipeline environment.
actions
    job ``test`` then job ``deploy-staging`` (needs ``test``); runs only
    for staging/main; failing tests skip the deploy job; remote
    clone-or-sync; ``systemctl restart`` of a registered unit; credentials
    from repository secrets.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional

from .config import ConfigProvider, EnvironmentProvider, SecretsProvider, Settings
from .errors import DeployKitError
from .events import emit_event, EventTypes
from .ids import new_run_id
from .shell import LineCallback
from .stages import (
    Stage, StageContext, StageResult, StageStatus,
    build, checkout, deploy, run_test_suite,
)
from .state import create_run_dir, run_exists, write_run_json
from .steps import DetachedProcess, ServiceUnit
from .triggers import Trigger

logger = logging.getLogger(__name__)


@dataclass
class Job:
    name: str
    stages: List[Stage]
    needs: List[str] = field(default_factory=list)
    branches: Optional[List[str]] = None    # run only for these branch refs


@dataclass
class Pipeline:
    variant: str
    jobs: List[Job]
    provider_factory: Callable[[], ConfigProvider]
    events: List[str] = field(default_factory=lambda: ["push"])
    branches: Optional[List[str]] = None    # trigger filter, None accepts every branch
    fixed_branch: Optional[str] = None      # build this branch whatever the trigger says

    def stage(self, name: str) -> Stage:
        for job in self.jobs:
            for stage in job.stages:
                if stage.name == name:
                    return stage
        raise ValueError(f"Pipeline '{self.variant}' has no stage '{name}'")

    def stage_names(self) -> List[str]:
        return [s.name for job in self.jobs for s in job.stages]


def jenkins_pipeline(settings: Settings) -> Pipeline:
    return Pipeline(
        variant="jenkins",
        jobs=[
            Job("build", [
                Stage("checkout", checkout("fresh-clone")),
                Stage("build", build(install_venv_tool=True)),
                Stage("test", run_test_suite, continue_on_failure=True),
                Stage("deploy", deploy(
                    "clone-or-pull",
                    DetachedProcess(settings.entrypoint, settings.process_log),
                    install_venv_tool=True,
                )),
            ]),
        ],
        provider_factory=EnvironmentProvider,
        events=["push"],
        fixed_branch=settings.branch,
    )


def actions_pipeline(settings: Settings) -> Pipeline:
    return Pipeline(
        variant="actions",
        jobs=[
            Job("test", [
                Stage("checkout", checkout("fresh-clone")),
                Stage("build", build()),
                Stage("test", run_test_suite),
            ]),
            Job("deploy-staging", [
                Stage("deploy", deploy("clone-or-sync", ServiceUnit(settings.service_unit))),
            ], needs=["test"], branches=list(settings.deploy_branches)),
        ],
        provider_factory=SecretsProvider,
        events=["push", "pull_request"],
        branches=list(settings.deploy_branches),
    )


PIPELINES = {
    "jenkins": jenkins_pipeline,
    "actions": actions_pipeline,
}


def get_pipeline(variant: str, settings: Settings) -> Pipeline:
    try:
        factory = PIPELINES[variant]
    except KeyError:
        raise ValueError(f"Unknown pipeline variant: {variant} (choose from {', '.join(PIPELINES)})")
    return factory(settings)


@dataclass
class JobResult:
    name: str
    status: StageStatus
    stages: List[StageResult] = field(default_factory=list)


@dataclass
class RunResult:
    run_id: str
    variant: str
    outcome: str                # "success" | "unstable" | "failed" | "skipped"
    jobs: List[JobResult] = field(default_factory=list)

    def stage(self, name: str) -> Optional[StageResult]:
        for job in self.jobs:
            for result in job.stages:
                if result.name == name:
                    return result
        return None

    def job(self, name: str) -> Optional[JobResult]:
        for job in self.jobs:
            if job.name == name:
                return job
        return None

    @property
    def succeeded(self) -> bool:
        return self.outcome != "failed"


def _outcome(statuses: List[StageStatus]) -> str:
    if StageStatus.FAILED in statuses:
        return "failed"
    if StageStatus.UNSTABLE in statuses:
        return "unstable"
    if not statuses or all(s == StageStatus.SKIPPED for s in statuses):
        return "skipped"
    return "success"


class PipelineRunner:
    """Executes a pipeline for one trigger and records the run."""

    def __init__(self, pipeline: Pipeline, settings: Settings,
                 provider: Optional[ConfigProvider] = None,
                 workdir: Optional[str] = None,
                 on_line: Optional[LineCallback] = None):
        self.pipeline = pipeline
        self.settings = settings
        self.provider = provider
        self.workdir = workdir or settings.app_dir
        self.on_line = on_line

    def branch_for(self, trigger: Trigger) -> str:
        if self.pipeline.fixed_branch:
            return self.pipeline.fixed_branch
        return trigger.branch or trigger.base_ref or self.settings.branch

    def _start(self, trigger: Trigger, run_id: Optional[str]) -> str:
        run_id = run_id or new_run_id()
        create_run_dir(run_id)
        if not run_exists(run_id):
            write_run_json(run_id, self.pipeline.variant, trigger.to_dict())
        emit_event(run_id, EventTypes.RUN_START, {
            "variant": self.pipeline.variant,
            "trigger": trigger.to_dict(),
        })
        return run_id

    def _finish(self, run_id: str, jobs: List[JobResult]) -> RunResult:
        outcome = _outcome([j.status for j in jobs])
        emit_event(run_id, EventTypes.RUN_DONE, {"outcome": outcome})
        logger.info(f"Run {run_id} finished: {outcome}")
        return RunResult(run_id, self.pipeline.variant, outcome, jobs)

    def accepts(self, trigger: Trigger) -> bool:
        if trigger.event not in self.pipeline.events:
            return False
        if self.pipeline.branches is not None:
            return trigger.matches_filter(self.pipeline.branches)
        return True

    def run(self, trigger: Trigger, run_id: Optional[str] = None) -> RunResult:
        """
        Run every job of the pipeline for ``trigger``.

        Jobs run in declaration order. A job is skipped when one of the jobs
        it needs did not succeed, or when it is gated to branches the
        trigger ref is not on.
        """
        run_id = self._start(trigger, run_id)

        if not self.accepts(trigger):
            emit_event(run_id, EventTypes.TRIGGER_SKIPPED, {
                "reason": f"{trigger.event} on {trigger.ref} does not trigger '{self.pipeline.variant}'"
            })
            return self._finish(run_id, [])

        provider = self.provider or self.pipeline.provider_factory()
        results: Dict[str, JobResult] = {}
        try:
            for job in self.pipeline.jobs:
                reason = self._skip_reason(job, trigger, results)
                if reason:
                    logger.info(f"Skipping job {job.name}: {reason}")
                    emit_event(run_id, EventTypes.JOB_SKIPPED, {"job": job.name, "reason": reason})
                    results[job.name] = JobResult(job.name, StageStatus.SKIPPED, [
                        StageResult(s.name, StageStatus.SKIPPED) for s in job.stages
                    ])
                    continue
                results[job.name] = self._run_job(run_id, job, trigger, provider)
        finally:
            if self.provider is None:
                provider.close()

        return self._finish(run_id, list(results.values()))

    def run_stage(self, name: str, trigger: Trigger, run_id: Optional[str] = None) -> RunResult:
        """Run a single stage, as the CI configurations do step by step."""
        stage = self.pipeline.stage(name)
        run_id = self._start(trigger, run_id)
        job = Job(name, [stage])
        provider = self.provider or self.pipeline.provider_factory()
        try:
            result = self._run_job(run_id, job, trigger, provider)
        finally:
            if self.provider is None:
                provider.close()
        return self._finish(run_id, [result])

    def _skip_reason(self, job: Job, trigger: Trigger, results: Dict[str, JobResult]) -> Optional[str]:
        for needed in job.needs:
            done = results.get(needed)
            if done is None or done.status not in (StageStatus.SUCCESS, StageStatus.UNSTABLE):
                return f"needs '{needed}', which did not succeed"
        if job.branches is not None and not trigger.targets_branch(job.branches):
            return f"{trigger.ref} is not one of {', '.join(job.branches)}"
        return None

    def _run_job(self, run_id: str, job: Job, trigger: Trigger, provider: ConfigProvider) -> JobResult:
        emit_event(run_id, EventTypes.JOB_START, {"job": job.name})
        ctx = StageContext(
            run_id=run_id,
            settings=self.settings,
            branch=self.branch_for(trigger),
            workdir=self.workdir,
            provider=provider,
            on_line=self.on_line,
        )

        stage_results: List[StageResult] = []
        halted = False
        for stage in job.stages:
            if halted:
                stage_results.append(StageResult(stage.name, StageStatus.SKIPPED))
                continue

            emit_event(run_id, EventTypes.STAGE_START, {"job": job.name, "stage": stage.name})
            logger.info(f"[{job.name}] stage {stage.name}")
            try:
                result = stage.action(ctx)
                emit_event(run_id, EventTypes.STAGE_DONE, {
                    "stage": stage.name,
                    "status": result.status.value,
                    "last_state": result.last_state.value if result.last_state else None,
                })
            except DeployKitError as e:
                result = self._failed(run_id, stage, e)
                if result.status == StageStatus.FAILED:
                    halted = True
            stage_results.append(result)

        statuses = [r.status for r in stage_results]
        if StageStatus.FAILED in statuses:
            status = StageStatus.FAILED
        elif StageStatus.UNSTABLE in statuses:
            status = StageStatus.UNSTABLE
        else:
            status = StageStatus.SUCCESS
        emit_event(run_id, EventTypes.JOB_DONE, {"job": job.name, "status": status.value})
        return JobResult(job.name, status, stage_results)

    def _failed(self, run_id: str, stage: Stage, error: DeployKitError) -> StageResult:
        returncode = getattr(error, "returncode", None)
        if stage.continue_on_failure:
            logger.warning(f"Stage {stage.name} failed, continuing: {error}")
            emit_event(run_id, EventTypes.STAGE_UNSTABLE, {
                "stage": stage.name,
                "reason": str(error),
                "last_lines": getattr(error, "last_lines", []),
            })
            emit_event(run_id, EventTypes.STAGE_DONE, {"stage": stage.name, "status": StageStatus.UNSTABLE.value})
            return StageResult(stage.name, StageStatus.UNSTABLE, returncode=returncode, error=str(error))

        logger.error(f"Stage {stage.name} failed: {error}")
        emit_event(run_id, EventTypes.ERROR, {
            "stage": stage.name,
            "reason": str(error),
            "last_lines": getattr(error, "last_lines", []),
        })
        emit_event(run_id, EventTypes.STAGE_DONE, {"stage": stage.name, "status": StageStatus.FAILED.value})
        return StageResult(stage.name, StageStatus.FAILED, returncode=returncode, error=str(error))
