"""
Render the CI configurations (Jenkinsfile, GitHub Actions workflow) that
drive a pipeline through the deploykit CLI, one stage per step.
"""

from __future__ import annotations

from typing import Any, Dict, List, Mapping, Optional

import yaml

from .config import Settings
from .pipelines import Pipeline

TOOLS_VENV = ".deploykit-tools"

DEFAULT_JENKINS_ENV = {
    "REMOTE_USER": "ubuntu",
    "REMOTE_HOST": "your-server-ip",
    "SSH_KEY": "/var/lib/jenkins/.ssh/id_rsa",
}

WORKFLOW_SECRETS = {
    "SSH_HOST": "${{ secrets.SSH_HOST }}",
    "SSH_USER": "${{ secrets.SSH_USER }}",
    "SSH_PRIVATE_KEY": "${{ secrets.SSH_PRIVATE_KEY }}",
}


def _groovy_str(value: str) -> str:
    return "'" + value.replace("\\", "\\\\").replace("'", "\\'") + "'"


def render_jenkinsfile(pipeline: Pipeline, settings: Settings,
                       environment: Optional[Mapping[str, str]] = None) -> str:
    """
    Render a declarative Jenkinsfile for ``pipeline``.

    Host, user and key path are fixed in the ``environment`` block; stages
    flagged continue_on_failure are wrapped in catchError so the build turns
    UNSTABLE and later stages still run.
    """
    env: Dict[str, str] = {
        "APP_DIR": settings.app_dir,
        "BRANCH": settings.branch,
    }
    if settings.repo_url:
        env["REPO_URL"] = settings.repo_url
    env.update(DEFAULT_JENKINS_ENV)
    env.update(environment or {})

    cli = f"{TOOLS_VENV}/bin/deploykit"
    out: List[str] = [
        "pipeline {",
        "    agent any",
        "",
        "    triggers {",
        "        githubPush()",
        "    }",
        "",
        "    environment {",
    ]
    out += [f"        {k} = {_groovy_str(v)}" for k, v in env.items()]
    out += [
        "    }",
        "",
        "    stages {",
        "        stage('Tooling') {",
        "            steps {",
        f"                sh 'python3 -m venv {TOOLS_VENV} && {TOOLS_VENV}/bin/pip install --upgrade pip {settings.tool_requirement}'",
        "            }",
        "        }",
    ]
    for name in pipeline.stage_names():
        stage = pipeline.stage(name)
        command = f"sh '{cli} stage {name} --variant {pipeline.variant}'"
        out.append("")
        out.append(f"        stage('{name.capitalize()}') {{")
        out.append("            steps {")
        if stage.continue_on_failure:
            out.append("                catchError(buildResult: 'UNSTABLE', stageResult: 'UNSTABLE') {")
            out.append(f"                    {command}")
            out.append("                }")
        else:
            out.append(f"                {command}")
        out.append("            }")
        out.append("        }")
    out += [
        "    }",
        "}",
    ]
    return "\n".join(out) + "\n"


def _branch_condition(branches: List[str]) -> str:
    return " || ".join(f"github.ref == 'refs/heads/{b}'" for b in branches)


def _setup_steps(settings: Settings, python_version: str) -> List[Dict[str, Any]]:
    return [
        {"uses": "actions/setup-python@v5", "with": {"python-version": python_version}},
        {"name": "Install deploykit", "run": f"pip install {settings.tool_requirement}"},
    ]


def render_workflow(pipeline: Pipeline, settings: Settings, python_version: str = "3.11") -> str:
    """
    Render a GitHub Actions workflow for ``pipeline``.

    The checkout stage maps to actions/checkout, the remaining stages run the
    deploykit CLI against the checked-out workspace. Jobs keep their
    ``needs`` and branch gates.
    """
    branches = pipeline.branches or [settings.branch]
    workflow: Dict[str, Any] = {
        "name": "Deploy",
        "on": {event: {"branches": list(branches)} for event in pipeline.events},
        "jobs": {},
    }

    repo_url = settings.repo_url or "${{ github.server_url }}/${{ github.repository }}.git"
    for job in pipeline.jobs:
        steps: List[Dict[str, Any]] = []
        needs_workspace = any(s.name != "deploy" for s in job.stages)
        if needs_workspace:
            steps.append({"uses": "actions/checkout@v4"})
        steps += _setup_steps(settings, python_version)

        for stage in job.stages:
            if stage.name == "checkout":
                continue
            step: Dict[str, Any] = {
                "name": stage.name.capitalize(),
                "run": f"deploykit stage {stage.name} --variant {pipeline.variant} --workdir .",
            }
            if stage.name == "deploy":
                step["run"] = f"deploykit stage {stage.name} --variant {pipeline.variant}"
                step["env"] = {"REPO_URL": repo_url, **WORKFLOW_SECRETS}
            if stage.continue_on_failure:
                step["continue-on-error"] = True
            steps.append(step)

        body: Dict[str, Any] = {"runs-on": "ubuntu-latest"}
        if job.needs:
            body["needs"] = list(job.needs)
        if job.branches:
            body["if"] = _branch_condition(job.branches)
        body["steps"] = steps
        workflow["jobs"][job.name] = body

    return yaml.safe_dump(workflow, sort_keys=False, default_flow_style=False, width=1000)
