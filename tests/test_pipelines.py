"""
Pipeline runner scenarios for the Jenkins and GitHub Actions variants.
"""

from unittest.mock import patch

import pytest

from deploykit.events import read_events
from deploykit.pipelines import get_pipeline, PipelineRunner
from deploykit.shell import CommandResult
from deploykit.stages import StageStatus
from deploykit.steps import DeployState
from deploykit.triggers import Trigger


DEPLOY_STATES = [
    DeployState.START, DeployState.DIRECTORY_READY, DeployState.REPO_READY,
    DeployState.ENV_READY, DeployState.MANIFEST_VERIFIED,
]


class FakeHost:
    """Stands in for run_script; answers per stage and records what ran."""

    def __init__(self, fail=(), deploy_lines=None, deploy_result=None):
        self.fail = set(fail)
        self.deploy_lines = deploy_lines or []
        self.deploy_result = deploy_result
        self.calls = []

    def __call__(self, argv, run_id, stage, cwd=None, timeout=None, on_line=None):
        self.calls.append({"argv": argv, "script": argv[-1], "stage": stage, "cwd": cwd})
        if stage == "deploy":
            if self.deploy_result is not None:
                return self.deploy_result
            final = DeployState.PROCESS_STARTED if "nohup" in argv[-1] else DeployState.SERVICE_RESTARTED
            return CommandResult(0, list(self.deploy_lines), DEPLOY_STATES + [final, DeployState.END])
        if stage in self.fail:
            return CommandResult(1, [f"{stage} exploded"])
        return CommandResult(0, [f"{stage} ok"])

    def stages(self):
        return [c["stage"] for c in self.calls]

    def call(self, stage):
        return next(c for c in self.calls if c["stage"] == stage)


def _run(variant, settings, provider, host, trigger):
    runner = PipelineRunner(get_pipeline(variant, settings), settings, provider=provider)
    with patch("deploykit.shell.run_script", host):
        return runner.run(trigger)


class TestJenkinsPipeline:
    """Jenkins: one job, test failures do not stop the deploy."""

    def test_push_to_main_deploys(self, settings, provider):
        """Test a clean run ends in success with the process started."""
        host = FakeHost()
        result = _run("jenkins", settings, provider, host, Trigger("push", "main"))

        assert result.outcome == "success"
        assert host.stages() == ["checkout", "build", "test", "deploy"]
        deploy = result.stage("deploy")
        assert deploy.status == StageStatus.SUCCESS
        assert deploy.last_state == DeployState.END
        assert "nohup" in host.call("deploy")["script"]

    def test_failing_tests_still_deploy(self, settings, provider):
        """Test failing tests mark the run unstable and the deploy still runs."""
        host = FakeHost(fail={"test"})
        result = _run("jenkins", settings, provider, host, Trigger("push", "main"))

        assert result.outcome == "unstable"
        assert result.succeeded
        assert result.stage("test").status == StageStatus.UNSTABLE
        assert result.stage("deploy").status == StageStatus.SUCCESS
        types = [e["type"] for e in read_events(result.run_id)]
        assert "STAGE_UNSTABLE" in types
        assert "ERROR" not in types

    def test_build_failure_aborts(self, settings, provider):
        """Test a failing build skips every later stage."""
        host = FakeHost(fail={"build"})
        result = _run("jenkins", settings, provider, host, Trigger("push", "main"))

        assert result.outcome == "failed"
        assert host.stages() == ["checkout", "build"]
        assert result.stage("test").status == StageStatus.SKIPPED
        assert result.stage("deploy").status == StageStatus.SKIPPED

    def test_checkout_recreates_app_dir(self, settings, provider):
        """Test checkout re-clones APP_DIR from its parent directory."""
        host = FakeHost()
        _run("jenkins", settings, provider, host, Trigger("push", "main"))

        checkout = host.call("checkout")
        assert checkout["argv"][:2] == ["bash", "-c"]
        assert "rm -rf flaskapp" in checkout["script"]
        assert checkout["cwd"].endswith("workspace")
        assert host.call("build")["cwd"] == settings.app_dir

    def test_always_builds_configured_branch(self, settings, provider):
        """Test the configured branch is built whatever branch was pushed."""
        host = FakeHost()
        _run("jenkins", settings, provider, host, Trigger("push", "feature/x"))
        assert "git clone -b main" in host.call("checkout")["script"]

    def test_deploy_uses_ssh_with_key(self, settings, provider):
        """Test the deploy runs as one ssh command with the script as its argument."""
        host = FakeHost()
        _run("jenkins", settings, provider, host, Trigger("push", "main"))

        argv = host.call("deploy")["argv"]
        assert argv[0] == "ssh"
        assert "-n" in argv
        assert argv[argv.index("-i") + 1] == "/tmp/id_test"
        assert "deploy@203.0.113.10" in argv
        assert argv[-1].startswith("bash -c '")


class TestActionsPipeline:
    """Actions: test job gates the deploy-staging job."""

    def test_push_to_staging_deploys_branch(self, settings, provider):
        """Test a staging push syncs the branch and restarts the unit."""
        host = FakeHost()
        result = _run("actions", settings, provider, host, Trigger("push", "staging"))

        assert result.outcome == "success"
        assert result.job("deploy-staging").status == StageStatus.SUCCESS
        script = host.call("deploy")["script"]
        assert "checkout -b staging origin/staging" in script
        assert "systemctl restart flaskapp.service" in script
        assert "nohup" not in script

    def test_failing_tests_block_deploy(self, settings, provider):
        """Test failing tests fail the run and skip deploy-staging."""
        host = FakeHost(fail={"test"})
        result = _run("actions", settings, provider, host, Trigger("push", "staging"))

        assert result.outcome == "failed"
        assert result.job("test").status == StageStatus.FAILED
        assert result.job("deploy-staging").status == StageStatus.SKIPPED
        assert "deploy" not in host.stages()
        skipped = [e for e in read_events(result.run_id) if e["type"] == "JOB_SKIPPED"]
        assert skipped[0]["data"]["job"] == "deploy-staging"

    def test_pull_request_tests_without_deploying(self, settings, provider):
        """Test a pull request runs the test job only."""
        host = FakeHost()
        trigger = Trigger("pull_request", "refs/pull/7/merge", base_ref="main")
        result = _run("actions", settings, provider, host, trigger)

        assert result.outcome == "success"
        assert host.stages() == ["checkout", "build", "test"]
        assert result.job("deploy-staging").status == StageStatus.SKIPPED

    def test_other_branches_do_not_trigger(self, settings, provider):
        """Test a push outside staging/main is skipped before any stage."""
        host = FakeHost()
        result = _run("actions", settings, provider, host, Trigger("push", "feature/x"))

        assert result.outcome == "skipped"
        assert host.calls == []
        types = [e["type"] for e in read_events(result.run_id)]
        assert types == ["RUN_START", "TRIGGER_SKIPPED", "RUN_DONE"]

    def test_missing_manifest_fails_deploy(self, settings, provider):
        """Test the remote manifest error fails the deploy stage."""
        host = FakeHost(deploy_result=CommandResult(
            1, ["ERROR: requirements.txt not found!"], DEPLOY_STATES[:4]))
        result = _run("actions", settings, provider, host, Trigger("push", "main"))

        assert result.outcome == "failed"
        deploy = result.stage("deploy")
        assert deploy.status == StageStatus.FAILED
        assert "requirements.txt not found" in deploy.error
        errors = [e for e in read_events(result.run_id) if e["type"] == "ERROR"]
        assert errors[0]["data"]["last_lines"] == ["ERROR: requirements.txt not found!"]

    def test_missing_service_unit_is_a_warning(self, settings, provider):
        """Test an unregistered unit is reported as a warning only."""
        warning = "Warning: flaskapp.service not found. Ensure it's set up."
        host = FakeHost(deploy_result=CommandResult(
            0, [warning], DEPLOY_STATES + [DeployState.END]))
        result = _run("actions", settings, provider, host, Trigger("push", "main"))

        assert result.outcome == "success"
        assert result.stage("deploy").warnings == [warning]
        warnings = [e for e in read_events(result.run_id) if e["type"] == "WARNING"]
        assert warnings[-1]["data"]["message"] == warning

    def test_deploy_without_end_marker_fails(self, settings, provider):
        """Test a script exiting 0 before its end marker fails the deploy."""
        host = FakeHost(deploy_result=CommandResult(
            0, ["Collecting flask"], DEPLOY_STATES[:4]))
        result = _run("actions", settings, provider, host, Trigger("push", "main"))

        assert result.outcome == "failed"
        deploy = result.stage("deploy")
        assert deploy.status == StageStatus.FAILED
        assert "env-ready" in deploy.error
        errors = [e for e in read_events(result.run_id) if e["type"] == "ERROR"]
        assert errors[-1]["data"]["stage"] == "deploy"

    def test_deploy_without_any_marker_fails(self, settings, provider):
        """Test a deploy that printed no state at all is not a success."""
        host = FakeHost(deploy_result=CommandResult(0, []))
        result = _run("jenkins", settings, provider, host, Trigger("push", "main"))

        assert result.outcome == "failed"
        assert "'none'" in result.stage("deploy").error


class TestRunner:

    def test_missing_repo_url_fails_checkout(self, settings, provider):
        """Test a missing repo_url fails checkout before running anything."""
        settings.repo_url = None
        host = FakeHost()
        result = _run("jenkins", settings, provider, host, Trigger("push", "main"))

        assert result.outcome == "failed"
        assert "repo_url" in result.stage("checkout").error
        assert host.calls == []

    def test_run_single_stage(self, settings, provider):
        """Test running one stage on its own."""
        host = FakeHost(fail={"test"})
        runner = PipelineRunner(get_pipeline("jenkins", settings), settings, provider=provider)
        with patch("deploykit.shell.run_script", host):
            result = runner.run_stage("test", Trigger("push", "main"))

        assert host.stages() == ["test"]
        assert result.outcome == "unstable"

    def test_unknown_stage_and_variant(self, settings):
        """Test unknown variants and stage names are rejected."""
        with pytest.raises(ValueError, match="Unknown pipeline variant"):
            get_pipeline("gitlab", settings)
        with pytest.raises(ValueError, match="has no stage"):
            get_pipeline("actions", settings).stage("lint")

    def test_injected_provider_is_not_closed(self, settings, provider):
        """Test the runner leaves a provider it did not create open."""
        _run("actions", settings, provider, FakeHost(), Trigger("push", "main"))
        assert provider.closed is False

    def test_smoke_check_failure_is_reported(self, settings, provider):
        """Test a failing smoke check is recorded without failing the run."""
        from deploykit.smoke import SmokeTestResult

        settings.health_url = "http://203.0.113.10:5000/health"
        failed = SmokeTestResult(False, "Smoke check failed", {"error": "boom", "attempts": 1})
        with patch("deploykit.stages.run_smoke_check", return_value=failed):
            result = _run("jenkins", settings, provider, FakeHost(), Trigger("push", "main"))

        assert result.outcome == "success"
        types = [e["type"] for e in read_events(result.run_id)]
        assert "SMOKE_FAIL" in types
