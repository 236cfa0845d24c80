"""
Tests for rendering the CI configurations.
"""

from pathlib import Path

import yaml

from deploykit.config import DEFAULT_TOOL_REQUIREMENT, Settings
from deploykit.pipelines import get_pipeline
from deploykit.render import render_jenkinsfile, render_workflow

ROOT = Path(__file__).resolve().parent.parent


class TestJenkinsfile:

    def test_stages_in_order_with_unstable_tests(self):
        """Test stage order and the catchError wrapper on tests."""
        settings = Settings(repo_url="https://github.com/example/flaskapp.git")
        text = render_jenkinsfile(get_pipeline("jenkins", settings), settings)

        positions = [text.index(f"stage('{name}')") for name in ("Tooling", "Checkout", "Build", "Test", "Deploy")]
        assert positions == sorted(positions)
        test_block = text[text.index("stage('Test')"):text.index("stage('Deploy')")]
        assert "catchError(buildResult: 'UNSTABLE', stageResult: 'UNSTABLE')" in test_block
        deploy_block = text[text.index("stage('Deploy')"):]
        assert "catchError" not in deploy_block
        assert "githubPush()" in text

    def test_environment_block(self):
        """Test environment defaults and overrides."""
        settings = Settings(repo_url="https://github.com/example/flaskapp.git")
        text = render_jenkinsfile(get_pipeline("jenkins", settings), settings,
                                  {"REMOTE_HOST": "203.0.113.10"})
        assert "APP_DIR = 'flaskapp'" in text
        assert "REPO_URL = 'https://github.com/example/flaskapp.git'" in text
        assert "REMOTE_HOST = '203.0.113.10'" in text
        assert "REMOTE_USER = 'ubuntu'" in text

    def test_committed_jenkinsfile_matches_renderer(self):
        """Test the committed Jenkinsfile is the rendered one."""
        settings = Settings(repo_url="https://github.com/example/flaskapp.git")
        text = render_jenkinsfile(get_pipeline("jenkins", settings), settings)
        assert (ROOT / "Jenkinsfile").read_text() == text


class TestWorkflow:

    def _workflow(self, settings=None):
        settings = settings or Settings()
        return yaml.safe_load(render_workflow(get_pipeline("actions", settings), settings))

    def test_triggers_on_staging_and_main(self):
        """Test push and pull_request triggers for staging and main."""
        workflow = self._workflow()
        assert workflow["on"] == {
            "push": {"branches": ["staging", "main"]},
            "pull_request": {"branches": ["staging", "main"]},
        }

    def test_deploy_job_needs_test_and_is_gated(self):
        """Test deploy-staging needs test and is gated to branch refs."""
        jobs = self._workflow()["jobs"]
        assert list(jobs) == ["test", "deploy-staging"]
        deploy = jobs["deploy-staging"]
        assert deploy["needs"] == ["test"]
        assert deploy["if"] == "github.ref == 'refs/heads/staging' || github.ref == 'refs/heads/main'"
        step = deploy["steps"][-1]
        assert step["run"] == "deploykit stage deploy --variant actions"
        assert step["env"]["SSH_PRIVATE_KEY"] == "${{ secrets.SSH_PRIVATE_KEY }}"

    def test_test_failures_are_not_suppressed(self):
        """Test the test job does not continue on error."""
        steps = self._workflow()["jobs"]["test"]["steps"]
        assert steps[0] == {"uses": "actions/checkout@v4"}
        assert [s.get("name") for s in steps[-2:]] == ["Build", "Test"]
        assert not any(s.get("continue-on-error") for s in steps)

    def test_committed_workflow_matches_renderer(self):
        """Test the committed workflow is the rendered one."""
        settings = Settings()
        text = render_workflow(get_pipeline("actions", settings), settings)
        committed = (ROOT / ".github" / "workflows" / "deploy.yml").read_text()
        assert yaml.safe_load(committed) == yaml.safe_load(text)


class TestToolInstall:

    def test_default_requirement_installs_from_git(self):
        """Test CI installs deploykit from its git repository, not the PyPI name."""
        settings = Settings(repo_url="https://github.com/example/flaskapp.git")
        assert settings.tool_requirement == DEFAULT_TOOL_REQUIREMENT
        assert DEFAULT_TOOL_REQUIREMENT.startswith("git+https://")
        assert DEFAULT_TOOL_REQUIREMENT.endswith("#egg=deploykit")

        jenkinsfile = render_jenkinsfile(get_pipeline("jenkins", settings), settings)
        assert f"pip install --upgrade pip {DEFAULT_TOOL_REQUIREMENT}'" in jenkinsfile
        assert "pip install --upgrade pip deploykit'" not in jenkinsfile

        workflow = yaml.safe_load(render_workflow(get_pipeline("actions", settings), settings))
        for job in workflow["jobs"].values():
            installs = [s["run"] for s in job["steps"] if s.get("name") == "Install deploykit"]
            assert installs == [f"pip install {DEFAULT_TOOL_REQUIREMENT}"]

    def test_requirement_is_configurable(self):
        """Test a custom tool requirement is rendered as given."""
        settings = Settings(tool_requirement="deploykit==0.1.0")
        text = render_workflow(get_pipeline("actions", settings), settings)
        assert "pip install deploykit==0.1.0" in text
