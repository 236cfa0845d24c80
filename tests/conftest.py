import pytest

from deploykit.config import ConfigProvider, RemoteTarget, Settings


@pytest.fixture(autouse=True)
def deploykit_home(tmp_path, monkeypatch):
    """Keep run directories inside the test's tmp dir."""
    home = tmp_path / ".deploykit"
    monkeypatch.setenv("DEPLOYKIT_HOME", str(home))
    for name in ("GITHUB_REF", "GITHUB_EVENT_NAME", "GITHUB_EVENT_PATH", "GITHUB_BASE_REF"):
        monkeypatch.delenv(name, raising=False)
    return home


class StaticProvider(ConfigProvider):
    def __init__(self, host="203.0.113.10", user="deploy", key_path="/tmp/id_test"):
        self.target = RemoteTarget(host=host, user=user, key_path=key_path)
        self.closed = False

    def remote_target(self):
        return self.target

    def close(self):
        self.closed = True


@pytest.fixture
def provider():
    return StaticProvider()


@pytest.fixture
def settings(tmp_path):
    return Settings(
        repo_url="https://github.com/example/flaskapp.git",
        app_dir=str(tmp_path / "workspace" / "flaskapp"),
    )
