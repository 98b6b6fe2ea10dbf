import inspect
import os
from unittest.mock import MagicMock

import pytest

from appdeck.appstore.engine import AppEngine
from appdeck.config.settings import Settings
from appdeck.db.manager import DatabaseManager
from appdeck.docker.compose import CommandResult
from appdeck.docker.containers import DockerManager


class FakeComposeCLI:
    """Records compose calls instead of running ``docker compose``."""

    def __init__(self, names=None):
        self.calls = []
        self.names = list(names or [])
        self.pull_lines = [("web Pulling", False), ("abc123 Downloading 10MB", True)]
        self.errors = {}
        self.on_pull = None

    def _raise_once(self, op):
        error = self.errors.pop(op, None)
        if error is not None:
            raise error

    def ops(self):
        return [call[0] for call in self.calls]

    async def pull(self, app_dir, project, compose_file, env, on_line):
        self.calls.append(("pull", project, compose_file))
        if self.on_pull:
            self.on_pull(compose_file)
        for line, is_stderr in self.pull_lines:
            result = on_line(line, is_stderr)
            if inspect.isawaitable(result):
                await result
        self._raise_once("pull")
        return CommandResult(cmd=["docker", "compose", "pull"], code=0)

    async def up(self, app_dir, project, compose_file, env=None):
        self.calls.append(("up", project, compose_file, dict(env or {})))
        self._raise_once("up")
        return CommandResult(cmd=["docker", "compose", "up", "-d"], code=0)

    async def down(self, app_dir, project, compose_file=None, remove_volumes=False, env=None):
        self.calls.append(("down", project, compose_file, remove_volumes))
        self._raise_once("down")
        return CommandResult(cmd=["docker", "compose", "down"], code=0)

    async def action(self, app_dir, project, compose_file, action, env=None):
        self.calls.append(("action", project, compose_file, action))
        self._raise_once("action")
        return CommandResult(cmd=["docker", "compose", action], code=0)

    async def ps_names(self, app_dir, project, compose_file=None):
        self.calls.append(("ps", project, compose_file))
        return list(self.names)


class ListSink:
    def __init__(self):
        self.events = []

    async def emit(self, event):
        self.events.append(event)

    @property
    def values(self):
        return [event.progress for event in self.events]


async def no_sleep(_delay):
    return None


@pytest.fixture
def settings(tmp_path):
    return Settings(
        environ={},
        working_directory=str(tmp_path),
        data_root=str(tmp_path / "data"),
        app_data_directory=str(tmp_path / "data" / "AppData"),
        trash_directory=str(tmp_path / "data" / "AppTrash"),
        installed_apps_root=str(tmp_path / "installed-apps"),
        catalog_roots=[str(tmp_path / "external-apps")],
        database_url=f"sqlite:///{tmp_path / 'appdeck.db'}",
        device_hostname="box",
        domain="box.local",
        detect_delay=0,
        health_delay=0,
    )


@pytest.fixture
def db(settings):
    manager = DatabaseManager(settings.database_url)
    manager.init_db()
    return manager


@pytest.fixture
def compose():
    return FakeComposeCLI()


@pytest.fixture
def docker_manager():
    manager = MagicMock(spec=DockerManager)
    manager.get_status.return_value = "running"
    manager.remove_container.return_value = True
    manager.list_containers.return_value = []
    manager.get_host_port.return_value = None
    manager.get_logs.return_value = None
    return manager


@pytest.fixture
def engine(settings, compose, docker_manager):
    return AppEngine(settings, compose=compose, docker_manager=docker_manager)


@pytest.fixture
def sink():
    return ListSink()


def write_app(root, app_id, compose_text, extra_files=None):
    app_dir = os.path.join(str(root), app_id)
    os.makedirs(app_dir, exist_ok=True)
    with open(os.path.join(app_dir, "docker-compose.yml"), "w") as f:
        f.write(compose_text)
    for name, content in (extra_files or {}).items():
        with open(os.path.join(app_dir, name), "w") as f:
            f.write(content)
    return app_dir
