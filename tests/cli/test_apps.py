from unittest.mock import AsyncMock, MagicMock, patch

from click.testing import CliRunner

from appdeck.appstore.models import (
    AppStatus,
    AppUpdateInfo,
    DeployResult,
    InstalledApp,
    TrashedApp,
)
from appdeck.cli import main


def _manager(**methods):
    manager = MagicMock()
    for name, value in methods.items():
        setattr(manager, name, AsyncMock(return_value=value))
    return manager


def test_apps_help():
    runner = CliRunner()
    result = runner.invoke(main, ['apps', '--help'])
    assert result.exit_code == 0
    assert "Manage apps." in result.output


@patch('appdeck.cli.apps_cli.get_app_manager')
def test_list_apps(mock_get_manager):
    mock_get_manager.return_value = _manager(
        list_installed_apps=[
            InstalledApp(
                id="nextcloud-app-1",
                app_id="nextcloud",
                name="Nextcloud",
                icon="icon.png",
                status=AppStatus.RUNNING,
                web_ui_port=8080,
                container_name="nextcloud-app-1",
                installed_at=0,
            )
        ]
    )

    result = CliRunner().invoke(main, ['apps', 'list'])

    assert result.exit_code == 0
    assert "nextcloud - Nextcloud - running - 8080" in result.output


@patch('appdeck.cli.apps_cli.get_app_manager')
def test_deploy_reads_compose_file(mock_get_manager, tmp_path):
    compose_file = tmp_path / "docker-compose.yml"
    compose_file.write_text("services:\n  web:\n    image: nginx\n")
    config_file = tmp_path / "config.yaml"
    config_file.write_text("ports:\n  - container: '80'\n    published: '8080'\nweb_ui_port: '8080'\n")
    manager = _manager(deploy=DeployResult(success=True))
    mock_get_manager.return_value = manager

    result = CliRunner().invoke(
        main,
        [
            'apps', 'deploy', 'web',
            '--compose-file', str(compose_file),
            '--config', str(config_file),
            '--name', 'Web',
        ],
    )

    assert result.exit_code == 0, result.output
    assert "web deployed" in result.output
    options = manager.deploy.call_args.args[0]
    assert options.app_id == "web"
    assert options.compose_content.startswith("services:")
    assert options.config.ports[0].published == "8080"
    assert options.meta.name == "Web"


@patch('appdeck.cli.apps_cli.get_app_manager')
def test_deploy_failure_exits_non_zero(mock_get_manager):
    mock_get_manager.return_value = _manager(
        deploy=DeployResult(success=False, error="Docker image tag/digest not found in registry.")
    )

    result = CliRunner().invoke(main, ['apps', 'deploy', 'web', '--compose-path', 'apps/web/docker-compose.yml'])

    assert result.exit_code == 1
    assert "Docker image tag/digest not found in registry." in result.output


def test_deploy_rejects_both_compose_sources(tmp_path):
    compose_file = tmp_path / "docker-compose.yml"
    compose_file.write_text("services: {}\n")

    result = CliRunner().invoke(
        main,
        ['apps', 'deploy', 'web', '--compose-file', str(compose_file), '--compose-path', 'x.yml'],
    )

    assert result.exit_code == 2
    assert "mutually exclusive" in result.output


@patch('appdeck.cli.apps_cli.get_app_manager')
def test_uninstall_with_remove_data(mock_get_manager):
    manager = _manager(uninstall=True)
    mock_get_manager.return_value = manager

    result = CliRunner().invoke(main, ['apps', 'uninstall', 'web', '--remove-data'])

    assert result.exit_code == 0
    manager.uninstall.assert_awaited_once_with('web', remove_app_data=True)


@patch('appdeck.cli.apps_cli.get_app_manager')
def test_stop_failure(mock_get_manager):
    mock_get_manager.return_value = _manager(stop=False)

    result = CliRunner().invoke(main, ['apps', 'stop', 'web'])

    assert result.exit_code == 1
    assert "Failed to stop web" in result.output


@patch('appdeck.cli.apps_cli.get_app_manager')
def test_trash_commands(mock_get_manager):
    manager = _manager(
        list_trashed_apps=[TrashedApp(app_id="web", trashed_at=1700000000000, path="/DATA/AppTrash/web_1700000000000")],
        empty_trash=True,
        restore_from_trash=True,
    )
    mock_get_manager.return_value = manager
    runner = CliRunner()

    listed = runner.invoke(main, ['apps', 'trash', 'list'])
    emptied = runner.invoke(main, ['apps', 'trash', 'empty', '--app-id', 'web', '--yes'])
    restored = runner.invoke(main, ['apps', 'trash', 'restore', 'web'])

    assert "web - 1700000000000 - /DATA/AppTrash/web_1700000000000" in listed.output
    assert emptied.exit_code == 0
    manager.empty_trash.assert_awaited_once_with('web')
    assert "Data restored for web" in restored.output


@patch('appdeck.cli.apps_cli.get_app_manager')
def test_updates_lists_only_available(mock_get_manager):
    mock_get_manager.return_value = _manager(
        check_updates=[
            AppUpdateInfo(app_id="old", container_name="old", name="Old", icon="i",
                          installed_version="1.0", available_version="1.1", has_update=True),
            AppUpdateInfo(app_id="new", container_name="new", name="New", icon="i",
                          installed_version="2.0", available_version="2.0"),
        ]
    )

    result = CliRunner().invoke(main, ['apps', 'updates'])

    assert result.exit_code == 0
    assert "old: 1.0 -> 1.1" in result.output
    assert "new:" not in result.output


@patch('appdeck.cli.apps_cli.get_app_manager')
def test_logs_and_status(mock_get_manager):
    manager = _manager(get_logs="line 1\nline 2", get_status=AppStatus.STOPPED)
    mock_get_manager.return_value = manager
    runner = CliRunner()

    logs = runner.invoke(main, ['apps', 'logs', 'web', '--lines', '2'])
    status = runner.invoke(main, ['apps', 'status', 'web'])

    assert "line 2" in logs.output
    manager.get_logs.assert_awaited_once_with('web', 2)
    assert status.output.strip() == "stopped"
