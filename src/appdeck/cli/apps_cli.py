import asyncio

import click
import yaml

from appdeck.appstore.manager import AppManager
from appdeck.appstore.models import AppMeta, DeployOptions, InstallConfig, ProgressEvent


class ConsoleProgressSink:
    """Echo progress events as they arrive."""

    async def emit(self, event: ProgressEvent) -> None:
        line = f"[{event.progress * 100:5.1f}%] {event.status.value}"
        if event.message:
            line += f" - {event.message}"
        click.echo(line)


def get_app_manager() -> AppManager:
    return AppManager()


def load_install_config(path: str) -> InstallConfig:
    with open(path, "r") as f:
        data = yaml.safe_load(f) or {}
    return InstallConfig.model_validate(data)


def _run(coro):
    return asyncio.run(coro)


def _finish(ok: bool, success: str, failure: str):
    if not ok:
        raise click.ClickException(failure)
    click.echo(success)


@click.group()
def apps():
    """Manage apps."""
    pass


@apps.command()
@click.argument("app_id")
@click.option("--compose-file", type=click.Path(exists=True, dir_okay=False),
              help="Compose file whose content is deployed as a custom app.")
@click.option("--compose-path", help="Path of an existing compose file (store install).")
@click.option("--config", "config_path", type=click.Path(exists=True, dir_okay=False),
              help="YAML file with ports, volumes, environment and web_ui_port.")
@click.option("--store-id", help="Store the app is installed from.")
@click.option("--name", help="Display name.")
@click.option("--icon", help="Icon URL.")
def deploy(app_id, compose_file, compose_path, config_path, store_id, name, icon):
    """Deploy (or redeploy) an app."""
    if compose_file and compose_path:
        raise click.UsageError("--compose-file and --compose-path are mutually exclusive.")

    compose_content = None
    if compose_file:
        with open(compose_file, "r") as f:
            compose_content = f.read()

    options = DeployOptions(
        app_id=app_id,
        compose_content=compose_content,
        compose_path=compose_path,
        config=load_install_config(config_path) if config_path else None,
        meta=AppMeta(name=name, icon=icon) if (name or icon) else None,
        store_id=store_id,
    )
    result = _run(get_app_manager().deploy(options, ConsoleProgressSink()))
    if not result.success:
        raise click.ClickException(result.error or "Deployment failed")
    click.echo(f"{app_id} deployed")


@apps.command()
@click.argument("name")
def start(name):
    """Start an app."""
    _finish(_run(get_app_manager().start(name)), f"{name} started", f"Failed to start {name}")


@apps.command()
@click.argument("name")
def stop(name):
    """Stop an app."""
    _finish(_run(get_app_manager().stop(name)), f"{name} stopped", f"Failed to stop {name}")


@apps.command()
@click.argument("name")
def restart(name):
    """Restart an app."""
    _finish(_run(get_app_manager().restart(name)), f"{name} restarted", f"Failed to restart {name}")


@apps.command()
@click.argument("name")
def update(name):
    """Pull newer images and recreate an app."""
    ok = _run(get_app_manager().update(name, ConsoleProgressSink()))
    _finish(ok, f"{name} updated", f"Failed to update {name}")


@apps.command()
@click.argument("app_id")
@click.option("--remove-data", is_flag=True, help="Delete app data instead of moving it to the trash.")
def uninstall(app_id, remove_data):
    """Uninstall an app."""
    ok = _run(get_app_manager().uninstall(app_id, remove_app_data=remove_data))
    _finish(ok, f"{app_id} uninstalled", f"Failed to uninstall {app_id}")


@apps.command(name="remove-container")
@click.argument("name")
def remove_container(name):
    """Force-remove a container that is not a managed app."""
    ok = _run(get_app_manager().remove_container(name))
    _finish(ok, f"Container {name} removed", f"Container {name} was not removed")


@apps.command(name="list")
def list_apps():
    """List installed apps."""
    installed = _run(get_app_manager().list_installed_apps())
    if not installed:
        click.echo("No apps installed.")
        return
    for app in installed:
        port = app.web_ui_port if app.web_ui_port is not None else "-"
        click.echo(f"{app.app_id} - {app.name} - {app.status.value} - {port}")


@apps.command()
@click.argument("app_id")
def status(app_id):
    """Show an app's status."""
    click.echo(_run(get_app_manager().get_status(app_id)).value)


@apps.command(name="web-ui")
@click.argument("app_id")
def web_ui(app_id):
    """Show the web UI URL of an app."""
    url = _run(get_app_manager().get_web_ui(app_id))
    if not url:
        raise click.ClickException(f"No web UI found for {app_id}")
    click.echo(url)


@apps.command()
@click.argument("app_id")
@click.option("--lines", default=100, show_default=True, help="Number of lines from the end.")
def logs(app_id, lines):
    """Show container logs of an app."""
    click.echo(_run(get_app_manager().get_logs(app_id, lines)))


@apps.command()
@click.option("--all", "show_all", is_flag=True, help="Include apps that are up to date.")
def updates(show_all):
    """List apps with a newer catalog version."""
    found = _run(get_app_manager().check_updates())
    if not show_all:
        found = [u for u in found if u.has_update]
    if not found:
        click.echo("All apps are up to date.")
        return
    for info in found:
        click.echo(
            f"{info.app_id}: {info.installed_version or '?'} -> {info.available_version or '?'}"
        )


@apps.group()
def trash():
    """Manage trashed app data."""
    pass


@trash.command(name="list")
def trash_list():
    """List trashed app data."""
    entries = _run(get_app_manager().list_trashed_apps())
    if not entries:
        click.echo("Trash is empty.")
        return
    for entry in entries:
        click.echo(f"{entry.app_id} - {entry.trashed_at} - {entry.path}")


@trash.command(name="empty")
@click.option("--app-id", help="Only remove this app's entries.")
@click.confirmation_option(prompt="Permanently delete trashed data?")
def trash_empty(app_id):
    """Permanently delete trashed app data."""
    ok = _run(get_app_manager().empty_trash(app_id))
    _finish(ok, "Trash emptied", "Failed to empty trash")


@trash.command(name="restore")
@click.argument("app_id")
def trash_restore(app_id):
    """Restore the newest trashed data of an app."""
    ok = _run(get_app_manager().restore_from_trash(app_id))
    _finish(ok, f"Data restored for {app_id}", f"Could not restore data for {app_id}")
