import logging
import os
from typing import Iterable, Optional

from appdeck.appstore.compose import find_compose_file
from appdeck.appstore.errors import ComposeResolutionError
from appdeck.appstore.files import copy_app_to_installed_apps, get_installed_app_dir, is_within
from appdeck.appstore.models import DeployOptions, ResolvedCompose
from appdeck.config.settings import Settings

logger = logging.getLogger(__name__)

MAX_SEARCH_DEPTH = 5


def find_compose_for_app(app_id: str, roots: Iterable[str]) -> Optional[ResolvedCompose]:
    """Search ``roots`` in order for a directory named like the app.

    Names are compared case-insensitively and the walk stops
    ``MAX_SEARCH_DEPTH`` levels below each root. Hidden directories such
    as update backups are never searched.
    """
    target = app_id.lower()
    for root in roots:
        if not os.path.isdir(root):
            continue
        base_depth = os.path.abspath(root).rstrip(os.sep).count(os.sep)
        for current, dirs, _ in os.walk(root):
            depth = os.path.abspath(current).rstrip(os.sep).count(os.sep) - base_depth
            if depth >= MAX_SEARCH_DEPTH:
                dirs[:] = []
            dirs[:] = sorted(d for d in dirs if not d.startswith("."))
            for name in dirs:
                if name.lower() != target:
                    continue
                app_dir = os.path.join(current, name)
                compose_path = find_compose_file(app_dir)
                if compose_path:
                    return ResolvedCompose(app_dir=app_dir, compose_path=compose_path)
    logger.warning("resolve:not-found app_id=%s", app_id)
    return None


class ComposeResolver:
    """Locates an app's compose manifest and makes sure it lives in the install root."""

    def __init__(self, settings: Settings, app_repo=None, installed_repo=None):
        self.settings = settings
        self.app_repo = app_repo
        self.installed_repo = installed_repo

    def _absolute(self, path: str) -> str:
        if os.path.isabs(path):
            return path
        return os.path.join(self.settings.working_directory, path)

    def _copy_from(self, compose_path: str, app_id: str, source: str) -> Optional[ResolvedCompose]:
        full_path = self._absolute(compose_path)
        if not os.path.isfile(full_path):
            logger.warning("resolve:missing:%s app_id=%s path=%s", source, app_id, full_path)
            return None

        source_dir = os.path.dirname(full_path)
        if is_within(source_dir, self.settings.installed_app_dir(app_id)):
            return ResolvedCompose(app_dir=source_dir, compose_path=full_path)
        try:
            copied = copy_app_to_installed_apps(
                source_dir, self.settings.installed_apps_root, app_id
            )
        except (ComposeResolutionError, OSError) as exc:
            logger.warning("resolve:copy-failed:%s app_id=%s error=%s", source, app_id, exc)
            return None
        logger.info("resolve:copied:%s app_id=%s path=%s", source, app_id, copied.compose_path)
        return copied

    def _write_content(self, app_id: str, content: str) -> ResolvedCompose:
        app_dir = self.settings.installed_app_dir(app_id)
        os.makedirs(app_dir, exist_ok=True)
        file_path = os.path.join(app_dir, "docker-compose.yml")
        with open(file_path, "w", encoding="utf-8") as f:
            f.write(content)
        logger.info("resolve:wrote app_id=%s path=%s", app_id, file_path)
        return ResolvedCompose(app_dir=app_dir, compose_path=file_path)

    def _search(self, app_id: str) -> Optional[ResolvedCompose]:
        roots = [self.settings.installed_apps_root] + list(self.settings.catalog_roots)
        found = find_compose_for_app(app_id, roots)
        if not found:
            return None
        if is_within(found.app_dir, self.settings.installed_apps_root):
            return found
        return self._copy_from(found.compose_path, app_id, "found")

    def resolve(self, options: DeployOptions) -> Optional[ResolvedCompose]:
        app_id = options.app_id

        if options.compose_content:
            return self._write_content(app_id, options.compose_content)

        installed = get_installed_app_dir(self.settings.installed_apps_root, app_id)
        if installed:
            logger.info("resolve:installed app_id=%s path=%s", app_id, installed.compose_path)
            return installed

        if options.compose_path:
            copied = self._copy_from(options.compose_path, app_id, "provided")
            if copied:
                return copied

        if self.app_repo is not None:
            catalog_app = self.app_repo.find_latest(app_id)
            if catalog_app and catalog_app.compose_path:
                copied = self._copy_from(catalog_app.compose_path, app_id, "catalog")
                if copied:
                    return copied

        return self._search(app_id)

    def resolve_for_lifecycle(self, app_id: str) -> Optional[ResolvedCompose]:
        """Resolve the manifest of an app that is already installed."""
        installed = get_installed_app_dir(self.settings.installed_apps_root, app_id)
        if installed:
            return installed

        if self.installed_repo is not None:
            record = self.installed_repo.get_by_container_name(app_id)
            if record is None:
                record = self.installed_repo.find_latest_by_app_id(app_id)
            compose_path = (
                record.install_config.compose_path
                if record and record.install_config
                else None
            )
            if compose_path:
                full_path = self._absolute(compose_path)
                if os.path.isfile(full_path):
                    return ResolvedCompose(
                        app_dir=os.path.dirname(full_path), compose_path=full_path
                    )

        return find_compose_for_app(
            app_id, [self.settings.installed_apps_root] + list(self.settings.catalog_roots)
        )
