import logging
import os
import shutil
import time
from typing import Callable, List, Optional

from appdeck.appstore.compose import sanitize_compose_file
from appdeck.appstore.engine import AppEngine
from appdeck.appstore.errors import EngineError
from appdeck.appstore.files import remove_installed_app_files
from appdeck.appstore.models import TrashedApp
from appdeck.appstore.resolver import ComposeResolver
from appdeck.appstore.validation import is_valid_app_id
from appdeck.config.settings import Settings
from appdeck.db.repositories.apps import AppRepository, InstalledAppRepository

logger = logging.getLogger(__name__)


def _epoch_ms() -> int:
    return int(time.time() * 1000)


def parse_trash_entry(entry_name: str):
    """Split ``<app_id>_<epoch_ms>`` on the last underscore."""
    app_id, sep, stamp = entry_name.rpartition("_")
    if not sep:
        return entry_name, 0
    return app_id, int(stamp) if stamp.isdigit() else 0


class AppUninstallService:
    """Removes an app's containers, install files and records; keeps its data in a trash."""

    def __init__(
        self,
        settings: Settings,
        db_manager,
        engine: Optional[AppEngine] = None,
        clock: Callable[[], int] = _epoch_ms,
    ):
        self.settings = settings
        self.apps = AppRepository(db_manager)
        self.installed = InstalledAppRepository(db_manager)
        self.engine = engine or AppEngine(settings)
        self.resolver = ComposeResolver(settings, self.apps, self.installed)
        self.clock = clock

    def container_candidates(self, app_id: str) -> List[str]:
        candidates: List[str] = []
        for record in self.installed.list_by_app_id(app_id):
            names = [record.container_name]
            if record.install_config:
                names.extend(record.install_config.containers)
            for name in names:
                if name and name not in candidates:
                    candidates.append(name)
        generated = self.settings.container_name(app_id)
        if generated not in candidates:
            candidates.append(generated)
        return candidates

    async def _compose_down(self, app_id: str):
        resolved = self.resolver.resolve_for_lifecycle(app_id)
        if not resolved:
            return
        compose = sanitize_compose_file(resolved.compose_path)
        logger.info("uninstall:compose-down app_id=%s path=%s", app_id, compose.executable_path)
        try:
            await self.engine.compose.down(
                resolved.app_dir, app_id, compose.executable_path, remove_volumes=True
            )
        except EngineError as exc:
            logger.warning(
                "uninstall:compose-down-failed app_id=%s code=%s stderr=%s",
                app_id,
                exc.code,
                exc.stderr,
            )

    def _remove_containers(self, app_id: str, candidates: List[str]):
        for name in candidates:
            try:
                removed = self.engine.docker.remove_container(name)
                logger.info(
                    "uninstall:remove-container app_id=%s container=%s removed=%s",
                    app_id,
                    name,
                    removed,
                )
            except Exception as exc:
                logger.warning(
                    "uninstall:remove-container-failed app_id=%s container=%s error=%s",
                    app_id,
                    name,
                    exc,
                )

    def _dispose_data(self, app_id: str, remove_app_data: bool):
        app_data_path = self.settings.app_data_dir(app_id)
        if not os.path.exists(app_data_path):
            logger.info("uninstall:no-data app_id=%s path=%s", app_id, app_data_path)
            return

        if remove_app_data:
            try:
                shutil.rmtree(app_data_path)
                logger.info("uninstall:removed-data app_id=%s path=%s", app_id, app_data_path)
            except OSError as exc:
                logger.warning(
                    "uninstall:remove-data-failed app_id=%s path=%s error=%s",
                    app_id,
                    app_data_path,
                    exc,
                )
            return

        trash_dir = os.path.join(self.settings.trash_directory, f"{app_id}_{self.clock()}")
        try:
            os.makedirs(self.settings.trash_directory, exist_ok=True)
            shutil.move(app_data_path, trash_dir)
            logger.info("uninstall:moved-to-trash app_id=%s path=%s", app_id, trash_dir)
        except OSError as exc:
            logger.warning(
                "uninstall:move-to-trash-failed app_id=%s path=%s error=%s",
                app_id,
                app_data_path,
                exc,
            )

    async def uninstall(self, app_id: str, remove_app_data: bool = False) -> bool:
        logger.info("uninstall:start app_id=%s", app_id)
        if not is_valid_app_id(app_id):
            logger.warning("uninstall:invalid-app-id app_id=%r", app_id)
            return False

        candidates = self.container_candidates(app_id)
        await self._compose_down(app_id)
        self._remove_containers(app_id, candidates)
        self._dispose_data(app_id, remove_app_data)
        remove_installed_app_files(self.settings.installed_apps_root, app_id)

        for name in candidates:
            self.installed.delete_by_container_name(name)

        logger.info("uninstall:success app_id=%s", app_id)
        return True

    def list_trashed_apps(self) -> List[TrashedApp]:
        root = self.settings.trash_directory
        if not os.path.isdir(root):
            return []
        trashed = []
        for entry in sorted(os.scandir(root), key=lambda e: e.name):
            if not entry.is_dir():
                continue
            app_id, trashed_at = parse_trash_entry(entry.name)
            trashed.append(TrashedApp(app_id=app_id, trashed_at=trashed_at, path=entry.path))
        return trashed

    def empty_trash(self, app_id: Optional[str] = None) -> bool:
        root = self.settings.trash_directory
        if app_id is not None and not is_valid_app_id(app_id):
            logger.warning("trash:empty:invalid-app-id app_id=%r", app_id)
            return False
        try:
            if app_id is None:
                if os.path.isdir(root):
                    shutil.rmtree(root)
                logger.info("trash:emptied")
                return True
            for item in self.list_trashed_apps():
                if item.app_id == app_id:
                    shutil.rmtree(item.path)
                    logger.info("trash:removed app_id=%s path=%s", app_id, item.path)
            return True
        except OSError as exc:
            logger.error("trash:empty-failed app_id=%s error=%s", app_id, exc)
            return False

    def restore_from_trash(self, app_id: str) -> bool:
        """Move the newest trashed copy of an app's data back into place."""
        if not is_valid_app_id(app_id):
            logger.warning("trash:restore:invalid-app-id app_id=%r", app_id)
            return False
        entries = [item for item in self.list_trashed_apps() if item.app_id == app_id]
        if not entries:
            logger.warning("trash:restore:not-found app_id=%s", app_id)
            return False

        target = self.settings.app_data_dir(app_id)
        if os.path.exists(target):
            logger.warning("trash:restore:target-exists app_id=%s path=%s", app_id, target)
            return False

        newest = max(entries, key=lambda item: item.trashed_at)
        try:
            os.makedirs(os.path.dirname(target), exist_ok=True)
            shutil.move(newest.path, target)
        except OSError as exc:
            logger.error("trash:restore-failed app_id=%s error=%s", app_id, exc)
            return False
        logger.info("trash:restored app_id=%s source=%s", app_id, newest.path)
        return True
