import asyncio
import logging
from typing import Any, Awaitable, Callable, List, Optional

from appdeck.appstore.deploy_service import DeploymentOrchestrator
from appdeck.appstore.engine import AppEngine
from appdeck.appstore.inventory import ContainerInventory
from appdeck.appstore.lifecycle_service import LifecycleController
from appdeck.appstore.models import (
    AppStatus,
    AppUpdateInfo,
    DeployOptions,
    DeployResult,
    InstalledApp,
    TrashedApp,
)
from appdeck.appstore.progress import ProgressSink
from appdeck.appstore.uninstall_service import AppUninstallService
from appdeck.config.settings import Settings, config
from appdeck.db.session import get_db_manager

logger = logging.getLogger(__name__)


class AppManager:
    """Public entry point for deploying and managing apps.

    No method raises: failures are logged and reported through the
    return value (``DeployResult``, ``False``, ``None`` or an empty list).
    """

    def __init__(
        self,
        settings: Optional[Settings] = None,
        db_manager=None,
        engine: Optional[AppEngine] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.settings = settings or config
        self.db = db_manager or get_db_manager(self.settings)
        self.engine = engine or AppEngine(self.settings)
        self.deployer = DeploymentOrchestrator(self.settings, self.db, self.engine, sleep=sleep)
        self.lifecycle = LifecycleController(self.settings, self.db, self.engine, sleep=sleep)
        self.uninstaller = AppUninstallService(self.settings, self.db, self.engine)
        self.inventory = ContainerInventory(self.settings, self.db, self.engine)

    async def _guard(self, operation: str, default: Any, call: Callable[[], Any]) -> Any:
        try:
            result = call()
            if asyncio.iscoroutine(result):
                result = await result
            return result
        except Exception:
            logger.exception("%s:unexpected", operation)
            return default

    async def deploy(self, options: DeployOptions, sink: Optional[ProgressSink] = None) -> DeployResult:
        return await self._guard(
            "deploy",
            DeployResult(success=False, error="Failed to deploy app"),
            lambda: self.deployer.deploy(options, sink),
        )

    async def start(self, name: str) -> bool:
        return await self._guard("start", False, lambda: self.lifecycle.start(name))

    async def stop(self, name: str) -> bool:
        return await self._guard("stop", False, lambda: self.lifecycle.stop(name))

    async def restart(self, name: str) -> bool:
        return await self._guard("restart", False, lambda: self.lifecycle.restart(name))

    async def update(self, name: str, sink: Optional[ProgressSink] = None) -> bool:
        return await self._guard("update", False, lambda: self.lifecycle.update(name, sink))

    async def remove_container(self, name: str) -> bool:
        return await self._guard(
            "remove-container", False, lambda: self.lifecycle.remove_container(name)
        )

    async def uninstall(self, app_id: str, remove_app_data: bool = False) -> bool:
        return await self._guard(
            "uninstall", False, lambda: self.uninstaller.uninstall(app_id, remove_app_data)
        )

    async def list_trashed_apps(self) -> List[TrashedApp]:
        return await self._guard("trash:list", [], self.uninstaller.list_trashed_apps)

    async def empty_trash(self, app_id: Optional[str] = None) -> bool:
        return await self._guard("trash:empty", False, lambda: self.uninstaller.empty_trash(app_id))

    async def restore_from_trash(self, app_id: str) -> bool:
        return await self._guard(
            "trash:restore", False, lambda: self.uninstaller.restore_from_trash(app_id)
        )

    async def list_installed_apps(self) -> List[InstalledApp]:
        return await self._guard("inventory:list", [], self.inventory.list_installed_apps)

    async def get_app_by_id(self, app_id: str) -> Optional[InstalledApp]:
        return await self._guard("inventory:get", None, lambda: self.inventory.get_app_by_id(app_id))

    async def get_status(self, app_id: str) -> AppStatus:
        return await self._guard(
            "inventory:status", AppStatus.ERROR, lambda: self.inventory.get_status(app_id)
        )

    async def get_web_ui(self, app_id: str) -> Optional[str]:
        return await self._guard("inventory:webui", None, lambda: self.inventory.get_web_ui(app_id))

    async def get_logs(self, app_id: str, lines: int = 100) -> str:
        return await self._guard(
            "inventory:logs",
            "Error: Failed to fetch logs",
            lambda: self.inventory.get_logs(app_id, lines),
        )

    async def check_updates(self) -> List[AppUpdateInfo]:
        return await self._guard("updates:check", [], self.inventory.check_updates)

    async def check_update(self, app_id: str) -> Optional[AppUpdateInfo]:
        return await self._guard(
            "updates:check", None, lambda: self.inventory.check_update(app_id)
        )
