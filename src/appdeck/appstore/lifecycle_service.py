import asyncio
import logging
from typing import Awaitable, Callable, Dict, Optional

from docker import errors as docker_errors

from appdeck.appstore.backup import backup_compose, cleanup_backup, restore_compose
from appdeck.appstore.compose import sanitize_compose_file
from appdeck.appstore.engine import AppEngine
from appdeck.appstore.environment import EnvironmentBuilder, detect_convention
from appdeck.appstore.errors import AppStoreError, HealthCheckError, summarize_failure
from appdeck.appstore.health import wait_until_running
from appdeck.appstore.models import DEFAULT_APP_ICON, ProgressStatus, ResolvedCompose
from appdeck.appstore.progress import ProgressReporter, ProgressSink
from appdeck.appstore.resolver import ComposeResolver
from appdeck.appstore.validation import is_valid_app_id
from appdeck.config.settings import Settings
from appdeck.db.models.apps import InstalledAppRecord
from appdeck.db.repositories.apps import AppRepository, InstalledAppRepository, StoreRepository

logger = logging.getLogger(__name__)

LIFECYCLE_ACTIONS = ("start", "stop", "restart")


class LifecycleController:
    """start/stop/restart/update of installed apps."""

    def __init__(
        self,
        settings: Settings,
        db_manager,
        engine: Optional[AppEngine] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.settings = settings
        self.stores = StoreRepository(db_manager)
        self.apps = AppRepository(db_manager)
        self.installed = InstalledAppRepository(db_manager)
        self.engine = engine or AppEngine(settings)
        self.resolver = ComposeResolver(settings, self.apps, self.installed)
        self.env_builder = EnvironmentBuilder(settings)
        self.sleep = sleep

    def _record(self, name: str) -> Optional[InstalledAppRecord]:
        return self.installed.find_latest_by_app_id(name) or self.installed.get_by_container_name(
            name
        )

    def _primary_container(self, name: str, record: Optional[InstalledAppRecord]) -> str:
        if record:
            return record.container_name
        return self.settings.container_name(name)

    def _environment(self, name: str, record: Optional[InstalledAppRecord], compose_path: str) -> Dict[str, str]:
        store_id = record.store_id if record else None
        store = self.stores.get(store_id) if store_id else None
        convention = detect_convention(store.format if store else None, compose_path, store_id)
        return self.env_builder.build(
            record.app_id if record else name,
            record.install_config if record else None,
            convention,
        )

    async def _wait_healthy(self, container_name: str) -> bool:
        return await wait_until_running(
            self.engine.docker,
            container_name,
            attempts=self.settings.health_attempts,
            delay=self.settings.health_delay,
            sleep=self.sleep,
        )

    async def run_action(self, name: str, action: str) -> bool:
        if action not in LIFECYCLE_ACTIONS:
            raise ValueError(f"Unsupported action '{action}'")
        if not is_valid_app_id(name):
            logger.warning("lifecycle:%s:invalid-id name=%r", action, name)
            return False

        record = self._record(name)
        container_name = self._primary_container(name, record)
        resolved = self.resolver.resolve_for_lifecycle(name)
        try:
            if resolved:
                compose = sanitize_compose_file(resolved.compose_path)
                env = self._environment(name, record, compose.canonical_path)
                await self.engine.compose.action(
                    resolved.app_dir, name, compose.executable_path, action, env
                )
            else:
                logger.info("lifecycle:%s:direct container=%s", action, container_name)
                self.engine.docker.container_action(container_name, action)
        except AppStoreError as exc:
            logger.error("lifecycle:%s:failed name=%s details=%s", action, name, exc.details)
            return False
        except docker_errors.DockerException as exc:
            logger.error("lifecycle:%s:failed name=%s error=%s", action, name, exc)
            return False

        if action in ("start", "restart"):
            healthy = await self._wait_healthy(container_name)
            if not healthy:
                logger.error("lifecycle:%s:unhealthy name=%s container=%s", action, name, container_name)
            return healthy

        logger.info("lifecycle:%s:done name=%s", action, name)
        return True

    async def start(self, name: str) -> bool:
        return await self.run_action(name, "start")

    async def stop(self, name: str) -> bool:
        return await self.run_action(name, "stop")

    async def restart(self, name: str) -> bool:
        return await self.run_action(name, "restart")

    async def update(self, name: str, sink: Optional[ProgressSink] = None) -> bool:
        """Pull and recreate an app; roll back to the previous manifest on failure."""
        valid = is_valid_app_id(name)
        record = self._record(name) if valid else None
        reporter = ProgressReporter(
            sink,
            app_id=record.app_id if record else str(name),
            container_name=self._primary_container(name, record) if valid else str(name),
            name=record.name if record else str(name),
            icon=record.icon if record else DEFAULT_APP_ICON,
            interval=self.settings.pull_progress_interval,
        )
        await reporter.report(0.05, "Starting update", ProgressStatus.STARTING)

        if not valid:
            await reporter.fail("Invalid app ID")
            return False

        resolved = self.resolver.resolve_for_lifecycle(name)
        if not resolved:
            logger.error("update:compose-not-found name=%s", name)
            await reporter.fail("Compose file not found")
            return False

        container_name = reporter.container_name
        try:
            backup_path = backup_compose(self.settings, name, resolved.compose_path)
        except OSError as exc:
            logger.error("update:backup-failed name=%s error=%s", name, exc)
            await reporter.fail("Failed to back up compose file")
            return False

        try:
            compose = sanitize_compose_file(resolved.compose_path)
            env = self._environment(name, record, compose.canonical_path)

            await reporter.report(0.2, "Pulling latest images")
            await self.engine.compose.pull(
                resolved.app_dir, name, compose.executable_path, env, lambda line, is_stderr: None
            )

            await reporter.report(0.6, "Recreating services")
            await self.engine.compose.up(resolved.app_dir, name, compose.executable_path, env)

            await reporter.report(0.85, "Verifying health")
            if not await self._wait_healthy(container_name):
                raise HealthCheckError(
                    "Container failed health check after update",
                    {"container": container_name},
                )
        except Exception as exc:
            if isinstance(exc, AppStoreError):
                summary = summarize_failure(exc.stage, exc.message, exc.details)
                logger.error("update:failed name=%s stage=%s details=%s", name, exc.stage, exc.details)
            else:
                summary = str(exc) or "Update failed"
                logger.exception("update:unexpected name=%s", name)
            await reporter.report(0.9, "Rolling back")
            await self._rollback(name, resolved, backup_path, record)
            await reporter.fail(f"Update failed: {summary}")
            return False
        finally:
            cleanup_backup(backup_path)

        self._refresh_version(name, record)
        await reporter.complete("Update complete")
        logger.info("update:success name=%s", name)
        return True

    async def _rollback(
        self,
        name: str,
        resolved: ResolvedCompose,
        backup_path: str,
        record: Optional[InstalledAppRecord],
    ):
        try:
            restore_compose(backup_path, resolved.compose_path)
            compose = sanitize_compose_file(resolved.compose_path)
            env = self._environment(name, record, compose.canonical_path)
            await self.engine.compose.up(resolved.app_dir, name, compose.executable_path, env)
            logger.info("update:rolled-back name=%s", name)
        except Exception as exc:
            logger.error("update:rollback-failed name=%s error=%s", name, exc)

    def _refresh_version(self, name: str, record: Optional[InstalledAppRecord]):
        if not record:
            return
        catalog_app = self.apps.find_latest(record.app_id)
        if catalog_app and catalog_app.version:
            self.installed.update_version(record.container_name, catalog_app.version)

    def remove_container(self, name: str) -> bool:
        """Force-remove a container that no installed app owns."""
        if not is_valid_app_id(name):
            logger.warning("lifecycle:remove:invalid-id name=%r", name)
            return False
        if self.installed.get_by_container_name(name) or self.installed.list_by_app_id(name):
            logger.warning("lifecycle:remove:managed name=%s", name)
            return False
        try:
            return self.engine.docker.remove_container(name)
        except docker_errors.DockerException as exc:
            logger.error("lifecycle:remove:failed name=%s error=%s", name, exc)
            return False
