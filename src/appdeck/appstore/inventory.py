import logging
import re
import time
from typing import Dict, List, Optional

from docker import errors as docker_errors

from appdeck.appstore.engine import AppEngine
from appdeck.appstore.models import (
    DEFAULT_APP_ICON,
    AppStatus,
    AppUpdateInfo,
    InstalledApp,
)
from appdeck.appstore.validation import is_valid_app_id, is_valid_port
from appdeck.config.settings import Settings
from appdeck.db.models.apps import InstalledAppRecord
from appdeck.db.repositories.apps import AppRepository, InstalledAppRepository
from appdeck.docker.containers import resolve_host_port
from appdeck.docker.models import Container

logger = logging.getLogger(__name__)

# Compose service names that only ever back another service.
HELPER_SERVICE_NAMES = {
    "docker",
    "dind",
    "tor",
    "proxy",
    "redis",
    "db",
    "postgres",
    "mysql",
    "mariadb",
    "mongodb",
}

NO_LOGS = "No logs available"

_LEADING_INT = re.compile(r"^\s*(\d+)")


def parse_status(state: str) -> AppStatus:
    value = (state or "").lower()
    if value.startswith("up") or value == "running":
        return AppStatus.RUNNING
    if "exited" in value:
        return AppStatus.STOPPED
    return AppStatus.ERROR


def aggregate_status(containers: List[Container]) -> AppStatus:
    statuses = [parse_status(c.State) for c in containers]
    if any(s == AppStatus.RUNNING for s in statuses):
        return AppStatus.RUNNING
    if statuses and all(s == AppStatus.STOPPED for s in statuses):
        return AppStatus.STOPPED
    return AppStatus.ERROR


def is_helper_service(container: Container) -> bool:
    if not (container.compose_project and container.compose_service):
        return False
    return container.compose_service.lower() in HELPER_SERVICE_NAMES


def group_containers_by_project(containers: List[Container]) -> Dict[str, List[Container]]:
    groups: Dict[str, List[Container]] = {}
    for container in containers:
        key = container.compose_project or container.Name
        groups.setdefault(key, []).append(container)
    return groups


def compare_versions(a: str, b: str) -> int:
    """1 when ``a`` is newer than ``b``, -1 when older, 0 when equal."""

    def normalize(value: str) -> List[int]:
        parts = []
        for piece in re.sub(r"^v", "", value.strip(), flags=re.IGNORECASE).split("."):
            match = _LEADING_INT.match(piece)
            parts.append(int(match.group(1)) if match else 0)
        return parts

    left, right = normalize(a), normalize(b)
    for i in range(max(len(left), len(right))):
        diff = (left[i] if i < len(left) else 0) - (right[i] if i < len(right) else 0)
        if diff:
            return 1 if diff > 0 else -1
    return 0


def _epoch_ms(record: Optional[InstalledAppRecord], container: Container) -> int:
    if record and record.created_at:
        return int(record.created_at.timestamp() * 1000)
    if container.Created:
        return int(container.Created.timestamp() * 1000)
    return int(time.time() * 1000)


class ContainerInventory:
    """Read side: installed apps as the engine currently sees them."""

    def __init__(self, settings: Settings, db_manager, engine: Optional[AppEngine] = None):
        self.settings = settings
        self.apps = AppRepository(db_manager)
        self.installed = InstalledAppRepository(db_manager)
        self.engine = engine or AppEngine(settings)

    def _strip_prefix(self, name: str) -> str:
        prefix = self.settings.container_prefix
        if prefix and name.startswith(prefix):
            return name[len(prefix):]
        return name

    def list_installed_apps(self) -> List[InstalledApp]:
        records = self.installed.get_all()
        catalog = self.apps.get_all()
        containers = [c for c in self.engine.docker.list_containers() if not is_helper_service(c)]

        by_container = {r.container_name: r for r in records}
        by_app_id = {}
        for record in records:
            by_app_id.setdefault(record.app_id, record)
        catalog_by_app_id: Dict[str, list] = {}
        for app in catalog:
            catalog_by_app_id.setdefault(app.app_id, []).append(app)

        groups = group_containers_by_project(containers)
        logger.debug("inventory:list containers=%s groups=%s", len(containers), len(groups))

        result: List[InstalledApp] = []
        for project, members in groups.items():
            primary = next((c for c in members if c.Name in by_container), members[0])
            record = (
                by_container.get(primary.Name)
                or next((by_container[c.Name] for c in members if c.Name in by_container), None)
                or by_app_id.get(project)
            )
            raw_id = self._strip_prefix(primary.Name)
            app_id = (record.app_id if record else None) or project or raw_id

            candidates = catalog_by_app_id.get(app_id, [])
            store_meta = None
            if record and record.store_id:
                store_meta = next((m for m in candidates if m.store_id == record.store_id), None)
            if store_meta is None and candidates:
                store_meta = candidates[0]

            config = record.install_config if record else None
            web_ui_port = resolve_host_port(primary.Ports, config.web_ui_port if config else None)

            names = [c.Name for c in members]
            if len(names) <= 1 and config and config.containers:
                names = list(config.containers)

            result.append(
                InstalledApp(
                    id=primary.Name,
                    app_id=app_id,
                    name=(record.name if record else None)
                    or (store_meta and (store_meta.title or store_meta.name))
                    or raw_id,
                    icon=(record.icon if record else None)
                    or (store_meta.icon if store_meta else None)
                    or DEFAULT_APP_ICON,
                    status=aggregate_status(members),
                    web_ui_port=web_ui_port,
                    container_name=primary.Name,
                    containers=names,
                    installed_at=_epoch_ms(record, primary),
                    store_id=record.store_id if record else None,
                    version=record.version if record else None,
                )
            )
        logger.info("inventory:listed apps=%s", len(result))
        return result

    def get_app_by_id(self, app_id: str) -> Optional[InstalledApp]:
        if not is_valid_app_id(app_id):
            return None
        generated = self.settings.container_name(app_id)
        for app in self.list_installed_apps():
            if app.app_id.lower() == app_id.lower() or app.container_name == generated:
                return app
        return None

    def container_candidates(self, app_id: str) -> List[str]:
        candidates = []
        record = self.installed.find_latest_by_app_id(app_id)
        if record:
            candidates.append(record.container_name)
        generated = self.settings.container_name(app_id)
        if generated not in candidates:
            candidates.append(generated)
        return candidates

    def get_status(self, app_id: str) -> AppStatus:
        if not is_valid_app_id(app_id):
            return AppStatus.ERROR
        for name in self.container_candidates(app_id):
            try:
                state = self.engine.docker.get_status(name)
            except docker_errors.DockerException as exc:
                logger.warning("inventory:status-failed container=%s error=%s", name, exc)
                continue
            if state is None:
                continue
            if state == "running":
                return AppStatus.RUNNING
            if state == "exited":
                return AppStatus.ERROR
            return AppStatus.STOPPED
        return AppStatus.ERROR

    def get_web_ui(self, app_id: str) -> Optional[str]:
        if not is_valid_app_id(app_id):
            logger.warning("inventory:webui:invalid-app-id app_id=%r", app_id)
            return None

        record = self.installed.find_latest_by_app_id(app_id)
        catalog_app = self.apps.find_latest(app_id, record.store_id if record else None)
        if catalog_app is None and record and record.store_id:
            catalog_app = self.apps.find_latest(app_id)

        config_port = record.install_config.web_ui_port if record and record.install_config else None
        catalog_port = catalog_app.port if catalog_app else None
        preferred = config_port or catalog_port

        host_port = None
        for name in self.container_candidates(app_id):
            try:
                host_port = self.engine.docker.get_host_port(name, preferred)
            except docker_errors.DockerException as exc:
                logger.warning("inventory:webui:inspect-failed container=%s error=%s", name, exc)
                continue
            if host_port:
                break

        path = catalog_app.path if catalog_app and catalog_app.path else ""
        if path and not path.startswith("/"):
            path = f"/{path}"

        base = f"{self.settings.web_scheme}://{self.settings.web_host}"
        if host_port:
            url, method = f"{base}:{host_port}{path}", "host-port"
        elif config_port and is_valid_port(config_port):
            url, method = f"{base}:{config_port}{path}", "config-port"
        elif catalog_port and is_valid_port(catalog_port):
            url, method = f"{base}:{catalog_port}{path}", "catalog-port"
        elif path:
            url, method = f"{base}{path}", "path-only"
        else:
            logger.warning("inventory:webui:unresolved app_id=%s", app_id)
            return None

        logger.info("inventory:webui app_id=%s url=%s method=%s", app_id, url, method)
        return url

    def get_logs(self, app_id: str, lines: int = 100) -> str:
        if not is_valid_app_id(app_id):
            return "Error: Invalid app ID"
        for name in self.container_candidates(app_id):
            try:
                output = self.engine.docker.get_logs(name, tail=lines)
            except docker_errors.DockerException as exc:
                logger.warning("inventory:logs-failed container=%s error=%s", name, exc)
                continue
            if output:
                return output
        return NO_LOGS

    def _update_info(self, record: InstalledAppRecord) -> AppUpdateInfo:
        catalog_app = self.apps.find_latest(record.app_id, record.store_id)
        available = catalog_app.version if catalog_app else None
        installed = record.version
        if installed and available:
            has_update = compare_versions(available, installed) > 0
        else:
            has_update = bool(available and not installed)
        return AppUpdateInfo(
            app_id=record.app_id,
            container_name=record.container_name,
            name=record.name,
            icon=record.icon,
            installed_version=installed,
            available_version=available,
            has_update=has_update,
            store_id=record.store_id,
        )

    def check_updates(self) -> List[AppUpdateInfo]:
        return [self._update_info(record) for record in self.installed.get_all()]

    def check_update(self, app_id: str) -> Optional[AppUpdateInfo]:
        if not is_valid_app_id(app_id):
            return None
        record = self.installed.find_latest_by_app_id(app_id)
        return self._update_info(record) if record else None
