from typing import Any, Dict, List, Optional

from appdeck.db.models.apps import (
    CatalogApp,
    ContainerMeta,
    InstalledAppRecord,
    PersistedInstallConfig,
    Store,
    load_json_column,
    load_json_list,
)
from appdeck.db.repositories.base import BaseRepository


class StoreRepository(BaseRepository):
    def __init__(self, manager):
        super().__init__(manager, 'stores', model_class=Store)

    def create(self, store: Store) -> Store:
        self._execute(
            f"INSERT INTO stores (id, slug, name, format, created_at) "
            f"VALUES ({self.ph}, {self.ph}, {self.ph}, {self.ph}, {self.ph})",
            (store.id, store.slug, store.name, store.format, self._now()),
        )
        return self.get(store.id)


class AppRepository(BaseRepository):
    """Catalog app entries imported from stores."""

    def __init__(self, manager):
        super().__init__(manager, 'apps', model_class=CatalogApp)

    def _to_model(self, row: Dict[str, Any]) -> CatalogApp:
        row["dependencies"] = load_json_list(row.get("dependencies"))
        row["container"] = load_json_column(row.get("container"), ContainerMeta)
        return CatalogApp(**row)

    def create(self, app: CatalogApp) -> CatalogApp:
        now = self._now()
        conn = self.manager.get_connection()
        try:
            cursor = conn.cursor()
            query = (
                "INSERT INTO apps (app_id, store_id, title, name, icon, version, port, path, "
                "compose_path, dependencies, container, created_at, updated_at) VALUES ("
                + ", ".join([self.ph] * 13)
                + ")"
            )
            params = (
                app.app_id,
                app.store_id,
                app.title,
                app.name,
                app.icon,
                app.version,
                app.port,
                app.path,
                app.compose_path,
                self._json(app.dependencies),
                self._json(app.container),
                now,
                now,
            )
            if self.manager.db_type == 'sqlite':
                cursor.execute(query, params)
                last_id = cursor.lastrowid
            else:
                cursor.execute(query + " RETURNING id", params)
                last_id = cursor.fetchone()["id"]
            conn.commit()
        finally:
            conn.close()
        return self.get(last_id)

    def find_latest(self, app_id: str, store_id: Optional[str] = None) -> Optional[CatalogApp]:
        if store_id:
            return self._fetch_one(
                f"SELECT * FROM apps WHERE app_id = {self.ph} AND store_id = {self.ph} "
                "ORDER BY created_at DESC, id DESC LIMIT 1",
                (app_id, store_id),
            )
        return self._fetch_one(
            f"SELECT * FROM apps WHERE app_id = {self.ph} ORDER BY created_at DESC, id DESC LIMIT 1",
            (app_id,),
        )

    def list_by_app_id(self, app_id: str) -> List[CatalogApp]:
        return self._fetch_all(
            f"SELECT * FROM apps WHERE app_id = {self.ph} ORDER BY created_at DESC, id DESC",
            (app_id,),
        )


class InstalledAppRepository(BaseRepository):
    """Installed app records, keyed by primary container name."""

    def __init__(self, manager):
        super().__init__(manager, 'installed_apps', model_class=InstalledAppRecord)

    def _to_model(self, row: Dict[str, Any]) -> InstalledAppRecord:
        raw_config = row.get("install_config")
        install_config = load_json_column(raw_config, PersistedInstallConfig)
        if install_config is None and raw_config not in (None, ""):
            install_config = PersistedInstallConfig()
        row["install_config"] = install_config
        row["container"] = load_json_column(row.get("container"), ContainerMeta)
        return InstalledAppRecord(**row)

    def get_by_container_name(self, container_name: str) -> Optional[InstalledAppRecord]:
        return self._fetch_one(
            f"SELECT * FROM installed_apps WHERE container_name = {self.ph}",
            (container_name,),
        )

    def find_latest_by_app_id(self, app_id: str) -> Optional[InstalledAppRecord]:
        return self._fetch_one(
            f"SELECT * FROM installed_apps WHERE app_id = {self.ph} "
            "ORDER BY updated_at DESC, id DESC LIMIT 1",
            (app_id,),
        )

    def list_by_app_id(self, app_id: str) -> List[InstalledAppRecord]:
        return self._fetch_all(
            f"SELECT * FROM installed_apps WHERE app_id = {self.ph} ORDER BY updated_at DESC, id DESC",
            (app_id,),
        )

    def upsert(
        self,
        app_id: str,
        container_name: str,
        name: str,
        icon: str,
        install_config: Optional[PersistedInstallConfig] = None,
        store_id: Optional[str] = None,
        container: Optional[ContainerMeta] = None,
        version: Optional[str] = None,
    ) -> InstalledAppRecord:
        """Insert or update the record for ``container_name``.

        Optional fields left as None keep whatever the existing record holds.
        """
        existing = self.get_by_container_name(container_name)
        if existing:
            install_config = install_config if install_config is not None else existing.install_config
            store_id = store_id if store_id is not None else existing.store_id
            container = container if container is not None else existing.container
            version = version if version is not None else existing.version

        now = self._now()
        ph = self.ph
        self._execute(
            "INSERT INTO installed_apps (app_id, container_name, name, icon, install_config, "
            "store_id, container, version, created_at, updated_at) VALUES ("
            + ", ".join([ph] * 10)
            + ") ON CONFLICT (container_name) DO UPDATE SET "
            "app_id = excluded.app_id, name = excluded.name, icon = excluded.icon, "
            "install_config = excluded.install_config, store_id = excluded.store_id, "
            "container = excluded.container, version = excluded.version, "
            "updated_at = excluded.updated_at",
            (
                app_id,
                container_name,
                name,
                icon,
                self._json(install_config),
                store_id,
                self._json(container),
                version,
                now,
                now,
            ),
        )
        return self.get_by_container_name(container_name)

    def update_version(self, container_name: str, version: Optional[str]) -> bool:
        return self._execute(
            f"UPDATE installed_apps SET version = {self.ph}, updated_at = {self.ph} "
            f"WHERE container_name = {self.ph}",
            (version, self._now(), container_name),
        ) > 0

    def delete_by_container_name(self, container_name: str) -> bool:
        return self._execute(
            f"DELETE FROM installed_apps WHERE container_name = {self.ph}",
            (container_name,),
        ) > 0
