import json

from appdeck.config.settings import Settings
from appdeck.db.models.apps import (
    CatalogApp,
    ContainerMeta,
    PersistedInstallConfig,
    Store,
    load_json_column,
)
from appdeck.db.repositories.apps import AppRepository, InstalledAppRepository, StoreRepository
from appdeck.db.session import get_db_manager


def test_store_and_catalog_roundtrip(db):
    store = StoreRepository(db).create(Store(id="casa", slug="casaos", format="casaos"))
    apps = AppRepository(db)
    apps.create(CatalogApp(app_id="jellyfin", store_id="casa", version="10.8", dependencies=["a", "b"]))
    apps.create(
        CatalogApp(
            app_id="jellyfin",
            store_id="casa",
            version="10.9",
            container=ContainerMeta(image="jellyfin/jellyfin"),
        )
    )

    latest = apps.find_latest("jellyfin", "casa")

    assert store.format == "casaos"
    assert latest.version == "10.9"
    assert latest.container.image == "jellyfin/jellyfin"
    assert apps.find_latest("jellyfin", "other") is None
    assert [a.version for a in apps.list_by_app_id("jellyfin")] == ["10.9", "10.8"]
    assert apps.list_by_app_id("jellyfin")[1].dependencies == ["a", "b"]


def test_installed_upsert_keeps_optional_fields(db):
    repo = InstalledAppRepository(db)
    repo.upsert(
        app_id="web",
        container_name="web-app-1",
        name="Web",
        icon="icon.png",
        install_config=PersistedInstallConfig(web_ui_port="8080", containers=["web-app-1"]),
        store_id="casa",
        version="1.0",
    )

    updated = repo.upsert(app_id="web", container_name="web-app-1", name="Web 2", icon="icon.png")

    assert updated.name == "Web 2"
    assert updated.store_id == "casa"
    assert updated.version == "1.0"
    assert updated.install_config.web_ui_port == "8080"
    assert len(repo.list_by_app_id("web")) == 1


def test_installed_update_version_and_delete(db):
    repo = InstalledAppRepository(db)
    repo.upsert(app_id="web", container_name="web", name="Web", icon="i")

    assert repo.update_version("web", "2.0") is True
    assert repo.find_latest_by_app_id("web").version == "2.0"
    assert repo.delete_by_container_name("web") is True
    assert repo.delete_by_container_name("web") is False
    assert repo.get_by_container_name("web") is None


def test_invalid_json_columns_are_dropped(db):
    conn = db.get_connection()
    try:
        conn.execute(
            "INSERT INTO installed_apps (app_id, container_name, name, icon, install_config) "
            "VALUES (?, ?, ?, ?, ?)",
            ("web", "web", "Web", "i", json.dumps({"ports": "not-a-list"})),
        )
        conn.commit()
    finally:
        conn.close()

    record = InstalledAppRepository(db).get_by_container_name("web")

    assert record.install_config == PersistedInstallConfig()
    assert load_json_column("{broken", PersistedInstallConfig) is None


def test_get_db_manager_is_cached_per_url(tmp_path):
    settings = Settings(environ={}, database_url=f"sqlite:///{tmp_path / 'shared.db'}")

    first = get_db_manager(settings)

    assert get_db_manager(settings) is first
    assert (tmp_path / "shared.db").exists()
