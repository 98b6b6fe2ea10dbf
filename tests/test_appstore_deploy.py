import os

import pytest
from pydantic import ValidationError
from conftest import no_sleep, write_app

from appdeck.appstore.deploy_service import (
    TRANSITIONS,
    DeployStage,
    DeploymentOrchestrator,
    next_stage,
)
from appdeck.appstore.errors import EngineError
from appdeck.appstore.models import (
    AppMeta,
    DeployOptions,
    InstallConfig,
    PortConfig,
    ProgressStatus,
)
from appdeck.db.models.apps import CatalogApp
from appdeck.db.repositories.apps import AppRepository, InstalledAppRepository

NEXTCLOUD = "services:\n  nextcloud:\n    image: nextcloud:latest\n    ports:\n      - '8080:80'\n"
CUSTOM = "services:\n  web:\n    image: nginx\n  db:\n    image: postgres\n"


def _orchestrator(settings, db, engine):
    return DeploymentOrchestrator(settings, db, engine, sleep=no_sleep)


def test_transitions_are_forward_only():
    stage = DeployStage.VALIDATING
    visited = [stage]
    while stage != DeployStage.COMPLETED:
        stage = next_stage(stage)
        visited.append(stage)

    assert visited[-1] == DeployStage.COMPLETED
    assert len(visited) == len(set(visited)) == len(TRANSITIONS) + 1
    with pytest.raises(ValueError):
        next_stage(DeployStage.ERROR)


@pytest.mark.asyncio
async def test_store_install_of_nextcloud(settings, db, engine, compose, sink, tmp_path):
    write_app(tmp_path / "store", "nextcloud", NEXTCLOUD)
    compose.names = ["nextcloud-nextcloud-1"]

    result = await _orchestrator(settings, db, engine).deploy(
        DeployOptions(app_id="nextcloud", compose_path="store/nextcloud/docker-compose.yml"),
        sink,
    )

    assert result.success is True
    assert result.error is None
    record = InstalledAppRepository(db).get_by_container_name("nextcloud-nextcloud-1")
    canonical = os.path.join(settings.installed_apps_root, "nextcloud", "docker-compose.yml")
    assert record.app_id == "nextcloud"
    assert record.install_config.compose_path == canonical
    assert record.install_config.web_ui_port == "8080"
    assert record.install_config.containers == ["nextcloud-nextcloud-1"]
    assert compose.ops() == ["pull", "up", "ps"]
    assert sink.events[-1].container_name == "nextcloud-nextcloud-1"


@pytest.mark.asyncio
async def test_progress_is_monotonic_and_ends_at_one(settings, db, engine, compose, sink):
    compose.names = ["custom-web-1", "custom-db-1"]

    result = await _orchestrator(settings, db, engine).deploy(
        DeployOptions(app_id="custom", compose_content=CUSTOM, meta=AppMeta(name="Custom")),
        sink,
    )

    assert result.success is True
    values = sink.values
    assert values == sorted(values)
    assert values[0] == 0.0
    assert values[-1] == 1.0
    assert sink.events[-1].status == ProgressStatus.COMPLETED
    assert [e.progress for e in sink.events].count(1.0) == 1
    assert all(e.name == "Custom" for e in sink.events)


@pytest.mark.asyncio
async def test_redeploy_tears_down_first_and_keeps_primary(settings, db, engine, compose):
    compose.names = ["custom-db-1", "custom-web-1"]
    orchestrator = _orchestrator(settings, db, engine)
    options = DeployOptions(app_id="custom", compose_content=CUSTOM)

    first = await orchestrator.deploy(options)
    second = await orchestrator.deploy(options)

    assert first.success and second.success
    ops = compose.ops()
    second_run = ops[ops.index("ps") + 1:]
    assert second_run[0] == "down"
    assert second_run.index("down") < second_run.index("up")
    records = InstalledAppRepository(db).list_by_app_id("custom")
    assert [r.container_name for r in records] == ["custom-web-1"]


@pytest.mark.asyncio
async def test_detection_falls_back_to_compose_container_name(settings, db, engine, compose):
    content = "services:\n  app:\n    image: gitea/gitea\n    container_name: gitea-server\n"

    result = await _orchestrator(settings, db, engine).deploy(
        DeployOptions(app_id="gitea", compose_content=content)
    )

    assert result.success is True
    assert InstalledAppRepository(db).get_by_container_name("gitea-server") is not None
    assert compose.ops().count("ps") == settings.detect_attempts


@pytest.mark.parametrize("app_id", ["../etc", "a/b", "", "..hidden"])
@pytest.mark.asyncio
async def test_invalid_app_id_has_no_side_effects(settings, db, engine, compose, sink, app_id):
    result = await _orchestrator(settings, db, engine).deploy(
        DeployOptions(app_id=app_id, compose_content=CUSTOM), sink
    )

    assert result.success is False
    assert result.error == "Invalid app ID"
    assert compose.calls == []
    assert not os.path.exists(settings.installed_apps_root)
    assert sink.events[-1].status == ProgressStatus.ERROR
    assert sink.events[-1].progress == 1.0


@pytest.mark.asyncio
async def test_invalid_port_is_rejected(settings, db, engine, compose):
    config = InstallConfig(ports=[PortConfig(container="80", published="70000")])

    result = await _orchestrator(settings, db, engine).deploy(
        DeployOptions(app_id="web", compose_content=CUSTOM, config=config)
    )

    assert result.success is False
    assert result.error == "Invalid port: 70000"
    assert compose.calls == []


@pytest.mark.asyncio
async def test_missing_dependency_stops_before_engine(settings, db, engine, compose):
    AppRepository(db).create(CatalogApp(app_id="immich", dependencies=["postgres"]))

    result = await _orchestrator(settings, db, engine).deploy(
        DeployOptions(app_id="immich", compose_content=CUSTOM)
    )

    assert result.success is False
    assert result.error == "Missing dependencies: postgres"
    assert compose.calls == []


@pytest.mark.asyncio
async def test_missing_compose_file(settings, db, engine, compose, sink):
    result = await _orchestrator(settings, db, engine).deploy(DeployOptions(app_id="ghost"), sink)

    assert result.success is False
    assert result.error.startswith("Compose file not found")
    assert sink.events[-1].message.startswith("Deployment failed at compose:resolve:")


@pytest.mark.asyncio
async def test_pull_failure_is_summarized(settings, db, engine, compose, sink):
    compose.errors["pull"] = EngineError(
        "compose:pull",
        "docker compose pull exited with code 1",
        code=1,
        stderr="toomanyrequests: You have reached your pull rate limit.",
    )

    result = await _orchestrator(settings, db, engine).deploy(
        DeployOptions(app_id="custom", compose_content=CUSTOM), sink
    )

    assert result.success is False
    assert result.error.startswith("Docker registry rate limit reached")
    assert sink.events[-1].message == f"Deployment failed at compose:pull: {result.error}"
    assert "up" not in compose.ops()
    assert InstalledAppRepository(db).list_by_app_id("custom") == []


@pytest.mark.asyncio
async def test_sanitized_manifest_is_executed_and_canonical_persisted(settings, db, engine, compose):
    content = "services:\n  web:\n    image: nginx\n  broken:\n    environment:\n      A: b\n"
    compose.names = ["broken-web-1"]

    result = await _orchestrator(settings, db, engine).deploy(
        DeployOptions(app_id="broken", compose_content=content)
    )

    assert result.success is True
    up_call = next(call for call in compose.calls if call[0] == "up")
    assert up_call[2].endswith(".docker-compose.sanitized.yml")
    assert up_call[3]["CONTAINER_NAME"] == "broken"
    record = InstalledAppRepository(db).get_by_container_name("broken-web-1")
    assert record.install_config.compose_path.endswith("docker-compose.yml")
    assert not record.install_config.compose_path.endswith(".sanitized.yml")


def test_deploy_options_accept_a_single_compose_source():
    with pytest.raises(ValidationError, match="not both"):
        DeployOptions(
            app_id="demo",
            compose_content=CUSTOM,
            compose_path="store/other/docker-compose.yml",
        )

    assert DeployOptions(app_id="demo", compose_content=CUSTOM).compose_path is None


@pytest.mark.asyncio
async def test_progress_uses_catalog_title_without_request_meta(
    settings, db, engine, compose, sink
):
    AppRepository(db).create(
        CatalogApp(app_id="custom", title="Custom Stack", icon="custom.png")
    )
    compose.names = ["custom-web-1"]

    result = await _orchestrator(settings, db, engine).deploy(
        DeployOptions(app_id="custom", compose_content=CUSTOM), sink
    )

    assert result.success is True
    assert {event.name for event in sink.events} == {"Custom Stack"}
    assert {event.icon for event in sink.events} == {"custom.png"}
