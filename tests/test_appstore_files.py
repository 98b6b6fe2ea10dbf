import os
import stat

import pytest

from appdeck.appstore.compose import SANITIZED_COMPOSE_NAME
from appdeck.appstore.errors import ComposeResolutionError
from appdeck.appstore.files import copy_app_to_installed_apps, pre_seed_data_files


def _source(tmp_path, files):
    source = tmp_path / "store" / "pihole"
    source.mkdir(parents=True)
    for name, content in files.items():
        (source / name).write_text(content)
    return source


def _mode(path):
    return stat.S_IMODE(os.stat(path).st_mode)


def test_pre_seed_replaces_directory_left_by_the_engine(tmp_path):
    source = _source(tmp_path, {"custom.list": "192.168.1.2 nas\n"})
    data_dir = tmp_path / "data" / "pihole"
    (data_dir / "custom.list").mkdir(parents=True)

    pre_seed_data_files(str(source), str(data_dir))

    assert (data_dir / "custom.list").is_file()
    assert (data_dir / "custom.list").read_text() == "192.168.1.2 nas\n"


def test_pre_seed_keeps_existing_files(tmp_path):
    source = _source(tmp_path, {"custom.list": "default\n", "new.conf": "x=1\n"})
    data_dir = tmp_path / "data" / "pihole"
    data_dir.mkdir(parents=True)
    (data_dir / "custom.list").write_text("edited by user\n")

    pre_seed_data_files(str(source), str(data_dir))

    assert (data_dir / "custom.list").read_text() == "edited by user\n"
    assert (data_dir / "new.conf").read_text() == "x=1\n"


def test_pre_seed_makes_scripts_executable(tmp_path):
    source = _source(tmp_path, {"entrypoint.sh": "#!/bin/sh\necho hi\n"})
    os.chmod(source / "entrypoint.sh", 0o644)
    data_dir = tmp_path / "data" / "pihole"

    pre_seed_data_files(str(source), str(data_dir))

    assert _mode(data_dir / "entrypoint.sh") == 0o755


def test_pre_seed_skips_store_metadata(tmp_path):
    source = _source(
        tmp_path,
        {
            "docker-compose.yml": "services: {}\n",
            SANITIZED_COMPOSE_NAME: "services: {}\n",
            "appfile.json": "{}",
            "icon.png": "png",
            "setup.conf": "a=b\n",
        },
    )
    data_dir = tmp_path / "data" / "pihole"

    pre_seed_data_files(str(source), str(data_dir))

    assert sorted(os.listdir(data_dir)) == ["setup.conf"]


def test_pre_seed_with_only_metadata_creates_nothing(tmp_path):
    source = _source(tmp_path, {"docker-compose.yml": "services: {}\n"})
    data_dir = tmp_path / "data" / "pihole"

    pre_seed_data_files(str(source), str(data_dir))

    assert not data_dir.exists()


def test_pre_seed_ignores_unreadable_source(tmp_path):
    data_dir = tmp_path / "data" / "ghost"

    pre_seed_data_files(str(tmp_path / "missing"), str(data_dir))

    assert not data_dir.exists()


def test_copy_app_carries_compose_and_support_files(tmp_path):
    source = _source(
        tmp_path,
        {
            "docker-compose.yml": "services:\n  pihole:\n    image: pihole/pihole\n",
            "appfile.json": "{}",
            "start.sh": "#!/bin/sh\n",
        },
    )
    installed_root = tmp_path / "apps"

    resolved = copy_app_to_installed_apps(str(source), str(installed_root), "pihole")

    app_dir = installed_root / "pihole"
    assert resolved.app_dir == str(app_dir)
    assert resolved.compose_path == str(app_dir / "docker-compose.yml")
    assert (app_dir / "appfile.json").exists()
    assert _mode(app_dir / "start.sh") == 0o755


def test_copy_app_without_compose_raises(tmp_path):
    source = _source(tmp_path, {"README.md": "nothing here\n"})

    with pytest.raises(ComposeResolutionError):
        copy_app_to_installed_apps(str(source), str(tmp_path / "apps"), "pihole")
