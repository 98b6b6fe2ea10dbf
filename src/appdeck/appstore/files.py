import logging
import os
import shutil
from typing import Optional

from appdeck.appstore.compose import COMPOSE_FILE_NAMES, SANITIZED_COMPOSE_NAME, find_compose_file
from appdeck.appstore.errors import ComposeResolutionError
from appdeck.appstore.models import ResolvedCompose

logger = logging.getLogger(__name__)

# Files that are never app data; skipped when pre-seeding APP_DATA_DIR.
STORE_META_FILES = {
    "docker-compose.yml",
    "docker-compose.yaml",
    SANITIZED_COMPOSE_NAME,
    "appfile.json",
    "icon.png",
    "icon.svg",
    "thumbnail.png",
    "thumbnail.jpg",
}

# Compose and metadata files carried into the install root.
APP_INSTALL_FILES = [
    "docker-compose.yml",
    "docker-compose.yaml",
    "appfile.json",
    "icon.png",
    "icon.svg",
]


def _copy_file(src: str, dest: str):
    shutil.copyfile(src, dest)
    if dest.endswith(".sh"):
        os.chmod(dest, 0o755)


def get_installed_app_dir(installed_apps_root: str, app_id: str) -> Optional[ResolvedCompose]:
    """The app's install directory, when it already holds a compose file."""
    app_dir = os.path.join(installed_apps_root, app_id)
    compose_path = find_compose_file(app_dir)
    if not compose_path:
        return None
    return ResolvedCompose(app_dir=app_dir, compose_path=compose_path)


def copy_app_to_installed_apps(
    source_dir: str, installed_apps_root: str, app_id: str
) -> ResolvedCompose:
    """Copy a catalog app directory into ``<installed_apps_root>/<app_id>``.

    Compose and metadata files are copied first, then every other regular
    file (scripts, config templates) the manifest may reference. Raises
    ComposeResolutionError when the source holds no compose file.
    """
    app_dir = os.path.join(installed_apps_root, app_id)
    os.makedirs(app_dir, exist_ok=True)

    compose_path = None
    for file_name in APP_INSTALL_FILES:
        src = os.path.join(source_dir, file_name)
        if not os.path.isfile(src):
            continue
        dest = os.path.join(app_dir, file_name)
        shutil.copyfile(src, dest)
        logger.debug("files:copy app_id=%s file=%s", app_id, file_name)
        if compose_path is None and file_name in COMPOSE_FILE_NAMES:
            compose_path = dest

    skip = {name.lower() for name in APP_INSTALL_FILES} | STORE_META_FILES
    for entry in os.scandir(source_dir):
        if not entry.is_file() or entry.name.lower() in skip:
            continue
        try:
            _copy_file(entry.path, os.path.join(app_dir, entry.name))
        except OSError as exc:
            logger.warning(
                "files:copy-support-failed app_id=%s file=%s error=%s", app_id, entry.name, exc
            )

    if not compose_path:
        raise ComposeResolutionError(f"No docker-compose.yml found in {source_dir}")

    logger.info("files:copied app_id=%s source=%s", app_id, source_dir)
    return ResolvedCompose(app_dir=app_dir, compose_path=compose_path)


def pre_seed_data_files(source_dir: str, app_data_dir: str):
    """Copy non-metadata files beside the manifest into APP_DATA_DIR.

    Existing regular files are kept. A directory sitting where a file
    belongs (the engine creates one for a missing bind source) is replaced.
    """
    try:
        entries = [
            entry
            for entry in os.scandir(source_dir)
            if entry.is_file() and entry.name.lower() not in STORE_META_FILES
        ]
        if not entries:
            return

        os.makedirs(app_data_dir, exist_ok=True)
        for entry in entries:
            dest = os.path.join(app_data_dir, entry.name)
            if os.path.isdir(dest) and not os.path.islink(dest):
                shutil.rmtree(dest)
                _copy_file(entry.path, dest)
                logger.info("files:pre-seed:replaced-dir file=%s dest=%s", entry.name, dest)
            elif not os.path.lexists(dest):
                _copy_file(entry.path, dest)
                logger.info("files:pre-seed:copied file=%s dest=%s", entry.name, dest)
    except OSError as exc:
        logger.warning("files:pre-seed:failed source=%s error=%s", source_dir, exc)


def remove_installed_app_files(installed_apps_root: str, app_id: str):
    app_dir = os.path.join(installed_apps_root, app_id)
    try:
        if os.path.isdir(app_dir):
            shutil.rmtree(app_dir)
            logger.info("files:removed path=%s", app_dir)
    except OSError as exc:
        logger.warning("files:remove-failed path=%s error=%s", app_dir, exc)


def is_within(path: str, root: str) -> bool:
    path = os.path.abspath(path)
    root = os.path.abspath(root)
    return path == root or path.startswith(root + os.sep)
