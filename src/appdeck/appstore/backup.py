import logging
import os
import shutil

from appdeck.config.settings import Settings

logger = logging.getLogger(__name__)

BACKUP_COMPOSE_NAME = "docker-compose.yml"


def backup_path_for(settings: Settings, name: str) -> str:
    return os.path.join(settings.backups_root, name, BACKUP_COMPOSE_NAME)


def backup_compose(settings: Settings, name: str, compose_path: str) -> str:
    """Copy the canonical manifest aside before an update touches it."""
    target = backup_path_for(settings, name)
    os.makedirs(os.path.dirname(target), exist_ok=True)
    shutil.copy2(compose_path, target)
    logger.info("backup:created name=%s path=%s", name, target)
    return target


def restore_compose(backup_path: str, compose_path: str):
    shutil.copy2(backup_path, compose_path)
    logger.info("backup:restored source=%s target=%s", backup_path, compose_path)


def cleanup_backup(backup_path: str):
    backup_dir = os.path.dirname(backup_path)
    try:
        shutil.rmtree(backup_dir)
    except FileNotFoundError:
        return
    except OSError as exc:
        logger.warning("backup:cleanup-failed path=%s error=%s", backup_dir, exc)
