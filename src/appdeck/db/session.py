from typing import Optional

from appdeck.config.settings import Settings, config
from appdeck.db.manager import DatabaseManager

_managers = {}


def get_db_manager(settings: Optional[Settings] = None) -> DatabaseManager:
    """Return the shared DatabaseManager for the configured URL, creating tables once."""
    url = (settings or config).database_url
    manager = _managers.get(url)
    if manager is None:
        manager = DatabaseManager(url)
        manager.init_db()
        _managers[url] = manager
    return manager
