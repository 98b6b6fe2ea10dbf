from typing import Any

from appdeck.appstore.errors import ValidationError
from appdeck.appstore.models import InstallConfig


def is_valid_app_id(app_id: Any) -> bool:
    """App ids are used as path components; reject traversal and separators."""
    if not isinstance(app_id, str) or not app_id.strip():
        return False
    return "/" not in app_id and ".." not in app_id


def is_valid_port(port: Any) -> bool:
    try:
        value = int(str(port).strip())
    except (TypeError, ValueError):
        return False
    return 1 <= value <= 65535


def validate_app_id(app_id: Any):
    if not is_valid_app_id(app_id):
        raise ValidationError("Invalid app ID", {"app_id": app_id})


def validate_install_config(config: InstallConfig | None):
    if not config:
        return
    for port in config.ports:
        if not is_valid_port(port.published):
            raise ValidationError(f"Invalid port: {port.published}", {"port": port.published})
