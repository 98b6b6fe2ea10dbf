import json
import logging
import os
import secrets
import socket
import string
from typing import Dict, Optional

from appdeck.appstore.models import InstallConfig
from appdeck.config.settings import Settings

logger = logging.getLogger(__name__)

CONVENTION_CUSTOM = "custom"
CONVENTION_CASAOS = "casaos"
CONVENTION_UMBREL = "umbrel"

UMBREL_SECRETS_FILE = ".umbrel-secrets.json"
PASSWORD_ALPHABET = string.ascii_letters + string.digits


def normalize_domain(value: Optional[str]) -> Optional[str]:
    """Reduce a configured host/URL to a bare host name.

    ``https://box.example:8443/ui`` becomes ``box.example``; bracketed
    IPv6 literals keep their brackets.
    """
    if not value:
        return None
    host = value.strip()
    if "://" in host:
        host = host.split("://", 1)[1]
    host = host.split("/", 1)[0]
    if host.startswith("["):
        end = host.find("]")
        host = host[: end + 1] if end != -1 else host
    elif host.count(":") == 1:
        host = host.split(":", 1)[0]
    return host or None


def generate_password(length: int = 24) -> str:
    return "".join(secrets.choice(PASSWORD_ALPHABET) for _ in range(length))


def load_or_create_secrets(app_data_dir: str) -> Dict[str, str]:
    """Per-app password and seed, persisted so redeploys reuse them."""
    path = os.path.join(app_data_dir, UMBREL_SECRETS_FILE)
    try:
        with open(path, "r", encoding="utf-8") as f:
            stored = json.load(f)
        if isinstance(stored, dict) and stored.get("password") and stored.get("seed"):
            return {"password": stored["password"], "seed": stored["seed"]}
    except (OSError, ValueError):
        logger.debug("env:secrets:missing path=%s", path)

    values = {"password": generate_password(), "seed": secrets.token_hex(32)}
    os.makedirs(app_data_dir, exist_ok=True)
    fd = os.open(path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
    with os.fdopen(fd, "w", encoding="utf-8") as f:
        json.dump(values, f, indent=2)
    os.chmod(path, 0o600)
    logger.info("env:secrets:created path=%s", path)
    return values


def detect_convention(
    store_format: Optional[str] = None,
    compose_path: Optional[str] = None,
    store_id: Optional[str] = None,
) -> str:
    """Environment convention for an app, from its store format or location."""
    fmt = (store_format or "").lower()
    if fmt in (CONVENTION_UMBREL, CONVENTION_CASAOS):
        return fmt
    if compose_path and CONVENTION_UMBREL in compose_path.lower():
        return CONVENTION_UMBREL
    if store_id:
        return CONVENTION_CASAOS
    return CONVENTION_CUSTOM


def apply_config_overrides(env: Dict[str, str], config: InstallConfig):
    for port in config.ports:
        env[f"PORT_{port.container}"] = port.published
    for volume in config.volumes:
        env["VOLUME_" + volume.container.replace("/", "_").upper()] = volume.source
    for item in config.environment:
        env[item.key] = item.value


class EnvironmentBuilder:
    """Builds the variable set handed to ``docker compose``."""

    def __init__(self, settings: Settings):
        self.settings = settings

    def device_hostname(self) -> str:
        return self.settings.device_hostname or socket.gethostname() or "appdeck"

    def _system_defaults(self) -> Dict[str, str]:
        uid = os.getuid() if hasattr(os, "getuid") else 1000
        gid = os.getgid() if hasattr(os, "getgid") else 1000
        return {"PUID": str(uid), "PGID": str(gid), "TZ": "UTC"}

    def build(
        self,
        app_id: str,
        config: Optional[InstallConfig] = None,
        convention: str = CONVENTION_CUSTOM,
    ) -> Dict[str, str]:
        env = dict(self.settings.environ)
        for key, value in self._system_defaults().items():
            env.setdefault(key, value)

        hostname = self.device_hostname()
        device_domain = f"{hostname}.local"
        app_data_dir = self.settings.app_data_dir(app_id)

        env.setdefault("APP_ID", app_id)
        env.setdefault("AppID", app_id)
        env.setdefault("APP_DATA_DIR", app_data_dir)
        env.setdefault("DEVICE_HOSTNAME", hostname)
        env.setdefault("DEVICE_DOMAIN_NAME", device_domain)
        env.setdefault("APP_DOMAIN", normalize_domain(self.settings.domain) or device_domain)

        if convention == CONVENTION_UMBREL:
            env.setdefault("UMBREL_ROOT", self.settings.data_root)
            env.setdefault("TOR_PROXY_IP", "127.0.0.1")
            env.setdefault("TOR_PROXY_PORT", "9050")
            app_secrets = load_or_create_secrets(env["APP_DATA_DIR"])
            env.setdefault("APP_PASSWORD", app_secrets["password"])
            env.setdefault("APP_SEED", app_secrets["seed"])

        if config:
            apply_config_overrides(env, config)
        logger.debug("env:built app_id=%s convention=%s", app_id, convention)
        return env
