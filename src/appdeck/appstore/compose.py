import logging
import os
import re
from typing import Any, Dict, List, Mapping, Optional, Tuple

import yaml

from appdeck.appstore.models import SanitizedCompose

logger = logging.getLogger(__name__)

SANITIZED_COMPOSE_NAME = ".docker-compose.sanitized.yml"
COMPOSE_FILE_NAMES = ("docker-compose.yml", "docker-compose.yaml")

# Names of compose-generated containers that are never the app itself.
HELPER_NAME_PATTERNS = [
    re.compile(r"[-_]db[-_]|[-_]database[-_]", re.IGNORECASE),
    re.compile(r"[-_]redis[-_]", re.IGNORECASE),
    re.compile(r"[-_]postgres[-_]|[-_]mysql[-_]|[-_]mariadb[-_]|[-_]mongodb[-_]", re.IGNORECASE),
    re.compile(r"[-_]proxy[-_]|[-_]tor[-_]", re.IGNORECASE),
    re.compile(r"[-_]dind[-_]|[-_]docker[-_]", re.IGNORECASE),
]

COMPOSE_NOISE_WORDS = ("creating", "starting", "running", "pulling", "downloaded")

_NUMERIC_USER = re.compile(r"^(\d+)(?::(\d+))?$")


class ComposeParseError(ValueError):
    pass


def parse_compose_yaml(content: str) -> Dict[str, Any]:
    data = yaml.safe_load(content) or {}
    if not isinstance(data, dict):
        raise ComposeParseError("Compose file must be a YAML object")
    services = data.get("services")
    if not isinstance(services, dict) or not services:
        raise ComposeParseError("Compose file must define at least one service")
    return data


def load_compose_file(path: str) -> Dict[str, Any]:
    with open(path, "r", encoding="utf-8") as f:
        return parse_compose_yaml(f.read())


def find_compose_file(directory: str) -> Optional[str]:
    for name in COMPOSE_FILE_NAMES:
        candidate = os.path.join(directory, name)
        if os.path.isfile(candidate):
            return candidate
    return None


def sanitize_compose_file(compose_path: str) -> SanitizedCompose:
    """Drop services that have neither ``image`` nor ``build``.

    The canonical file is left untouched. When something was removed, the
    remaining services are written to a hidden file in the same directory,
    so compose still derives the project from that directory.
    """
    unchanged = SanitizedCompose(executable_path=compose_path, canonical_path=compose_path)
    try:
        with open(compose_path, "r", encoding="utf-8") as f:
            doc = yaml.safe_load(f)
    except (OSError, yaml.YAMLError) as exc:
        logger.warning("compose:sanitize:failed path=%s error=%s", compose_path, exc)
        return unchanged

    if not isinstance(doc, dict) or not isinstance(doc.get("services"), dict):
        return unchanged

    services = doc["services"]
    removed = [
        name
        for name, service in services.items()
        if not isinstance(service, dict) or not (service.get("image") or service.get("build"))
    ]
    if not removed:
        return unchanged

    logger.info("compose:sanitize:removed services=%s", ",".join(removed))
    if len(removed) == len(services):
        logger.error("compose:sanitize:no-valid-services path=%s", compose_path)
        return unchanged

    doc["services"] = {name: svc for name, svc in services.items() if name not in removed}
    sanitized_path = os.path.join(os.path.dirname(compose_path), SANITIZED_COMPOSE_NAME)
    try:
        with open(sanitized_path, "w", encoding="utf-8") as f:
            yaml.safe_dump(doc, f, sort_keys=False)
    except OSError as exc:
        logger.warning("compose:sanitize:write-failed path=%s error=%s", sanitized_path, exc)
        return unchanged
    return SanitizedCompose(executable_path=sanitized_path, canonical_path=compose_path)


def container_name_from_compose(
    compose_path: str, service_name: Optional[str] = None
) -> Optional[str]:
    """Explicit ``container_name`` of the named (or first) service."""
    try:
        doc = load_compose_file(compose_path)
    except (OSError, yaml.YAMLError, ComposeParseError):
        return None
    services = doc["services"]
    name = service_name or next(iter(services))
    service = services.get(name)
    if not isinstance(service, dict):
        return None
    value = service.get("container_name")
    return str(value) if value else None


def extract_compose_meta(compose_path: str) -> Dict[str, Optional[str]]:
    """Web UI port and network mode declared by the first service."""
    meta: Dict[str, Optional[str]] = {"web_ui_port": None, "network_mode": None}
    try:
        doc = load_compose_file(compose_path)
    except (OSError, yaml.YAMLError, ComposeParseError) as exc:
        logger.warning("compose:extract-meta:failed path=%s error=%s", compose_path, exc)
        return meta

    first = next(iter(doc["services"].values()))
    if not isinstance(first, dict):
        return meta

    ports = first.get("ports") or []
    if isinstance(ports, list) and ports:
        port = ports[0]
        if isinstance(port, (str, int)):
            host = str(port).split(":")[0]
            meta["web_ui_port"] = host or None
        elif isinstance(port, dict):
            value = port.get("published")
            if value is None:
                value = port.get("target")
            meta["web_ui_port"] = str(value) if value is not None else None

    if first.get("network_mode") is not None:
        meta["network_mode"] = str(first["network_mode"])
    return meta


def is_helper_container(name: str) -> bool:
    return any(pattern.search(name) for pattern in HELPER_NAME_PATTERNS)


def select_primary_container(names: List[str]) -> Optional[str]:
    """Prefer the first name that does not look like a helper service."""
    if not names:
        return None
    for name in names:
        if not is_helper_container(name):
            return name
    return names[0]


def is_compose_noise(stderr: str) -> bool:
    lower = stderr.lower()
    return any(word in lower for word in COMPOSE_NOISE_WORDS)


def parse_numeric_user(user: Any) -> Optional[Tuple[int, int]]:
    if isinstance(user, bool):
        return None
    if isinstance(user, int):
        return (user, user) if user >= 0 else None
    if not isinstance(user, str):
        return None
    match = _NUMERIC_USER.match(user.strip())
    if not match:
        return None
    uid = int(match.group(1))
    gid = int(match.group(2) or match.group(1))
    return uid, gid


def _resolve_app_data_source(source: str, env: Mapping[str, str]) -> Optional[str]:
    app_data_dir = env.get("APP_DATA_DIR")
    source = source.strip()
    if not app_data_dir or not source:
        return None

    resolved = None
    for token in ("${APP_DATA_DIR}", "$APP_DATA_DIR"):
        if source.startswith(token):
            resolved = os.path.join(app_data_dir, source[len(token):].lstrip("/"))
            break
    else:
        if source.startswith(app_data_dir):
            resolved = source

    if not resolved:
        return None
    base = os.path.abspath(app_data_dir)
    resolved = os.path.abspath(resolved)
    if resolved != base and not resolved.startswith(base + os.sep):
        return None
    return resolved


def ensure_volume_ownership(compose_path: str, env: Mapping[str, str], app_id: str):
    """Create app-data bind sources for services running as a numeric user.

    Ownership and mode changes are best-effort.
    """
    try:
        doc = load_compose_file(compose_path)
    except (OSError, yaml.YAMLError, ComposeParseError) as exc:
        logger.warning(
            "compose:ownership:parse-failed app_id=%s path=%s error=%s", app_id, compose_path, exc
        )
        return

    for service_name, service in doc["services"].items():
        if not isinstance(service, dict):
            continue
        user = parse_numeric_user(service.get("user"))
        if not user:
            continue
        for volume in service.get("volumes") or []:
            if isinstance(volume, str):
                source = volume.split(":")[0]
            elif isinstance(volume, dict):
                source = volume.get("source")
            else:
                source = None
            if not source:
                continue
            host_path = _resolve_app_data_source(str(source), env)
            if not host_path:
                continue
            try:
                os.makedirs(host_path, exist_ok=True)
                os.chown(host_path, user[0], user[1])
            except OSError as exc:
                logger.warning(
                    "compose:ownership:chown-failed app_id=%s service=%s path=%s uid=%s gid=%s error=%s",
                    app_id,
                    service_name,
                    host_path,
                    user[0],
                    user[1],
                    exc,
                )
            try:
                os.chmod(host_path, 0o775)
            except OSError as exc:
                logger.debug("compose:ownership:chmod-failed path=%s error=%s", host_path, exc)
