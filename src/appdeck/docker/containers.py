import logging
import re
from datetime import datetime
from typing import Dict, List, Optional

import docker
from docker import errors

from appdeck.docker.models import Container

logger = logging.getLogger(__name__)

_FRACTION = re.compile(r"\.(\d{6})\d*")


def parse_created(value) -> Optional[datetime]:
    """Parse the engine's RFC 3339 timestamp (nanosecond precision)."""
    if not value or not isinstance(value, str):
        return None
    normalized = _FRACTION.sub(r".\1", value.replace("Z", "+00:00"))
    try:
        return datetime.fromisoformat(normalized)
    except ValueError:
        return None


def _host_port(bindings) -> Optional[int]:
    for binding in bindings or []:
        host_port = (binding or {}).get("HostPort")
        if host_port and str(host_port).isdigit():
            return int(host_port)
    return None


def resolve_host_port(ports: Dict, preferred: Optional[str] = None) -> Optional[int]:
    """Pick the published host port for a container's port map.

    Order: the mapping of ``preferred`` (any protocol), the lowest
    published TCP port, then any published port at all.
    """
    if not ports:
        return None

    if preferred:
        prefix = f"{str(preferred).strip()}/"
        for key, bindings in ports.items():
            if key.startswith(prefix):
                port = _host_port(bindings)
                if port is not None:
                    return port

    tcp_keys = []
    for key in ports:
        number, _, protocol = key.partition("/")
        if (protocol or "tcp") == "tcp" and number.isdigit():
            tcp_keys.append((int(number), key))
    for _, key in sorted(tcp_keys):
        port = _host_port(ports[key])
        if port is not None:
            return port

    for bindings in ports.values():
        port = _host_port(bindings)
        if port is not None:
            return port
    return None


class DockerManager:
    """Container-level operations through the Docker Engine API."""

    def __init__(self, client=None):
        self.client = client or docker.from_env()

    def _to_model(self, c) -> Container:
        try:
            image = c.image.tags[0] if c.image and c.image.tags else "N/A"
        except errors.ImageNotFound:
            image = "Not Found (404)"

        attrs = c.attrs or {}
        return Container(
            Id=c.id,
            Name=(c.name or "N/A").lstrip("/"),
            Image=image,
            Created=parse_created(attrs.get("Created")),
            State=attrs.get("State", {}).get("Status") or c.status or "unknown",
            Status=c.status or "unknown",
            Ports=attrs.get("NetworkSettings", {}).get("Ports") or {},
            Labels=c.labels or {},
        )

    def list_containers(self, all=True, **kwargs) -> List[Container]:
        """List Docker containers, stopped ones included by default."""
        return [self._to_model(c) for c in self.client.containers.list(all=all, **kwargs)]

    def get_container(self, name: str) -> Optional[Container]:
        try:
            return self._to_model(self.client.containers.get(name))
        except errors.NotFound:
            return None

    def get_status(self, name: str) -> Optional[str]:
        """Engine state (``running``, ``exited``...) or None when missing."""
        container = self.get_container(name)
        return container.State if container else None

    def get_host_port(self, name: str, preferred: Optional[str] = None) -> Optional[int]:
        container = self.get_container(name)
        if not container:
            return None
        return resolve_host_port(container.Ports, preferred)

    def get_logs(self, name: str, tail: int = 100) -> Optional[str]:
        """Combined stdout/stderr tail, or None when the container is missing."""
        try:
            container = self.client.containers.get(name)
        except errors.NotFound:
            return None
        output = container.logs(stdout=True, stderr=True, tail=tail)
        return output.decode("utf-8", errors="replace")

    def start_container(self, name: str):
        self.client.containers.get(name).start()

    def stop_container(self, name: str):
        self.client.containers.get(name).stop()

    def restart_container(self, name: str):
        self.client.containers.get(name).restart()

    def container_action(self, name: str, action: str):
        handlers = {
            "start": self.start_container,
            "stop": self.stop_container,
            "restart": self.restart_container,
        }
        if action not in handlers:
            raise ValueError(f"Unsupported container action '{action}'")
        handlers[action](name)

    def remove_container(self, name: str) -> bool:
        """Force-remove a container. Returns False when it does not exist."""
        try:
            container = self.client.containers.get(name)
        except errors.NotFound:
            return False
        container.remove(force=True)
        logger.info("docker:remove name=%s", name)
        return True
