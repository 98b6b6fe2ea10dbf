import asyncio
import logging
from typing import Awaitable, Callable

logger = logging.getLogger(__name__)


async def wait_until_running(
    docker_manager,
    container_name: str,
    attempts: int = 5,
    delay: float = 2,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> bool:
    """Poll the container state until it reports ``running``."""
    for attempt in range(1, attempts + 1):
        try:
            state = docker_manager.get_status(container_name)
        except Exception as exc:
            logger.warning(
                "health:inspect-failed container=%s attempt=%s error=%s",
                container_name,
                attempt,
                exc,
            )
            state = None
        if state == "running":
            logger.info("health:running container=%s attempt=%s", container_name, attempt)
            return True
        if attempt < attempts:
            await sleep(delay)
    logger.warning("health:not-running container=%s attempts=%s", container_name, attempts)
    return False
