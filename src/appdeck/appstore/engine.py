import logging
from typing import Optional

from appdeck.appstore.errors import EngineError
from appdeck.config.settings import Settings
from appdeck.docker.compose import ComposeCLI
from appdeck.docker.containers import DockerManager

logger = logging.getLogger(__name__)


class AppEngine:
    """Project-level (compose CLI) and container-level (Engine API) access.

    The Docker client is created on first use so services can be built
    without a reachable daemon.
    """

    def __init__(
        self,
        settings: Settings,
        compose: Optional[ComposeCLI] = None,
        docker_manager: Optional[DockerManager] = None,
    ):
        self.settings = settings
        self.compose = compose or ComposeCLI(settings)
        self._docker = docker_manager

    @property
    def docker(self) -> DockerManager:
        if self._docker is None:
            self._docker = DockerManager()
        return self._docker

    async def ensure_removed(self, app_dir: str, project: str, container_name: str) -> bool:
        """Make sure no container of a previous deployment is left running.

        The compose project is torn down first; only when that fails is the
        expected container force-removed. Nothing to remove counts as success.
        """
        try:
            await self.compose.down(app_dir, project)
            logger.info("engine:ensure-removed:down project=%s", project)
            return True
        except EngineError as exc:
            logger.info(
                "engine:ensure-removed:down-failed project=%s stderr=%s",
                project,
                exc.stderr,
            )

        try:
            removed = self.docker.remove_container(container_name)
        except Exception as exc:
            logger.warning(
                "engine:ensure-removed:rm-failed container=%s error=%s", container_name, exc
            )
            return False
        logger.info(
            "engine:ensure-removed:rm container=%s removed=%s", container_name, removed
        )
        return True
