import logging
import time
from typing import Callable, Optional, Protocol

from appdeck.appstore.models import ProgressEvent, ProgressStatus

logger = logging.getLogger(__name__)

PULL_BASE = 0.35
PULL_SPAN = 0.5
PULL_CEILING = 0.85
PULL_EVENTS_FOR_SPAN = 40

PULL_VOCABULARY = ("download", "extract", "pulling", "pull complete")


class ProgressSink(Protocol):
    async def emit(self, event: ProgressEvent) -> None: ...


class NullProgressSink:
    async def emit(self, event: ProgressEvent) -> None:
        logger.debug(
            "progress app_id=%s value=%.2f status=%s message=%s",
            event.app_id,
            event.progress,
            event.status.value,
            event.message,
        )


class JobProgressSink:
    """Forwards progress events to a JobManager job stream."""

    def __init__(self, job_manager, job_id: str):
        self.job_manager = job_manager
        self.job_id = job_id

    async def emit(self, event: ProgressEvent) -> None:
        await self.job_manager.emit_progress(self.job_id, event)


def pull_progress(events: int) -> float:
    return min(PULL_CEILING, PULL_BASE + (events / PULL_EVENTS_FOR_SPAN) * PULL_SPAN)


def is_pull_activity(line: str, is_stderr: bool) -> bool:
    """Compose prints layer progress on stderr; stdout lines need pull vocabulary."""
    if is_stderr:
        return True
    lower = line.lower()
    return any(word in lower for word in PULL_VOCABULARY)


class ProgressReporter:
    """Emits the progress of one install/update attempt.

    Values never decrease and are clamped to [0, 1]. Throttled reports
    are dropped when they arrive within ``interval`` seconds of the last
    emission. Terminal reports always go out at exactly 1.0.
    """

    def __init__(
        self,
        sink: Optional[ProgressSink],
        app_id: str,
        container_name: str,
        name: str,
        icon: str,
        interval: float = 0.2,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.sink = sink or NullProgressSink()
        self.app_id = app_id
        self.container_name = container_name
        self.name = name
        self.icon = icon
        self.interval = interval
        self.clock = clock
        self.value = 0.0
        self.finished = False
        self._last_emit: Optional[float] = None

    async def _emit(self, progress: float, status: ProgressStatus, message: str):
        event = ProgressEvent(
            app_id=self.app_id,
            container_name=self.container_name,
            name=self.name,
            icon=self.icon,
            progress=progress,
            status=status,
            message=message,
        )
        self._last_emit = self.clock()
        try:
            await self.sink.emit(event)
        except Exception:
            logger.exception("progress:emit-failed app_id=%s", self.app_id)

    async def report(
        self,
        progress: float,
        message: str,
        status: ProgressStatus = ProgressStatus.RUNNING,
        throttle: bool = False,
    ) -> bool:
        """Emit a non-terminal update. Returns False when nothing was sent."""
        if self.finished:
            return False
        if throttle and self._last_emit is not None:
            if self.clock() - self._last_emit < self.interval:
                return False
        self.value = max(self.value, min(1.0, max(0.0, progress)))
        await self._emit(self.value, status, message)
        return True

    async def complete(self, message: str):
        await self._finish(ProgressStatus.COMPLETED, message)

    async def fail(self, message: str):
        await self._finish(ProgressStatus.ERROR, message)

    async def _finish(self, status: ProgressStatus, message: str):
        if self.finished:
            return
        self.finished = True
        self.value = 1.0
        await self._emit(1.0, status, message)
