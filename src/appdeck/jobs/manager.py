import asyncio
import logging
import uuid
from datetime import datetime
from typing import AsyncIterator, Awaitable, Callable, Dict, List, Optional

from appdeck.appstore.models import ProgressEvent, ProgressStatus
from appdeck.jobs.models import Job, JobLog, JobStatus

logger = logging.getLogger(__name__)

Worker = Callable[[str, "JobManager"], Awaitable[Optional[bool]]]


class JobManager:
    """Process-wide registry of background app jobs (deploy, update, uninstall).

    Each job keeps its full log in memory; subscribers get the history
    followed by live entries until the job finishes.
    """

    _instance = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
            cls._instance._initialized = False
        return cls._instance

    def __init__(self):
        if self._initialized:
            return
        self._jobs: Dict[str, Job] = {}
        self._queues: Dict[str, List[asyncio.Queue]] = {}
        self._initialized = True

    def _require(self, job_id: str) -> Job:
        job = self._jobs.get(job_id)
        if job is None:
            raise ValueError(f"Job {job_id} not found")
        return job

    def get_job(self, job_id: str) -> Optional[Job]:
        return self._jobs.get(job_id)

    def list_jobs(self) -> List[Job]:
        return sorted(self._jobs.values(), key=lambda job: job.created_at, reverse=True)

    def create_external_job(self, command: str, app_id: Optional[str] = None) -> str:
        """Register a job whose work is driven by ``run_external_job``."""
        job_id = str(uuid.uuid4())
        if app_id is None and ":" in command:
            app_id = command.split(":", 1)[1] or None
        self._jobs[job_id] = Job(id=job_id, command=command, app_id=app_id)
        self._queues[job_id] = []
        logger.debug("jobs:created id=%s command=%s", job_id, command)
        return job_id

    async def _append(self, job: Job, entry: JobLog):
        job.logs.append(entry)
        await self._publish(job.id, entry)

    async def log(self, job_id: str, output: str, error: bool = False):
        await self._append(self._require(job_id), JobLog(output=output, error=error))

    async def emit_progress(self, job_id: str, event: ProgressEvent):
        job = self._require(job_id)
        job.progress = event.progress
        await self._append(
            job,
            JobLog(
                output=event.message,
                error=event.status == ProgressStatus.ERROR,
                progress=event.progress,
                status=event.status.value,
            ),
        )

    async def run_external_job(self, job_id: str, worker: Worker):
        """Await ``worker`` and record the outcome on the job.

        A worker returning ``False`` marks the job failed; so does an
        exception, which is also appended to the job log.
        """
        job = self._require(job_id)
        job.status = JobStatus.RUNNING
        logger.info("jobs:start id=%s command=%s", job_id, job.command)
        try:
            succeeded = await worker(job_id, self) is not False
        except Exception as exc:
            logger.exception("jobs:failed id=%s command=%s", job_id, job.command)
            succeeded = False
            await self.log(job_id, f"Error: {exc}", error=True)

        job.status = JobStatus.COMPLETED if succeeded else JobStatus.FAILED
        job.exit_code = 0 if succeeded else 1
        job.finished_at = datetime.now()
        logger.info("jobs:finished id=%s status=%s", job_id, job.status.value)
        await self._publish(job_id, None)

    async def _publish(self, job_id: str, entry: Optional[JobLog]):
        for queue in self._queues.get(job_id, []):
            await queue.put(entry)

    async def subscribe(self, job_id: str) -> AsyncIterator[JobLog]:
        """Yield the job's log so far, then live entries until it finishes."""
        job = self._require(job_id)
        queue: asyncio.Queue = asyncio.Queue()
        self._queues.setdefault(job_id, []).append(queue)
        try:
            for entry in list(job.logs):
                yield entry
            if job.finished:
                return
            while True:
                entry = await queue.get()
                if entry is None:
                    return
                yield entry
        finally:
            listeners = self._queues.get(job_id, [])
            if queue in listeners:
                listeners.remove(queue)
