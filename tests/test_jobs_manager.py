import pytest

from appdeck.appstore.models import ProgressEvent, ProgressStatus
from appdeck.appstore.progress import JobProgressSink
from appdeck.jobs.manager import JobManager
from appdeck.jobs.models import JobStatus


def _event(progress, status=ProgressStatus.RUNNING, message="working"):
    return ProgressEvent(
        app_id="web",
        container_name="web",
        name="Web",
        icon="icon.png",
        progress=progress,
        status=status,
        message=message,
    )


def test_job_manager_is_a_singleton():
    assert JobManager() is JobManager()


@pytest.mark.asyncio
async def test_progress_events_become_job_logs():
    manager = JobManager()
    job_id = manager.create_external_job("apps.deploy:web")

    async def worker(current_job_id, jobs):
        sink = JobProgressSink(jobs, current_job_id)
        await sink.emit(_event(0.5))
        await sink.emit(_event(1.0, ProgressStatus.COMPLETED, "done"))
        return True

    await manager.run_external_job(job_id, worker)

    job = manager.get_job(job_id)
    assert job.status == JobStatus.COMPLETED
    assert job.exit_code == 0
    assert job.progress == 1.0
    assert [log.progress for log in job.logs] == [0.5, 1.0]
    assert job.logs[-1].status == "completed"


@pytest.mark.asyncio
async def test_worker_returning_false_fails_the_job():
    manager = JobManager()
    job_id = manager.create_external_job("apps.update:web")

    async def worker(current_job_id, jobs):
        await jobs.emit_progress(current_job_id, _event(1.0, ProgressStatus.ERROR, "Update failed"))
        return False

    await manager.run_external_job(job_id, worker)

    job = manager.get_job(job_id)
    assert job.status == JobStatus.FAILED
    assert job.exit_code == 1
    assert job.logs[-1].error is True
    assert job.finished_at is not None


@pytest.mark.asyncio
async def test_worker_exception_is_logged_on_the_job():
    manager = JobManager()
    job_id = manager.create_external_job("apps.uninstall:web")

    async def worker(current_job_id, jobs):
        raise RuntimeError("boom")

    await manager.run_external_job(job_id, worker)

    job = manager.get_job(job_id)
    assert job.status == JobStatus.FAILED
    assert job.logs[-1].output == "Error: boom"


@pytest.mark.asyncio
async def test_subscribe_replays_history_of_finished_job():
    manager = JobManager()
    job_id = manager.create_external_job("apps.deploy:web")

    async def worker(current_job_id, jobs):
        await jobs.log(current_job_id, "hello")
        return True

    await manager.run_external_job(job_id, worker)

    seen = [entry.output async for entry in manager.subscribe(job_id)]
    assert seen == ["hello"]


def test_app_id_is_taken_from_command_suffix():
    manager = JobManager()

    derived = manager.get_job(manager.create_external_job("apps.update:jellyfin"))
    explicit = manager.get_job(manager.create_external_job("apps.deploy", app_id="web"))

    assert derived.app_id == "jellyfin"
    assert explicit.app_id == "web"
