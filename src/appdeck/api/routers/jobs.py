from typing import Optional

from fastapi import APIRouter, HTTPException, WebSocket, WebSocketDisconnect
from fastapi.logger import logger

from appdeck.api.dtos import JobDetailResponse, JobListResponse
from appdeck.jobs.manager import JobManager

router = APIRouter(prefix="/jobs", tags=["Jobs"])


@router.get("", response_model=JobListResponse)
def list_jobs(app_id: Optional[str] = None):
    jobs = JobManager().list_jobs()
    if app_id:
        jobs = [job for job in jobs if job.app_id == app_id]
    return JobListResponse(data=jobs)


@router.get("/{job_id}", response_model=JobDetailResponse)
def get_job(job_id: str):
    job = JobManager().get_job(job_id)
    if not job:
        raise HTTPException(status_code=404, detail=f"Job '{job_id}' not found")
    return JobDetailResponse(data=job)


@router.websocket("/{job_id}/ws")
async def stream_job(websocket: WebSocket, job_id: str):
    """Stream a job's log and progress entries until it finishes."""
    await websocket.accept()
    manager = JobManager()
    if not manager.get_job(job_id):
        await websocket.close(code=4404)
        return
    try:
        async for entry in manager.subscribe(job_id):
            await websocket.send_json(entry.model_dump(mode="json"))
        await websocket.close()
    except WebSocketDisconnect:
        logger.info("Job stream for %s disconnected", job_id)
