import asyncio
from typing import Optional

from fastapi import APIRouter, HTTPException, Query
from fastapi.logger import logger

from appdeck.api.dtos import (
    AppDetailResponse,
    AppListResponse,
    AppStatusResponse,
    AppUninstallRequest,
    JobResponse,
    LogsResponse,
    SuccessResponse,
    TrashListResponse,
    UpdateInfoResponse,
    UpdateListResponse,
    WebUIResponse,
)
from appdeck.appstore.manager import AppManager
from appdeck.appstore.models import DeployOptions
from appdeck.appstore.progress import JobProgressSink
from appdeck.appstore.validation import is_valid_app_id
from appdeck.jobs.manager import JobManager

router = APIRouter(prefix="/apps", tags=["Apps"])


def _require_valid(app_id: str):
    if not is_valid_app_id(app_id):
        raise HTTPException(status_code=400, detail="Invalid app ID")


@router.get("", response_model=AppListResponse)
async def list_installed_apps():
    apps = await AppManager().list_installed_apps()
    return AppListResponse(data=apps)


@router.post("/deploy", response_model=JobResponse, status_code=202)
async def deploy_app(options: DeployOptions):
    _require_valid(options.app_id)
    job_manager = JobManager()
    job_id = job_manager.create_external_job(f"apps.deploy:{options.app_id}")

    async def worker(current_job_id: str, manager: JobManager):
        result = await AppManager().deploy(options, JobProgressSink(manager, current_job_id))
        if not result.success:
            await manager.log(current_job_id, f"Error: {result.error}", error=True)
        return result.success

    asyncio.create_task(job_manager.run_external_job(job_id, worker))
    return JobResponse.model_validate(
        {
            "message": f"Deployment started for {options.app_id}",
            "data": {"job_id": job_id},
        }
    )


@router.get("/trash", response_model=TrashListResponse)
async def list_trash():
    return TrashListResponse(data=await AppManager().list_trashed_apps())


@router.delete("/trash", response_model=SuccessResponse)
async def empty_trash(app_id: Optional[str] = Query(None, description="Only this app's entries")):
    if app_id is not None:
        _require_valid(app_id)
    if not await AppManager().empty_trash(app_id):
        raise HTTPException(status_code=500, detail="Failed to empty trash")
    return SuccessResponse(message="Trash emptied")


@router.post("/trash/{app_id}/restore", response_model=SuccessResponse)
async def restore_from_trash(app_id: str):
    _require_valid(app_id)
    if not await AppManager().restore_from_trash(app_id):
        raise HTTPException(status_code=409, detail=f"Could not restore data for '{app_id}'")
    return SuccessResponse(message=f"Data restored for {app_id}")


@router.get("/updates", response_model=UpdateListResponse)
async def check_updates(only_available: bool = Query(False)):
    updates = await AppManager().check_updates()
    if only_available:
        updates = [u for u in updates if u.has_update]
    return UpdateListResponse(data=updates)


@router.delete("/containers/{name}", response_model=SuccessResponse)
async def remove_container(name: str):
    _require_valid(name)
    if not await AppManager().remove_container(name):
        raise HTTPException(status_code=409, detail=f"Container '{name}' was not removed")
    return SuccessResponse(message=f"Container {name} removed")


@router.get("/{app_id}", response_model=AppDetailResponse)
async def get_app(app_id: str):
    _require_valid(app_id)
    app = await AppManager().get_app_by_id(app_id)
    if not app:
        raise HTTPException(status_code=404, detail=f"App '{app_id}' not found")
    return AppDetailResponse(data=app)


@router.get("/{app_id}/status", response_model=AppStatusResponse)
async def get_status(app_id: str):
    _require_valid(app_id)
    status = await AppManager().get_status(app_id)
    return AppStatusResponse.model_validate({"data": {"app_id": app_id, "status": status}})


@router.get("/{app_id}/web-ui", response_model=WebUIResponse)
async def get_web_ui(app_id: str):
    _require_valid(app_id)
    url = await AppManager().get_web_ui(app_id)
    return WebUIResponse.model_validate({"data": {"app_id": app_id, "url": url}})


@router.get("/{app_id}/logs", response_model=LogsResponse)
async def get_logs(app_id: str, lines: int = Query(100, ge=1, le=10000)):
    _require_valid(app_id)
    logs = await AppManager().get_logs(app_id, lines)
    return LogsResponse.model_validate(
        {"data": {"app_id": app_id, "lines": lines, "logs": logs}}
    )


@router.get("/{app_id}/update", response_model=UpdateInfoResponse)
async def check_update(app_id: str):
    _require_valid(app_id)
    info = await AppManager().check_update(app_id)
    if not info:
        raise HTTPException(status_code=404, detail=f"App '{app_id}' is not installed")
    return UpdateInfoResponse(data=info)


@router.post("/{app_id}/update", response_model=JobResponse, status_code=202)
async def update_app(app_id: str):
    _require_valid(app_id)
    job_manager = JobManager()
    job_id = job_manager.create_external_job(f"apps.update:{app_id}")

    async def worker(current_job_id: str, manager: JobManager):
        return await AppManager().update(app_id, JobProgressSink(manager, current_job_id))

    asyncio.create_task(job_manager.run_external_job(job_id, worker))
    return JobResponse.model_validate(
        {"message": f"Update started for {app_id}", "data": {"job_id": job_id}}
    )


@router.post("/{app_id}/uninstall", response_model=JobResponse, status_code=202)
async def uninstall_app(app_id: str, payload: AppUninstallRequest):
    _require_valid(app_id)
    job_manager = JobManager()
    job_id = job_manager.create_external_job(f"apps.uninstall:{app_id}")

    async def worker(current_job_id: str, manager: JobManager):
        await manager.log(current_job_id, f"Uninstalling {app_id}")
        ok = await AppManager().uninstall(app_id, remove_app_data=payload.remove_app_data)
        await manager.log(
            current_job_id,
            f"App {app_id} uninstalled" if ok else f"Failed to uninstall {app_id}",
            error=not ok,
        )
        return ok

    asyncio.create_task(job_manager.run_external_job(job_id, worker))
    return JobResponse.model_validate(
        {"message": f"Uninstall started for {app_id}", "data": {"job_id": job_id}}
    )


async def _lifecycle(name: str, action: str) -> SuccessResponse:
    _require_valid(name)
    manager = AppManager()
    ok = await getattr(manager, action)(name)
    if not ok:
        logger.error("App %s failed for %s", action, name)
        raise HTTPException(status_code=500, detail=f"Failed to {action} {name}")
    return SuccessResponse(message=f"{name}: {action} succeeded")


@router.post("/{name}/start", response_model=SuccessResponse)
async def start_app(name: str):
    return await _lifecycle(name, "start")


@router.post("/{name}/stop", response_model=SuccessResponse)
async def stop_app(name: str):
    return await _lifecycle(name, "stop")


@router.post("/{name}/restart", response_model=SuccessResponse)
async def restart_app(name: str):
    return await _lifecycle(name, "restart")
