from typing import List, Optional

from pydantic import BaseModel

from appdeck.appstore.models import (
    AppStatus,
    AppUpdateInfo,
    InstalledApp,
    TrashedApp,
)
from appdeck.jobs.models import Job


class BaseResponse(BaseModel):
    status: str = "success"
    message: Optional[str] = None


class SuccessResponse(BaseResponse):
    pass


class ErrorResponse(BaseResponse):
    status: str = "error"


class JobInfo(BaseModel):
    job_id: str
    message: Optional[str] = None


class JobResponse(BaseResponse):
    data: JobInfo


class JobListResponse(BaseResponse):
    data: List[Job] = []


class JobDetailResponse(BaseResponse):
    data: Job


class AppUninstallRequest(BaseModel):
    remove_app_data: bool = False


class AppListResponse(BaseResponse):
    data: List[InstalledApp] = []


class AppDetailResponse(BaseResponse):
    data: InstalledApp


class AppStatusInfo(BaseModel):
    app_id: str
    status: AppStatus


class AppStatusResponse(BaseResponse):
    data: AppStatusInfo


class WebUIInfo(BaseModel):
    app_id: str
    url: Optional[str] = None


class WebUIResponse(BaseResponse):
    data: WebUIInfo


class LogsInfo(BaseModel):
    app_id: str
    lines: int
    logs: str


class LogsResponse(BaseResponse):
    data: LogsInfo


class TrashListResponse(BaseResponse):
    data: List[TrashedApp] = []


class UpdateListResponse(BaseResponse):
    data: List[AppUpdateInfo] = []


class UpdateInfoResponse(BaseResponse):
    data: AppUpdateInfo
