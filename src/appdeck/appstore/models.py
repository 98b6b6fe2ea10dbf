from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, model_validator

DEFAULT_APP_ICON = "/default-application-icon.png"
FALLBACK_APP_NAME = "Application"


class PortConfig(BaseModel):
    container: str
    published: str
    protocol: str = "tcp"


class VolumeConfig(BaseModel):
    container: str
    source: str


class EnvConfig(BaseModel):
    key: str
    value: str = ""


class InstallConfig(BaseModel):
    ports: List[PortConfig] = Field(default_factory=list)
    volumes: List[VolumeConfig] = Field(default_factory=list)
    environment: List[EnvConfig] = Field(default_factory=list)
    web_ui_port: Optional[str] = None
    network_mode: Optional[str] = None


class AppMeta(BaseModel):
    name: Optional[str] = None
    icon: Optional[str] = None


class DeployOptions(BaseModel):
    app_id: str
    # Raw compose YAML (custom deploy, edit/redeploy)
    compose_content: Optional[str] = None
    # Path to an existing compose file (store install)
    compose_path: Optional[str] = None
    config: Optional[InstallConfig] = None
    meta: Optional[AppMeta] = None
    store_id: Optional[str] = None
    container_meta: Optional[Dict[str, Any]] = None

    @model_validator(mode="after")
    def check_single_compose_source(self):
        if self.compose_content and self.compose_path:
            raise ValueError("Give either compose_content or compose_path, not both")
        return self


class DeployResult(BaseModel):
    success: bool
    error: Optional[str] = None


class ProgressStatus(str, Enum):
    STARTING = "starting"
    RUNNING = "running"
    COMPLETED = "completed"
    ERROR = "error"


class ProgressEvent(BaseModel):
    type: str = "install-progress"
    app_id: str
    container_name: str
    name: str
    icon: str
    progress: float
    status: ProgressStatus = ProgressStatus.RUNNING
    message: str = ""


class AppStatus(str, Enum):
    RUNNING = "running"
    STOPPED = "stopped"
    ERROR = "error"


class InstalledApp(BaseModel):
    id: str
    app_id: str
    name: str
    icon: str
    status: AppStatus
    web_ui_port: Optional[int] = None
    container_name: str
    containers: List[str] = Field(default_factory=list)
    installed_at: int
    store_id: Optional[str] = None
    version: Optional[str] = None


class TrashedApp(BaseModel):
    app_id: str
    trashed_at: int
    path: str


class AppUpdateInfo(BaseModel):
    app_id: str
    container_name: str
    name: str
    icon: str
    installed_version: Optional[str] = None
    available_version: Optional[str] = None
    has_update: bool = False
    store_id: Optional[str] = None


class ResolvedCompose(BaseModel):
    app_dir: str
    compose_path: str


class SanitizedCompose(BaseModel):
    executable_path: str
    canonical_path: str

    @property
    def sanitized(self) -> bool:
        return self.executable_path != self.canonical_path
