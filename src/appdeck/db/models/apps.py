import json
import logging
from datetime import datetime
from typing import Any, List, Optional, Type, TypeVar

from pydantic import BaseModel, ConfigDict, Field
from pydantic import ValidationError as PydanticValidationError

from appdeck.appstore.models import EnvConfig, InstallConfig, PortConfig, VolumeConfig

logger = logging.getLogger(__name__)

M = TypeVar("M", bound=BaseModel)


class PersistedInstallConfig(InstallConfig):
    """Install config as stored on an installed app record."""

    model_config = ConfigDict(extra="ignore")

    compose_path: Optional[str] = None
    deploy_method: str = "compose"
    containers: List[str] = Field(default_factory=list)


class ContainerMeta(BaseModel):
    model_config = ConfigDict(extra="ignore")

    image: Optional[str] = None
    ports: List[PortConfig] = Field(default_factory=list)
    volumes: List[VolumeConfig] = Field(default_factory=list)
    environment: List[EnvConfig] = Field(default_factory=list)


class Store(BaseModel):
    id: str
    slug: str
    name: Optional[str] = None
    format: str = "custom"
    created_at: Optional[datetime] = None


class CatalogApp(BaseModel):
    id: Optional[int] = None
    app_id: str
    store_id: Optional[str] = None
    title: Optional[str] = None
    name: Optional[str] = None
    icon: Optional[str] = None
    version: Optional[str] = None
    port: Optional[str] = None
    path: Optional[str] = None
    compose_path: Optional[str] = None
    dependencies: List[str] = Field(default_factory=list)
    container: Optional[ContainerMeta] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class InstalledAppRecord(BaseModel):
    id: Optional[int] = None
    app_id: str
    container_name: str
    name: str
    icon: str
    install_config: Optional[PersistedInstallConfig] = None
    store_id: Optional[str] = None
    container: Optional[ContainerMeta] = None
    version: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


def load_json_column(value: Any, model: Type[M]) -> Optional[M]:
    """Validate a JSON column against ``model``; invalid blobs are dropped."""
    if value is None or value == "":
        return None
    try:
        if isinstance(value, (str, bytes)):
            value = json.loads(value)
        return model.model_validate(value)
    except (ValueError, PydanticValidationError) as exc:
        logger.warning("db:json-column:invalid model=%s error=%s", model.__name__, exc)
        return None


def load_json_list(value: Any) -> List[str]:
    if value is None or value == "":
        return []
    if isinstance(value, (str, bytes)):
        try:
            value = json.loads(value)
        except ValueError:
            return []
    if not isinstance(value, list):
        return []
    return [item for item in value if isinstance(item, str)]
