from datetime import datetime
from typing import Dict, List, Optional

from pydantic import BaseModel, Field

COMPOSE_PROJECT_LABEL = "com.docker.compose.project"
COMPOSE_SERVICE_LABEL = "com.docker.compose.service"


class Container(BaseModel):
    Id: str
    Name: str
    Image: str
    Created: Optional[datetime] = None
    State: str
    Status: str
    # "80/tcp": [{"HostIp": "0.0.0.0", "HostPort": "8080"}]
    Ports: Dict[str, Optional[List[Dict[str, str]]]] = Field(default_factory=dict)
    Labels: Dict[str, str] = Field(default_factory=dict)

    @property
    def compose_project(self) -> Optional[str]:
        return self.Labels.get(COMPOSE_PROJECT_LABEL) or None

    @property
    def compose_service(self) -> Optional[str]:
        return self.Labels.get(COMPOSE_SERVICE_LABEL) or None

    @property
    def is_running(self) -> bool:
        return self.State.lower() == "running"
