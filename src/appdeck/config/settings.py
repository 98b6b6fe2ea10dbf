import os
from typing import Dict, List, Mapping, Optional


def _split_paths(value: str) -> List[str]:
    return [item for item in value.split(os.pathsep) if item.strip()]


class Settings:
    """Runtime configuration for appdeck.

    Every value is read once from the environment when the instance is
    created. Services receive the instance explicitly instead of reading
    ``os.environ`` on their own.
    """

    def __init__(self, environ: Optional[Mapping[str, str]] = None, **overrides):
        env = dict(os.environ if environ is None else environ)
        self.environ: Dict[str, str] = env

        self.working_directory = env.get("APPDECK_WORKDIR", os.getcwd())
        self.data_root = env.get("APPDECK_DATA_ROOT", "/DATA")
        self.app_data_directory = env.get(
            "APPDECK_APP_DATA_DIRECTORY", os.path.join(self.data_root, "AppData")
        )
        self.trash_directory = env.get(
            "APPDECK_TRASH_DIRECTORY", os.path.join(self.data_root, "AppTrash")
        )
        self.installed_apps_root = env.get(
            "APPDECK_INSTALLED_APPS_ROOT",
            os.path.join(self.working_directory, "installed-apps"),
        )
        self.catalog_roots = _split_paths(
            env.get(
                "APPDECK_CATALOG_ROOTS",
                os.pathsep.join(
                    [
                        os.path.join(self.working_directory, "external-apps"),
                        os.path.join(self.working_directory, "internal-apps"),
                    ]
                ),
            )
        )
        self.container_prefix = env.get("APPDECK_CONTAINER_PREFIX", "")
        self.docker_binary = env.get("APPDECK_DOCKER_BINARY", "docker")
        self.database_url = env.get("APPDECK_DATABASE_URL", "sqlite:///appdeck.db")

        self.device_hostname = env.get("DEVICE_HOSTNAME", "")
        self.domain = (
            env.get("APPDECK_DOMAIN")
            or env.get("APPDECK_HOST")
            or env.get("APPDECK_HTTP_HOST")
            or env.get("HOSTNAME")
            or ""
        )
        self.https = env.get("APPDECK_HTTPS", "false").lower() == "true"

        self.pull_progress_interval = float(env.get("APPDECK_PULL_PROGRESS_INTERVAL", "0.2"))
        self.detect_attempts = int(env.get("APPDECK_DETECT_ATTEMPTS", "3"))
        self.detect_delay = float(env.get("APPDECK_DETECT_DELAY", "1"))
        self.health_attempts = int(env.get("APPDECK_HEALTH_ATTEMPTS", "5"))
        self.health_delay = float(env.get("APPDECK_HEALTH_DELAY", "2"))

        for key, value in overrides.items():
            if not hasattr(self, key):
                raise AttributeError(f"Unknown setting '{key}'")
            setattr(self, key, value)

    def app_data_dir(self, app_id: str) -> str:
        return os.path.join(self.app_data_directory, app_id)

    def installed_app_dir(self, app_id: str) -> str:
        return os.path.join(self.installed_apps_root, app_id)

    def container_name(self, app_id: str) -> str:
        """Deterministic container name used when none can be detected."""
        return f"{self.container_prefix}{app_id.lower()}"

    @property
    def backups_root(self) -> str:
        return os.path.join(self.installed_apps_root, ".backups")

    @property
    def web_host(self) -> str:
        return self.domain or "localhost"

    @property
    def web_scheme(self) -> str:
        return "https" if self.https else "http"


config = Settings()
