import os
import stat

from appdeck.appstore.environment import (
    UMBREL_SECRETS_FILE,
    EnvironmentBuilder,
    detect_convention,
    normalize_domain,
)
from appdeck.appstore.models import EnvConfig, InstallConfig, PortConfig, VolumeConfig


def test_normalize_domain():
    assert normalize_domain("https://box.example:8443/ui") == "box.example"
    assert normalize_domain("box.local") == "box.local"
    assert normalize_domain("[fe80::1]:8080") == "[fe80::1]"
    assert normalize_domain("") is None


def test_detect_convention():
    assert detect_convention("umbrel") == "umbrel"
    assert detect_convention(None, "/apps/umbrel-apps/btc/docker-compose.yml") == "umbrel"
    assert detect_convention(None, "/apps/x/docker-compose.yml", "store-1") == "casaos"
    assert detect_convention() == "custom"


def test_build_defaults(settings):
    env = EnvironmentBuilder(settings).build("nextcloud")

    assert env["APP_ID"] == "nextcloud"
    assert env["AppID"] == "nextcloud"
    assert env["APP_DATA_DIR"] == settings.app_data_dir("nextcloud")
    assert env["DEVICE_HOSTNAME"] == "box"
    assert env["DEVICE_DOMAIN_NAME"] == "box.local"
    assert env["APP_DOMAIN"] == "box.local"
    assert env["TZ"] == "UTC"
    assert "APP_PASSWORD" not in env


def test_process_environment_is_not_overridden(settings):
    settings.environ = {"TZ": "Europe/Berlin", "APP_DOMAIN": "cloud.example"}

    env = EnvironmentBuilder(settings).build("nextcloud")

    assert env["TZ"] == "Europe/Berlin"
    assert env["APP_DOMAIN"] == "cloud.example"


def test_config_overrides_apply_last(settings):
    config = InstallConfig(
        ports=[PortConfig(container="80", published="8080")],
        volumes=[VolumeConfig(container="/var/www/html", source="/srv/nc")],
        environment=[EnvConfig(key="TZ", value="Asia/Tokyo")],
    )

    env = EnvironmentBuilder(settings).build("nextcloud", config)

    assert env["PORT_80"] == "8080"
    assert env["VOLUME__VAR_WWW_HTML"] == "/srv/nc"
    assert env["TZ"] == "Asia/Tokyo"


def test_umbrel_secrets_are_generated_once(settings):
    builder = EnvironmentBuilder(settings)

    first = builder.build("bitcoin", convention="umbrel")
    second = builder.build("bitcoin", convention="umbrel")

    secrets_path = os.path.join(settings.app_data_dir("bitcoin"), UMBREL_SECRETS_FILE)
    assert len(first["APP_PASSWORD"]) == 24
    assert len(first["APP_SEED"]) == 64
    assert first["APP_PASSWORD"] == second["APP_PASSWORD"]
    assert first["APP_SEED"] == second["APP_SEED"]
    assert stat.S_IMODE(os.stat(secrets_path).st_mode) == 0o600
    assert first["TOR_PROXY_PORT"] == "9050"
