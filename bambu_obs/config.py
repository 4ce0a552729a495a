from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional

import voluptuous as vol

from .const import DEFAULT_FTP_PORT, DEFAULT_MQTT_PORT, DEFAULT_USERNAME

_LOGGER = logging.getLogger(__name__)

_PORT = vol.All(vol.Coerce(int), vol.Range(min=1, max=65535))

BAMBU_SCHEMA = vol.Schema(
    {
        vol.Required("ip_address"): vol.All(str, vol.Strip, vol.Length(min=1)),
        vol.Optional("mqtt_port", default=DEFAULT_MQTT_PORT): _PORT,
        vol.Optional("ftp_port", default=DEFAULT_FTP_PORT): _PORT,
        vol.Optional("username", default=DEFAULT_USERNAME): str,
        vol.Required("password"): str,
        vol.Required("serial"): vol.All(str, vol.Strip, vol.Length(min=1)),
        vol.Optional("path_to_sdp", default=None): vol.Any(None, str),
    }
)

OBS_SCHEMA = vol.Schema(
    {
        vol.Required("ws_address"): vol.All(str, vol.Match(r"^wss?://")),
        vol.Optional("ws_password", default=""): vol.Any(None, str),
        vol.Optional("scene", default="BambuScene"): str,
        vol.Optional("stream_source", default="BambuStreamSource"): str,
        vol.Optional("start_stream_on_startup", default=False): bool,
        vol.Optional("stop_stream_on_printer_idle", default=False): bool,
        vol.Optional("force_create_inputs", default=False): bool,
        vol.Optional("lock_inputs", default=False): bool,
    }
)

APP_SCHEMA = vol.Schema(
    {
        vol.Optional("exit_on_idle", default=True): bool,
        vol.Optional("exit_on_bambu_disconnect", default=False): bool,
        vol.Optional("exit_on_obs_disconnect", default=False): bool,
        vol.Optional("print_scene_items_and_exit", default=False): bool,
        vol.Optional("image_dir", default="images"): str,
        vol.Optional("log_level", default="INFO"): vol.All(
            vol.Upper, vol.In(["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"])
        ),
    }
)

CONFIG_SCHEMA = vol.Schema(
    {
        vol.Required("bambu"): BAMBU_SCHEMA,
        vol.Required("obs"): OBS_SCHEMA,
        vol.Optional("app", default={}): APP_SCHEMA,
    }
)


class ConfigError(Exception):
    """Configuration failed validation."""


@dataclass
class BambuSettings:
    ip_address: str
    password: str
    serial: str
    mqtt_port: int = DEFAULT_MQTT_PORT
    ftp_port: int = DEFAULT_FTP_PORT
    username: str = DEFAULT_USERNAME
    path_to_sdp: Optional[str] = None


@dataclass
class ObsSettings:
    ws_address: str
    ws_password: str = ""
    scene: str = "BambuScene"
    stream_source: str = "BambuStreamSource"
    start_stream_on_startup: bool = False
    stop_stream_on_printer_idle: bool = False
    force_create_inputs: bool = False
    lock_inputs: bool = False


@dataclass
class AppSettings:
    exit_on_idle: bool = True
    exit_on_bambu_disconnect: bool = False
    exit_on_obs_disconnect: bool = False
    print_scene_items_and_exit: bool = False
    image_dir: str = "images"
    log_level: str = "INFO"


@dataclass
class Settings:
    bambu: BambuSettings
    obs: ObsSettings
    app: AppSettings = field(default_factory=AppSettings)

    @classmethod
    def from_dict(cls, raw: dict[str, Any]) -> "Settings":
        try:
            data = CONFIG_SCHEMA(raw)
        except vol.Invalid as e:
            raise ConfigError(f"Invalid configuration: {e}") from e
        obs = dict(data["obs"])
        obs["ws_password"] = obs["ws_password"] or ""
        return cls(
            bambu=BambuSettings(**data["bambu"]),
            obs=ObsSettings(**obs),
            app=AppSettings(**data["app"]),
        )


def load_config(path: str | Path) -> Settings:
    """Read a JSON config file and validate it."""
    path = Path(path)
    _LOGGER.debug("Loading config from %s", path)
    try:
        raw = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, ValueError) as e:
        raise ConfigError(f"Cannot read {path}: {e}") from e
    if not isinstance(raw, dict):
        raise ConfigError(f"{path}: expected a JSON object")
    return Settings.from_dict(raw)
