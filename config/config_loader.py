import yaml
from typing import Dict, Any, List, Optional

from pydantic import BaseModel, Field, field_validator, model_validator


class ConfigLoader:
    def __init__(self, config_path: str):
        self.config_path = config_path


    def load(self) -> Dict[str, Any]:
        with open(self.config_path, "r") as f:
            return yaml.safe_load(f) or {}


class ToggleSettings(BaseModel):
    """
    Runtime settings. Defaults are overridden by the YAML settings file, which
    is overridden by command line flags.
    """
    interval: int = Field(2, ge=1)
    retry: int = Field(2, ge=1)
    config_file: str = "toggle.conf"
    status_port: int = Field(0, ge=0, lt=65536)
    follower: bool = False
    main_address: str = ""
    testing: bool = False

    connect_timeout: float = Field(2.0, gt=0)
    command_timeout: float = Field(2.0, gt=0)
    retry_backoff: float = Field(5.0, gt=0)
    sync_timeout: float = Field(2.0, gt=0)

    nginx_dir: str = "/etc/nginx/tcpconf.d"
    nginx_conf_file: str = "toggle"
    reload_command: List[str] = Field(default_factory=lambda: ["systemctl", "reload", "nginx"])

    log_level: str = "INFO"

    @field_validator("log_level")
    @classmethod
    def _upper_level(cls, level: str) -> str:
        return level.upper()

    @model_validator(mode="after")
    def _follower_needs_main(self):
        if self.follower:
            if self.status_port == 0:
                raise ValueError("a follower needs the status port the main toggle listens on")
            if not self.main_address.strip():
                raise ValueError("a follower needs the address of the main toggle")
        return self

    @classmethod
    def build(cls, settings_path: Optional[str] = None, overrides: Optional[Dict[str, Any]] = None) -> "ToggleSettings":
        values: Dict[str, Any] = {}
        if settings_path:
            values.update(ConfigLoader(settings_path).load())
        for key, value in (overrides or {}).items():
            if value is not None:
                values[key] = value
        return cls(**values)
