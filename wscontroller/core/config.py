"""Environment-driven configuration with Pydantic v2."""

from typing import List, Literal, Optional
from pathlib import Path
from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Device agent settings driven entirely by environment variables (WSC_*)."""

    # Command server
    server_scheme: Literal["ws", "wss"] = Field(default="ws")
    server_host: str = Field(default="127.0.0.1")
    server_port: int = Field(default=9000, ge=1, le=65535)
    device_path: str = Field(default="/device/")

    # Heartbeat / liveness (seconds)
    heartbeat_interval: float = Field(default=20.0, gt=0)
    heartbeat_timeout: float = Field(default=15.0, gt=0)
    required_failed_checks: int = Field(default=2, ge=1, le=10)
    state_change_cooldown: float = Field(default=5.0, ge=0)
    pong_staleness: float = Field(default=120.0, gt=0)

    # Status refresh and server connection check (seconds, 0 disables the check)
    status_refresh_interval: float = Field(default=300.0, gt=0)
    connection_check_interval: float = Field(default=45.0, ge=0)
    connection_check_timeout: float = Field(default=5.0, gt=0)
    connection_check_grace: float = Field(default=3.0, gt=0)

    # Socket teardown and retries (seconds)
    close_grace: float = Field(default=1.0, gt=0)
    register_retry_delay: float = Field(default=1.0, gt=0)
    open_timeout: float = Field(default=10.0, gt=0)

    # Reconnect backoff
    reconnect_strategy: Literal["capped_exponential", "attempt_bounded"] = Field(default="capped_exponential")
    backoff_base: float = Field(default=5.0, gt=0)
    backoff_factor: float = Field(default=1.5, gt=1.0)
    backoff_max_attempts: int = Field(default=5, ge=1)
    backoff_long_wait: float = Field(default=30.0, gt=0)
    backoff_cap: float = Field(default=120.0, gt=0)
    backoff_max_exponent: int = Field(default=5, ge=0)

    # Command routing
    trigger_phrase: str = Field(default="请切换网络", min_length=1)
    toggle_action: str = Field(default="toggleAirplane", min_length=1)

    # Identity persistence
    identity_file: str = Field(default="data/device_number.txt")
    preferences_file: str = Field(default="data/device_prefs.json")
    device_number: Optional[str] = Field(default=None, pattern=r"^\d{3}$")

    # Network reachability probe (UDP route lookup, nothing is sent)
    reachability_host: str = Field(default="8.8.8.8")
    reachability_port: int = Field(default=53, ge=1, le=65535)
    reachability_poll_interval: float = Field(default=10.0, gt=0)

    # Effector: command that toggles airplane mode, e.g. '["adb", "shell", ...]'
    effector_command: List[str] = Field(default_factory=list)
    effector_timeout: float = Field(default=30.0, gt=0)

    # Operator API
    api_host: str = Field(default="127.0.0.1")
    api_port: int = Field(default=8765, ge=1024, le=65535)

    # Logging
    log_level: str = Field(default="INFO")
    log_format: Literal["json", "console"] = Field(default="console")
    log_file: Optional[str] = Field(default=None)

    @field_validator("device_path")
    @classmethod
    def validate_device_path(cls, v):
        """Normalise the path so the device code is appended after a slash."""
        if not v.startswith("/"):
            v = "/" + v
        if not v.endswith("/"):
            v = v + "/"
        return v

    @field_validator("identity_file", "preferences_file")
    @classmethod
    def ensure_parent_dir(cls, v):
        """Ensure the directory of the identity stores exists."""
        Path(v).parent.mkdir(parents=True, exist_ok=True)
        return v

    @model_validator(mode="after")
    def check_heartbeat_timing(self):
        """The pong check must fire before the next ping replaces it."""
        if self.heartbeat_timeout >= self.heartbeat_interval:
            raise ValueError("heartbeat_timeout must be shorter than heartbeat_interval")
        return self

    @property
    def server_base_url(self) -> str:
        """Device endpoint without the device code."""
        return f"{self.server_scheme}://{self.server_host}:{self.server_port}{self.device_path}"

    def device_url(self, code: str) -> str:
        return f"{self.server_base_url}{code}"

    model_config = {
        "env_prefix": "WSC_",
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "case_sensitive": False,
        "extra": "ignore",
        "env_parse_none_str": "none",
    }
