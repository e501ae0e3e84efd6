"""
X-Ray configuration.

Loads settings from environment variables (prefix ``XRAY_``) and an optional
``.env`` file via pydantic-settings.

Usage:
    from xray.config import get_settings

    settings = get_settings()
    settings.collector_url   # "http://localhost:3001/api"
"""

from functools import lru_cache
from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class XRaySettings(BaseSettings):
    """Runtime settings for the telemetry SDK."""

    model_config = SettingsConfigDict(
        env_prefix="XRAY_",
        env_file=".env",
        extra="ignore",
    )

    collector_url: str = Field(
        default="http://localhost:3001/api",
        description="Base URL of the collector (sessions + observations endpoints)",
    )
    export_timeout: float = Field(default=10.0, gt=0, description="HTTP timeout in seconds")
    traces_dir: Path = Field(default=Path("xray_traces"), description="Where session JSON files go")
    enabled: bool = True
    log_level: str = "INFO"
    log_format: str = "console"  # console|json


@lru_cache(maxsize=1)
def get_settings() -> XRaySettings:
    """Return the process-wide settings (cached after first load)."""
    return XRaySettings()


COLLECTOR_URL: str = get_settings().collector_url
TRACES_DIR: Path = get_settings().traces_dir
