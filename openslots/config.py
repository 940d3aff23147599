"""
Configuration management using Pydantic models loaded from YAML.
"""

import os
from datetime import timedelta
from pathlib import Path
from typing import Optional

import yaml
from pydantic import BaseModel, Field, field_validator, model_validator


class CaldavConfig(BaseModel):
    """Connection settings for the CalDAV server."""
    url: str = ""
    username: str = ""
    password: str = ""
    request_timeout: float = 30

    @field_validator("request_timeout")
    @classmethod
    def validate_timeout(cls, value: float) -> float:
        """Ensure the request timeout is positive."""
        if value <= 0:
            raise ValueError("request_timeout must be greater than zero")
        return value

    def apply_env(self) -> "CaldavConfig":
        """Override settings with CALDAV_URL, CALDAV_USERNAME and CALDAV_PASSWORD."""
        return self.model_copy(update={
            "url": os.environ.get("CALDAV_URL", self.url),
            "username": os.environ.get("CALDAV_USERNAME", self.username),
            "password": os.environ.get("CALDAV_PASSWORD", self.password),
        })

    def require_complete(self) -> None:
        """
        Raises:
            ValueError: If url, username or password is missing
        """
        missing = [name for name in ("url", "username", "password") if not getattr(self, name)]
        if missing:
            raise ValueError(
                f"CalDAV settings missing: {', '.join(missing)}. "
                "Set them in config.yaml or via CALDAV_* environment variables."
            )


class CalendarRef(BaseModel):
    """A calendar addressed by display name, with an optional reference zone."""
    name: str
    timezone: Optional[str] = None


class CalendarsConfig(BaseModel):
    """The two calendars the availability engine combines."""
    availability: CalendarRef = Field(default_factory=lambda: CalendarRef(name="meeting_availability"))
    booked: CalendarRef = Field(default_factory=lambda: CalendarRef(name="meeting_booked"))

    @model_validator(mode="after")
    def validate_distinct(self) -> "CalendarsConfig":
        """Availability and booked time must live in different calendars."""
        if self.availability.name == self.booked.name:
            raise ValueError("availability and booked calendars must be different")
        return self

    def timezones(self) -> dict:
        """Configured reference zones keyed by calendar name."""
        return {
            ref.name: ref.timezone
            for ref in (self.availability, self.booked)
            if ref.timezone
        }


class EngineConfig(BaseModel):
    """Settings for the availability-matrix engine."""
    granularity_minutes: int = 30
    recurrence_cap: int = 100
    fetch_timeout: Optional[float] = None

    @field_validator("granularity_minutes", "recurrence_cap")
    @classmethod
    def validate_positive(cls, value: int) -> int:
        """Ensure counts and durations are positive."""
        if value <= 0:
            raise ValueError(f"must be greater than zero, got {value}")
        return value

    @field_validator("fetch_timeout")
    @classmethod
    def validate_fetch_timeout(cls, value: Optional[float]) -> Optional[float]:
        if value is not None and value <= 0:
            raise ValueError("fetch_timeout must be greater than zero")
        return value

    def granularity(self) -> timedelta:
        """Get granularity as timedelta object."""
        return timedelta(minutes=self.granularity_minutes)


class ServerConfig(BaseModel):
    """HTTP server settings."""
    host: str = "0.0.0.0"
    port: int = 8000

    @field_validator("port")
    @classmethod
    def validate_port(cls, v: int) -> int:
        """Validate port is in the TCP range."""
        if not 0 < v < 65536:
            raise ValueError(f"Port must be between 1 and 65535, got {v}")
        return v


class AppConfig(BaseModel):
    """Application configuration."""
    caldav: CaldavConfig = Field(default_factory=CaldavConfig)
    calendars: CalendarsConfig = Field(default_factory=CalendarsConfig)
    engine: EngineConfig = Field(default_factory=EngineConfig)
    server: ServerConfig = Field(default_factory=ServerConfig)
    log_level: str = "INFO"

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, value: str) -> str:
        """Normalise and check the log level name."""
        level = value.upper()
        if level not in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"):
            raise ValueError(f"Unknown log level: {value}")
        return level

    @classmethod
    def load_from_yaml(cls, config_path: Path) -> "AppConfig":
        """
        Load configuration from YAML file.

        Args:
            config_path: Path to the YAML config file

        Returns:
            AppConfig instance, with CALDAV_* and PORT environment overrides applied

        Raises:
            FileNotFoundError: If config file doesn't exist
            ValueError: If config is invalid
        """
        if not config_path.exists():
            raise FileNotFoundError(
                f"Config file not found: {config_path}\n"
                f"Please create a config.yaml file. See config.example.yaml for reference."
            )

        try:
            with open(config_path, "r", encoding="utf-8") as f:
                data = yaml.safe_load(f) or {}
        except yaml.YAMLError as exc:
            raise ValueError(f"Invalid YAML in {config_path}: {exc}") from exc

        if not isinstance(data, dict):
            raise ValueError("Config file must contain a mapping at the root level.")

        return cls(**data).with_env()

    def with_env(self) -> "AppConfig":
        """Apply environment overrides for credentials and the server port."""
        server = self.server
        if os.environ.get("PORT"):
            server = ServerConfig(host=server.host, port=int(os.environ["PORT"]))
        return self.model_copy(update={"caldav": self.caldav.apply_env(), "server": server})


def get_default_config_path() -> Path:
    """Get the default configuration file path."""
    # Look for config.yaml in current directory
    current_dir = Path.cwd()
    config_path = current_dir / "config.yaml"

    if not config_path.exists():
        # Try in the project root (parent of openslots/)
        project_root = Path(__file__).parent.parent
        config_path = project_root / "config.yaml"

    return config_path


def load_config(config_path: Optional[Path] = None) -> AppConfig:
    """
    Load the config file if present, otherwise defaults plus environment.
    """
    path = config_path or get_default_config_path()
    if config_path is None and not path.exists():
        return AppConfig().with_env()
    return AppConfig.load_from_yaml(path)
