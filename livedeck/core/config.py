"""
Application settings using Pydantic for validation and type safety.
Driver command lines and resource caps are configuration, not code.
"""
from functools import lru_cache
from pathlib import Path
from typing import Literal, Optional

from pydantic import BaseModel, Field, field_validator
from pydantic_settings import BaseSettings


class ConnectionConfig(BaseModel):
    """Named database connection a code block can select."""

    host: Optional[str] = Field(default=None, description="Server host")
    port: Optional[int] = Field(default=None, ge=1, le=65535, description="Server port")
    user: Optional[str] = Field(default=None, description="Login user")
    password: Optional[str] = Field(default=None, description="Password, passed via environment")
    database: Optional[str] = Field(default=None, description="Database name or SQLite file")
    path: Optional[str] = Field(default=None, description="SQLite file path")


class DriverConfig(BaseModel):
    """Command line used to run a code block; the source is fed on stdin."""

    command: Optional[str] = Field(default=None, min_length=1, description="Executable to run (e.g. python3)")
    args: list[str] = Field(default_factory=list, description="Arguments passed before stdin is read")
    env: dict[str, str] = Field(default_factory=dict, description="Extra environment variables")
    workdir: Optional[Path] = Field(default=None, description="Working directory override")
    dialect: Optional[Literal["sqlite", "mysql", "postgres"]] = Field(
        default=None,
        description="SQL client whose connection flags are added for the selected connection"
    )
    connections: dict[str, ConnectionConfig] = Field(
        default_factory=dict,
        description="Named connections code blocks can select"
    )

    @property
    def argv(self) -> list[str]:
        return [self.command, *self.args]

    def merged_with(self, override: "DriverConfig") -> "DriverConfig":
        """Layer the fields ``override`` sets explicitly on top of this driver."""
        update = {name: getattr(override, name) for name in override.model_fields_set}
        if "connections" in update:
            update["connections"] = {**self.connections, **override.connections}
        return self.model_copy(update=update)


def default_drivers() -> dict[str, DriverConfig]:
    """Built-in interpreters keyed by language tag."""
    shell = DriverConfig(command="sh", args=["-s"])
    python = DriverConfig(command="python3", args=["-u", "-"])
    node = DriverConfig(command="node", args=["-"])
    postgres = DriverConfig(
        command="psql",
        args=["--no-psqlrc", "--pset=border=2", "--pset=format=aligned"],
        dialect="postgres",
    )
    return {
        "shell": shell,
        "sh": shell,
        "bash": DriverConfig(command="bash", args=["-s"]),
        "python": python,
        "py": python,
        "node": node,
        "javascript": node,
        "js": node,
        "ruby": DriverConfig(command="ruby", args=["-"]),
        "sqlite": DriverConfig(command="sqlite3", args=["-header", "-column"], dialect="sqlite"),
        "mysql": DriverConfig(command="mysql", args=["--table"], dialect="mysql"),
        "postgres": postgres,
        "psql": postgres,
    }


class Settings(BaseSettings):
    """Application configuration with validation."""

    # Application
    app_name: str = Field(default="LiveDeck", description="Application name")
    debug: bool = Field(default=False, description="Debug mode flag")

    # Server
    host: str = Field(default="127.0.0.1", description="Server host")
    port: int = Field(default=3000, ge=1, le=65535, description="Server port")

    # CORS Configuration
    cors_origins: list[str] = Field(
        default=["*"],
        description="Allowed CORS origins"
    )

    # Deck source
    deck_path: Optional[Path] = Field(
        default=None,
        description="Path to the parsed deck document (JSON)"
    )
    deck_watch: bool = Field(
        default=True,
        description="Reload the deck when the document changes on disk"
    )
    deck_watch_interval: float = Field(
        default=0.5,
        gt=0,
        le=60,
        description="Seconds between deck file checks"
    )

    # Paths (relative to workspace root)
    data_dir: Path = Field(default=Path("data"), description="Data directory")

    @property
    def recordings_dir(self) -> Path:
        """Get persisted terminal recordings directory path."""
        return self.data_dir / "recordings"

    persist_recordings: bool = Field(
        default=False,
        description="Write an asciicast file for every finished run"
    )

    # Execution
    kill_grace_seconds: float = Field(
        default=3.0,
        gt=0,
        le=60,
        description="Seconds to wait after SIGTERM before SIGKILL"
    )
    terminal_width: int = Field(default=80, ge=20, le=500, description="Cast header width")
    terminal_height: int = Field(default=24, ge=5, le=200, description="Cast header height")
    drivers: dict[str, DriverConfig] = Field(
        default_factory=default_drivers,
        description="Interpreters keyed by language or driver name"
    )

    # Recording retention
    recording_max_runs_per_block: int = Field(
        default=5,
        ge=1,
        le=1000,
        description="Finished runs kept per code block"
    )
    recording_max_total_bytes: int = Field(
        default=32 * 1024 * 1024,
        ge=1024,
        description="Upper bound on stored recording bytes"
    )

    # Sync
    sync_client_queue_size: int = Field(
        default=1024,
        ge=8,
        le=100_000,
        description="Pending messages per client before it is resynced"
    )
    sync_event_log_size: int = Field(
        default=4096,
        ge=16,
        le=1_000_000,
        description="Broadcast events kept for catch-up"
    )

    @field_validator("data_dir")
    @classmethod
    def validate_data_dir(cls, v: Path) -> Path:
        """Ensure data directory path is valid."""
        return Path(v)

    @field_validator("drivers")
    @classmethod
    def merge_default_drivers(cls, v: dict[str, DriverConfig]) -> dict[str, DriverConfig]:
        """Configured drivers extend the built-in ones instead of replacing them."""
        merged = default_drivers()
        for name, driver in v.items():
            merged[name] = merged[name].merged_with(driver) if name in merged else driver
        return merged

    def ensure_directories(self) -> None:
        """Create required directories if they don't exist."""
        for dir_path in [self.data_dir, self.recordings_dir]:
            dir_path.mkdir(parents=True, exist_ok=True)

    class Config:
        """Pydantic configuration."""
        env_file = ".env"
        env_file_encoding = "utf-8"
        env_prefix = "LIVEDECK_"
        case_sensitive = False
        extra = "ignore"


@lru_cache()
def get_settings() -> Settings:
    """
    Get cached application settings.

    Using lru_cache ensures settings are loaded once and reused.
    """
    return Settings()
