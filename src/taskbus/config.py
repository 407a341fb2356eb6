"""
Configuration for the task bus.

Settings are read from a TOML file (configuration.toml, or the path in
TASKBUS_CONFIG_FILE), a .env file and TASKBUS_* environment variables, with
nested sections split by "__" (e.g. TASKBUS_DATABASE__HOST). Environment wins
over the file.

LiveSettings holds the settings the running units read. The control channel's
reload_config command re-reads the file into it, so long-running loops pick up
new values on their next read without a restart.
"""

import asyncio
import logging
import os
import threading
from pathlib import Path
from typing import Optional, Tuple, Type

from pydantic import BaseModel, EmailStr, SecretStr
from pydantic_settings import (
    BaseSettings,
    PydanticBaseSettingsSource,
    SettingsConfigDict,
    TomlConfigSettingsSource,
)

logger = logging.getLogger(__name__)

CONFIG_FILE_ENV = "TASKBUS_CONFIG_FILE"
DEFAULT_CONFIG_FILE = "configuration.toml"


class DatabaseSettings(BaseModel):
    username: str = "postgres"
    password: SecretStr = SecretStr("password")
    host: str = "localhost"
    port: int = 5432
    database_name: str = "recipes"
    max_connections: int = 5
    acquire_timeout_seconds: float = 2.0

    def connection_string(self) -> str:
        return (
            f"postgres://{self.username}:{self.password.get_secret_value()}"
            f"@{self.host}:{self.port}/{self.database_name}"
        )


class EmailClientSettings(BaseModel):
    base_url: str = "http://localhost:8025"
    sender_email: EmailStr = "noreply@recipes.dev"
    authorization_token: SecretStr = SecretStr("")
    timeout_milliseconds: int = 10_000

    @property
    def timeout(self) -> float:
        return self.timeout_milliseconds / 1000


class QueueSettings(BaseModel):
    """Worker polling intervals in seconds."""

    idle_interval: float = 10.0
    error_interval: float = 1.0


class ApplicationSettings(BaseModel):
    frontend_url: str = "http://localhost:3001"
    control_socket: Path = Path("/tmp/taskbus.sock")


class SearchSettings(BaseModel):
    url: str = "http://localhost:7700"
    master_key: SecretStr = SecretStr("")
    interval: float = 3600.0
    task_timeout: float = 60.0
    task_poll_interval: float = 0.5


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="TASKBUS_",
        env_nested_delimiter="__",
        env_file=".env",
        extra="ignore",
        toml_file=DEFAULT_CONFIG_FILE,
    )

    database: DatabaseSettings = DatabaseSettings()
    email_client: EmailClientSettings = EmailClientSettings()
    queue: QueueSettings = QueueSettings()
    application: ApplicationSettings = ApplicationSettings()
    search: SearchSettings = SearchSettings()

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: Type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> Tuple[PydanticBaseSettingsSource, ...]:
        return (
            init_settings,
            env_settings,
            dotenv_settings,
            TomlConfigSettingsSource(settings_cls),
            file_secret_settings,
        )


def config_path(path: Optional[os.PathLike] = None) -> Path:
    """Resolve the configuration file: explicit path, TASKBUS_CONFIG_FILE, default."""
    if path is not None:
        return Path(path)
    return Path(os.environ.get(CONFIG_FILE_ENV, DEFAULT_CONFIG_FILE))


def load_settings(path: Optional[os.PathLike] = None) -> Settings:
    """
    Load settings from the TOML file at path (see config_path()).
    A missing file is not an error: defaults and environment still apply.
    Invalid values raise pydantic.ValidationError.
    """
    toml_file = config_path(path)

    class FileSettings(Settings):
        model_config = SettingsConfigDict(toml_file=toml_file)

    settings = FileSettings()
    logger.debug("settings loaded from %s", toml_file)
    return settings


class LiveSettings:
    """
    Settings shared by the running units.

    get() returns the current value; reload() re-reads the file and swaps it in;
    wait_for_change() lets a task sleep until the next successful reload.
    """

    def __init__(
        self, settings: Settings, *, path: Optional[os.PathLike] = None
    ) -> None:
        self._settings = settings
        self._path = config_path(path)
        self._version = 0
        self._lock = threading.Lock()
        self._changed: Optional[asyncio.Event] = None

    @classmethod
    def from_file(cls, path: Optional[os.PathLike] = None) -> "LiveSettings":
        return cls(load_settings(path), path=path)

    @property
    def path(self) -> Path:
        return self._path

    @property
    def version(self) -> int:
        """Incremented on every replace(); 0 for the initial settings."""
        return self._version

    def get(self) -> Settings:
        with self._lock:
            return self._settings

    def replace(self, settings: Settings) -> None:
        with self._lock:
            self._settings = settings
            self._version += 1
        if self._changed is not None:
            self._changed.set()
            self._changed = None

    def reload(self) -> Settings:
        """Re-read the configuration file; on error the current settings stay in place."""
        settings = load_settings(self._path)
        self.replace(settings)
        logger.info("configuration reloaded from %s", self._path)
        return settings

    async def wait_for_change(self) -> Settings:
        """Wait until replace() is called, then return the new settings."""
        if self._changed is None:
            self._changed = asyncio.Event()
        await self._changed.wait()
        return self.get()
