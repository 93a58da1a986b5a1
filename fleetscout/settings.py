"""Worker settings: env vars and .env override ~/.config/fleetscout/config.toml."""

from functools import lru_cache
from pathlib import Path
from typing import Literal

import tomlkit
import typer
from pydantic import Field
from pydantic_settings import BaseSettings, PydanticBaseSettingsSource, SettingsConfigDict

CONFIG_DIR = Path.home() / ".config" / "fleetscout"
CONFIG_PATH = CONFIG_DIR / "config.toml"


class WorkerSettings(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="FLEETSCOUT_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    fleet_url: str | None = None  # base URL for host/software links

    data_path: Path = CONFIG_DIR / "fleet.toml"
    jobs_path: Path = CONFIG_DIR / "jobs.jsonl"

    http_timeout: float = 30
    workers: int = Field(default=4, ge=1)

    log_level: Literal["debug", "info", "warning", "error", "critical"] = "info"
    log_format: Literal["console", "json"] = "console"

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        # Constructor kwargs carry the config file values, so they rank below the environment.
        return env_settings, dotenv_settings, init_settings, file_secret_settings


@lru_cache(maxsize=1)
def _load_toml() -> dict:
    """Load ~/.config/fleetscout/config.toml, returning an empty dict if missing."""
    if not CONFIG_PATH.exists():
        return {}
    with CONFIG_PATH.open() as fh:
        return tomlkit.load(fh).unwrap()


def get_settings(require_fleet_url: bool = True) -> WorkerSettings:
    """Return settings resolved from (highest first) env vars, .env, then the config file.

    Commands that render conversations need fleet_url; others pass require_fleet_url=False.
    """
    settings = WorkerSettings(**_load_toml())

    if require_fleet_url and not settings.fleet_url:
        typer.echo(f"Missing Fleet URL. Set FLEETSCOUT_FLEET_URL or fleet_url in {CONFIG_PATH}")
        raise typer.Exit(1)

    return settings
