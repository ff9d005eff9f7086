from datetime import timedelta
from pathlib import Path
from typing import Any
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic_settings import (
    BaseSettings,
    PydanticBaseSettingsSource,
    SettingsConfigDict,
)

from cadence.domain import constants as c

CONFIG_FILES = [
    Path.home() / ".config/cadence/config.toml",
    Path.home() / ".cadence.toml",
]


class SchedulingParams(BaseModel):
    """
    Algorithm-wide constants for the scheduler.

    Per-deck knobs (learning steps, limits, modifiers) live on DeckPolicy;
    these apply to every deck.
    """

    model_config = ConfigDict(frozen=True)

    starting_ease: float = Field(default=c.STARTING_EASE, gt=0)
    ease_floor: float = Field(default=c.EASE_FLOOR, gt=0)
    easy_bonus: float = Field(default=c.EASY_BONUS, ge=0)
    hard_penalty: float = Field(default=c.HARD_PENALTY, ge=0)
    lapse_penalty: float = Field(default=c.LAPSE_PENALTY, ge=0)

    hard_multiplier: float = Field(default=c.HARD_MULTIPLIER, gt=0, lt=1)
    good_multiplier: float = Field(default=c.GOOD_MULTIPLIER, gt=0)
    easy_multiplier: float = Field(default=c.EASY_MULTIPLIER, gt=1)

    fuzz_factor: float = Field(default=c.FUZZ_FACTOR, ge=0, lt=1)
    fuzz_min_days: float = Field(default=c.FUZZ_MIN_DAYS, ge=0)
    fuzz_seed: int = 0

    overdue_bonus_ratio: float = Field(default=c.OVERDUE_BONUS_RATIO, ge=0)
    overdue_bonus_cap: float = Field(default=c.OVERDUE_BONUS_CAP, ge=0)

    @model_validator(mode="after")
    def check_ease_bounds(self) -> "SchedulingParams":
        if self.starting_ease < self.ease_floor:
            raise ValueError("starting_ease must not be below ease_floor")
        return self


class AppConfig(BaseSettings):
    """
    Configuration model for cadence.
    Supports loading from:
    1. Manual overrides (CLI / API)
    2. Environment variables (CADENCE_*, nested with __)
    3. Config file (~/.config/cadence/config.toml)
    """

    model_config = SettingsConfigDict(
        env_prefix="CADENCE_",
        env_nested_delimiter="__",
        extra="ignore",
    )

    # Paths
    data_file: Path = Field(
        default_factory=lambda: Path.home() / ".local/share/cadence/collection.json"
    )

    # Study day
    timezone: str = c.DEFAULT_TIMEZONE
    day_rollover_hour: int = Field(default=c.DAY_ROLLOVER_HOUR, ge=0, le=23)
    learn_ahead_minutes: int = Field(default=c.LEARN_AHEAD_MINUTES, ge=0)

    verbose: int = 1

    scheduling: SchedulingParams = Field(default_factory=SchedulingParams)

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        from pydantic_settings import TomlConfigSettingsSource

        # First existing file wins
        toml_file = next((f for f in CONFIG_FILES if f.exists()), None)

        if toml_file:
            return (
                init_settings,
                env_settings,
                TomlConfigSettingsSource(settings_cls, toml_file=toml_file),
            )
        return (init_settings, env_settings)

    @field_validator("data_file", mode="before")
    @classmethod
    def resolve_data_file(cls, v: Any) -> Path:
        return Path(v).expanduser()

    @field_validator("timezone")
    @classmethod
    def check_timezone(cls, v: str) -> str:
        try:
            ZoneInfo(v)
        except (ZoneInfoNotFoundError, ValueError) as e:
            raise ValueError(f"Unknown timezone: {v}") from e
        return v

    @property
    def tz(self) -> ZoneInfo:
        return ZoneInfo(self.timezone)

    @property
    def learn_ahead(self) -> timedelta:
        return timedelta(minutes=self.learn_ahead_minutes)


def resolve_config(cli_overrides: dict[str, Any] | None = None) -> AppConfig:
    """
    Multi-layered configuration resolution.
    1. Defaults in AppConfig
    2. ~/.config/cadence/config.toml (if exists)
    3. Environment variables (CADENCE_*)
    4. cli_overrides (passed from Typer or the HTTP API), None values dropped
    """
    overrides = {k: v for k, v in (cli_overrides or {}).items() if v is not None}
    return AppConfig(**overrides)
