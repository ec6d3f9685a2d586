"""
Configuration management using Pydantic models loaded from YAML.
"""

from datetime import time
from pathlib import Path
from typing import List, Optional

import yaml
from pydantic import BaseModel, Field, ValidationError as PydanticValidationError, field_validator, model_validator

from .domain.exceptions import ConfigError
from .domain.models import MINUTES_PER_DAY, TimeGrid, is_valid_color

DEFAULT_PALETTE = [
    "#FFA000",  # amber 700
    "#1E88E5",  # blue 600
    "#43A047",  # green 600
    "#8E24AA",  # purple 600
    "#E53935",  # red 600
    "#FB8C00",  # orange 600
]


class GridConfig(BaseModel):
    """Visible opening hours and slot size of the calendar views."""
    start_hour: int = 8
    start_minute: int = 0
    slot_minutes: int = 30
    slot_count: int = 24
    row_height: float = 60.0
    min_visible_slots: float = 0.5

    @field_validator("start_hour")
    @classmethod
    def validate_hour(cls, v: int) -> int:
        """Validate hour is between 0 and 23."""
        if not 0 <= v <= 23:
            raise ValueError(f"Hour must be between 0 and 23, got {v}")
        return v

    @field_validator("start_minute")
    @classmethod
    def validate_minute(cls, v: int) -> int:
        if not 0 <= v <= 59:
            raise ValueError(f"Minute must be between 0 and 59, got {v}")
        return v

    @field_validator("slot_minutes", "slot_count")
    @classmethod
    def validate_positive(cls, v: int) -> int:
        if v <= 0:
            raise ValueError(f"Value must be greater than zero, got {v}")
        return v

    @field_validator("row_height")
    @classmethod
    def validate_row_height(cls, v: float) -> float:
        if v <= 0:
            raise ValueError(f"row_height must be greater than zero, got {v}")
        return v

    @field_validator("min_visible_slots")
    @classmethod
    def validate_min_visible_slots(cls, v: float) -> float:
        if v < 0:
            raise ValueError(f"min_visible_slots must not be negative, got {v}")
        return v

    @model_validator(mode="after")
    def validate_fits_in_day(self) -> "GridConfig":
        """Ensure the visible window closes by midnight."""
        end = self.start_hour * 60 + self.start_minute + self.slot_minutes * self.slot_count
        if end > MINUTES_PER_DAY:
            raise ValueError("grid runs past midnight; reduce slot_count or slot_minutes")
        return self

    def get_start_time(self) -> time:
        return time(hour=self.start_hour, minute=self.start_minute)

    def get_time_grid(self) -> TimeGrid:
        return TimeGrid(
            start_of_day=self.get_start_time(),
            slot_minutes=self.slot_minutes,
            slot_count=self.slot_count,
        )


class DefaultsConfig(BaseModel):
    """Default durations for new items."""
    duration_minutes: int = 60
    shift_duration_minutes: int = 240

    @field_validator("duration_minutes", "shift_duration_minutes")
    @classmethod
    def validate_duration(cls, value: int) -> int:
        """Ensure durations are positive."""
        if value <= 0:
            raise ValueError("durations must be greater than zero")
        return value


class StoreConfig(BaseModel):
    """Connection settings of the scheduling backend."""
    base_url: str = ""
    api_token: Optional[str] = None
    timeout_seconds: int = 30

    @field_validator("timeout_seconds")
    @classmethod
    def validate_timeout(cls, value: int) -> int:
        if value <= 0:
            raise ValueError("timeout_seconds must be greater than zero")
        return value


class AppConfig(BaseModel):
    """Application configuration."""
    timezone: str = "Europe/Berlin"
    grid: GridConfig = Field(default_factory=GridConfig)
    defaults: DefaultsConfig = Field(default_factory=DefaultsConfig)
    store: StoreConfig = Field(default_factory=StoreConfig)
    palette: List[str] = Field(default_factory=lambda: list(DEFAULT_PALETTE))

    @field_validator("palette")
    @classmethod
    def validate_palette(cls, value: List[str]) -> List[str]:
        """Ensure palette entries are #RRGGBB colours."""
        invalid = [color for color in value if not is_valid_color(color)]
        if invalid:
            raise ValueError(f"palette colours must look like #RRGGBB, got {invalid}")
        if not value:
            raise ValueError("palette must contain at least one colour")
        return value

    @classmethod
    def load_from_yaml(cls, config_path: Path) -> "AppConfig":
        """
        Load configuration from YAML file.

        Args:
            config_path: Path to the YAML config file

        Returns:
            AppConfig instance

        Raises:
            FileNotFoundError: If config file doesn't exist
            ConfigError: If config is invalid
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
            raise ConfigError(f"Invalid YAML in {config_path}: {exc}") from exc

        if not isinstance(data, dict):
            raise ConfigError("Config file must contain a mapping at the root level.")

        try:
            return cls(**data)
        except PydanticValidationError as exc:
            raise ConfigError(f"Invalid configuration in {config_path}:\n{exc}") from exc


def get_default_config_path() -> Path:
    """Get the default configuration file path."""
    # Look for config.yaml in current directory
    current_dir = Path.cwd()
    config_path = current_dir / "config.yaml"

    if not config_path.exists():
        # Try in the project root (parent of the package)
        project_root = Path(__file__).parent.parent
        config_path = project_root / "config.yaml"

    return config_path
