"""
Configuration for the bid ledger.

Two layers:

- ``AuctionConfig``: the economic rules of an auction (commission,
  minimum increment, anti-sniping window, maximum duration).
- ``Settings``: runtime settings for the CLI and storage, read from
  ``BIDLEDGER_*`` environment variables and an optional ``.env`` file,
  validated with pydantic.
"""

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from dotenv import dotenv_values
from pydantic import BaseModel, ConfigDict, Field, field_validator

ENV_PREFIX = "BIDLEDGER_"

# Protocol constants
COMMISSION_PERCENT = 2          # Fee kept from every refund
MIN_INCREMENT_PERCENT = 5       # New bid must beat highest by this much
EXTENSION_WINDOW = 10 * 60      # Seconds; late bids reset the deadline to now + window
MAX_DURATION_MINUTES = 10080    # One week


@dataclass(frozen=True)
class AuctionConfig:
    """Economic rules of a single auction"""

    commission_percent: int = COMMISSION_PERCENT
    min_increment_percent: int = MIN_INCREMENT_PERCENT
    extension_window: int = EXTENSION_WINDOW
    max_duration_minutes: int = MAX_DURATION_MINUTES

    def commission_on(self, amount: int) -> int:
        """Commission retained on a refund of ``amount`` (floored)."""
        return amount * self.commission_percent // 100

    def min_next_bid(self, highest_bid: int) -> int:
        """Smallest acceptable bid given the current highest bid."""
        return highest_bid + highest_bid * self.min_increment_percent // 100


class Settings(BaseModel):
    """Runtime settings (CLI, logging, storage)"""

    model_config = ConfigDict(validate_default=True)

    data_dir: Path = Path("~/.bidledger")
    log_dir: Path = Path("logs")
    log_level: str = "INFO"
    log_to_file: bool = False

    commission_percent: int = Field(default=COMMISSION_PERCENT, ge=0, le=100)
    min_increment_percent: int = Field(default=MIN_INCREMENT_PERCENT, ge=0, le=100)
    extension_window: int = Field(default=EXTENSION_WINDOW, ge=0)
    max_duration_minutes: int = Field(default=MAX_DURATION_MINUTES, gt=0)

    @field_validator("log_level")
    @classmethod
    def _known_level(cls, value: str) -> str:
        level = value.upper()
        if level not in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"):
            raise ValueError(f"unknown log level {value!r}")
        return level

    @field_validator("data_dir", "log_dir")
    @classmethod
    def _expand(cls, value: Path) -> Path:
        return value.expanduser()

    def auction_config(self) -> AuctionConfig:
        return AuctionConfig(
            commission_percent=self.commission_percent,
            min_increment_percent=self.min_increment_percent,
            extension_window=self.extension_window,
            max_duration_minutes=self.max_duration_minutes,
        )


def load_settings(env_file: Optional[str] = None, **overrides) -> Settings:
    """
    Load settings from a .env file, the environment and explicit overrides.

    Precedence (lowest to highest): defaults, ``env_file``, process
    environment, ``overrides``. Only ``BIDLEDGER_``-prefixed keys are read.

    Args:
        env_file: Optional path to a dotenv file

    Returns:
        Validated Settings instance

    Raises:
        pydantic.ValidationError: if a value fails validation
    """
    values = {}
    if env_file:
        values.update(_strip_prefix(dotenv_values(env_file)))
    values.update(_strip_prefix(os.environ))
    values.update({k: v for k, v in overrides.items() if v is not None})
    return Settings(**values)


def _strip_prefix(source) -> dict:
    return {
        key[len(ENV_PREFIX):].lower(): value
        for key, value in source.items()
        if key.startswith(ENV_PREFIX) and value is not None
    }

