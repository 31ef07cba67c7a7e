import json
import os
import re
from datetime import timedelta
from pathlib import Path
from typing import Optional

from pydantic import BaseModel, Field, ValidationError

from .errors import ConfigError

CONFIG_FILE = ".gatorconfig.json"
CONFIG_ENV = "GATOR_CONFIG"

# Polling faster than this risks hammering the feed hosts
MIN_INTERVAL = timedelta(seconds=1)

_DURATION_PART = re.compile(r"(\d+\.?\d*|\.\d+)(ns|us|µs|μs|ms|s|m|h)")
_UNIT_SECONDS = {
    "ns": 1e-9,
    "us": 1e-6,
    "µs": 1e-6,
    "μs": 1e-6,
    "ms": 1e-3,
    "s": 1.0,
    "m": 60.0,
    "h": 3600.0,
}


def _default_db_path() -> Path:
    return Path.home() / ".gator" / "gator.db"


class GatorConfig(BaseModel):
    """Contents of the gator config file"""
    db_path: Path = Field(
        default_factory=_default_db_path,
        description="SQLite database file"
    )
    current_user_name: Optional[str] = Field(
        default=None,
        description="Name of the logged in user"
    )


def parse_duration(value: str) -> timedelta:
    """Parse a duration such as "30s", "5m" or "1h30m"

    A sign prefix, decimal numbers and the units ns, us, ms, s, m and h
    are accepted. A bare "0" means zero.
    """
    text = value.strip()
    if not text:
        raise ConfigError(f"invalid duration {value!r}")

    sign = 1
    if text[0] in "+-":
        sign = -1 if text[0] == "-" else 1
        text = text[1:]

    if text == "0":
        return timedelta(0)

    total = 0.0
    pos = 0
    while pos < len(text):
        match = _DURATION_PART.match(text, pos)
        if not match:
            raise ConfigError(f"invalid duration {value!r}")
        number, unit = match.groups()
        total += float(number) * _UNIT_SECONDS[unit]
        pos = match.end()

    if pos == 0:
        raise ConfigError(f"invalid duration {value!r}")
    try:
        return timedelta(seconds=sign * total)
    except (OverflowError, ValueError) as e:
        raise ConfigError(f"invalid duration {value!r}") from e


def parse_interval(value: str) -> timedelta:
    """Parse the aggregator interval and enforce the one second floor"""
    interval = parse_duration(value)
    if interval < MIN_INTERVAL:
        raise ConfigError(
            "the duration must be at least 1 second to prevent "
            "unintentional denial of service"
        )
    return interval


class ConfigManager:
    """Reads and writes the JSON config file"""

    def __init__(self, config_path: Optional[Path] = None):
        if config_path is None:
            env_path = os.environ.get(CONFIG_ENV)
            config_path = Path(env_path) if env_path else Path.home() / CONFIG_FILE
        self.config_path = Path(config_path)

    def exists(self) -> bool:
        return self.config_path.exists()

    def load(self) -> GatorConfig:
        """Load configuration, creating the file with defaults if missing"""
        if not self.exists():
            config = GatorConfig()
            self.save(config)
            return config
        try:
            with open(self.config_path, "r", encoding="utf-8") as f:
                data = json.load(f)
            return GatorConfig.model_validate(data)
        except json.JSONDecodeError as e:
            raise ConfigError(f"config file {self.config_path} is not valid JSON: {e}") from e
        except ValidationError as e:
            raise ConfigError(f"config file {self.config_path} is invalid: {e}") from e
        except OSError as e:
            raise ConfigError(f"cannot read config file {self.config_path}: {e}") from e

    def save(self, config: GatorConfig) -> None:
        """Save configuration to file"""
        try:
            self.config_path.parent.mkdir(parents=True, exist_ok=True)
            with open(self.config_path, "w", encoding="utf-8") as f:
                data = config.model_dump(mode="json", exclude_none=True)
                json.dump(data, f, indent=2, ensure_ascii=False)
        except OSError as e:
            raise ConfigError(f"cannot write config file {self.config_path}: {e}") from e

    def set_user(self, user_name: str) -> GatorConfig:
        """Persist the current user and return the updated config"""
        config = self.load()
        config.current_user_name = user_name
        self.save(config)
        return config
