"""Persisted dashboard configuration."""
import json
import logging
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator
from pydantic.alias_generators import to_camel

from .filters import matches_any
from .models.command import Command

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_FILE = "startall.json"


class Config(BaseModel):
    """Contents of the startall config file (camelCase on disk)."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    default_selection: List[str] = Field(default_factory=list, description="Commands checked at startup")
    include: Optional[List[str]] = Field(None, description="Name globs to show (absent = all)")
    ignore: List[str] = Field(default_factory=list, description="Name globs to hide, checked after include")
    shortcuts: Dict[str, str] = Field(default_factory=dict, description="Single key -> command name")
    show_line_numbers: bool = False
    show_timestamps: bool = False
    pane_layout: Optional[Dict[str, Any]] = Field(None, description="Serialized pane tree")

    countdown_seconds: int = Field(10, ge=0, description="Selection countdown before launch")
    restart_delay_ms: int = Field(100, ge=0, description="Pause between stop and start on restart")
    kill_grace_ms: int = Field(1000, ge=0, description="Wait before SIGKILL after SIGTERM")
    max_log_lines: int = Field(1000, ge=1, description="Output lines kept in memory")

    @field_validator("pane_layout", mode="before")
    @classmethod
    def drop_unusable_layout(cls, value: Any) -> Any:
        """Discard a layout of the wrong type instead of rejecting the whole file."""
        if value is not None and not isinstance(value, dict):
            logger.warning(f"Ignoring malformed pane layout of type {type(value).__name__}")
            return None
        return value


def load_config(path: Union[str, Path]) -> Config:
    """Load config from a JSON file, falling back to defaults on any problem."""
    config_path = Path(path)
    if not config_path.exists():
        return Config()

    try:
        data = json.loads(config_path.read_text())
        return Config.model_validate(data)
    except (OSError, ValueError, ValidationError) as e:
        logger.warning(f"Ignoring unreadable config {config_path}: {e}")
        return Config()


def save_config(config: Config, path: Union[str, Path]) -> bool:
    """Write config as JSON. Failures are logged, not raised."""
    try:
        data = config.model_dump(mode="json", by_alias=True, exclude_none=True)
        Path(path).write_text(json.dumps(data, indent=2) + "\n")
        return True
    except OSError as e:
        logger.error(f"Error saving config to {path}: {e}")
        return False


def assign_shortcut(config: Config, key: str, name: str) -> None:
    """Bind `key` to `name`, dropping the command's old key and the key's old owner."""
    for existing in [k for k, v in config.shortcuts.items() if v == name]:
        del config.shortcuts[existing]
    config.shortcuts[key] = name


def remove_shortcut(config: Config, name: str) -> None:
    for existing in [k for k, v in config.shortcuts.items() if v == name]:
        del config.shortcuts[existing]


def shortcut_for(config: Config, name: str) -> Optional[str]:
    for key, value in config.shortcuts.items():
        if value == name:
            return key
    return None


def is_visible(name: str, config: Config) -> bool:
    if config.include is not None and not matches_any(name, config.include):
        return False
    return not matches_any(name, config.ignore)


def visible_commands(commands: List[Command], config: Config) -> List[Command]:
    """Commands that pass the include and ignore patterns."""
    return [command for command in commands if is_visible(command.name, config)]
