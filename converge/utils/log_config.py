"""
Logging configuration for Converge.

Provides configurable logging with:
- Log directory management
- Log rotation (size and time-based)
- Verbosity levels
- Persistent configuration
"""
import json
import os
from dataclasses import asdict, dataclass
from enum import Enum
from pathlib import Path
from typing import Any, ClassVar, Dict, Optional


class LogLevel(str, Enum):
    """Log verbosity levels."""
    TRACE = "TRACE"
    DEBUG = "DEBUG"
    INFO = "INFO"
    SUCCESS = "SUCCESS"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"

    @classmethod
    def from_string(cls, level: str) -> "LogLevel":
        """Parse log level from string (case-insensitive)."""
        level = level.upper()
        try:
            return cls(level)
        except ValueError:
            aliases = {
                "WARN": cls.WARNING,
                "ERR": cls.ERROR,
                "FATAL": cls.CRITICAL,
            }
            if level in aliases:
                return aliases[level]
            raise ValueError(f"Unknown log level: {level}") from None


@dataclass
class LogConfig:
    """
    Configuration for Converge logging.

    Attributes:
        log_dir: Directory for log files (default: ~/.converge/logs)
        app_log_name: Main log filename
        console_level: Log level for console output
        file_level: Log level for file output
        rotation_size: Max size before rotation (e.g., "10 MB")
        rotation_time: Time-based rotation (e.g., "1 day")
        rotation_strategy: "size" or "time"
        retention: How long to keep old logs (e.g., "1 week")
        compression: Compress rotated files (zip, gz, or None)
        json_logs: Use JSON format for file logs
        include_caller: Include caller info (file:function:line)
        file_enabled: Write a log file at all
        console_enabled: Log to stderr even without --verbose
    """
    log_dir: str = ""
    app_log_name: str = "converge.log"

    console_level: str = "WARNING"
    file_level: str = "DEBUG"

    rotation_size: str = "10 MB"
    rotation_time: str = "1 day"
    rotation_strategy: str = "size"
    retention: str = "1 week"
    compression: Optional[str] = "gz"

    json_logs: bool = False
    include_caller: bool = True

    file_enabled: bool = True
    console_enabled: bool = False

    _VALID_COMPRESSION: ClassVar[frozenset] = frozenset({"zip", "gz", None})
    _VALID_STRATEGIES: ClassVar[frozenset] = frozenset({"size", "time"})

    def __post_init__(self):
        if not self.log_dir:
            self.log_dir = str(Path.home() / ".converge" / "logs")

        try:
            LogLevel.from_string(self.console_level)
        except ValueError as e:
            raise ValueError(f"Invalid console_level: {e}") from e

        try:
            LogLevel.from_string(self.file_level)
        except ValueError as e:
            raise ValueError(f"Invalid file_level: {e}") from e

        if self.rotation_strategy not in self._VALID_STRATEGIES:
            raise ValueError(
                f"rotation_strategy must be one of {set(self._VALID_STRATEGIES)}, "
                f"got: {self.rotation_strategy!r}"
            )

        if self.compression not in self._VALID_COMPRESSION:
            raise ValueError(
                f"compression must be one of {set(self._VALID_COMPRESSION)}, "
                f"got: {self.compression!r}"
            )

        self._validate_size_format(self.rotation_size)

    def _validate_size_format(self, size_str: str) -> None:
        """Validate size format like '10 MB' or '100 KB'."""
        parts = size_str.strip().split()
        if len(parts) != 2:
            raise ValueError(f"Invalid size format: {size_str!r} (expected: '10 MB')")

        try:
            value = float(parts[0])
        except ValueError as e:
            raise ValueError(f"Invalid size value: {parts[0]!r}") from e
        if value <= 0:
            raise ValueError(f"Size must be positive: {size_str!r}")

        valid_units = {"B", "KB", "MB", "GB"}
        if parts[1].upper() not in valid_units:
            raise ValueError(f"Invalid size unit: {parts[1]!r} (valid: {valid_units})")

    @property
    def log_path(self) -> Path:
        """Get the full path to the main log file."""
        return Path(self.log_dir) / self.app_log_name

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for serialization."""
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "LogConfig":
        """Create from dictionary, ignoring unknown keys."""
        known_fields = set(cls.__dataclass_fields__)
        filtered = {k: v for k, v in data.items() if k in known_fields}
        return cls(**filtered)


CONFIG_FILE = Path.home() / ".converge" / "log_config.json"


def load_log_config(config_file: Optional[Path] = None) -> LogConfig:
    """
    Load logging configuration.

    Priority:
    1. Environment variables (CONVERGE_LOG_*)
    2. Config file (~/.converge/log_config.json)
    3. Defaults
    """
    config_file = config_file or CONFIG_FILE
    config_data: Dict[str, Any] = {}

    if config_file.exists():
        try:
            with open(config_file) as f:
                config_data = json.load(f)
        except (json.JSONDecodeError, OSError):
            pass  # Use defaults

    env_mappings = {
        "CONVERGE_LOG_DIR": "log_dir",
        "CONVERGE_LOG_LEVEL": "console_level",
        "CONVERGE_LOG_FILE_LEVEL": "file_level",
        "CONVERGE_LOG_ROTATION_SIZE": "rotation_size",
        "CONVERGE_LOG_RETENTION": "retention",
        "CONVERGE_LOG_COMPRESSION": "compression",
        "CONVERGE_LOG_JSON": "json_logs",
        "CONVERGE_LOG_FILE": "file_enabled",
    }

    for env_var, config_key in env_mappings.items():
        value = os.environ.get(env_var)
        if value is None:
            continue
        if config_key in ("json_logs", "file_enabled"):
            config_data[config_key] = value.lower() in ("1", "true", "yes", "on")
        elif config_key == "compression":
            config_data[config_key] = value if value.lower() not in ("none", "") else None
        else:
            config_data[config_key] = value

    return LogConfig.from_dict(config_data)


def get_log_config() -> LogConfig:
    """Get the current logging configuration (cached)."""
    global _cached_config
    if _cached_config is None:
        _cached_config = load_log_config()
    return _cached_config


def reset_log_config() -> None:
    """Reset the cached configuration."""
    global _cached_config
    _cached_config = None


_cached_config: Optional[LogConfig] = None
