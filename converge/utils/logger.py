"""
Centralized logging for Converge.

Provides:
- Configurable log levels and rotation
- Run-specific logging (run_id prefix)
- Sensitive data redaction on every record
- File and console targets

Configuration is loaded from ~/.converge/log_config.json or environment
variables. See log_config.py for details.
"""
import json
import os
import sys
from pathlib import Path
from typing import Any, Optional

from loguru import logger

from converge.utils.security import redact_sensitive_info


def use_emoji_logs() -> bool:
    """
    Check if emoji prefixes should be used in log messages.

    Returns True unless USE_EMOJI_LOGS is set to "0" or "false".
    """
    value = os.environ.get("USE_EMOJI_LOGS", "1").lower()
    return value not in ("0", "false", "no", "off")


_EMOJI_TO_ASCII = {
    "🔄": "[RETRY]",
    "⚠️": "[WARN]",
    "✅": "[OK]",
    "❌": "[ERROR]",
    "🗑️": "[DESTROY]",
    "🛑": "[CANCEL]",
    "📋": "[PLAN]",
    "📊": "[STATS]",
    "⏱️": "[TIMER]",
}


def log_prefix(emoji: str) -> str:
    """
    Return the appropriate log prefix based on USE_EMOJI_LOGS setting.

    Args:
        emoji: The emoji to use when emoji logs are enabled.

    Returns:
        The emoji, or its ASCII equivalent (empty string if none).
    """
    if use_emoji_logs():
        return emoji
    return _EMOJI_TO_ASCII.get(emoji, "")


def _get_log_config():
    """Get log configuration (lazy import to avoid circular deps)."""
    from converge.utils.log_config import get_log_config
    return get_log_config()


def _redact_value(value, _seen=None):
    """Recursively redact sensitive info from a value."""
    if _seen is None:
        _seen = set()

    value_id = id(value)
    if value_id in _seen:
        return "[circular reference]"

    if isinstance(value, str):
        return redact_sensitive_info(value)
    elif isinstance(value, dict):
        _seen.add(value_id)
        result = {k: _redact_value(v, _seen) for k, v in value.items()}
        _seen.discard(value_id)
        return result
    elif isinstance(value, (list, tuple)):
        _seen.add(value_id)
        result = [_redact_value(item, _seen) for item in value]
        _seen.discard(value_id)
        return type(value)(result) if isinstance(value, tuple) else result
    return value


def _redaction_patcher(record):
    """Redact sensitive info from all logs."""
    try:
        record["message"] = redact_sensitive_info(record["message"])
    except Exception:
        record["message"] = "[REDACTED]"

    for key in list(record["extra"].keys()):
        try:
            record["extra"][key] = _redact_value(record["extra"][key])
        except Exception:
            record["extra"][key] = "[REDACTED]"


def setup_logger(
    verbose: bool = False,
    run_id: Optional[str] = None,
    config: Optional[Any] = None,
) -> None:
    """
    Configure the logger.

    Rules:
    1. FILE: log to ~/.converge/logs/converge.log (rotated) unless disabled.
    2. CONSOLE: DEBUG+ to stderr when verbose, otherwise only when
       console_enabled is set (rich reports handle normal output).

    Args:
        verbose: Enable console logging
        run_id: Optional run identifier bound to every record
        config: Optional LogConfig override (for testing)
    """
    logger.remove()

    if config is None:
        config = _get_log_config()

    def format_record(record):
        """Format log record with optional run_id."""
        rid = record["extra"].get("run_id", "")

        if config.json_logs:
            log_entry = {
                "timestamp": record["time"].isoformat(),
                "level": record["level"].name,
                "message": record["message"],
                "module": record["name"],
                "function": record["function"],
                "line": record["line"],
            }
            if rid:
                log_entry["run_id"] = rid
            # Escape braces: loguru treats the returned string as a format template
            return json.dumps(log_entry).replace("{", "{{").replace("}", "}}") + "\n"

        prefix = "{time:YYYY-MM-DD HH:mm:ss} | "
        if rid:
            prefix += "{extra[run_id]} | "
        if config.include_caller:
            return prefix + "{level: <8} | {name}:{function}:{line} - {message}\n"
        return prefix + "{level: <8} | {message}\n"

    if config.file_enabled:
        log_dir = Path(config.log_dir)
        log_dir.mkdir(parents=True, exist_ok=True)

        rotation = config.rotation_size
        if config.rotation_strategy == "time":
            rotation = config.rotation_time

        logger.add(
            log_dir / config.app_log_name,
            rotation=rotation,
            retention=config.retention,
            level=config.file_level,
            format=format_record,
            compression=config.compression,
            enqueue=True,
        )

    if verbose or config.console_enabled:
        console_format = (
            "<green>{time:HH:mm:ss}</green> | "
            "<level>{level: <8}</level> | "
            "<cyan>{name}</cyan>:<cyan>{line}</cyan> - "
            "<level>{message}</level>"
        )
        logger.add(
            sys.stderr,
            format=console_format,
            level=config.console_level if not verbose else "DEBUG",
            colorize=True,
        )

    logger.configure(patcher=_redaction_patcher, extra={"run_id": run_id or ""})


def get_run_logger(run_id: str):
    """
    Get a logger bound to a specific apply run.

    Example:
        >>> run_logger = get_run_logger("20261016_143022")
        >>> run_logger.info("Applying plan")
    """
    return logger.bind(run_id=run_id)
