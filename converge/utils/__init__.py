"""
Converge Utils - Logging and redaction helpers.
"""

from converge.utils.logger import get_run_logger, log_prefix, setup_logger
from converge.utils.security import redact_sensitive_info, register_secret

__all__ = [
    "get_run_logger",
    "log_prefix",
    "redact_sensitive_info",
    "register_secret",
    "setup_logger",
]
