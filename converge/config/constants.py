"""
Converge Configuration Constants.

Centralized defaults for concurrency, retries and file locations.
"""

from pathlib import Path

# Data locations
DEFAULT_DATA_DIR = Path.home() / ".converge"
CONFIG_FILE_NAME = "config.yaml"
STATE_DB_NAME = "state.db"
SIMULATED_CLOUD_FILE = "simulated_cloud.json"

# Execution
DEFAULT_MAX_CONCURRENCY = 10  # Parallel provider calls for independent items
MAX_CONCURRENCY_LIMIT = 256

# Retries of transient provider errors (seconds)
DEFAULT_RETRY_ATTEMPTS = 4
DEFAULT_RETRY_INITIAL_DELAY = 0.5
DEFAULT_RETRY_MAX_DELAY = 8.0
DEFAULT_RETRY_BASE = 2.0

# Reports
SENSITIVE_PLACEHOLDER = "(sensitive)"
UNKNOWN_PLACEHOLDER = "(known after apply)"
