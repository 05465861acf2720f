"""Centralized configuration constants for History Lens."""

from pathlib import Path

# Timestamps
# 2000-01-01T00:00:00Z; anything at or before this is "unavailable"
TIMESTAMP_SENTINEL = 946684800
# Raw values at or above this are milliseconds, below are seconds
MILLISECONDS_THRESHOLD = 1e12
# 9999-12-31T23:59:59Z; later values cannot be rendered as dates
MAX_EPOCH_SECONDS = 253402300799
# Rendered in place of a date when a timestamp is unavailable
UNKNOWN_TIMESTAMP = "unknown"
SECONDS_PER_DAY = 86400

# Vendors and roles
ALL_VENDORS = "all"
ANY_ROLE = "any"

# Conversation index
UNTITLED = "(untitled)"
FIRST_LINE_MAX_CHARS = 80

# Turn grouping
DEFAULT_TURN_GAP_SECONDS = 7 * 60

# Pagination
DEFAULT_PAGE_SIZE = 50
MIN_PAGE_SIZE = 1
MAX_PAGE_SIZE = 1000
PAGE_SIZE_ALL = "all"
CONVERSATION_PAGE_KEY = "convPageSize"
TURN_PAGE_KEY = "pageSize"

# Preference store paths
CONFIG_DIR = Path.home() / ".config" / "history-lens"
PREFERENCES_FILE = CONFIG_DIR / "preferences.json"

# Environment overrides
PAYLOAD_ENV = "HISTORY_LENS_PAYLOAD"
QUERY_COMMAND_ENV = "HISTORY_LENS_QUERY_COMMAND"
SOURCES_ENV = "HISTORY_LENS_SOURCES"
PREFERENCES_ENV = "HISTORY_LENS_PREFERENCES"

# Progress protocol emitted by the acquisition layer
PROGRESS_TOTAL_PREFIX = "PROGRESS:TOTAL:"
PROGRESS_TICK_PREFIX = "PROGRESS:TICK:"
