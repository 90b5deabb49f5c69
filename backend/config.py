"""
Application Configuration File

This file centralizes all configuration variables so that:
- deployment changes do not require code changes
- the realtime hub and the REST layer read the same constants
- tests can point the service at a throwaway database
"""

import os
from pathlib import Path

# -------------------------------------------------
# BASE DIRECTORY
# -------------------------------------------------
BASE_DIR = Path(__file__).resolve().parent

# -------------------------------------------------
# DATABASE CONFIGURATION
# -------------------------------------------------
DATABASE_NAME = "taskhub.db"
DATABASE_PATH = BASE_DIR / DATABASE_NAME

DATABASE_URL = os.getenv("TASKHUB_DATABASE_URL", f"sqlite:///{DATABASE_PATH}")

# -------------------------------------------------
# APPLICATION SETTINGS
# -------------------------------------------------
APP_NAME = "TaskHub"
APP_VERSION = "1.0"

# -------------------------------------------------
# NETWORK SETTINGS
# -------------------------------------------------
DEFAULT_HOST = "0.0.0.0"
DEFAULT_PORT = 8000

# -------------------------------------------------
# LOGGING
# -------------------------------------------------
LOG_DIR = Path(os.getenv("TASKHUB_LOG_DIR", BASE_DIR / "logs"))
LOG_FILE = "app.log"
ERROR_LOG_FILE = "error.log"
LOG_MAX_BYTES = 10 * 1024 * 1024
LOG_BACKUP_COUNT = 5

# -------------------------------------------------
# ROLE DEFINITIONS
# -------------------------------------------------
ROLE_ADMIN = "admin"
ROLE_TEAM_MEMBER = "team_member"

# -------------------------------------------------
# TASK CONSTANTS
# -------------------------------------------------
TASK_STATUS_PENDING = "pending"
TASK_STATUS_IN_PROGRESS = "in_progress"
TASK_STATUS_COMPLETED = "completed"
TASK_STATUS_CANCELLED = "cancelled"

DEFAULT_TASK_PRIORITY = "medium"

# Current status -> statuses a task may move to next.
VALID_STATUS_TRANSITIONS = {
    TASK_STATUS_PENDING: [TASK_STATUS_IN_PROGRESS, TASK_STATUS_COMPLETED, TASK_STATUS_CANCELLED],
    TASK_STATUS_IN_PROGRESS: [TASK_STATUS_COMPLETED, TASK_STATUS_CANCELLED, TASK_STATUS_PENDING],
    TASK_STATUS_COMPLETED: [TASK_STATUS_PENDING],
    TASK_STATUS_CANCELLED: [TASK_STATUS_PENDING],
}

# -------------------------------------------------
# REALTIME SETTINGS
# -------------------------------------------------
TEAM_PERFORMANCE_INTERVAL_SECONDS = float(os.getenv("TASKHUB_PERFORMANCE_INTERVAL", "30"))

# -------------------------------------------------
# LISTING DEFAULTS
# -------------------------------------------------
DEFAULT_PAGE_SIZE = 10
NOTIFICATION_LIST_LIMIT = 50
TASK_STATS_PREVIEW_LIMIT = 5
