"""
Soft Delete Scope Configuration

Environment-driven settings, read once at import time.
"""

import os

DATABASE_URL = os.getenv("DATABASE_URL", "sqlite+aiosqlite:///./soft_delete_scope.db")

# Name of the nullable timestamp column that marks a row as logically deleted
SOFT_DELETE_FIELD = os.getenv("SOFT_DELETE_FIELD", "deleted_at")

SQL_ECHO = os.getenv("SQL_ECHO", "0") == "1"
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()

API_HOST = os.getenv("API_HOST", "0.0.0.0")
API_PORT = int(os.getenv("API_PORT", "8013"))
