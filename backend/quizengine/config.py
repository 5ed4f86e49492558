"""
Runtime configuration read from environment variables.

All settings have development-friendly defaults so the service runs locally
against a SQLite file with no extra setup.
"""

import os

# Database URL. Falls back to a local SQLite file when PostgreSQL is not available.
DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./quiz_attempts.db")

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()

# Gaps shorter than this are treated as reloads/navigations, not absence
MIN_GAP_MS = int(os.getenv("MIN_GAP_MS", "5000"))

# How many recent assistant messages the legacy completion fallback scans
COMPLETION_MESSAGE_LOOKBACK = int(os.getenv("COMPLETION_MESSAGE_LOOKBACK", "12"))

CORS_ORIGINS = [o.strip() for o in os.getenv("CORS_ORIGINS", "*").split(",") if o.strip()]
