"""
StatementWatch - Runtime Configuration
======================================
Environment-driven settings, read once at import.

Domain tables (bands, grace periods, reminder defaults) are not
configuration: they live in reminder_constants.py.
"""

import os
from typing import List

from reminder_constants import NotificationChannelType


def _split(value: str) -> List[str]:
    return [item.strip() for item in value.split(",") if item.strip()]


def _parse_channels(value: str) -> List[NotificationChannelType]:
    return [NotificationChannelType(item.lower()) for item in _split(value)]


SERVICE_NAME = "StatementWatch"
VERSION = "1.0.0"

LOG_LEVEL = os.getenv("STATEMENTWATCH_LOG_LEVEL", "INFO").upper()

# Exposes exception details in 500 responses
DEBUG = bool(os.getenv("DEBUG"))

CORS_ORIGINS = _split(os.getenv(
    "STATEMENTWATCH_CORS_ORIGINS",
    "http://localhost:3000,http://localhost:5173",  # React dev servers
))

LOOKAHEAD_DAYS = int(os.getenv("STATEMENTWATCH_LOOKAHEAD_DAYS", "30"))

# Channels with a registered transport
DEFAULT_CHANNELS = _parse_channels(os.getenv("STATEMENTWATCH_DEFAULT_CHANNELS", "app"))

HOST = os.getenv("STATEMENTWATCH_HOST", "0.0.0.0")
PORT = int(os.getenv("STATEMENTWATCH_PORT", "8000"))
