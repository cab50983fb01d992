"""
Logging handlers for the application.
This module provides the logging handlers that persist or ship log records
to backends other than the console.
"""

from .loki import LokiHandler
from .sql import SQLiteHandler

__all__ = ["SQLiteHandler", "LokiHandler"]
