"""
Local package for the BotPanel application.

This package holds everything that runs inside the panel process: the
effective configuration, the bot registry, the log broadcaster and the
supervisor that owns the bots' processes.
"""

from .config import effective_settings

__all__ = ["effective_settings"]
