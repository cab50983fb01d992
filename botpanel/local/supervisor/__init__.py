"""
The Supervisor package.
Manages the lifecycle of the deployed bots' processes.

This package contains the central BotSupervisor class and its helper modules,
which together handle deploying, starting, stopping, restarting and
installing dependencies for every bot.
"""
from .supervisor import BotSupervisor, RunningInstance

__all__ = ['BotSupervisor', 'RunningInstance']
