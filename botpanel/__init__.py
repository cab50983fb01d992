"""
BotPanel: upload zipped bots, run them as supervised child processes and
watch their output live.
"""

__version__ = "1.0.0"
