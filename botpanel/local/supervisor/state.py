"""
Per-bot lifecycle state machine.

The observable status is binary: a bot is Running while it has a running
instance and Stopped otherwise. STARTING and STOPPING are bookkeeping states
held only while the bot's lock is taken (STARTING) or while a termination
request is outstanding (STOPPING).
"""

from enum import Enum
from typing import Dict, Optional, Tuple

from botpanel.local.errors import ALREADY_RUNNING, NOT_RUNNING, BotPanelError, ConflictError


class BotState(Enum):
    STOPPED = "stopped"
    STARTING = "starting"
    RUNNING = "running"
    STOPPING = "stopping"


class BotEvent(Enum):
    START = "start"
    STOP = "stop"
    RESTART = "restart"
    EXIT = "exit"


# (state, event) -> next state. Pairs that are absent are rejected.
TRANSITIONS: Dict[Tuple[BotState, BotEvent], BotState] = {
    (BotState.STOPPED, BotEvent.START): BotState.STARTING,
    (BotState.STARTING, BotEvent.START): BotState.RUNNING,   # spawn succeeded
    (BotState.STARTING, BotEvent.EXIT): BotState.STOPPED,    # spawn failed
    (BotState.STOPPED, BotEvent.RESTART): BotState.STARTING,
    (BotState.RUNNING, BotEvent.STOP): BotState.STOPPING,
    (BotState.RUNNING, BotEvent.RESTART): BotState.STOPPING,
    (BotState.STOPPING, BotEvent.STOP): BotState.STOPPING,
    (BotState.STOPPING, BotEvent.RESTART): BotState.STOPPING,
    (BotState.RUNNING, BotEvent.EXIT): BotState.STOPPED,
    (BotState.STOPPING, BotEvent.EXIT): BotState.STOPPED,
}

_REJECTIONS: Dict[Tuple[BotState, BotEvent], Tuple[str, str]] = {
    (BotState.RUNNING, BotEvent.START): (ALREADY_RUNNING, "Bot is already running."),
    (BotState.STOPPING, BotEvent.START): (ALREADY_RUNNING, "Bot is still shutting down."),
    (BotState.STOPPED, BotEvent.STOP): (NOT_RUNNING, "Bot is not running."),
}


def next_state(state: BotState, event: BotEvent, unit: Optional[str] = None) -> BotState:
    """
    Looks up the transition for `event` in `state`.

    :raises ConflictError: For a rejected start/stop (AlreadyRunning, NotRunning).
    :raises BotPanelError: For a pair the machine never produces.
    """
    try:
        return TRANSITIONS[(state, event)]
    except KeyError:
        pass
    if (state, event) in _REJECTIONS:
        code, detail = _REJECTIONS[(state, event)]
        raise ConflictError(code, unit, detail)
    raise BotPanelError("InvalidTransition", unit, f"Cannot apply '{event.value}' while {state.value}.")
