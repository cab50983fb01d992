import pytest

from botpanel.local.errors import ALREADY_RUNNING, NOT_RUNNING, BotPanelError, ConflictError
from botpanel.local.supervisor.state import BotEvent, BotState, next_state


@pytest.mark.parametrize("state, event, expected", [
    (BotState.STOPPED, BotEvent.START, BotState.STARTING),
    (BotState.STARTING, BotEvent.START, BotState.RUNNING),
    (BotState.STARTING, BotEvent.EXIT, BotState.STOPPED),
    (BotState.RUNNING, BotEvent.STOP, BotState.STOPPING),
    (BotState.RUNNING, BotEvent.RESTART, BotState.STOPPING),
    (BotState.STOPPING, BotEvent.RESTART, BotState.STOPPING),
    (BotState.STOPPING, BotEvent.EXIT, BotState.STOPPED),
    (BotState.RUNNING, BotEvent.EXIT, BotState.STOPPED),
    (BotState.STOPPED, BotEvent.RESTART, BotState.STARTING),
])
def test_allowed_transitions(state, event, expected):
    assert next_state(state, event) is expected


@pytest.mark.parametrize("state", [BotState.RUNNING, BotState.STOPPING])
def test_start_while_alive_is_already_running(state):
    with pytest.raises(ConflictError) as excinfo:
        next_state(state, BotEvent.START, "echo")
    assert excinfo.value.code == ALREADY_RUNNING
    assert excinfo.value.unit == "echo"
    assert excinfo.value.status_code == 409


def test_stop_while_stopped_is_not_running():
    with pytest.raises(ConflictError) as excinfo:
        next_state(BotState.STOPPED, BotEvent.STOP, "echo")
    assert excinfo.value.code == NOT_RUNNING


def test_unreachable_pair_is_rejected_generically():
    with pytest.raises(BotPanelError) as excinfo:
        next_state(BotState.STARTING, BotEvent.STOP)
    assert not isinstance(excinfo.value, ConflictError)
    assert excinfo.value.code == "InvalidTransition"
