# tests/services/test_state_machine.py
import pytest

from compute.domain import VMState
from compute.services.exceptions import IllegalTransitionError
from compute.services.state_machine import INITIAL_STATE, TERMINAL_STATES, VMEvent, VMStateMachine


@pytest.fixture
def machine() -> VMStateMachine:
    return VMStateMachine()


LEGAL = [
    (VMState.STOPPED, VMEvent.START, VMState.RUNNING),
    (VMState.RUNNING, VMEvent.STOP, VMState.STOPPED),
    (VMState.STOPPED, VMEvent.RESIZE, VMState.STOPPED),
    (VMState.STOPPED, VMEvent.RECONFIGURE_NETWORK, VMState.STOPPED),
    (VMState.PENDING, VMEvent.TERMINATE, VMState.TERMINATED),
    (VMState.RUNNING, VMEvent.TERMINATE, VMState.TERMINATED),
    (VMState.STOPPED, VMEvent.TERMINATE, VMState.TERMINATED),
    (VMState.ERROR, VMEvent.TERMINATE, VMState.TERMINATED),
]


@pytest.mark.parametrize("state, event, target", LEGAL)
def test_legal_transitions(machine, state, event, target):
    assert machine.can_transition(state, event)
    assert machine.transition(state, event) == target


@pytest.mark.parametrize("state", [s for s in VMState if s != VMState.STOPPED])
def test_start_is_only_legal_from_stopped(machine, state):
    with pytest.raises(IllegalTransitionError) as exc_info:
        machine.transition(state, VMEvent.START)
    assert exc_info.value.from_state == state
    assert exc_info.value.event == VMEvent.START


@pytest.mark.parametrize("state", [s for s in VMState if s != VMState.RUNNING])
def test_stop_is_only_legal_from_running(machine, state):
    with pytest.raises(IllegalTransitionError):
        machine.transition(state, VMEvent.STOP)


@pytest.mark.parametrize("event", [VMEvent.RESIZE, VMEvent.RECONFIGURE_NETWORK])
@pytest.mark.parametrize("state", [s for s in VMState if s != VMState.STOPPED])
def test_configuration_changes_require_stopped(machine, state, event):
    assert not machine.can_transition(state, event)
    with pytest.raises(IllegalTransitionError):
        machine.transition(state, event)


def test_terminated_has_no_outgoing_edges(machine):
    """TERMINATED는 유일한 종료 상태이며 어떤 이벤트도 허용하지 않습니다."""
    assert TERMINAL_STATES == {VMState.TERMINATED}
    assert machine.is_terminal(VMState.TERMINATED)
    assert machine.allowed_events(VMState.TERMINATED) == []
    for event in VMEvent:
        with pytest.raises(IllegalTransitionError):
            machine.transition(VMState.TERMINATED, event)


def test_pending_is_initial_and_only_terminable(machine):
    """PENDING에서 가드가 있는 이벤트는 terminate뿐입니다. 프로비저닝 완료는 force로 처리합니다."""
    assert INITIAL_STATE == VMState.PENDING
    assert machine.allowed_events(VMState.PENDING) == [VMEvent.TERMINATE]


def test_allowed_events_from_stopped(machine):
    assert set(machine.allowed_events(VMState.STOPPED)) == {
        VMEvent.START, VMEvent.RESIZE, VMEvent.RECONFIGURE_NETWORK, VMEvent.TERMINATE,
    }


@pytest.mark.parametrize("state", list(VMState))
@pytest.mark.parametrize("target", list(VMState))
def test_force_bypasses_guards(machine, state, target):
    """관리자 강제 변경은 가드 표와 무관하게 모든 상태 조합을 허용합니다."""
    assert machine.force(state, target) == target


def test_accepts_wire_values(machine):
    assert machine.transition("STOPPED", "start") == VMState.RUNNING
