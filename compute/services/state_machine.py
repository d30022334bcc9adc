"""VM 라이프사이클 상태 머신.

허용되는 상태 전이는 TRANSITIONS 표에 정의된 (현재 상태, 이벤트) 쌍뿐입니다.
상태 머신은 명시적인 이벤트로만 전이하며, 타이머나 추론에 의한 전이는 없습니다.

관리자용 강제 변경(force)은 가드가 있는 전이 표와 분리된 별도 경로입니다.
프로비저닝 완료(PENDING -> RUNNING/STOPPED)도 전용 이벤트가 생기기 전까지는 이 경로를 사용합니다.
"""
from enum import Enum
from typing import Dict, List, Mapping, Tuple

from compute.domain import VMState
from compute.services.exceptions import IllegalTransitionError


class VMEvent(str, Enum):
    START = "start"
    STOP = "stop"
    TERMINATE = "terminate"
    RESIZE = "resize"
    RECONFIGURE_NETWORK = "reconfigure_network"


INITIAL_STATE = VMState.PENDING
TERMINAL_STATES = frozenset({VMState.TERMINATED})

TRANSITIONS: Dict[Tuple[VMState, VMEvent], VMState] = {
    (VMState.STOPPED, VMEvent.START): VMState.RUNNING,
    (VMState.RUNNING, VMEvent.STOP): VMState.STOPPED,
    # 리소스/네트워크 변경은 정지 상태에서만 가능하며 상태는 그대로 유지됩니다.
    (VMState.STOPPED, VMEvent.RESIZE): VMState.STOPPED,
    (VMState.STOPPED, VMEvent.RECONFIGURE_NETWORK): VMState.STOPPED,
}
TRANSITIONS.update({
    (state, VMEvent.TERMINATE): VMState.TERMINATED
    for state in VMState if state not in TERMINAL_STATES
})


class VMStateMachine:
    def __init__(self, transitions: Mapping[Tuple[VMState, VMEvent], VMState] = TRANSITIONS):
        self._transitions = dict(transitions)

    def can_transition(self, state: VMState, event: VMEvent) -> bool:
        return (VMState(state), VMEvent(event)) in self._transitions

    def transition(self, state: VMState, event: VMEvent) -> VMState:
        """
        가드를 검사하고 이벤트 적용 후의 상태를 반환합니다.

        Raises:
            IllegalTransitionError: 현재 상태에서 해당 이벤트가 허용되지 않을 때.
        """
        state, event = VMState(state), VMEvent(event)
        try:
            return self._transitions[(state, event)]
        except KeyError:
            raise IllegalTransitionError(state, event) from None

    def allowed_events(self, state: VMState) -> List[VMEvent]:
        state = VMState(state)
        return [event for (source, event) in self._transitions if source == state]

    def is_terminal(self, state: VMState) -> bool:
        return VMState(state) in TERMINAL_STATES

    def force(self, state: VMState, target: VMState) -> VMState:
        """가드 없이 목표 상태로 변경합니다. 운영자 복구 경로 전용입니다."""
        return VMState(target)
