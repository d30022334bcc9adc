# compute/services/exceptions.py
#
# 호출자에게 전달되는 타입이 있는 실패들입니다. 각 예외는 전송 계층이 상태 코드와
# 메시지를 다시 계산하지 않아도 되도록 필요한 문맥(VM ID, 이벤트, 필드 등)을 담습니다.

def _plain(value):
    return getattr(value, "value", value)


class VmServiceError(Exception):
    """VM 라이프사이클 서비스가 발생시키는 모든 예외의 기반 클래스"""
    code = "VM_ERROR"

    def __init__(self, message: str, **context):
        super().__init__(message)
        self.context = {key: _plain(value) for key, value in context.items()}

    def to_dict(self):
        return {"error": str(self), "code": self.code, **self.context}

# --- General Exceptions ---
class NotFoundError(VmServiceError):
    """VM을 찾을 수 없을 때"""
    code = "NOT_FOUND"

    def __init__(self, vm_id: str):
        super().__init__(f"VM '{vm_id}' not found.", vm_id=vm_id)
        self.vm_id = vm_id

class StoreUnavailableError(VmServiceError):
    """저장소 협력자가 실패했을 때. 호출자가 재시도 여부를 판단합니다."""
    code = "STORE_UNAVAILABLE"

    def __init__(self, operation: str, vm_id: str = None):
        super().__init__(f"Store unavailable during '{operation}'.", operation=operation, vm_id=vm_id)
        self.operation = operation
        self.vm_id = vm_id

# --- Creation/Validation Exceptions ---
class DuplicateNameError(VmServiceError):
    """VM 이름이 이미 존재할 때 (종료된 VM 포함)"""
    code = "DUPLICATE_NAME"

    def __init__(self, name: str):
        super().__init__(f"VM with name '{name}' already exists.", name=name)
        self.name = name

class InvalidResourcesError(VmServiceError):
    """리소스 사양이 유효성 검사를 통과하지 못했을 때"""
    code = "INVALID_RESOURCES"

    def __init__(self, reason, field: str = None, value=None, detail: str = None):
        super().__init__(
            f"Invalid resource specification ({_plain(reason)}): {detail or field}",
            reason=reason, field=field, value=value,
        )
        self.reason = reason
        self.field = field
        self.value = value

# --- State Machine Exceptions ---
class IllegalTransitionError(VmServiceError):
    """현재 상태에서 요청한 이벤트가 허용되지 않을 때"""
    code = "ILLEGAL_TRANSITION"

    def __init__(self, from_state, event, vm_id: str = None):
        super().__init__(
            f"Cannot apply '{_plain(event)}' to VM in state {_plain(from_state)}.",
            from_state=from_state, event=event, vm_id=vm_id,
        )
        self.from_state = from_state
        self.event = event
        self.vm_id = vm_id

class ConcurrentModificationError(VmServiceError):
    """동시 수정 충돌이 재평가 한도 안에서 해소되지 않았을 때"""
    code = "CONCURRENT_MODIFICATION"

    def __init__(self, vm_id: str, attempts: int):
        super().__init__(
            f"VM '{vm_id}' kept changing concurrently; gave up after {attempts} attempts.",
            vm_id=vm_id, attempts=attempts,
        )
        self.vm_id = vm_id
        self.attempts = attempts
