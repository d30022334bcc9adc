# compute/repositories/exceptions.py

class StoreError(Exception):
    """저장소 접근(연결, 쿼리, 커밋 등)에 실패했을 때"""
    pass

class UniqueConstraintError(StoreError):
    """unique 제약 조건을 위반하는 쓰기를 시도했을 때"""
    def __init__(self, field: str, value):
        super().__init__(f"Unique constraint violated on '{field}': {value!r}")
        self.field = field
        self.value = value

class StaleVersionError(StoreError):
    """조건부 쓰기의 기대 버전이 저장된 버전과 다를 때 (다른 쓰기가 먼저 반영됨)"""
    def __init__(self, vm_id: str, expected_version: int):
        super().__init__(f"VM '{vm_id}' was modified concurrently (expected version {expected_version}).")
        self.vm_id = vm_id
        self.expected_version = expected_version
