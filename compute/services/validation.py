from enum import Enum
from typing import Optional

from compute.domain import MAX_RESOURCE_VALUE, ResourceSpec


class ValidationReason(str, Enum):
    MISSING_SPEC = "MissingSpec"
    INVALID_CPU = "InvalidCpu"
    INVALID_MEMORY = "InvalidMemory"
    INVALID_STORAGE = "InvalidStorage"
    INVALID_BANDWIDTH = "InvalidBandwidth"


class ResourceValidationError(ValueError):
    def __init__(self, reason: ValidationReason, message: str, field: str = None, value=None):
        super().__init__(message)
        self.reason = reason
        self.field = field
        self.value = value


# (필드, 실패 사유, 허용 조건, 메시지) - 위에서부터 순서대로 검사합니다.
_RULES = (
    ("cpu_cores", ValidationReason.INVALID_CPU, lambda v: v > 0, "CPU cores must be greater than 0"),
    ("memory_gb", ValidationReason.INVALID_MEMORY, lambda v: v > 0, "Memory must be greater than 0"),
    ("storage_gb", ValidationReason.INVALID_STORAGE, lambda v: v > 0, "Storage must be greater than 0"),
    ("network_bandwidth_mbps", ValidationReason.INVALID_BANDWIDTH, lambda v: v >= 0, "Network bandwidth cannot be negative"),
)


def validate_resources(spec: Optional[ResourceSpec]) -> None:
    """
    리소스 사양이 올바른 형태인지 검사합니다. 부수 효과가 없으며 생성과 리사이즈 시 모두 사용됩니다.

    Args:
        spec: 검사할 리소스 사양. None일 수 있습니다.

    Raises:
        ResourceValidationError: 사양이 없거나, 처음으로 위반된 필드에 해당하는 사유와 함께.
    """
    if spec is None:
        raise ResourceValidationError(ValidationReason.MISSING_SPEC, "Resource specification cannot be null")

    for field, reason, is_valid, message in _RULES:
        value = getattr(spec, field)
        if not is_valid(value):
            raise ResourceValidationError(reason, message, field=field, value=value)
        # model_construct 등으로 파싱을 거치지 않은 사양도 저장 가능한 범위여야 합니다.
        if value > MAX_RESOURCE_VALUE:
            raise ResourceValidationError(
                reason, f"{field} must not exceed {MAX_RESOURCE_VALUE}", field=field, value=value,
            )
