"""VM 엔티티 모델.

스토어와 API 사이에서 주고받는 VM 문서의 형태를 정의합니다.
필드 이름과 상태 값(VMState)은 외부 협력자들이 의존하는 계약이므로 변경하지 않습니다.
"""
from datetime import datetime
from enum import Enum
from typing import Dict, List, Optional, Set

from pydantic import BaseModel, Field, field_serializer


class VMState(str, Enum):
    PENDING = "PENDING"
    RUNNING = "RUNNING"
    STOPPED = "STOPPED"
    TERMINATED = "TERMINATED"
    ERROR = "ERROR"


# 저장소의 정수 컬럼(64비트 부호 있는 정수)이 담을 수 있는 최댓값
MAX_RESOURCE_VALUE = 2 ** 63 - 1


class ResourceSpec(BaseModel):
    """
    VM에 할당된 리소스 사양. 하한(0 초과 등)은 validation 모듈에서 검사하고,
    여기서는 저장할 수 없는 크기의 값만 파싱 단계에서 거부합니다.
    """
    cpu_cores: int = Field(le=MAX_RESOURCE_VALUE)
    memory_gb: int = Field(le=MAX_RESOURCE_VALUE)
    storage_gb: int = Field(le=MAX_RESOURCE_VALUE)
    network_bandwidth_mbps: int = Field(default=0, le=MAX_RESOURCE_VALUE)


class NetworkConfig(BaseModel):
    vpc_id: Optional[str] = None
    subnet_id: Optional[str] = None
    private_ip: Optional[str] = None
    public_ip: Optional[str] = None
    security_group_ids: Set[str] = Field(default_factory=set)

    @field_serializer("security_group_ids")
    def _serialize_security_groups(self, value: Set[str]) -> List[str]:
        return sorted(value)


class VMMetadata(BaseModel):
    hostname: Optional[str] = None
    ssh_key: Optional[str] = None
    user_data: Optional[str] = None
    custom_metadata: Dict[str, str] = Field(default_factory=dict)


class VM(BaseModel):
    """
    사용자가 선언한 가상 머신(인스턴스)의 의도와 상태를 나타냅니다.

    id, created_at, version은 서비스와 스토어가 관리하며, 생성 요청에 포함된 값은 무시됩니다.
    종료(TERMINATED)된 VM도 삭제하지 않고 감사 이력으로 보관합니다.
    """
    id: Optional[str] = None
    name: str
    state: VMState = VMState.PENDING
    image_id: Optional[str] = None
    instance_type: Optional[str] = None
    resources: Optional[ResourceSpec] = None
    network_config: NetworkConfig = Field(default_factory=NetworkConfig)
    metadata: VMMetadata = Field(default_factory=VMMetadata)
    owner_user_id: Optional[str] = None
    region: Optional[str] = None
    availability_zone: Optional[str] = None
    tags: List[str] = Field(default_factory=list)
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    version: int = 0

    @property
    def is_available(self) -> bool:
        return self.state == VMState.RUNNING
