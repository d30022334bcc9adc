from sqlalchemy import JSON, Column, DateTime, Integer, String
from ..database import Base


class VM(Base):
    """
    VM 문서를 저장하는 테이블입니다.
    사용자, 상태, 리전/가용 영역으로 조회할 수 있도록 해당 컬럼에 인덱스를 둡니다.
    name의 unique 제약이 이름 중복을 막는 최종 보루이며,
    version 컬럼은 조건부 UPDATE(낙관적 동시성 제어)에 사용됩니다.
    """
    __tablename__ = "vms"
    id = Column(String(36), primary_key=True)
    name = Column(String, unique=True, nullable=False, index=True)
    state = Column(String, nullable=False, index=True)
    image_id = Column(String)
    instance_type = Column(String)

    cpu_cores = Column(Integer, nullable=False)
    memory_gb = Column(Integer, nullable=False)
    storage_gb = Column(Integer, nullable=False)
    network_bandwidth_mbps = Column(Integer, nullable=False, default=0)

    network_config = Column(JSON, nullable=False, default=dict)
    # 'metadata'는 Declarative Base가 예약한 속성 이름이라 컬럼 이름만 그대로 사용합니다.
    vm_metadata = Column("metadata", JSON, nullable=False, default=dict)

    owner_user_id = Column(String, index=True)
    region = Column(String, index=True)
    availability_zone = Column(String, index=True)
    tags = Column(JSON, nullable=False, default=list)

    created_at = Column(DateTime, nullable=False)
    updated_at = Column(DateTime, nullable=False)
    version = Column(Integer, nullable=False, default=1)
