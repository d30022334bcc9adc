# tests/conftest.py
from datetime import datetime, timezone

import pytest
from sqlalchemy import create_engine
from sqlalchemy.pool import StaticPool

from compute.database.database import Base, make_engine, make_session_factory
from compute.database import models  # noqa: F401  (테이블 등록)
from compute.domain import VM, NetworkConfig, ResourceSpec, VMMetadata, VMState
from compute.repositories.sqlalchemy.sqlalchemy_vm_repository import SqlalchemyVMRepository


@pytest.fixture
def engine():
    """테스트마다 새로 만드는 인메모리 SQLite 엔진. 모든 세션이 하나의 연결을 공유합니다."""
    test_engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=test_engine)
    yield test_engine
    test_engine.dispose()


@pytest.fixture
def file_engine(tmp_path):
    """여러 스레드가 각자의 연결로 동시에 쓰는 테스트를 위한 파일 기반 SQLite 엔진."""
    test_engine = make_engine(f"sqlite:///{tmp_path / 'compute_test.db'}")
    Base.metadata.create_all(bind=test_engine)
    yield test_engine
    test_engine.dispose()


@pytest.fixture
def session_factory(engine):
    return make_session_factory(engine)


@pytest.fixture
def db_session(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def vm_repo(db_session) -> SqlalchemyVMRepository:
    return SqlalchemyVMRepository(db_session)


@pytest.fixture
def make_vm():
    """테스트용 VM 객체를 만드는 팩토리. 필요한 필드만 덮어써서 사용합니다."""
    def _make_vm(**overrides) -> VM:
        fields = {
            "name": "web-1",
            "resources": ResourceSpec(cpu_cores=2, memory_gb=4, storage_gb=20, network_bandwidth_mbps=100),
            "network_config": NetworkConfig(vpc_id="vpc-1", subnet_id="subnet-1", security_group_ids={"sg-web"}),
            "metadata": VMMetadata(hostname="web-1", custom_metadata={"team": "platform"}),
            "owner_user_id": "user-1",
            "region": "ap-northeast-2",
            "availability_zone": "ap-northeast-2a",
            "tags": ["web", "prod"],
        }
        fields.update(overrides)
        return VM(**fields)
    return _make_vm


@pytest.fixture
def stored_vm(make_vm):
    """이미 저장소에 있는 것처럼 id, 타임스탬프, version이 채워진 VM을 만듭니다."""
    def _stored_vm(state=VMState.STOPPED, version=1, **overrides) -> VM:
        created = datetime(2026, 1, 1, 12, 0, 0, tzinfo=timezone.utc)
        return make_vm(
            id=overrides.pop("id", "vm-1"),
            state=state,
            created_at=created,
            updated_at=overrides.pop("updated_at", created),
            version=version,
            **overrides,
        )
    return _stored_vm
