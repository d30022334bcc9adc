from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from compute import domain
from compute.database import models
from compute.repositories.exceptions import StaleVersionError, StoreError, UniqueConstraintError
from compute.repositories.interfaces import IVMRepository


def _to_db_datetime(value: Optional[datetime]) -> Optional[datetime]:
    # DB에는 UTC 기준 naive datetime으로 저장합니다.
    if value is None or value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


def _from_db_datetime(value: Optional[datetime]) -> Optional[datetime]:
    if value is None or value.tzinfo is not None:
        return value
    return value.replace(tzinfo=timezone.utc)


def _is_name_violation(error: IntegrityError) -> bool:
    # SQLite: "UNIQUE constraint failed: vms.name", PostgreSQL: unique index "ix_vms_name"
    message = str(error.orig).lower()
    return "vms.name" in message or "vms_name" in message


def _to_columns(vm: domain.VM) -> Dict[str, Any]:
    resources = vm.resources
    return {
        "name": vm.name,
        "state": vm.state.value,
        "image_id": vm.image_id,
        "instance_type": vm.instance_type,
        "cpu_cores": resources.cpu_cores,
        "memory_gb": resources.memory_gb,
        "storage_gb": resources.storage_gb,
        "network_bandwidth_mbps": resources.network_bandwidth_mbps,
        "network_config": vm.network_config.model_dump(mode="json"),
        "vm_metadata": vm.metadata.model_dump(mode="json"),
        "owner_user_id": vm.owner_user_id,
        "region": vm.region,
        "availability_zone": vm.availability_zone,
        "tags": list(vm.tags),
        "created_at": _to_db_datetime(vm.created_at),
        "updated_at": _to_db_datetime(vm.updated_at),
    }


def _to_domain(record: models.VM) -> domain.VM:
    return domain.VM(
        id=record.id,
        name=record.name,
        state=domain.VMState(record.state),
        image_id=record.image_id,
        instance_type=record.instance_type,
        resources=domain.ResourceSpec(
            cpu_cores=record.cpu_cores,
            memory_gb=record.memory_gb,
            storage_gb=record.storage_gb,
            network_bandwidth_mbps=record.network_bandwidth_mbps,
        ),
        network_config=domain.NetworkConfig.model_validate(record.network_config or {}),
        metadata=domain.VMMetadata.model_validate(record.vm_metadata or {}),
        owner_user_id=record.owner_user_id,
        region=record.region,
        availability_zone=record.availability_zone,
        tags=list(record.tags or []),
        created_at=_from_db_datetime(record.created_at),
        updated_at=_from_db_datetime(record.updated_at),
        version=record.version,
    )


class SqlalchemyVMRepository(IVMRepository):
    def __init__(self, db_session: Session):
        self.db = db_session

    @contextmanager
    def _store_errors(self, operation: str):
        """SQLAlchemy 예외를 저장소 계층 예외로 변환합니다. 실패한 트랜잭션은 롤백합니다."""
        try:
            yield
        except SQLAlchemyError as e:
            self.db.rollback()
            raise StoreError(f"Store operation '{operation}' failed: {e}") from e

    def find_by_id(self, vm_id: str) -> Optional[domain.VM]:
        with self._store_errors("find_by_id"):
            record = self.db.query(models.VM).filter(models.VM.id == vm_id).first()
            return _to_domain(record) if record else None

    def find_by_name(self, name: str) -> Optional[domain.VM]:
        with self._store_errors("find_by_name"):
            record = self.db.query(models.VM).filter(models.VM.name == name).first()
            return _to_domain(record) if record else None

    def exists_by_id(self, vm_id: str) -> bool:
        with self._store_errors("exists_by_id"):
            return self.db.query(models.VM.id).filter(models.VM.id == vm_id).first() is not None

    def exists_by_name(self, name: str) -> bool:
        with self._store_errors("exists_by_name"):
            return self.db.query(models.VM.id).filter(models.VM.name == name).first() is not None

    def save(self, vm: domain.VM, expected_version: Optional[int] = None) -> domain.VM:
        columns = _to_columns(vm)
        try:
            if expected_version is None:
                self.db.add(models.VM(id=vm.id, version=1, **columns))
                self.db.commit()
                return vm.model_copy(update={"version": 1})

            new_version = expected_version + 1
            values = {getattr(models.VM, key): value for key, value in columns.items()}
            values[models.VM.version] = new_version
            # version이 일치하는 경우에만 갱신되는 단일 UPDATE 문 (문서 단위 원자적 쓰기)
            updated = self.db.query(models.VM).filter(
                models.VM.id == vm.id,
                models.VM.version == expected_version
            ).update(values, synchronize_session=False)
            if updated == 0:
                self.db.rollback()
                raise StaleVersionError(vm.id, expected_version)
            self.db.commit()
            return vm.model_copy(update={"version": new_version})
        except IntegrityError as e:
            self.db.rollback()
            if _is_name_violation(e):
                raise UniqueConstraintError("name", vm.name) from e
            raise StoreError(f"Store operation 'save' violated an integrity constraint for VM '{vm.id}': {e.orig}") from e
        except (SQLAlchemyError, OverflowError) as e:
            # 드라이버가 정수 범위를 넘는 값을 거부하면 OverflowError가 그대로 올라옵니다.
            self.db.rollback()
            raise StoreError(f"Store operation 'save' failed for VM '{vm.id}': {e}") from e

    def find_by(
        self,
        user_id: Optional[str] = None,
        state: Optional[domain.VMState] = None,
        region: Optional[str] = None,
        availability_zone: Optional[str] = None,
    ) -> List[domain.VM]:
        with self._store_errors("find_by"):
            query = self.db.query(models.VM)
            if user_id is not None:
                query = query.filter(models.VM.owner_user_id == user_id)
            if state is not None:
                query = query.filter(models.VM.state == domain.VMState(state).value)
            if region is not None:
                query = query.filter(models.VM.region == region)
            if availability_zone is not None:
                query = query.filter(models.VM.availability_zone == availability_zone)
            records = query.order_by(models.VM.created_at.desc()).all()
            return [_to_domain(record) for record in records]
