import logging
import uuid
from datetime import datetime, timedelta, timezone
from typing import Callable, Dict, List, Optional

from compute.config import settings
from compute.domain import VM, NetworkConfig, ResourceSpec, VMState
from compute.repositories.exceptions import StaleVersionError, StoreError, UniqueConstraintError
from compute.repositories.interfaces import IVMRepository
from compute.services.exceptions import (
    ConcurrentModificationError,
    DuplicateNameError,
    IllegalTransitionError,
    InvalidResourcesError,
    NotFoundError,
    StoreUnavailableError,
)
from compute.services.state_machine import INITIAL_STATE, VMEvent, VMStateMachine
from compute.services.validation import ResourceValidationError, validate_resources

logger = logging.getLogger(__name__)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class VMLifecycleService:
    """VM 상태를 변경하는 유일한 진입점입니다. 검증, 상태 전이, 저장을 조율합니다."""

    def __init__(
        self,
        vm_repo: IVMRepository,
        state_machine: Optional[VMStateMachine] = None,
        clock: Callable[[], datetime] = utc_now,
        conflict_retry_limit: Optional[int] = None,
    ):
        """
        VMLifecycleService를 초기화합니다.

        Args:
            vm_repo: VM 문서를 저장하고 조회하는 리포지토리.
            state_machine: 전이 가드를 판단하는 상태 머신. 없으면 기본 전이 표를 사용합니다.
            clock: 현재 시각(UTC)을 반환하는 함수.
            conflict_retry_limit: 동시 수정 충돌 시 최신 상태로 다시 평가하는 최대 횟수.
        """
        self.vm_repo = vm_repo
        self.state_machine = state_machine or VMStateMachine()
        self.clock = clock
        if conflict_retry_limit is None:
            conflict_retry_limit = settings.CONFLICT_RETRY_LIMIT
        self.conflict_retry_limit = conflict_retry_limit

    # ------------------------------------------------------------------
    # 생성
    # ------------------------------------------------------------------

    def create_vm(self, vm_spec: VM) -> VM:
        """
        새로운 VM 레코드를 PENDING 상태로 생성합니다.

        요청에 포함된 id, state, 타임스탬프, version은 무시하고 서비스가 새로 할당합니다.
        이름 중복은 먼저 조회로 확인하지만, 동시에 같은 이름으로 생성하는 경우를 막는 것은
        저장소의 unique 제약입니다.

        Args:
            vm_spec: 생성할 VM의 사양.

        Returns:
            저장된 VM.

        Raises:
            InvalidResourcesError: 리소스 사양이 유효하지 않을 때.
            DuplicateNameError: 동일한 이름의 VM이 이미 존재할 때.
            StoreUnavailableError: 저장소 접근에 실패했을 때.
        """
        self._validate(vm_spec.resources)

        if self._call_store("create", lambda: self.vm_repo.exists_by_name(vm_spec.name)):
            logger.warning("Rejected VM creation: name '%s' already exists", vm_spec.name)
            raise DuplicateNameError(vm_spec.name)

        now = self.clock()
        new_vm = vm_spec.model_copy(update={
            "id": str(uuid.uuid4()),
            "state": INITIAL_STATE,
            "created_at": now,
            "updated_at": now,
            "version": 0,
        })
        try:
            saved_vm = self.vm_repo.save(new_vm)
        except UniqueConstraintError as e:
            logger.warning("Rejected VM creation: name '%s' taken concurrently", vm_spec.name)
            raise DuplicateNameError(vm_spec.name) from e
        except StoreError as e:
            logger.error("Error creating VM '%s': %s", vm_spec.name, e)
            raise StoreUnavailableError("create") from e

        logger.info("Created VM with ID: %s", saved_vm.id)
        return saved_vm

    # ------------------------------------------------------------------
    # 가드가 있는 전이
    # ------------------------------------------------------------------

    def start_vm(self, vm_id: str) -> VM:
        """STOPPED 상태의 VM을 RUNNING으로 전이합니다."""
        return self._transition(vm_id, VMEvent.START)

    def stop_vm(self, vm_id: str) -> VM:
        """RUNNING 상태의 VM을 STOPPED로 전이합니다."""
        return self._transition(vm_id, VMEvent.STOP)

    def terminate_vm(self, vm_id: str) -> VM:
        """
        VM을 TERMINATED로 전이합니다. 레코드는 삭제하지 않고 이력으로 남깁니다.
        이미 종료된 VM에 대해서는 IllegalTransitionError가 발생합니다.
        """
        return self._transition(vm_id, VMEvent.TERMINATE)

    def update_resources(self, vm_id: str, new_resources: ResourceSpec) -> VM:
        """
        정지 상태의 VM 리소스를 교체합니다.

        Raises:
            InvalidResourcesError: 새 리소스 사양이 유효하지 않을 때. (상태 검사보다 먼저 수행)
            NotFoundError: VM이 존재하지 않을 때.
            IllegalTransitionError: VM이 STOPPED 상태가 아닐 때.
        """
        self._validate(new_resources)

        def change(vm: VM) -> Dict:
            return {
                "state": self._guard(vm, VMEvent.RESIZE),
                "resources": new_resources.model_copy(),
            }

        return self._mutate(vm_id, "update_resources", change)

    def update_network_config(self, vm_id: str, new_config: NetworkConfig) -> VM:
        """
        정지 상태의 VM 네트워크 설정을 교체합니다.

        Raises:
            ValueError: 새 네트워크 설정이 None일 때. (상태 검사보다 먼저 수행)
            NotFoundError: VM이 존재하지 않을 때.
            IllegalTransitionError: VM이 STOPPED 상태가 아닐 때.
        """
        if new_config is None:
            raise ValueError("Network configuration cannot be null")

        def change(vm: VM) -> Dict:
            return {
                "state": self._guard(vm, VMEvent.RECONFIGURE_NETWORK),
                "network_config": new_config.model_copy(deep=True),
            }

        return self._mutate(vm_id, "update_network_config", change)

    # ------------------------------------------------------------------
    # 관리자 강제 변경
    # ------------------------------------------------------------------

    def modify_vm(self, vm_id: str, new_state: VMState) -> VM:
        """
        상태 머신의 가드를 거치지 않고 VM 상태를 직접 설정합니다.
        오류 복구(예: ERROR로 강제 전환)와 프로비저닝 완료 처리에 사용합니다.
        """
        new_state = VMState(new_state)

        def change(vm: VM) -> Dict:
            return {"state": self.state_machine.force(vm.state, new_state)}

        updated_vm = self._mutate(vm_id, "modify", change)
        logger.info("Modified VM state to %s for VM ID: %s", new_state.value, vm_id)
        return updated_vm

    # ------------------------------------------------------------------
    # 조회 (부수 효과 없음)
    # ------------------------------------------------------------------

    def get_vm(self, vm_id: str) -> Optional[VM]:
        return self._call_store("get_vm", lambda: self.vm_repo.find_by_id(vm_id))

    def find_by_name(self, name: str) -> Optional[VM]:
        return self._call_store("find_by_name", lambda: self.vm_repo.find_by_name(name))

    def list_vms(
        self,
        user_id: Optional[str] = None,
        state: Optional[VMState] = None,
        region: Optional[str] = None,
        availability_zone: Optional[str] = None,
    ) -> List[VM]:
        """주어진 조건으로 VM 목록을 조회합니다. 지정하지 않은 조건은 와일드카드로 취급합니다."""
        if state is not None:
            state = VMState(state)
        return self._call_store("list_vms", lambda: self.vm_repo.find_by(
            user_id=user_id, state=state, region=region, availability_zone=availability_zone,
        ))

    def list_by_user(self, user_id: str) -> List[VM]:
        return self.list_vms(user_id=user_id)

    def list_by_state(self, state: VMState) -> List[VM]:
        return self.list_vms(state=state)

    def list_by_user_and_state(self, user_id: str, state: VMState) -> List[VM]:
        return self.list_vms(user_id=user_id, state=state)

    def list_by_region(self, region: str) -> List[VM]:
        return self.list_vms(region=region)

    def list_by_availability_zone(self, availability_zone: str) -> List[VM]:
        return self.list_vms(availability_zone=availability_zone)

    def exists_vm(self, vm_id: str) -> bool:
        return self._call_store("exists_vm", lambda: self.vm_repo.exists_by_id(vm_id))

    def is_vm_available(self, vm_id: str) -> bool:
        """VM이 RUNNING 상태이면 True. 존재하지 않으면 False를 반환합니다."""
        vm = self.get_vm(vm_id)
        return vm is not None and vm.is_available

    # ------------------------------------------------------------------
    # 내부 구현
    # ------------------------------------------------------------------

    def _transition(self, vm_id: str, event: VMEvent) -> VM:
        updated_vm = self._mutate(vm_id, event.value, lambda vm: {"state": self._guard(vm, event)})
        logger.info("Applied '%s' to VM ID: %s (now %s)", event.value, vm_id, updated_vm.state.value)
        return updated_vm

    def _guard(self, vm: VM, event: VMEvent) -> VMState:
        try:
            return self.state_machine.transition(vm.state, event)
        except IllegalTransitionError as e:
            logger.warning("Rejected '%s' for VM %s in state %s", event.value, vm.id, vm.state.value)
            raise IllegalTransitionError(e.from_state, e.event, vm_id=vm.id) from None

    def _validate(self, resources: Optional[ResourceSpec]) -> None:
        try:
            validate_resources(resources)
        except ResourceValidationError as e:
            logger.warning("Rejected resource specification: %s", e)
            raise InvalidResourcesError(e.reason, field=e.field, value=e.value, detail=str(e)) from e

    def _mutate(self, vm_id: str, operation: str, change: Callable[[VM], Dict]) -> VM:
        """
        단일 VM에 대한 읽기-검사-쓰기를 수행합니다.

        현재 문서를 읽고, change로 바뀔 필드를 계산한 뒤, 읽었던 version을 조건으로 한 번에 저장합니다.
        그 사이 다른 쓰기가 먼저 반영되면 최신 문서를 다시 읽어 가드를 재평가합니다.
        따라서 경쟁에서 진 호출자는 승자의 결과 상태를 기준으로 성공하거나 거부되며,
        일부 필드만 반영된 문서는 저장되지 않습니다.
        """
        attempts = 0
        while True:
            attempts += 1
            vm = self._load(vm_id, operation)
            updates = change(vm)
            updates["updated_at"] = self._next_timestamp(vm.updated_at)
            candidate = vm.model_copy(update=updates)
            try:
                return self.vm_repo.save(candidate, expected_version=vm.version)
            except StaleVersionError:
                if attempts > self.conflict_retry_limit:
                    logger.warning("Giving up '%s' on VM %s after %d conflicting writes", operation, vm_id, attempts)
                    raise ConcurrentModificationError(vm_id, attempts)
                logger.info("Concurrent write on VM %s during '%s'; re-evaluating", vm_id, operation)
            except StoreError as e:
                logger.error("Error during '%s' for VM %s: %s", operation, vm_id, e)
                raise StoreUnavailableError(operation, vm_id) from e

    def _load(self, vm_id: str, operation: str) -> VM:
        vm = self._call_store(operation, lambda: self.vm_repo.find_by_id(vm_id))
        if vm is None:
            raise NotFoundError(vm_id)
        return vm

    def _call_store(self, operation: str, call):
        try:
            return call()
        except StoreError as e:
            logger.error("Store call failed during '%s': %s", operation, e)
            raise StoreUnavailableError(operation) from e

    def _next_timestamp(self, previous: Optional[datetime]) -> datetime:
        # updated_at은 변경마다 엄격하게 증가해야 합니다.
        now = self.clock()
        if previous is not None and now <= previous:
            now = previous + timedelta(microseconds=1)
        return now
