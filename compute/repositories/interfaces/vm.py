from abc import ABC, abstractmethod
from typing import List, Optional
from compute.domain import VM, VMState

class IVMRepository(ABC):
    @abstractmethod
    def find_by_id(self, vm_id: str) -> Optional[VM]:
        """고유 ID로 특정 VM을 조회합니다."""
        pass

    @abstractmethod
    def find_by_name(self, name: str) -> Optional[VM]:
        """이름으로 특정 VM을 조회합니다."""
        pass

    @abstractmethod
    def exists_by_id(self, vm_id: str) -> bool:
        """해당 ID의 VM이 존재하는지 확인합니다."""
        pass

    @abstractmethod
    def exists_by_name(self, name: str) -> bool:
        """해당 이름의 VM이 존재하는지 확인합니다. 종료된 VM도 포함합니다."""
        pass

    @abstractmethod
    def save(self, vm: VM, expected_version: Optional[int] = None) -> VM:
        """
        VM 문서 전체를 원자적으로 저장합니다.

        Args:
            vm: 저장할 VM.
            expected_version: None이면 새 문서를 삽입합니다. 값이 있으면 저장된 version이
                이 값과 같을 때만 갱신하는 조건부 쓰기를 수행합니다.

        Returns:
            증가된 version이 반영된 VM.

        Raises:
            UniqueConstraintError: 이름이 이미 사용 중일 때.
            StaleVersionError: 저장된 version이 expected_version과 다를 때.
            StoreError: 그 밖의 저장소 오류.
        """
        pass

    @abstractmethod
    def find_by(
        self,
        user_id: Optional[str] = None,
        state: Optional[VMState] = None,
        region: Optional[str] = None,
        availability_zone: Optional[str] = None,
    ) -> List[VM]:
        """주어진 조건을 모두 만족하는 VM 목록을 최신순으로 조회합니다. None인 조건은 무시합니다."""
        pass
