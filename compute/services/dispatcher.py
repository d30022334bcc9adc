import logging
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Callable, Optional

from compute.config import settings
from compute.repositories.interfaces import IVMRepository
from compute.repositories.sqlalchemy.sqlalchemy_vm_repository import SqlalchemyVMRepository
from compute.services.lifecycle_service import VMLifecycleService

logger = logging.getLogger(__name__)

MUTATING_OPERATIONS = frozenset({
    "create_vm",
    "start_vm",
    "stop_vm",
    "terminate_vm",
    "update_resources",
    "update_network_config",
    "modify_vm",
})

QUERY_OPERATIONS = frozenset({
    "get_vm",
    "find_by_name",
    "list_vms",
    "list_by_user",
    "list_by_state",
    "list_by_user_and_state",
    "list_by_region",
    "list_by_availability_zone",
    "exists_vm",
    "is_vm_available",
})


class LifecycleDispatcher:
    """
    라이프사이클 요청을 고정 크기 워커 풀에서 실행합니다.

    풀의 크기를 넘는 요청은 새 스레드를 만들지 않고 대기열에서 기다립니다.
    작업마다 별도의 DB 세션을 열어 리포지토리와 서비스를 구성하고, 끝나면 세션을 닫습니다.
    호출자가 Future를 버려도 이미 시작된 쓰기는 끝까지 수행됩니다.
    """

    def __init__(
        self,
        session_factory,
        max_workers: Optional[int] = None,
        service_factory: Callable[[IVMRepository], VMLifecycleService] = VMLifecycleService,
    ):
        self._session_factory = session_factory
        self._service_factory = service_factory
        self.max_workers = max_workers or settings.MAX_WORKERS
        self._executor = ThreadPoolExecutor(max_workers=self.max_workers, thread_name_prefix="vm-lifecycle")

    def submit(self, operation: str, *args, **kwargs) -> Future:
        """
        서비스 작업 하나를 워커 풀에 제출합니다.

        Args:
            operation: 실행할 VMLifecycleService 메서드 이름.

        Returns:
            작업 결과(또는 서비스 예외)를 담는 Future.

        Raises:
            ValueError: 알 수 없는 작업 이름일 때.
        """
        if operation not in MUTATING_OPERATIONS and operation not in QUERY_OPERATIONS:
            raise ValueError(f"Unknown lifecycle operation: '{operation}'")
        return self._executor.submit(self._run, operation, args, kwargs)

    def call(self, operation: str, *args, **kwargs):
        """작업을 제출하고 결과를 기다립니다. 서비스 예외는 그대로 전파됩니다."""
        return self.submit(operation, *args, **kwargs).result()

    def _run(self, operation: str, args, kwargs):
        db_session = self._session_factory()
        try:
            service = self._service_factory(SqlalchemyVMRepository(db_session))
            return getattr(service, operation)(*args, **kwargs)
        finally:
            db_session.close()

    def shutdown(self, wait: bool = True) -> None:
        logger.info("Shutting down lifecycle worker pool (wait=%s)", wait)
        self._executor.shutdown(wait=wait)

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.shutdown()
