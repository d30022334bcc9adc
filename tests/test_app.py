# tests/test_app.py
import io
import json
import logging
from unittest.mock import MagicMock
from wsgiref.util import setup_testing_defaults

import pytest

from compute import app as app_module
from compute.app import create_app, handle_exception
from compute.services.dispatcher import LifecycleDispatcher
from compute.services.exceptions import StoreUnavailableError

VM_BODY = {
    "name": "web-1",
    "resources": {"cpu_cores": 2, "memory_gb": 4, "storage_gb": 20, "network_bandwidth_mbps": 100},
    "network_config": {"vpc_id": "vpc-1", "security_group_ids": ["sg-b", "sg-a"]},
    "owner_user_id": "user-1",
    "region": "eu-west-1",
    "availability_zone": "eu-west-1a",
    "tags": ["web"],
}


@pytest.fixture
def app(session_factory):
    dispatcher = LifecycleDispatcher(session_factory, max_workers=2)
    yield create_app(session_factory, dispatcher=dispatcher)
    dispatcher.shutdown()


@pytest.fixture
def request_app(app):
    """WSGI 앱을 직접 호출하고 (상태 코드, JSON 본문)을 반환하는 헬퍼."""
    def _request(method, path, body=None, query=""):
        raw = json.dumps(body).encode("utf-8") if body is not None else b""
        environ = {}
        setup_testing_defaults(environ)
        environ.update({
            "REQUEST_METHOD": method,
            "PATH_INFO": path,
            "QUERY_STRING": query,
            "CONTENT_LENGTH": str(len(raw)),
            "wsgi.input": io.BytesIO(raw),
        })
        captured = {}

        def start_response(status, headers):
            captured["status"] = status

        response = b"".join(app(environ, start_response))
        return int(captured["status"].split()[0]), json.loads(response) if response else None
    return _request


def test_create_and_get_vm(request_app):
    status, created = request_app("POST", "/v1/vms", VM_BODY)

    assert status == 201
    assert created["state"] == "PENDING"
    assert created["network_config"]["security_group_ids"] == ["sg-a", "sg-b"]

    status, fetched = request_app("GET", f"/v1/vms/{created['id']}")
    assert status == 200
    assert fetched == created


def test_lifecycle_over_http(request_app):
    _, created = request_app("POST", "/v1/vms", VM_BODY)
    vm_id = created["id"]

    status, body = request_app("PUT", f"/v1/vms/{vm_id}/state", {"state": "stopped"})
    assert (status, body["state"]) == (200, "STOPPED")

    status, body = request_app("PUT", f"/v1/vms/{vm_id}/resources",
                               {"cpu_cores": 4, "memory_gb": 8, "storage_gb": 40})
    assert status == 200
    assert body["resources"]["cpu_cores"] == 4

    status, body = request_app("PUT", f"/v1/vms/{vm_id}/network", {"vpc_id": "vpc-9"})
    assert (status, body["network_config"]["vpc_id"]) == (200, "vpc-9")

    status, body = request_app("POST", f"/v1/vms/{vm_id}/start")
    assert (status, body["state"]) == (200, "RUNNING")

    status, body = request_app("GET", f"/v1/vms/{vm_id}/available")
    assert (status, body["available"]) == (200, True)

    status, body = request_app("POST", f"/v1/vms/{vm_id}/stop")
    assert (status, body["state"]) == (200, "STOPPED")

    status, body = request_app("POST", f"/v1/vms/{vm_id}/terminate")
    assert (status, body["state"]) == (200, "TERMINATED")


def test_illegal_transition_maps_to_conflict(request_app):
    _, created = request_app("POST", "/v1/vms", VM_BODY)

    status, body = request_app("POST", f"/v1/vms/{created['id']}/start")

    assert status == 409
    assert body["code"] == "ILLEGAL_TRANSITION"
    assert body["from_state"] == "PENDING"
    assert body["event"] == "start"
    assert body["vm_id"] == created["id"]


def test_duplicate_name_maps_to_conflict(request_app):
    request_app("POST", "/v1/vms", VM_BODY)

    status, body = request_app("POST", "/v1/vms", VM_BODY)

    assert status == 409
    assert body == {"error": "VM with name 'web-1' already exists.", "code": "DUPLICATE_NAME", "name": "web-1"}


def test_invalid_resources_map_to_bad_request(request_app):
    status, body = request_app("POST", "/v1/vms", {**VM_BODY, "resources": {"cpu_cores": 2, "memory_gb": 0, "storage_gb": 20}})

    assert status == 400
    assert body["code"] == "INVALID_RESOURCES"
    assert body["reason"] == "InvalidMemory"
    assert body["field"] == "memory_gb"


@pytest.mark.parametrize("method, path, body", [
    ("POST", "/v1/vms", {"resources": {"cpu_cores": 1}}),
    ("PUT", "/v1/vms/abc/state", {"state": "SLEEPING"}),
    ("PUT", "/v1/vms/abc/state", {}),
])
def test_malformed_requests_map_to_bad_request(request_app, method, path, body):
    status, _ = request_app(method, path, body)
    assert status == 400


def test_unknown_vm_and_route(request_app):
    assert request_app("GET", "/v1/vms/does-not-exist")[0] == 404
    assert request_app("POST", "/v1/vms/does-not-exist/stop")[0] == 404
    assert request_app("DELETE", "/v1/vms/does-not-exist")[0] == 404


def test_list_filters(request_app):
    request_app("POST", "/v1/vms", VM_BODY)
    request_app("POST", "/v1/vms", {**VM_BODY, "name": "web-2", "owner_user_id": "user-2", "region": "us-east-1"})

    _, body = request_app("GET", "/v1/vms", query="user_id=user-1")
    assert [vm["name"] for vm in body["vms"]] == ["web-1"]

    _, body = request_app("GET", "/v1/vms", query="region=us-east-1&state=pending")
    assert [vm["name"] for vm in body["vms"]] == ["web-2"]

    _, body = request_app("GET", "/v1/vms")
    assert len(body["vms"]) == 2


def test_store_unavailable_maps_to_503():
    status, body = handle_exception(StoreUnavailableError("start", "vm-1"))

    assert status == "503 Service Unavailable"
    assert json.loads(body)["code"] == "STORE_UNAVAILABLE"


def test_oversized_resource_values_map_to_bad_request(request_app):
    """저장소 정수 범위를 넘는 리소스 값은 파싱 단계에서 400으로 거부되어야 합니다."""
    huge = {**VM_BODY["resources"], "cpu_cores": 10 ** 20}

    status, body = request_app("POST", "/v1/vms", {**VM_BODY, "resources": huge})

    assert status == 400
    assert body["code"] == "BAD_REQUEST"
    # 아무것도 저장되지 않아야 함
    assert request_app("GET", "/v1/vms")[1]["vms"] == []


def test_oversized_resize_maps_to_bad_request(request_app):
    _, created = request_app("POST", "/v1/vms", VM_BODY)
    request_app("PUT", f"/v1/vms/{created['id']}/state", {"state": "STOPPED"})

    status, body = request_app("PUT", f"/v1/vms/{created['id']}/resources",
                               {"cpu_cores": 2, "memory_gb": 10 ** 20, "storage_gb": 20})

    assert status == 400
    assert body["code"] == "BAD_REQUEST"
    assert request_app("GET", f"/v1/vms/{created['id']}")[1]["resources"] == VM_BODY["resources"]


class _StubApplication:
    def __init__(self):
        self.dispatcher = MagicMock()


def test_main_logs_startup_failure(monkeypatch, caplog):
    """서버 시작에 실패하면 로그로 남기고, 디스패처는 종료되어야 합니다."""
    stub = _StubApplication()
    monkeypatch.setattr(app_module, "configure_logging", lambda: None)
    monkeypatch.setattr(app_module, "create_app", lambda: stub)

    def failing_make_server(*args, **kwargs):
        raise OSError("Address already in use")

    monkeypatch.setattr(app_module, "make_server", failing_make_server)

    with caplog.at_level(logging.ERROR, logger="compute.app"):
        app_module.main()

    assert "Error starting server" in caplog.text
    assert "Address already in use" in caplog.text
    stub.dispatcher.shutdown.assert_called_once()
