# compute/app.py
from wsgiref.simple_server import make_server
from urllib.parse import parse_qs
import json
import logging
import re

from pydantic import ValidationError

from compute.config import settings
from compute.database.database import SessionLocal
from compute.domain import VM, NetworkConfig, ResourceSpec, VMState
from compute.logging_config import configure_logging
from compute.services.dispatcher import LifecycleDispatcher
from compute.services.exceptions import *

logger = logging.getLogger(__name__)

# --------------------------------------------------------------------------
## 요청 처리 유틸리티 함수
# --------------------------------------------------------------------------

def get_request_data(environ):
    try:
        content_length = int(environ.get("CONTENT_LENGTH") or 0)
        return json.loads(environ["wsgi.input"].read(content_length)) if content_length > 0 else {}
    except (ValueError, json.JSONDecodeError):
        raise ValueError("Invalid or missing JSON body.")

def get_query_params(environ):
    params = parse_qs(environ.get("QUERY_STRING", ""))
    return {key: values[-1] for key, values in params.items()}

def vm_to_json(vm):
    return vm.model_dump(mode="json")

def handle_exception(e):
    error_map = {
        NotFoundError: "404 Not Found",
        DuplicateNameError: "409 Conflict",
        IllegalTransitionError: "409 Conflict",
        ConcurrentModificationError: "409 Conflict",
        InvalidResourcesError: "400 Bad Request",
        ValueError: "400 Bad Request",
        StoreUnavailableError: "503 Service Unavailable",
    }
    # pydantic의 ValidationError는 ValueError의 하위 클래스이므로 MRO를 따라 찾습니다.
    status = next((error_map[cls] for cls in type(e).__mro__ if cls in error_map), "500 Internal Server Error")
    if isinstance(e, VmServiceError):
        body = e.to_dict()
    elif isinstance(e, ValidationError):
        body = {"error": "Invalid request body.", "code": "BAD_REQUEST",
                "details": json.loads(e.json(include_url=False))}
    elif status.startswith("400"):
        body = {"error": str(e), "code": "BAD_REQUEST"}
    else:
        logger.exception("Unexpected error while handling request")
        body = {"error": "An unexpected error occurred", "code": "INTERNAL_ERROR"}
    return status, json.dumps(body)

# --------------------------------------------------------------------------
## WSGI 애플리케이션 (의존성 주입 및 라우팅)
# --------------------------------------------------------------------------

def create_app(session_factory=SessionLocal, dispatcher=None):
    """
    WSGI 애플리케이션을 생성합니다.
    모든 서비스 호출은 디스패처의 워커 풀을 거쳐 요청마다 새 DB 세션에서 실행됩니다.
    """
    dispatcher = dispatcher or LifecycleDispatcher(session_factory)

    routes = [
        ('GET', r'^/v1/vms$', list_vms_handler),
        ('POST', r'^/v1/vms$', create_vm_handler),
        ('GET', r'^/v1/vms/([a-zA-Z0-9_-]+)$', get_vm_handler),
        ('GET', r'^/v1/vms/([a-zA-Z0-9_-]+)/available$', vm_available_handler),
        ('POST', r'^/v1/vms/([a-zA-Z0-9_-]+)/start$', start_vm_handler),
        ('POST', r'^/v1/vms/([a-zA-Z0-9_-]+)/stop$', stop_vm_handler),
        ('POST', r'^/v1/vms/([a-zA-Z0-9_-]+)/terminate$', terminate_vm_handler),
        ('PUT', r'^/v1/vms/([a-zA-Z0-9_-]+)/resources$', update_resources_handler),
        ('PUT', r'^/v1/vms/([a-zA-Z0-9_-]+)/network$', update_network_handler),
        ('PUT', r'^/v1/vms/([a-zA-Z0-9_-]+)/state$', modify_vm_handler),
    ]

    def application(environ, start_response):
        environ['dispatcher'] = dispatcher
        try:
            path = environ.get("PATH_INFO", "")
            method = environ.get("REQUEST_METHOD", "")

            handler, path_args = None, []
            for route_method, pattern, route_handler in routes:
                if method == route_method and (match := re.match(pattern, path)):
                    handler, path_args = route_handler, match.groups()
                    break

            if handler:
                status, response_body = handler(environ, *path_args)
            else:
                status, response_body = '404 Not Found', json.dumps({'error': 'Not Found'})

        except Exception as e:
            status, response_body = handle_exception(e)

        start_response(status, [("Content-Type", "application/json")])
        return [response_body.encode("utf-8")]

    application.dispatcher = dispatcher
    return application

# --------------------------------------------------------------------------
## 핸들러 함수
# --------------------------------------------------------------------------

def dispatch(environ, operation, *args, **kwargs):
    return environ['dispatcher'].call(operation, *args, **kwargs)

def list_vms_handler(environ, *args):
    params = get_query_params(environ)
    state = params.get('state')
    vms = dispatch(
        environ, 'list_vms',
        user_id=params.get('user_id'),
        state=VMState(state.upper()) if state else None,
        region=params.get('region'),
        availability_zone=params.get('availability_zone'),
    )
    return '200 OK', json.dumps({'vms': [vm_to_json(vm) for vm in vms]})

def create_vm_handler(environ, *args):
    vm_spec = VM.model_validate(get_request_data(environ))
    vm = dispatch(environ, 'create_vm', vm_spec)
    return '201 Created', json.dumps(vm_to_json(vm))

def get_vm_handler(environ, vm_id):
    vm = dispatch(environ, 'get_vm', vm_id)
    if vm is None:
        raise NotFoundError(vm_id)
    return '200 OK', json.dumps(vm_to_json(vm))

def vm_available_handler(environ, vm_id):
    available = dispatch(environ, 'is_vm_available', vm_id)
    return '200 OK', json.dumps({"id": vm_id, "available": available})

def start_vm_handler(environ, vm_id):
    return '200 OK', json.dumps(vm_to_json(dispatch(environ, 'start_vm', vm_id)))

def stop_vm_handler(environ, vm_id):
    return '200 OK', json.dumps(vm_to_json(dispatch(environ, 'stop_vm', vm_id)))

def terminate_vm_handler(environ, vm_id):
    return '200 OK', json.dumps(vm_to_json(dispatch(environ, 'terminate_vm', vm_id)))

def update_resources_handler(environ, vm_id):
    resources = ResourceSpec.model_validate(get_request_data(environ))
    return '200 OK', json.dumps(vm_to_json(dispatch(environ, 'update_resources', vm_id, resources)))

def update_network_handler(environ, vm_id):
    network_config = NetworkConfig.model_validate(get_request_data(environ))
    return '200 OK', json.dumps(vm_to_json(dispatch(environ, 'update_network_config', vm_id, network_config)))

def modify_vm_handler(environ, vm_id):
    data = get_request_data(environ)
    if 'state' not in data:
        raise ValueError("Missing 'state' in request body.")
    new_state = VMState(str(data['state']).upper())
    return '200 OK', json.dumps(vm_to_json(dispatch(environ, 'modify_vm', vm_id, new_state)))

# --------------------------------------------------------------------------
## 서버 실행
# --------------------------------------------------------------------------

def main():
    configure_logging()
    application = create_app()
    try:
        with make_server(settings.HOST, settings.PORT, application) as httpd:
            logger.info("Serving VM lifecycle API on port %d...", settings.PORT)
            httpd.serve_forever()
    except Exception:
        logger.exception("Error starting server")
    finally:
        application.dispatcher.shutdown()


if __name__ == "__main__":
    main()
