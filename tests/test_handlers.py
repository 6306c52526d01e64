import json
import sys
import types

import pytest

from tusk_worker.handlers import (
    ECHO_MESSAGE,
    EchoHandler,
    ErrorTrapHandler,
    HandlerLoadError,
    as_handler,
    load_handler,
)
from tusk_worker.protocol import Request, Response


def test_echo_handler_reports_request():
    h = EchoHandler(clock=lambda: 12.9)
    resp = h.handle(Request(method='POST', url='/x', headers={'A': 'B'}, body=b'hi'))
    assert resp.status == 200
    assert resp.headers == {'Content-Type': 'application/json'}
    body = json.loads(resp.body)
    assert body == {
        'message': ECHO_MESSAGE,
        'received': {'method': 'POST', 'url': '/x', 'headers': {'A': 'B'}, 'body_size': 2},
        'timestamp': 12,
    }


def test_echo_body_size_counts_bytes():
    resp = EchoHandler().handle(Request(body='€'.encode('utf-8')))
    assert json.loads(resp.body)['received']['body_size'] == 3


def test_error_trap_turns_exception_into_500(caplog):
    def boom(request):
        raise ValueError('nope')

    h = ErrorTrapHandler(boom)
    with caplog.at_level('ERROR', logger='tusk_worker.handlers'):
        resp = h.handle(Request(url='/fail'))
    assert resp.status == 500
    assert json.loads(resp.body) == {'error': 'internal worker error'}
    assert 'nope' not in resp.body
    assert any('/fail' in r.getMessage() for r in caplog.records)


def test_error_trap_passes_through_success():
    h = ErrorTrapHandler(EchoHandler())
    assert h.handle(Request()).status == 200


def test_error_trap_does_not_trap_system_exit():
    def leave(request):
        raise SystemExit(0)

    with pytest.raises(SystemExit):
        ErrorTrapHandler(leave).handle(Request())


def test_as_handler_wraps_functions_and_keeps_objects():
    echo = EchoHandler()
    assert as_handler(echo) is echo
    fn = as_handler(lambda req: Response(204, {}, ''))
    assert fn.handle(Request()).status == 204
    with pytest.raises(TypeError):
        as_handler(42)


def test_as_handler_rejects_classes():
    with pytest.raises(TypeError, match='got class EchoHandler'):
        as_handler(EchoHandler)


def test_load_builtin_echo():
    assert isinstance(load_handler('echo'), EchoHandler)


@pytest.fixture
def handler_module(monkeypatch):
    mod = types.ModuleType('fake_app_handlers')

    class TeapotHandler:
        def handle(self, request):
            return Response(418, {}, 'teapot')

    def plain(request):
        return Response(202, {}, request.url)

    mod.TeapotHandler = TeapotHandler
    mod.plain = plain
    mod.instance = TeapotHandler()
    mod.ns = types.SimpleNamespace(nested=plain)
    mod.not_a_handler = 'text'
    monkeypatch.setitem(sys.modules, 'fake_app_handlers', mod)
    return mod


def test_load_class_reference(handler_module):
    h = load_handler('fake_app_handlers:TeapotHandler')
    assert h.handle(Request()).status == 418


def test_load_function_reference(handler_module):
    h = load_handler('fake_app_handlers:plain')
    assert h.handle(Request(url='/p')).body == '/p'


def test_load_instance_and_nested_reference(handler_module):
    assert load_handler('fake_app_handlers:instance') is handler_module.instance
    assert load_handler('fake_app_handlers:ns.nested').handle(Request()).status == 202


@pytest.mark.parametrize('ref', [
    '',
    'nope',
    'fake_app_handlers',
    'fake_app_handlers:',
    ':plain',
    'fake_app_handlers:missing',
    'fake_app_handlers:not_a_handler',
    'module_that_does_not_exist_xyz:handler',
])
def test_load_errors(handler_module, ref):
    with pytest.raises(HandlerLoadError):
        load_handler(ref)
