"""Request handlers plugged into the worker loop.

A handler turns one normalized Request into one Response.  It should
translate its own failures into an error Response; anything it lets escape
is fatal to the worker process.

Built-in handlers
-----------------
  echo   EchoHandler, reports what it received (the default)

Custom handlers are referenced as ``package.module:attribute`` where the
attribute is a handler class (instantiated with no arguments), a handler
instance, or a plain function ``fn(request) -> Response``.
"""
from __future__ import annotations

import importlib
import json
import logging
import time
from typing import Any, Callable, Dict, Protocol, runtime_checkable

from tusk_worker.protocol import CONTENT_TYPE_HEADER, DEFAULT_CONTENT_TYPE, Request, Response

logger = logging.getLogger(__name__)

ECHO_MESSAGE = 'Hello from Tusk Native Engine!'


class HandlerLoadError(Exception):
    pass


@runtime_checkable
class RequestHandler(Protocol):
    def handle(self, request: Request) -> Response:
        ...


class _FunctionHandler:
    def __init__(self, fn: Callable[[Request], Response]):
        self._fn = fn

    def handle(self, request: Request) -> Response:
        return self._fn(request)

    def __repr__(self) -> str:
        return f'<handler {getattr(self._fn, "__qualname__", self._fn)!r}>'


def as_handler(obj: Any) -> RequestHandler:
    """Return *obj* as a RequestHandler, wrapping plain callables.

    Classes are rejected; pass an instance.
    """
    if isinstance(obj, type):
        raise TypeError(f'expected a handler instance or function, got class {obj.__name__}')
    if isinstance(obj, RequestHandler) and callable(getattr(obj, 'handle', None)):
        return obj
    if callable(obj):
        return _FunctionHandler(obj)
    raise TypeError(f'not a request handler: {obj!r}')


class EchoHandler:
    """Answer every request with a JSON summary of what was received."""

    def __init__(self, clock: Callable[[], float] = time.time):
        self._clock = clock

    def handle(self, request: Request) -> Response:
        payload = {
            'message': ECHO_MESSAGE,
            'received': {
                'method': request.method,
                'url': request.url,
                'headers': dict(request.headers),
                'body_size': len(request.body),
            },
            'timestamp': int(self._clock()),
        }
        return Response(
            status=200,
            headers={CONTENT_TYPE_HEADER: DEFAULT_CONTENT_TYPE},
            body=json.dumps(payload),
        )


class ErrorTrapHandler:
    """Wrap a handler so its exceptions become 500 responses.

    Only ``Exception`` subclasses are trapped; KeyboardInterrupt and
    SystemExit still stop the worker.
    """

    error_body: Dict[str, str] = {'error': 'internal worker error'}

    def __init__(self, inner: Any):
        self.inner = as_handler(inner)

    def handle(self, request: Request) -> Response:
        try:
            return self.inner.handle(request)
        except Exception:
            logger.exception('handler failed for %s %s', request.method, request.url)
            return Response(
                status=500,
                headers={CONTENT_TYPE_HEADER: DEFAULT_CONTENT_TYPE},
                body=json.dumps(self.error_body),
            )


BUILTIN_HANDLERS: Dict[str, Callable[[], RequestHandler]] = {
    'echo': EchoHandler,
}


def load_handler(ref: str) -> RequestHandler:
    """Resolve a handler reference (built-in name or ``module:attribute``)."""
    ref = (ref or '').strip()
    if ref in BUILTIN_HANDLERS:
        return BUILTIN_HANDLERS[ref]()

    module_name, sep, attr_path = ref.partition(':')
    if not sep or not module_name or not attr_path:
        raise HandlerLoadError(f"handler must be a built-in name or 'module:attribute', got {ref!r}")
    try:
        module = importlib.import_module(module_name)
    except ImportError as e:
        raise HandlerLoadError(f'cannot import {module_name}: {e}') from e

    obj: Any = module
    for part in attr_path.split('.'):
        try:
            obj = getattr(obj, part)
        except AttributeError as e:
            raise HandlerLoadError(f'{module_name} has no attribute {attr_path}') from e

    if isinstance(obj, type):
        try:
            obj = obj()
        except Exception as e:
            raise HandlerLoadError(f'cannot instantiate {ref}: {e}') from e
    try:
        return as_handler(obj)
    except TypeError as e:
        raise HandlerLoadError(str(e)) from e
