"""Wire entities and NDJSON codec for the worker protocol.

Wire format (one JSON object per line, both directions):
  Request:   {"method": "GET", "url": "/", "headers": {…}, "body": "…"}\n
  Response:  {"status": 200, "headers": {…}, "body": "…"}\n

Every request key is optional; missing keys take the defaults below.  A line
that cannot be turned into a Request raises MalformedRequest and produces no
response at all.
"""
from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Union

from jsonschema import Draft7Validator, ValidationError

CONTENT_TYPE_HEADER = 'Content-Type'
WORKER_HEADER = 'X-Tusk-Worker'
DEFAULT_CONTENT_TYPE = 'application/json'

DEFAULT_METHOD = 'GET'
DEFAULT_URL = '/'

_STRING_MAP = {
    'type': 'object',
    'additionalProperties': {'type': 'string'},
}

REQUEST_SCHEMA: Dict[str, Any] = {
    'type': 'object',
    'properties': {
        'method': {'type': 'string'},
        'url': {'type': 'string'},
        'headers': _STRING_MAP,
        'body': {'type': 'string'},
    },
}

RESPONSE_SCHEMA: Dict[str, Any] = {
    'type': 'object',
    'properties': {
        'status': {'type': 'integer'},
        'headers': _STRING_MAP,
        'body': {'type': 'string'},
    },
    'required': ['status', 'headers', 'body'],
}

_REQUEST_VALIDATOR = Draft7Validator(REQUEST_SCHEMA)
_RESPONSE_VALIDATOR = Draft7Validator(RESPONSE_SCHEMA)


class MalformedRequest(Exception):
    """Raised when an input line does not hold a usable request."""


class ProtocolError(Exception):
    """Raised when a Response cannot be put on the wire."""


@dataclass(frozen=True)
class Request:
    method: str = DEFAULT_METHOD
    url: str = DEFAULT_URL
    headers: Dict[str, str] = field(default_factory=dict)
    body: bytes = b''


@dataclass
class Response:
    status: int
    headers: Dict[str, str] = field(default_factory=dict)
    body: str = ''

    def to_dict(self) -> Dict[str, Any]:
        return {'status': self.status, 'headers': dict(self.headers), 'body': self.body}


def parse_request(line: Union[bytes, str]) -> Request:
    """Decode one input line into a Request.

    Raises MalformedRequest for blank lines, invalid UTF-8 or JSON, values
    that are not JSON objects (``null``, ``false``, arrays, scalars) and
    recognized keys holding the wrong type.  ``{}`` is a valid request that
    takes every default.
    """
    if isinstance(line, bytes):
        try:
            line = line.decode('utf-8')
        except UnicodeDecodeError as e:
            raise MalformedRequest(f'invalid utf-8: {e.reason}')
    text = line.strip()
    if not text:
        raise MalformedRequest('blank line')
    try:
        payload = json.loads(text)
    except ValueError as e:
        raise MalformedRequest(f'invalid json: {e}')
    except RecursionError:
        raise MalformedRequest('invalid json: nesting too deep')
    if not isinstance(payload, dict):
        raise MalformedRequest(f'expected a JSON object, got {type(payload).__name__}')
    try:
        _REQUEST_VALIDATOR.validate(payload)
    except ValidationError as e:
        raise MalformedRequest(f'invalid request: {e.message}')
    try:
        body = payload.get('body', '').encode('utf-8')
    except UnicodeEncodeError:
        # lone surrogate escapes such as "\ud800" decode but cannot be encoded
        raise MalformedRequest('invalid request: body is not encodable as utf-8')

    return Request(
        method=payload.get('method', DEFAULT_METHOD),
        url=payload.get('url', DEFAULT_URL),
        headers=dict(payload.get('headers') or {}),
        body=body,
    )


def encode_response(response: Response) -> bytes:
    """Serialize a Response to a single compact JSON line ending in ``\\n``."""
    if not isinstance(response, Response):
        raise ProtocolError(f'handler returned {type(response).__name__}, not Response')
    data = response.to_dict()
    # bool is an int subclass and schema 'integer' accepts 200.0
    status = data['status']
    if isinstance(status, bool) or not isinstance(status, int):
        raise ProtocolError(f'status must be an integer, got {status!r}')
    try:
        _RESPONSE_VALIDATOR.validate(data)
    except ValidationError as e:
        raise ProtocolError(f'invalid response: {e.message}')
    return json.dumps(data, separators=(',', ':')).encode('utf-8') + b'\n'


def decode_response(line: Union[bytes, str]) -> Optional[Dict[str, Any]]:
    """Decode a response line as read by a supervisor; None for a blank line."""
    if isinstance(line, bytes):
        line = line.decode('utf-8')
    line = line.strip()
    if not line:
        return None
    return json.loads(line)
