"""Worker configuration from environment variables.

Environment variables
---------------------
TUSK_WORKER_HANDLER
    Handler reference: a built-in name (``echo``) or ``module:attribute``.
    Default: echo.

TUSK_WORKER_MAX_LINE_BYTES
    Longest accepted request line in bytes; longer lines are skipped.
    ``0`` disables the cap.  Default: 262144.

TUSK_WORKER_TRAP_ERRORS
    When truthy (1/true/yes/on), handler exceptions become 500 responses
    instead of stopping the worker.  Default: off.

TUSK_WORKER_LOG_LEVEL
    Logging level name for the stderr log.  Default: WARNING.
"""
from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from typing import Mapping, Optional

from tusk_worker.loop import MAX_LINE_BYTES

DEFAULT_HANDLER = 'echo'
DEFAULT_LOG_LEVEL = 'WARNING'

_TRUTHY = {'1', 'true', 'yes', 'on'}
_FALSY = {'', '0', 'false', 'no', 'off'}


class ConfigError(Exception):
    pass


def _parse_int(name: str, raw: str) -> int:
    try:
        value = int(raw)
    except ValueError:
        raise ConfigError(f'{name} must be an integer, got {raw!r}')
    if value < 0:
        raise ConfigError(f'{name} must be >= 0, got {value}')
    return value


def _parse_bool(name: str, raw: str) -> bool:
    v = raw.strip().lower()
    if v in _TRUTHY:
        return True
    if v in _FALSY:
        return False
    raise ConfigError(f'{name} must be a boolean flag, got {raw!r}')


def parse_log_level(raw: str) -> int:
    level = logging.getLevelName(raw.strip().upper())
    if not isinstance(level, int):
        raise ConfigError(f'unknown log level {raw!r}')
    return level


@dataclass(frozen=True)
class WorkerConfig:
    handler: str = DEFAULT_HANDLER
    max_line_bytes: int = MAX_LINE_BYTES
    trap_errors: bool = False
    log_level: int = logging.WARNING

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> 'WorkerConfig':
        env = os.environ if environ is None else environ
        return cls(
            handler=env.get('TUSK_WORKER_HANDLER', DEFAULT_HANDLER).strip() or DEFAULT_HANDLER,
            max_line_bytes=_parse_int('TUSK_WORKER_MAX_LINE_BYTES',
                                      env.get('TUSK_WORKER_MAX_LINE_BYTES', str(MAX_LINE_BYTES))),
            trap_errors=_parse_bool('TUSK_WORKER_TRAP_ERRORS', env.get('TUSK_WORKER_TRAP_ERRORS', '0')),
            log_level=parse_log_level(env.get('TUSK_WORKER_LOG_LEVEL', DEFAULT_LOG_LEVEL)),
        )
