"""tusk-worker: run one NDJSON worker process on stdin/stdout.

Usage
-----
    tusk-worker
    tusk-worker --handler myapp.worker:handle --trap-errors
    python -m tusk_worker --log-level INFO

Flags override the TUSK_WORKER_* environment variables (see config.py).
Stdout carries responses only; all logging goes to stderr.

Exit codes
----------
  0  input stream closed (or SIGTERM)
  1  handler fault
  2  bad command-line usage
  3  pipe read/write failure
  4  invalid configuration or handler that cannot be loaded
"""
from __future__ import annotations

import argparse
import dataclasses
import logging
import signal
import sys
from typing import List, Optional

from tusk_worker.config import ConfigError, WorkerConfig, parse_log_level
from tusk_worker.handlers import ErrorTrapHandler, HandlerLoadError, load_handler
from tusk_worker.loop import WorkerIOError, WorkerLoop

logger = logging.getLogger('tusk_worker')

EXIT_OK = 0
EXIT_HANDLER_FAULT = 1
EXIT_IO_ERROR = 3
EXIT_CONFIG_ERROR = 4

LOG_FORMAT = '%(asctime)s [worker %(process)d] %(levelname)s %(name)s: %(message)s'


def _build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(
        prog='tusk-worker',
        description='NDJSON request/response worker process',
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    p.add_argument('--handler', default=None,
                   help="Handler: built-in name or 'module:attribute' (default: $TUSK_WORKER_HANDLER or echo)")
    p.add_argument('--max-line-bytes', type=int, default=None, metavar='N',
                   help='Skip request lines longer than N bytes; 0 disables the cap')
    p.add_argument('--trap-errors', action='store_true', default=None,
                   help='Turn handler exceptions into 500 responses')
    p.add_argument('--log-level', default=None, help='stderr log level (default: WARNING)')
    return p


def _resolve_config(args: argparse.Namespace) -> WorkerConfig:
    cfg = WorkerConfig.from_env()
    overrides = {}
    if args.handler is not None:
        overrides['handler'] = args.handler
    if args.max_line_bytes is not None:
        if args.max_line_bytes < 0:
            raise ConfigError('--max-line-bytes must be >= 0')
        overrides['max_line_bytes'] = args.max_line_bytes
    if args.trap_errors:
        overrides['trap_errors'] = True
    if args.log_level is not None:
        overrides['log_level'] = parse_log_level(args.log_level)
    if not overrides:
        return cfg
    return dataclasses.replace(cfg, **overrides)


def _install_signal_handlers() -> None:
    # Graceful shutdown on SIGTERM; not every platform lets us install it.
    try:
        signal.signal(signal.SIGTERM, lambda *_: sys.exit(EXIT_OK))
    except (AttributeError, ValueError, OSError):
        logger.debug('SIGTERM handler not installed')


def main(argv: Optional[List[str]] = None) -> int:
    args = _build_parser().parse_args(argv)
    logging.basicConfig(stream=sys.stderr, level=logging.WARNING, format=LOG_FORMAT)

    try:
        cfg = _resolve_config(args)
        logging.getLogger().setLevel(cfg.log_level)
        handler = load_handler(cfg.handler)
    except (ConfigError, HandlerLoadError) as e:
        logger.error('cannot start worker: %s', e)
        return EXIT_CONFIG_ERROR

    if cfg.trap_errors:
        handler = ErrorTrapHandler(handler)

    _install_signal_handlers()
    loop = WorkerLoop(handler, sys.stdin.buffer, sys.stdout.buffer,
                      max_line_bytes=cfg.max_line_bytes)
    logger.info('worker %s ready (handler=%s)', loop.worker_id, cfg.handler)

    try:
        loop.run()
    except WorkerIOError as e:
        logger.error('worker %s pipe failure: %s', loop.worker_id, e)
        return EXIT_IO_ERROR
    except Exception:
        logger.exception('worker %s handler fault', loop.worker_id)
        return EXIT_HANDLER_FAULT
    return EXIT_OK
