"""Worker loop: the read / parse / dispatch / write cycle.

The loop owns both pipe ends for the lifetime of the process.  It blocks in
exactly one place (reading the next request line), converts every usable
line into exactly one response line, and skips malformed lines without
writing anything.  It stops for good on end-of-stream or on an I/O failure.

States
------
  RUNNING  → initial state
  STOPPED  → end-of-stream, I/O failure or handler fault; terminal

Usage
-----
    loop = WorkerLoop(EchoHandler(), sys.stdin.buffer, sys.stdout.buffer)
    loop.run()
"""
from __future__ import annotations

import enum
import logging
import os
from dataclasses import dataclass
from typing import BinaryIO, Optional

from tusk_worker.handlers import RequestHandler, as_handler
from tusk_worker.protocol import (
    CONTENT_TYPE_HEADER,
    DEFAULT_CONTENT_TYPE,
    WORKER_HEADER,
    MalformedRequest,
    ProtocolError,
    Response,
    encode_response,
    parse_request,
)

logger = logging.getLogger(__name__)

MAX_LINE_BYTES = 256 * 1024  # 256 KB per line
_DRAIN_CHUNK = 64 * 1024


class State(enum.Enum):
    RUNNING = 'running'
    STOPPED = 'stopped'


class WorkerIOError(Exception):
    """Reading from or writing to a pipe failed; the worker cannot continue."""


@dataclass
class LoopStats:
    processed: int = 0
    skipped: int = 0


class WorkerLoop:
    """Serve NDJSON requests from *stdin* to *stdout* until end-of-stream.

    *stdin* and *stdout* are binary streams.  *worker_id* is captured once
    (the process id unless given) and stamped on every response.
    """

    def __init__(self, handler, stdin: BinaryIO, stdout: BinaryIO,
                 worker_id: Optional[int] = None,
                 max_line_bytes: int = MAX_LINE_BYTES):
        if max_line_bytes < 0:
            raise ValueError('max_line_bytes must be >= 0')
        self.handler: RequestHandler = as_handler(handler)
        self._stdin = stdin
        self._stdout = stdout
        self._worker_id = str(os.getpid() if worker_id is None else worker_id)
        self.max_line_bytes = max_line_bytes
        self.state = State.RUNNING
        self.stats = LoopStats()

    @property
    def worker_id(self) -> str:
        return self._worker_id

    def _stop(self) -> None:
        self.state = State.STOPPED

    def _read_line(self) -> bytes:
        if not self.max_line_bytes:
            return self._stdin.readline()
        line = self._stdin.readline(self.max_line_bytes + 1)
        if len(line) > self.max_line_bytes and not line.endswith(b'\n'):
            # discard the remainder so the next read starts on a fresh line
            chunk = line
            while chunk and not chunk.endswith(b'\n'):
                chunk = self._stdin.readline(_DRAIN_CHUNK)
            raise MalformedRequest(f'line exceeds {self.max_line_bytes} bytes')
        return line

    def _stamp(self, response: Response) -> Response:
        if not isinstance(response, Response):
            raise ProtocolError(f'handler returned {type(response).__name__}, not Response')
        headers = dict(response.headers)
        if not any(k.lower() == CONTENT_TYPE_HEADER.lower() for k in headers):
            headers[CONTENT_TYPE_HEADER] = DEFAULT_CONTENT_TYPE
        headers[WORKER_HEADER] = self._worker_id
        return Response(status=response.status, headers=headers, body=response.body)

    def step(self) -> bool:
        """Run one iteration.  Returns False once end-of-stream is reached.

        Raises WorkerIOError on pipe failure.  Handler faults propagate
        unchanged.  In both cases the loop is STOPPED first.
        """
        if self.state is State.STOPPED:
            raise RuntimeError('worker loop is stopped')

        try:
            line = self._read_line()
        except MalformedRequest as e:
            self.stats.skipped += 1
            logger.warning('skipping request line: %s', e)
            return True
        except OSError as e:
            self._stop()
            raise WorkerIOError(f'stdin read failed: {e}') from e

        if not line:
            self._stop()
            logger.debug('end of input stream')
            return False

        try:
            request = parse_request(line)
        except MalformedRequest as e:
            self.stats.skipped += 1
            logger.warning('skipping request line: %s', e)
            return True

        try:
            data = encode_response(self._stamp(self.handler.handle(request)))
        except BaseException:
            self._stop()
            raise

        try:
            self._stdout.write(data)
            self._stdout.flush()
        except OSError as e:
            self._stop()
            raise WorkerIOError(f'stdout write failed: {e}') from e

        self.stats.processed += 1
        return True

    def run(self) -> LoopStats:
        while self.step():
            pass
        logger.info('worker %s stopped: %d processed, %d skipped',
                    self._worker_id, self.stats.processed, self.stats.skipped)
        return self.stats
