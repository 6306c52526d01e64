"""Drive a single worker subprocess over its stdin/stdout pipes.

This is the supervisor side of the wire protocol, reduced to one process:
spawn the worker, write a request line, read the matching response line.
It is used by the end-to-end tests and by embedders that want one worker
without a pool.

Usage
-----
    with WorkerProcess(['--handler', 'echo']) as w:
        resp = w.call({'method': 'POST', 'url': '/x', 'body': 'hi'})
    # w.returncode == 0 after a clean close
"""
from __future__ import annotations

import json
import logging
import subprocess
import sys
import threading
from typing import Any, Dict, List, Mapping, Optional

from tusk_worker.protocol import decode_response

logger = logging.getLogger(__name__)

WORKER_TIMEOUT = 5.0


class WorkerCallError(Exception):
    pass


class WorkerProcess:
    """A single persistent worker subprocess."""

    def __init__(self, argv: Optional[List[str]] = None,
                 env: Optional[Mapping[str, str]] = None):
        self._argv = [sys.executable, '-m', 'tusk_worker', *(argv or [])]
        self._proc: Optional[subprocess.Popen] = None
        self._lock = threading.Lock()
        self._env = dict(env) if env is not None else None
        self.returncode: Optional[int] = None
        self.trailing_output = b''
        self._spawn()

    def _spawn(self) -> None:
        self._proc = subprocess.Popen(
            self._argv,
            stdin=subprocess.PIPE,
            stdout=subprocess.PIPE,
            stderr=None,  # worker logs pass through to our stderr
            env=self._env,
            bufsize=0,
        )
        logger.debug('spawned worker pid=%s', self._proc.pid)

    @property
    def pid(self) -> int:
        return self._proc.pid  # type: ignore

    def alive(self) -> bool:
        return self._proc is not None and self._proc.poll() is None

    def send_raw(self, line: bytes) -> None:
        """Write *line* as-is (a newline is appended if missing)."""
        if not line.endswith(b'\n'):
            line += b'\n'
        try:
            self._proc.stdin.write(line)  # type: ignore
            self._proc.stdin.flush()  # type: ignore
        except OSError as e:
            raise WorkerCallError(f'worker stdin write failed: {e}')

    def read_response(self, timeout: float = WORKER_TIMEOUT) -> Dict[str, Any]:
        # readline has no timeout of its own; run it on a daemon thread
        holder: list = []

        def _read():
            try:
                holder.append(self._proc.stdout.readline())  # type: ignore
            except Exception as e:
                holder.append(e)

        t = threading.Thread(target=_read, daemon=True)
        t.start()
        t.join(timeout)
        if t.is_alive():
            self.kill()
            raise WorkerCallError('worker timeout')
        line = holder[0]
        try:
            if isinstance(line, Exception):
                raise line
            data = decode_response(line)
        except (OSError, ValueError) as e:
            self.kill()
            raise WorkerCallError(f'bad worker output: {e}') from e
        if data is None:
            self.kill()
            raise WorkerCallError('worker closed stdout without responding')
        return data

    def call(self, request: Dict[str, Any], timeout: float = WORKER_TIMEOUT) -> Dict[str, Any]:
        """Send one request and wait for its response."""
        with self._lock:
            if not self.alive():
                raise WorkerCallError('worker is not running')
            self.send_raw(json.dumps(request).encode('utf-8'))
            return self.read_response(timeout)

    def close(self, timeout: float = WORKER_TIMEOUT) -> int:
        """Close the worker's stdin (end-of-stream) and return its exit code.

        Anything the worker writes after the last response is kept in
        ``trailing_output``.
        """
        proc = self._proc
        if proc is None or self.returncode is not None:
            return self.returncode  # type: ignore
        try:
            out, _ = proc.communicate(timeout=timeout)
        except subprocess.TimeoutExpired:
            logger.warning('worker pid=%s did not exit, killing', proc.pid)
            proc.kill()
            out, _ = proc.communicate()
        self.trailing_output = out or b''
        self.returncode = proc.returncode
        return self.returncode

    def kill(self) -> None:
        proc = self._proc
        if proc is None or self.returncode is not None:
            return
        proc.kill()
        proc.communicate()
        self.returncode = proc.returncode

    def __enter__(self) -> 'WorkerProcess':
        return self

    def __exit__(self, *exc) -> None:
        self.close()
