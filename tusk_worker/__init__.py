"""tusk_worker: long-lived NDJSON request/response worker process.

A supervisor writes one JSON request per line to the worker's stdin and
reads one JSON response per line from its stdout.  See loop.py for the
read / parse / dispatch / write cycle and handlers.py for the pluggable
request handler seam.
"""
from tusk_worker.handlers import EchoHandler, ErrorTrapHandler, RequestHandler, load_handler
from tusk_worker.loop import LoopStats, State, WorkerIOError, WorkerLoop
from tusk_worker.protocol import MalformedRequest, ProtocolError, Request, Response

__version__ = '0.1.0'

__all__ = [
    'EchoHandler',
    'ErrorTrapHandler',
    'LoopStats',
    'MalformedRequest',
    'ProtocolError',
    'Request',
    'RequestHandler',
    'Response',
    'State',
    'WorkerIOError',
    'WorkerLoop',
    'load_handler',
]
