"""conftest.py: make the repo root importable so tests can import
``tusk_worker`` without an install, and give subprocess workers the same
import path.
"""
import os
import sys

import pytest

_REPO_ROOT = os.path.normpath(os.path.join(os.path.dirname(__file__), '..'))
if _REPO_ROOT not in sys.path:
    sys.path.insert(0, _REPO_ROOT)


@pytest.fixture
def worker_env():
    """Environment for spawning ``python -m tusk_worker`` from the repo root."""
    env = dict(os.environ)
    path = env.get('PYTHONPATH')
    env['PYTHONPATH'] = _REPO_ROOT + (os.pathsep + path if path else '')
    for key in list(env):
        if key.startswith('TUSK_WORKER_'):
            del env[key]
    return env


@pytest.fixture(autouse=True)
def _clean_worker_env(monkeypatch):
    """Keep TUSK_WORKER_* settings from the outer shell out of in-process tests."""
    for key in list(os.environ):
        if key.startswith('TUSK_WORKER_'):
            monkeypatch.delenv(key, raising=False)
