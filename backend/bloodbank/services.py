"""
One Dispatcher per process, built lazily from the environment.
Tests swap it out with monkeypatch (see tests/test_api.py).
"""

from functools import lru_cache

from dispatch import Dispatcher

from .store import DjangoRequestStore


@lru_cache(maxsize=1)
def get_dispatcher() -> Dispatcher:
    return Dispatcher.from_settings(DjangoRequestStore())
