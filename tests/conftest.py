# hpoll Worker
# Created by Matthew Valancy, Valpatel Software LLC
# Copyright 2026 GPL-3.0 License

"""Shared fixtures: temporary SQLite store and a controllable clock."""

import os
import sys
import tempfile
from datetime import datetime, timezone

import pytest

sys.path.insert(0, os.path.join(os.path.dirname(__file__), "..", "worker"))

from fakes import FakeClock
from hpoll.store import Store

T0 = datetime(2026, 3, 1, 7, 0, tzinfo=timezone.utc)


@pytest.fixture
def tmp_db():
    """Temporary SQLite database path."""
    fd, path = tempfile.mkstemp(suffix=".db")
    os.close(fd)
    yield path
    for suffix in ("", "-wal", "-shm"):
        try:
            os.unlink(path + suffix)
        except OSError:
            pass


@pytest.fixture
def store(tmp_db):
    return Store(tmp_db)


@pytest.fixture
def clock():
    return FakeClock(T0)
