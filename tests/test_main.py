# hpoll Worker
# Created by Matthew Valancy, Valpatel Software LLC
# Copyright 2026 GPL-3.0 License

"""Tests for WorkerManager wiring and lifecycle."""

import json
import os
import sys
from unittest.mock import AsyncMock

import pytest

sys.path.insert(0, os.path.join(os.path.dirname(__file__), "..", "worker"))

from fakes import FakeBridgeClient, make_config
from hpoll.mailer import LogEmailSender
from hpoll.main import WorkerManager


@pytest.fixture
def manager(tmp_db, tmp_path):
    customers = tmp_path / "customers.json"
    customers.write_text(json.dumps({"customers": [
        {"name": "Alice", "email": "alice@example.com",
         "hubs": [{"bridge_id": "bridge-1", "refresh_token": "r"}]},
    ]}))
    config = make_config(HPOLL_DB_PATH=tmp_db, HPOLL_CUSTOMERS_FILE=str(customers),
                         SENDGRID_API_KEY="", EMAIL_FROM_ADDRESS="")
    return WorkerManager(config, client=FakeBridgeClient())


def stub_loops(manager):
    for service in manager.services.values():
        service.run = AsyncMock()
    manager.web.start = AsyncMock()
    manager.web.stop = AsyncMock()


class TestWiring:
    def test_services(self, manager):
        assert list(manager.services) == ["polling", "token_refresh", "digest"]

    def test_log_sender_without_sendgrid_key(self, manager):
        assert isinstance(manager.digest._sender, LogEmailSender)

    def test_seed(self, manager):
        assert manager.seed() == (1, 1)
        assert manager.seed() == (0, 0)
        with manager.store.session() as db:
            assert db.find_hub_by_bridge_id("bridge-1").refresh_token == "r"


class TestRun:
    @pytest.mark.asyncio
    async def test_runs_every_loop_and_cleans_up(self, manager):
        stub_loops(manager)

        await manager.run()

        for service in manager.services.values():
            service.run.assert_awaited_once()
        manager.web.start.assert_awaited_once()
        manager.web.stop.assert_awaited_once()
        assert manager.client.closed is True
        with manager.store.session() as db:
            assert len(db.get_all_hubs()) == 1

    @pytest.mark.asyncio
    async def test_failing_loop_does_not_stop_others(self, manager):
        stub_loops(manager)
        manager.digest.run = AsyncMock(side_effect=RuntimeError("boom"))

        await manager.run()

        manager.poller.run.assert_awaited_once()
        manager.token_refresh.run.assert_awaited_once()
        assert manager.client.closed is True

    @pytest.mark.asyncio
    async def test_web_bind_failure_is_not_fatal(self, manager):
        stub_loops(manager)
        manager.web.start = AsyncMock(side_effect=OSError("address in use"))

        await manager.run()

        manager.poller.run.assert_awaited_once()

    def test_stop_signals_services(self, manager):
        manager._running = True
        manager.stop()
        assert all(s.stopping for s in manager.services.values())
