"""
Tests for the coordinator node runtime.

Tests cover:
- Startup heartbeats, wins the election and starts ingestion
- Graceful shutdown releases the lease and removes presence
"""

import asyncio

import pytest

from booking.types import SystemCode
from orchestrator.core import CoordinatorNode
from orchestrator.models import CoordinatorConfig


@pytest.fixture
def config(tmp_path):
    return CoordinatorConfig(
        user_name="alice",
        machine_name="PC1",
        lease_ttl_seconds=5,
        presence_ttl_seconds=3,
        heartbeat_interval_seconds=0.05,
        election_interval_seconds=0.05,
        election_initial_delay_seconds=0,
        mx3_response_folder=str(tmp_path / "mx3"),
        response_poll_interval_seconds=0.05,
        log_format="text",
    )


class TestCoordinatorNode:
    """Test node lifecycle."""

    @pytest.mark.asyncio
    async def test_start_elect_and_stop(self, config, engine, set_priority):
        set_priority("alice")
        node = CoordinatorNode(config, engine=engine)

        await node.start()
        try:
            for _ in range(60):
                if node.coordinator.is_master:
                    break
                await asyncio.sleep(0.05)

            assert node.is_running is True
            assert node.coordinator.is_master is True
            status = node.get_status()
            assert status["lease_holder"] == "alice@PC1"
            assert status["ingesting"] == [SystemCode.MX3.value]
        finally:
            await node.stop()

        assert node.is_running is False
        assert node.coordinator.is_master is False
        assert node.coordinator.get_current_master() is None
        assert node.presence.list_online_users() == []
        assert node.supervisor.active_systems == []

    @pytest.mark.asyncio
    async def test_passive_node_does_not_ingest(self, config, engine, set_priority):
        set_priority("bob")
        node = CoordinatorNode(config, engine=engine)

        await node.start()
        try:
            await asyncio.sleep(0.3)
            assert node.coordinator.is_master is False
            assert node.get_status()["ingesting"] == []
        finally:
            await node.stop()

    @pytest.mark.asyncio
    async def test_request_shutdown_ends_run_forever(self, config, engine, set_priority):
        set_priority("alice")
        node = CoordinatorNode(config, engine=engine)

        runner = asyncio.create_task(node.run_forever())
        await asyncio.sleep(0.2)
        node.request_shutdown()
        await asyncio.wait_for(runner, timeout=5)

        assert node.is_running is False
