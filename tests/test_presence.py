"""
Tests for presence heartbeats.

Tests cover:
- Heartbeat upsert (one row per node)
- Online means last_seen within the TTL
- Distinct users across machines
- Best-effort removal
- Priority list maintenance
"""

from datetime import timedelta

import pytest

from election.presence import PresenceService, make_node_id
from storage.database import session_scope
from storage.repositories import PresenceRepository, PriorityRepository, RecordNotFoundError


TTL = timedelta(seconds=30)


@pytest.fixture
def presence(session_factory, clock):
    return PresenceService(session_factory, "alice", "PC1", presence_ttl_seconds=30, clock=clock)


class TestHeartbeat:
    """Test heartbeat recording."""

    def test_node_id(self, presence):
        assert presence.node_id == "alice@PC1"
        assert make_node_id("bob", "PC2") == "bob@PC2"

    def test_heartbeat_upserts_single_row(self, presence, session_factory, clock):
        presence.record_heartbeat()
        clock.advance(10)
        presence.record_heartbeat()

        with session_scope(session_factory) as session:
            rows = PresenceRepository(session).list_all()
        assert len(rows) == 1
        assert rows[0].last_seen_utc == clock.now()

    def test_beat_returns_true_on_success(self, presence):
        assert presence.beat() is True


class TestOnline:
    """Test the online window."""

    def test_fresh_heartbeat_is_online(self, presence, clock):
        presence.record_heartbeat()
        clock.advance(29)

        assert presence.list_online_users() == ["alice"]

    def test_stale_heartbeat_is_offline(self, presence, clock):
        presence.record_heartbeat()
        clock.advance(30)

        assert presence.list_online_users() == []

    def test_users_are_distinct(self, session_factory, clock):
        for machine in ("PC1", "PC2"):
            PresenceService(session_factory, "alice", machine, clock=clock).record_heartbeat()
        PresenceService(session_factory, "bob", "PC3", clock=clock).record_heartbeat()

        with session_scope(session_factory) as session:
            users = PresenceRepository(session).list_online_users(clock.now(), TTL)
        assert sorted(users) == ["alice", "bob"]

    def test_online_nodes(self, session_factory, clock):
        PresenceService(session_factory, "alice", "PC1", clock=clock).record_heartbeat()
        clock.advance(20)
        PresenceService(session_factory, "bob", "PC2", clock=clock).record_heartbeat()
        clock.advance(15)

        nodes = PresenceService(session_factory, "carol", "PC3", clock=clock).list_online_nodes()
        assert [node.node_id for node in nodes] == ["bob@PC2"]


class TestRemoval:
    """Test presence removal on shutdown."""

    def test_remove_presence(self, presence):
        presence.record_heartbeat()

        assert presence.remove_presence() is True
        assert presence.list_online_users() == []

    def test_remove_missing_presence(self, presence):
        assert presence.remove_presence() is False


class TestPriorityList:
    """Test the master candidate list."""

    def test_replace_all_orders_from_one(self, session_factory):
        with session_scope(session_factory) as session:
            PriorityRepository(session).replace_all(["carol", "alice"])

        with session_scope(session_factory) as session:
            entries = PriorityRepository(session).load_priority_list()
            assert [(e.order_no, e.user_name) for e in entries] == [(1, "carol"), (2, "alice")]

    def test_remove(self, session_factory):
        with session_scope(session_factory) as session:
            PriorityRepository(session).replace_all(["alice", "bob"])

        with session_scope(session_factory) as session:
            PriorityRepository(session).remove("alice")

        with session_scope(session_factory) as session:
            entries = PriorityRepository(session).load_priority_list()
            assert [e.user_name for e in entries] == ["bob"]

    def test_remove_unknown_user(self, session_factory):
        with pytest.raises(RecordNotFoundError) as exc_info:
            with session_scope(session_factory) as session:
                PriorityRepository(session).remove("dave")

        assert exc_info.value.key == "dave"
