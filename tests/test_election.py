"""
Tests for the Election Coordinator.

============================================================
TEST COVERAGE
============================================================
1. Preferred candidate selection (priority x presence)
2. Failover only after lease expiry
3. Yield and release when a preferred user returns
4. Store failures: never promote, demote after threshold
5. MastershipChanged subscription
6. Leadership confirmation
7. Async loop start / stop
============================================================
"""

import asyncio
from unittest.mock import MagicMock

import pytest

from booking.types import WorkflowEventType
from core.exceptions import StoreUnavailableError
from election.coordinator import MastershipChanged, TickOutcome


def heartbeat_and_tick(*nodes):
    for presence, _ in nodes:
        presence.record_heartbeat()
    return [coordinator.tick() for _, coordinator in nodes]


def fail_presence(presence):
    def broken():
        raise StoreUnavailableError("database is down", operation="list_online_users")

    presence.list_online_users = broken


# ============================================================
# TEST: Candidate Selection
# ============================================================

class TestCandidateSelection:
    """Test which instance becomes master."""

    def test_first_online_user_in_priority_wins(self, make_node, set_priority):
        set_priority("alice", "bob", "carol")
        bob = make_node("bob", "PC2")
        carol = make_node("carol", "PC3")

        results = heartbeat_and_tick(bob, carol)

        assert results[0].outcome == TickOutcome.ACQUIRED
        assert results[1].outcome == TickOutcome.YIELDED
        assert results[1].preferred == "bob"
        assert bob[1].is_master is True
        assert carol[1].is_master is False

    def test_single_instance_becomes_master(self, make_node, set_priority):
        set_priority("alice")
        alice = make_node("alice")

        heartbeat_and_tick(alice)

        assert alice[1].is_master is True
        holder = alice[1].get_current_master()
        assert (holder.user_name, holder.machine_name) == ("alice", "PC1")

    def test_user_outside_priority_never_master(self, make_node, set_priority):
        set_priority("alice")
        dave = make_node("dave")

        result = heartbeat_and_tick(dave)[0]

        assert result.outcome == TickOutcome.NO_CANDIDATE
        assert dave[1].is_master is False

    def test_empty_priority_list(self, make_node):
        alice = make_node("alice")

        result = heartbeat_and_tick(alice)[0]

        assert result.outcome == TickOutcome.NO_CANDIDATE
        assert alice[1].get_current_master() is None

    def test_second_machine_of_same_user_is_blocked(self, make_node, set_priority):
        set_priority("alice")
        first = make_node("alice", "PC1")
        second = make_node("alice", "PC2")

        results = heartbeat_and_tick(first, second)

        assert results[0].outcome == TickOutcome.ACQUIRED
        assert results[1].outcome == TickOutcome.BLOCKED
        assert second[1].is_master is False

    def test_priority_ties_ordered_by_user_name(self, make_node, session_factory):
        from storage.database import session_scope
        from storage.repositories import PriorityRepository

        with session_scope(session_factory) as session:
            repo = PriorityRepository(session)
            repo.set_priority("carol", 1)
            repo.set_priority("bob", 1)

        assert make_node("x")[1].load_priority_list() == ["bob", "carol"]


# ============================================================
# TEST: Failover
# ============================================================

class TestFailover:
    """Test takeover when the master disappears."""

    def test_takeover_only_after_lease_expiry(self, make_node, set_priority, clock):
        set_priority("alice", "bob")
        alice = make_node("alice", "PC1")
        bob = make_node("bob", "PC2")

        heartbeat_and_tick(alice, bob)
        assert alice[1].is_master is True

        # alice renews at t=12 but stops heartbeating
        clock.advance(12)
        alice[1].tick()

        # t=31: alice offline, her lease valid until t=42
        clock.advance(19)
        result = heartbeat_and_tick(bob)[0]
        assert result.outcome == TickOutcome.BLOCKED
        assert bob[1].is_master is False

        clock.advance(12)
        result = heartbeat_and_tick(bob)[0]
        assert result.outcome == TickOutcome.ACQUIRED
        assert bob[1].is_master is True

    def test_master_yields_to_preferred_user(self, make_node, set_priority, clock):
        set_priority("alice", "bob")
        bob = make_node("bob", "PC2")
        heartbeat_and_tick(bob)
        assert bob[1].is_master is True

        alice = make_node("alice", "PC1")
        alice[0].record_heartbeat()
        result = bob[1].tick()

        assert result.outcome == TickOutcome.YIELDED
        assert bob[1].is_master is False
        # Lease released on yield, no TTL wait for alice
        assert bob[1].get_current_master() is None

        clock.advance(1)
        heartbeat_and_tick(alice)
        assert alice[1].is_master is True

    def test_master_demotes_when_no_candidate(self, make_node, set_priority):
        set_priority("alice")
        alice = make_node("alice")
        heartbeat_and_tick(alice)

        set_priority("bob")
        result = alice[1].tick()

        assert result.outcome == TickOutcome.NO_CANDIDATE
        assert alice[1].is_master is False
        assert alice[1].get_current_master() is None

    def test_demotes_when_lease_taken(self, make_node, set_priority, clock):
        set_priority("alice")
        first = make_node("alice", "PC1")
        heartbeat_and_tick(first)

        # Stalled past expiry, another machine of the same user takes over
        clock.advance(31)
        second = make_node("alice", "PC2")
        heartbeat_and_tick(second)
        assert second[1].is_master is True

        result = first[1].tick()
        assert result.outcome == TickOutcome.BLOCKED
        assert first[1].is_master is False


# ============================================================
# TEST: Store Failures
# ============================================================

class TestStoreFailures:
    """Test behavior while the database is unreachable."""

    def test_error_never_promotes(self, make_node, set_priority):
        set_priority("alice")
        presence, coordinator = make_node("alice")
        presence.record_heartbeat()
        fail_presence(presence)

        result = coordinator.tick()

        assert result.outcome == TickOutcome.ERROR
        assert coordinator.is_master is False
        assert coordinator.consecutive_failures == 1

    def test_master_demotes_after_threshold(self, make_node, set_priority, clock):
        set_priority("alice")
        presence, coordinator = make_node("alice", failure_threshold=2)
        heartbeat_and_tick((presence, coordinator))
        fail_presence(presence)

        clock.advance(1)
        coordinator.tick()
        assert coordinator.is_master is True

        clock.advance(1)
        coordinator.tick()
        assert coordinator.is_master is False

    def test_master_demotes_when_own_expiry_passes(self, make_node, set_priority, clock):
        set_priority("alice")
        presence, coordinator = make_node("alice", failure_threshold=10)
        heartbeat_and_tick((presence, coordinator))
        fail_presence(presence)

        clock.advance(31)
        coordinator.tick()

        assert coordinator.is_master is False

    def test_success_resets_failures(self, make_node, set_priority):
        set_priority("alice")
        presence, coordinator = make_node("alice", failure_threshold=2)
        heartbeat_and_tick((presence, coordinator))

        original = presence.list_online_users
        fail_presence(presence)
        coordinator.tick()
        presence.list_online_users = original
        coordinator.tick()

        assert coordinator.consecutive_failures == 0
        assert coordinator.is_master is True


# ============================================================
# TEST: Subscription
# ============================================================

class TestSubscription:
    """Test MastershipChanged delivery."""

    def test_promotion_and_demotion_emitted(self, make_node, set_priority):
        set_priority("alice")
        presence, coordinator = make_node("alice")
        changes = []
        coordinator.subscribe(changes.append)

        heartbeat_and_tick((presence, coordinator))
        heartbeat_and_tick((presence, coordinator))
        set_priority("bob")
        coordinator.tick()

        assert [c.is_master for c in changes] == [True, False]
        assert isinstance(changes[0], MastershipChanged)
        assert changes[0].user_name == "alice"
        assert changes[0].lock_name == coordinator.lock_name

    def test_unsubscribe(self, make_node, set_priority):
        set_priority("alice")
        presence, coordinator = make_node("alice")
        callback = MagicMock()
        coordinator.subscribe(callback)
        coordinator.unsubscribe(callback)

        heartbeat_and_tick((presence, coordinator))

        callback.assert_not_called()

    def test_failing_subscriber_does_not_block_others(self, make_node, set_priority):
        set_priority("alice")
        presence, coordinator = make_node("alice")
        received = []

        def broken(change):
            raise RuntimeError("subscriber bug")

        coordinator.subscribe(broken)
        coordinator.subscribe(received.append)
        heartbeat_and_tick((presence, coordinator))

        assert len(received) == 1
        assert coordinator.is_master is True

    def test_mastership_events_logged(self, make_node, set_priority, event_log):
        set_priority("alice")
        presence, coordinator = make_node("alice", event_log=event_log)

        heartbeat_and_tick((presence, coordinator))
        set_priority("bob")
        coordinator.tick()

        events = event_log.list_system_events()
        assert [e.event_type for e in events] == [
            WorkflowEventType.MASTER_RELEASED.value,
            WorkflowEventType.MASTER_ACQUIRED.value,
        ]
        assert all(e.trade_id is None for e in events)


# ============================================================
# TEST: Leadership Confirmation
# ============================================================

class TestConfirmLeadership:
    """Test re-reading the lease before side effects."""

    def test_confirmed_while_holding(self, make_node, set_priority):
        set_priority("alice")
        presence, coordinator = make_node("alice")
        heartbeat_and_tick((presence, coordinator))

        assert coordinator.confirm_leadership() is True

    def test_not_confirmed_when_passive(self, make_node):
        _, coordinator = make_node("alice")

        assert coordinator.confirm_leadership() is False

    def test_not_confirmed_after_takeover(self, make_node, set_priority, clock):
        set_priority("alice")
        first = make_node("alice", "PC1")
        heartbeat_and_tick(first)

        clock.advance(31)
        heartbeat_and_tick(make_node("alice", "PC2"))

        # first still believes it is master until its next tick
        assert first[1].is_master is True
        assert first[1].confirm_leadership() is False

    def test_not_confirmed_on_store_error(self, make_node, set_priority):
        set_priority("alice")
        presence, coordinator = make_node("alice")
        heartbeat_and_tick((presence, coordinator))

        def broken():
            raise StoreUnavailableError("database is down")

        coordinator.get_current_master = broken
        assert coordinator.confirm_leadership() is False


# ============================================================
# TEST: Async Loop
# ============================================================

class TestElectionLoop:
    """Test the asyncio election loop."""

    @pytest.mark.asyncio
    async def test_loop_promotes_and_stop_releases(self, make_node, set_priority):
        set_priority("alice")
        presence, coordinator = make_node("alice", election_interval_seconds=0.05)
        presence.record_heartbeat()

        coordinator.start()
        for _ in range(40):
            if coordinator.is_master:
                break
            await asyncio.sleep(0.05)
        assert coordinator.is_master is True
        assert coordinator.is_running is True

        await coordinator.stop(release=True)

        assert coordinator.is_running is False
        assert coordinator.is_master is False
        assert coordinator.get_current_master() is None
