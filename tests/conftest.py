"""
Shared fixtures for the coordination core tests.

Every test gets its own SQLite database file so that several
sessions (and threads) see each other's commits, like instances
sharing one server database.
"""

import os
import time
from datetime import datetime, timezone
from pathlib import Path

import pytest

from booking.state_machine import BookingStateMachine
from booking.types import SystemCode, TradeSystemStatus
from booking.workflow_log import WorkflowEventLog
from core.clock import MockClock
from election.coordinator import ElectionCoordinator
from election.presence import PresenceService
from storage.database import (
    create_all_tables,
    create_database_engine,
    get_session_factory,
    session_scope,
)
from storage.repositories import PriorityRepository, TradeSystemLinkRepository


START = datetime(2024, 3, 1, 9, 0, 0, tzinfo=timezone.utc)


# ============================================================
# DATABASE
# ============================================================

@pytest.fixture
def engine(tmp_path):
    engine = create_database_engine(f"sqlite:///{tmp_path / 'coordination.db'}")
    create_all_tables(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return get_session_factory(engine)


@pytest.fixture
def clock():
    return MockClock(START)


# ============================================================
# BUILDERS
# ============================================================

class AlwaysLeader:
    """Leadership guard that can be flipped by a test."""

    def __init__(self, leader: bool = True):
        self.leader = leader
        self.calls = 0

    def confirm_leadership(self) -> bool:
        self.calls += 1
        return self.leader


@pytest.fixture
def leadership():
    return AlwaysLeader()


@pytest.fixture
def event_log(session_factory, clock):
    return WorkflowEventLog(session_factory, clock)


@pytest.fixture
def state_machine(session_factory, clock, event_log, leadership):
    return BookingStateMachine(
        session_factory,
        clock=clock,
        event_log=event_log,
        leadership=leadership,
        actor="watcher",
    )


@pytest.fixture
def make_link(session_factory, clock):
    """Insert a live link and return its trade id."""

    def _make(
        trade_id: int,
        system_code=SystemCode.MX3,
        status=TradeSystemStatus.NEW,
        external_trade_id=None,
    ) -> int:
        with session_scope(session_factory) as session:
            TradeSystemLinkRepository(session).create_link(
                trade_id=trade_id,
                system_code=SystemCode(system_code).value,
                status=TradeSystemStatus(status).value,
                now=clock.now(),
                external_trade_id=external_trade_id,
            )
        return trade_id

    return _make


@pytest.fixture
def set_priority(session_factory):
    def _set(*user_names: str) -> None:
        with session_scope(session_factory) as session:
            PriorityRepository(session).replace_all(list(user_names))

    return _set


@pytest.fixture
def make_node(session_factory, clock):
    """Build (presence, coordinator) for a simulated instance."""

    def _make(user_name: str, machine_name: str = "PC1", **kwargs):
        presence = PresenceService(
            session_factory,
            user_name=user_name,
            machine_name=machine_name,
            presence_ttl_seconds=kwargs.pop("presence_ttl_seconds", 30),
            heartbeat_interval_seconds=10,
            clock=clock,
        )
        coordinator = ElectionCoordinator(
            session_factory,
            presence,
            lease_ttl_seconds=kwargs.pop("lease_ttl_seconds", 30),
            election_interval_seconds=kwargs.pop("election_interval_seconds", 12),
            initial_delay_seconds=0,
            clock=clock,
            **kwargs,
        )
        return presence, coordinator

    return _make


# ============================================================
# RESPONSE FILES
# ============================================================

def _age(path, seconds: float = 60) -> None:
    """Backdate a file so the settle delay has passed."""
    stamp = time.time() - seconds
    os.utime(path, (stamp, stamp))


@pytest.fixture
def write_mx3(tmp_path):
    """Write an MX3 answer set (answer file plus optional error file)."""

    def _write(
        trade_id: int,
        status: str = "OK",
        internal_id: str = "DEAL123",
        messages=(),
        folder: Path = None,
        session: str = "37933598",
        settled: bool = True,
    ) -> Path:
        folder = folder or tmp_path / "mx3"
        folder.mkdir(parents=True, exist_ok=True)
        base = f"{trade_id}-L1.xml"

        status_attr = f' MXAnswerStatus="{status}"' if status is not None else ""
        answer = folder / f"{base}_evs_ans_ok.dtd_{session}_2.xml"
        answer.write_text(
            f'<?xml version="1.0"?>\n<MxMLAnswer{status_attr}>'
            f"<trade><tradeInternalId>{internal_id}</tradeInternalId></trade>"
            f"</MxMLAnswer>"
        )
        paths = [answer]

        if messages:
            body = "".join(
                f"<MXException><Level>{level}</Level><Description>{text}</Description></MXException>"
                for level, text in messages
            )
            error = folder / f"{base}_evs_ans_err.dtd_{session}_3.xml"
            error.write_text(f'<?xml version="1.0"?>\n<MxMLErrors>{body}</MxMLErrors>')
            paths.append(error)

        if settled:
            for path in paths:
                _age(path)
        return answer

    return _write


@pytest.fixture
def write_calypso(tmp_path):
    """Write a CalypsoAcknowledgement result file."""

    def _write(
        trade_id: int,
        calypso_id: str = "3966887408",
        status: str = "success",
        rejected: int = 0,
        errors=(),
        folder: Path = None,
        settled: bool = True,
    ) -> Path:
        folder = folder or tmp_path / "calypso"
        folder.mkdir(parents=True, exist_ok=True)
        error_body = "".join(
            f"<CalypsoError><Error><Message>{text}</Message></Error></CalypsoError>"
            for text in errors
        )
        path = folder / f"{trade_id}_FX_SPOT_{calypso_id}_result.xml"
        path.write_text(
            f'<?xml version="1.0"?>\n'
            f'<CalypsoAcknowledgement Rejected="{rejected}">'
            f"<CalypsoTrades><CalypsoTrade>"
            f"<CalypsoTradeId>{calypso_id}</CalypsoTradeId><Status>{status}</Status>"
            f"</CalypsoTrade></CalypsoTrades>"
            f"<CalypsoErrors>{error_body}</CalypsoErrors>"
            f"</CalypsoAcknowledgement>"
        )
        if settled:
            _age(path)
        return path

    return _write
