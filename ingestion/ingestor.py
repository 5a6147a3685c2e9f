"""
Ingestion - Response Ingestor.

============================================================
RESPONSIBILITY
============================================================
Leader-only consumer of one booking system's response folder.

- Polls the folder; files younger than the settle delay are left
  for the next poll
- Reconfirms leadership before every file
- Success -> BOOKED, failure -> ERROR through the state machine
- Processed files go to processed/, unreadable files and files of
  unknown trades to quarantine/
- On start, a catch-up scan handles responses of PENDING links
  first
- An unexpected error on one file quarantines that file; an error
  on the folder skips the cycle. The poll task keeps running.

stop() only cancels the poll task; it never touches the database.

============================================================
"""

import asyncio
import logging
import shutil
import time
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any, Iterable, List, Optional

from booking.state_machine import BookingStateMachine
from booking.types import ParsedResponse, TradeSystemStatus, WorkflowEventType
from booking.workflow_log import WorkflowEventLog
from core.exceptions import (
    LinkNotFoundError,
    NotLeaderError,
    ResponseParseError,
    StoreUnavailableError,
    TerminalStateError,
    TransitionConflictError,
    UnknownEnumValueError,
)
from ingestion.parsers import ResponseParser
from storage.repositories import RepositoryException


logger = logging.getLogger(__name__)


PROCESSED_DIR = "processed"
QUARANTINE_DIR = "quarantine"


class FileOutcome(Enum):
    """What happened to one response file."""

    BOOKED = "booked"
    ERROR = "error"
    ALREADY_PROCESSED = "already_processed"
    UNKNOWN_TRADE = "unknown_trade"
    QUARANTINED = "quarantined"
    NOT_LEADER = "not_leader"
    RETRY = "retry"


class ResponseIngestor:
    """Polls one response folder while this instance is master."""

    def __init__(
        self,
        parser: ResponseParser,
        folder: Path,
        state_machine: BookingStateMachine,
        leadership: Any,
        event_log: Optional[WorkflowEventLog] = None,
        poll_interval_seconds: float = 2,
        settle_seconds: float = 1,
        actor: str = "system",
    ):
        self._parser = parser
        self._folder = Path(folder)
        self._state_machine = state_machine
        self._leadership = leadership
        self._event_log = event_log or state_machine.event_log
        self._poll_interval = poll_interval_seconds
        self._settle_seconds = settle_seconds
        self._actor = actor

        self._active = False
        self._cancelled = False
        self._task: Optional[asyncio.Task] = None

    @property
    def system_code(self):
        return self._parser.system_code

    @property
    def folder(self) -> Path:
        return self._folder

    @property
    def is_active(self) -> bool:
        return self._active

    # --------------------------------------------------------
    # Lifecycle
    # --------------------------------------------------------

    def start(self) -> None:
        """Start catch-up and polling on the running event loop."""
        if self._active:
            return
        self._active = True
        self._cancelled = False
        self._task = asyncio.create_task(
            self._run(), name=f"ingest-{self.system_code.value}"
        )
        logger.info(f"{self.system_code.value} ingestion started on {self._folder}")

    def stop(self) -> None:
        """Cancel polling. Safe to call from any state."""
        if not self._active and self._task is None:
            return
        self._active = False
        self._cancelled = True
        if self._task is not None and not self._task.done():
            self._task.cancel()
        logger.info(f"{self.system_code.value} ingestion stopped")

    async def wait_stopped(self) -> None:
        """Wait until the poll task has finished after stop()."""
        task, self._task = self._task, None
        if task is None:
            return
        try:
            await task
        except asyncio.CancelledError:
            pass

    async def _run(self) -> None:
        code = self.system_code.value
        try:
            await asyncio.to_thread(self._prepare)
        except Exception as e:
            logger.error(f"{code} catch-up failed, continuing with polling: {e}", exc_info=True)

        while self._active:
            try:
                await asyncio.to_thread(self.poll_once)
            except Exception as e:
                logger.error(f"{code} poll of {self._folder} failed: {e}", exc_info=True)
            await asyncio.sleep(self._poll_interval)

    def _prepare(self) -> None:
        self._folder.mkdir(parents=True, exist_ok=True)
        self.catch_up()

    # --------------------------------------------------------
    # Scanning
    # --------------------------------------------------------

    def catch_up(self) -> int:
        """
        Process responses of PENDING links that arrived while no
        instance was watching.

        Returns:
            Number of files processed
        """
        try:
            pending = self._state_machine.list_links(self.system_code, TradeSystemStatus.PENDING)
        except StoreUnavailableError as e:
            logger.warning(f"{self.system_code.value} catch-up skipped: {e.message}")
            return 0

        pending_ids = {link.trade_id for link in pending}
        if not pending_ids:
            return 0

        handled = set()
        count = 0
        for path in self._settled_triggers():
            if self._cancelled:
                break
            try:
                trade_id = self._parser.trade_id_from_name(path.name)
            except ResponseParseError:
                # quarantined by the next poll
                continue
            if trade_id in pending_ids:
                self.process_file_safely(path)
                handled.add(trade_id)
                count += 1

        waiting = sorted(pending_ids - handled)
        if waiting:
            logger.info(
                f"{self.system_code.value} catch-up: {len(waiting)} pending without response: "
                f"{', '.join(str(trade_id) for trade_id in waiting[:20])}"
            )
        return count

    def poll_once(self) -> int:
        """
        Process every settled trigger file once.

        Returns:
            Number of files processed
        """
        count = 0
        for path in self._settled_triggers():
            if self._cancelled:
                break
            outcome = self.process_file_safely(path)
            if outcome == FileOutcome.NOT_LEADER:
                break
            count += 1
        return count

    def _settled_triggers(self) -> List[Path]:
        cutoff = time.time() - self._settle_seconds
        settled = []
        for path in self._parser.list_triggers(self._folder):
            try:
                if path.stat().st_mtime <= cutoff:
                    settled.append(path)
            except FileNotFoundError:
                continue
        return settled

    # --------------------------------------------------------
    # Single file
    # --------------------------------------------------------

    def process_file(self, path: Path) -> FileOutcome:
        """Apply one response file to its link."""
        if not self._leadership.confirm_leadership():
            logger.warning(f"Not leader, leaving {path.name} in place")
            return FileOutcome.NOT_LEADER

        try:
            response = self._parser.parse(path)
        except ResponseParseError as e:
            logger.error(f"Malformed {self.system_code.value} response {path.name}: {e.message}")
            self._quarantine(path, e.message, e.trade_id)
            return FileOutcome.QUARANTINED

        try:
            outcome = self._apply(response)
        except (TransitionConflictError, TerminalStateError) as e:
            logger.info(f"{path.name} already processed: {e.message}")
            self._archive(self._files_of(path))
            return FileOutcome.ALREADY_PROCESSED
        except LinkNotFoundError as e:
            logger.error(f"{path.name} refers to an unknown trade: {e.message}")
            self._quarantine(path, e.message, response.trade_id)
            return FileOutcome.UNKNOWN_TRADE
        except NotLeaderError:
            logger.warning(f"Leadership lost while applying {path.name}")
            return FileOutcome.NOT_LEADER
        except StoreUnavailableError as e:
            logger.warning(f"{path.name} left for retry: {e.message}")
            return FileOutcome.RETRY

        self._archive(self._files_of(path))
        return outcome

    def process_file_safely(self, path: Path) -> FileOutcome:
        """
        process_file() for the poll loop: an unexpected error
        quarantines the file instead of ending the loop.
        """
        try:
            return self.process_file(path)
        except UnknownEnumValueError as e:
            logger.critical(
                f"Unknown stored value while applying {path.name}, quarantining: {e.message}",
                exc_info=True,
            )
            reason = e.message
        except Exception as e:
            logger.error(f"Unexpected error on {path.name}, quarantining: {e}", exc_info=True)
            reason = f"{type(e).__name__}: {e}"

        self._quarantine(path, reason, self._trade_id_of(path))
        return FileOutcome.QUARANTINED

    def _trade_id_of(self, path: Path) -> Optional[int]:
        try:
            return self._parser.trade_id_from_name(path.name)
        except ResponseParseError:
            return None

    def _apply(self, response: ParsedResponse) -> FileOutcome:
        if response.is_success:
            details = f"{response.file_name}: {response.external_trade_id}"
            if response.error_text:
                details += f" (warnings: {response.error_text})"
            self._state_machine.confirm_booking(
                response.trade_id,
                response.system_code,
                response.external_trade_id,
                details=details,
            )
            return FileOutcome.BOOKED

        self._state_machine.fail_booking(
            response.trade_id, response.system_code, response.error_text
        )
        return FileOutcome.ERROR

    def _files_of(self, path: Path) -> List[Path]:
        try:
            return self._parser.related_files(path)
        except ResponseParseError:
            return [path]

    # --------------------------------------------------------
    # File moves
    # --------------------------------------------------------

    def _archive(self, files: Iterable[Path]) -> None:
        self._move(files, self._folder / PROCESSED_DIR)

    def _quarantine(self, path: Path, reason: str, trade_id: Optional[int]) -> None:
        self._move(self._files_of(path), self._folder / QUARANTINE_DIR)
        try:
            self._event_log.append(
                trade_id=trade_id,
                event_type=WorkflowEventType.RESPONSE_QUARANTINED,
                user_id=self._actor,
                system_code=self.system_code,
                details=f"{path.name}: {reason}",
            )
        except RepositoryException as e:
            logger.warning(f"Could not log quarantine of {path.name}: {e}")

    def _move(self, files: Iterable[Path], target_dir: Path) -> None:
        target_dir.mkdir(parents=True, exist_ok=True)
        for source in files:
            if not source.exists():
                continue
            target = target_dir / source.name
            if target.exists():
                stamp = datetime.now(timezone.utc).strftime("%Y%m%d%H%M%S%f")
                target = target_dir / f"{source.stem}.{stamp}{source.suffix}"
            try:
                shutil.move(str(source), str(target))
                logger.debug(f"Moved {source.name} -> {target_dir.name}/")
            except OSError as e:
                logger.error(f"Could not move {source.name} to {target_dir}: {e}")
