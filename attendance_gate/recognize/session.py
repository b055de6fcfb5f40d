import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Awaitable, Callable, Dict, Optional, TypeVar
from .errors import LedgerReadFailure, LedgerWriteFailure, LedgerWriteTimeout
from .ports import FeedbackSink, LedgerStore
from .types import (
    AttendanceLogEntry,
    CycleOutcome,
    EnrolledIdentity,
    FeedbackEvent,
    FeedbackStatus,
    MatchResult,
    ScanType,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")

@dataclass
class SessionContext:
    """
    Processing lock and cooldown cache for one kiosk session.
    Owned and mutated only by AttendanceSessionController.
    """
    in_flight: bool = False
    settle_until: Optional[datetime] = None
    cooldown: Dict[str, datetime] = field(default_factory=dict)  # roll_number -> last accepted

    def is_locked(self, now: datetime) -> bool:
        if self.in_flight:
            return True
        return self.settle_until is not None and now < self.settle_until

    def acquire(self):
        self.in_flight = True
        self.settle_until = None

    def release(self, now: datetime, settle_delay: float):
        """End the cycle. The lock frees itself once settle_delay has passed."""
        self.in_flight = False
        self.settle_until = now + timedelta(seconds=settle_delay)

    def in_cooldown(self, roll_number: str, now: datetime, cooldown_duration: float) -> bool:
        last = self.cooldown.get(roll_number)
        if last is None:
            return False
        return now - last < timedelta(seconds=cooldown_duration)

    def mark_accepted(self, roll_number: str, now: datetime):
        self.cooldown[roll_number] = now

class AttendanceSessionController:
    """
    Turns matched identities into IN/OUT ledger entries.

    At most one decision-and-write cycle runs at a time. Matches offered while
    a cycle is running (or settling) are dropped, as are repeat matches of the
    same person inside the cooldown window.
    """
    def __init__(
        self,
        ledger: LedgerStore,
        sink: Optional[FeedbackSink] = None,
        cooldown_duration: float = 1800.0,
        lock_release_delay: float = 4.0,
        io_timeout: float = 5.0,
        context: Optional[SessionContext] = None,
        clock: Callable[[], datetime] = datetime.now,
    ):
        self.ledger = ledger
        self.sink = sink
        self.cooldown_duration = float(cooldown_duration)
        self.lock_release_delay = float(lock_release_delay)
        self.io_timeout = float(io_timeout)
        self.context = context if context is not None else SessionContext()
        self.clock = clock
        self._task: Optional[asyncio.Task] = None

    @property
    def pending(self) -> Optional[asyncio.Task]:
        """The in-flight cycle task started by offer(), if still running."""
        if self._task is not None and self._task.done():
            self._task = None
        return self._task

    def offer(self, match: MatchResult) -> Optional[asyncio.Task]:
        """
        Start a cycle in the background if the match is admitted.
        Returns the cycle task, or None when the match was dropped.
        Must be called from inside a running event loop.
        """
        if match.identity is None:
            return None
        now = self.clock()
        dropped = self._admit(match.identity, now)
        if dropped is not None:
            return None
        self._task = asyncio.get_running_loop().create_task(self._run_cycle(match.identity, now))
        self._task.add_done_callback(self._on_cycle_done)
        return self._task

    async def process(self, match: MatchResult) -> CycleOutcome:
        """Run one full cycle inline and report what happened."""
        if match.identity is None:
            raise ValueError("process() needs a matched identity")
        now = self.clock()
        dropped = self._admit(match.identity, now)
        if dropped is not None:
            return dropped
        return await self._run_cycle(match.identity, now)

    def _admit(self, identity: EnrolledIdentity, now: datetime) -> Optional[CycleOutcome]:
        # no await between the checks and acquire(): the event loop cannot interleave here
        if self.context.is_locked(now):
            return CycleOutcome.DROPPED_BUSY
        if self.context.in_cooldown(identity.roll_number, now, self.cooldown_duration):
            logger.debug(f"{identity.roll_number} still in cooldown, scan ignored")
            return CycleOutcome.DROPPED_COOLDOWN
        self.context.acquire()
        return None

    async def _run_cycle(self, identity: EnrolledIdentity, now: datetime) -> CycleOutcome:
        roll = identity.roll_number
        try:
            try:
                latest = await self._bounded(
                    self.ledger.latest_entry(roll, now.date()), LedgerReadFailure, "read"
                )
            except LedgerReadFailure as e:
                logger.error(f"Ledger read failed for {roll}, scan aborted: {e}")
                return CycleOutcome.READ_FAILED

            if latest is None or latest.scan_type is ScanType.OUT:
                scan_type = ScanType.IN
            else:
                scan_type = ScanType.OUT

            entry = AttendanceLogEntry(
                roll_number=roll,
                student_name=identity.full_name,
                scan_type=scan_type,
                date=now.date(),
                time=now.time(),
            )
            try:
                await self._bounded(
                    self.ledger.insert_entry(entry), LedgerWriteFailure, "write", timeout_failure=LedgerWriteTimeout
                )
            except LedgerWriteTimeout as e:
                # the store may still commit the row, so the scan counts as taken
                self.context.mark_accepted(roll, now)
                logger.warning(f"Ledger write for {roll} unconfirmed, cooldown applied: {e}")
                return CycleOutcome.WRITE_UNCONFIRMED
            except LedgerWriteFailure as e:
                logger.error(f"Ledger write failed for {roll}, will retry on next scan: {e}")
                return CycleOutcome.WRITE_FAILED

            self.context.mark_accepted(roll, now)
            logger.info(f"Recorded {scan_type.value} for {identity.label}")
            status = FeedbackStatus.SUCCESS_IN if scan_type is ScanType.IN else FeedbackStatus.SUCCESS_OUT
            self._notify(FeedbackEvent(status=status, label=identity.full_name, time=entry.time))
            return CycleOutcome.RECORDED
        except asyncio.CancelledError:
            logger.warning(f"Cycle for {roll} cancelled mid-flight, ledger state for this scan is unknown")
            raise
        finally:
            self.context.release(self.clock(), self.lock_release_delay)

    def _on_cycle_done(self, task: asyncio.Task):
        # a task cancelled before its first step never reaches the finally block in _run_cycle
        if self.context.in_flight:
            self.context.release(self.clock(), self.lock_release_delay)

    async def _bounded(
        self, call: Awaitable[T], failure: type, what: str, timeout_failure: Optional[type] = None
    ) -> T:
        try:
            return await asyncio.wait_for(call, timeout=self.io_timeout)
        except asyncio.TimeoutError as e:
            raise (timeout_failure or failure)(f"{what} timed out after {self.io_timeout}s") from e
        except failure:
            raise
        except Exception as e:
            raise failure(str(e)) from e

    def _notify(self, event: FeedbackEvent):
        if self.sink is None:
            return
        try:
            self.sink.emit(event)
        except Exception as e:
            logger.error(f"Feedback sink failed: {e}")
