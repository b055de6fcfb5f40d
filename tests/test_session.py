import asyncio
import time as time_mod
from datetime import date, time, timedelta

import pytest

from attendance_gate.ledger import MemoryLedger, SqliteLedger
from attendance_gate.recognize.session import AttendanceSessionController, SessionContext
from attendance_gate.recognize.types import (
    AttendanceLogEntry,
    CycleOutcome,
    FeedbackStatus,
    MatchResult,
    ScanType,
)
from conftest import FailingLedger, GatedLedger

COOLDOWN = 1800.0
SETTLE = 4.0

def controller_for(ledger, sink, clock, **kwargs):
    params = dict(cooldown_duration=COOLDOWN, lock_release_delay=SETTLE, io_timeout=1.0)
    params.update(kwargs)
    return AttendanceSessionController(ledger=ledger, sink=sink, clock=clock, **params)

def matched(identity, distance=0.1):
    return MatchResult(identity=identity, distance=distance)

def test_first_scan_of_the_day_is_in(alice, sink, clock):
    ledger = MemoryLedger()
    ctl = controller_for(ledger, sink, clock)

    outcome = asyncio.run(ctl.process(matched(alice)))

    assert outcome is CycleOutcome.RECORDED
    assert len(ledger.entries) == 1
    entry = ledger.entries[0]
    assert entry.roll_number == "A1"
    assert entry.student_name == "Alice Rao"
    assert entry.scan_type is ScanType.IN
    assert entry.date == clock.now.date()
    assert entry.time == clock.now.time()
    assert [e.status for e in sink.events] == [FeedbackStatus.SUCCESS_IN]
    assert sink.events[0].label == "Alice Rao"

def test_toggle_in_out_in_across_cooldowns(alice, sink, clock):
    ledger = MemoryLedger()
    ctl = controller_for(ledger, sink, clock)

    async def scenario():
        outcomes = []
        for _ in range(3):
            outcomes.append(await ctl.process(matched(alice)))
            clock.advance(COOLDOWN + 1)
        return outcomes

    assert asyncio.run(scenario()) == [CycleOutcome.RECORDED] * 3
    assert [e.scan_type for e in ledger.entries] == [ScanType.IN, ScanType.OUT, ScanType.IN]
    assert [e.status for e in sink.events] == [
        FeedbackStatus.SUCCESS_IN,
        FeedbackStatus.SUCCESS_OUT,
        FeedbackStatus.SUCCESS_IN,
    ]

def test_latest_in_today_produces_out(alice, sink, clock):
    earlier = AttendanceLogEntry("A1", "Alice Rao", ScanType.IN, clock.now.date(), time(7, 55))
    ledger = MemoryLedger([earlier])
    ctl = controller_for(ledger, sink, clock)

    asyncio.run(ctl.process(matched(alice)))

    assert ledger.entries[-1].scan_type is ScanType.OUT

def test_yesterdays_in_does_not_carry_over(alice, sink, clock):
    yesterday = AttendanceLogEntry("A1", "Alice Rao", ScanType.IN, date(2026, 3, 1), time(17, 0))
    ledger = MemoryLedger([yesterday])
    ctl = controller_for(ledger, sink, clock)

    asyncio.run(ctl.process(matched(alice)))

    assert ledger.entries[-1].scan_type is ScanType.IN

def test_repeat_within_cooldown_is_dropped(alice, sink, clock):
    ledger = MemoryLedger()
    ctl = controller_for(ledger, sink, clock)

    async def scenario():
        first = await ctl.process(matched(alice))
        clock.advance(SETTLE + 1)  # lock settled, cooldown still active
        second = await ctl.process(matched(alice))
        return first, second

    first, second = asyncio.run(scenario())
    assert first is CycleOutcome.RECORDED
    assert second is CycleOutcome.DROPPED_COOLDOWN
    assert len(ledger.entries) == 1
    assert len(sink.events) == 1

def test_cooldown_is_per_identity(alice, bob, sink, clock):
    ledger = MemoryLedger()
    ctl = controller_for(ledger, sink, clock)

    async def scenario():
        await ctl.process(matched(alice))
        clock.advance(SETTLE + 1)
        return await ctl.process(matched(bob))

    assert asyncio.run(scenario()) is CycleOutcome.RECORDED
    assert [e.roll_number for e in ledger.entries] == ["A1", "B2"]

def test_lock_settles_for_release_delay(alice, bob, sink, clock):
    ledger = MemoryLedger()
    ctl = controller_for(ledger, sink, clock)

    async def scenario():
        await ctl.process(matched(alice))
        clock.advance(SETTLE - 0.5)
        during = await ctl.process(matched(bob))
        clock.advance(1.0)
        after = await ctl.process(matched(bob))
        return during, after

    during, after = asyncio.run(scenario())
    assert during is CycleOutcome.DROPPED_BUSY
    assert after is CycleOutcome.RECORDED

def test_overlapping_offers_produce_a_single_write(alice, bob, sink, clock):
    ledger = GatedLedger()
    ctl = controller_for(ledger, sink, clock)

    async def scenario():
        first = ctl.offer(matched(alice))
        # detections arriving while the first write is pending
        others = [ctl.offer(matched(alice)), ctl.offer(matched(bob)), ctl.offer(matched(bob))]
        await asyncio.sleep(0)
        assert ctl.context.is_locked(clock())
        ledger.release.set()
        outcome = await first
        return first, others, outcome

    first, others, outcome = asyncio.run(scenario())
    assert first is not None
    assert others == [None, None, None]
    assert outcome is CycleOutcome.RECORDED
    assert ledger.max_in_flight == 1
    assert [e.roll_number for e in ledger.entries] == ["A1"]

def test_offer_ignores_unknown(sink, clock):
    ctl = controller_for(MemoryLedger(), sink, clock)

    async def scenario():
        return ctl.offer(MatchResult(identity=None, distance=0.9))

    assert asyncio.run(scenario()) is None
    assert not ctl.context.is_locked(clock())
    assert ctl.context.cooldown == {}

def test_process_requires_identity(sink, clock):
    ctl = controller_for(MemoryLedger(), sink, clock)
    with pytest.raises(ValueError):
        asyncio.run(ctl.process(MatchResult(identity=None, distance=0.9)))

def test_write_failure_skips_cooldown_and_next_scan_retries(alice, sink, clock):
    ledger = FailingLedger(fail_writes=1)
    ctl = controller_for(ledger, sink, clock)

    async def scenario():
        failed = await ctl.process(matched(alice))
        locked_after_failure = ctl.context.is_locked(clock())
        cooldown_after_failure = dict(ctl.context.cooldown)
        clock.advance(SETTLE)
        retried = await ctl.process(matched(alice))
        return failed, locked_after_failure, cooldown_after_failure, retried

    failed, locked_after_failure, cooldown_after_failure, retried = asyncio.run(scenario())
    assert failed is CycleOutcome.WRITE_FAILED
    assert locked_after_failure  # settling, not stuck
    assert cooldown_after_failure == {}
    assert retried is CycleOutcome.RECORDED
    assert ledger.write_attempts == 2
    assert [e.scan_type for e in ledger.entries] == [ScanType.IN]
    assert [e.status for e in sink.events] == [FeedbackStatus.SUCCESS_IN]

def test_read_failure_aborts_without_assuming_in(alice, sink, clock):
    earlier = AttendanceLogEntry("A1", "Alice Rao", ScanType.IN, clock.now.date(), time(7, 55))
    ledger = FailingLedger(fail_reads=1)
    ledger.entries.append(earlier)
    ctl = controller_for(ledger, sink, clock)

    async def scenario():
        failed = await ctl.process(matched(alice))
        clock.advance(SETTLE)
        retried = await ctl.process(matched(alice))
        return failed, retried

    failed, retried = asyncio.run(scenario())
    assert failed is CycleOutcome.READ_FAILED
    assert retried is CycleOutcome.RECORDED
    assert ledger.write_attempts == 1
    assert ledger.entries[-1].scan_type is ScanType.OUT

def test_hung_write_is_unconfirmed_and_holds_cooldown(alice, sink, clock):
    ledger = GatedLedger()  # never released
    ctl = controller_for(ledger, sink, clock, io_timeout=0.05)

    async def scenario():
        first = await ctl.process(matched(alice))
        clock.advance(SETTLE + 1)
        second = await ctl.process(matched(alice))
        return first, second

    first, second = asyncio.run(scenario())
    assert first is CycleOutcome.WRITE_UNCONFIRMED
    assert second is CycleOutcome.DROPPED_COOLDOWN
    assert ctl.context.cooldown == {"A1": clock.now - timedelta(seconds=SETTLE + 1)}
    assert not ctl.context.in_flight
    assert sink.events == []

def test_slow_sqlite_write_is_recorded_once(tmp_path, alice, sink, clock):
    class SlowSqliteLedger(SqliteLedger):
        def _insert_entry_sync(self, entry):
            time_mod.sleep(0.2)
            super()._insert_entry_sync(entry)

    ledger = SlowSqliteLedger(tmp_path / "gate.db")
    ctl = controller_for(ledger, sink, clock, io_timeout=0.05)

    async def scenario():
        first = await ctl.process(matched(alice))
        clock.advance(5)
        second = await ctl.process(matched(alice))
        await asyncio.sleep(0.3)  # let the worker thread finish its commit
        return first, second

    first, second = asyncio.run(scenario())
    assert first is CycleOutcome.WRITE_UNCONFIRMED
    assert second is CycleOutcome.DROPPED_COOLDOWN
    assert [e.scan_type for e in ledger.entries_for(clock.now.date())] == [ScanType.IN]

def test_cancelled_cycle_releases_lock(alice, sink, clock):
    ledger = GatedLedger()
    ctl = controller_for(ledger, sink, clock, io_timeout=5.0)

    async def scenario():
        task = ctl.offer(matched(alice))
        await asyncio.sleep(0.01)
        task.cancel()
        await asyncio.gather(task, return_exceptions=True)
        return task

    task = asyncio.run(scenario())
    assert task.cancelled()
    assert not ctl.context.in_flight
    assert ctl.context.cooldown == {}

def test_sink_failure_does_not_change_outcome(alice, clock):
    class BrokenSink:
        def emit(self, event):
            raise RuntimeError("display unplugged")

    ledger = MemoryLedger()
    ctl = controller_for(ledger, BrokenSink(), clock)
    assert asyncio.run(ctl.process(matched(alice))) is CycleOutcome.RECORDED
    assert "A1" in ctl.context.cooldown

def test_context_is_injected_and_owned_per_controller(alice, sink, clock):
    shared = SessionContext()
    ctl = controller_for(MemoryLedger(), sink, clock, context=shared)
    asyncio.run(ctl.process(matched(alice)))
    assert shared.cooldown == {"A1": clock.now}
