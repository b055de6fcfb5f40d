import asyncio
from datetime import datetime, timedelta
from typing import List, Optional

import numpy as np
import pytest

from attendance_gate.ledger import MemoryLedger
from attendance_gate.recognize.types import (
    BoundingBox,
    DetectionSample,
    EnrolledIdentity,
    FeedbackEvent,
)

DIM = 128

class FakeClock:
    def __init__(self, start: datetime = datetime(2026, 3, 2, 8, 30, 0)):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float):
        self.now += timedelta(seconds=seconds)

class RecordingSink:
    def __init__(self):
        self.events: List[FeedbackEvent] = []

    def emit(self, event: FeedbackEvent):
        self.events.append(event)

class FailingLedger(MemoryLedger):
    """MemoryLedger whose next `fail_writes` inserts (or reads) raise."""
    def __init__(self, fail_writes: int = 0, fail_reads: int = 0):
        super().__init__()
        self.fail_writes = fail_writes
        self.fail_reads = fail_reads
        self.write_attempts = 0

    async def latest_entry(self, roll_number, date):
        if self.fail_reads > 0:
            self.fail_reads -= 1
            raise IOError("connection reset")
        return await super().latest_entry(roll_number, date)

    async def insert_entry(self, entry):
        self.write_attempts += 1
        if self.fail_writes > 0:
            self.fail_writes -= 1
            raise IOError("disk full")
        await super().insert_entry(entry)

class GatedLedger(MemoryLedger):
    """Inserts block until `release` is set, to hold a cycle in flight."""
    def __init__(self):
        super().__init__()
        self.release = asyncio.Event()
        self.in_flight = 0
        self.max_in_flight = 0

    async def insert_entry(self, entry):
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            await self.release.wait()
            await super().insert_entry(entry)
        finally:
            self.in_flight -= 1

class ScriptedProvider:
    """DetectionProvider replaying a fixed list of samples, then None."""
    def __init__(self, samples: List[Optional[DetectionSample]]):
        self.samples = list(samples)
        self.opened = False
        self.closed = False

    def open(self):
        self.opened = True

    def sample_frame(self) -> Optional[DetectionSample]:
        if not self.samples:
            return None
        return self.samples.pop(0)

    def close(self):
        self.closed = True

def unit(seed: int, dim: int = DIM) -> np.ndarray:
    rng = np.random.default_rng(seed)
    v = rng.normal(size=dim).astype(np.float32)
    return v / np.linalg.norm(v)

def offset(base: np.ndarray, distance: float, seed: int = 99) -> np.ndarray:
    """A vector exactly `distance` away from base (L2)."""
    rng = np.random.default_rng(seed)
    d = rng.normal(size=base.size).astype(np.float32)
    d = d / np.linalg.norm(d)
    return (base + distance * d).astype(np.float32)

def make_sample(
    embedding: np.ndarray,
    width_fraction: float = 0.3,
    confidence: float = 0.9,
    center_shift: float = 0.0,
    frame_width: int = 1280,
    frame_height: int = 720,
) -> DetectionSample:
    w = frame_width * width_fraction
    cx = frame_width / 2.0 + center_shift * frame_width
    return DetectionSample(
        box=BoundingBox(x=cx - w / 2.0, y=100.0, width=w, height=w * 1.2),
        confidence=confidence,
        embedding=embedding,
        frame_width=frame_width,
        frame_height=frame_height,
    )

@pytest.fixture
def clock():
    return FakeClock()

@pytest.fixture
def sink():
    return RecordingSink()

@pytest.fixture
def alice():
    return EnrolledIdentity(roll_number="A1", full_name="Alice Rao", embedding=unit(1))

@pytest.fixture
def bob():
    return EnrolledIdentity(roll_number="B2", full_name="Bob Iyer", embedding=unit(2))
