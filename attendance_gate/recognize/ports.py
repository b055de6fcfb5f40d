"""
Capability interfaces the decision pipeline talks to.
Concrete adapters live in attendance_gate.camera, attendance_gate.roster,
attendance_gate.ledger, attendance_gate.mqtt_manager and recognize.logger.
"""

from datetime import date as Date
from typing import List, Optional, Protocol
from .types import AttendanceLogEntry, DetectionSample, EnrolledIdentity, FeedbackEvent

class RosterSource(Protocol):
    def list_enrolled_identities(self) -> List[EnrolledIdentity]: ...

class LedgerStore(Protocol):
    async def latest_entry(self, roll_number: str, date: Date) -> Optional[AttendanceLogEntry]:
        """Most recent entry for roll_number on date, or None."""
        ...

    async def insert_entry(self, entry: AttendanceLogEntry) -> None:
        """Append entry. Raises on failure."""
        ...

class DetectionProvider(Protocol):
    def open(self) -> None:
        """Raises ProviderUnavailable when the camera or models cannot start."""
        ...

    def sample_frame(self) -> Optional[DetectionSample]: ...

    def close(self) -> None: ...

# Providers may also expose `embedding_dim: Optional[int]`, checked against the roster once open.

class FeedbackSink(Protocol):
    def emit(self, event: FeedbackEvent) -> None: ...
