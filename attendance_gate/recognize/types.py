from dataclasses import dataclass
from datetime import date as Date, time as Time
from enum import Enum
from typing import Optional
import numpy as np

@dataclass(frozen=True)
class EnrolledIdentity:
    roll_number: str
    full_name: str
    embedding: np.ndarray  # (D,) float32

    @property
    def label(self) -> str:
        return f"{self.full_name} ({self.roll_number})"

@dataclass(frozen=True)
class BoundingBox:
    x: float
    y: float
    width: float
    height: float

    @property
    def center_x(self) -> float:
        return self.x + self.width / 2.0

@dataclass
class DetectionSample:
    box: BoundingBox
    confidence: float
    embedding: np.ndarray
    frame_width: int
    frame_height: int

@dataclass
class MatchResult:
    identity: Optional[EnrolledIdentity]
    distance: float

    @property
    def accepted(self) -> bool:
        return self.identity is not None

class ScanType(str, Enum):
    IN = "IN"
    OUT = "OUT"

    def toggled(self) -> "ScanType":
        return ScanType.OUT if self is ScanType.IN else ScanType.IN

@dataclass(frozen=True)
class AttendanceLogEntry:
    roll_number: str
    student_name: str
    scan_type: ScanType
    date: Date
    time: Time

class RejectReason(str, Enum):
    TOO_FAR = "TOO_FAR"
    LOW_QUALITY = "LOW_QUALITY"
    OFF_CENTER = "OFF_CENTER"

@dataclass(frozen=True)
class GateVerdict:
    passed: bool
    reason: Optional[RejectReason] = None

PASS = GateVerdict(passed=True)

class FeedbackStatus(str, Enum):
    SUCCESS_IN = "SUCCESS_IN"
    SUCCESS_OUT = "SUCCESS_OUT"
    WARNING = "WARNING"

@dataclass(frozen=True)
class FeedbackEvent:
    status: FeedbackStatus
    label: str
    time: Time
    reason: Optional[str] = None  # set for WARNING: a RejectReason value or "UNKNOWN"

class CycleOutcome(str, Enum):
    RECORDED = "RECORDED"
    DROPPED_BUSY = "DROPPED_BUSY"
    DROPPED_COOLDOWN = "DROPPED_COOLDOWN"
    READ_FAILED = "READ_FAILED"
    WRITE_FAILED = "WRITE_FAILED"
    WRITE_UNCONFIRMED = "WRITE_UNCONFIRMED"
