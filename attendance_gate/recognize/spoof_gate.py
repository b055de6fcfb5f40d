import math
from .types import PASS, DetectionSample, GateVerdict, RejectReason

class AntiSpoofingGate:
    """
    Heuristic liveness/quality filter applied before identity matching.
    Checks run in order: size, confidence, centering. First failure wins.
    """
    def __init__(
        self,
        min_face_fraction: float = 0.15,
        min_confidence: float = 0.8,
        max_center_offset_fraction: float = 0.30,
    ):
        self.min_face_fraction = float(min_face_fraction)
        self.min_confidence = float(min_confidence)
        self.max_center_offset_fraction = float(max_center_offset_fraction)

    def evaluate(self, sample: DetectionSample) -> GateVerdict:
        W = float(sample.frame_width)
        if W <= 0 or sample.box.width < W * self.min_face_fraction:
            return GateVerdict(passed=False, reason=RejectReason.TOO_FAR)

        # flat prints and screens score low here
        if not math.isfinite(sample.confidence) or sample.confidence < self.min_confidence:
            return GateVerdict(passed=False, reason=RejectReason.LOW_QUALITY)

        offset = abs(sample.box.center_x - W / 2.0)
        if offset > W * self.max_center_offset_fraction:
            return GateVerdict(passed=False, reason=RejectReason.OFF_CENTER)

        return PASS
