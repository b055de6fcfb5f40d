import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Optional
import cv2
import numpy as np
from .errors import ProviderUnavailable
from .utils import _clip_xyxy, _kps_span_ok

logger = logging.getLogger(__name__)

@dataclass
class FaceDet:
    x1: int
    y1: int
    x2: int
    y2: int
    score: float
    kps: np.ndarray  # (5,2) float32 in FULL-frame coords

    @property
    def width(self) -> int:
        return self.x2 - self.x1

    @property
    def height(self) -> int:
        return self.y2 - self.y1

class BlazeFaceMesh5pt:
    """
    MediaPipe BlazeFace detection (box + score) followed by FaceMesh on the
    face ROI for 5 alignment keypoints. Returns the largest face only.
    """
    # FaceMesh indices for the 5pt set
    IDX_LEFT_EYE = 33
    IDX_RIGHT_EYE = 263
    IDX_NOSE_TIP = 1
    IDX_MOUTH_LEFT = 61
    IDX_MOUTH_RIGHT = 291

    def __init__(
        self,
        detector_model: Path,
        landmarker_model: Path,
        min_detection_confidence: float = 0.3,
    ):
        try:
            import mediapipe as mp
            from mediapipe.tasks.python import BaseOptions, vision
        except ImportError as e:
            raise ProviderUnavailable(f"mediapipe import failed: {e}") from e

        for path in (detector_model, landmarker_model):
            if not Path(path).exists():
                raise ProviderUnavailable(f"Model file not found: {path}")

        self._mp = mp
        try:
            self.detector = vision.FaceDetector.create_from_options(
                vision.FaceDetectorOptions(
                    base_options=BaseOptions(model_asset_path=str(detector_model)),
                    min_detection_confidence=float(min_detection_confidence),
                )
            )
            self.landmarker = vision.FaceLandmarker.create_from_options(
                vision.FaceLandmarkerOptions(
                    base_options=BaseOptions(model_asset_path=str(landmarker_model)),
                    num_faces=1,  # one face per ROI
                    output_face_blendshapes=False,
                    output_facial_transformation_matrixes=False,
                )
            )
        except (RuntimeError, ValueError) as e:
            raise ProviderUnavailable(f"Failed to load MediaPipe models: {e}") from e

    def _image(self, bgr: np.ndarray):
        rgb = cv2.cvtColor(bgr, cv2.COLOR_BGR2RGB)
        return self._mp.Image(image_format=self._mp.ImageFormat.SRGB, data=np.ascontiguousarray(rgb))

    def _roi_facemesh_5pt(self, roi_bgr: np.ndarray) -> Optional[np.ndarray]:
        H, W = roi_bgr.shape[:2]
        if H < 20 or W < 20:
            return None
        res = self.landmarker.detect(self._image(roi_bgr))
        if not res.face_landmarks:
            return None

        lm = res.face_landmarks[0]
        idxs = [self.IDX_LEFT_EYE, self.IDX_RIGHT_EYE, self.IDX_NOSE_TIP, self.IDX_MOUTH_LEFT, self.IDX_MOUTH_RIGHT]
        kps = np.array([[lm[i].x * W, lm[i].y * H] for i in idxs], dtype=np.float32)

        # enforce left/right ordering
        if kps[0, 0] > kps[1, 0]:
            kps[[0, 1]] = kps[[1, 0]]
        if kps[3, 0] > kps[4, 0]:
            kps[[3, 4]] = kps[[4, 3]]
        return kps

    def detect(self, frame_bgr: np.ndarray) -> Optional[FaceDet]:
        H, W = frame_bgr.shape[:2]
        res = self.detector.detect(self._image(frame_bgr))
        if not res.detections:
            return None

        best = max(res.detections, key=lambda d: d.bounding_box.width * d.bounding_box.height)
        bb = best.bounding_box
        score = float(best.categories[0].score) if best.categories else 0.0
        x1, y1, x2, y2 = _clip_xyxy(bb.origin_x, bb.origin_y, bb.origin_x + bb.width, bb.origin_y + bb.height, W, H)
        if x2 <= x1 or y2 <= y1:
            return None

        # expand ROI a bit for FaceMesh stability
        mx, my = 0.25 * (x2 - x1), 0.35 * (y2 - y1)
        rx1, ry1, rx2, ry2 = _clip_xyxy(x1 - mx, y1 - my, x2 + mx, y2 + my, W, H)
        kps = self._roi_facemesh_5pt(frame_bgr[ry1:ry2, rx1:rx2])
        if kps is None:
            logger.debug("FaceMesh found no landmarks in ROI, skipping face")
            return None
        kps[:, 0] += float(rx1)
        kps[:, 1] += float(ry1)

        if not _kps_span_ok(kps, min_eye_dist=max(10.0, 0.18 * float(x2 - x1))):
            logger.debug("5pt geometry check failed, skipping face")
            return None

        return FaceDet(x1=x1, y1=y1, x2=x2, y2=y2, score=score, kps=kps)

    def close(self):
        self.detector.close()
        self.landmarker.close()
