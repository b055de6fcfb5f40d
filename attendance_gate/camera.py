import logging
from pathlib import Path
from typing import Optional
import cv2
from .recognize.detector import BlazeFaceMesh5pt
from .recognize.embedder import ArcFaceEmbedderONNX
from .recognize.errors import ProviderUnavailable
from .recognize.types import BoundingBox, DetectionSample
from .recognize.utils import align_face_5pt

logger = logging.getLogger(__name__)

class CameraDetectionProvider:
    """
    Live camera DetectionProvider:
    OpenCV capture -> BlazeFace box/score -> FaceMesh 5pt -> align 112x112 -> ArcFace embedding.
    """
    def __init__(
        self,
        camera_index: int,
        detector_model: Path,
        landmarker_model: Path,
        embedder_model: Path,
    ):
        self.camera_index = int(camera_index)
        self.detector_model = Path(detector_model)
        self.landmarker_model = Path(landmarker_model)
        self.embedder_model = Path(embedder_model)
        self.cap: Optional[cv2.VideoCapture] = None
        self.det: Optional[BlazeFaceMesh5pt] = None
        self.embedder: Optional[ArcFaceEmbedderONNX] = None

    def open(self):
        self.det = BlazeFaceMesh5pt(self.detector_model, self.landmarker_model)
        self.embedder = ArcFaceEmbedderONNX(self.embedder_model)

        cap = cv2.VideoCapture(self.camera_index)
        if not cap.isOpened():
            cap.release()
            raise ProviderUnavailable(f"Camera {self.camera_index} not available")
        self.cap = cap
        logger.info(f"Camera {self.camera_index} opened")

    @property
    def embedding_dim(self) -> Optional[int]:
        """Embedding size reported by the loaded model, if known."""
        return None if self.embedder is None else self.embedder.dim

    def sample_frame(self) -> Optional[DetectionSample]:
        if self.cap is None or self.det is None or self.embedder is None:
            raise ProviderUnavailable("Provider used before open()")
        ok, frame = self.cap.read()
        if not ok:
            raise ProviderUnavailable(f"Camera {self.camera_index} stopped delivering frames")

        H, W = frame.shape[:2]
        f = self.det.detect(frame)
        if f is None:
            return None

        aligned = align_face_5pt(frame, f.kps, out_size=(112, 112))
        return DetectionSample(
            box=BoundingBox(x=f.x1, y=f.y1, width=f.width, height=f.height),
            confidence=f.score,
            embedding=self.embedder.embed(aligned),
            frame_width=W,
            frame_height=H,
        )

    def close(self):
        if self.cap is not None:
            self.cap.release()
            self.cap = None
        if self.det is not None:
            self.det.close()
            self.det = None
