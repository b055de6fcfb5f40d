import logging
from pathlib import Path
from typing import Optional, Tuple
import cv2
import numpy as np
import onnxruntime as ort
from .errors import ProviderUnavailable

logger = logging.getLogger(__name__)

def _static_dim(shape) -> Optional[int]:
    # ONNX shapes carry strings or None for symbolic axes
    last = shape[-1] if shape else None
    return int(last) if isinstance(last, int) and last > 0 else None

class ArcFaceEmbedderONNX:
    """
    ArcFace-style ONNX embedder for 112x112 aligned BGR crops.
    Produces L2-normalized float32 vectors of size `dim`.
    """
    def __init__(self, model_path: Path, input_size: Tuple[int, int] = (112, 112)):
        model_path = Path(model_path)
        if not model_path.exists():
            raise ProviderUnavailable(f"Embedder model not found: {model_path}")
        self.in_w, self.in_h = int(input_size[0]), int(input_size[1])
        try:
            self.sess = ort.InferenceSession(str(model_path), providers=["CPUExecutionProvider"])
        except Exception as e:
            raise ProviderUnavailable(f"Failed to load embedder {model_path}: {e}") from e

        inp = self.sess.get_inputs()[0]
        out = self.sess.get_outputs()[0]
        self.in_name = inp.name
        self.out_name = out.name
        self.dim = _static_dim(out.shape)
        logger.info(f"Embedder {model_path.name} loaded: input {inp.shape}, embedding dim {self.dim or 'dynamic'}")

    def _to_blob(self, aligned_bgr: np.ndarray) -> np.ndarray:
        img = aligned_bgr
        if img.shape[:2] != (self.in_h, self.in_w):
            img = cv2.resize(img, (self.in_w, self.in_h), interpolation=cv2.INTER_LINEAR)
        rgb = cv2.cvtColor(img, cv2.COLOR_BGR2RGB).astype(np.float32)
        # (x - 127.5) / 128, NCHW
        return np.ascontiguousarray(((rgb - 127.5) / 128.0).transpose(2, 0, 1)[None])

    def embed(self, aligned_bgr: np.ndarray) -> np.ndarray:
        try:
            y = self.sess.run([self.out_name], {self.in_name: self._to_blob(aligned_bgr)})[0]
        except Exception as e:
            raise ProviderUnavailable(f"Embedder inference failed: {e}") from e

        v = np.asarray(y, dtype=np.float32).reshape(-1)
        if self.dim is None:
            self.dim = int(v.size)
        return v / float(np.linalg.norm(v) + 1e-12)
