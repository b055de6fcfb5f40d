from typing import Tuple
import cv2
import numpy as np

# ArcFace 112x112 template (InsightFace standard)
_ARCFACE_DST = np.array([
    [38.2946, 51.6963],  # left eye
    [73.5318, 51.5014],  # right eye
    [56.0252, 71.7366],  # nose
    [41.5493, 92.3655],  # left mouth
    [70.7299, 92.2041],  # right mouth
], dtype=np.float32)

def _clip_xyxy(x1: float, y1: float, x2: float, y2: float, W: int, H: int) -> Tuple[int, int, int, int]:
    x1 = int(max(0, min(W - 1, round(x1))))
    y1 = int(max(0, min(H - 1, round(y1))))
    x2 = int(max(0, min(W, round(x2))))
    y2 = int(max(0, min(H, round(y2))))
    return x1, y1, x2, y2

def _kps_span_ok(kps: np.ndarray, min_eye_dist: float = 12.0) -> bool:
    """Eyes far enough apart and mouth below the nose."""
    le, re, no, lm, rm = kps.astype(np.float32)
    if float(np.linalg.norm(re - le)) < min_eye_dist:
        return False
    return bool(lm[1] > no[1] and rm[1] > no[1])

def _estimate_norm_5pt(kps_5x2: np.ndarray, out_size: Tuple[int, int] = (112, 112)) -> np.ndarray:
    """
    2x3 similarity transform mapping [Leye, Reye, Nose, Lmouth, Rmouth]
    onto the ArcFace template scaled to out_size.
    """
    k = kps_5x2.astype(np.float32)
    out_w, out_h = int(out_size[0]), int(out_size[1])
    dst = _ARCFACE_DST
    if (out_w, out_h) != (112, 112):
        dst = dst * np.array([out_w / 112.0, out_h / 112.0], dtype=np.float32)

    M, _ = cv2.estimateAffinePartial2D(k, dst, method=cv2.LMEDS)
    if M is None:
        M = cv2.getAffineTransform(k[:3].copy(), dst[:3].copy())
    return M.astype(np.float32)

def align_face_5pt(
    frame_bgr: np.ndarray,
    kps_5x2: np.ndarray,
    out_size: Tuple[int, int] = (112, 112),
) -> np.ndarray:
    M = _estimate_norm_5pt(kps_5x2, out_size=out_size)
    return cv2.warpAffine(
        frame_bgr,
        M,
        (int(out_size[0]), int(out_size[1])),
        flags=cv2.INTER_LINEAR,
        borderMode=cv2.BORDER_CONSTANT,
        borderValue=(0, 0, 0),
    )
