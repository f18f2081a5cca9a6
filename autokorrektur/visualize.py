from __future__ import annotations

from typing import Dict, Iterable, Optional, Tuple

import cv2
import numpy as np

from .geometry import map_model_box_to_original
from .types import Detection, LetterboxTransform


def overlay_mask(
    image_bgr: np.ndarray,
    mask: np.ndarray,
    *,
    color: Tuple[int, int, int] = (0, 0, 255),
    alpha: float = 0.5,
) -> np.ndarray:
    """
    Tint the pixels a removal mask marks (value 0) and return a copy.

    The mask is resized to the image when the sizes differ.
    """

    if image_bgr is None or image_bgr.ndim != 3 or image_bgr.shape[2] != 3:
        raise ValueError(f"Expected image shape (H, W, 3), got {getattr(image_bgr, 'shape', None)}")
    h, w = image_bgr.shape[:2]
    if mask.shape[:2] != (h, w):
        mask = cv2.resize(mask, (w, h), interpolation=cv2.INTER_NEAREST)

    tint = np.empty_like(image_bgr)
    tint[:] = color
    blended = cv2.addWeighted(image_bgr, 1 - alpha, tint, alpha, 0)

    out = image_bgr.copy()
    hit = mask == 0
    out[hit] = blended[hit]
    return out


def detection_to_pixels(det: Detection, transform: LetterboxTransform, max_size: int) -> Tuple[int, int, int, int]:
    """
    Map a model-space detection to xyxy pixels of the original image.
    """

    x, y, w, h = map_model_box_to_original(det.as_xywh(), transform)
    sx = transform.orig_width / float(max_size)
    sy = transform.orig_height / float(max_size)
    return int(x * sx), int(y * sy), int((x + w) * sx), int((y + h) * sy)


def draw_detections(
    image_bgr: np.ndarray,
    detections: Iterable[Detection],
    transform: LetterboxTransform,
    *,
    max_size: int = 640,
    class_names: Optional[Dict[int, str]] = None,
    color: Tuple[int, int, int] = (0, 255, 255),
    box_thickness: int = 2,
    font_scale: float = 0.5,
) -> np.ndarray:
    """
    Draw detection boxes + labels on an OpenCV BGR image and return a copy.
    """

    out = image_bgr.copy()
    h, w = out.shape[:2]
    for det in detections:
        x1, y1, x2, y2 = detection_to_pixels(det, transform, max_size)
        x1, x2 = max(0, min(x1, w - 1)), max(0, min(x2, w - 1))
        y1, y2 = max(0, min(y1, h - 1)), max(0, min(y2, h - 1))
        cv2.rectangle(out, (x1, y1), (x2, y2), color, box_thickness)

        if det.class_id is not None and class_names:
            name = class_names.get(det.class_id, str(det.class_id))
        else:
            name = str(det.class_id) if det.class_id is not None else "object"
        label = f"{name} {det.score:.2f}"
        cv2.putText(out, label, (x1, max(12, y1 - 4)), cv2.FONT_HERSHEY_SIMPLEX, font_scale, color, 1, cv2.LINE_AA)
    return out
