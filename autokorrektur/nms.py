from dataclasses import dataclass
from typing import Optional

import numpy as np

from .geometry import box_iou


@dataclass
class NMSConfig:
    iou_threshold: float = 0.4
    max_per_class: int = 100
    max_detections: Optional[int] = None


def nms(boxes: np.ndarray, scores: np.ndarray, class_ids: np.ndarray, cfg: NMSConfig) -> np.ndarray:
    """
    Greedy class-agnostic NMS. Expects boxes shape (N,4) in xyxy, scores and class_ids shape (N,).

    Candidates are visited by descending score, ties broken by lower index. A
    candidate is dropped when its IoU with any kept box exceeds the threshold,
    or when its class already holds `max_per_class` kept boxes.
    Returns indices of boxes to keep, in visiting order.
    """

    if boxes.size == 0:
        return np.empty((0,), dtype=np.int32)

    boxes = np.asarray(boxes, dtype=np.float64).reshape(-1, 4)
    scores = np.asarray(scores, dtype=np.float64).reshape(-1)
    class_ids = np.asarray(class_ids).reshape(-1)

    # lexsort uses the last key as primary
    order = np.lexsort((np.arange(scores.shape[0]), -scores))
    keep = []
    per_class = {}

    for i in order:
        if cfg.max_detections is not None and len(keep) >= cfg.max_detections:
            break
        cls = int(class_ids[i])
        if per_class.get(cls, 0) >= cfg.max_per_class:
            continue
        if keep:
            iou = box_iou(boxes[i], boxes[keep])
            if np.any(iou > cfg.iou_threshold):
                continue
        keep.append(int(i))
        per_class[cls] = per_class.get(cls, 0) + 1

    return np.array(keep, dtype=np.int32)
