from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import List, Optional, Sequence, Tuple

import numpy as np

from .errors import DetectionParseError
from .geometry import clamp_box, cxcywh_to_xywh, xywh_to_xyxy
from .metadata import VEHICLE_CLASS_IDS
from .nms import NMSConfig, nms
from .tensors import DetectionOutputView
from .types import Detection

logger = logging.getLogger(__name__)


@dataclass
class SegPostConfig:
    """
    Decoding and suppression settings for segmentation-detection output.
    """

    score_threshold: float = 0.2
    iou_threshold: float = 0.4
    max_per_class: int = 100
    # None keeps every class.
    class_ids: Optional[Sequence[int]] = VEHICLE_CLASS_IDS
    num_classes: int = 80
    num_coefficients: int = 32
    # Boxes are clamped to [0, max_size]; usually max(model_width, model_height).
    max_size: float = 640.0


class SegPostprocessor:
    """
    Turns raw `[1, 4 + C + 32, N]` output into filtered `Detection`s in model space.

    Steps per candidate row: arg-max class, class/score filter, centre->corner
    conversion with clamping, then class-agnostic NMS. Rows with non-finite
    values or a box that collapses after clamping are skipped and logged; they
    never abort the image.
    """

    def __init__(self, cfg: SegPostConfig):
        self.cfg = cfg

    def process(self, preds: object) -> List[Detection]:
        view = DetectionOutputView(preds, self.cfg.num_classes, self.cfg.num_coefficients)
        candidates = self._decode(view)
        if not candidates:
            return []

        boxes = np.array([d.as_xyxy() for d in candidates], dtype=np.float64)
        scores = np.array([d.score for d in candidates], dtype=np.float64)
        class_ids = np.array([d.class_id for d in candidates], dtype=np.int64)

        keep = nms(
            boxes,
            scores,
            class_ids,
            NMSConfig(iou_threshold=self.cfg.iou_threshold, max_per_class=self.cfg.max_per_class),
        )
        kept = [candidates[i] for i in keep]
        logger.debug("decoded %d candidate(s), kept %d after NMS", len(candidates), len(kept))
        return kept

    # ------------------------------------------------------------------ #
    # Helper internal
    # ------------------------------------------------------------------ #
    def _select(self, view: DetectionOutputView) -> Tuple[np.ndarray, np.ndarray, np.ndarray]:
        """
        Indices, class ids and scores of rows that pass the class and score filters.
        """

        class_scores = view.class_scores
        if class_scores.shape[0] == 0:
            empty = np.empty((0,), dtype=np.int64)
            return empty, empty, np.empty((0,), dtype=np.float32)

        class_ids = np.argmax(class_scores, axis=1)
        scores = class_scores[np.arange(class_scores.shape[0]), class_ids]

        # NaN scores compare False and drop out here
        keep = scores >= self.cfg.score_threshold
        if self.cfg.class_ids is not None:
            keep &= np.isin(class_ids, np.asarray(list(self.cfg.class_ids)))

        idx = np.nonzero(keep)[0]
        return idx, class_ids[idx], scores[idx]

    def _decode(self, view: DetectionOutputView) -> List[Detection]:
        idx, class_ids, scores = self._select(view)
        out: List[Detection] = []
        for row_index, cls, score in zip(idx, class_ids, scores):
            try:
                out.append(self._decode_row(view, int(row_index), int(cls), float(score)))
            except DetectionParseError as e:
                logger.warning("skipping detection row %d: %s", int(row_index), e)
        return out

    def _decode_row(self, view: DetectionOutputView, row_index: int, class_id: int, score: float) -> Detection:
        box = view.boxes_cxcywh[row_index]
        coeffs = view.coefficients[row_index]
        if not np.all(np.isfinite(box)):
            raise DetectionParseError(f"non-finite box values {box.tolist()}")
        if not np.all(np.isfinite(coeffs)):
            raise DetectionParseError("non-finite mask coefficients")
        if not 0.0 <= score <= 1.0:
            raise DetectionParseError(f"score {score} outside [0, 1]")

        xywh = clamp_box(cxcywh_to_xywh(*(float(v) for v in box)), self.cfg.max_size)
        if xywh[2] <= 0 or xywh[3] <= 0:
            raise DetectionParseError(f"box collapses after clamping: {xywh}")
        x1, y1, x2, y2 = xywh_to_xyxy(xywh)

        return Detection(
            x1=x1,
            y1=y1,
            x2=x2,
            y2=y2,
            score=score,
            class_id=class_id,
            mask_coefficients=np.array(coeffs, dtype=np.float32),
            row_index=row_index,
        )
