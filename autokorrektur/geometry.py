"""
Pure box and letterbox math. Boxes are `(x, y, w, h)` tuples unless a function
name says `xyxy`.
"""

from __future__ import annotations

import math
from typing import Tuple

import numpy as np

from .types import LetterboxTransform

Box = Tuple[float, float, float, float]


def align_to_stride(value: int, stride: int) -> int:
    """
    Round `value` to the nearest multiple of `stride`.

    Remainders of at least half a stride round up, smaller ones round down.
    The result is never below one stride.
    """

    if stride < 1:
        raise ValueError(f"stride must be >= 1, got {stride}")
    rem = value % stride
    if rem != 0:
        if rem >= stride / 2:
            value = (value // stride + 1) * stride
        else:
            value = (value // stride) * stride
    return max(int(value), stride)


def compute_letterbox(width: int, height: int, stride: int = 32) -> LetterboxTransform:
    if width <= 0 or height <= 0:
        raise ValueError(f"Image dimensions must be positive, got {width}x{height}")

    aligned_w = align_to_stride(width, stride)
    aligned_h = align_to_stride(height, stride)
    padded = max(aligned_w, aligned_h)

    return LetterboxTransform(
        orig_width=int(width),
        orig_height=int(height),
        aligned_width=aligned_w,
        aligned_height=aligned_h,
        padded_size=padded,
        x_ratio=padded / aligned_w,
        y_ratio=padded / aligned_h,
        pad_x=padded - aligned_w,
        pad_y=padded - aligned_h,
    )


def clamp_box(box: Box, max_size: float) -> Box:
    """
    Keep `(x, y, w, h)` inside `[0, max_size]` on both axes.

    Origin is clamped to >= 0 first, then width/height are shrunk so the far
    edge does not pass `max_size`.
    """

    x, y, w, h = box
    x = x if x >= 0 else 0
    y = y if y >= 0 else 0
    x = min(x, max_size)
    y = min(y, max_size)
    w = w if x + w <= max_size else max_size - x
    h = h if y + h <= max_size else max_size - y
    return x, y, w, h


def map_model_box_to_original(box: Box, transform: LetterboxTransform) -> Box:
    # Stretches the unpadded region of the square input back to full square size.
    x, y, w, h = box
    return (
        float(math.floor(x * transform.x_ratio)),
        float(math.floor(y * transform.y_ratio)),
        float(math.floor(w * transform.x_ratio)),
        float(math.floor(h * transform.y_ratio)),
    )


def cxcywh_to_xywh(cx: float, cy: float, w: float, h: float) -> Box:
    return cx - 0.5 * w, cy - 0.5 * h, w, h


def xywh_to_xyxy(box: Box) -> Tuple[float, float, float, float]:
    x, y, w, h = box
    return x, y, x + w, y + h


def expand_box(box: Box, factor: float) -> Box:
    """Scale width/height by `factor` keeping the box centre fixed."""

    x, y, w, h = box
    new_w = w * factor
    new_h = h * factor
    return x - (new_w - w) / 2, y - (new_h - h) / 2, new_w, new_h


def box_iou(box: np.ndarray, others: np.ndarray) -> np.ndarray:
    """
    IoU between one xyxy box (4,) and an array of xyxy boxes (N, 4).

    Pairs whose union has no area yield 0.
    """

    others = np.asarray(others, dtype=np.float64).reshape(-1, 4)
    x1, y1, x2, y2 = (float(v) for v in box)

    xx1 = np.maximum(x1, others[:, 0])
    yy1 = np.maximum(y1, others[:, 1])
    xx2 = np.minimum(x2, others[:, 2])
    yy2 = np.minimum(y2, others[:, 3])

    inter = np.maximum(0.0, xx2 - xx1) * np.maximum(0.0, yy2 - yy1)
    area = max(0.0, x2 - x1) * max(0.0, y2 - y1)
    areas = np.maximum(0.0, others[:, 2] - others[:, 0]) * np.maximum(0.0, others[:, 3] - others[:, 1])
    union = area + areas - inter

    iou = np.zeros_like(inter)
    np.divide(inter, union, out=iou, where=union > 0)
    return iou
