from dataclasses import dataclass, field
from typing import Optional, Tuple

import numpy as np


@dataclass(frozen=True)
class Detection:
    """
    One decoded segmentation detection.

    Box coordinates are corner-form in model input space (the square model
    resolution, padding included). `mask_coefficients` weights the prototype
    masks emitted by the same inference call.
    """

    x1: float
    y1: float
    x2: float
    y2: float
    score: float
    class_id: Optional[int] = None
    mask_coefficients: Optional[np.ndarray] = field(default=None, repr=False, compare=False)
    row_index: int = -1

    @property
    def width(self) -> float:
        return self.x2 - self.x1

    @property
    def height(self) -> float:
        return self.y2 - self.y1

    def as_xyxy(self) -> Tuple[float, float, float, float]:
        return self.x1, self.y1, self.x2, self.y2

    def as_xywh(self) -> Tuple[float, float, float, float]:
        return self.x1, self.y1, self.width, self.height


@dataclass(frozen=True)
class LetterboxTransform:
    """
    Bookkeeping for mapping model-space coordinates back to the original image.

    `padded_size == max(aligned_width, aligned_height)` and each ratio is
    `padded_size / aligned_<dim>`.
    """

    orig_width: int
    orig_height: int
    aligned_width: int
    aligned_height: int
    padded_size: int
    x_ratio: float
    y_ratio: float
    pad_x: int
    pad_y: int

    @property
    def orig_size(self) -> Tuple[int, int]:
        return self.orig_width, self.orig_height

    @property
    def ratio(self) -> Tuple[float, float]:
        return self.x_ratio, self.y_ratio
