"""
Segmentation mask synthesis.

The overlay is a single-channel uint8 raster at the square model resolution:
255 keeps a pixel, 0 marks it for removal. Each detection can only turn pixels
to 0, so the result is the union of every detection's removal area.

Two renderers fill the overlay:

- `MaskSynthesizer` combines the prototype grids with each detection's
  coefficients locally.
- `DelegatedMaskRenderer` hands that geometry to a standalone mask model and
  only thresholds what comes back.

Missing or malformed prototype data is a `ModelContractViolation`. There is no
rectangular fallback mask.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from typing import Callable, Dict, Sequence, Tuple

import cv2
import numpy as np

from .errors import AutokorrekturError, InferenceEngineError, ModelContractViolation
from .geometry import Box, clamp_box, expand_box, map_model_box_to_original
from .tensors import expect_shape, prototype_grids
from .types import Detection, LetterboxTransform

logger = logging.getLogger(__name__)

InferFn = Callable[[Dict[str, np.ndarray]], Dict[str, np.ndarray]]

DOWNSHIFT_MODES = ("shift", "extend")


@dataclass(frozen=True)
class MaskConfig:
    model_width: int = 640
    model_height: int = 640
    upscale_factor: float = 1.2
    downshift_fraction: float = 0.03
    # "shift" moves the overlay down; "extend" also keeps the unshifted removal area.
    downshift_mode: str = "shift"
    num_prototypes: int = 32
    prototype_size: int = 160
    probability_threshold: float = 0.5

    @property
    def max_size(self) -> int:
        return max(self.model_width, self.model_height)


def blank_overlay(cfg: MaskConfig) -> np.ndarray:
    return np.full((cfg.model_height, cfg.model_width), 255, dtype=np.uint8)


def sigmoid(x: np.ndarray) -> np.ndarray:
    # tanh form does not overflow for large negative inputs
    return 0.5 * (1.0 + np.tanh(0.5 * x))


def shift_down(mask: np.ndarray, fraction: float) -> np.ndarray:
    """
    Shift `mask` down by `round(height * fraction)` rows.

    Rows pushed past the bottom are dropped; exposed top rows become 255.
    `fraction == 0` returns an identical copy.
    """

    if fraction < 0:
        raise ValueError(f"downshift fraction must be >= 0, got {fraction}")
    out = mask.copy()
    height = mask.shape[0]
    rows = int(round(height * fraction))
    if rows <= 0:
        return out
    if rows >= height:
        out[...] = 255
        return out
    out[rows:] = mask[: height - rows]
    out[:rows] = 255
    return out


def extend_down(mask: np.ndarray, fraction: float) -> np.ndarray:
    """Union of `mask` and its downshifted copy: removal grows downward only."""

    return np.bitwise_and(mask, shift_down(mask, fraction))


def apply_downshift(mask: np.ndarray, cfg: MaskConfig) -> np.ndarray:
    if cfg.downshift_mode not in DOWNSHIFT_MODES:
        raise ValueError(f"downshift_mode must be one of {DOWNSHIFT_MODES}, got {cfg.downshift_mode!r}")
    if cfg.downshift_fraction <= 0:
        return mask
    if cfg.downshift_mode == "extend":
        return extend_down(mask, cfg.downshift_fraction)
    return shift_down(mask, cfg.downshift_fraction)


def binarize(mask: np.ndarray, threshold: float = 127) -> np.ndarray:
    """Map values above `threshold` to 255 and everything else to 0."""

    return np.where(np.asarray(mask) > threshold, 255, 0).astype(np.uint8)


def placement_rect(detection: Detection, transform: LetterboxTransform, cfg: MaskConfig) -> Tuple[Box, Box]:
    """
    Enlarged source box in model space and its placement rectangle in the overlay.

    Both are clamped to the square model bounds.
    """

    source = clamp_box(expand_box(detection.as_xywh(), cfg.upscale_factor), cfg.max_size)
    target = clamp_box(map_model_box_to_original(source, transform), cfg.max_size)
    return source, target


class MaskSynthesizer:
    """
    Local prototype x coefficient mask synthesis.

    For each detection: weighted sum of prototypes, sigmoid, crop of the
    enlarged box in prototype-grid space, resize onto the placement rectangle,
    binarize at `probability_threshold`, and clear those pixels in the overlay.
    The downshift runs once after all detections are merged.
    """

    def __init__(self, cfg: MaskConfig = MaskConfig()):
        self.cfg = cfg

    def __call__(
        self,
        prototypes: object,
        detections: Sequence[Detection],
        transform: LetterboxTransform,
    ) -> np.ndarray:
        overlay = blank_overlay(self.cfg)
        if not detections:
            return apply_downshift(overlay, self.cfg)

        grids = prototype_grids(prototypes, self.cfg.num_prototypes, self.cfg.prototype_size)
        for det in detections:
            self.merge(overlay, grids, det, transform)
        return apply_downshift(overlay, self.cfg)

    def combine(self, grids: np.ndarray, detection: Detection) -> np.ndarray:
        """Probability grid `sigmoid(sum_i coeff_i * prototype_i)` for one detection."""

        coeffs = detection.mask_coefficients
        if coeffs is None:
            raise ModelContractViolation(f"detection row {detection.row_index} has no mask coefficients")
        coeffs = np.asarray(coeffs, dtype=np.float32).reshape(-1)
        if coeffs.shape[0] != self.cfg.num_prototypes:
            raise ModelContractViolation(
                f"detection row {detection.row_index} has {coeffs.shape[0]} mask coefficients, "
                f"expected {self.cfg.num_prototypes}"
            )
        return sigmoid(np.tensordot(coeffs, grids, axes=1))

    def merge(
        self,
        overlay: np.ndarray,
        grids: np.ndarray,
        detection: Detection,
        transform: LetterboxTransform,
    ) -> np.ndarray:
        probs = self.combine(grids, detection)
        source, target = placement_rect(detection, transform, self.cfg)

        tx, ty = int(target[0]), int(target[1])
        tw, th = int(target[2]), int(target[3])
        if tw <= 0 or th <= 0:
            logger.debug("detection row %d has an empty placement rect, nothing to merge", detection.row_index)
            return overlay

        crop = probs[self._grid_slice(source)]
        resized = cv2.resize(crop.astype(np.float32), (tw, th), interpolation=cv2.INTER_LINEAR)

        region = overlay[ty : ty + th, tx : tx + tw]
        hit = resized[: region.shape[0], : region.shape[1]] > self.cfg.probability_threshold
        region[hit] = 0
        return overlay

    def _grid_slice(self, source: Box) -> Tuple[slice, slice]:
        size = self.cfg.prototype_size
        sx = size / self.cfg.model_width
        sy = size / self.cfg.model_height
        x, y, w, h = source

        gx1 = min(max(int(math.floor(x * sx)), 0), size - 1)
        gy1 = min(max(int(math.floor(y * sy)), 0), size - 1)
        gx2 = min(max(int(math.ceil((x + w) * sx)), gx1 + 1), size)
        gy2 = min(max(int(math.ceil((y + h) * sy)), gy1 + 1), size)
        return slice(gy1, gy2), slice(gx1, gx2)


class DelegatedMaskRenderer:
    """
    Mask geometry computed by a standalone mask-rendering model.

    Per detection the model receives:
        detection: [x, y, w, h, coeff_0 .. coeff_31] in model space
        mask:      the prototype tensor, passed through untouched
        config:    [max_size, x, y, w, h, 2, 2, 2, 255] placement rect + fixed colour
    and returns `mask_filter`, an RGBA raster of the overlay size.
    """

    fixed_color = (2.0, 2.0, 2.0, 255.0)

    def __init__(self, infer_fn: InferFn, cfg: MaskConfig = MaskConfig(), output_name: str = "mask_filter"):
        self._infer_fn = infer_fn
        self.cfg = cfg
        self.output_name = output_name

    def __call__(
        self,
        prototypes: object,
        detections: Sequence[Detection],
        transform: LetterboxTransform,
    ) -> np.ndarray:
        overlay = blank_overlay(self.cfg)
        if not detections:
            return apply_downshift(overlay, self.cfg)

        # Validates count and size even though the model consumes the raw tensor.
        prototype_grids(prototypes, self.cfg.num_prototypes, self.cfg.prototype_size)
        proto_tensor = np.asarray(prototypes, dtype=np.float32).reshape(
            1, self.cfg.num_prototypes, self.cfg.prototype_size, self.cfg.prototype_size
        )

        for det in detections:
            rendered = self._render(proto_tensor, det, transform)
            overlay = cv2.subtract(overlay, rendered)
        return apply_downshift(overlay, self.cfg)

    def feeds_for(self, proto_tensor: np.ndarray, detection: Detection, transform: LetterboxTransform) -> Dict[str, np.ndarray]:
        coeffs = detection.mask_coefficients
        if coeffs is None or np.asarray(coeffs).size != self.cfg.num_prototypes:
            got = 0 if coeffs is None else np.asarray(coeffs).size
            raise ModelContractViolation(
                f"detection row {detection.row_index} has {got} mask coefficients, expected {self.cfg.num_prototypes}"
            )

        box = clamp_box(detection.as_xywh(), self.cfg.max_size)
        mapped = clamp_box(map_model_box_to_original(box, transform), self.cfg.max_size)
        placed = expand_box(mapped, self.cfg.upscale_factor)

        det_vec = np.concatenate([np.asarray(box, dtype=np.float32), np.asarray(coeffs, dtype=np.float32).reshape(-1)])
        config = np.array([float(self.cfg.max_size), *placed, *self.fixed_color], dtype=np.float32)
        return {"detection": det_vec, "mask": proto_tensor, "config": config}

    def _render(self, proto_tensor: np.ndarray, detection: Detection, transform: LetterboxTransform) -> np.ndarray:
        feeds = self.feeds_for(proto_tensor, detection, transform)
        try:
            outputs = self._infer_fn(feeds)
        except AutokorrekturError:
            raise
        except Exception as e:
            raise InferenceEngineError("mask", str(e)) from e

        if self.output_name not in outputs:
            raise ModelContractViolation(f"mask model did not return {self.output_name!r} (got {sorted(outputs)})")

        rgba = expect_shape(outputs[self.output_name], (self.cfg.model_height, self.cfg.model_width, 4), "mask_filter")
        rgba = np.clip(rgba, 0, 255).astype(np.uint8)
        gray = cv2.cvtColor(rgba, cv2.COLOR_BGRA2GRAY)
        _, binary = cv2.threshold(gray, 1, 255, cv2.THRESH_BINARY)
        return binary
