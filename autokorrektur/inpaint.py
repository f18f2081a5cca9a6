from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, Tuple

import cv2
import numpy as np

from .errors import InvalidImage, ModelContractViolation
from .masks import binarize
from .tensors import expect_shape


@dataclass(frozen=True)
class InpaintConfig:
    # np.uint8 feeds raw 0..255 values; a float dtype feeds values scaled to 0..1.
    dtype: type = np.uint8
    image_input: str = "image"
    mask_input: str = "mask"
    # Empty takes the first (only) output.
    output_name: str = ""
    mask_threshold: float = 127


class InpaintTensorAdapter:
    """
    Marshals an image + removal mask into the fill model's tensors and back.

    Images are BGR HWC uint8 (OpenCV). Tensors are RGB, channel-first:
    image `[1, 3, H, W]`, mask `[1, 1, H, W]`, in the configured dtype.
    """

    def __init__(self, cfg: InpaintConfig = InpaintConfig()):
        self.cfg = cfg

    @property
    def is_float(self) -> bool:
        return np.issubdtype(np.dtype(self.cfg.dtype), np.floating)

    def match_mask(self, mask: np.ndarray, size: Tuple[int, int]) -> np.ndarray:
        """
        Resample `mask` to `size` (width, height) with Lanczos, then re-binarize.
        """

        w, h = size
        mask = np.asarray(mask)
        if mask.ndim == 3:
            mask = mask[:, :, 0]
        if mask.shape[:2] != (h, w):
            mask = cv2.resize(mask, (w, h), interpolation=cv2.INTER_LANCZOS4)
        return binarize(mask, self.cfg.mask_threshold)

    def prepare(self, image_bgr: np.ndarray, mask: np.ndarray) -> Dict[str, np.ndarray]:
        if image_bgr is None or getattr(image_bgr, "ndim", 0) != 3 or image_bgr.shape[2] != 3:
            raise InvalidImage(f"Expected image shape (H, W, 3), got {getattr(image_bgr, 'shape', None)}")
        h, w = image_bgr.shape[:2]
        if h == 0 or w == 0:
            raise InvalidImage(f"Image has a zero-sized dimension: {image_bgr.shape}")

        mask = self.match_mask(mask, (w, h))

        image_chw = np.transpose(image_bgr[:, :, ::-1], (2, 0, 1))[None, ...]
        mask_chw = mask[None, None, :, :]

        if self.is_float:
            dtype = np.dtype(self.cfg.dtype)
            image_t = image_chw.astype(dtype) / dtype.type(255.0)
            mask_t = mask_chw.astype(dtype) / dtype.type(255.0)
        else:
            image_t = image_chw.astype(np.uint8)
            mask_t = mask_chw.astype(np.uint8)

        return {
            self.cfg.image_input: np.ascontiguousarray(image_t),
            self.cfg.mask_input: np.ascontiguousarray(mask_t),
        }

    def restore(self, outputs: Dict[str, np.ndarray], size: Tuple[int, int]) -> np.ndarray:
        """
        Convert the model's `[1, 3, H, W]` output back into a BGR uint8 image.

        Values are clamped to [0, 255], never wrapped.
        """

        w, h = size
        if self.cfg.output_name:
            if self.cfg.output_name not in outputs:
                raise ModelContractViolation(
                    f"inpaint model did not return {self.cfg.output_name!r} (got {sorted(outputs)})"
                )
            raw = outputs[self.cfg.output_name]
        else:
            if not outputs:
                raise ModelContractViolation("inpaint model returned no outputs")
            raw = next(iter(outputs.values()))

        chw = expect_shape(raw, (1, 3, h, w), "inpaint output")[0]
        values = chw.astype(np.float32)
        if self.is_float:
            values = values * 255.0

        hwc = np.transpose(np.clip(np.rint(values), 0, 255).astype(np.uint8), (1, 2, 0))
        return np.ascontiguousarray(hwc[:, :, ::-1])
