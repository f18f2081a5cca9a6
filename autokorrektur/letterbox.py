from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Optional, Tuple

import cv2
import numpy as np

from .errors import InvalidImage
from .geometry import compute_letterbox
from .types import LetterboxTransform


@dataclass(frozen=True)
class LetterboxConfig:
    model_width: int = 640
    model_height: int = 640
    stride: int = 32
    color: Tuple[int, int, int] = (0, 0, 0)
    # Cap applied to the input before preprocessing; None keeps full resolution.
    max_megapixels: Optional[float] = None


@dataclass(frozen=True)
class PreprocessResult:
    blob: np.ndarray
    transform: LetterboxTransform
    image: np.ndarray


def validate_image(image: object) -> np.ndarray:
    if image is None or not hasattr(image, "shape"):
        raise InvalidImage("image must be a NumPy array (BGR).")
    img = np.asarray(image)
    if img.ndim not in (2, 3) or (img.ndim == 3 and img.shape[2] not in (3, 4)):
        raise InvalidImage(f"Expected image shape (H, W, 3), got {getattr(image, 'shape', None)}")
    if img.shape[0] == 0 or img.shape[1] == 0:
        raise InvalidImage(f"Image has a zero-sized dimension: {img.shape}")
    # OpenCV colour conversions only take uint8 here
    if img.dtype != np.uint8:
        img = np.clip(img, 0, 255).astype(np.uint8)
    if img.ndim == 2:
        img = cv2.cvtColor(img, cv2.COLOR_GRAY2BGR)
    elif img.shape[2] == 4:
        img = cv2.cvtColor(img, cv2.COLOR_BGRA2BGR)
    return img


def limit_megapixels(image: np.ndarray, max_megapixels: Optional[float]) -> np.ndarray:
    """
    Downscale `image` so that it holds at most `max_megapixels`, keeping aspect ratio.
    """

    if max_megapixels is None:
        return image
    h, w = image.shape[:2]
    current = (w * h) / 1_000_000
    if current <= max_megapixels:
        return image

    scale = math.sqrt(max_megapixels / current)
    new_w = max(1, int(round(w * scale)))
    new_h = max(1, int(round(h * scale)))
    return cv2.resize(image, (new_w, new_h), interpolation=cv2.INTER_AREA)


def letterbox(
    image: np.ndarray,
    stride: int = 32,
    color: Tuple[int, int, int] = (0, 0, 0),
) -> Tuple[np.ndarray, LetterboxTransform]:
    """
    Align to stride, then pad right/bottom into a square.

    Returns:
        padded: square image, side == transform.padded_size
        transform: LetterboxTransform used
    """

    h, w = image.shape[:2]
    transform = compute_letterbox(w, h, stride)

    if (w, h) != (transform.aligned_width, transform.aligned_height):
        image = cv2.resize(
            image,
            (transform.aligned_width, transform.aligned_height),
            interpolation=cv2.INTER_LANCZOS4,
        )

    padded = cv2.copyMakeBorder(
        image, 0, transform.pad_y, 0, transform.pad_x, cv2.BORDER_CONSTANT, value=color
    )
    return padded, transform


def preprocess(image_bgr: np.ndarray, cfg: LetterboxConfig = LetterboxConfig()) -> PreprocessResult:
    """
    Build the detection model input blob for one image.

    The input array is not modified. `PreprocessResult.image` is the (possibly
    megapixel-capped) image the transform refers to.
    """

    img = validate_image(image_bgr)
    img = limit_megapixels(img, cfg.max_megapixels)

    padded, transform = letterbox(img, stride=cfg.stride, color=cfg.color)
    resized = cv2.resize(padded, (cfg.model_width, cfg.model_height), interpolation=cv2.INTER_LINEAR)

    # BGR -> RGB, normalize, HWC -> CHW, add batch
    blob = resized[:, :, ::-1].astype(np.float32) / 255.0
    blob = np.ascontiguousarray(np.transpose(blob, (2, 0, 1))[None, ...])

    return PreprocessResult(blob=blob, transform=transform, image=img)
