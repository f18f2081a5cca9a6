"""
Typed views over raw model outputs.

Engines hand back whatever array layout the export produced. These helpers pin
the layout down once, with explicit shape metadata, so the decoder and mask
code index named axes instead of guessing at nested arrays.
"""

from __future__ import annotations

from typing import Optional, Sequence

import numpy as np

from .errors import ModelContractViolation


def expect_shape(array: object, expected: Sequence[Optional[int]], name: str) -> np.ndarray:
    """
    Return `array` as an ndarray of rank `len(expected)`; `None` entries match any size.

    A leading batch axis of size 1 is added or removed as needed.
    """

    try:
        arr = np.asarray(array)
    except Exception as e:
        raise ModelContractViolation(f"{name}: cannot interpret output as an array ({e})") from e

    if arr.ndim == len(expected) + 1 and arr.shape[0] == 1:
        arr = arr[0]
    elif arr.ndim == len(expected) - 1 and expected[0] in (1, None):
        arr = arr[None, ...]

    if arr.ndim != len(expected) or any(e is not None and e != s for e, s in zip(expected, arr.shape)):
        shown = tuple("?" if e is None else e for e in expected)
        raise ModelContractViolation(f"{name}: expected shape {shown}, got {tuple(np.shape(array))}")
    return arr


class DetectionOutputView:
    """
    View over the primary segmentation-detection output.

    Channel layout per candidate: 4 box values (cx, cy, w, h), `num_classes`
    class scores, `num_coefficients` mask coefficients. The canonical export is
    channels-first `[1, 4 + C + M, N]`; `[1, N, 4 + C + M]` is accepted too.
    """

    def __init__(self, raw: object, num_classes: int = 80, num_coefficients: int = 32):
        self.num_classes = int(num_classes)
        self.num_coefficients = int(num_coefficients)
        self.channels = 4 + self.num_classes + self.num_coefficients

        try:
            p = np.asarray(raw, dtype=np.float32)
        except (TypeError, ValueError) as e:
            raise ModelContractViolation(f"detection output is not numeric: {e}") from e

        if p.ndim == 3:
            if p.shape[0] != 1:
                raise ModelContractViolation(f"Batch > 1 is not supported (got shape {p.shape}). Pass one image at a time.")
            p = p[0]
        if p.ndim != 2:
            raise ModelContractViolation(f"Unsupported detection output shape: {np.shape(raw)}")

        if p.shape[0] == self.channels:
            rows = p.T
        elif p.shape[1] == self.channels:
            rows = p
        else:
            raise ModelContractViolation(
                f"detection output has no axis of size {self.channels} "
                f"(4 box + {self.num_classes} classes + {self.num_coefficients} coefficients): {p.shape}"
            )
        self._rows = rows

    @classmethod
    def from_flat(
        cls,
        buffer: object,
        num_candidates: int,
        num_classes: int = 80,
        num_coefficients: int = 32,
    ) -> "DetectionOutputView":
        flat = np.asarray(buffer, dtype=np.float32).reshape(-1)
        channels = 4 + num_classes + num_coefficients
        if flat.size != channels * num_candidates:
            raise ModelContractViolation(
                f"flat detection buffer has {flat.size} values, expected {channels} x {num_candidates}"
            )
        return cls(flat.reshape(channels, num_candidates), num_classes, num_coefficients)

    @property
    def num_candidates(self) -> int:
        return int(self._rows.shape[0])

    @property
    def rows(self) -> np.ndarray:
        return self._rows

    @property
    def boxes_cxcywh(self) -> np.ndarray:
        return self._rows[:, 0:4]

    @property
    def class_scores(self) -> np.ndarray:
        return self._rows[:, 4 : 4 + self.num_classes]

    @property
    def coefficients(self) -> np.ndarray:
        return self._rows[:, 4 + self.num_classes :]


def prototype_grids(raw: object, count: int = 32, size: int = 160) -> np.ndarray:
    """
    Interpret the prototype output as `(count, size, size)` float32 grids.

    Accepts `[1, count, size, size]`, `[count, size, size]` or a flat buffer with
    exactly `count * size * size` values. Anything else breaks the contract.
    """

    if raw is None:
        raise ModelContractViolation("prototype masks are missing from the detection output")
    try:
        arr = np.asarray(raw, dtype=np.float32)
    except (TypeError, ValueError) as e:
        raise ModelContractViolation(f"prototype masks are not numeric: {e}") from e

    expected = count * size * size
    if arr.size != expected:
        raise ModelContractViolation(
            f"prototype masks have {arr.size} values, expected {count} x {size} x {size} = {expected}"
        )
    if arr.ndim > 1 and arr.shape[-2:] != (size, size):
        raise ModelContractViolation(f"prototype masks must be {size}x{size} grids, got shape {arr.shape}")
    return arr.reshape(count, size, size)
