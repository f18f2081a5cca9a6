from __future__ import annotations

import json
from dataclasses import dataclass, fields
from pathlib import Path
from typing import Any, Dict, Optional, Tuple

import numpy as np

from .inpaint import InpaintConfig
from .letterbox import LetterboxConfig
from .masks import DOWNSHIFT_MODES, MaskConfig
from .metadata import VEHICLE_CLASS_IDS
from .postprocess import SegPostConfig

INPAINT_DTYPES = {"uint8": np.uint8, "float32": np.float32}


@dataclass(frozen=True)
class PipelineProfile:
    schema_version: int = 1
    model_width: int = 640
    model_height: int = 640
    stride: int = 32
    score_threshold: float = 0.2
    iou_threshold: float = 0.4
    max_per_class: int = 100
    target_class_ids: Optional[Tuple[int, ...]] = VEHICLE_CLASS_IDS
    upscale_factor: float = 1.2
    downshift_fraction: float = 0.03
    downshift_mode: str = "shift"
    max_megapixels: Optional[float] = None
    passes: int = 1
    skip_inpaint_without_detections: bool = True
    # None picks the dtype the inpaint engine declares, falling back to uint8.
    inpaint_dtype: Optional[str] = None
    notes: Optional[str] = None

    def __post_init__(self) -> None:
        if self.schema_version != 1:
            raise ValueError("pipeline profile schema_version must be 1")
        if self.stride < 1:
            raise ValueError("stride must be >= 1")
        if self.model_width < self.stride or self.model_height < self.stride:
            raise ValueError("model_width/model_height must be >= stride")
        if self.score_threshold < 0:
            raise ValueError("score_threshold must be >= 0")
        if not 0.0 <= self.iou_threshold <= 1.0:
            raise ValueError("iou_threshold must be in [0, 1]")
        if self.max_per_class < 1:
            raise ValueError("max_per_class must be >= 1")
        if self.upscale_factor <= 0:
            raise ValueError("upscale_factor must be > 0")
        if not 0.0 <= self.downshift_fraction < 1.0:
            raise ValueError("downshift_fraction must be in [0, 1)")
        if self.downshift_mode not in DOWNSHIFT_MODES:
            raise ValueError(f"downshift_mode must be one of {list(DOWNSHIFT_MODES)}")
        if self.max_megapixels is not None and self.max_megapixels <= 0:
            raise ValueError("max_megapixels must be > 0 when set")
        if self.passes < 1:
            raise ValueError("passes must be >= 1")
        if self.inpaint_dtype is not None and self.inpaint_dtype not in INPAINT_DTYPES:
            raise ValueError(f"inpaint_dtype must be one of {sorted(INPAINT_DTYPES)}")

    def stage_configs(self) -> Tuple[LetterboxConfig, SegPostConfig, MaskConfig, InpaintConfig]:
        letterbox_cfg = LetterboxConfig(
            model_width=self.model_width,
            model_height=self.model_height,
            stride=self.stride,
            max_megapixels=self.max_megapixels,
        )
        post_cfg = SegPostConfig(
            score_threshold=self.score_threshold,
            iou_threshold=self.iou_threshold,
            max_per_class=self.max_per_class,
            class_ids=self.target_class_ids,
            max_size=float(max(self.model_width, self.model_height)),
        )
        mask_cfg = MaskConfig(
            model_width=self.model_width,
            model_height=self.model_height,
            upscale_factor=self.upscale_factor,
            downshift_fraction=self.downshift_fraction,
            downshift_mode=self.downshift_mode,
        )
        inpaint_cfg = InpaintConfig(dtype=INPAINT_DTYPES[self.inpaint_dtype or "uint8"])
        return letterbox_cfg, post_cfg, mask_cfg, inpaint_cfg


def _require_number(payload: Dict[str, Any], key: str) -> float:
    value = payload[key]
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ValueError(f"{key} must be a number")
    return float(value)


def _require_int(payload: Dict[str, Any], key: str) -> int:
    value = payload[key]
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValueError(f"{key} must be an integer")
    return int(value)


_INT_KEYS = {"schema_version", "model_width", "model_height", "stride", "max_per_class", "passes"}
_FLOAT_KEYS = {"score_threshold", "iou_threshold", "upscale_factor", "downshift_fraction"}


def profile_from_dict(payload: Dict[str, Any]) -> PipelineProfile:
    allowed = {f.name for f in fields(PipelineProfile)}
    unknown = sorted(set(payload.keys()) - allowed)
    if unknown:
        raise ValueError(f"Unknown pipeline profile keys: {unknown}")
    if "schema_version" not in payload:
        raise ValueError("Missing required key: schema_version")

    kwargs: Dict[str, Any] = {}
    for key in payload:
        if key in _INT_KEYS:
            kwargs[key] = _require_int(payload, key)
        elif key in _FLOAT_KEYS:
            kwargs[key] = _require_number(payload, key)

    if payload.get("max_megapixels") is not None:
        kwargs["max_megapixels"] = _require_number(payload, "max_megapixels")

    if "target_class_ids" in payload:
        ids = payload["target_class_ids"]
        if ids is None:
            kwargs["target_class_ids"] = None
        elif isinstance(ids, list) and ids and all(isinstance(i, int) and not isinstance(i, bool) for i in ids):
            kwargs["target_class_ids"] = tuple(int(i) for i in ids)
        else:
            raise ValueError("target_class_ids must be a non-empty list of integers or null")

    if "skip_inpaint_without_detections" in payload:
        value = payload["skip_inpaint_without_detections"]
        if not isinstance(value, bool):
            raise ValueError("skip_inpaint_without_detections must be a boolean")
        kwargs["skip_inpaint_without_detections"] = value

    for key in ("downshift_mode", "inpaint_dtype", "notes"):
        if key not in payload or payload[key] is None:
            continue
        if not isinstance(payload[key], str):
            raise ValueError(f"{key} must be a string if provided")
        kwargs[key] = payload[key]

    return PipelineProfile(**kwargs)


def load_pipeline_profile(path: Path) -> PipelineProfile:
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Pipeline profile not found: {path}")
    raw = path.read_text(encoding="utf-8")
    try:
        payload = json.loads(raw)
    except json.JSONDecodeError as exc:
        raise ValueError(f"Invalid pipeline profile JSON: {path}") from exc
    if not isinstance(payload, dict):
        raise ValueError("Pipeline profile must be a JSON object")
    return profile_from_dict(payload)
