"""
Vehicle removal for photographs: segment vehicles, build a removal mask, and
hand image + mask to a generative fill model.

Framework-agnostic: every model is consumed as a callable from named NumPy
tensors to named NumPy tensors, so ONNX Runtime, TorchScript or a test double
can sit behind it. Core processing needs only NumPy and OpenCV.
"""

from .types import Detection, LetterboxTransform
from .errors import (
    AutokorrekturError,
    DetectionParseError,
    InferenceEngineError,
    InvalidImage,
    ModelContractViolation,
)
from .geometry import clamp_box, compute_letterbox, map_model_box_to_original
from .letterbox import LetterboxConfig, PreprocessResult, letterbox, preprocess
from .nms import NMSConfig, nms
from .postprocess import SegPostConfig, SegPostprocessor
from .masks import DelegatedMaskRenderer, MaskConfig, MaskSynthesizer, shift_down
from .inpaint import InpaintConfig, InpaintTensorAdapter
from .config import PipelineProfile, load_pipeline_profile
from .runtime import BatchItemResult, EraseResult, VehicleEraser, find_project_root, load_eraser, resolve_path
from .metadata import COCO_CLASS_NAMES, VEHICLE_CLASS_IDS, class_ids_for_labels, load_class_names
from .visualize import draw_detections, overlay_mask

__all__ = [
    "Detection",
    "LetterboxTransform",
    "AutokorrekturError",
    "DetectionParseError",
    "InferenceEngineError",
    "InvalidImage",
    "ModelContractViolation",
    "clamp_box",
    "compute_letterbox",
    "map_model_box_to_original",
    "LetterboxConfig",
    "PreprocessResult",
    "letterbox",
    "preprocess",
    "NMSConfig",
    "nms",
    "SegPostConfig",
    "SegPostprocessor",
    "DelegatedMaskRenderer",
    "MaskConfig",
    "MaskSynthesizer",
    "shift_down",
    "InpaintConfig",
    "InpaintTensorAdapter",
    "PipelineProfile",
    "load_pipeline_profile",
    "BatchItemResult",
    "EraseResult",
    "VehicleEraser",
    "find_project_root",
    "load_eraser",
    "resolve_path",
    "COCO_CLASS_NAMES",
    "VEHICLE_CLASS_IDS",
    "class_ids_for_labels",
    "load_class_names",
    "draw_detections",
    "overlay_mask",
]
