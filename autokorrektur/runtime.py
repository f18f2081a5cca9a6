from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Dict, Iterable, Iterator, List, Optional, Sequence, Tuple, Union

import numpy as np

from .config import INPAINT_DTYPES, PipelineProfile
from .errors import AutokorrekturError, InferenceEngineError, InvalidImage, ModelContractViolation
from .inpaint import InpaintConfig, InpaintTensorAdapter
from .letterbox import LetterboxConfig, PreprocessResult, preprocess
from .masks import DelegatedMaskRenderer, MaskConfig, MaskSynthesizer, blank_overlay
from .postprocess import SegPostConfig, SegPostprocessor
from .types import Detection, LetterboxTransform

logger = logging.getLogger(__name__)

PathLike = Union[str, Path]
InferFn = Callable[[Dict[str, np.ndarray]], Dict[str, np.ndarray]]


def find_project_root(
    start: Optional[PathLike] = None,
    markers: Sequence[str] = ("pyproject.toml", "setup.py", ".git", "requirements.txt"),
) -> Path:
    """
    Best-effort project root discovery.

    Useful when models live in `<root>/models` and scripts run from elsewhere.
    """

    p = Path(start) if start is not None else Path.cwd()
    p = p.resolve()

    # If a file is provided, start from its directory.
    if p.is_file():
        p = p.parent

    for parent in (p, *p.parents):
        for m in markers:
            if (parent / m).exists():
                return parent
    return p


def resolve_path(path: PathLike, root: Optional[PathLike] = "auto") -> Path:
    """
    Resolve `path` to an absolute Path.

    - Absolute paths are returned as-is.
    - Relative paths are resolved against `root` if provided, the project root otherwise.
    """

    p = Path(path)
    if p.is_absolute():
        return p

    if root == "auto" or root is None:
        base = find_project_root()
    else:
        base = Path(root).resolve()

    return (base / p).resolve()


@dataclass(frozen=True)
class EraseResult:
    image: np.ndarray
    mask: np.ndarray
    detections: List[Detection]
    transform: LetterboxTransform

    @property
    def removed_fraction(self) -> float:
        return float(np.count_nonzero(self.mask == 0)) / float(self.mask.size)


@dataclass(frozen=True)
class BatchItemResult:
    name: str
    result: Optional[EraseResult]
    error: Optional[BaseException]
    elapsed_s: float

    @property
    def ok(self) -> bool:
        return self.error is None


def _call_model(role: str, infer_fn: InferFn, feeds: Dict[str, np.ndarray]) -> Dict[str, np.ndarray]:
    try:
        outputs = infer_fn(feeds)
    except AutokorrekturError:
        raise
    except Exception as e:
        raise InferenceEngineError(role, f"{type(e).__name__}: {e}") from e
    if not isinstance(outputs, dict):
        raise ModelContractViolation(f"{role} model must return a name -> tensor mapping, got {type(outputs).__name__}")
    return outputs


class VehicleEraser:
    """
    Detection -> mask -> inpaint pipeline for a single image at a time.

    The pipeline expects BGR images (OpenCV-style) as `np.ndarray` and returns
    an `EraseResult` with the filled image and the removal mask at the same
    resolution (0 = removed, 255 = kept).
    """

    def __init__(
        self,
        detect_fn: InferFn,
        inpaint_fn: InferFn,
        *,
        mask_fn: Optional[InferFn] = None,
        letterbox_cfg: LetterboxConfig = LetterboxConfig(),
        post_cfg: SegPostConfig = SegPostConfig(),
        mask_cfg: MaskConfig = MaskConfig(),
        inpaint_cfg: InpaintConfig = InpaintConfig(),
        passes: int = 1,
        skip_inpaint_without_detections: bool = True,
        detection_input: str = "images",
        detection_output: str = "output0",
        prototype_output: str = "output1",
    ):
        if passes < 1:
            raise ValueError("passes must be >= 1")
        self._detect_fn = detect_fn
        self._inpaint_fn = inpaint_fn
        self.letterbox_cfg = letterbox_cfg
        self.post = SegPostprocessor(post_cfg)
        self.mask_cfg = mask_cfg
        if mask_fn is not None:
            self.mask_renderer = DelegatedMaskRenderer(mask_fn, mask_cfg)
        else:
            self.mask_renderer = MaskSynthesizer(mask_cfg)
        self.adapter = InpaintTensorAdapter(inpaint_cfg)
        self.passes = passes
        self.skip_inpaint_without_detections = skip_inpaint_without_detections
        self.detection_input = detection_input
        self.detection_output = detection_output
        self.prototype_output = prototype_output

    @classmethod
    def from_profile(
        cls,
        profile: PipelineProfile,
        detect_fn: InferFn,
        inpaint_fn: InferFn,
        *,
        mask_fn: Optional[InferFn] = None,
        inpaint_dtype: Optional[type] = None,
    ) -> "VehicleEraser":
        letterbox_cfg, post_cfg, mask_cfg, inpaint_cfg = profile.stage_configs()
        if profile.inpaint_dtype is None and inpaint_dtype is not None:
            inpaint_cfg = InpaintConfig(dtype=inpaint_dtype)
        return cls(
            detect_fn,
            inpaint_fn,
            mask_fn=mask_fn,
            letterbox_cfg=letterbox_cfg,
            post_cfg=post_cfg,
            mask_cfg=mask_cfg,
            inpaint_cfg=inpaint_cfg,
            passes=profile.passes,
            skip_inpaint_without_detections=profile.skip_inpaint_without_detections,
        )

    def preprocess(self, image_bgr: np.ndarray) -> PreprocessResult:
        return preprocess(image_bgr, self.letterbox_cfg)

    def detect(self, prep: PreprocessResult) -> Tuple[List[Detection], Optional[np.ndarray]]:
        outputs = _call_model("detection", self._detect_fn, {self.detection_input: prep.blob})
        if self.detection_output not in outputs:
            raise ModelContractViolation(
                f"detection model did not return {self.detection_output!r} (got {sorted(outputs)})"
            )
        detections = self.post.process(outputs[self.detection_output])
        return detections, outputs.get(self.prototype_output)

    def build_mask(
        self,
        prototypes: Optional[np.ndarray],
        detections: Sequence[Detection],
        transform: LetterboxTransform,
    ) -> np.ndarray:
        """Overlay at model resolution; all 255 when nothing was detected."""

        if not detections:
            return blank_overlay(self.mask_cfg)
        return self.mask_renderer(prototypes, detections, transform)

    def inpaint(self, image_bgr: np.ndarray, overlay: np.ndarray) -> Tuple[np.ndarray, np.ndarray]:
        h, w = image_bgr.shape[:2]
        mask = self.adapter.match_mask(overlay, (w, h))
        feeds = self.adapter.prepare(image_bgr, mask)
        outputs = _call_model("inpaint", self._inpaint_fn, feeds)
        return self.adapter.restore(outputs, (w, h)), mask

    def run_once(self, image_bgr: np.ndarray) -> EraseResult:
        prep = self.preprocess(image_bgr)
        image = prep.image
        detections, prototypes = self.detect(prep)
        overlay = self.build_mask(prototypes, detections, prep.transform)

        if not detections and self.skip_inpaint_without_detections:
            h, w = image.shape[:2]
            logger.debug("no detections, returning input unchanged")
            return EraseResult(
                image=image.copy(),
                mask=np.full((h, w), 255, dtype=np.uint8),
                detections=[],
                transform=prep.transform,
            )

        filled, mask = self.inpaint(image, overlay)
        result = EraseResult(image=filled, mask=mask, detections=detections, transform=prep.transform)
        logger.debug("%d detection(s), removed %.2f%% of the image", len(detections), 100.0 * result.removed_fraction)
        return result

    def __call__(self, image_bgr: np.ndarray) -> EraseResult:
        result = self.run_once(image_bgr)
        if not result.detections:
            return result
        for i in range(1, self.passes):
            logger.debug("pass %d/%d", i + 1, self.passes)
            nxt = self.run_once(result.image)
            if not nxt.detections:
                break
            # Keep the union of everything removed so far.
            result = EraseResult(
                image=nxt.image,
                mask=np.bitwise_and(result.mask, nxt.mask),
                detections=result.detections + nxt.detections,
                transform=nxt.transform,
            )
        return result

    def process_batch(
        self,
        items: Iterable[Tuple[str, object]],
        loader: Optional[Callable[[object], np.ndarray]] = None,
    ) -> Iterator[BatchItemResult]:
        """
        Run images one after another, isolating failures per item.

        `items` yields `(name, source)`; `source` is an image array, or anything
        `loader` turns into one (e.g. a path). A failing item is reported with
        its error and the batch moves on to the next one.
        """

        for name, source in items:
            start = time.perf_counter()
            try:
                image = loader(source) if loader is not None else source
                if image is None:
                    raise InvalidImage(f"could not load image {name!r}")
                result = self(image)
            except Exception as e:
                elapsed = time.perf_counter() - start
                logger.error("failed to process %s: %s", name, e)
                yield BatchItemResult(name=name, result=None, error=e, elapsed_s=elapsed)
                continue
            yield BatchItemResult(name=name, result=result, error=None, elapsed_s=time.perf_counter() - start)


def load_eraser(
    seg_model: PathLike,
    inpaint_model: PathLike,
    *,
    mask_model: Optional[PathLike] = None,
    profile: PipelineProfile = PipelineProfile(),
    backend: Optional[str] = None,
    root: Optional[PathLike] = "auto",
    onnx_providers: Optional[Sequence[str]] = None,
    torch_device: str = "cpu",
) -> VehicleEraser:
    """
    Create a pipeline from models on disk.

    Typical usage:
        eraser = load_eraser("models/yolov8n-seg.onnx", "models/mi-gan-512.onnx")

    Args:
        seg_model: segmentation-detection model; relative paths resolve against project root by default
        inpaint_model: inpainting model taking `image` + `mask`
        mask_model: optional standalone mask-rendering model; local synthesis is used when omitted
        backend: "onnxruntime" / "torchscript", or None to infer each from its extension
    """

    from .engines import load_engine

    seg_engine = load_engine(
        resolve_path(seg_model, root=root),
        backend=backend,
        onnx_providers=onnx_providers,
        torch_device=torch_device,
    )
    inpaint_engine = load_engine(
        resolve_path(inpaint_model, root=root),
        backend=backend,
        onnx_providers=onnx_providers,
        torch_device=torch_device,
        torch_input_names=("image", "mask"),
        torch_output_names=("output",),
    )
    mask_engine = None
    if mask_model is not None:
        mask_engine = load_engine(
            resolve_path(mask_model, root=root),
            backend=backend,
            onnx_providers=onnx_providers,
            torch_device=torch_device,
            torch_input_names=("detection", "mask", "config"),
            torch_output_names=("mask_filter",),
        )

    declared = inpaint_engine.input_dtype("image")
    inpaint_dtype = declared if declared in INPAINT_DTYPES.values() else None

    return VehicleEraser.from_profile(
        profile,
        seg_engine.run,
        inpaint_engine.run,
        mask_fn=mask_engine.run if mask_engine is not None else None,
        inpaint_dtype=inpaint_dtype,
    )
