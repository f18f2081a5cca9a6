"""
Inference engines for autokorrektur.

Engines are kept in a separate module so core functionality (pre/post-processing,
mask synthesis) stays lightweight and can be used without installing inference
runtimes. Any callable `Dict[str, ndarray] -> Dict[str, ndarray]` works as an
engine; the classes here wrap real runtimes.
"""

from __future__ import annotations

from pathlib import Path
from typing import Optional, Sequence, Union

PathLike = Union[str, Path]

__all__ = ["infer_backend", "load_engine"]


def infer_backend(model_path: PathLike) -> str:
    suffix = Path(model_path).suffix.lower()
    if suffix == ".onnx":
        return "onnxruntime"
    if suffix in {".torchscript", ".ts", ".pt"}:
        return "torchscript"
    raise ValueError(f"Could not infer backend from extension '{suffix}'. Pass backend=... explicitly.")


def load_engine(
    model_path: PathLike,
    *,
    backend: Optional[str] = None,
    onnx_providers: Optional[Sequence[str]] = None,
    torch_device: str = "cpu",
    torch_input_names: Sequence[str] = ("images",),
    torch_output_names: Sequence[str] = ("output0", "output1"),
):
    chosen = (backend or infer_backend(model_path)).lower()

    if chosen == "onnxruntime":
        from .onnxruntime_engine import OnnxRuntimeEngine, OnnxRuntimeEngineConfig

        return OnnxRuntimeEngine(model_path, OnnxRuntimeEngineConfig(providers=onnx_providers))

    if chosen == "torchscript":
        from .torchscript_engine import TorchScriptEngine, TorchScriptEngineConfig

        return TorchScriptEngine(
            model_path,
            TorchScriptEngineConfig(
                device=torch_device,
                input_names=tuple(torch_input_names),
                output_names=tuple(torch_output_names),
            ),
        )

    raise ValueError(f"Unsupported backend: {backend!r}")
