from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Optional, Sequence, Tuple, Union

import numpy as np


PathLike = Union[str, Path]

# ONNX element type strings reported by `NodeArg.type`.
_ONNX_DTYPES = {
    "tensor(float)": np.float32,
    "tensor(float16)": np.float16,
    "tensor(double)": np.float64,
    "tensor(uint8)": np.uint8,
    "tensor(int8)": np.int8,
    "tensor(int32)": np.int32,
    "tensor(int64)": np.int64,
    "tensor(bool)": np.bool_,
}


@dataclass(frozen=True)
class OnnxRuntimeEngineConfig:
    """
    Configuration for ONNX Runtime inference.

    - providers: ORT execution providers (e.g., ["CUDAExecutionProvider", "CPUExecutionProvider"])
    - intra_op_num_threads: 0 lets ORT decide
    """

    providers: Optional[Sequence[str]] = None
    intra_op_num_threads: int = 0


class OnnxRuntimeEngine:
    """
    ONNX Runtime session exposed as `feeds -> outputs` with named tensors.

    Feeds whose dtype differs from the declared input type are cast before the
    run; all outputs are returned keyed by output name.
    """

    def __init__(self, model_path: PathLike, cfg: OnnxRuntimeEngineConfig = OnnxRuntimeEngineConfig()):
        try:
            import onnxruntime as ort  # type: ignore
        except Exception as e:  # pragma: no cover
            raise ImportError(
                "onnxruntime is required for the ONNX engine. Install it with `pip install onnxruntime` "
                "(or `onnxruntime-gpu`)."
            ) from e

        self._ort = ort
        self.model_path = Path(model_path)
        if not self.model_path.exists():
            raise FileNotFoundError(str(self.model_path))

        sess_opts = ort.SessionOptions()
        if cfg.intra_op_num_threads:
            sess_opts.intra_op_num_threads = int(cfg.intra_op_num_threads)
        providers = list(cfg.providers) if cfg.providers is not None else None
        self.session = ort.InferenceSession(str(self.model_path), sess_options=sess_opts, providers=providers)

        self._inputs = {i.name: i for i in self.session.get_inputs()}
        self.output_names: Tuple[str, ...] = tuple(o.name for o in self.session.get_outputs())

    @property
    def input_names(self) -> Tuple[str, ...]:
        return tuple(self._inputs)

    @property
    def providers_in_use(self) -> Sequence[str]:
        # ORT returns providers in priority order for this session.
        return tuple(self.session.get_providers())

    @property
    def available_providers(self) -> Sequence[str]:
        return tuple(self._ort.get_available_providers())

    def input_dtype(self, name: str) -> Optional[type]:
        node = self._inputs.get(name)
        if node is None:
            return None
        return _ONNX_DTYPES.get(node.type)

    def run(self, feeds: Dict[str, np.ndarray]) -> Dict[str, np.ndarray]:
        inputs: Dict[str, np.ndarray] = {}
        for name, value in feeds.items():
            arr = np.asarray(value)
            dtype = self.input_dtype(name)
            if dtype is not None and arr.dtype != dtype:
                arr = arr.astype(dtype)
            inputs[name] = arr
        outputs = self.session.run(list(self.output_names), inputs)
        return dict(zip(self.output_names, outputs))

    __call__ = run
