from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Optional, Sequence, Union

import numpy as np


PathLike = Union[str, Path]


@dataclass(frozen=True)
class TorchScriptEngineConfig:
    """
    Configuration for TorchScript inference.

    - device: "cpu" or "cuda" (if available)
    - half: cast floating inputs to float16 (only if the model expects it)
    - input_names: feed names, passed positionally in this order
    - output_names: names given to the returned tensors, in output order
    """

    device: str = "cpu"
    half: bool = False
    input_names: Sequence[str] = ("images",)
    output_names: Sequence[str] = ("output0", "output1")


class TorchScriptEngine:
    """
    TorchScript module exposed as `feeds -> outputs`.

    This is the most "plug-and-play" Torch option because it doesn't require model
    class code (unlike many raw .pt weight checkpoints).
    """

    def __init__(self, model_path: PathLike, cfg: TorchScriptEngineConfig = TorchScriptEngineConfig()):
        try:
            import torch  # type: ignore
        except Exception as e:  # pragma: no cover
            raise ImportError("torch is required for the TorchScript engine. Install with `pip install torch`.") from e

        self._torch = torch
        self.model_path = Path(model_path)
        if not self.model_path.exists():
            raise FileNotFoundError(str(self.model_path))

        self.cfg = cfg
        self.device = torch.device(cfg.device)

        model = torch.jit.load(str(self.model_path), map_location=self.device)
        model.eval()
        self.model = model

    @property
    def input_names(self) -> Sequence[str]:
        return tuple(self.cfg.input_names)

    @property
    def output_names(self) -> Sequence[str]:
        return tuple(self.cfg.output_names)

    def input_dtype(self, name: str) -> Optional[type]:
        return None

    def _to_tensor(self, value: np.ndarray):
        torch = self._torch
        x = torch.as_tensor(np.ascontiguousarray(value), device=self.device)
        if x.is_floating_point():
            x = x.half() if self.cfg.half else x.float()
        return x.contiguous()

    def run(self, feeds: Dict[str, np.ndarray]) -> Dict[str, np.ndarray]:
        missing = [n for n in self.cfg.input_names if n not in feeds]
        if missing:
            raise KeyError(f"Missing TorchScript inputs: {missing}")
        args = [self._to_tensor(feeds[n]) for n in self.cfg.input_names]

        with self._torch.no_grad():
            y = self.model(*args)

        if not isinstance(y, (tuple, list)):
            y = (y,)
        if len(y) < len(self.cfg.output_names):
            raise ValueError(f"Model returned {len(y)} output(s), expected {len(self.cfg.output_names)}")

        out: Dict[str, np.ndarray] = {}
        for name, t in zip(self.cfg.output_names, y):
            if hasattr(t, "detach"):
                t = t.detach()
            out[name] = t.to("cpu").float().numpy() if t.dtype == self._torch.float16 else t.to("cpu").numpy()
        return out

    __call__ = run
