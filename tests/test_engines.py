import importlib.util
import tempfile
import unittest
from pathlib import Path

import numpy as np

from autokorrektur.engines import infer_backend, load_engine
from autokorrektur.runtime import load_eraser

_HAS_TORCH = importlib.util.find_spec("torch") is not None
_HAS_ONNX = (
    importlib.util.find_spec("onnx") is not None and importlib.util.find_spec("onnxruntime") is not None
)

if _HAS_TORCH:
    import torch

    class _MaskedCopy(torch.nn.Module):
        def forward(self, image, mask):
            return image * (mask > 0).to(image.dtype)


class TestEngineSelection(unittest.TestCase):
    def test_infer_backend(self) -> None:
        self.assertEqual(infer_backend("models/yolov8n-seg.onnx"), "onnxruntime")
        self.assertEqual(infer_backend("models/MI-GAN.ONNX"), "onnxruntime")
        self.assertEqual(infer_backend("models/yolov8n-seg.torchscript"), "torchscript")
        self.assertEqual(infer_backend("models/migan.pt"), "torchscript")

    def test_unknown_extension(self) -> None:
        with self.assertRaises(ValueError):
            infer_backend("models/yolov8n-seg.tflite")

    def test_unsupported_backend(self) -> None:
        with self.assertRaises(ValueError):
            load_engine("models/yolov8n-seg.onnx", backend="tensorrt")


@unittest.skipUnless(_HAS_TORCH, "torch is not installed")
class TestTorchScriptEngine(unittest.TestCase):
    def _scripted_model(self) -> Path:
        tmpdir = tempfile.TemporaryDirectory()
        self.addCleanup(tmpdir.cleanup)
        path = Path(tmpdir.name) / "fill.torchscript"
        torch.jit.script(_MaskedCopy()).save(str(path))
        return path

    def test_run_maps_named_inputs_and_outputs(self) -> None:
        engine = load_engine(
            self._scripted_model(),
            torch_input_names=("image", "mask"),
            torch_output_names=("output",),
        )
        self.assertEqual(tuple(engine.input_names), ("image", "mask"))
        self.assertIsNone(engine.input_dtype("image"))

        image = np.full((1, 3, 4, 4), 0.5, dtype=np.float32)
        mask = np.zeros((1, 1, 4, 4), dtype=np.float32)
        mask[..., :2] = 1.0
        out = engine({"image": image, "mask": mask})
        self.assertEqual(set(out), {"output"})
        self.assertEqual(out["output"].shape, (1, 3, 4, 4))
        self.assertTrue(np.allclose(out["output"][..., :2], 0.5))
        self.assertTrue(np.allclose(out["output"][..., 2:], 0.0))

    def test_missing_input(self) -> None:
        engine = load_engine(
            self._scripted_model(),
            torch_input_names=("image", "mask"),
            torch_output_names=("output",),
        )
        with self.assertRaises(KeyError):
            engine({"image": np.zeros((1, 3, 4, 4), dtype=np.float32)})

    def test_missing_file(self) -> None:
        with self.assertRaises(FileNotFoundError):
            load_engine(Path(tempfile.gettempdir()) / "no-such-model.torchscript")


def _identity_fill_model(path: Path, elem_type: int) -> Path:
    """Two-input graph (`image`, `mask`) whose `output` is `image` unchanged."""

    from onnx import helper, save

    image = helper.make_tensor_value_info("image", elem_type, [1, 3, "h", "w"])
    mask = helper.make_tensor_value_info("mask", elem_type, [1, 1, "h", "w"])
    output = helper.make_tensor_value_info("output", elem_type, [1, 3, "h", "w"])
    mask_out = helper.make_tensor_value_info("mask_out", elem_type, [1, 1, "h", "w"])
    graph = helper.make_graph(
        [
            helper.make_node("Identity", ["image"], ["output"]),
            helper.make_node("Identity", ["mask"], ["mask_out"]),
        ],
        "identity_fill",
        [image, mask],
        [output, mask_out],
    )
    model = helper.make_model(graph, opset_imports=[helper.make_opsetid("", 13)])
    model.ir_version = 8
    save(model, str(path))
    return path


@unittest.skipUnless(_HAS_ONNX, "onnx / onnxruntime is not installed")
class TestOnnxRuntimeEngine(unittest.TestCase):
    def _model(self, name: str, elem_type: int) -> Path:
        tmpdir = tempfile.TemporaryDirectory()
        self.addCleanup(tmpdir.cleanup)
        return _identity_fill_model(Path(tmpdir.name) / name, elem_type)

    def test_casts_feeds_and_names_outputs(self) -> None:
        from onnx import TensorProto

        engine = load_engine(self._model("fill_u8.onnx", TensorProto.UINT8))
        self.assertEqual(tuple(engine.input_names), ("image", "mask"))
        self.assertEqual(tuple(engine.output_names), ("output", "mask_out"))
        self.assertIs(engine.input_dtype("image"), np.uint8)
        self.assertIsNone(engine.input_dtype("nope"))

        image = np.full((1, 3, 4, 6), 200.0, dtype=np.float32)
        mask = np.full((1, 1, 4, 6), 255, dtype=np.int64)
        out = engine({"image": image, "mask": mask})
        self.assertEqual(set(out), {"output", "mask_out"})
        self.assertEqual(out["output"].dtype, np.uint8)
        self.assertEqual(out["output"].shape, (1, 3, 4, 6))
        self.assertTrue(np.all(out["output"] == 200))
        self.assertEqual(out["mask_out"].dtype, np.uint8)
        self.assertTrue(np.all(out["mask_out"] == 255))
        self.assertTrue(len(engine.providers_in_use) >= 1)

    def test_load_eraser_uses_declared_dtype(self) -> None:
        from onnx import TensorProto

        u8 = self._model("fill_u8.onnx", TensorProto.UINT8)
        f32 = self._model("fill_f32.onnx", TensorProto.FLOAT)

        eraser = load_eraser(u8, u8)
        self.assertIs(eraser.adapter.cfg.dtype, np.uint8)

        eraser = load_eraser(u8, f32)
        self.assertIs(eraser.adapter.cfg.dtype, np.float32)
        self.assertTrue(eraser.adapter.is_float)

    def test_inpaint_round_trip_through_engine(self) -> None:
        from onnx import TensorProto

        eraser = load_eraser(self._model("seg.onnx", TensorProto.UINT8), self._model("fill.onnx", TensorProto.UINT8))
        image = np.zeros((4, 6, 3), dtype=np.uint8)
        image[:, :, 2] = 90
        filled, mask = eraser.inpaint(image, np.full((640, 640), 255, dtype=np.uint8))
        self.assertTrue(np.array_equal(filled, image))
        self.assertTrue(np.all(mask == 255))
