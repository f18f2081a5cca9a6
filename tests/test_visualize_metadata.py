import tempfile
import unittest
from pathlib import Path

import numpy as np

from autokorrektur.geometry import compute_letterbox
from autokorrektur.metadata import (
    COCO_CLASS_NAMES,
    VEHICLE_CLASS_IDS,
    class_ids_for_labels,
    default_class_names,
    load_class_names,
)
from autokorrektur.types import Detection
from autokorrektur.visualize import detection_to_pixels, draw_detections, overlay_mask


class TestMetadata(unittest.TestCase):
    def test_vehicle_ids(self) -> None:
        self.assertEqual(len(COCO_CLASS_NAMES), 80)
        self.assertEqual([COCO_CLASS_NAMES[i] for i in VEHICLE_CLASS_IDS], ["car", "motorcycle", "truck"])

    def test_labels_to_ids(self) -> None:
        names = default_class_names()
        self.assertEqual(class_ids_for_labels(names, ["Truck", " car ", "bus"]), [2, 5, 7])
        with self.assertRaises(ValueError):
            class_ids_for_labels(names, ["spaceship"])

    def test_load_names_file(self) -> None:
        tmpdir = tempfile.TemporaryDirectory()
        self.addCleanup(tmpdir.cleanup)
        path = Path(tmpdir.name) / "metadata.yaml"
        path.write_text("# labels\nnames:\n  0: car\n  1: 'delivery van'\n", encoding="utf-8")
        self.assertEqual(load_class_names(str(path)), {0: "car", 1: "delivery van"})


class TestVisualize(unittest.TestCase):
    def test_overlay_tints_removed_pixels_only(self) -> None:
        img = np.full((20, 30, 3), 100, dtype=np.uint8)
        mask = np.full((20, 30), 255, dtype=np.uint8)
        mask[5:10, 5:10] = 0
        out = overlay_mask(img, mask)
        self.assertTrue(np.array_equal(out[0:5], img[0:5]))
        self.assertGreater(int(out[7, 7, 2]), 100)
        self.assertTrue(np.array_equal(img, np.full((20, 30, 3), 100, dtype=np.uint8)))

    def test_overlay_resizes_mask(self) -> None:
        img = np.zeros((40, 60, 3), dtype=np.uint8)
        out = overlay_mask(img, np.zeros((640, 640), dtype=np.uint8))
        self.assertEqual(out.shape, img.shape)

    def test_detection_to_pixels(self) -> None:
        t = compute_letterbox(1280, 960)
        det = Detection(x1=100, y1=90, x2=200, y2=180, score=0.9, class_id=2)
        x1, y1, x2, y2 = detection_to_pixels(det, t, 640)
        self.assertEqual((x1, x2), (200, 400))
        self.assertAlmostEqual(y1, 180, delta=2)
        self.assertAlmostEqual(y2, 360, delta=4)

    def test_draw_detections_returns_copy(self) -> None:
        img = np.zeros((480, 640, 3), dtype=np.uint8)
        det = Detection(x1=100, y1=90, x2=200, y2=180, score=0.9, class_id=2)
        out = draw_detections(img, [det], compute_letterbox(640, 480), class_names=default_class_names())
        self.assertEqual(out.shape, img.shape)
        self.assertGreater(int(out.sum()), 0)
        self.assertEqual(int(img.sum()), 0)
