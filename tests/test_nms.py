import unittest

import numpy as np

from autokorrektur.nms import NMSConfig, nms


class TestNMS(unittest.TestCase):
    def test_suppresses_overlap_above_threshold(self) -> None:
        boxes = np.array([[0, 0, 10, 10], [1, 1, 11, 11], [50, 50, 60, 60]], dtype=np.float32)
        scores = np.array([0.9, 0.8, 0.7], dtype=np.float32)
        keep = nms(boxes, scores, np.array([2, 2, 2]), NMSConfig(iou_threshold=0.4))
        self.assertEqual(keep.tolist(), [0, 2])

    def test_keeps_overlap_below_threshold(self) -> None:
        boxes = np.array([[0, 0, 10, 10], [8, 0, 18, 10]], dtype=np.float32)
        scores = np.array([0.9, 0.8], dtype=np.float32)
        keep = nms(boxes, scores, np.array([2, 2]), NMSConfig(iou_threshold=0.4))
        self.assertEqual(keep.tolist(), [0, 1])

    def test_iou_equal_to_threshold_keeps_both(self) -> None:
        # IoU is exactly 0.5: 50 shared pixels over a union of 100
        boxes = np.array([[0, 0, 10, 10], [0, 0, 10, 5]], dtype=np.float32)
        scores = np.array([0.9, 0.8], dtype=np.float32)
        keep = nms(boxes, scores, np.array([2, 2]), NMSConfig(iou_threshold=0.5))
        self.assertEqual(keep.tolist(), [0, 1])
        keep = nms(boxes, scores, np.array([2, 2]), NMSConfig(iou_threshold=0.49))
        self.assertEqual(keep.tolist(), [0])

    def test_order_is_by_score(self) -> None:
        boxes = np.array([[0, 0, 10, 10], [50, 50, 60, 60], [100, 100, 110, 110]], dtype=np.float32)
        scores = np.array([0.3, 0.9, 0.6], dtype=np.float32)
        keep = nms(boxes, scores, np.array([2, 2, 2]), NMSConfig())
        self.assertEqual(keep.tolist(), [1, 2, 0])

    def test_identical_boxes_tie_goes_to_lower_index(self) -> None:
        boxes = np.array([[5, 5, 20, 20], [5, 5, 20, 20]], dtype=np.float32)
        scores = np.array([0.5, 0.5], dtype=np.float32)
        keep = nms(boxes, scores, np.array([3, 3]), NMSConfig())
        self.assertEqual(keep.tolist(), [0])

    def test_class_agnostic(self) -> None:
        boxes = np.array([[0, 0, 10, 10], [0, 0, 10, 10]], dtype=np.float32)
        scores = np.array([0.6, 0.9], dtype=np.float32)
        keep = nms(boxes, scores, np.array([2, 7]), NMSConfig())
        self.assertEqual(keep.tolist(), [1])

    def test_per_class_cap(self) -> None:
        boxes = np.array([[0, 0, 10, 10], [20, 20, 30, 30], [40, 40, 50, 50]], dtype=np.float32)
        scores = np.array([0.9, 0.8, 0.7], dtype=np.float32)
        keep = nms(boxes, scores, np.array([2, 2, 7]), NMSConfig(max_per_class=1))
        self.assertEqual(keep.tolist(), [0, 2])

    def test_max_detections(self) -> None:
        boxes = np.array([[0, 0, 10, 10], [20, 20, 30, 30], [40, 40, 50, 50]], dtype=np.float32)
        scores = np.array([0.9, 0.8, 0.7], dtype=np.float32)
        keep = nms(boxes, scores, np.array([2, 2, 2]), NMSConfig(max_detections=2))
        self.assertEqual(keep.tolist(), [0, 1])

    def test_empty(self) -> None:
        keep = nms(np.zeros((0, 4)), np.zeros((0,)), np.zeros((0,)), NMSConfig())
        self.assertEqual(keep.shape, (0,))
