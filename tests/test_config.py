import json
import tempfile
import unittest
from pathlib import Path

import numpy as np

from autokorrektur.config import PipelineProfile, load_pipeline_profile, profile_from_dict


class TestPipelineProfile(unittest.TestCase):
    def _write_profile(self, payload) -> Path:
        tmpdir = tempfile.TemporaryDirectory()
        self.addCleanup(tmpdir.cleanup)
        path = Path(tmpdir.name) / "profile.json"
        path.write_text(json.dumps(payload), encoding="utf-8")
        return path

    def test_load_ok(self) -> None:
        path = self._write_profile(
            {
                "schema_version": 1,
                "score_threshold": 0.35,
                "iou_threshold": 0.5,
                "target_class_ids": [2, 5],
                "downshift_mode": "extend",
                "max_megapixels": 4,
                "passes": 2,
                "inpaint_dtype": "float32",
                "notes": "street scenes",
            }
        )
        profile = load_pipeline_profile(path)
        self.assertIsInstance(profile, PipelineProfile)
        self.assertEqual(profile.score_threshold, 0.35)
        self.assertEqual(profile.iou_threshold, 0.5)
        self.assertEqual(profile.target_class_ids, (2, 5))
        self.assertEqual(profile.downshift_mode, "extend")
        self.assertEqual(profile.max_megapixels, 4.0)
        self.assertEqual(profile.passes, 2)
        self.assertEqual(profile.notes, "street scenes")

    def test_defaults(self) -> None:
        profile = profile_from_dict({"schema_version": 1})
        self.assertEqual(profile, PipelineProfile())
        self.assertEqual(profile.target_class_ids, (2, 3, 7))
        self.assertEqual(profile.upscale_factor, 1.2)
        self.assertEqual(profile.downshift_fraction, 0.03)

    def test_unknown_keys_rejected(self) -> None:
        with self.assertRaises(ValueError):
            profile_from_dict({"schema_version": 1, "extra": 123})

    def test_schema_version_required(self) -> None:
        with self.assertRaises(ValueError):
            profile_from_dict({"score_threshold": 0.3})
        with self.assertRaises(ValueError):
            profile_from_dict({"schema_version": 2})

    def test_invalid_values_rejected(self) -> None:
        bad = [
            {"iou_threshold": 1.5},
            {"score_threshold": -0.1},
            {"passes": 0},
            {"passes": True},
            {"stride": "32"},
            {"downshift_mode": "up"},
            {"downshift_fraction": 1.0},
            {"upscale_factor": 0},
            {"max_megapixels": -1},
            {"target_class_ids": []},
            {"target_class_ids": ["car"]},
            {"skip_inpaint_without_detections": "yes"},
            {"inpaint_dtype": "float16"},
            {"model_width": 16},
        ]
        for extra in bad:
            with self.subTest(extra=extra):
                with self.assertRaises(ValueError):
                    profile_from_dict({"schema_version": 1, **extra})

    def test_all_classes(self) -> None:
        profile = profile_from_dict({"schema_version": 1, "target_class_ids": None})
        self.assertIsNone(profile.target_class_ids)
        _, post_cfg, _, _ = profile.stage_configs()
        self.assertIsNone(post_cfg.class_ids)

    def test_missing_file(self) -> None:
        with self.assertRaises(FileNotFoundError):
            load_pipeline_profile(Path(tempfile.gettempdir()) / "does-not-exist-profile.json")

    def test_invalid_json(self) -> None:
        tmpdir = tempfile.TemporaryDirectory()
        self.addCleanup(tmpdir.cleanup)
        path = Path(tmpdir.name) / "profile.json"
        path.write_text("{not json", encoding="utf-8")
        with self.assertRaises(ValueError):
            load_pipeline_profile(path)

    def test_non_object_rejected(self) -> None:
        with self.assertRaises(ValueError):
            load_pipeline_profile(self._write_profile([1, 2, 3]))

    def test_stage_configs(self) -> None:
        profile = PipelineProfile(
            model_width=320,
            model_height=320,
            score_threshold=0.4,
            upscale_factor=1.5,
            downshift_fraction=0.0,
            max_megapixels=2.0,
            inpaint_dtype="float32",
        )
        letterbox_cfg, post_cfg, mask_cfg, inpaint_cfg = profile.stage_configs()
        self.assertEqual((letterbox_cfg.model_width, letterbox_cfg.model_height), (320, 320))
        self.assertEqual(letterbox_cfg.max_megapixels, 2.0)
        self.assertEqual(post_cfg.score_threshold, 0.4)
        self.assertEqual(post_cfg.max_size, 320.0)
        self.assertEqual(mask_cfg.upscale_factor, 1.5)
        self.assertEqual(mask_cfg.downshift_fraction, 0.0)
        self.assertEqual(mask_cfg.max_size, 320)
        self.assertIs(inpaint_cfg.dtype, np.float32)
