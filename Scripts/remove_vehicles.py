from __future__ import annotations

import argparse
import logging
import sys
from dataclasses import replace
from pathlib import Path
from typing import Dict, List, Sequence

import cv2

try:
    from tqdm import tqdm  # type: ignore
except Exception:  # pragma: no cover
    tqdm = None

from autokorrektur import (
    PipelineProfile,
    class_ids_for_labels,
    draw_detections,
    load_class_names,
    load_eraser,
    load_pipeline_profile,
    overlay_mask,
)
from autokorrektur.metadata import default_class_names

IMAGE_EXTS = ("jpg", "jpeg", "png", "bmp", "webp")


def _iter_image_paths(inputs: Sequence[str], *, recursive: bool) -> List[Path]:
    exts = {e.lower() for e in IMAGE_EXTS}
    paths: List[Path] = []
    for raw in inputs:
        p = Path(raw)
        if p.is_dir():
            candidates = p.rglob("*") if recursive else p.glob("*")
            paths.extend(c for c in candidates if c.is_file() and c.suffix.lower().lstrip(".") in exts)
        else:
            paths.append(p)
    return sorted({p.resolve() for p in paths})


def _read_image(path: Path):
    img = cv2.imread(str(path), cv2.IMREAD_COLOR)
    if img is None:
        raise FileNotFoundError(f"Could not read image at path: {path}")
    return img


def _write_image(path: Path, image) -> None:
    if not cv2.imwrite(str(path), image):
        raise OSError(f"Failed to write output image: {path}")


def _profile_overrides(args: argparse.Namespace) -> Dict[str, object]:
    mapping = {
        "score": "score_threshold",
        "iou": "iou_threshold",
        "upscale": "upscale_factor",
        "downshift": "downshift_fraction",
        "downshift_mode": "downshift_mode",
        "max_mp": "max_megapixels",
        "passes": "passes",
    }
    out: Dict[str, object] = {}
    for dest, field_name in mapping.items():
        value = getattr(args, dest)
        if value is not None:
            out[field_name] = value
    return out


def main(argv: Sequence[str] = None) -> int:
    parser = argparse.ArgumentParser(description="Remove vehicles from photographs (segment -> mask -> inpaint).")
    parser.add_argument("inputs", nargs="+", help="Image files and/or directories.")
    parser.add_argument("--out-dir", required=True, help="Directory for result images.")
    parser.add_argument("--seg-model", default="models/yolov8n-seg.onnx", help="Segmentation-detection model.")
    parser.add_argument("--inpaint-model", default="models/mi-gan-512.onnx", help="Inpainting model.")
    parser.add_argument("--mask-model", default=None, help="Optional standalone mask-rendering model.")
    parser.add_argument("--config", default=None, help="Pipeline profile JSON; CLI flags override its values.")
    parser.add_argument("--backend", default=None, help="Force backend: onnxruntime / torchscript.")
    parser.add_argument(
        "--onnx-providers",
        default=None,
        help='Comma-separated ORT providers, e.g. "CUDAExecutionProvider,CPUExecutionProvider".',
    )
    parser.add_argument("--score", type=float, default=None, help="Score threshold.")
    parser.add_argument("--iou", type=float, default=None, help="IoU threshold for NMS.")
    parser.add_argument("--upscale", type=float, default=None, help="Mask upscale factor around each box centre.")
    parser.add_argument("--downshift", type=float, default=None, help="Mask downshift as a fraction of height.")
    parser.add_argument("--downshift-mode", choices=("shift", "extend"), default=None)
    parser.add_argument("--max-mp", type=float, default=None, help="Downscale inputs above this many megapixels.")
    parser.add_argument("--passes", type=int, default=None, help="Repeat removal on the result N times.")
    parser.add_argument("--classes", default=None, help='Comma-separated labels to remove, e.g. "car,bus,truck".')
    parser.add_argument("--names", default=None, help="Optional `names:` metadata file (defaults to the 80 COCO labels).")
    parser.add_argument("--save-mask", action="store_true", help="Also write the removal mask per image.")
    parser.add_argument("--save-overlay", action="store_true", help="Also write the mask tinted over the input.")
    parser.add_argument("--save-boxes", action="store_true", help="Also write detections drawn on the result.")
    parser.add_argument("--recursive", action="store_true", help="Recurse into input directories.")
    parser.add_argument("--log-level", default="WARNING", help="Python logging level.")
    args = parser.parse_args(argv)

    logging.basicConfig(level=getattr(logging, str(args.log_level).upper(), logging.WARNING))

    profile = load_pipeline_profile(Path(args.config)) if args.config else PipelineProfile()
    class_names = load_class_names(args.names) if args.names else default_class_names()
    overrides = _profile_overrides(args)
    if args.classes:
        labels = [s for s in str(args.classes).split(",") if s.strip()]
        overrides["target_class_ids"] = tuple(class_ids_for_labels(class_names, labels))
    if overrides:
        profile = replace(profile, **overrides)

    onnx_providers = None
    if args.onnx_providers:
        onnx_providers = [p.strip() for p in str(args.onnx_providers).split(",") if p.strip()]

    eraser = load_eraser(
        args.seg_model,
        args.inpaint_model,
        mask_model=args.mask_model,
        profile=profile,
        backend=args.backend,
        onnx_providers=onnx_providers,
    )

    paths = _iter_image_paths(args.inputs, recursive=bool(args.recursive))
    if not paths:
        print("No input images found.")
        return 1

    out_dir = Path(args.out_dir)
    out_dir.mkdir(parents=True, exist_ok=True)

    if tqdm is None:
        print("Note: tqdm is not installed; progress bar disabled.")
    # Loaded inputs by name, kept until the result is written.
    inputs: Dict[str, object] = {}

    def load(path: Path):
        img = _read_image(path)
        inputs[path.name] = img
        return img

    results = eraser.process_batch(((p.name, p) for p in paths), loader=load)
    iterator = tqdm(results, total=len(paths), unit="img") if tqdm is not None else results

    done = 0
    failed = []
    for item in iterator:
        original = inputs.pop(item.name, None)
        if not item.ok:
            failed.append(item)
            continue
        stem = Path(item.name).stem
        res = item.result
        try:
            _write_image(out_dir / f"{stem}_result.jpg", res.image)
            if args.save_mask:
                _write_image(out_dir / f"{stem}_mask.png", res.mask)
            if args.save_overlay and original is not None:
                _write_image(out_dir / f"{stem}_overlay.jpg", overlay_mask(original, res.mask))
            if args.save_boxes:
                boxes = draw_detections(
                    res.image, res.detections, res.transform, max_size=profile.model_width, class_names=class_names
                )
                _write_image(out_dir / f"{stem}_boxes.jpg", boxes)
        except OSError as e:
            failed.append(replace(item, result=None, error=e))
            continue
        done += 1

    print(f"Wrote {done} image(s) to: {out_dir}")
    for item in failed:
        print(f"FAILED {item.name}: {item.error}", file=sys.stderr)
    return 0 if not failed else 2


if __name__ == "__main__":
    raise SystemExit(main())
