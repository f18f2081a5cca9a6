from __future__ import annotations

from typing import Dict, List, Sequence, Tuple

# 80-class label set in the order of the common object-detection benchmark.
COCO_CLASS_NAMES: Tuple[str, ...] = (
    "person", "bicycle", "car", "motorcycle", "airplane", "bus", "train", "truck",
    "boat", "traffic light", "fire hydrant", "stop sign", "parking meter", "bench",
    "bird", "cat", "dog", "horse", "sheep", "cow", "elephant", "bear", "zebra",
    "giraffe", "backpack", "umbrella", "handbag", "tie", "suitcase", "frisbee",
    "skis", "snowboard", "sports ball", "kite", "baseball bat", "baseball glove",
    "skateboard", "surfboard", "tennis racket", "bottle", "wine glass", "cup",
    "fork", "knife", "spoon", "bowl", "banana", "apple", "sandwich", "orange",
    "broccoli", "carrot", "hot dog", "pizza", "donut", "cake", "chair", "couch",
    "potted plant", "bed", "dining table", "toilet", "tv", "laptop", "mouse",
    "remote", "keyboard", "cell phone", "microwave", "oven", "toaster", "sink",
    "refrigerator", "book", "clock", "vase", "scissors", "teddy bear", "hair drier",
    "toothbrush",
)

# car, motorcycle, truck
VEHICLE_CLASS_IDS: Tuple[int, ...] = (2, 3, 7)


def default_class_names() -> Dict[int, str]:
    return dict(enumerate(COCO_CLASS_NAMES))


def class_ids_for_labels(class_names: Dict[int, str], labels: Sequence[str]) -> List[int]:
    """
    Resolve label names to class ids (case-insensitive). Unknown labels raise ValueError.
    """

    wanted = {str(s).strip().lower() for s in labels if str(s).strip()}
    ids: List[int] = []
    found = set()
    for cid, name in class_names.items():
        key = str(name).strip().lower()
        if key in wanted:
            ids.append(int(cid))
            found.add(key)
    missing = sorted(wanted - found)
    if missing:
        raise ValueError(f"Unknown class labels: {missing}")
    return sorted(set(ids))


def load_class_names(metadata_path: str) -> Dict[int, str]:
    """
    Load class names from a lightweight `names:` mapping file:

        names:
          0: person
          1: bicycle
          ...

    This function intentionally avoids adding a PyYAML dependency.
    """

    names: Dict[int, str] = {}
    in_names = False

    with open(metadata_path, "r", encoding="utf-8") as f:
        for raw in f:
            line = raw.strip()
            if not line or line.startswith("#"):
                continue
            if line == "names:":
                in_names = True
                continue
            if not in_names:
                continue

            # Parse "id: label"
            if ":" not in line:
                continue
            left, right = line.split(":", 1)
            left = left.strip()
            right = right.strip().strip("'").strip('"')
            if not left.isdigit():
                continue
            names[int(left)] = right

    return names
