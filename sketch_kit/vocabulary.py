from __future__ import annotations

from pathlib import Path
from typing import Dict, Tuple, Union

# Positional: class ids are indices into this tuple and are persisted with
# every detection. Reordering needs a migration of stored class_id values.
CLASS_NAMES: Tuple[str, ...] = ("person", "rain", "umbrella", "lightning", "cloud", "puddle")

NUM_CLASSES = len(CLASS_NAMES)


def class_name_for(class_id: int) -> str:
    if not 0 <= int(class_id) < NUM_CLASSES:
        raise ValueError(f"class_id {class_id} outside vocabulary of {NUM_CLASSES} classes")
    return CLASS_NAMES[int(class_id)]


def class_id_for(name: str) -> int:
    key = str(name).strip().lower()
    try:
        return CLASS_NAMES.index(key)
    except ValueError:
        raise ValueError(f"Unknown category {name!r}; expected one of {list(CLASS_NAMES)}") from None


def load_class_names(metadata_path: Union[str, Path]) -> Dict[int, str]:
    """
    Load class names from a model's `metadata.yaml`:

        names:
          0: person
          1: rain
          ...

    Only the `names:` block is read, so no YAML dependency is needed.
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
            if ":" not in line:
                continue
            left, right = line.split(":", 1)
            left = left.strip()
            right = right.strip().strip("'").strip('"')
            if not left.isdigit():
                # Next top-level key ends the block.
                if not raw.startswith((" ", "\t")):
                    break
                continue
            names[int(left)] = right

    return names


def check_class_names(names: Dict[int, str]) -> None:
    """
    Raise if a model's class mapping disagrees with the fixed vocabulary.
    """

    expected = {i: n for i, n in enumerate(CLASS_NAMES)}
    normalized = {int(k): str(v).strip().lower() for k, v in names.items()}
    if normalized != expected:
        raise ValueError(f"Model class names {normalized} do not match vocabulary {expected}")
