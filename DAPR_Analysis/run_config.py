from __future__ import annotations

import argparse
import json
from pathlib import Path
from typing import Dict, List, Sequence


def load_run_config(path: Path) -> Dict[str, object]:
    if not path.exists():
        raise FileNotFoundError(f"Run config not found: {path}")
    raw = path.read_text(encoding="utf-8")
    try:
        payload = json.loads(raw)
    except json.JSONDecodeError as exc:
        raise ValueError(f"Invalid run config JSON: {path}") from exc
    if not isinstance(payload, dict):
        raise ValueError("Run config must be a JSON object")
    return payload


def collect_cli_dests(parser: argparse.ArgumentParser, argv: Sequence[str]) -> set[str]:
    """
    Dest names of the options given explicitly on the command line; those
    win over run config values.
    """

    dests: set[str] = set()
    for opt, action in parser._option_string_actions.items():
        for arg in argv:
            if arg == opt or arg.startswith(f"{opt}="):
                dests.add(action.dest)
                break
    return dests


def _coerce_str_list(value: object, key: str) -> List[str]:
    if isinstance(value, str):
        value = value.strip()
        if not value:
            raise ValueError(f"{key} must not be an empty string")
        return [value]
    if isinstance(value, list) and all(isinstance(item, str) for item in value):
        cleaned = [item.strip() for item in value]
        if not cleaned or any(not item for item in cleaned):
            raise ValueError(f"{key} must not contain empty strings")
        return cleaned
    raise ValueError(f"{key} must be a string or list of strings")


STR_KEYS = {"store", "profile", "model", "metadata", "out_dir"}
INT_KEYS = {"imgsz", "seed"}
FLOAT_KEYS = {"conf", "iou", "min_area", "min_ink", "timeout"}
BOOL_KEYS = {"placeholder", "no_ink_filter", "save_annotated", "warm_up", "progress"}


def apply_run_config(
    *,
    args: argparse.Namespace,
    payload: Dict[str, object],
    cli_dests: set[str],
    parser: argparse.ArgumentParser,
) -> None:
    allowed = STR_KEYS | INT_KEYS | FLOAT_KEYS | BOOL_KEYS | {"onnx_providers"}
    if "config" in payload:
        raise ValueError("run config must not include the 'config' key")
    if "images" in payload or "command" in payload:
        raise ValueError("run config must not set the command or its positional arguments")
    unknown = sorted(k for k in payload.keys() if k not in allowed)
    if unknown:
        raise ValueError(f"Unknown run config keys: {unknown}")

    known_dests = {action.dest for action in parser._actions if action.dest != "help"}

    for key, value in payload.items():
        if key in cli_dests:
            continue
        if value is None:
            continue
        if key not in known_dests:
            continue
        if key == "onnx_providers":
            if isinstance(value, list):
                value = _coerce_str_list(value, key)
                setattr(args, key, ",".join(value))
            elif isinstance(value, str) and value.strip():
                setattr(args, key, value)
            else:
                raise ValueError("onnx_providers must be a non-empty string or list of strings")
            continue
        if key in STR_KEYS:
            if not isinstance(value, str) or not value.strip():
                raise ValueError(f"{key} must be a non-empty string")
            setattr(args, key, value)
            continue
        if key in BOOL_KEYS:
            if not isinstance(value, bool):
                raise ValueError(f"{key} must be a boolean")
            setattr(args, key, value)
            continue
        if key in INT_KEYS:
            if isinstance(value, bool) or not isinstance(value, (int, float)):
                raise ValueError(f"{key} must be an integer")
            if isinstance(value, float) and not value.is_integer():
                raise ValueError(f"{key} must be an integer")
            setattr(args, key, int(value))
            continue
        if key in FLOAT_KEYS:
            if isinstance(value, bool) or not isinstance(value, (int, float)):
                raise ValueError(f"{key} must be a number")
            setattr(args, key, float(value))
            continue
        raise ValueError(f"Unsupported run config key: {key}")
