from __future__ import annotations

from dataclasses import asdict
from pathlib import Path
from typing import Any


def _normalize(obj: Any) -> Any:
    if hasattr(obj, "value"):
        return obj.value
    if isinstance(obj, Path):
        return str(obj)
    if isinstance(obj, dict):
        return {str(k): _normalize(v) for k, v in obj.items()}
    if isinstance(obj, (list, tuple)):
        return [_normalize(v) for v in obj]
    return obj


def to_json_safe_dict(obj: Any) -> dict[str, Any]:
    """
    Convert a dataclass object into a JSON safe dict.

    Enums become their values, tuples become lists, paths become strings.
    This is intended for reports only.
    """
    raw = asdict(obj)
    normalized = _normalize(raw)
    if not isinstance(normalized, dict):
        raise TypeError("expected dict after normalization")
    return normalized


def pipeline_run_to_json(run: Any) -> dict[str, Any]:
    """
    PipelineRun report shape.

    Adds the terminal state so consumers do not need to derive it.
    """
    payload = to_json_safe_dict(run)
    payload["terminal_state"] = run.terminal_state
    return payload
