from __future__ import annotations

import json
from pathlib import Path
from typing import Any


def _default(value: Any) -> Any:
    if isinstance(value, Path):
        return value.as_posix()
    raise TypeError(f"Object of type {type(value).__name__} is not JSON serializable")


def dumps(obj: dict[str, Any]) -> str:
    """Sorted, indented JSON with a trailing newline; paths become POSIX strings."""
    return json.dumps(obj, ensure_ascii=False, indent=2, sort_keys=True, default=_default) + "\n"
