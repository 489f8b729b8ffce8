from __future__ import annotations

import shlex
import sys
from pathlib import Path

PY = shlex.quote(sys.executable)

SAMPLE_CATALOG = f"""
[settings]
timeout = 30

[tasks.hello]
script = "{PY} -c print(1)"
description = "Say hello"

[tasks.bye]
script = "{PY} -c print(2)"
description = "Say goodbye"

[tasks.greet]
series = ["hello", "bye"]

[tasks.broken]
script = "{PY} -c 'raise SystemExit(3)'"
description = "Always fails"
"""


def write_catalog(directory: Path, text: str = SAMPLE_CATALOG) -> Path:
    path = directory / "taskcheck.toml"
    path.write_text(text, encoding="utf-8")
    return path
