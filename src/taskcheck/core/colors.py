"""Colour policy for human output and helpers for inspecting ANSI escapes."""

from __future__ import annotations

import os
import re
from typing import Mapping, TextIO

import typer

FORCE_COLOR_ENV = "FORCE_COLOR"
NO_COLOR_ENV = "NO_COLOR"

# Bright black (gray), rendered by terminals for `fg="bright_black"`.
GRAY = "\x1b[90m"

_SGR_RE = re.compile(r"\x1b\[[0-9;]*m")


def color_enabled(stream: TextIO, env: Mapping[str, str] | None = None) -> bool:
    """Decide whether ANSI colour may be written to `stream`.

    `FORCE_COLOR` wins over everything ("0" and "false" force it off, any other
    value forces it on). Otherwise a non-empty `NO_COLOR` disables colour, and
    the remaining case follows terminal detection.
    """
    env = os.environ if env is None else env
    if FORCE_COLOR_ENV in env:
        return env[FORCE_COLOR_ENV].strip().lower() not in {"0", "false"}
    if env.get(NO_COLOR_ENV):
        return False
    isatty = getattr(stream, "isatty", None)
    return bool(isatty and isatty())


def find_sequences(text: str) -> list[str]:
    return _SGR_RE.findall(text)


def contains_sequence(text: str, sequence: str = GRAY) -> bool:
    return sequence in text


def strip_ansi(text: str) -> str:
    return _SGR_RE.sub("", text)


def muted(text: str) -> str:
    return typer.style(text, fg="bright_black")


def passed(text: str) -> str:
    return typer.style(text, fg="green")


def failed(text: str) -> str:
    return typer.style(text, fg="red")
