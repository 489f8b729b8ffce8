from __future__ import annotations

from dataclasses import dataclass, field
import logging
import os
from pathlib import Path
import shutil
import subprocess
import time
from typing import Mapping, Sequence

from taskcheck.core import ids

logger = logging.getLogger(__name__)


class ToolMissingError(RuntimeError):
    def __init__(self, tool: str) -> None:
        super().__init__(f"Required tool not found on PATH: {tool}")
        self.tool = tool


class SpawnError(RuntimeError):
    """The child process could not be started at all."""

    def __init__(self, cmd: Sequence[str], reason: str) -> None:
        super().__init__(f"Could not start process ({reason}): {' '.join(cmd)}")
        self.cmd = list(cmd)
        self.reason = reason


class ProcessFailedError(RuntimeError):
    def __init__(self, cmd: Sequence[str], returncode: int, stdout: str, stderr: str) -> None:
        super().__init__(f"Process failed with code {returncode}: {' '.join(cmd)}")
        self.cmd = list(cmd)
        self.returncode = returncode
        self.stdout = stdout
        self.stderr = stderr


class ProcessTimeoutError(RuntimeError):
    def __init__(self, cmd: Sequence[str], timeout: float, stdout: str, stderr: str) -> None:
        super().__init__(f"Process timed out after {timeout:g}s: {' '.join(cmd)}")
        self.cmd = list(cmd)
        self.timeout = timeout
        self.stdout = stdout
        self.stderr = stderr


@dataclass(frozen=True)
class InvocationRequest:
    executable: str
    args: tuple[str, ...] = ()
    env: Mapping[str, str] = field(default_factory=dict)
    unset: tuple[str, ...] = ()
    cwd: Path | None = None
    timeout: float | None = None

    @property
    def argv(self) -> list[str]:
        return [self.executable, *self.args]


@dataclass(frozen=True)
class InvocationResult:
    stdout: str
    stderr: str
    returncode: int
    duration_s: float = 0.0
    run_id: str = ""

    @property
    def ok(self) -> bool:
        return self.returncode == 0


def child_env(
    overrides: Mapping[str, str] | None = None,
    unset: Sequence[str] = (),
    base: Mapping[str, str] | None = None,
) -> dict[str, str]:
    """Build the environment for a single child process.

    Works on a copy: neither `base` nor `os.environ` is modified.
    """
    env = dict(os.environ if base is None else base)
    for name in unset:
        env.pop(name, None)
    if overrides:
        env.update(overrides)
    return env


def _as_text(value: str | bytes | None) -> str:
    # TimeoutExpired may carry bytes even when text=True was requested.
    if value is None:
        return ""
    if isinstance(value, bytes):
        return value.decode("utf-8", errors="replace")
    return value


def ensure_tool(name: str) -> str:
    path = shutil.which(name)
    if not path:
        raise ToolMissingError(name)
    return path


def invoke(request: InvocationRequest) -> InvocationResult:
    cmd = request.argv
    run_id = ids.run_id()
    logger.debug("spawn %s run_id=%s timeout=%s", cmd, run_id, request.timeout)
    started = time.monotonic()
    try:
        # subprocess.run kills and reaps the child before re-raising TimeoutExpired.
        proc = subprocess.run(
            cmd,
            env=child_env(request.env, request.unset),
            cwd=request.cwd,
            capture_output=True,
            text=True,
            timeout=request.timeout,
        )
    except subprocess.TimeoutExpired as exc:
        logger.warning("process timed out after %ss: %s", request.timeout, cmd)
        raise ProcessTimeoutError(cmd, float(exc.timeout), _as_text(exc.stdout), _as_text(exc.stderr)) from exc
    except FileNotFoundError as exc:
        raise SpawnError(cmd, "executable not found") from exc
    except PermissionError as exc:
        raise SpawnError(cmd, "permission denied") from exc
    except OSError as exc:
        raise SpawnError(cmd, exc.strerror or str(exc)) from exc
    duration = time.monotonic() - started
    logger.debug("exit %s run_id=%s duration=%.3fs", proc.returncode, run_id, duration)
    return InvocationResult(
        stdout=proc.stdout,
        stderr=proc.stderr,
        returncode=proc.returncode,
        duration_s=duration,
        run_id=run_id,
    )


def run_checked(
    cmd: Sequence[str],
    *,
    env: Mapping[str, str] | None = None,
    unset: Sequence[str] = (),
    cwd: Path | None = None,
    timeout: float | None = None,
) -> InvocationResult:
    if not cmd:
        raise ValueError("cmd must not be empty")
    request = InvocationRequest(
        executable=cmd[0],
        args=tuple(cmd[1:]),
        env=dict(env or {}),
        unset=tuple(unset),
        cwd=cwd,
        timeout=timeout,
    )
    result = invoke(request)
    if result.returncode != 0:
        raise ProcessFailedError(cmd, result.returncode, result.stdout, result.stderr)
    return result
