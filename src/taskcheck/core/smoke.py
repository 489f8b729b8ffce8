"""Color smoke check for command-line tools.

Runs a tool with a name filter that matches nothing and checks that its piped
stdout carries no gray ANSI escape. The forced-colour variant is the negative
control: it proves the assertion can fail.
"""

from __future__ import annotations

from dataclasses import dataclass
import logging
from pathlib import Path
import sys
from typing import Sequence

from taskcheck.core import colors
from taskcheck.core.process import (
    InvocationRequest,
    InvocationResult,
    ProcessFailedError,
    invoke,
)

logger = logging.getLogger(__name__)

DEFAULT_FILTER = "missing-test"
DEFAULT_GREP_FLAG = "--grep"
DEFAULT_TIMEOUT = 4.0


class ColorLeakError(AssertionError):
    def __init__(self, cmd: Sequence[str], sequence: str, stdout: str) -> None:
        super().__init__(f"Color codes leaked to non-terminal output ({sequence!r}): {' '.join(cmd)}")
        self.cmd = list(cmd)
        self.sequence = sequence
        self.stdout = stdout


class ColorMissingError(AssertionError):
    def __init__(self, cmd: Sequence[str], sequence: str, stdout: str) -> None:
        super().__init__(
            f"Expected {sequence!r} with {colors.FORCE_COLOR_ENV} set, but output was plain: {' '.join(cmd)}"
        )
        self.cmd = list(cmd)
        self.sequence = sequence
        self.stdout = stdout


@dataclass(frozen=True)
class SmokeReport:
    request: InvocationRequest
    result: InvocationResult
    sequence: str
    forced: bool
    found: bool

    def to_dict(self) -> dict[str, object]:
        return {
            "cmd": self.request.argv,
            "forced": self.forced,
            "sequence": self.sequence,
            "found": self.found,
            "returncode": self.result.returncode,
            "duration_ms": round(self.result.duration_s * 1000),
            "run_id": self.result.run_id,
        }


def default_tool() -> list[str]:
    return [sys.executable, "-m", "taskcheck.cli", "run"]


def build_request(
    tool: Sequence[str] | None = None,
    *,
    grep_flag: str = DEFAULT_GREP_FLAG,
    filter_value: str = DEFAULT_FILTER,
    force_color: bool = False,
    timeout: float = DEFAULT_TIMEOUT,
    cwd: Path | None = None,
) -> InvocationRequest:
    argv = list(tool) if tool else default_tool()
    if force_color:
        env = {colors.FORCE_COLOR_ENV: "1"}
        unset: tuple[str, ...] = ()
    else:
        # Leave the decision to the tool's own terminal detection.
        env = {}
        unset = (colors.FORCE_COLOR_ENV,)
    return InvocationRequest(
        executable=argv[0],
        args=(*argv[1:], grep_flag, filter_value),
        env=env,
        unset=unset,
        cwd=cwd,
        timeout=timeout,
    )


def _run(request: InvocationRequest, sequence: str) -> SmokeReport:
    result = invoke(request)
    if result.returncode != 0:
        raise ProcessFailedError(request.argv, result.returncode, result.stdout, result.stderr)
    found = colors.contains_sequence(result.stdout, sequence)
    logger.info("smoke %s found=%s run_id=%s", request.argv, found, result.run_id)
    return SmokeReport(
        request=request,
        result=result,
        sequence=sequence,
        forced=colors.FORCE_COLOR_ENV in request.env,
        found=found,
    )


def check_no_color(
    tool: Sequence[str] | None = None,
    *,
    grep_flag: str = DEFAULT_GREP_FLAG,
    filter_value: str = DEFAULT_FILTER,
    timeout: float = DEFAULT_TIMEOUT,
    cwd: Path | None = None,
    sequence: str = colors.GRAY,
) -> SmokeReport:
    request = build_request(tool, grep_flag=grep_flag, filter_value=filter_value, timeout=timeout, cwd=cwd)
    report = _run(request, sequence)
    if report.found:
        raise ColorLeakError(request.argv, sequence, report.result.stdout)
    return report


def check_color_forced(
    tool: Sequence[str] | None = None,
    *,
    grep_flag: str = DEFAULT_GREP_FLAG,
    filter_value: str = DEFAULT_FILTER,
    timeout: float = DEFAULT_TIMEOUT,
    cwd: Path | None = None,
    sequence: str = colors.GRAY,
) -> SmokeReport:
    request = build_request(
        tool,
        grep_flag=grep_flag,
        filter_value=filter_value,
        force_color=True,
        timeout=timeout,
        cwd=cwd,
    )
    report = _run(request, sequence)
    if not report.found:
        raise ColorMissingError(request.argv, sequence, report.result.stdout)
    return report
