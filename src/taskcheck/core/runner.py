from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
import logging
from typing import Iterable, Sequence

from taskcheck.core.catalog import Catalog, CatalogError, Task
from taskcheck.core.process import (
    InvocationRequest,
    ProcessTimeoutError,
    SpawnError,
    invoke,
)

logger = logging.getLogger(__name__)

# Shell conventions for "command not found" and "timed out".
SPAWN_FAILED_CODE = 127
TIMEOUT_CODE = 124


@dataclass(frozen=True)
class TaskOutcome:
    name: str
    cmd: list[str]
    returncode: int
    duration_s: float = 0.0
    stdout: str = ""
    stderr: str = ""
    error: str | None = None
    run_id: str = ""

    @property
    def ok(self) -> bool:
        return self.returncode == 0

    def to_dict(self) -> dict[str, object]:
        return {
            "name": self.name,
            "cmd": self.cmd,
            "returncode": self.returncode,
            "duration_ms": round(self.duration_s * 1000),
            "error": self.error,
            "run_id": self.run_id,
        }


def exit_code(outcomes: Iterable[TaskOutcome]) -> int:
    for outcome in outcomes:
        if outcome.returncode != 0:
            return outcome.returncode
    return 0


def run_task(catalog: Catalog, name: str) -> list[TaskOutcome]:
    return _run(catalog, catalog.resolve(name))


def run_tasks(catalog: Catalog, names: Sequence[str]) -> list[TaskOutcome]:
    """Run tasks one after another, stopping after the first failure."""
    tasks = [catalog.resolve(name) for name in names]
    return _run_series(catalog, tasks)


def run_matching(catalog: Catalog, pattern: str) -> list[TaskOutcome]:
    """Run every runnable task whose name or description contains `pattern`.

    Matching nothing is not an error; the result is simply empty.
    """
    matched = [task for task in catalog.grep(pattern) if task.runnable]
    logger.info("grep %r matched %d task(s)", pattern, len(matched))
    outcomes: list[TaskOutcome] = []
    for task in matched:
        outcomes.extend(_run(catalog, task))
    return outcomes


def _run(catalog: Catalog, task: Task) -> list[TaskOutcome]:
    if task.runnable:
        return [_run_single(catalog, task)]
    children = [catalog.resolve(child) for child in task.children]
    if task.kind == "series":
        return _run_series(catalog, children)
    return _run_concurrent(catalog, children)


def _run_series(catalog: Catalog, tasks: Sequence[Task]) -> list[TaskOutcome]:
    outcomes: list[TaskOutcome] = []
    for task in tasks:
        current = _run(catalog, task)
        outcomes.extend(current)
        if exit_code(current) != 0:
            logger.info("stopping series after %s failed", task.name)
            break
    return outcomes


def _run_concurrent(catalog: Catalog, tasks: Sequence[Task]) -> list[TaskOutcome]:
    workers = max(1, min(catalog.settings.max_workers, len(tasks)))
    with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="taskcheck") as pool:
        futures = [pool.submit(_run, catalog, task) for task in tasks]
        return [outcome for future in futures for outcome in future.result()]


def _run_single(catalog: Catalog, task: Task) -> TaskOutcome:
    cmd = catalog.command(task)
    if not cmd:
        raise CatalogError(f"Task {task.name!r} has an empty command")
    timeout = task.timeout or catalog.settings.timeout
    request = InvocationRequest(
        executable=cmd[0],
        args=tuple(cmd[1:]),
        env=dict(task.env),
        cwd=catalog.root,
        timeout=timeout,
    )
    logger.info("run %s: %s", task.name, " ".join(cmd))
    try:
        result = invoke(request)
    except SpawnError as exc:
        logger.error("task %s could not start: %s", task.name, exc)
        return TaskOutcome(
            name=task.name,
            cmd=cmd,
            returncode=SPAWN_FAILED_CODE,
            stderr=str(exc),
            error="SPAWN_FAILED",
        )
    except ProcessTimeoutError as exc:
        logger.error("task %s timed out after %ss", task.name, exc.timeout)
        return TaskOutcome(
            name=task.name,
            cmd=cmd,
            returncode=TIMEOUT_CODE,
            duration_s=exc.timeout,
            stdout=exc.stdout,
            stderr=exc.stderr,
            error="TIMEOUT",
        )
    return TaskOutcome(
        name=task.name,
        cmd=cmd,
        returncode=result.returncode,
        duration_s=result.duration_s,
        stdout=result.stdout,
        stderr=result.stderr,
        run_id=result.run_id,
    )
