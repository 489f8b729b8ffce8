"""Task catalog: named command lines loaded from a TOML file.

Tables under `[tasks]` nest into dotted names (`[tasks.test.unit]` is
`test.unit`). A table holding one of `script`, `module`, `series` or
`concurrent` is a task; any other table is a group. Running a group name runs
its `default` child. `[[discover]]` entries turn matching files into one task
per file.

A `script` is an argv string, not shell syntax: it is split with `shlex` and
executed without a shell. Pipes, `&&` chains, globbing and `VAR=value`
prefixes are not interpreted. Use `env` for variables and `series` for chains,
or spell the shell out (`script = "sh -c 'a && b'"`).
"""

from __future__ import annotations

from dataclasses import dataclass, field
import os
from pathlib import Path
import shlex
import sys
import tomllib
from typing import Any, Mapping

from taskcheck.core import config

DEFAULT_CATALOG_NAME = "taskcheck.toml"
DEFAULT_COVERAGE_COMMAND = "coverage run --parallel-mode --data-file=.coverage.{name}"

BODY_KEYS = ("script", "module", "series", "concurrent")
OPTION_KEYS = ("args", "description", "hidden", "env", "timeout")
DISCOVER_KEYS = ("prefix", "glob", "strip", "script", "module", "args", "description", "hidden", "env", "timeout")

_TRUTHY = {"1", "true", "yes", "on"}


class CatalogError(ValueError):
    pass


class TaskNotFoundError(LookupError):
    def __init__(self, name: str) -> None:
        super().__init__(f"No task named {name!r}")
        self.name = name


class AmbiguousTaskError(LookupError):
    def __init__(self, name: str, candidates: list[str]) -> None:
        super().__init__(f"Task name {name!r} is ambiguous: {', '.join(candidates)}")
        self.name = name
        self.candidates = candidates


@dataclass(frozen=True)
class Task:
    name: str
    kind: str
    script: str | None = None
    module: str | None = None
    args: str = ""
    children: tuple[str, ...] = ()
    description: str = ""
    hidden: bool = False
    env: Mapping[str, str] = field(default_factory=dict)
    timeout: float | None = None

    @property
    def runnable(self) -> bool:
        return self.kind in ("script", "module")

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {"name": self.name, "kind": self.kind, "description": self.description}
        if self.script is not None:
            out["script"] = self.script
        if self.module is not None:
            out["module"] = self.module
            out["args"] = self.args
        if self.children:
            out["children"] = list(self.children)
        return out


@dataclass(frozen=True)
class Settings:
    timeout: float | None = None
    max_workers: int = 4
    coverage_env: str = "COVERAGE"
    coverage_command: str = DEFAULT_COVERAGE_COMMAND


@dataclass
class Catalog:
    tasks: dict[str, Task]
    settings: Settings = field(default_factory=Settings)
    path: Path | None = None

    @property
    def root(self) -> Path | None:
        if self.path is None or not self.path.exists():
            return None
        return self.path.parent

    def names(self, *, include_hidden: bool = False) -> list[str]:
        return [name for name, task in self.tasks.items() if include_hidden or not task.hidden]

    def resolve(self, name: str) -> Task:
        if name in self.tasks:
            return self.tasks[name]
        default = f"{name}.default"
        if default in self.tasks:
            return self.tasks[default]

        wanted = name.split(".")
        candidates = [candidate for candidate in self.tasks if _abbreviates(wanted, candidate.split("."))]
        if not candidates:
            raise TaskNotFoundError(name)
        if len(candidates) > 1:
            raise AmbiguousTaskError(name, sorted(candidates))
        return self.tasks[candidates[0]]

    def grep(self, pattern: str, *, include_hidden: bool = False) -> list[Task]:
        return [
            task
            for task in self.tasks.values()
            if (include_hidden or not task.hidden) and (pattern in task.name or pattern in task.description)
        ]

    def coverage_active(self, env: Mapping[str, str] | None = None) -> bool:
        env = os.environ if env is None else env
        return env.get(self.settings.coverage_env, "").strip().lower() in _TRUTHY

    def command(self, task: Task, env: Mapping[str, str] | None = None) -> list[str]:
        """Return the argv that runs `task`."""
        if task.kind == "script":
            return _split(task.script or "", f"Task {task.name!r}: script")
        if task.kind == "module":
            argv = [sys.executable, "-m"]
            if self.coverage_active(env):
                wrapper = _expand(self.settings.coverage_command, "settings.coverage_command", name=task.name)
                argv += [*_split(wrapper, "settings.coverage_command"), "-m"]
            return [*argv, task.module or "", *_split(task.args, f"Task {task.name!r}: args")]
        raise CatalogError(f"Task {task.name!r} is a {task.kind} task and has no command of its own")


def _split(text: str, where: str) -> list[str]:
    try:
        return shlex.split(text)
    except ValueError as exc:
        raise CatalogError(f"{where} is not a valid command line ({exc}): {text!r}") from exc


def _expand(template: str, where: str, **values: str) -> str:
    try:
        return template.format(**values)
    except (KeyError, IndexError, ValueError) as exc:
        allowed = ", ".join("{" + key + "}" for key in values)
        raise CatalogError(f"{where} has an invalid placeholder ({exc!s}); allowed: {allowed}: {template!r}") from exc


def _abbreviates(wanted: list[str], segments: list[str]) -> bool:
    if segments and segments[-1] == "default" and len(segments) == len(wanted) + 1:
        segments = segments[:-1]
    if len(segments) != len(wanted):
        return False
    return all(segment.startswith(part) for part, segment in zip(wanted, segments))


def catalog_path(explicit: str | Path | None = None) -> Path:
    if explicit:
        return Path(explicit).expanduser()
    override = os.environ.get("TASKCHECK_CATALOG")
    if override:
        return Path(override).expanduser()
    try:
        configured = config.catalog_file()
    except config.ConfigError as exc:
        raise CatalogError(str(exc)) from exc
    return configured if configured is not None else Path.cwd() / DEFAULT_CATALOG_NAME


def load_catalog(path: str | Path | None = None) -> Catalog:
    resolved = catalog_path(path)
    if not resolved.exists():
        return Catalog(tasks={}, path=resolved)
    try:
        data = tomllib.loads(resolved.read_text(encoding="utf-8"))
    except (OSError, tomllib.TOMLDecodeError) as exc:
        raise CatalogError(f"Invalid catalog file: {resolved}") from exc
    return parse_catalog(data, root=resolved.parent, path=resolved)


def parse_catalog(data: Mapping[str, Any], *, root: Path, path: Path | None = None) -> Catalog:
    unknown = set(data) - {"settings", "tasks", "discover"}
    if unknown:
        raise CatalogError(f"Unknown catalog sections: {', '.join(sorted(unknown))}")

    tasks: dict[str, Task] = {}
    tables = data.get("tasks", {})
    if not isinstance(tables, dict):
        raise CatalogError("[tasks] must be a table")
    _walk(tables, "", tasks)

    discover = data.get("discover", [])
    if not isinstance(discover, list):
        raise CatalogError("discover must be an array of tables")
    for entry in discover:
        _discover(entry, root, tasks)

    catalog = Catalog(tasks=tasks, settings=_parse_settings(data.get("settings", {})), path=path)
    _check_references(catalog)
    return catalog


def _parse_settings(raw: Any) -> Settings:
    if not isinstance(raw, dict):
        raise CatalogError("[settings] must be a table")
    timeout = raw.get("timeout")
    if timeout is not None and (isinstance(timeout, bool) or not isinstance(timeout, (int, float)) or timeout <= 0):
        raise CatalogError(f"settings.timeout must be a positive number, got {timeout!r}")
    max_workers = raw.get("max_workers", Settings.max_workers)
    if isinstance(max_workers, bool) or not isinstance(max_workers, int) or max_workers < 1:
        raise CatalogError(f"settings.max_workers must be a positive integer, got {max_workers!r}")
    coverage_command = str(raw.get("coverage_command", Settings.coverage_command))
    _split(_expand(coverage_command, "settings.coverage_command", name="task"), "settings.coverage_command")
    return Settings(
        timeout=float(timeout) if timeout is not None else None,
        max_workers=max_workers,
        coverage_env=str(raw.get("coverage_env", Settings.coverage_env)),
        coverage_command=coverage_command,
    )


def _walk(table: Mapping[str, Any], prefix: str, out: dict[str, Task]) -> None:
    for key, value in table.items():
        name = f"{prefix}.{key}" if prefix else key
        if isinstance(value, str):
            out[name] = _parse_task(name, {"script": value})
        elif isinstance(value, dict):
            if any(body in value for body in BODY_KEYS):
                out[name] = _parse_task(name, value)
            else:
                _walk(value, name, out)
        else:
            raise CatalogError(f"Task {name!r} must be a string or a table, got {type(value).__name__}")


def _parse_task(name: str, raw: Mapping[str, Any]) -> Task:
    unknown = set(raw) - set(BODY_KEYS) - set(OPTION_KEYS)
    if unknown:
        raise CatalogError(f"Task {name!r} has unknown keys: {', '.join(sorted(unknown))}")
    bodies = [body for body in BODY_KEYS if body in raw]
    if len(bodies) != 1:
        raise CatalogError(f"Task {name!r} must define exactly one of {', '.join(BODY_KEYS)}")
    kind = bodies[0]

    env = raw.get("env", {})
    if not isinstance(env, dict) or not all(isinstance(v, str) for v in env.values()):
        raise CatalogError(f"Task {name!r}: env must be a table of strings")
    timeout = raw.get("timeout")
    if timeout is not None and (isinstance(timeout, bool) or not isinstance(timeout, (int, float)) or timeout <= 0):
        raise CatalogError(f"Task {name!r}: timeout must be a positive number")
    if "args" in raw and kind != "module":
        raise CatalogError(f"Task {name!r}: args only applies to module tasks")

    children: tuple[str, ...] = ()
    if kind in ("series", "concurrent"):
        value = raw[kind]
        if not isinstance(value, list) or not value or not all(isinstance(v, str) for v in value):
            raise CatalogError(f"Task {name!r}: {kind} must be a non-empty list of task names")
        children = tuple(value)
    elif not isinstance(raw[kind], str) or not raw[kind].strip():
        raise CatalogError(f"Task {name!r}: {kind} must be a non-empty string")
    if kind == "script":
        _split(raw["script"], f"Task {name!r}: script")
    if "args" in raw:
        _split(str(raw["args"]), f"Task {name!r}: args")

    return Task(
        name=name,
        kind=kind,
        script=raw.get("script"),
        module=raw.get("module"),
        args=str(raw.get("args", "")),
        children=children,
        description=str(raw.get("description", "")),
        hidden=bool(raw.get("hidden", False)),
        env=dict(env),
        timeout=float(timeout) if timeout is not None else None,
    )


def _discover(entry: Any, root: Path, out: dict[str, Task]) -> None:
    if not isinstance(entry, dict):
        raise CatalogError("discover entries must be tables")
    unknown = set(entry) - set(DISCOVER_KEYS)
    if unknown:
        raise CatalogError(f"discover entry has unknown keys: {', '.join(sorted(unknown))}")
    for key in ("prefix", "glob"):
        if not entry.get(key):
            raise CatalogError(f"discover entry is missing {key!r}")
    strip = str(entry.get("strip", ""))
    # Placeholders are checked even when the glob matches nothing.
    for key in ("script", "args", "description"):
        if key in entry:
            _expand(str(entry[key]), f"discover {entry['prefix']!r}: {key}", path="", name="")

    for path in sorted(root.glob(entry["glob"])):
        if not path.is_file():
            continue
        # Drop every extension: "test_api.spec.py" -> "test_api".
        stem = path.name.split(".", 1)[0]
        if strip and stem.startswith(strip):
            stem = stem[len(strip):]
        name = f"{entry['prefix']}.{stem}"
        if name in out:
            raise CatalogError(f"Discovered task {name!r} collides with an existing task")
        rel = path.relative_to(root).as_posix()
        fields = {key: entry[key] for key in ("script", "module", "args", "description", "hidden", "env", "timeout") if key in entry}
        for key in ("script", "args", "description"):
            if key in fields:
                fields[key] = _expand(str(fields[key]), f"discover {entry['prefix']!r}: {key}", path=rel, name=stem)
        out[name] = _parse_task(name, fields)


def _check_references(catalog: Catalog) -> None:
    visiting: set[str] = set()
    done: set[str] = set()

    def visit(task: Task) -> None:
        if task.name in done:
            return
        if task.name in visiting:
            raise CatalogError(f"Task {task.name!r} refers to itself through {task.kind}")
        visiting.add(task.name)
        for child in task.children:
            try:
                visit(catalog.resolve(child))
            except LookupError as exc:
                raise CatalogError(f"Task {task.name!r} refers to an unknown task: {exc}") from exc
        visiting.discard(task.name)
        done.add(task.name)

    for task in catalog.tasks.values():
        visit(task)
