from __future__ import annotations

import json
import shlex
import subprocess
import sys
from pathlib import Path
from typing import Any, Dict

import pytest
import jsonschema
from pytest_bdd import given, when, then, parsers

from tests.helpers import write_catalog


@pytest.fixture()
def catalog_file(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    path = write_catalog(tmp_path)
    monkeypatch.setenv("TASKCHECK_CATALOG", str(path))
    return path


def _run_cli(cmd: str, catalog_file: Path) -> Dict[str, Any]:
    # cmd is a full string like: taskcheck version --json
    cmd = cmd.replace("{catalog}", str(catalog_file))
    parts = shlex.split(cmd)
    assert parts and parts[0] == "taskcheck", "BDD commands must start with 'taskcheck'"
    # Execute via python -m to avoid relying on script installation
    p = subprocess.run(
        [sys.executable, "-m", "taskcheck.cli", *parts[1:]],
        capture_output=True,
        text=True,
        timeout=60,
    )
    try:
        out = json.loads(p.stdout)
    except Exception as e:  # pragma: no cover
        raise AssertionError(f"CLI did not return JSON. Output:\n{p.stdout}\nSTDERR: {p.stderr}") from e
    if out.get("ok") is True:
        assert p.returncode == 0, f"Expected exit 0 for ok envelope, got {p.returncode}\nSTDERR: {p.stderr}"
    else:
        assert p.returncode != 0, f"Expected non-zero exit for err envelope, got {p.returncode}\nSTDERR: {p.stderr}"
    return out


def _load_schema(name: str) -> Dict[str, Any]:
    repo_root = Path(__file__).resolve().parents[2]
    schema_path = repo_root / "schemas" / name
    assert schema_path.exists(), f"Missing schema file: {schema_path}"
    return json.loads(schema_path.read_text(encoding="utf-8"))


def _validate_envelope(out: Dict[str, Any]) -> None:
    schema = _load_schema("envelope.ok.schema.json" if out.get("ok") is True else "envelope.err.schema.json")
    jsonschema.validate(out, schema)


@given("a sample catalog")
def given_sample_catalog(catalog_file: Path) -> None:
    assert catalog_file.exists()


@given(parsers.parse('env "{key}" is "{value}"'))
def given_env(key: str, value: str, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv(key, value)


@given(parsers.parse('env "{key}" is unset'))
def given_env_unset(key: str, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv(key, raising=False)


@when(parsers.parse('the client runs "{cmd}"'), target_fixture="when_client_runs")
def when_client_runs(cmd: str, catalog_file: Path) -> Dict[str, Any]:
    out = _run_cli(cmd, catalog_file)
    _validate_envelope(out)
    return out


@then("the engine returns an OK envelope")
def then_ok(when_client_runs: Dict[str, Any]) -> None:
    if when_client_runs.get("ok") is not True:
        raise AssertionError(f"Expected ok=true, got error: {when_client_runs.get('error')}")


@then(parsers.parse('the engine returns an error of type "{error_type}"'))
def then_error_type(when_client_runs: Dict[str, Any], error_type: str) -> None:
    assert when_client_runs.get("ok") is False
    assert when_client_runs["error"]["type"] == error_type


@then("the output matches the command-specific JSON schema")
def then_schema(when_client_runs: Dict[str, Any]) -> None:
    cmd_id = when_client_runs.get("command")
    if not cmd_id:
        raise AssertionError("Missing command id in output")
    # Naming convention: schemas/<command>.schema.json
    jsonschema.validate(when_client_runs, _load_schema(f"{cmd_id}.schema.json"))


@then(parsers.parse('the data field "{field}" has {count:d} entries'))
def then_field_count(when_client_runs: Dict[str, Any], field: str, count: int) -> None:
    assert len(when_client_runs["data"][field]) == count
