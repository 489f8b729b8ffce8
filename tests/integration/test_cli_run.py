import json
import os
import subprocess
import sys

from tests.helpers import write_catalog


def _run(catalog, *args: str) -> subprocess.CompletedProcess:
    env = os.environ.copy()
    env.pop("FORCE_COLOR", None)
    env["TASKCHECK_CATALOG"] = str(catalog)
    return subprocess.run(
        [sys.executable, "-m", "taskcheck.cli", "run", *args],
        env=env,
        capture_output=True,
        text=True,
        timeout=60,
    )


def test_run_series_prints_output_and_summary(tmp_path):
    p = _run(write_catalog(tmp_path), "greet")
    assert p.returncode == 0, p.stderr
    assert "1\n" in p.stdout
    assert "ok hello" in p.stdout
    assert "ok bye" in p.stdout
    assert "2 passing" in p.stdout
    assert "failing" not in p.stdout


def test_run_accepts_abbreviated_names(tmp_path):
    p = _run(write_catalog(tmp_path), "he")
    assert p.returncode == 0, p.stderr
    assert "ok hello" in p.stdout


def test_run_failure_propagates_exit_code(tmp_path):
    p = _run(write_catalog(tmp_path), "hello", "broken", "bye")
    assert p.returncode == 3
    assert "1 failing" in p.stdout
    assert "bye" not in p.stdout


def test_run_json_failure_envelope(tmp_path):
    p = _run(write_catalog(tmp_path), "broken", "--json")
    assert p.returncode == 1
    out = json.loads(p.stdout)
    assert out["error"]["type"] == "TASK_FAILED"
    assert out["error"]["details"]["failing"] == 1
    assert out["error"]["details"]["tasks"][0]["returncode"] == 3


def test_run_unknown_task(tmp_path):
    p = _run(write_catalog(tmp_path), "nope")
    assert p.returncode == 1
    assert "No task named 'nope'" in p.stderr


def test_run_without_names_uses_default(tmp_path):
    p = _run(write_catalog(tmp_path), "--json")
    assert p.returncode == 1
    assert json.loads(p.stdout)["error"]["type"] == "NOT_FOUND"


def test_run_names_and_grep_are_exclusive(tmp_path):
    p = _run(write_catalog(tmp_path), "hello", "--grep", "hello", "--json")
    assert p.returncode == 1
    assert json.loads(p.stdout)["error"]["type"] == "INVALID_ARGUMENT"


def test_run_unbalanced_quote_is_invalid_argument(tmp_path):
    catalog = write_catalog(tmp_path, '[tasks.bad]\nscript = "echo \\"hi"\n')
    p = _run(catalog, "bad", "--json")
    assert p.returncode == 1
    out = json.loads(p.stdout)
    assert out["error"]["type"] == "INVALID_ARGUMENT"
    assert "'bad': script is not a valid command line" in out["error"]["message"]
    assert "Traceback" not in p.stderr


def test_run_unknown_discover_placeholder_is_invalid_argument(tmp_path):
    (tmp_path / "test_a.py").write_text("", encoding="utf-8")
    catalog = write_catalog(tmp_path, '[[discover]]\nprefix = "t"\nglob = "test_*.py"\nscript = "python -c {code}"\n')
    p = _run(catalog, "--grep", "t.", "--json")
    assert p.returncode == 1
    assert json.loads(p.stdout)["error"]["type"] == "INVALID_ARGUMENT"
