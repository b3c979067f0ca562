"""Tests that every entry module imports cleanly in a fresh interpreter.

Features:
- Import order independence of the exception and schema modules
- Application factory importable on its own
"""

import os
import subprocess
import sys
from pathlib import Path

import pytest

BACKEND_DIR = Path(__file__).resolve().parents[1]


def import_in_fresh_interpreter(*modules: str) -> subprocess.CompletedProcess:
    env = dict(os.environ)
    env["PYTHONPATH"] = os.pathsep.join(filter(None, [str(BACKEND_DIR), env.get("PYTHONPATH")]))
    code = "; ".join(f"import {module}" for module in modules)
    return subprocess.run(
        [sys.executable, "-c", code],
        cwd=BACKEND_DIR,
        env=env,
        capture_output=True,
        text=True,
        timeout=60,
    )


@pytest.mark.parametrize(
    "modules",
    [
        ("src.exceptions",),
        ("src.schemas",),
        ("src.schemas.overlay",),
        ("src.render.filter_graph",),
        ("src.exceptions", "src.main"),
        ("src.main",),
    ],
)
def test_module_imports_first(modules):
    result = import_in_fresh_interpreter(*modules)
    assert result.returncode == 0, result.stderr
