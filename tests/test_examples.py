"""Smoke tests for example scripts.

These tests ensure that the example scripts run their main execution
paths without raising exceptions.
"""

from __future__ import annotations

import subprocess
import sys
from pathlib import Path

# Determine the repo root
ROOT = Path(__file__).resolve().parents[1]


def test_rosenbrock_demo_runs() -> None:
    """Test that examples/rosenbrock_demo.py runs successfully."""
    script = ROOT / "examples" / "rosenbrock_demo.py"
    assert script.exists(), f"Example script not found: {script}"

    result = subprocess.run(
        [sys.executable, str(script)],
        capture_output=True,
        text=True,
        check=False,
        timeout=120,
    )

    assert result.returncode == 0, (
        f"Example script failed with return code {result.returncode}.\n"
        f"STDOUT:\n{result.stdout}\n"
        f"STDERR:\n{result.stderr}"
    )
    assert "Solution close to ones: True" in result.stdout
    assert "Done." in result.stdout
