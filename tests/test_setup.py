"""Test that the project setup is working correctly."""

import os
import subprocess
import sys
from pathlib import Path

import pytest

import copytrade_tracker


def test_version() -> None:
    """Test that version is defined."""
    assert copytrade_tracker.__version__ == "0.1.0"


def test_import_modules() -> None:
    """Test that all submodules can be imported."""
    from copytrade_tracker import alerter
    from copytrade_tracker import detector
    from copytrade_tracker import ingestor
    from copytrade_tracker import ledger
    from copytrade_tracker import storage

    # Just verify imports work
    assert ingestor is not None
    assert ledger is not None
    assert detector is not None
    assert alerter is not None
    assert storage is not None


@pytest.mark.parametrize(
    "module",
    [
        "copytrade_tracker.storage",
        "copytrade_tracker.storage.models",
        "copytrade_tracker.storage.repos",
        "copytrade_tracker.ledger",
        "copytrade_tracker.alerter",
        "copytrade_tracker.alerter.dispatcher",
        "copytrade_tracker.detector",
        "copytrade_tracker.ingestor",
        "copytrade_tracker.pipeline",
        "copytrade_tracker.api",
    ],
)
def test_module_imports_first(module: str) -> None:
    """Each module imports on its own in a fresh interpreter."""
    src = Path(__file__).resolve().parents[1] / "src"
    env = {**os.environ, "PYTHONPATH": os.pathsep.join(filter(None, [str(src), os.environ.get("PYTHONPATH")]))}
    proc = subprocess.run(
        [sys.executable, "-c", f"import {module}"],
        env=env,
        capture_output=True,
        text=True,
        timeout=60,
    )
    assert proc.returncode == 0, proc.stderr
