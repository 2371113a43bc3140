"""Each subpackage must import cleanly as the first vaultsync import of a process."""

import os
import subprocess
import sys
from pathlib import Path

import pytest


SRC_DIR = Path(__file__).resolve().parents[1] / "src"

MODULES = [
    "vaultsync.core",
    "vaultsync.vault",
    "vaultsync.storage",
    "vaultsync.database",
    "vaultsync.config",
    "vaultsync.scheduler",
    "vaultsync.utils.logging",
    "vaultsync.main",
]


class TestFreshImports:
    """Test import order independence."""

    @pytest.mark.parametrize("module", MODULES)
    def test_import_in_fresh_interpreter(self, module):
        env = os.environ.copy()
        env["PYTHONPATH"] = os.pathsep.join(filter(None, [str(SRC_DIR), env.get("PYTHONPATH")]))

        result = subprocess.run(
            [sys.executable, "-c", f"import {module}"],
            env=env,
            capture_output=True,
            text=True,
            timeout=60
        )

        assert result.returncode == 0, result.stderr
