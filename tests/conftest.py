"""Shared fixtures: a node runner for executing the injected scripts."""

import json
import shutil
import subprocess

import pytest

NODE = shutil.which("node")


@pytest.fixture
def run_node():
    """Run a JavaScript program under node and return the JSON it prints last."""
    if NODE is None:
        pytest.skip("node is not installed")

    def _run(program: str):
        result = subprocess.run(
            [NODE],
            input=program,
            capture_output=True,
            text=True,
            timeout=30,
        )
        assert result.returncode == 0, result.stderr
        return json.loads(result.stdout.strip().splitlines()[-1])

    return _run
