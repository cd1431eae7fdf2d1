"""Shared fixtures: a clean NSUP_* environment and fake neptune binaries."""

import os
import stat
import sys

import pytest

COOKIE = "ab" * 32


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for key in list(os.environ):
        if key.startswith("NSUP_"):
            monkeypatch.delenv(key, raising=False)


def write_script(path, body: str):
    """Write an executable Python script running under the test interpreter."""
    path.write_text(f"#!{sys.executable}\n{body}")
    path.chmod(path.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
    return path


FAKE_CORE = """\
import time
time.sleep(120)
"""

FAKE_CLI = f"""\
import sys
import time
if "--get-cookie" in sys.argv:
    print("Cookie: neptune-cli={COOKIE}")
    sys.exit(0)
time.sleep(120)
"""

FAKE_CLI_NEVER_READY = """\
import sys
import time
if "--get-cookie" in sys.argv:
    print("Error: could not connect to neptune-core", file=sys.stderr)
    sys.exit(1)
time.sleep(120)
"""


@pytest.fixture
def fake_bins(tmp_path):
    bin_dir = tmp_path / "bin"
    bin_dir.mkdir()
    core = write_script(bin_dir / "neptune-core", FAKE_CORE)
    cli = write_script(bin_dir / "neptune-cli", FAKE_CLI)
    return core, cli
