"""Shared pytest fixtures for section-installer tests."""

import sys
import zipfile
from pathlib import Path

import pytest

# Add src to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent / 'src'))

from config import InstallerConfig


@pytest.fixture
def installer_config(tmp_path):
    """InstallerConfig with every path under tmp_path/root and no root check."""
    config = InstallerConfig.for_root(tmp_path / 'root', require_root=False)
    return config


@pytest.fixture
def make_package(tmp_path):
    """Build a zip package containing an install script; return its file:// URL.

    The script appends its name and arguments to tmp_path/calls.log, so
    tests can see which sections actually ran.
    """
    packages = tmp_path / 'packages'
    packages.mkdir(exist_ok=True)
    calls = tmp_path / 'calls.log'

    def _make(name, script_path='bin/install.sh', exit_code=0, body=''):
        archive = packages / f'{name}.zip'
        script = (
            '#!/bin/sh\n'
            f'echo "{name} $*" >> "{calls}"\n'
            f'{body}\n'
            f'exit {exit_code}\n'
        )
        with zipfile.ZipFile(archive, 'w') as zf:
            zf.writestr(script_path, script)
            zf.writestr('README', f'{name} package\n')
        return archive.as_uri()

    return _make


@pytest.fixture
def calls_log(tmp_path):
    """Read the install-script call log written by make_package scripts."""
    calls = tmp_path / 'calls.log'

    def _read():
        if not calls.exists():
            return []
        return [line.strip() for line in calls.read_text().splitlines()]

    return _read
