#!/usr/bin/env python3
"""Tests for common.py - shared utilities.

Tests verify:
1. run_command execution and error handling
2. Timeout and launch failures map to returncode -1
3. format_cmd quoting
"""

import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent.parent / 'src'))

from common import format_cmd, run_command


class TestRunCommand:
    """Test run_command utility."""

    def test_returns_success_tuple(self):
        """Should return (returncode, stdout, stderr) on success."""
        rc, stdout, stderr = run_command(['echo', 'hello'])
        assert rc == 0
        assert 'hello' in stdout
        assert stderr == ''

    def test_returns_failure_tuple(self):
        """Should return non-zero returncode on failure."""
        rc, stdout, stderr = run_command(['false'])
        assert rc != 0

    def test_preserves_exit_status(self):
        """Should return the exact exit status."""
        rc, _, _ = run_command(['sh', '-c', 'exit 3'])
        assert rc == 3

    def test_captures_stderr(self):
        """Should capture stderr."""
        rc, stdout, stderr = run_command(['sh', '-c', 'echo error >&2'])
        assert 'error' in stderr

    def test_respects_cwd(self, tmp_path):
        """Should run command in specified directory."""
        (tmp_path / 'marker.txt').write_text('found')
        rc, stdout, stderr = run_command(['cat', 'marker.txt'], cwd=tmp_path)
        assert rc == 0
        assert 'found' in stdout

    def test_timeout_returns_error(self):
        """Should return error on timeout."""
        rc, stdout, stderr = run_command(['sleep', '10'], timeout=1)
        assert rc == -1
        assert 'timed out' in stderr.lower()

    def test_no_timeout(self):
        """timeout=None waits for completion."""
        rc, stdout, _ = run_command(['echo', 'done'], timeout=None)
        assert rc == 0

    def test_missing_program(self):
        """Should return -1 when the program cannot be started."""
        rc, stdout, stderr = run_command(['/nonexistent/program'])
        assert rc == -1
        assert stderr

    def test_passes_env_vars(self):
        """Should pass custom environment variables."""
        import os
        custom_env = os.environ.copy()
        custom_env['TEST_VAR'] = 'test_value'
        rc, stdout, stderr = run_command(['sh', '-c', 'echo $TEST_VAR'], env=custom_env)
        assert rc == 0
        assert 'test_value' in stdout


class TestFormatCmd:
    """Test format_cmd helper."""

    def test_plain(self):
        assert format_cmd(['sh', 'install.sh']) == 'sh install.sh'

    def test_quotes_spaces(self):
        assert format_cmd(['sh', 'my script.sh']) == "sh 'my script.sh'"

    def test_accepts_paths(self):
        assert format_cmd(['sh', Path('/a/b.sh')]) == 'sh /a/b.sh'
