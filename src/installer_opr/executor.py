"""Section executor for checkpointed installation.

Drives one manifest section through its lifecycle:

    pending -> checkpointed -> staged -> verified -> executed

The section is checkpointed *before* any download or script runs. A run
interrupted mid-section (typically by a reboot the install script asked
for) therefore treats the section as done on resume: a section is
attempted at most once.
"""

import logging
import stat
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

from common import format_cmd, run_command
from config import InstallerConfig
from installer_opr.fetcher import FetchError, PackageFetcher
from installer_opr.ledger import CheckpointLedger, LedgerError
from manifest import Section

logger = logging.getLogger(__name__)

# Lines of script output quoted in failure messages
OUTPUT_TAIL_LINES = 20


class SectionError(Exception):
    """A section cannot be executed.

    Attributes:
        section: Section name
        operation: Lifecycle step that failed (validate, checkpoint, stage,
            fetch, verify, execute)
    """

    def __init__(self, message: str, section: str = '', operation: str = ''):
        super().__init__(message)
        self.section = section
        self.operation = operation


class WorkspaceError(SectionError):
    """Section workspace already exists or cannot be created."""


class ExecutionError(SectionError):
    """Install script exited non-zero.

    Attributes:
        returncode: Script exit status
        stdout: Captured standard output
        stderr: Captured standard error
    """

    def __init__(self, message: str, section: str = '', returncode: int = -1,
                 stdout: str = '', stderr: str = ''):
        super().__init__(message, section=section, operation='execute')
        self.returncode = returncode
        self.stdout = stdout
        self.stderr = stderr


@dataclass
class SectionResult:
    """Outcome of executing one section.

    Attributes:
        name: Section name
        success: False on any fatal error
        skipped: True when the ledger already had the section
        state: Last lifecycle state reached
        message: Human-readable outcome or failure cause
        operation: Failing lifecycle step (failures only)
        duration: Seconds spent on the section
        returncode: Install script exit status, once it ran
        stdout: Install script standard output
        stderr: Install script standard error
    """
    name: str
    success: bool
    skipped: bool = False
    state: str = 'pending'
    message: str = ''
    operation: Optional[str] = None
    duration: float = 0.0
    returncode: Optional[int] = None
    stdout: str = ''
    stderr: str = ''


def _tail(text: str, lines: int = OUTPUT_TAIL_LINES) -> str:
    return '\n'.join(text.strip().splitlines()[-lines:])


@dataclass
class SectionExecutor:
    """Executes manifest sections against a checkpoint ledger.

    Attributes:
        config: Installer configuration (stage dir, interpreter, timeouts)
        ledger: Checkpoint ledger shared by every section of the run
        fetcher: Package fetcher for downloads and extraction
        dry_run: If True, report what would run without side effects
    """
    config: InstallerConfig
    ledger: CheckpointLedger = field(default=None)  # type: ignore[assignment]
    fetcher: PackageFetcher = field(default=None)  # type: ignore[assignment]
    dry_run: bool = False

    def __post_init__(self) -> None:
        """Default the collaborators from the configuration."""
        if self.ledger is None:
            self.ledger = CheckpointLedger(self.config.checkpoint_file)
        if self.fetcher is None:
            self.fetcher = PackageFetcher(timeout=self.config.download_timeout)

    def workspace_for(self, section: Section) -> Path:
        """Staging directory for a section."""
        name = section.name
        if name in ('', '.', '..') or '/' in name or '\\' in name:
            raise WorkspaceError(
                f"Section name '{name}' cannot be used as a workspace directory",
                section=name, operation='stage',
            )
        return self.config.stage_dir / name

    def execute_section(self, section: Section) -> SectionResult:
        """Run one section through its lifecycle.

        Required settings are checked before the ledger, so a corrupted
        manifest halts even a resume in which the section would be skipped.

        Returns:
            SectionResult; success=False for any fatal error
        """
        start = time.time()
        result = SectionResult(name=section.name, success=False)
        logger.debug(f"execute_section('{section.name}') starting")

        try:
            self._check_required(section)

            if self.ledger.is_checkpointed(section.name):
                logger.info(f"Skipping section '{section.name}' (already checkpointed)")
                result.success = True
                result.skipped = True
                result.state = 'checkpointed'
                result.message = 'already checkpointed'
                return result

            if self.dry_run:
                self._preview(section)
                result.success = True
                result.message = 'dry-run'
                return result

            logger.info(f"Installing section '{section.name}'")
            self.ledger.checkpoint(section.name)
            result.state = 'checkpointed'

            workspace = self._stage(section)
            result.state = 'staged'

            script = self._verify(section, workspace)
            result.state = 'verified'

            rc, out, err = self._run_script(section, script, workspace)
            result.returncode, result.stdout, result.stderr = rc, out, err
            result.state = 'executed'
            result.success = True
            result.message = f"Section '{section.name}' installed"
            logger.info(result.message)

        except ExecutionError as e:
            result.state = 'executed'
            result.returncode, result.stdout, result.stderr = e.returncode, e.stdout, e.stderr
            self._record_failure(result, e, e.operation)
        except SectionError as e:
            self._record_failure(result, e, e.operation)
        except FetchError as e:
            self._record_failure(result, e, e.operation)
        except LedgerError as e:
            self._record_failure(result, e, 'checkpoint')
        finally:
            result.duration = time.time() - start
            logger.debug(f"execute_section('{section.name}') ending")

        return result

    def _record_failure(self, result: SectionResult, error: Exception, operation: str) -> None:
        result.success = False
        result.operation = operation
        result.message = f"Section '{result.name}' failed during {operation}: {error}"
        logger.error(result.message)

    def _check_required(self, section: Section) -> None:
        missing = section.missing_settings()
        if missing:
            raise SectionError(
                f"{missing[0]} is not set for section '{section.name}'",
                section=section.name, operation='validate',
            )
        try:
            self.workspace_for(section)
        except WorkspaceError as e:
            raise SectionError(str(e), section=section.name, operation='validate') from e

    def _stage(self, section: Section) -> Path:
        """Create the workspace and fetch the package into it."""
        workspace = self.workspace_for(section)
        if workspace.exists():
            raise WorkspaceError(
                f"Target directory {workspace} already exists",
                section=section.name, operation='stage',
            )
        try:
            workspace.mkdir(parents=True)
        except OSError as e:
            raise WorkspaceError(
                f"Cannot create {workspace}: {e}",
                section=section.name, operation='stage',
            ) from e

        self.fetcher.fetch_and_extract(section.zip_file, workspace)
        return workspace

    def _verify(self, section: Section, workspace: Path) -> Path:
        """Locate the install script inside the extracted tree."""
        script = (workspace / section.script_file).resolve()
        root = workspace.resolve()
        if script != root and root not in script.parents:
            raise SectionError(
                f"Install script {section.script_file} lies outside {workspace}",
                section=section.name, operation='verify',
            )
        if not script.is_file():
            raise SectionError(
                f"Error locating install script {section.script_file} in {workspace}",
                section=section.name, operation='verify',
            )
        if not self.config.interpreter:
            # Run directly; archives written without mode bits extract as 0600
            mode = script.stat().st_mode
            if not mode & stat.S_IXUSR:
                try:
                    script.chmod(mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
                except OSError as e:
                    raise SectionError(
                        f"Cannot make {section.script_file} executable: {e}",
                        section=section.name, operation='verify',
                    ) from e
        return script

    def _build_command(self, section: Section, script: Path) -> list[str]:
        cmd = [self.config.interpreter, str(script)] if self.config.interpreter else [str(script)]
        if section.ini_file:
            cmd.append(section.ini_file)
        return cmd

    def _run_script(self, section: Section, script: Path,
                    workspace: Path) -> tuple[int, str, str]:
        cmd = self._build_command(section, script)
        logger.info(f"[{section.name}] Running {format_cmd(cmd)}")
        rc, out, err = run_command(cmd, cwd=workspace, timeout=self.config.script_timeout)

        if out.strip():
            logger.debug(f"[{section.name}] stdout:\n{out.rstrip()}")
        if err.strip():
            logger.debug(f"[{section.name}] stderr:\n{err.rstrip()}")

        if rc != 0:
            detail = _tail(err) or _tail(out)
            message = f"Install script exited with status {rc}"
            if detail:
                message = f"{message}:\n{detail}"
            raise ExecutionError(message, section=section.name,
                                 returncode=rc, stdout=out, stderr=err)
        return rc, out, err

    def _preview(self, section: Section) -> None:
        workspace = self.workspace_for(section)
        script = workspace / section.script_file
        cmd = self._build_command(section, script)
        print(f"  [{section.name}]")
        print(f"    checkpoint  {self.ledger.path}")
        print(f"    download    {section.zip_file} -> {workspace}")
        print(f"    execute     {format_cmd(cmd)}")
