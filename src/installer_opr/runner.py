"""Run driver for manifest-based installation.

Validates the whole manifest up front, then executes its sections in
manifest order and stops at the first failure. Later sections may depend
on earlier ones having fully succeeded, so there is no continue-on-error
mode and no partial-success result.
"""

import logging
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

from config import InstallerConfig
from installer_opr.executor import SectionExecutor, SectionResult
from manifest import (
    ManifestError,
    list_section_names,
    parse_manifest,
    read_manifest_text,
    validate_manifest,
)

logger = logging.getLogger(__name__)


@dataclass
class RunResult:
    """Outcome of one engine run.

    Attributes:
        success: True only if every section was executed or skipped
        completed: Sections executed in this run
        skipped: Sections skipped because the ledger already had them
        failed: Section that halted the run, if any
        message: Failure cause (empty on success)
        results: Per-section results in execution order
        duration: Seconds for the whole run
    """
    success: bool = False
    completed: list[str] = field(default_factory=list)
    skipped: list[str] = field(default_factory=list)
    failed: Optional[str] = None
    message: str = ''
    results: list[SectionResult] = field(default_factory=list)
    duration: float = 0.0


@dataclass
class ManifestRunner:
    """Drives a SectionExecutor over every section of a manifest.

    Attributes:
        executor: Executor shared by all sections of the run
    """
    executor: SectionExecutor

    def run(self, text: str, source: Optional[Path] = None) -> RunResult:
        """Install every section of the manifest text, in order.

        Args:
            text: Manifest source
            source: Where the text came from (for messages)

        Returns:
            RunResult; success=False at the first fatal error
        """
        start = time.time()
        result = RunResult()
        where = f" {source}" if source else ''
        logger.info(f"Begin processing manifest{where}")

        try:
            validate_manifest(text)
            manifest = parse_manifest(text, source_path=source)
            for name in list_section_names(text):
                section = manifest.get_section(name)
                section_result = self.executor.execute_section(section)
                result.results.append(section_result)

                if not section_result.success:
                    result.failed = name
                    result.message = section_result.message
                    logger.error(f"Halting run at section '{name}'")
                    return result

                if section_result.skipped:
                    result.skipped.append(name)
                else:
                    result.completed.append(name)
        except ManifestError as e:
            result.failed = e.section
            result.message = f"Invalid manifest{where}: {e}"
            logger.error(result.message)
            return result
        finally:
            result.duration = time.time() - start

        result.success = True
        logger.info(
            f"Successful end: {len(result.completed)} installed, "
            f"{len(result.skipped)} skipped ({result.duration:.1f}s)"
        )
        return result

    def run_file(self, path: Path) -> RunResult:
        """Install every section of the manifest file at path."""
        try:
            text = read_manifest_text(path)
        except ManifestError as e:
            logger.error(str(e))
            return RunResult(message=str(e))
        return self.run(text, source=Path(path))


def build_runner(config: InstallerConfig, dry_run: bool = False) -> ManifestRunner:
    """Create a runner whose executor is wired from config."""
    return ManifestRunner(executor=SectionExecutor(config=config, dry_run=dry_run))
