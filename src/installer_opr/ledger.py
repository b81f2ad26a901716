"""Checkpoint ledger for resumable installation.

The ledger is a plain text file with one section name per line, appended
when a section *starts*. A name in the ledger means the section was
attempted at least once; there is no separate "completed" record, so an
interrupted section is never re-run.
"""

import logging
import os
from pathlib import Path

logger = logging.getLogger(__name__)


class LedgerError(Exception):
    """Invalid ledger operation (driver or manifest defect)."""


class CheckpointLedger:
    """Append-only record of started sections.

    Attributes:
        path: Ledger file location (e.g. /var/run/section-installer/section-installer.ckp)
    """

    def __init__(self, path: Path):
        self.path = Path(path)

    @property
    def exists(self) -> bool:
        return self.path.exists()

    @staticmethod
    def _check_name(name: str, operation: str) -> None:
        if not name:
            raise LedgerError(f"{operation}() called with empty section name")
        if '\n' in name or '\r' in name:
            raise LedgerError(f"{operation}() called with multi-line section name {name!r}")

    def is_checkpointed(self, name: str) -> bool:
        """True if name was checkpointed by this or a previous run.

        Exact, case-sensitive line match; a missing ledger means nothing
        has been checkpointed yet.
        """
        self._check_name(name, 'is_checkpointed')
        if not self.path.exists():
            logger.debug(f"Ledger {self.path} does not exist yet")
            return False

        with open(self.path, encoding='utf-8') as f:
            for line in f:
                if line.rstrip('\n') == name:
                    logger.debug(f"Matched '{name}' in ledger; already processed")
                    return True
        return False

    def checkpoint(self, name: str) -> None:
        """Append name to the ledger and sync it to disk.

        Never deduplicates: lookups stop at the first match, so a repeated
        entry is harmless.
        """
        self._check_name(name, 'checkpoint')
        logger.debug(f"Checkpointing section '{name}' in {self.path}")
        self.path.parent.mkdir(parents=True, exist_ok=True)
        with open(self.path, 'a', encoding='utf-8') as f:
            f.write(f'{name}\n')
            f.flush()
            os.fsync(f.fileno())

    def entries(self) -> list[str]:
        """All checkpointed names in ledger order (duplicates included)."""
        if not self.path.exists():
            return []
        with open(self.path, encoding='utf-8') as f:
            return [line.rstrip('\n') for line in f if line.strip()]

    def create(self) -> None:
        """Create an empty ledger if none exists (install time)."""
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.path.touch(exist_ok=True)
        logger.debug(f"Ledger ready at {self.path}")

    def remove(self) -> None:
        """Delete the ledger (deinstall)."""
        try:
            self.path.unlink()
            logger.info(f"Removed ledger {self.path}")
        except FileNotFoundError:
            pass
