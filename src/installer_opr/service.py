"""Service registration for the section installer.

Registers the installer as a systemd oneshot unit so that an install
script may reboot the machine and the run resumes at boot. Also provides
the directory bootstrap and root check used by the CLI verbs.
"""

import logging
import os
import shlex
import shutil
import sys
from pathlib import Path
from typing import Iterable, Optional

from common import run_command
from config import ConfigError, InstallerConfig

logger = logging.getLogger(__name__)

UNIT_TEMPLATE = """\
[Unit]
Description={prog} resumable section installer
Wants=network-online.target
After=network-online.target

[Service]
Type=oneshot
ExecStart={exec_start}
TimeoutStartSec=0

[Install]
WantedBy=multi-user.target
"""


class ServiceError(Exception):
    """Service manager command failed."""


def ensure_directories(paths: Iterable[Path]) -> None:
    """Create each directory (and parents) if missing.

    Raises:
        ConfigError: If a directory cannot be created
    """
    for path in paths:
        try:
            Path(path).mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise ConfigError(f"Cannot create directory {path}: {e}")


def require_root(config: InstallerConfig) -> None:
    """Raise ConfigError unless running as root (when the config requires it)."""
    if config.require_root and os.geteuid() != 0:
        raise ConfigError(f"{config.prog} must be run as root")


def default_executable(prog: str) -> str:
    """Best guess at the command that launched this installer."""
    found = shutil.which(prog)
    if found:
        return found
    return str(Path(sys.argv[0]).resolve())


class ServiceManager:
    """Installs, enables and removes the installer's systemd unit.

    Attributes:
        config: Installer configuration (prog, unit_dir, lock_file)
        executable: Command systemd runs with 'start' at boot
    """

    def __init__(self, config: InstallerConfig, executable: Optional[str] = None) -> None:
        self.config = config
        self.executable = executable or default_executable(config.prog)

    @property
    def unit_name(self) -> str:
        return f'{self.config.prog}.service'

    def _systemctl(self, *args: str, check: bool = True) -> bool:
        rc, out, err = run_command(['systemctl', *args], timeout=60)
        if rc != 0:
            detail = err.strip() or out.strip()
            if check:
                raise ServiceError(f"systemctl {' '.join(args)} failed (rc={rc}): {detail}")
            logger.warning(f"systemctl {' '.join(args)} returned rc={rc}: {detail}")
            return False
        return True

    def render_unit(self) -> str:
        """Render the unit file content."""
        cmd = [self.executable, 'start']
        if self.config.source_path:
            cmd += ['--config', str(self.config.source_path)]
        exec_start = ' '.join(shlex.quote(c) for c in cmd)
        return UNIT_TEMPLATE.format(prog=self.config.prog, exec_start=exec_start)

    def register(self) -> Path:
        """Write the unit file and enable it at boot.

        Returns:
            Path of the written unit file

        Raises:
            ServiceError: If the unit cannot be written or enabled
        """
        unit_file = self.config.unit_file
        logger.info(f"Registering {self.unit_name} ({unit_file})")
        try:
            unit_file.parent.mkdir(parents=True, exist_ok=True)
            unit_file.write_text(self.render_unit(), encoding='utf-8')
        except OSError as e:
            raise ServiceError(f"Cannot write {unit_file}: {e}") from e

        self._systemctl('daemon-reload')
        self._systemctl('enable', self.unit_name)
        return unit_file

    def deregister(self) -> None:
        """Disable and remove the unit. Missing pieces are only logged."""
        logger.info(f"Deregistering {self.unit_name}")
        self._systemctl('disable', self.unit_name, check=False)
        try:
            self.config.unit_file.unlink()
        except FileNotFoundError:
            logger.debug(f"{self.config.unit_file} already absent")
        self._systemctl('daemon-reload', check=False)

    def mark_started(self) -> None:
        """Create the lock file that marks the service as running."""
        lock = self.config.lock_file
        lock.parent.mkdir(parents=True, exist_ok=True)
        lock.touch(exist_ok=True)

    def mark_stopped(self) -> None:
        """Remove the service lock file."""
        try:
            self.config.lock_file.unlink()
        except FileNotFoundError:
            pass
