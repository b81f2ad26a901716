"""Installer configuration management.

Configuration is an explicit InstallerConfig passed to every component,
so several isolated engines can coexist (tests, chroots).

Resolution order for the config file:
1. --config path given on the command line
2. $SECTION_INSTALLER_CONFIG environment variable
3. /etc/section-installer/config.yaml (if present)
4. Built-in defaults derived from the program name

Values in the YAML file override the defaults key by key.
"""

import os
import socket
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Optional

import yaml

PROG = 'section-installer'
CONFIG_ENV_VAR = 'SECTION_INSTALLER_CONFIG'
DEFAULT_CONFIG_FILE = Path('/etc') / PROG / 'config.yaml'

_PATH_FIELDS = {
    'stage_dir', 'log_dir', 'etc_dir', 'checkpoint_dir', 'checkpoint_file',
    'manifest_file', 'lock_file', 'unit_dir',
}


class ConfigError(Exception):
    """Configuration error."""


@dataclass
class InstallerConfig:
    """Paths and tunables for one installer engine.

    Path fields left as None are derived from prog in __post_init__,
    mirroring the FHS layout of the service:

        stage_dir        /tmp/<prog>/stage
        log_dir          /var/log/<prog>
        etc_dir          /etc/<prog>
        checkpoint_dir   /var/lib/<prog>
        checkpoint_file  <checkpoint_dir>/<prog>.ckp
        manifest_file    <etc_dir>/<hostname>.ini
        lock_file        /var/lock/subsys/<prog>
        unit_dir         /etc/systemd/system

    Attributes:
        prog: Program name; also the systemd unit name
        interpreter: Program used to run install scripts ('' runs them directly)
        download_timeout: Seconds before a package download is abandoned
        script_timeout: Seconds before an install script is killed (None = no limit)
        require_root: Refuse service verbs unless running as root
    """
    prog: str = PROG
    stage_dir: Optional[Path] = None
    log_dir: Optional[Path] = None
    etc_dir: Optional[Path] = None
    checkpoint_dir: Optional[Path] = None
    checkpoint_file: Optional[Path] = None
    manifest_file: Optional[Path] = None
    lock_file: Optional[Path] = None
    unit_dir: Optional[Path] = None
    interpreter: str = 'sh'
    download_timeout: int = 300
    script_timeout: Optional[int] = None
    require_root: bool = True
    source_path: Optional[Path] = field(default=None, compare=False)

    def __post_init__(self):
        if not self.prog:
            raise ConfigError("prog must not be empty")

        for name in _PATH_FIELDS:
            value = getattr(self, name)
            if isinstance(value, str):
                setattr(self, name, Path(value))

        if self.stage_dir is None:
            self.stage_dir = Path('/tmp') / self.prog / 'stage'
        if self.log_dir is None:
            self.log_dir = Path('/var/log') / self.prog
        if self.etc_dir is None:
            self.etc_dir = Path('/etc') / self.prog
        if self.checkpoint_dir is None:
            self.checkpoint_dir = Path('/var/lib') / self.prog
        if self.checkpoint_file is None:
            self.checkpoint_file = self.checkpoint_dir / f'{self.prog}.ckp'
        if self.manifest_file is None:
            self.manifest_file = self.etc_dir / f'{socket.gethostname()}.ini'
        if self.lock_file is None:
            self.lock_file = Path('/var/lock/subsys') / self.prog
        if self.unit_dir is None:
            self.unit_dir = Path('/etc/systemd/system')

    @property
    def unit_file(self) -> Path:
        """Path of the systemd unit registered for this installer."""
        return self.unit_dir / f'{self.prog}.service'

    @property
    def install_dirs(self) -> list[Path]:
        """Directories created at install time and removed by deinstall."""
        return [self.stage_dir, self.log_dir, self.etc_dir, self.checkpoint_dir]

    @classmethod
    def for_root(cls, root: Path, **overrides) -> 'InstallerConfig':
        """Build a config with every path relocated under root."""
        root = Path(root)
        prog = overrides.pop('prog', PROG)
        paths = {
            'stage_dir': root / 'tmp' / prog / 'stage',
            'log_dir': root / 'var' / 'log' / prog,
            'etc_dir': root / 'etc' / prog,
            'checkpoint_dir': root / 'var' / 'lib' / prog,
            'lock_file': root / 'var' / 'lock' / 'subsys' / prog,
            'unit_dir': root / 'etc' / 'systemd' / 'system',
        }
        paths.update(overrides)
        return cls(prog=prog, **paths)

    @classmethod
    def from_dict(cls, data: dict, source_path: Optional[Path] = None) -> 'InstallerConfig':
        """Create InstallerConfig from a mapping of overrides.

        Raises:
            ConfigError: If data contains unknown keys or bad values
        """
        known = {f.name for f in fields(cls)} - {'source_path'}
        unknown = sorted(set(data) - known)
        if unknown:
            where = f" in {source_path}" if source_path else ''
            raise ConfigError(
                f"Unknown config key(s){where}: {', '.join(unknown)}. "
                f"Valid keys: {', '.join(sorted(known))}"
            )

        for key in ('download_timeout', 'script_timeout'):
            value = data.get(key)
            if value is not None and (not isinstance(value, int) or value <= 0):
                raise ConfigError(f"{key} must be a positive integer, got {value!r}")

        return cls(**data, source_path=source_path)


def _parse_yaml(path: Path) -> dict:
    """Parse a YAML file and return contents."""
    try:
        with open(path, encoding='utf-8') as f:
            data = yaml.safe_load(f) or {}
    except OSError as e:
        raise ConfigError(f"Cannot read config file {path}: {e}")
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML in config file {path}: {e}")

    if not isinstance(data, dict):
        raise ConfigError(f"Config file {path} must be a YAML object (dict)")
    return data


def discover_config_file(explicit: Optional[str] = None) -> Optional[Path]:
    """Find the config file to load, if any.

    Returns:
        Path to the config file, or None to use built-in defaults

    Raises:
        ConfigError: If an explicitly requested file does not exist
    """
    if explicit:
        path = Path(explicit)
        if not path.exists():
            raise ConfigError(f"Config file not found: {path}")
        return path

    if env_path := os.environ.get(CONFIG_ENV_VAR):
        path = Path(env_path)
        if path.exists():
            return path
        raise ConfigError(f"{CONFIG_ENV_VAR}={env_path} does not exist")

    if DEFAULT_CONFIG_FILE.exists():
        return DEFAULT_CONFIG_FILE

    return None


def load_config(path: Optional[str] = None) -> InstallerConfig:
    """Load installer configuration.

    Args:
        path: Optional explicit config file path

    Returns:
        InstallerConfig with file overrides applied
    """
    config_file = discover_config_file(path)
    if config_file is None:
        return InstallerConfig()
    return InstallerConfig.from_dict(_parse_yaml(config_file), source_path=config_file)
