"""Manifest loading and validation for section-based installation.

A manifest is an INI-like text file of named sections, each followed by
flat key=value settings:

    [sw1]
    zipFile=http://localhost/sw1.zip
    scriptFile=sw1/bin/configure_sw1.sh
    iniFile=

Sections are installed in the order they first appear. Anything that is
neither a [header] nor a key=value line (blank lines, comments) is ignored.
"""

import logging
import re
from collections import Counter
from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterator, Optional

from config import ConfigError

logger = logging.getLogger(__name__)

# Settings recognised by the executor
ZIP_FILE = 'zipFile'
SCRIPT_FILE = 'scriptFile'
INI_FILE = 'iniFile'
REQUIRED_SETTINGS = (ZIP_FILE, SCRIPT_FILE)

# Keys must be usable as shell variable names
_KEY_RE = re.compile(r'^[A-Za-z_][A-Za-z0-9_]*$')


class ManifestError(ConfigError):
    """Manifest is malformed or inconsistent.

    Attributes:
        section: Offending section name, if any
        count: Number of definitions (duplicate section errors)
        line: Offending source line (syntax errors)
        lineno: 1-based line number of the offending line
    """

    def __init__(self, message: str, section: Optional[str] = None,
                 count: Optional[int] = None, line: Optional[str] = None,
                 lineno: Optional[int] = None):
        super().__init__(message)
        self.section = section
        self.count = count
        self.line = line
        self.lineno = lineno


@dataclass
class Section:
    """A named, independently installable unit.

    Attributes:
        name: Section name from the [header]
        settings: key=value settings in the order written (last one wins)
    """
    name: str
    settings: dict[str, str] = field(default_factory=dict)

    @property
    def zip_file(self) -> str:
        return self.settings.get(ZIP_FILE, '')

    @property
    def script_file(self) -> str:
        return self.settings.get(SCRIPT_FILE, '')

    @property
    def ini_file(self) -> str:
        return self.settings.get(INI_FILE, '')

    def missing_settings(self) -> list[str]:
        """Required settings that are absent or empty."""
        return [key for key in REQUIRED_SETTINGS if not self.settings.get(key)]


@dataclass
class Manifest:
    """Parsed installation manifest.

    Attributes:
        sections: Sections in first-appearance order
        preamble: Assignments found before the first header (never executed)
        source_path: Path the manifest was loaded from (for messages)
    """
    sections: list[Section] = field(default_factory=list)
    preamble: dict[str, str] = field(default_factory=dict)
    source_path: Optional[Path] = None

    @property
    def section_names(self) -> list[str]:
        return [s.name for s in self.sections]

    def get_section(self, name: str) -> Section:
        """Look up a section by name.

        Raises:
            ManifestError: If no section has that name
        """
        for section in self.sections:
            if section.name == name:
                return section
        raise ManifestError(f"Section '{name}' not found in manifest", section=name)

    def __iter__(self) -> Iterator[Section]:
        return iter(self.sections)

    def __len__(self) -> int:
        return len(self.sections)


def _is_header(line: str) -> bool:
    return line.startswith('[') and line.endswith(']')


def _header_name(line: str) -> str:
    return line.replace('[', '').replace(']', '')


def _is_assignment(line: str) -> bool:
    return '=' in line


def _split_assignment(line: str) -> tuple[str, str]:
    key, _, value = line.partition('=')
    return key, value


def _lines(text: str) -> Iterator[tuple[int, str]]:
    for lineno, raw in enumerate(text.splitlines(), 1):
        yield lineno, raw.strip()


def validate_manifest(text: str) -> None:
    """Check the structural invariants of a manifest.

    Every header must name a section exactly once, and every assignment
    must have a valid key immediately followed by '='. The first problem
    found aborts validation.

    Raises:
        ManifestError: On a duplicate section or invalid line
    """
    counts = Counter(_header_name(line) for _, line in _lines(text) if _is_header(line))

    for lineno, line in _lines(text):
        if _is_header(line):
            name = _header_name(line)
            if not name:
                raise ManifestError(
                    f"Invalid syntax at line {lineno}: empty section name in '{line}'",
                    line=line, lineno=lineno,
                )
            if counts[name] > 1:
                raise ManifestError(
                    f"Duplicate section: [{name}] is defined {counts[name]} times",
                    section=name, count=counts[name],
                )
        elif _is_assignment(line):
            key, _ = _split_assignment(line)
            if not _KEY_RE.match(key):
                raise ManifestError(
                    f"Invalid syntax at line {lineno}: '{line}'",
                    line=line, lineno=lineno,
                )


def parse_manifest(text: str, source_path: Optional[Path] = None) -> Manifest:
    """Parse manifest text into ordered sections.

    Parsing does not validate; call validate_manifest() first. If a
    header repeats, its settings are merged into the first occurrence.
    """
    manifest = Manifest(source_path=source_path)
    by_name: dict[str, Section] = {}
    current: Optional[Section] = None

    for _, line in _lines(text):
        if _is_header(line):
            name = _header_name(line)
            current = by_name.get(name)
            if current is None:
                current = Section(name=name)
                by_name[name] = current
                manifest.sections.append(current)
        elif _is_assignment(line):
            key, value = _split_assignment(line)
            if current is None:
                manifest.preamble[key] = value
            else:
                current.settings[key] = value

    if manifest.preamble:
        logger.debug(f"Ignoring assignments outside any section: {sorted(manifest.preamble)}")

    return manifest


def list_section_names(text: str) -> list[str]:
    """Section names in the order they first appear."""
    names: list[str] = []
    for _, line in _lines(text):
        if _is_header(line):
            name = _header_name(line)
            if name not in names:
                names.append(name)
    return names


def read_manifest_text(path: Path) -> str:
    """Read manifest source from a UTF-8 file.

    Raises:
        ManifestError: If the file is missing or unreadable
    """
    path = Path(path)
    if not path.exists():
        raise ManifestError(f"Manifest file not found: {path}")
    try:
        return path.read_text(encoding='utf-8')
    except (OSError, UnicodeDecodeError) as e:
        raise ManifestError(f"Cannot read manifest {path}: {e}")


def load_manifest(path: Path) -> Manifest:
    """Load, validate and parse a manifest file.

    Raises:
        ManifestError: If the file is missing or invalid
    """
    text = read_manifest_text(path)
    validate_manifest(text)
    manifest = parse_manifest(text, source_path=Path(path))
    logger.info(f"Loaded manifest {path} with {len(manifest)} section(s)")
    return manifest
