"""CLI handlers for installer verbs.

Usage:
    section-installer install <manifest-url> [--config PATH] [--verbose]
    section-installer install_and_start <manifest-url> [--config PATH] [--verbose]
    section-installer start [--config PATH] [--dry-run] [--verbose]
    section-installer stop [--config PATH]
    section-installer deinstall [--config PATH]
    section-installer validate <manifest-file> [--verbose]
"""

import argparse
import contextlib
import logging
import shutil
import sys
from datetime import datetime
from pathlib import Path
from typing import Iterator, Optional

from config import ConfigError, InstallerConfig, load_config
from installer_opr.fetcher import FetchError, PackageFetcher
from installer_opr.ledger import CheckpointLedger, LedgerError
from installer_opr.runner import build_runner
from installer_opr.service import (
    ServiceError,
    ServiceManager,
    ensure_directories,
    require_root,
)
from manifest import (
    ManifestError,
    list_section_names,
    parse_manifest,
    read_manifest_text,
    validate_manifest,
)

logger = logging.getLogger(__name__)

EXIT_SUCCESS = 0
EXIT_USAGE = 1
EXIT_FATAL = 255

_FATAL_ERRORS = (ConfigError, ServiceError, FetchError, LedgerError)


def _common_parser(verb: str, description: str) -> argparse.ArgumentParser:
    """Build argument parser with the options shared by all verbs."""
    parser = argparse.ArgumentParser(
        prog=f'section-installer {verb}',
        description=description,
    )
    parser.add_argument(
        '--config', '-c',
        help='Path to installer config YAML (default: $SECTION_INSTALLER_CONFIG '
             'or /etc/section-installer/config.yaml)',
    )
    parser.add_argument(
        '--verbose', '-v',
        action='store_true',
        help='Enable verbose logging',
    )
    return parser


def _add_dry_run(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        '--dry-run',
        action='store_true',
        help='Show what would be installed without running anything',
    )


@contextlib.contextmanager
def _run_logging(config: InstallerConfig, verbose: bool) -> Iterator[Optional[Path]]:
    """Log to a per-run file in log_dir while the verb runs.

    Nothing is written to disk when log_dir does not exist (not installed).
    """
    root_logger = logging.getLogger()
    if verbose:
        root_logger.setLevel(logging.DEBUG)

    handler = None
    log_file = None
    if config.log_dir.exists():
        stamp = datetime.now().strftime('%Y%m%d_%H%M%S_%f')
        log_file = config.log_dir / f'{config.prog}.log.{stamp}'
        handler = logging.FileHandler(log_file, encoding='utf-8')
        handler.setFormatter(logging.Formatter(
            '%(asctime)s [%(levelname)s] %(name)s: %(message)s',
            datefmt='%Y/%m/%d_%H:%M:%S',
        ))
        root_logger.addHandler(handler)
    try:
        yield log_file
    finally:
        if handler is not None:
            root_logger.removeHandler(handler)
            handler.close()


def _log_paths(config: InstallerConfig) -> None:
    logger.debug(f"STAGE_DIR={config.stage_dir}")
    logger.debug(f"LOG_DIR={config.log_dir}")
    logger.debug(f"ETC_DIR={config.etc_dir}")
    logger.debug(f"CHECKPOINT_FILE={config.checkpoint_file}")
    logger.debug(f"MANIFEST_FILE={config.manifest_file}")


def _fatal(message: str) -> int:
    logger.error(f"FATAL: {message}")
    print(f"ERROR: {message}", file=sys.stderr)
    return EXIT_FATAL


def _require_installed(config: InstallerConfig) -> None:
    if not config.etc_dir.exists():
        raise ConfigError(f"{config.prog} is not installed ({config.etc_dir} missing)")


def install(config: InstallerConfig, manifest_url: str, service: ServiceManager) -> None:
    """Bootstrap directories, fetch the manifest and register the service.

    Raises:
        ConfigError: If directories cannot be created or the manifest is invalid
        FetchError: If the manifest cannot be downloaded
        ServiceError: If the service cannot be registered
    """
    if not manifest_url:
        raise ConfigError("install requires a manifest URL")

    logger.info(f"Installing {config.prog} with manifest {manifest_url}")
    ensure_directories(config.install_dirs)
    CheckpointLedger(config.checkpoint_file).create()

    fetcher = PackageFetcher(timeout=config.download_timeout)
    fetcher.download(manifest_url, config.manifest_file)
    validate_manifest(read_manifest_text(config.manifest_file))

    service.register()
    logger.info(f"{config.prog} installed; manifest at {config.manifest_file}")


def start(config: InstallerConfig, service: ServiceManager, dry_run: bool = False) -> int:
    """Run the engine against the installed manifest."""
    _require_installed(config)
    ensure_directories([config.stage_dir, config.log_dir, config.etc_dir])
    if not dry_run:
        service.mark_started()

    result = build_runner(config, dry_run=dry_run).run_file(config.manifest_file)
    if not result.success:
        return _fatal(result.message)
    return EXIT_SUCCESS


def deinstall(config: InstallerConfig, service: ServiceManager) -> None:
    """Remove the service, the ledger and every installer directory."""
    _require_installed(config)
    service.deregister()
    service.mark_stopped()
    CheckpointLedger(config.checkpoint_file).remove()
    for path in (config.etc_dir, config.checkpoint_dir, config.log_dir, config.stage_dir):
        if path.exists():
            logger.info(f"Removing {path}")
            shutil.rmtree(path)


def _run_verb(args: argparse.Namespace, action) -> int:
    """Load config, set up logging, run action(config) and map errors to exit codes."""
    try:
        config = load_config(args.config)
    except ConfigError as e:
        return _fatal(str(e))

    with _run_logging(config, args.verbose) as log_file:
        print(f"{config.prog} starting, LOG_FILE={log_file or '-'}")
        _log_paths(config)
        try:
            require_root(config)
            rc: int = action(config)
        except _FATAL_ERRORS as e:
            return _fatal(str(e))
        except OSError as e:
            return _fatal(f"{type(e).__name__}: {e}")
        logger.info(f"{config.prog} ended {'cleanly' if rc == EXIT_SUCCESS else f'with status {rc}'}")
        return rc


def install_main(argv: list) -> int:
    """Handle 'install <manifest-url>'."""
    parser = _common_parser('install', 'Install the service and fetch the manifest')
    parser.add_argument('manifest_url', help='http(s) or file:// URL of the manifest')
    args = parser.parse_args(argv)

    def action(config: InstallerConfig) -> int:
        install(config, args.manifest_url, ServiceManager(config))
        return EXIT_SUCCESS

    return _run_verb(args, action)


def install_and_start_main(argv: list) -> int:
    """Handle 'install_and_start <manifest-url>'."""
    parser = _common_parser('install_and_start', 'Install the service, then run it now')
    parser.add_argument('manifest_url', help='http(s) or file:// URL of the manifest')
    args = parser.parse_args(argv)

    def action(config: InstallerConfig) -> int:
        service = ServiceManager(config)
        install(config, args.manifest_url, service)
        return start(config, service)

    return _run_verb(args, action)


def start_main(argv: list) -> int:
    """Handle 'start' (also what the service runs at boot)."""
    parser = _common_parser('start', 'Run (or resume) the installation')
    _add_dry_run(parser)
    args = parser.parse_args(argv)
    return _run_verb(args, lambda config: start(config, ServiceManager(config), dry_run=args.dry_run))


def stop_main(argv: list) -> int:
    """Handle 'stop'."""
    parser = _common_parser('stop', 'Mark the installer service as stopped')
    args = parser.parse_args(argv)

    def action(config: InstallerConfig) -> int:
        _require_installed(config)
        ServiceManager(config).mark_stopped()
        return EXIT_SUCCESS

    return _run_verb(args, action)


def deinstall_main(argv: list) -> int:
    """Handle 'deinstall'."""
    parser = _common_parser('deinstall', 'Remove the service, ledger and directories')
    args = parser.parse_args(argv)

    def action(config: InstallerConfig) -> int:
        deinstall(config, ServiceManager(config))
        return EXIT_SUCCESS

    return _run_verb(args, action)


def validate_main(argv: list) -> int:
    """Handle 'validate <manifest-file>': check structure, list sections.

    Needs neither root nor an installation.
    """
    parser = argparse.ArgumentParser(
        prog='section-installer validate',
        description='Validate a manifest file and list its sections',
    )
    parser.add_argument('manifest_file', type=Path, help='Path to manifest file')
    parser.add_argument('--verbose', '-v', action='store_true', help='Show section settings')
    args = parser.parse_args(argv)

    try:
        text = read_manifest_text(args.manifest_file)
        validate_manifest(text)
    except ManifestError as e:
        print(f"INVALID: {e}", file=sys.stderr)
        return EXIT_USAGE

    names = list_section_names(text)
    print(f"OK: {args.manifest_file} ({len(names)} section(s))")
    if args.verbose:
        manifest = parse_manifest(text)
        for section in manifest:
            missing = section.missing_settings()
            note = f"  (missing: {', '.join(missing)})" if missing else ''
            print(f"  {section.name}{note}")
            for key, value in section.settings.items():
                print(f"    {key}={value}")
    else:
        for name in names:
            print(f"  {name}")
    return EXIT_SUCCESS
