#!/usr/bin/env python3
"""CLI entry point for section-installer.

Commands:
- install <url>:            Register the service and fetch the manifest
- install_and_start <url>:  Install, then run the installation now
- start:                    Run (or resume) the installation
- stop:                     Mark the service stopped
- deinstall:                Remove the service, ledger and directories
- validate <file>:          Check a manifest without installing anything

Exit status is 0 on clean completion, 255 on a fatal error and 1 for an
unrecognised command.
"""

import logging
import sys
from importlib.metadata import PackageNotFoundError, version

COMMANDS = {
    "install": "Install as a service and fetch the manifest from <url>",
    "install_and_start": "Install, then start processing the manifest",
    "start": "Process (or resume) the installed manifest",
    "stop": "Mark the installer service as stopped",
    "deinstall": "Remove the service, checkpoints and directories",
    "validate": "Validate a manifest file and list its sections",
}


def get_version() -> str:
    """Installed distribution version, or 'dev' from a source checkout."""
    try:
        return version('section-installer')
    except PackageNotFoundError:
        return 'dev'


# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s [%(levelname)s] %(message)s',
    datefmt='%Y-%m-%d %H:%M:%S'
)
logger = logging.getLogger(__name__)


def print_usage() -> None:
    """Print top-level usage."""
    print(f"section-installer {get_version()}")
    print()
    print("Usage: section-installer {install URL|install_and_start URL|start|stop|deinstall|validate FILE}")
    print()
    print("Commands:")
    for name, desc in COMMANDS.items():
        print(f"  {name:<18} {desc}")
    print()
    print("Run 'section-installer <command> --help' for command-specific options.")


def dispatch(command: str, argv: list) -> int:
    """Dispatch to the command handler.

    Args:
        command: One of COMMANDS
        argv: Arguments after the command

    Returns:
        Exit code
    """
    from installer_opr import cli as verbs

    handlers = {
        "install": verbs.install_main,
        "install_and_start": verbs.install_and_start_main,
        "start": verbs.start_main,
        "stop": verbs.stop_main,
        "deinstall": verbs.deinstall_main,
        "validate": verbs.validate_main,
    }
    rc: int = handlers[command](argv)
    return rc


def main(argv: list | None = None) -> int:
    """CLI entry point."""
    if argv is None:
        argv = sys.argv[1:]

    if not argv:
        print_usage()
        return 1

    command = argv[0]
    if command in ('-h', '--help', 'help'):
        print_usage()
        return 0
    if command == '--version':
        print(f"section-installer {get_version()}")
        return 0
    if command not in COMMANDS:
        print(f"Error: Unknown command '{command}'")
        print_usage()
        return 1

    return dispatch(command, argv[1:])


if __name__ == '__main__':
    sys.exit(main())
