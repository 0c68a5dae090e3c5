"""
Entry point for `python -m cis_m365_audit` and the `cis-m365-audit` script.
A missing client library exits with the configuration error code before the
command line module is imported.
"""

import sys
from typing import Optional

from .config import AuditConfigurationError, check_dependencies

EXIT_CONFIG = 2


def main(argv: Optional[list[str]] = None) -> int:
    try:
        check_dependencies()
    except AuditConfigurationError as e:
        print(f"\nConfiguration error: {e}", file=sys.stderr)
        return EXIT_CONFIG

    from .cli import main as cli_main
    return cli_main(argv)


if __name__ == "__main__":
    sys.exit(main())
