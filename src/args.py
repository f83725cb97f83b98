"""Argument parsing functionality for DepCompat."""

import argparse
from constants import Constants

def parse_args(argv=None):
    """Parses the arguments passed to the program."""
    parser = argparse.ArgumentParser(
        prog=Constants.PROJECT_NAME,
        description=(
            "DepCompat - npm dependency compatibility checker"
        ),
        add_help=True,
    )

    parser.add_argument("project",
                        help="Project directory containing package.json (default: current directory)",
                        nargs="?",
                        default=".")

    parser.add_argument("-o", "--output",
                        dest="OUTPUT",
                        help="Path to output JSON file (default: stdout)",
                        action="store",
                        type=str)
    parser.add_argument("--registry",
                        dest="REGISTRY",
                        help="Registry base URL (default: %s)" % Constants.REGISTRY_URL_NPM,
                        action="store",
                        type=str)
    parser.add_argument("--depth",
                        dest="DEPTH",
                        help="Transitive hops to expand beyond direct dependencies (default: %d)" % Constants.DEFAULT_DEPTH,
                        action="store",
                        type=int)
    parser.add_argument("--no-dev",
                        dest="NO_DEV",
                        help="Ignore devDependencies.",
                        action="store_true")
    parser.add_argument("--exclude",
                        dest="EXCLUDE",
                        help="Package name or glob to skip (can be used multiple times)",
                        action="append",
                        type=str,
                        default=[])
    parser.add_argument("--offline",
                        dest="OFFLINE",
                        help="Never contact the registry; use cached metadata only.",
                        action="store_true")
    parser.add_argument("--proxy",
                        dest="PROXY",
                        help="Proxy URL for registry requests",
                        action="store",
                        type=str)
    parser.add_argument("--timeout",
                        dest="TIMEOUT",
                        help="Per-request timeout in seconds",
                        action="store",
                        type=float)
    parser.add_argument("--retries",
                        dest="RETRIES",
                        help="Retries for failed registry requests",
                        action="store",
                        type=int)
    parser.add_argument("--max-concurrency",
                        dest="MAX_REQUESTS",
                        help="Maximum concurrent registry requests (default: %d)" % Constants.MAX_CONCURRENT_REQUESTS,
                        action="store",
                        type=int)
    parser.add_argument("--run-timeout",
                        dest="RUN_TIMEOUT",
                        help="Abandon analysis units still running after this many seconds",
                        action="store",
                        type=float)
    parser.add_argument("--persist-cache",
                        dest="PERSIST_CACHE",
                        help="Keep registry metadata in %s between runs." % Constants.CACHE_FILE,
                        action="store_true")

    parser.add_argument("--loglevel",
                        dest="LOG_LEVEL",
                        help="Set the logging level",
                        action="store",
                        type=str,
                        choices=['DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL'],
                        default='INFO')
    parser.add_argument("--logfile",
                        dest="LOG_FILE",
                        help="Log output file",
                        action="store",
                        type=str)
    parser.add_argument("--error-on-warnings",
                        dest="ERROR_ON_WARNINGS",
                        help="Exit with a non-zero status code if errors or warnings are found.",
                        action="store_true")
    parser.add_argument("-q", "--quiet",
                        dest="QUIET",
                        help="Do not output to console.",
                        action="store_true")

    # Config file (general)
    parser.add_argument("-c", "--config",
                        dest="CONFIG",
                        help="Path to configuration file (YAML, YML, or JSON)",
                        action="store",
                        type=str)
    parser.add_argument("--set",
                        dest="CONFIG_SET",
                        help="Set configuration override (KEY=VALUE format, can be used multiple times)",
                        action="append",
                        type=str,
                        default=[])

    return parser.parse_args(argv)
