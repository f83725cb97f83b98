"""Constants used in the project."""

from enum import Enum


class ExitCodes(Enum):
    """Exit codes for the program.

    Args:
        Enum (int): Exit codes for the program.
    """

    SUCCESS = 0
    CONNECTION_ERROR = 2
    FILE_ERROR = 1
    EXIT_WARNINGS = 3


class Verdicts(Enum):
    """Verdicts a package resolution can carry."""

    SATISFIED = "satisfied"
    MISSING = "missing"
    CONFLICTING = "conflicting"
    UNKNOWN = "unknown"


class Severity(Enum):
    """Severity levels attached to findings."""

    ERROR = "error"
    WARNING = "warning"
    INFO = "info"


class DefaultScores(Enum):
    """Penalty weights used by the health score.

    Args:
        Enum (int): Points removed from 100 per finding.
    """

    ERROR_PENALTY = 15
    WARNING_PENALTY = 3
    DEPRECATED_PENALTY = 2


class Constants:  # pylint: disable=too-few-public-methods
    """General constants used in the project.
    Data holder for configuration constants; not intended to provide behavior.
    """

    PROJECT_NAME = "depcompat"
    PROJECT_VERSION = "1.0.0"
    REGISTRY_URL_NPM = "https://registry.npmjs.org/"
    PACKAGE_JSON_FILE = "package.json"
    PACKAGE_LOCK_FILE = "package-lock.json"
    PNPM_LOCK_FILE = "pnpm-lock.yaml"
    YARN_LOCK_FILE = "yarn.lock"
    CONFIG_FILES = [".depcompat.yml", ".depcompat.yaml", ".depcompat.json"]
    CACHE_FILE = ".depcompat-cache.json"
    CACHE_FORMAT_VERSION = "1.0"
    LOG_FORMAT = "[%(levelname)s] %(message)s"
    ANALYSIS = "[ANALYSIS]"
    USER_AGENT = "depcompat/1.0.0"

    REQUEST_TIMEOUT = 30  # Timeout in seconds for all HTTP requests
    HTTP_RETRY_MAX = 3
    HTTP_RETRY_BASE_DELAY_SEC = 0.3
    HTTP_CACHE_TTL_SEC = 300
    MAX_CONCURRENT_REQUESTS = 8
    MAX_CONCURRENT_UNITS = 3
    DEFAULT_DEPTH = 1

    # Packages whose latest release is older than this are reported as unmaintained
    STALE_AFTER_DAYS = 730
