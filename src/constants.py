"""Constants used in the project."""

from enum import Enum


class ExitCodes(Enum):
    """Exit codes for the program.

    Args:
        Enum (int): Exit codes for the program.
    """

    SUCCESS = 0
    FAILURE = 1
    USAGE_ERROR = 2


class Strategy(Enum):
    """Upgrade strategies accepted by the orchestrator.

    Args:
        Enum (string): Strategy names as exposed on the command line.
    """

    CONSERVATIVE = "conservative"
    BALANCED = "balanced"
    PROGRESSIVE = "progressive"


class CheckpointFrequency(Enum):
    """When checkpoints are captured during a run."""

    EVERY_STEP = "every-step"
    MAJOR_VERSIONS = "major-versions"
    NONE = "none"


class ValidationLevel(Enum):
    """How much validation runs after each step."""

    BASIC = "basic"
    COMPREHENSIVE = "comprehensive"


class ThirdPartyHandling(Enum):
    """What to do with third-party updates found during validation."""

    AUTO = "auto"
    PROMPT = "prompt"
    SKIP = "skip"


class RollbackPolicy(Enum):
    """What to do when a step fails."""

    AUTO_ON_FAILURE = "auto-on-failure"
    MANUAL = "manual"
    NEVER = "never"


def _values(enum_cls):
    return [member.value for member in enum_cls]


class Constants:  # pylint: disable=too-few-public-methods
    """General constants used in the project.
    Data holder for configuration constants; not intended to provide behavior.
    """

    FRAMEWORK_CORE_PACKAGE = "@angular/core"
    MIN_SUPPORTED_VERSION = 12
    MAX_SUPPORTED_VERSION = 20
    DEFAULT_TARGET_VERSION = 20

    STRATEGIES = _values(Strategy)
    CHECKPOINT_FREQUENCIES = _values(CheckpointFrequency)
    VALIDATION_LEVELS = _values(ValidationLevel)
    THIRD_PARTY_MODES = _values(ThirdPartyHandling)
    ROLLBACK_POLICIES = _values(RollbackPolicy)
    LOG_LEVELS = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]

    PACKAGE_JSON_FILE = "package.json"
    ANGULAR_JSON_FILE = "angular.json"
    TSCONFIG_FILE = "tsconfig.json"
    NX_JSON_FILE = "nx.json"
    ESSENTIAL_FILES = [PACKAGE_JSON_FILE]

    STATE_DIR = ".ng-upgrade"
    CHECKPOINTS_DIR = "checkpoints"
    CHECKPOINT_INDEX_FILE = "checkpoints.json"
    SNAPSHOT_MANIFEST_FILE = "snapshot.json"
    SNAPSHOT_FILES_DIR = "files"
    CONFIG_FILE = ".ng-upgrade.yml"
    DEFAULT_KEEP_CHECKPOINTS = 5
    SNAPSHOT_EXCLUDES = [
        "node_modules",
        "dist",
        ".angular",
        STATE_DIR,
        ".git",
        "coverage",
        ".nyc_output",
        "*.log",
        ".DS_Store",
        "Thumbs.db",
    ]

    MINUTES_PER_STEP = 15
    LARGE_CODEBASE_LINES = 50000
    LOW_COVERAGE_PERCENT = 50

    LOG_FORMAT = "[%(levelname)s] %(message)s"
    ENV_LOG_LEVEL = "NGUPGRADE_LOG_LEVEL"

    REGISTRY_URL_NPM = "https://registry.npmjs.org/"
    REQUEST_TIMEOUT = 30  # Timeout in seconds for all HTTP requests
    HTTP_RETRY_MAX = 3
    HTTP_CACHE_TTL_SEC = 300
    REGISTRY_MAX_WORKERS = 8
