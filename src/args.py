"""Argument parsing functionality for ng-upgrade."""

import argparse
from constants import Constants


def _add_common_args(parser):
    """Options shared by every subcommand."""
    parser.add_argument("-p", "--path",
                        dest="PROJECT_PATH",
                        help="Path to the Angular project (default: current directory)",
                        action="store",
                        type=str,
                        default=".")
    parser.add_argument("--loglevel",
                        dest="LOG_LEVEL",
                        help="Set the logging level",
                        action="store",
                        type=str.upper,
                        choices=Constants.LOG_LEVELS,
                        default="INFO")
    parser.add_argument("--logfile",
                        dest="LOG_FILE",
                        help="Log output file",
                        action="store",
                        type=str)
    parser.add_argument("-c", "--config",
                        dest="CONFIG",
                        help=f"Path to configuration file (YAML, YML, or JSON; default: {Constants.CONFIG_FILE} in the project)",
                        action="store",
                        type=str)
    parser.add_argument("-y", "--yes",
                        dest="ASSUME_YES",
                        help="Answer yes to every confirmation prompt.",
                        action="store_true")


def _add_upgrade_parser(subparsers):
    parser = subparsers.add_parser(
        "upgrade",
        help="Upgrade the project one major version at a time",
        description="Upgrade Angular through every intermediate major version with checkpoints.",
    )
    _add_common_args(parser)
    parser.add_argument("-t", "--target",
                        dest="TARGET",
                        help=f"Target Angular major version (default: {Constants.DEFAULT_TARGET_VERSION})",
                        action="store",
                        type=str)
    parser.add_argument("-s", "--strategy",
                        dest="STRATEGY",
                        help="Upgrade strategy",
                        action="store",
                        type=str.lower,
                        choices=Constants.STRATEGIES)
    parser.add_argument("--dry-run",
                        dest="DRY_RUN",
                        help="Show the upgrade plan without changing anything.",
                        action="store_true")
    parser.add_argument("--no-backup",
                        dest="NO_BACKUP",
                        help="Do not capture checkpoints before steps.",
                        action="store_true")
    parser.add_argument("--validation",
                        dest="VALIDATION",
                        help="Validation level after each step",
                        action="store",
                        type=str.lower,
                        choices=Constants.VALIDATION_LEVELS)
    parser.add_argument("--checkpoints",
                        dest="CHECKPOINT_FREQUENCY",
                        help="When to capture checkpoints",
                        action="store",
                        type=str.lower,
                        choices=Constants.CHECKPOINT_FREQUENCIES)
    parser.add_argument("--rollback-policy",
                        dest="ROLLBACK_POLICY",
                        help="What to do when a step fails",
                        action="store",
                        type=str.lower,
                        choices=Constants.ROLLBACK_POLICIES)
    parser.add_argument("--third-party",
                        dest="THIRD_PARTY",
                        help="How to handle third-party dependency updates during comprehensive validation",
                        action="store",
                        type=str.lower,
                        choices=Constants.THIRD_PARTY_MODES)
    parser.add_argument("--parallel",
                        dest="PARALLEL",
                        help="Run independent dependency lookups concurrently.",
                        action="store_true",
                        default=None)
    parser.add_argument("--backup-path",
                        dest="BACKUP_PATH",
                        help="Directory for checkpoint storage (default: .ng-upgrade in the project)",
                        action="store",
                        type=str)
    parser.add_argument("--acknowledge",
                        dest="ACKNOWLEDGE",
                        help="Mark a manual breaking change as handled (repeatable), e.g. ng13-view-engine-removal",
                        action="append",
                        type=str,
                        default=[])


def _add_analyze_parser(subparsers):
    parser = subparsers.add_parser(
        "analyze",
        help="Report how ready the project is for an upgrade",
        description="Read-only readiness analysis; never modifies the project.",
    )
    _add_common_args(parser)
    parser.add_argument("-t", "--target",
                        dest="TARGET",
                        help="Version to assess readiness for (default: next major)",
                        action="store",
                        type=str)
    parser.add_argument("--registry",
                        dest="REGISTRY_LOOKUP",
                        help="Query the npm registry for packages missing from the compatibility table.",
                        action="store_true",
                        default=None)


def _add_checkpoints_parser(subparsers):
    parser = subparsers.add_parser(
        "checkpoints",
        help="List, create, restore or clean up checkpoints",
        description="Manage upgrade checkpoints.",
    )
    _add_common_args(parser)
    parser.add_argument("-l", "--list",
                        dest="LIST",
                        help="List checkpoints, oldest first.",
                        action="store_true")
    parser.add_argument("-r", "--rollback",
                        dest="ROLLBACK",
                        metavar="ID",
                        help="Restore the project to checkpoint ID (asks for confirmation).",
                        action="store",
                        type=str)
    parser.add_argument("--create",
                        dest="CREATE",
                        metavar="DESC",
                        help="Capture a checkpoint with the given description.",
                        action="store",
                        type=str)
    parser.add_argument("--cleanup",
                        dest="CLEANUP",
                        help="Delete old checkpoints (asks for confirmation).",
                        action="store_true")
    parser.add_argument("--keep",
                        dest="KEEP",
                        help=f"How many checkpoints --cleanup keeps (default: {Constants.DEFAULT_KEEP_CHECKPOINTS})",
                        action="store",
                        type=int)
    parser.add_argument("--backup-path",
                        dest="BACKUP_PATH",
                        help="Directory for checkpoint storage (default: .ng-upgrade in the project)",
                        action="store",
                        type=str)


def build_parser():
    """Build the top-level parser with its subcommands."""
    parser = argparse.ArgumentParser(
        prog="ng-upgrade",
        description=(
            "ng-upgrade - step-by-step Angular major version upgrades with checkpoints and rollback"
        ),
        add_help=True,
    )
    subparsers = parser.add_subparsers(dest="action", metavar="{upgrade,analyze,checkpoints}")
    subparsers.required = True
    _add_upgrade_parser(subparsers)
    _add_analyze_parser(subparsers)
    _add_checkpoints_parser(subparsers)
    return parser


def parse_args(argv=None):
    """Parses the arguments passed to the program."""
    return build_parser().parse_args(argv)
