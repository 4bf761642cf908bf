"""ng-upgrade - step-by-step Angular major version upgrades.

Dispatches to the ``upgrade``, ``analyze`` and ``checkpoints`` commands.

    Returns:
        int: Exit code
"""
import logging
import sys

from args import parse_args
from common.logging_utils import extra_context, is_debug_enabled

logger = logging.getLogger(__name__)


def main(argv=None):
    """Main function of the program."""
    args = parse_args(argv)

    if is_debug_enabled(logger):
        logger.debug(
            "CLI start",
            extra=extra_context(event="function_entry", component="cli", action=args.action)
        )

    # Lazy imports keep --help fast
    if args.action == "upgrade":
        from cli_upgrade import run_upgrade  # pylint: disable=import-outside-toplevel
        run_upgrade(args)
    elif args.action == "analyze":
        from cli_analyze import run_analyze  # pylint: disable=import-outside-toplevel
        run_analyze(args)
    elif args.action == "checkpoints":
        from cli_checkpoints import run_checkpoints  # pylint: disable=import-outside-toplevel
        run_checkpoints(args)
    else:  # argparse enforces the choice; kept for direct callers
        sys.stderr.write(f"Unknown command: {args.action}\n")
        sys.exit(2)


if __name__ == "__main__":
    main()
