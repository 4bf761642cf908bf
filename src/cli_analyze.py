"""CLI entry point for the read-only ``analyze`` command."""

from __future__ import annotations

import logging
import os
import sys
from typing import Any

from constants import ExitCodes
from cli_config import ConfigError, build_resolver, load_config, setup_logging
from analysis.project_analyzer import ProjectAnalyzer, render_readiness
from compat.resolver import render_report
from upgrade.errors import UpgradeError
from upgrade.planner import parse_version_id

logger = logging.getLogger(__name__)


def run_analyze(args: Any) -> None:
    """Entry point for the analyze command.

    Args:
        args: Parsed CLI arguments namespace.
    """
    setup_logging(args)
    project_path = os.path.abspath(getattr(args, "PROJECT_PATH", "."))

    try:
        config = load_config(getattr(args, "CONFIG", None), project_path)
        resolver = build_resolver(config, registry_lookup=getattr(args, "REGISTRY_LOOKUP", None))
        target_raw = getattr(args, "TARGET", None)
        target = parse_version_id(target_raw) if target_raw else None
    except (ConfigError, UpgradeError) as e:
        logger.error("%s", e)
        sys.exit(ExitCodes.USAGE_ERROR.value)

    analyzer = ProjectAnalyzer(project_path, resolver=resolver)
    try:
        report = analyzer.analyze(target)
    except UpgradeError as e:
        logger.error("Analysis failed: %s", e)
        sys.exit(ExitCodes.FAILURE.value)

    for line in render_readiness(report):
        print(line)
    if report.compatibility is not None and report.compatibility.total_updates:
        print("")
        for line in render_report(report.compatibility):
            print(line)
    sys.exit(ExitCodes.SUCCESS.value)
