"""DepCompat - npm dependency compatibility checker.

    Returns:
        int: Exit code
"""
import asyncio
import json
import logging
import platform
import sys
import time
from datetime import datetime, timezone
from typing import List, Optional

from constants import ExitCodes, Constants, Severity
from common.errors import ConfigError, ManifestError, ValidationError
from common.logging_utils import configure_logging, extra_context, is_debug_enabled
from args import parse_args
from cli_config import AnalyzerConfig, apply_cli_overrides, load_config
from registry.npm.client import NpmRegistryClient
from registry.npm.models import ProjectModel
from registry.npm.project import load_project
from analysis.classifier import ConflictClassifier
from analysis.collector import RequirementCollector
from analysis.models import MergedResult, RunMetadata
from analysis.orchestrator import Orchestrator, ProgressCallback
from analysis.units import AnalyzerUnit, CompatibilityUnit, DeprecationUnit, LicenseUnit

logger = logging.getLogger(__name__)


def build_units(model: ProjectModel, client: NpmRegistryClient, config: AnalyzerConfig) -> List[AnalyzerUnit]:
    """Analyzer units for one run, all sharing ``client``."""
    opts = config.analysis
    collector = RequirementCollector(
        client,
        max_depth=opts.depth,
        exclude=opts.exclude_packages,
        skip_optional_peers=opts.skip_optional_peer_deps,
    )
    units: List[AnalyzerUnit] = [CompatibilityUnit(model, collector, ConflictClassifier(client))]
    if opts.check_deprecations:
        units.append(DeprecationUnit(
            model,
            client,
            stale_after_days=opts.stale_after_days,
            exclude=collector.is_excluded,
        ))
    if opts.check_licenses:
        units.append(LicenseUnit(
            model,
            client,
            allowed=opts.allowed_licenses,
            exclude=collector.is_excluded,
        ))
    return units


async def analyze_project(
    model: ProjectModel,
    config: AnalyzerConfig,
    client: Optional[NpmRegistryClient] = None,
    progress_callback: Optional[ProgressCallback] = None,
) -> MergedResult:
    """Run every analyzer unit against ``model`` and attach run metadata.

    A client passed in is left open; one created here is closed (and its
    cache persisted) before returning.
    """
    started = datetime.now(timezone.utc)
    t0 = time.monotonic()
    owns_client = client is None
    if client is None:
        client = NpmRegistryClient.from_config(config, model.root)
    try:
        orchestrator = Orchestrator(
            config.max_concurrent_units,
            run_timeout=config.run_timeout,
            progress_callback=progress_callback,
        )
        result = await orchestrator.run(build_units(model, client, config))
    finally:
        if owns_client:
            await client.close()
    result.metadata = RunMetadata(
        project_name=model.name,
        project_path=model.root,
        package_manager=model.package_manager,
        lockfile=model.lockfile_path,
        registry=config.registry,
        started_at=started.isoformat(),
        duration_ms=int((time.monotonic() - t0) * 1000),
        tool_version=Constants.PROJECT_VERSION,
        python_version=platform.python_version(),
        platform=sys.platform,
        requests_made=client.request_count,
        cache_hits=client.cache.hits,
        offline=config.network.offline,
    )
    return result


def export_json(result: MergedResult, path: Optional[str]) -> None:
    """Write the merged result as JSON to ``path``, or stdout when None.

    Raises:
        OSError: When the file can't be written.
    """
    document = result.to_dict()
    if path is None:
        json.dump(document, sys.stdout, ensure_ascii=False, indent=2)
        sys.stdout.write("\n")
        return
    with open(path, "w", encoding="utf-8") as file:
        json.dump(document, file, ensure_ascii=False, indent=2)
    logging.info("JSON file has been successfully exported at: %s", path)


def _log_progress(event) -> None:
    logger.debug(
        "Progress %d/%d (%d%%): %s",
        event.completed,
        event.total,
        event.percentage,
        event.current_task,
        extra=extra_context(event="progress", component="cli"),
    )


def main(argv=None) -> int:
    """Main function of the program."""
    args = parse_args(argv)
    configure_logging(args.LOG_LEVEL, args.LOG_FILE, args.QUIET)

    if is_debug_enabled(logger):
        logger.debug(
            "CLI start",
            extra=extra_context(event="function_entry", component="cli", action="main")
        )

    try:
        config = load_config(args.project, args.CONFIG, args.CONFIG_SET)
        config = apply_cli_overrides(config, args)
    except ConfigError as e:
        logging.error("Invalid configuration: %s", e)
        return ExitCodes.FILE_ERROR.value

    try:
        model = load_project(args.project, include_dev=config.analysis.include_dev_dependencies)
    except (ManifestError, ValidationError) as e:
        logging.error("%s, aborting", e)
        return ExitCodes.FILE_ERROR.value

    logging.info("%s Analyzing %s (%d declared dependencies)", Constants.ANALYSIS, model.name, len(model.declared))
    result = asyncio.run(analyze_project(model, config, progress_callback=_log_progress))

    try:
        export_json(result, args.OUTPUT)
    except OSError as e:
        logging.error("JSON file couldn't be written to disk: %s", e)
        return ExitCodes.FILE_ERROR.value

    has_findings = (
        any(r.severity in (Severity.ERROR, Severity.WARNING) for r in result.resolutions)
        or bool(result.deprecated)
        or bool(result.license_issues)
    )
    if has_findings:
        logging.warning("One or more dependency issues were found.")
        if args.ERROR_ON_WARNINGS:
            logging.error("Warnings present, exiting with non-zero status code.")
            return ExitCodes.EXIT_WARNINGS.value
    return ExitCodes.SUCCESS.value


if __name__ == "__main__":
    sys.exit(main())
