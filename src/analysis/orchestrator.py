"""Concurrent execution of analyzer units."""

from __future__ import annotations

import asyncio
import logging
from typing import Callable, List, Optional, Sequence

from constants import Constants
from common.logging_utils import extra_context, Timer

from .merge import merge_results
from .models import AnalysisProgress, MergedResult, UnitResult
from .units import AnalyzerUnit

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[AnalysisProgress], None]


class Orchestrator:
    """Runs analyzer units under a concurrency cap and merges their results.

    A unit that raises or runs past the run deadline contributes an empty
    result; its label is listed in ``MergedResult.failed_units``.
    """

    def __init__(
        self,
        max_concurrent_units: int = Constants.MAX_CONCURRENT_UNITS,
        *,
        run_timeout: Optional[float] = None,
        progress_callback: Optional[ProgressCallback] = None,
    ):
        self.max_concurrent_units = max(1, int(max_concurrent_units))
        self.run_timeout = run_timeout
        self.progress_callback = progress_callback
        self._completed = 0
        self._total = 0

    def _emit(self, current_task: str) -> None:
        if self.progress_callback is None:
            return
        percentage = int(self._completed * 100 / self._total) if self._total else 100
        event = AnalysisProgress(self._completed, self._total, current_task, percentage)
        try:
            self.progress_callback(event)
        except Exception as exc:  # pylint: disable=broad-exception-caught
            logger.warning("Progress callback failed: %s", exc)

    async def run(self, units: Sequence[AnalyzerUnit]) -> MergedResult:
        """Run ``units`` concurrently and merge what they produce."""
        self._completed = 0
        self._total = len(units)
        failed: List[str] = []
        semaphore = asyncio.Semaphore(self.max_concurrent_units)
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self.run_timeout if self.run_timeout else None

        async def run_unit(unit: AnalyzerUnit) -> UnitResult:
            async with semaphore:
                self._emit(f"{unit.label}: started")
                with Timer() as timer:
                    try:
                        if deadline is None:
                            result = await unit.analyze()
                        else:
                            remaining = deadline - loop.time()
                            if remaining <= 0:
                                raise asyncio.TimeoutError()
                            result = await asyncio.wait_for(unit.analyze(), remaining)
                    except asyncio.TimeoutError:
                        logger.warning(
                            "Unit %s exceeded the run timeout; its results are dropped",
                            unit.label,
                            extra=extra_context(event="unit_timeout", component="orchestrator", unit=unit.label),
                        )
                        failed.append(unit.label)
                        result = UnitResult()
                    except Exception as exc:  # pylint: disable=broad-exception-caught
                        logger.warning(
                            "Unit %s failed: %s",
                            unit.label,
                            exc,
                            exc_info=logger.isEnabledFor(logging.DEBUG),
                            extra=extra_context(event="unit_failed", component="orchestrator", unit=unit.label),
                        )
                        failed.append(unit.label)
                        result = UnitResult()
                self._completed += 1
                logger.debug(
                    "Unit finished",
                    extra=extra_context(
                        event="unit_done",
                        component="orchestrator",
                        unit=unit.label,
                        duration_ms=timer.duration_ms(),
                    ),
                )
                self._emit(f"{unit.label}: finished")
                return result

        self._emit("starting")
        partials = await asyncio.gather(*(run_unit(unit) for unit in units))
        merged = merge_results(partials)
        merged.failed_units = sorted(failed)
        self._emit("done")
        summary = merged.summary
        logger.info(
            "%s %d packages, %d errors, %d warnings, %d deprecated, health score %d",
            Constants.ANALYSIS,
            summary.total_packages,
            summary.errors,
            summary.warnings,
            summary.deprecated,
            summary.health_score,
        )
        return merged

    def run_sync(self, units: Sequence[AnalyzerUnit]) -> MergedResult:
        return asyncio.run(self.run(units))
