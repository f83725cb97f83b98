"""Tests for unit scheduling, failure isolation and result merging."""

import asyncio
import logging
from unittest.mock import Mock

from analysis.merge import compute_summary, dedupe_recommendations, merge_results
from analysis.models import (
    DeprecatedPackage,
    LicenseIssue,
    MergedResult,
    Priority,
    Recommendation,
    Requirement,
    RequirementKind,
    Resolution,
    UnitResult,
)
from analysis.orchestrator import Orchestrator
from analysis.units import AnalyzerUnit
from constants import Severity, Verdicts


def _resolution(package, verdict=Verdicts.SATISFIED, severity=Severity.INFO, installed="1.0.0"):
    req = Requirement(package, "^1.0.0", "app", RequirementKind.DIRECT, False, 0)
    return Resolution(package, installed, (req,), verdict, severity)


def _rec(message, package=None, priority=Priority.MEDIUM):
    return Recommendation(Severity.WARNING, "compatibility", message, package=package, priority=priority)


class StaticUnit(AnalyzerUnit):
    def __init__(self, label, result=None, delay=0.0, tracker=None):
        self.label = label
        self.result = result or UnitResult()
        self.delay = delay
        self.tracker = tracker

    async def analyze(self):
        if self.tracker is not None:
            self.tracker["now"] += 1
            self.tracker["max"] = max(self.tracker["max"], self.tracker["now"])
        try:
            await asyncio.sleep(self.delay)
        finally:
            if self.tracker is not None:
                self.tracker["now"] -= 1
        return self.result


class FailingUnit(AnalyzerUnit):
    label = "broken"

    async def analyze(self):
        raise RuntimeError("boom")


class TestOrchestrator:
    """Concurrency, isolation and progress."""

    def test_failing_unit_is_isolated(self, caplog):
        good = StaticUnit("compatibility", UnitResult(resolutions=[_resolution("left-pad")]))
        with caplog.at_level(logging.WARNING):
            merged = Orchestrator().run_sync([good, FailingUnit()])

        assert [r.package for r in merged.resolutions] == ["left-pad"]
        assert merged.failed_units == ["broken"]
        assert any("Unit broken failed" in r.getMessage() for r in caplog.records)

    def test_unit_concurrency_is_bounded(self):
        tracker = {"now": 0, "max": 0}
        units = [StaticUnit(f"u{i}", delay=0.01, tracker=tracker) for i in range(6)]
        Orchestrator(2).run_sync(units)

        assert tracker["max"] == 2

    def test_run_timeout_drops_slow_unit(self):
        fast = StaticUnit("fast", UnitResult(resolutions=[_resolution("a")]))
        slow = StaticUnit("slow", UnitResult(resolutions=[_resolution("b")]), delay=5)
        merged = Orchestrator(run_timeout=0.2).run_sync([fast, slow])

        assert [r.package for r in merged.resolutions] == ["a"]
        assert merged.failed_units == ["slow"]

    def test_progress_events(self):
        events = []
        Orchestrator(1, progress_callback=events.append).run_sync([StaticUnit("one"), StaticUnit("two")])

        assert [e.current_task for e in events] == [
            "starting", "one: started", "one: finished", "two: started", "two: finished", "done",
        ]
        assert [e.percentage for e in events] == [0, 0, 50, 50, 100, 100]
        assert events[-1].completed == events[-1].total == 2

    def test_raising_progress_callback_does_not_abort(self):
        callback = Mock(side_effect=ValueError("bad callback"))
        merged = Orchestrator(progress_callback=callback).run_sync([StaticUnit("one", UnitResult(resolutions=[_resolution("a")]))])

        assert merged.failed_units == []
        assert len(merged.resolutions) == 1
        assert callback.call_count == 4

    def test_no_units(self):
        merged = Orchestrator().run_sync([])

        assert merged.resolutions == []
        assert merged.summary.health_score == 100


class TestMerge:
    """Merging is order-independent and de-duplicates."""

    def _partials(self):
        first = UnitResult(
            resolutions=[_resolution("b"), _resolution("a", Verdicts.MISSING, Severity.ERROR, None)],
            recommendations=[_rec("fix a", "a", Priority.HIGH), _rec("check b", "b", Priority.LOW)],
            license_issues=[LicenseIssue("b", "1.0.0", "GPL-3.0", ("copyleft license, may affect distribution",))],
            unknown={"x"},
        )
        second = UnitResult(
            resolutions=[_resolution("a")],
            deprecated=[DeprecatedPackage("request", "2.88.2", "request has been deprecated")],
            license_issues=[
                LicenseIssue("b", "1.0.0", "GPL-3.0", ("copyleft license, may affect distribution",)),
                LicenseIssue("a", "1.0.0", "UNKNOWN", ("unknown license, check it manually",)),
            ],
            recommendations=[_rec("fix a", "a", Priority.HIGH)],
            unknown={"y"},
        )
        return first, second

    def test_commutative(self):
        first, second = self._partials()

        assert merge_results([first, second]).to_dict() == merge_results([second, first]).to_dict()

    def test_idempotent(self):
        first, second = self._partials()

        assert merge_results([first, second, first]).to_dict() == merge_results([first, second]).to_dict()

    def test_most_severe_resolution_wins(self):
        merged = merge_results(list(self._partials()))

        assert merged.resolution_for("a").verdict == Verdicts.MISSING
        assert [r.package for r in merged.resolutions] == ["a", "b"]
        assert merged.unknown == ["x", "y"]
        assert [(i.name, i.license) for i in merged.license_issues] == [("a", "UNKNOWN"), ("b", "GPL-3.0")]

    def test_recommendations_deduplicated_and_ordered(self):
        recs = dedupe_recommendations([
            _rec("check b", "b", Priority.LOW),
            _rec("fix a", "a", Priority.HIGH),
            _rec("fix a", "a", Priority.HIGH),
            _rec("fix a", "c", Priority.HIGH),
        ])

        assert [(r.message, r.package) for r in recs] == [("fix a", "a"), ("fix a", "c"), ("check b", "b")]


class TestHealthScore:
    def test_penalties(self):
        result = MergedResult(
            resolutions=[
                _resolution("a", Verdicts.MISSING, Severity.ERROR),
                _resolution("b", Verdicts.SATISFIED, Severity.WARNING),
                _resolution("c"),
            ],
            deprecated=[DeprecatedPackage("d", "1.0.0", "old")],
        )
        summary = compute_summary(result)

        assert summary.health_score == 100 - 15 - 3 - 2
        assert (summary.errors, summary.warnings, summary.deprecated) == (1, 1, 1)
        assert (summary.satisfied, summary.missing) == (2, 1)
        assert summary.total_issues == 2

    def test_score_is_clamped(self):
        result = MergedResult(resolutions=[_resolution(f"p{i}", Verdicts.MISSING, Severity.ERROR) for i in range(10)])

        assert compute_summary(result).health_score == 0
