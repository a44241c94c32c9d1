"""
Tests for the consolidated audit orchestrator.

Запуск:
    pytest tests/test_orchestrator.py -v
"""

import json
from unittest.mock import patch

import pytest
from conftest import BrokenUi, FakePlatform, make_case

from airlink_audit.core.models import AuditStatus, AuditTestType, SourceType
from airlink_audit.core.progress import AuditPhase
from airlink_audit.orchestrator import ConsolidatedAuditOrchestrator
from airlink_audit.reports.merger import ManualResults
from airlink_audit.testers.catalog import default_test_cases
from airlink_audit.testers.runner import AuditTestRunner

PHASE_ORDER = [
    AuditPhase.ENVIRONMENT_VALIDATION,
    AuditPhase.AUTOMATED_TESTS,
    AuditPhase.MANUAL_TESTS,
    AuditPhase.REPORT_GENERATION,
]


@pytest.fixture
def orchestrator(runner):
    orchestrator = ConsolidatedAuditOrchestrator(runner)
    yield orchestrator
    orchestrator.dispose()


def two_cases():
    return [make_case(AuditTestType.SETTINGS_PERSISTENCE), make_case(AuditTestType.UI_UX)]


# ═══════════════════════════════════════════════════════
# FULL RUN
# ═══════════════════════════════════════════════════════

class TestFullRun:
    """Полный прогон всех фаз."""

    @pytest.mark.asyncio
    async def test_all_checks_pass(self, orchestrator, small_cases, config):
        result = await orchestrator.run_comprehensive_audit(test_cases=small_cases, timestamp="42")

        assert result.success, result.notes
        assert result.error is None
        assert result.end_time is not None and result.end_time >= result.start_time
        assert result.phases_completed == PHASE_ORDER
        assert result.pass_rate == 100.0
        assert len(result.automated_results) == 11
        assert result.summary.passed_tests == 11

        out = config.resolved_output_dir()
        names = sorted(p.name for p in result.report_paths)
        assert names == sorted([
            "automated_test_results_42.json",
            "audit_report_42.json",
            "audit_report_42.md",
            "audit_report_42.html",
            "audit_report_42.csv",
        ])
        assert all(p.parent == out and p.exists() for p in result.report_paths)
        assert (out / "environment_validation_42.json").exists()
        assert not (out / ".airlink_audit_write_probe").exists()

    @pytest.mark.asyncio
    async def test_default_catalog(self, orchestrator):
        result = await orchestrator.run_comprehensive_audit(timestamp="catalog")
        assert [r.test_case.id for r in result.automated_results] == [c.id for c in default_test_cases()]
        assert all(r.status == AuditStatus.PASSED for r in result.automated_results), [
            (r.test_case.id, r.notes) for r in result.automated_results if not r.passed
        ]

    @pytest.mark.asyncio
    async def test_audit_mode_released(self, orchestrator, collaborators):
        await orchestrator.run_comprehensive_audit(test_cases=two_cases())
        assert collaborators.platform.mode_calls == [True, False]
        assert not orchestrator.runner.audit_mode_enabled

    @pytest.mark.asyncio
    async def test_parallel_batches_keep_order(self, config, collaborators):
        config = config.model_copy(update={"max_parallel_tests": 4})
        orchestrator = ConsolidatedAuditOrchestrator(AuditTestRunner(config, collaborators))
        cases = [make_case(AuditTestType.SETTINGS_PERSISTENCE, f"settings_{i}") for i in range(6)]

        result = await orchestrator.run_comprehensive_audit(test_cases=cases)

        assert [r.test_case.id for r in result.automated_results] == [c.id for c in cases]
        orchestrator.dispose()

    @pytest.mark.asyncio
    async def test_result_serializable(self, orchestrator):
        result = await orchestrator.run_comprehensive_audit(test_cases=two_cases())
        data = json.loads(json.dumps(result.to_dict()))
        assert data["phasesCompleted"] == [p.value for p in PHASE_ORDER]
        assert data["mergedResults"]["total"] == 2


# ═══════════════════════════════════════════════════════
# FAILURE MODES
# ═══════════════════════════════════════════════════════

class TestFailureModes:
    """Сбои не прерывают аудит и отражаются в результате."""

    @pytest.mark.asyncio
    async def test_unwritable_output_directory(self, orchestrator, tmp_path):
        blocker = tmp_path / "not_a_dir"
        blocker.write_text("file", encoding="utf-8")

        result = await orchestrator.run_comprehensive_audit(output_directory=blocker, test_cases=two_cases())

        assert result.success is False
        assert result.end_time is not None
        assert result.error is None
        assert result.report_paths == []
        assert not result.environment_validation.output_ready
        assert any("Output directory unavailable" in n for n in result.notes)
        assert AuditPhase.REPORT_GENERATION in result.phases_completed
        assert result.merged.total == 2

    @pytest.mark.asyncio
    async def test_phase_exception_recorded(self, orchestrator):
        with patch.object(orchestrator, "_report_phase", side_effect=RuntimeError("disk exploded")):
            result = await orchestrator.run_comprehensive_audit(test_cases=two_cases())

        assert result.success is False
        assert result.error == "RuntimeError: disk exploded"
        assert result.end_time is not None
        assert AuditPhase.REPORT_GENERATION not in result.phases_completed

    @pytest.mark.asyncio
    async def test_below_threshold(self, orchestrator, collaborators):
        collaborators.ui = BrokenUi()

        result = await orchestrator.run_comprehensive_audit(test_cases=two_cases())

        assert result.pass_rate == 50.0
        assert result.success is False
        assert any("below threshold" in n for n in result.notes)
        failed = [r for r in result.automated_results if r.status == AuditStatus.FAILED]
        assert failed[0].notes == "RuntimeError: UI automation crashed"

    @pytest.mark.asyncio
    async def test_custom_threshold(self, orchestrator, collaborators):
        collaborators.ui = BrokenUi()
        result = await orchestrator.run_comprehensive_audit(test_cases=two_cases(), pass_rate_threshold=50)
        assert result.success is True

    @pytest.mark.asyncio
    async def test_missing_collaborator_skips(self, orchestrator, collaborators):
        collaborators.discovery = None

        result = await orchestrator.run_comprehensive_audit(
            test_cases=[make_case(AuditTestType.DISCOVERY), make_case(AuditTestType.CHECKSUM_VERIFICATION)],
            pass_rate_threshold=0,
        )

        skipped = result.automated_results[0]
        assert skipped.status == AuditStatus.SKIPPED
        assert skipped.notes == "Collaborator unavailable: discovery"
        assert result.automated_results[1].status == AuditStatus.PASSED

    @pytest.mark.asyncio
    async def test_environment_problems_do_not_gate(self, config, collaborators):
        collaborators.platform = FakePlatform(storage_gb=0.01, permissions={"storage": False, "nearby": True})
        orchestrator = ConsolidatedAuditOrchestrator(AuditTestRunner(config, collaborators))

        result = await orchestrator.run_comprehensive_audit(test_cases=two_cases(), timestamp="env")

        validation = result.environment_validation
        assert not validation.is_valid
        assert "Missing permissions: storage" in validation.errors
        assert any(e.startswith("Insufficient storage") for e in validation.errors)
        assert result.success is True
        snapshot = json.loads(
            (config.resolved_output_dir() / "environment_validation_env.json").read_text(encoding="utf-8")
        )
        assert snapshot["isValid"] is False
        orchestrator.dispose()


# ═══════════════════════════════════════════════════════
# MANUAL RESULTS
# ═══════════════════════════════════════════════════════

class TestManualPhase:
    """Ручные результаты."""

    @pytest.mark.asyncio
    async def test_manual_overrides_automated(self, orchestrator):
        manual = [
            {"testId": "ui_ux_t", "testName": "UI walkthrough", "category": "ui", "passed": False},
            {"testId": "qr_manual_001", "testName": "QR in sunlight", "passed": True},
        ]

        result = await orchestrator.run_comprehensive_audit(test_cases=two_cases(), manual_results=manual)

        merged = result.merged
        assert merged.total == 3
        assert merged.records["ui_ux_t"].source == SourceType.MANUAL
        assert merged.records["ui_ux_t"].status == AuditStatus.FAILED
        assert merged.overlap_count == 1

    @pytest.mark.asyncio
    async def test_opt_out_skips_phase(self, orchestrator):
        subscription = orchestrator.subscribe()

        result = await orchestrator.run_comprehensive_audit(
            test_cases=two_cases(),
            include_manual_tests=False,
            manual_results=[{"testId": "never_loaded", "passed": True}],
        )

        events = subscription.pending()
        assert all(e.phase != AuditPhase.MANUAL_TESTS for e in events)
        assert AuditPhase.MANUAL_TESTS not in result.phases_completed
        assert "never_loaded" not in result.merged.records

    @pytest.mark.asyncio
    async def test_invalid_manual_entries_do_not_block_reports(self, orchestrator):
        result = await orchestrator.run_comprehensive_audit(
            test_cases=two_cases(),
            manual_results=[{"name": "no id here", "passed": True}],
        )

        assert result.error is None
        assert result.phases_completed == PHASE_ORDER
        assert result.manual_error is not None
        assert result.manual_error.source == "manual_results argument"
        assert any(n.startswith("Manual results unavailable") for n in result.notes)
        assert result.manual_entries == []
        assert result.merged.total == 2
        assert len(result.report_paths) == 5
        assert result.success is True

    @pytest.mark.asyncio
    async def test_manual_device_info_reaches_report(self, orchestrator):
        manual = ManualResults.model_validate({
            "deviceInfo": {"devices": [{"model": "Pixel 8", "osVersion": "Android 14", "ip": "10.0.0.5"}]},
            "testEnvironment": {"networkType": "Wi-Fi Aware"},
            "tests": [{"testId": "qr_manual_001", "passed": True}],
        })

        result = await orchestrator.run_comprehensive_audit(test_cases=two_cases(), manual_results=manual)

        assert result.report_data.device_info["devices"][0]["model"] == "Pixel 8"
        assert result.report_data.test_environment == {"networkType": "Wi-Fi Aware"}
        assert "qr_manual_001" in result.merged.records

    @pytest.mark.asyncio
    async def test_malformed_manual_file(self, config, collaborators, tmp_path):
        manual_path = tmp_path / "manual_results.json"
        manual_path.write_text("{broken", encoding="utf-8")
        config = config.model_copy(update={"manual_results_path": manual_path})
        orchestrator = ConsolidatedAuditOrchestrator(AuditTestRunner(config, collaborators))

        result = await orchestrator.run_comprehensive_audit(test_cases=two_cases())

        assert result.manual_error is not None
        assert any(n.startswith("Manual results unavailable") for n in result.notes)
        assert result.merged.total == 2
        assert result.success is True
        orchestrator.dispose()


# ═══════════════════════════════════════════════════════
# PROGRESS
# ═══════════════════════════════════════════════════════

class TestProgress:
    """События прогресса."""

    @pytest.mark.asyncio
    async def test_event_order(self, orchestrator):
        subscription = orchestrator.subscribe()

        await orchestrator.run_comprehensive_audit(test_cases=two_cases())
        events = subscription.pending()

        phases = [e.phase for e in events]
        assert [p for i, p in enumerate(phases) if i == 0 or phases[i - 1] != p] == PHASE_ORDER
        for phase in PHASE_ORDER:
            percentages = [e.percentage for e in events if e.phase == phase]
            assert percentages[0] == 0
            assert percentages[-1] == 100
            assert percentages == sorted(percentages)
        per_test = [e.message for e in events if e.phase == AuditPhase.AUTOMATED_TESTS][1:-1]
        assert per_test == ["settings_persistence_t: passed", "ui_ux_t: passed"]

    @pytest.mark.asyncio
    async def test_dispose_closes_subscriptions(self, orchestrator):
        subscription = orchestrator.subscribe()
        orchestrator.dispose()
        orchestrator.dispose()
        assert orchestrator.disposed
        assert await subscription.get() is None

    @pytest.mark.asyncio
    async def test_run_after_dispose(self, runner):
        orchestrator = ConsolidatedAuditOrchestrator(runner)
        orchestrator.dispose()

        result = await orchestrator.run_comprehensive_audit(test_cases=two_cases())

        assert result.success is True
        assert await orchestrator.subscribe().get() is None
