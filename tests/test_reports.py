"""
Tests for report rendering, the consolidated template and the report pipeline.

Запуск:
    pytest tests/test_reports.py -v
"""

import csv
import io
import json

import pytest

from airlink_audit.core.errors import ReportGenerationError
from airlink_audit.core.models import AuditStatus, MergedTestRecord, ReportFormat, SectionError, SourceType
from airlink_audit.reports.data import ReportData
from airlink_audit.reports.generator import (
    ReportGenerator,
    generate_recommendations,
    render_csv,
    render_html,
    render_json,
    render_markdown,
)
from airlink_audit.reports.merger import merge_results
from airlink_audit.reports.placeholders import (
    DEFAULTS,
    NOT_AVAILABLE,
    Placeholder,
    build_template_values,
    render_template,
)
from airlink_audit.reports.pipeline import collect_report_data, generate_audit_report
from airlink_audit.reports.sources import BenchmarkSummary

TIMESTAMP = "1760000000000"


def record(test_id: str, status: AuditStatus = AuditStatus.PASSED, source=SourceType.AUTOMATED,
           name: str = None, duration: float = 1.0) -> MergedTestRecord:
    return MergedTestRecord(id=test_id, name=name or test_id, status=status, source=source, duration=duration)


def make_data(records=(), **kwargs) -> ReportData:
    return ReportData(merged=merge_results(list(records)), timestamp=TIMESTAMP, **kwargs)


# ═══════════════════════════════════════════════════════
# RENDERERS
# ═══════════════════════════════════════════════════════

class TestRenderers:
    """JSON / Markdown / HTML / CSV."""

    def test_json_compact(self):
        payload = render_json(make_data([record("discovery_001")]))
        assert '"totalTests":1' in payload
        data = json.loads(payload)
        assert data["passRate"] == 100.0
        assert data["recommendations"][0]["title"] == "No immediate action required"

    def test_markdown_section_order(self):
        text = render_markdown(make_data([record("discovery_001")]))
        headings = [
            "# AirLink Audit Report",
            "## Executive Summary",
            "## Summary",
            "## Test Results",
            "## Core Checks",
            "## Performance Metrics",
            "## Security Audit",
            "## Code Quality",
            "## Recommendations",
        ]
        positions = [text.index(h) for h in headings]
        assert positions == sorted(positions)

    def test_markdown_empty(self):
        text = render_markdown(make_data())
        assert "No test results available." in text
        assert "- **Total Tests:** 0" in text

    def test_markdown_section_errors(self):
        data = make_data(
            [record("discovery_001")],
            benchmarks=SectionError("Benchmark results file not found"),
            manual_error=SectionError("Cannot parse manual results: bad json"),
        )
        text = render_markdown(data)
        assert "⚠️ Benchmark results file not found" in text
        assert "⚠️ Cannot parse manual results: bad json" in text
        assert "No coverage data available." in text

    def test_html(self):
        text = render_html(make_data([record("qr_<pairing>")]))
        assert text.startswith("<!DOCTYPE html>")
        assert "<title>AirLink Audit Report</title>" in text
        assert "qr_&lt;pairing&gt;" in text

    def test_csv(self):
        text = render_csv(make_data([record("discovery_001"), record("ui_001", AuditStatus.FAILED)]))
        rows = list(csv.reader(io.StringIO(text)))
        assert rows[0] == ["Metric", "Value", "Category", "Status"]
        assert ["Total Tests", "2", "Summary", "INFO"] in rows
        assert ["Failed Tests", "1", "Summary", "FAIL"] in rows


# ═══════════════════════════════════════════════════════
# DERIVED VALUES
# ═══════════════════════════════════════════════════════

class TestDerived:
    """Статус готовности, серьёзность, рекомендации."""

    @pytest.mark.parametrize(
        "passed, expected",
        [(20, "Production Ready"), (19, "Production Ready"), (16, "Needs Fixes"), (15, "Prototype")],
    )
    def test_production_status(self, passed, expected):
        records = [record(f"t{i}", AuditStatus.PASSED if i < passed else AuditStatus.FAILED) for i in range(20)]
        assert make_data(records).production_status == expected

    def test_severity_by_core_check(self):
        data = make_data([
            record("cross_platform_001", AuditStatus.FAILED),
            record("discovery_001", AuditStatus.FAILED),
            record("misc_001", AuditStatus.FAILED),
        ])
        failed = data.failed_by_severity()
        assert [r.id for r in failed["critical"]] == ["cross_platform_001"]
        assert [r.id for r in failed["high"]] == ["discovery_001"]
        assert [r.id for r in failed["low"]] == ["misc_001"]

    def test_recommendations(self):
        data = make_data(
            [record("checksum_verification_001", AuditStatus.FAILED)],
            benchmarks=BenchmarkSummary(total_benchmarks=1, average_cpu=75.0, average_memory=50.0),
        )
        recs = generate_recommendations(data)
        titles = [r["title"] for r in recs]
        assert titles[0] == "Fix 1 failed test(s)"
        assert "Core check 6 failing: Checksum Verification" in titles
        assert "Optimize CPU usage during transfers" in titles
        assert "Reduce memory usage during transfers" not in titles
        assert {r["priority"] for r in recs} <= {"critical", "high", "medium", "low"}

    def test_check_summary_labels(self):
        data = make_data([record("discovery_001", duration=2.5)])
        summaries = {int(s.check): s for s in data.check_summaries()}
        assert summaries[1].status_label == "✅ PASS"
        assert summaries[1].details == "1/1 tests passed"
        assert summaries[1].duration_label == "2.5s"
        assert summaries[2].status_label == "⏭️ SKIPPED"
        assert summaries[2].details == "Not tested"


# ═══════════════════════════════════════════════════════
# TEMPLATE
# ═══════════════════════════════════════════════════════

class TestTemplate:
    """Консолидированный шаблон {{PLACEHOLDER}}."""

    def test_every_placeholder_substituted(self):
        template = "\n".join(f"{p.value}={{{{{p.value}}}}}" for p in Placeholder)
        template += "\nUNKNOWN={{NOT_A_REAL_TOKEN}}"

        rendered = render_template(template, build_template_values(make_data([record("discovery_001")])))

        assert "{{" not in rendered
        assert "UNKNOWN=N/A" in rendered
        assert "TOTAL_TESTS=1" in rendered
        assert "CHECK_1_STATUS=✅ PASS" in rendered
        assert "CHECK_2_STATUS=⏭️ SKIPPED" in rendered
        assert "CHECKSUM_ALGORITHM=SHA-256" in rendered

    def test_defaults_for_empty_data(self):
        values = build_template_values(make_data())
        assert values[Placeholder.TOTAL_TESTS] == "0"
        assert values[Placeholder.PASS_RATE] == "0.0"
        assert values[Placeholder.CHECK_11_STATUS] == "⏭️ SKIPPED"
        assert values[Placeholder.AVG_SPEED] == NOT_AVAILABLE
        assert values[Placeholder.AUTO_TEST_1_ID] == NOT_AVAILABLE

    def test_default_table(self):
        assert DEFAULTS[Placeholder.CHECK_3_STATUS] == "⏭️ SKIPPED"
        assert DEFAULTS[Placeholder.FAILED_TESTS] == "0"
        assert DEFAULTS[Placeholder.AUTO_PASS_RATE] == "0"
        assert DEFAULTS[Placeholder.PRODUCTION_STATUS] == NOT_AVAILABLE

    def test_substitution_is_single_pass(self):
        data = make_data([record("discovery_001", name="{{PASS_RATE}}")])
        rendered = render_template("name: {{AUTO_TEST_1_NAME}}", build_template_values(data))
        assert rendered == "name: {{PASS_RATE}}"

    def test_missing_values_fall_back_to_defaults(self):
        assert render_template("{{FAILED_TESTS}} / {{AVG_CPU}}", {}) == "0 / N/A"

    def test_source_slots(self):
        data = make_data([
            record("discovery_001"),
            record("qr_manual_001", source=SourceType.MANUAL, status=AuditStatus.FAILED),
        ])
        values = build_template_values(data)
        assert values[Placeholder.AUTO_TOTAL] == "1"
        assert values[Placeholder.MANUAL_TOTAL] == "1"
        assert values[Placeholder.MANUAL_TEST_1_ID] == "qr_manual_001"
        assert values[Placeholder.MANUAL_TEST_1_STATUS] == "❌ FAILED"
        assert values[Placeholder.MANUAL_PASS_RATE] == "0.0"
        assert values[Placeholder.HIGH_ISSUE_1_TITLE] == "qr_manual_001 (qr_manual_001)"

    def test_manual_device_info_preferred(self):
        data = make_data(
            environment={"network": {"platform": "linux", "wifiIP": "192.168.1.2"}},
            device_info={"devices": [
                {"model": "Pixel 8", "osVersion": "Android 14", "ip": "10.0.0.5"},
                {"deviceName": "iPhone 15", "os": "iOS 17"},
            ]},
            test_environment={"networkType": "Wi-Fi Aware", "signalStrength": "-48 dBm"},
        )

        values = build_template_values(data)

        assert values[Placeholder.DEVICE_1_MODEL] == "Pixel 8"
        assert values[Placeholder.DEVICE_1_OS] == "Android 14"
        assert values[Placeholder.DEVICE_1_IP] == "10.0.0.5"
        assert values[Placeholder.DEVICE_2_MODEL] == "iPhone 15"
        assert values[Placeholder.DEVICE_2_IP] == NOT_AVAILABLE
        assert values[Placeholder.DEVICE_3_MODEL] == NOT_AVAILABLE
        assert values[Placeholder.NETWORK_TYPE] == "Wi-Fi Aware"
        assert values[Placeholder.SIGNAL_STRENGTH] == "-48 dBm"
        assert values[Placeholder.BANDWIDTH] == NOT_AVAILABLE

    def test_single_device_info(self):
        values = build_template_values(make_data(device_info={"model": "Pixel 8", "osVersion": "Android 14"}))
        assert values[Placeholder.DEVICE_1_MODEL] == "Pixel 8"
        assert values[Placeholder.DEVICE_1_OS] == "Android 14"

    def test_environment_snapshot_without_manual_devices(self):
        values = build_template_values(make_data(
            environment={"network": {"platform": "linux", "wifiIP": "192.168.1.2"}},
        ))
        assert values[Placeholder.DEVICE_1_MODEL] == "linux"
        assert values[Placeholder.DEVICE_1_OS] == "linux"
        assert values[Placeholder.DEVICE_1_IP] == "192.168.1.2"
        assert values[Placeholder.NETWORK_TYPE] == "Wi-Fi"


# ═══════════════════════════════════════════════════════
# WRITING
# ═══════════════════════════════════════════════════════

class TestReportGenerator:
    """Запись файлов."""

    def test_write_reports(self, tmp_path):
        generator = ReportGenerator(tmp_path / "out", TIMESTAMP)
        paths = generator.write_reports(make_data([record("discovery_001")]))

        assert set(paths) == set(ReportFormat)
        assert sorted(p.name for p in paths.values()) == sorted(
            f"audit_report_{TIMESTAMP}.{ext}" for ext in ("json", "md", "html", "csv")
        )
        assert all(p.exists() for p in paths.values())

    def test_output_dir_is_a_file(self, tmp_path):
        blocker = tmp_path / "blocker"
        blocker.write_text("x", encoding="utf-8")
        with pytest.raises(ReportGenerationError):
            ReportGenerator(blocker, TIMESTAMP).write_reports(make_data())

    def test_consolidated_without_template(self, tmp_path):
        generator = ReportGenerator(tmp_path, TIMESTAMP)
        assert generator.write_consolidated(tmp_path / "missing.md", make_data()) == []
        assert generator.write_consolidated(None, make_data()) == []

    def test_consolidated_with_template(self, tmp_path):
        template = tmp_path / "template.md"
        template.write_text("# Report {{REPORT_TIMESTAMP}}\nPass rate: {{PASS_RATE}}% {{MYSTERY}}\n", encoding="utf-8")
        generator = ReportGenerator(tmp_path, TIMESTAMP)

        md_path, html_path = generator.write_consolidated(template, make_data([record("discovery_001")]))

        assert md_path.name == f"consolidated_audit_report_{TIMESTAMP}.md"
        assert html_path.name == f"consolidated_audit_report_{TIMESTAMP}.html"
        assert md_path.read_text(encoding="utf-8") == f"# Report {TIMESTAMP}\nPass rate: 100.0% N/A\n"
        assert html_path.read_text(encoding="utf-8").startswith("<!DOCTYPE html>")


# ═══════════════════════════════════════════════════════
# PIPELINE
# ═══════════════════════════════════════════════════════

def write_project(root):
    """Минимальный проект: результаты, ручные тесты, доказательства, шаблон."""
    results_dir = root / "results"
    results_dir.mkdir()
    (results_dir / "automated_test_results_1.json").write_text(json.dumps({
        "results": [
            {"testCase": {"id": "discovery_001", "name": "Discovery", "type": "discovery"},
             "status": "passed", "duration": 1200},
            {"testCase": {"id": "qr_pairing_001", "name": "QR", "type": "qr_pairing"},
             "status": "failed", "duration": 800, "notes": "camera denied"},
        ],
    }), encoding="utf-8")
    manual_path = root / "manual_results.json"
    manual_path.write_text(json.dumps({"tests": [
        {"testId": "qr_pairing_001", "testName": "QR retest", "category": "pairing", "passed": True},
        {"testId": "ui_manual_001", "testName": "Dark mode", "category": "ui", "passed": True},
    ]}), encoding="utf-8")
    evidence_dir = root / "evidence"
    (evidence_dir / "logs").mkdir(parents=True)
    (evidence_dir / "logs" / "discovery_scan.log").write_text("ok", encoding="utf-8")
    (root / "docs").mkdir()
    (root / "docs" / "CONSOLIDATED_REPORT_TEMPLATE.md").write_text(
        "Total {{TOTAL_TESTS}}, evidence {{EVIDENCE_COUNT}}, status {{PRODUCTION_STATUS}}\n", encoding="utf-8"
    )
    return results_dir, manual_path, evidence_dir


class TestPipeline:
    """Сбор данных и генерация отчётов целиком."""

    def test_generate_audit_report(self, tmp_path):
        results_dir, manual_path, evidence_dir = write_project(tmp_path)
        out = tmp_path / "audit_results"

        run = generate_audit_report(
            project_root=tmp_path,
            output_dir=out,
            timestamp=TIMESTAMP,
            automated_results_dir=results_dir,
            manual_results_path=manual_path,
            evidence_dir=evidence_dir,
        )

        merged = run.data.merged
        assert merged.total == 3
        assert merged.passed == 3
        assert merged.overlap_count == 1
        assert len(run.paths) == 4
        assert len(run.all_paths()) == 6
        consolidated = (out / f"consolidated_audit_report_{TIMESTAMP}.md").read_text(encoding="utf-8")
        assert consolidated == "Total 3, evidence 1, status Production Ready\n"
        data = json.loads((out / f"audit_report_{TIMESTAMP}.json").read_text(encoding="utf-8"))
        assert data["totalTests"] == 3
        assert isinstance(data["benchmarks"], dict) and "error" in data["benchmarks"]

    def test_malformed_manual_results_do_not_abort(self, tmp_path):
        manual_path = tmp_path / "manual_results.json"
        manual_path.write_text("{nope", encoding="utf-8")

        run = generate_audit_report(
            project_root=tmp_path,
            output_dir=tmp_path / "out",
            timestamp=TIMESTAMP,
            manual_results_path=manual_path,
        )

        assert run.data.manual_error is not None
        assert run.consolidated == []
        markdown = run.paths[ReportFormat.MARKDOWN].read_text(encoding="utf-8")
        assert "Cannot parse manual results" in markdown

    def test_output_dir_results_scanned_by_default(self, tmp_path):
        out = tmp_path / "out"
        out.mkdir()
        (out / "automated_test_results_9.json").write_text(json.dumps({
            "results": [{"testCase": {"id": "performance_001", "name": "Perf"}, "status": "passed"}],
        }), encoding="utf-8")

        data = collect_report_data(project_root=tmp_path, output_dir=out, timestamp=TIMESTAMP)

        assert list(data.merged.records) == ["performance_001"]

    def test_in_process_results_skip_output_scan(self, tmp_path):
        out = tmp_path / "out"
        out.mkdir()
        (out / "automated_test_results_9.json").write_text(json.dumps({
            "results": [{"testCase": {"id": "performance_001", "name": "Perf"}, "status": "passed"}],
        }), encoding="utf-8")

        data = collect_report_data(
            project_root=tmp_path, output_dir=out, timestamp=TIMESTAMP, automated=[record("discovery_001")],
        )

        assert list(data.merged.records) == ["discovery_001"]
