"""
Report generator for the consolidated audit data.

Generates:
- JSON data dump for machine processing
- Markdown and HTML reports for human reading
- CSV metric rows for spreadsheets
- Template-driven consolidated report
- Recommendations based on failed tests and resource usage

Rendering functions are pure; only the write_* methods touch the filesystem.
"""

import csv
import html
import io
import logging
from pathlib import Path
from typing import Any, Dict, List, Optional

from rich.console import Console
from rich.table import Table

from ..core.errors import ReportGenerationError
from ..core.models import STATUS_LABELS, AuditStatus, CoreCheck, ReportFormat, SectionError, SourceType, format_rate
from ..integrity.checksum import ALGORITHM
from .data import SEVERITY_BY_CHECK, ReportData
from .placeholders import build_template_values, render_template
from .sources import BenchmarkSummary, CoverageSummary, DeviceLogSummary
from .summary import to_compact_json

REPORT_TITLE = "AirLink Audit Report"

# CPU / memory averages above these are reported as recommendations
CPU_WARNING_PERCENT = 50.0
MEMORY_WARNING_MB = 200.0
COVERAGE_WARNING_PERCENT = 80.0

_SEVERITY_EMOJI = {
    "critical": "🔴",
    "high": "🟠",
    "medium": "🟡",
    "low": "🟢",
}


def generate_recommendations(data: ReportData) -> List[Dict[str, Any]]:
    """
    Генерация рекомендаций на основе упавших тестов и метрик.

    Returns:
        Список {title, description, priority}
    """
    recommendations: List[Dict[str, Any]] = []

    failed = [r for r in data.merged.records.values() if r.status == AuditStatus.FAILED]
    if failed:
        recommendations.append({
            "title": f"Fix {len(failed)} failed test(s)",
            "description": ", ".join(f"{r.name} ({r.id})" for r in failed[:10]),
            "priority": "high",
        })

    for summary in data.check_summaries():
        if summary.status == AuditStatus.FAILED:
            recommendations.append({
                "title": f"Core check {int(summary.check)} failing: {summary.check.title}",
                "description": summary.details,
                "priority": SEVERITY_BY_CHECK[summary.check],
            })

    if isinstance(data.benchmarks, BenchmarkSummary):
        if data.benchmarks.average_cpu > CPU_WARNING_PERCENT:
            recommendations.append({
                "title": "Optimize CPU usage during transfers",
                "description": f"Average CPU usage is {data.benchmarks.average_cpu:.1f}%",
                "priority": "medium",
            })
        if data.benchmarks.average_memory > MEMORY_WARNING_MB:
            recommendations.append({
                "title": "Reduce memory usage during transfers",
                "description": f"Average memory usage is {data.benchmarks.average_memory:.1f} MB",
                "priority": "medium",
            })

    if isinstance(data.coverage, CoverageSummary) and data.coverage.total_lines:
        if data.coverage.lines_coverage < COVERAGE_WARNING_PERCENT:
            recommendations.append({
                "title": "Increase test coverage",
                "description": f"Line coverage is {format_rate(data.coverage.lines_coverage)}%",
                "priority": "low",
            })

    if data.environment_valid is False:
        recommendations.append({
            "title": "Fix audit environment",
            "description": "Environment validation reported problems; see the environment snapshot",
            "priority": "medium",
        })

    if not recommendations:
        recommendations.append({
            "title": "No immediate action required",
            "description": "All tests passed",
            "priority": "low",
        })
    return recommendations


def _section_text(value: Any, missing: str) -> Optional[str]:
    if value is None:
        return missing
    if isinstance(value, SectionError):
        return f"⚠️ {value.error}"
    return None


def render_json(data: ReportData) -> str:
    payload = data.to_dict()
    payload["recommendations"] = generate_recommendations(data)
    return to_compact_json(payload)


def render_markdown(data: ReportData) -> str:
    """Markdown отчёт с фиксированным порядком секций."""
    merged = data.merged
    lines: List[str] = []

    # Header
    lines.append(f"# {REPORT_TITLE}")
    lines.append("")
    lines.append(f"**Date:** {data.generated_at.strftime('%Y-%m-%d %H:%M:%S')}")
    if data.timestamp:
        lines.append(f"**Run:** {data.timestamp}")
    lines.append("")

    # Executive Summary
    lines.append("## Executive Summary")
    lines.append("")
    lines.append(f"- **Production Status:** {data.production_status}")
    lines.append(f"- **Pass Rate:** {format_rate(merged.pass_rate)}%")
    failed = data.failed_by_severity()
    for severity, emoji in _SEVERITY_EMOJI.items():
        lines.append(f"- {emoji} **{severity.capitalize()} failures:** {len(failed[severity])}")
    if data.environment_valid is not None:
        lines.append(f"- **Environment Valid:** {'Yes' if data.environment_valid else 'No'}")
    lines.append("")

    # Summary
    lines.append("## Summary")
    lines.append("")
    lines.append(f"- **Total Tests:** {merged.total}")
    lines.append(f"- **Passed:** {merged.passed}")
    lines.append(f"- **Failed:** {merged.failed}")
    lines.append(f"- **Skipped:** {merged.skipped}")
    if merged.partial:
        lines.append(f"- **Partial:** {merged.partial}")
    lines.append(f"- **Automated:** {merged.automated_count}")
    lines.append(f"- **Manual:** {merged.manual_count}")
    lines.append(f"- **Overridden by manual:** {merged.overlap_count}")
    for error in (data.manual_error, data.automated_error):
        if error is not None:
            lines.append(f"- ⚠️ {error.error}")
    lines.append("")

    # Test Results
    lines.append("## Test Results")
    lines.append("")
    if merged.records:
        lines.append("| ID | Name | Source | Category | Status | Duration | Notes |")
        lines.append("|---|---|---|---|---|---|---|")
        for record in merged.records.values():
            notes = (record.notes or "").replace("|", "\\|").replace("\n", " ")
            lines.append(
                f"| {record.id} | {record.name} | {record.source.value} | {record.category or '-'} "
                f"| {STATUS_LABELS[record.status]} | {record.duration:.1f}s | {notes} |"
            )
    else:
        lines.append("No test results available.")
    lines.append("")

    # Core Checks
    lines.append("## Core Checks")
    lines.append("")
    lines.append("| # | Check | Status | Details | Duration |")
    lines.append("|---|---|---|---|---|")
    for summary in data.check_summaries():
        lines.append(
            f"| {int(summary.check)} | {summary.check.title} | {summary.status_label} "
            f"| {summary.details} | {summary.duration_label} |"
        )
    lines.append("")

    # Performance Metrics
    lines.append("## Performance Metrics")
    lines.append("")
    text = _section_text(data.benchmarks, "No benchmark data available.")
    if text:
        lines.append(text)
    else:
        bench = data.benchmarks
        lines.append(f"- **Benchmarks:** {bench.total_benchmarks}")
        lines.append(f"- **Average Speed:** {bench.average_speed:.2f} MB/s")
        lines.append(f"- **Max Speed:** {bench.max_speed:.2f} MB/s")
        lines.append(f"- **Average CPU:** {bench.average_cpu:.1f}%")
        lines.append(f"- **Average Memory:** {bench.average_memory:.1f} MB")
    lines.append("")

    # Security Audit
    lines.append("## Security Audit")
    lines.append("")
    checksum = next(s for s in data.check_summaries() if s.check == CoreCheck.CHECKSUM_VERIFICATION)
    lines.append(f"- **Integrity Algorithm:** {ALGORITHM}")
    lines.append(f"- **Checksum Verification:** {checksum.status_label} ({checksum.details})")
    lines.append(f"- **Evidence Files:** {data.evidence.count}")
    lines.append("")

    # Code Quality
    lines.append("## Code Quality")
    lines.append("")
    text = _section_text(data.coverage, "No coverage data available.")
    if text:
        lines.append(text)
    else:
        lines.append(f"- **Line Coverage:** {format_rate(data.coverage.lines_coverage)}%")
        lines.append(f"- **Function Coverage:** {format_rate(data.coverage.functions_coverage)}%")
    if isinstance(data.device_logs, DeviceLogSummary):
        lines.append(f"- **Device Logs:** {len(data.device_logs.android_logs)} Android, "
                     f"{len(data.device_logs.ios_logs)} iOS")
    lines.append("")

    # Recommendations
    lines.append("## Recommendations")
    lines.append("")
    for i, rec in enumerate(generate_recommendations(data), 1):
        lines.append(f"{i}. **{rec['title']}**")
        lines.append(f"   - {rec['description']}")
        lines.append(f"   - Priority: {rec['priority']}")
    lines.append("")

    # Footer
    lines.append("---")
    lines.append(f"*Evidence indexed: {data.evidence.count} file(s)*")
    lines.append("")
    return "\n".join(lines)


def render_html(data: ReportData) -> str:
    """HTML версия того же содержимого."""
    merged = data.merged
    esc = html.escape

    rows = [
        "<tr>"
        f"<td>{esc(r.id)}</td><td>{esc(r.name)}</td><td>{esc(r.source.value)}</td>"
        f"<td>{esc(r.category or '')}</td>"
        f"<td class=\"{r.status.value}\">{esc(STATUS_LABELS[r.status])}</td>"
        f"<td>{r.duration:.1f}s</td><td>{esc(r.notes or '')}</td>"
        "</tr>"
        for r in merged.records.values()
    ]
    checks = [
        "<tr>"
        f"<td>{int(s.check)}</td><td>{esc(s.check.title)}</td>"
        f"<td class=\"{s.status.value}\">{esc(s.status_label)}</td>"
        f"<td>{esc(s.details)}</td><td>{esc(s.duration_label)}</td>"
        "</tr>"
        for s in data.check_summaries()
    ]

    if isinstance(data.benchmarks, BenchmarkSummary):
        performance = (
            f"<ul><li>Average Speed: {data.benchmarks.average_speed:.2f} MB/s</li>"
            f"<li>Average CPU: {data.benchmarks.average_cpu:.1f}%</li>"
            f"<li>Average Memory: {data.benchmarks.average_memory:.1f} MB</li></ul>"
        )
    else:
        performance = f"<p>{esc(_section_text(data.benchmarks, 'No benchmark data available.'))}</p>"

    if isinstance(data.coverage, CoverageSummary):
        quality = (
            f"<ul><li>Line Coverage: {format_rate(data.coverage.lines_coverage)}%</li>"
            f"<li>Function Coverage: {format_rate(data.coverage.functions_coverage)}%</li></ul>"
        )
    else:
        quality = f"<p>{esc(_section_text(data.coverage, 'No coverage data available.'))}</p>"

    recommendations = "".join(
        f"<li><strong>{esc(rec['title'])}</strong> ({esc(rec['priority'])}): {esc(rec['description'])}</li>"
        for rec in generate_recommendations(data)
    )

    return "\n".join([
        "<!DOCTYPE html>",
        "<html>",
        "<head>",
        "<meta charset=\"utf-8\">",
        f"<title>{REPORT_TITLE}</title>",
        "<style>table{border-collapse:collapse}td,th{border:1px solid #ccc;padding:4px 8px}"
        ".passed{color:green}.failed{color:red}.skipped{color:gray}.partial{color:orange}</style>",
        "</head>",
        "<body>",
        f"<h1>{REPORT_TITLE}</h1>",
        f"<p>Generated: {esc(data.generated_at.isoformat())}</p>",
        "<h2>Executive Summary</h2>",
        f"<p>Production Status: <strong>{esc(data.production_status)}</strong>, "
        f"pass rate {format_rate(merged.pass_rate)}%</p>",
        "<h2>Summary</h2>",
        "<ul>",
        f"<li>Total Tests: {merged.total}</li>",
        f"<li>Passed: {merged.passed}</li>",
        f"<li>Failed: {merged.failed}</li>",
        f"<li>Skipped: {merged.skipped}</li>",
        "</ul>",
        "<h2>Test Results</h2>",
        "<table>",
        "<tr><th>ID</th><th>Name</th><th>Source</th><th>Category</th><th>Status</th>"
        "<th>Duration</th><th>Notes</th></tr>",
        *rows,
        "</table>",
        "<h2>Core Checks</h2>",
        "<table>",
        "<tr><th>#</th><th>Check</th><th>Status</th><th>Details</th><th>Duration</th></tr>",
        *checks,
        "</table>",
        "<h2>Performance Metrics</h2>",
        performance,
        "<h2>Security Audit</h2>",
        f"<p>Integrity algorithm: {ALGORITHM}. Evidence files: {data.evidence.count}</p>",
        "<h2>Code Quality</h2>",
        quality,
        "<h2>Recommendations</h2>",
        f"<ol>{recommendations}</ol>",
        "</body>",
        "</html>",
        "",
    ])


def render_csv(data: ReportData) -> str:
    """Плоские строки Metric,Value,Category,Status."""
    merged = data.merged
    buffer = io.StringIO()
    writer = csv.writer(buffer, lineterminator="\n")
    writer.writerow(["Metric", "Value", "Category", "Status"])
    writer.writerow(["Total Tests", merged.total, "Summary", "INFO"])
    writer.writerow(["Passed Tests", merged.passed, "Summary", "PASS"])
    writer.writerow(["Failed Tests", merged.failed, "Summary", "FAIL" if merged.failed else "PASS"])
    writer.writerow(["Skipped Tests", merged.skipped, "Summary", "INFO"])
    writer.writerow(["Pass Rate", format_rate(merged.pass_rate), "Summary", data.production_status])
    writer.writerow(["Automated Tests", len(merged.by_source(SourceType.AUTOMATED)), "Sources", "INFO"])
    writer.writerow(["Manual Tests", len(merged.by_source(SourceType.MANUAL)), "Sources", "INFO"])

    for summary in data.check_summaries():
        writer.writerow([
            f"Core Check {int(summary.check)}: {summary.check.title}",
            f"{summary.passed_count}/{len(summary.records)}",
            "Core Checks",
            summary.status.value.upper(),
        ])

    if isinstance(data.benchmarks, BenchmarkSummary):
        writer.writerow(["Average Speed (MB/s)", f"{data.benchmarks.average_speed:.2f}", "Performance", "INFO"])
        writer.writerow(["Average CPU (%)", f"{data.benchmarks.average_cpu:.1f}", "Performance",
                         "WARN" if data.benchmarks.average_cpu > CPU_WARNING_PERCENT else "PASS"])
        writer.writerow(["Average Memory (MB)", f"{data.benchmarks.average_memory:.1f}", "Performance",
                         "WARN" if data.benchmarks.average_memory > MEMORY_WARNING_MB else "PASS"])

    if isinstance(data.coverage, CoverageSummary):
        writer.writerow(["Line Coverage (%)", format_rate(data.coverage.lines_coverage), "Code Quality", "INFO"])
        writer.writerow(["Function Coverage (%)", format_rate(data.coverage.functions_coverage),
                         "Code Quality", "INFO"])

    writer.writerow(["Evidence Files", data.evidence.count, "Evidence", "INFO"])

    for record in merged.records.values():
        writer.writerow([record.id, record.status.value, record.category or record.source.value,
                         record.status.value.upper()])
    return buffer.getvalue()


_RENDERERS = {
    ReportFormat.JSON: render_json,
    ReportFormat.MARKDOWN: render_markdown,
    ReportFormat.HTML: render_html,
    ReportFormat.CSV: render_csv,
}


def _markdown_to_html(markdown: str) -> str:
    body = html.escape(markdown)
    return "\n".join([
        "<!DOCTYPE html>",
        "<html>",
        "<head>",
        "<meta charset=\"utf-8\">",
        f"<title>{REPORT_TITLE} (Consolidated)</title>",
        "</head>",
        "<body>",
        f"<pre>{body}</pre>",
        "</body>",
        "</html>",
        "",
    ])


class ReportGenerator:
    """Генератор отчётов аудита."""

    def __init__(self, output_dir: Path, timestamp: str, logger: Optional[logging.Logger] = None):
        """
        Args:
            output_dir: Директория для сохранения отчётов
            timestamp: Суффикс имён файлов
        """
        self.output_dir = Path(output_dir)
        self.timestamp = timestamp
        self.logger = logger or logging.getLogger("airlink_audit.reports")

    def report_path(self, fmt: ReportFormat) -> Path:
        return self.output_dir / f"audit_report_{self.timestamp}.{fmt.extension}"

    def render(self, data: ReportData, fmt: ReportFormat) -> str:
        return _RENDERERS[fmt](data)

    def write_reports(self, data: ReportData) -> Dict[ReportFormat, Path]:
        """
        Записать JSON/Markdown/HTML/CSV отчёты.

        Raises:
            ReportGenerationError: если директорию нельзя создать или файл записать
        """
        try:
            self.output_dir.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise ReportGenerationError(f"Cannot create output directory {self.output_dir}: {e}") from e

        paths: Dict[ReportFormat, Path] = {}
        for fmt in ReportFormat:
            path = self.report_path(fmt)
            content = self.render(data, fmt)
            try:
                path.write_text(content, encoding="utf-8")
            except OSError as e:
                raise ReportGenerationError(f"Cannot write {path}: {e}") from e
            self.logger.info(f"  ✅ {fmt.value.upper()} report: {path}")
            paths[fmt] = path
        return paths

    def render_consolidated(self, template: str, data: ReportData) -> str:
        values = build_template_values(data, generate_recommendations(data))
        return render_template(template, values)

    def write_consolidated(self, template_path: Optional[Path], data: ReportData) -> List[Path]:
        """
        Отрендерить шаблон в consolidated_audit_report_<ts>.md/.html.

        Отсутствующий шаблон - не ошибка: возвращается пустой список.
        """
        if template_path is None or not Path(template_path).is_file():
            self.logger.info("  ⚠️  Template file not found, skipping consolidated report")
            return []
        try:
            template = Path(template_path).read_text(encoding="utf-8")
        except OSError as e:
            self.logger.warning(f"  ⚠️  Cannot read template {template_path}: {e}")
            return []

        rendered = self.render_consolidated(template, data)
        md_path = self.output_dir / f"consolidated_audit_report_{self.timestamp}.md"
        html_path = self.output_dir / f"consolidated_audit_report_{self.timestamp}.html"
        try:
            md_path.write_text(rendered, encoding="utf-8")
            html_path.write_text(_markdown_to_html(rendered), encoding="utf-8")
        except OSError as e:
            raise ReportGenerationError(f"Cannot write consolidated report: {e}") from e
        self.logger.info(f"  ✅ Consolidated report: {md_path}")
        return [md_path, html_path]


def print_summary(data: ReportData, paths: Dict[Any, Path], console: Optional[Console] = None) -> None:
    """Вывести итоговую таблицу в консоль через rich."""
    console = console or Console()
    merged = data.merged

    table = Table(title=REPORT_TITLE)
    table.add_column("Metric", style="cyan")
    table.add_column("Value", style="green")
    table.add_row("Total Tests", str(merged.total))
    table.add_row("Passed", str(merged.passed))
    table.add_row("Failed", str(merged.failed))
    table.add_row("Skipped", str(merged.skipped))
    table.add_row("Pass Rate", f"{format_rate(merged.pass_rate)}%")
    table.add_row("Production Status", data.production_status)
    table.add_row("Evidence Files", str(data.evidence.count))
    console.print(table)

    for name, path in paths.items():
        label = name.value if isinstance(name, ReportFormat) else str(name)
        console.print(f"  [dim]{label}:[/dim] {path}")
