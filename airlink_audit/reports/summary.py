"""
Export of the runner-level summary report (JSON / Markdown / HTML / CSV).
"""

import csv
import html
import io
import json
from typing import List

from ..core.models import STATUS_LABELS, AuditSummaryReport, ReportFormat, format_rate


def to_compact_json(data) -> str:
    return json.dumps(data, ensure_ascii=False, separators=(",", ":"))


def export_summary(report: AuditSummaryReport, fmt: ReportFormat = ReportFormat.JSON) -> str:
    """Сериализовать AuditSummaryReport в выбранный формат."""
    if fmt == ReportFormat.JSON:
        return to_compact_json(report.to_dict())
    if fmt == ReportFormat.MARKDOWN:
        return _summary_markdown(report)
    if fmt == ReportFormat.HTML:
        return _summary_html(report)
    return _summary_csv(report)


def _summary_markdown(report: AuditSummaryReport) -> str:
    lines: List[str] = []
    lines.append("# AirLink Audit Report")
    lines.append("")
    lines.append(f"**Generated:** {report.generated_at.strftime('%Y-%m-%d %H:%M:%S')}")
    lines.append("")
    lines.append("## Summary")
    lines.append("")
    lines.append(f"- **Total Tests:** {report.total_tests}")
    lines.append(f"- **Passed:** {report.passed_tests}")
    lines.append(f"- **Failed:** {report.failed_tests}")
    lines.append(f"- **Skipped:** {report.skipped_tests}")
    lines.append(f"- **Pass Rate:** {format_rate(report.pass_rate)}%")
    if report.summary:
        lines.append("")
        lines.append(report.summary)
    lines.append("")

    lines.append("## Test Results")
    lines.append("")
    for result in report.results:
        lines.append(f"### {result.test_case.name} - {STATUS_LABELS[result.status]}")
        lines.append(f"- **ID:** {result.test_case.id}")
        lines.append(f"- **Type:** {result.test_case.test_type.value}")
        lines.append(f"- **Duration:** {result.duration.total_seconds() * 1000:.0f}ms")
        if result.notes:
            lines.append(f"- **Notes:** {result.notes}")
        for key, value in sorted(result.metrics.items()):
            lines.append(f"- `{key}`: {value:.2f}")
        lines.append("")

    lines.append("## Recommendations")
    lines.append("")
    for rec in report.recommendations:
        lines.append(rec if rec.startswith("  ") else f"- {rec}")
    lines.append("")
    return "\n".join(lines)


def _summary_html(report: AuditSummaryReport) -> str:
    rows = []
    for result in report.results:
        rows.append(
            "<tr>"
            f"<td>{html.escape(result.test_case.id)}</td>"
            f"<td>{html.escape(result.test_case.name)}</td>"
            f"<td class=\"{result.status.value}\">{html.escape(result.status.value)}</td>"
            f"<td>{result.duration.total_seconds() * 1000:.0f}</td>"
            f"<td>{html.escape(result.notes or '')}</td>"
            "</tr>"
        )
    recommendations = "".join(f"<li>{html.escape(r.strip())}</li>" for r in report.recommendations)
    return "\n".join([
        "<!DOCTYPE html>",
        "<html>",
        "<head>",
        "<meta charset=\"utf-8\">",
        "<title>AirLink Audit Report</title>",
        "<style>table{border-collapse:collapse}td,th{border:1px solid #ccc;padding:4px 8px}"
        ".passed{color:green}.failed{color:red}.skipped{color:gray}.partial{color:orange}</style>",
        "</head>",
        "<body>",
        "<h1>AirLink Audit Report</h1>",
        f"<p>Generated: {report.generated_at.isoformat()}</p>",
        "<h2>Summary</h2>",
        "<ul>",
        f"<li>Total Tests: {report.total_tests}</li>",
        f"<li>Passed: {report.passed_tests}</li>",
        f"<li>Failed: {report.failed_tests}</li>",
        f"<li>Skipped: {report.skipped_tests}</li>",
        f"<li>Pass Rate: {format_rate(report.pass_rate)}%</li>",
        "</ul>",
        "<h2>Test Results</h2>",
        "<table>",
        "<tr><th>ID</th><th>Name</th><th>Status</th><th>Duration (ms)</th><th>Notes</th></tr>",
        *rows,
        "</table>",
        "<h2>Recommendations</h2>",
        f"<ul>{recommendations}</ul>",
        "</body>",
        "</html>",
        "",
    ])


def _summary_csv(report: AuditSummaryReport) -> str:
    buffer = io.StringIO()
    writer = csv.writer(buffer, lineterminator="\n")
    writer.writerow(["Metric", "Value", "Category", "Status"])
    writer.writerow(["Total Tests", report.total_tests, "Summary", "INFO"])
    writer.writerow(["Passed Tests", report.passed_tests, "Summary", "PASS"])
    writer.writerow(["Failed Tests", report.failed_tests, "Summary", "FAIL" if report.failed_tests else "PASS"])
    writer.writerow(["Skipped Tests", report.skipped_tests, "Summary", "INFO"])
    writer.writerow(["Pass Rate", format_rate(report.pass_rate), "Summary", "INFO"])
    for result in report.results:
        writer.writerow([result.test_case.id, result.status.value, result.test_case.test_type.value,
                         result.status.value.upper()])
    return buffer.getvalue()
