"""
Typed placeholder table for the consolidated Markdown template.

Every Placeholder member has a deterministic default, so a rendered template
never contains a raw {{TOKEN}}: known tokens without data fall back to their
default and unknown tokens are replaced with "N/A".
"""

import re
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional

from ..core.models import (
    STATUS_LABELS,
    MergedTestRecord,
    SourceType,
    format_rate,
)
from ..integrity.checksum import ALGORITHM
from .data import ReportData
from .sources import BenchmarkSummary, CoverageSummary

NOT_AVAILABLE = "N/A"
SKIPPED_LABEL = "⏭️ SKIPPED"

_SUMMARY = [
    "GENERATED_DATE", "REPORT_TIMESTAMP", "AUDIT_DURATION",
    "TOTAL_TESTS", "PASSED_TESTS", "FAILED_TESTS", "SKIPPED_TESTS",
    "PASS_RATE", "FAIL_RATE",
    "CRITICAL_COUNT", "HIGH_COUNT", "MEDIUM_COUNT", "LOW_COUNT",
    "PRODUCTION_STATUS", "READINESS_ASSESSMENT", "PRODUCTION_JUSTIFICATION",
]
_DEVICES = [f"DEVICE_{i}_{field}" for i in range(1, 5) for field in ("MODEL", "OS", "IP")]
_NETWORK = ["NETWORK_TYPE", "BLE_VERSION", "SIGNAL_STRENGTH", "BANDWIDTH", "ENVIRONMENT_VALID"]
_TIMING = ["START_TIME", "END_TIME", "TOTAL_DURATION", "AUTO_DURATION", "MANUAL_DURATION"]
_CHECKS = [f"CHECK_{i}_{field}" for i in range(1, 12) for field in ("STATUS", "DETAILS", "DURATION")]
_PERFORMANCE = ["AVG_SPEED", "MAX_SPEED", "AVG_CPU", "AVG_MEMORY", "BATTERY_IMPACT", "AVG_TRANSFER_SPEED"]
_SOURCES = ["AUTO_TOTAL", "AUTO_PASS_RATE", "MANUAL_TOTAL", "MANUAL_PASS_RATE"] + [
    f"{source}_TEST_{i}_{field}"
    for source in ("AUTO", "MANUAL")
    for i in (1, 2)
    for field in ("ID", "NAME", "CAT", "STATUS", "DUR", "NOTES")
]
_ISSUES = [f"{severity}_ISSUE_1_TITLE" for severity in ("CRITICAL", "HIGH", "MEDIUM", "LOW")]
_QUALITY = [
    "LINE_COVERAGE", "FUNCTION_COVERAGE", "EVIDENCE_COUNT", "CHECKSUM_ALGORITHM",
    "RECOMMENDATION_1", "RECOMMENDATION_2", "RECOMMENDATION_3",
]

Placeholder = Enum(
    "Placeholder",
    [(name, name) for name in (
        _SUMMARY + _DEVICES + _NETWORK + _TIMING + _CHECKS
        + _PERFORMANCE + _SOURCES + _ISSUES + _QUALITY
    )],
    type=str,
    module=__name__,
)

_ZERO_SUFFIXES = ("_TESTS", "_COUNT", "_TOTAL", "_RATE")

_TOKEN = re.compile(r"\{\{([A-Z0-9_]+)\}\}")


def default_for(placeholder: Placeholder) -> str:
    """Значение по умолчанию: статусы -> SKIPPED, счётчики -> 0, остальное -> N/A."""
    name = placeholder.value
    if name.endswith("_STATUS") and name != "PRODUCTION_STATUS":
        return SKIPPED_LABEL
    if name.endswith(_ZERO_SUFFIXES):
        return "0"
    return NOT_AVAILABLE


DEFAULTS: Dict[Placeholder, str] = {p: default_for(p) for p in Placeholder}


def _duration(seconds: Optional[float]) -> str:
    if not seconds:
        return NOT_AVAILABLE
    return f"{seconds:.1f}s"


def _first(mapping: Mapping[str, Any], *keys: str, default: str = NOT_AVAILABLE) -> str:
    for key in keys:
        value = mapping.get(key)
        if value not in (None, ""):
            return str(value)
    return default


def _manual_devices(device_info: Mapping[str, Any]) -> List[Mapping[str, Any]]:
    """deviceInfo: {"devices": [...]} или описание одного устройства."""
    if not device_info:
        return []
    devices = device_info.get("devices")
    if isinstance(devices, list):
        return [d for d in devices if isinstance(d, dict)]
    return [device_info]


def _fill_test_slots(values: Dict[Placeholder, str], prefix: str, records: List[MergedTestRecord]) -> None:
    for slot, record in enumerate(records[:2], start=1):
        key = f"{prefix}_TEST_{slot}"
        values[Placeholder[f"{key}_ID"]] = record.id
        values[Placeholder[f"{key}_NAME"]] = record.name or NOT_AVAILABLE
        values[Placeholder[f"{key}_CAT"]] = record.category or NOT_AVAILABLE
        values[Placeholder[f"{key}_STATUS"]] = STATUS_LABELS[record.status]
        values[Placeholder[f"{key}_DUR"]] = _duration(record.duration)
        values[Placeholder[f"{key}_NOTES"]] = record.notes or "No notes"


def build_template_values(
    data: ReportData,
    recommendations: Optional[List[Dict[str, str]]] = None,
) -> Dict[Placeholder, str]:
    """
    Вычислить значения всех плейсхолдеров.

    Отсутствующие или ошибочные секции (SectionError) дают значения по
    умолчанию; функция не бросает исключений на неполных данных.
    """
    merged = data.merged
    values: Dict[Placeholder, str] = dict(DEFAULTS)
    P = Placeholder

    generated = data.generated_at.isoformat()
    values[P.GENERATED_DATE] = generated
    values[P.REPORT_TIMESTAMP] = data.timestamp or generated
    values[P.TOTAL_TESTS] = str(merged.total)
    values[P.PASSED_TESTS] = str(merged.passed)
    values[P.FAILED_TESTS] = str(merged.failed)
    values[P.SKIPPED_TESTS] = str(merged.skipped)
    values[P.PASS_RATE] = format_rate(merged.pass_rate)
    values[P.FAIL_RATE] = format_rate(merged.failed / merged.total * 100.0) if merged.total else "0.0"

    failed = data.failed_by_severity()
    for severity in ("critical", "high", "medium", "low"):
        values[P[f"{severity.upper()}_COUNT"]] = str(len(failed[severity]))
        if failed[severity]:
            first = failed[severity][0]
            values[P[f"{severity.upper()}_ISSUE_1_TITLE"]] = f"{first.name} ({first.id})"
        else:
            values[P[f"{severity.upper()}_ISSUE_1_TITLE"]] = f"No {severity} issues found"

    values[P.PRODUCTION_STATUS] = data.production_status
    if merged.pass_rate >= 95.0:
        values[P.READINESS_ASSESSMENT] = "All core checks passed. System is production-ready."
        values[P.PRODUCTION_JUSTIFICATION] = "Pass rate meets the production threshold."
    else:
        values[P.READINESS_ASSESSMENT] = "Some tests failed. Review issues before production deployment."
        values[P.PRODUCTION_JUSTIFICATION] = (
            f"Pass rate {format_rate(merged.pass_rate)}% is below the production threshold."
        )

    durations = {
        source: sum(r.duration for r in merged.by_source(source)) for source in SourceType
    }
    values[P.AUDIT_DURATION] = f"{merged.total} tests"
    values[P.TOTAL_DURATION] = _duration(sum(durations.values()))
    values[P.AUTO_DURATION] = _duration(durations[SourceType.AUTOMATED])
    values[P.MANUAL_DURATION] = _duration(durations[SourceType.MANUAL])
    values[P.START_TIME] = str(data.metadata.get("startTime") or generated)
    values[P.END_TIME] = str(data.metadata.get("endTime") or generated)

    for summary in data.check_summaries():
        number = int(summary.check)
        values[P[f"CHECK_{number}_STATUS"]] = summary.status_label
        values[P[f"CHECK_{number}_DETAILS"]] = summary.details
        values[P[f"CHECK_{number}_DURATION"]] = summary.duration_label

    automated = merged.by_source(SourceType.AUTOMATED)
    manual = merged.by_source(SourceType.MANUAL)
    values[P.AUTO_TOTAL] = str(len(automated))
    values[P.MANUAL_TOTAL] = str(len(manual))
    values[P.AUTO_PASS_RATE] = format_rate(data.source_pass_rate(SourceType.AUTOMATED))
    values[P.MANUAL_PASS_RATE] = format_rate(data.source_pass_rate(SourceType.MANUAL))
    _fill_test_slots(values, "AUTO", automated)
    _fill_test_slots(values, "MANUAL", manual)

    if isinstance(data.benchmarks, BenchmarkSummary):
        values[P.AVG_SPEED] = f"{data.benchmarks.average_speed:.2f}"
        values[P.MAX_SPEED] = f"{data.benchmarks.max_speed:.2f}"
        values[P.AVG_CPU] = f"{data.benchmarks.average_cpu:.1f}"
        values[P.AVG_MEMORY] = f"{data.benchmarks.average_memory:.1f}"
        values[P.AVG_TRANSFER_SPEED] = values[P.AVG_SPEED]

    if isinstance(data.coverage, CoverageSummary):
        values[P.LINE_COVERAGE] = f"{format_rate(data.coverage.lines_coverage)}%"
        values[P.FUNCTION_COVERAGE] = f"{format_rate(data.coverage.functions_coverage)}%"

    network = data.environment.get("network") if isinstance(data.environment, dict) else None
    if not isinstance(network, dict):
        network = {}
    devices = _manual_devices(data.device_info) or ([network] if network else [])
    for slot, device in enumerate(devices[:4], start=1):
        values[P[f"DEVICE_{slot}_MODEL"]] = _first(device, "model", "deviceName", "name", "platform")
        values[P[f"DEVICE_{slot}_OS"]] = _first(device, "os", "osVersion", "platform")
        values[P[f"DEVICE_{slot}_IP"]] = _first(device, "ip", "ipAddress", "wifiIP")
    if network:
        values[P.NETWORK_TYPE] = _first(network, "wifiName", default="Wi-Fi")
        if network.get("bleEnabled") is True:
            values[P.BLE_VERSION] = _first(network, "bleVersion", default="5.0")

    environment = data.test_environment
    for placeholder, keys in (
        (P.NETWORK_TYPE, ("networkType", "network")),
        (P.BLE_VERSION, ("bleVersion",)),
        (P.SIGNAL_STRENGTH, ("signalStrength",)),
        (P.BANDWIDTH, ("bandwidth",)),
    ):
        if any(environment.get(k) not in (None, "") for k in keys):
            values[placeholder] = _first(environment, *keys)
    if data.environment_valid is not None:
        values[P.ENVIRONMENT_VALID] = "Yes" if data.environment_valid else "No"

    values[P.EVIDENCE_COUNT] = str(data.evidence.count)
    values[P.CHECKSUM_ALGORITHM] = ALGORITHM

    recommendations = recommendations or []
    for slot, rec in enumerate(recommendations[:3], start=1):
        values[P[f"RECOMMENDATION_{slot}"]] = rec.get("title", NOT_AVAILABLE) if isinstance(rec, dict) else str(rec)

    return values


def render_template(template: str, values: Mapping[Placeholder, str]) -> str:
    """
    Подставить значения в {{TOKEN}} за один проход.

    Подставленные значения повторно не сканируются. Неизвестный токен -> N/A.
    """
    by_name = {p.value: v for p, v in values.items()}

    def substitute(match: "re.Match[str]") -> str:
        name = match.group(1)
        if name in by_name:
            return by_name[name]
        if name in Placeholder.__members__:
            return DEFAULTS[Placeholder[name]]
        return NOT_AVAILABLE

    return _TOKEN.sub(substitute, template)
