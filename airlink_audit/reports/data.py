"""
Report input bundle and the per-core-check rollups derived from it.
"""

from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

from ..core.models import (
    AuditStatus,
    CoreCheck,
    MergedResults,
    MergedTestRecord,
    SectionError,
    SourceType,
    calculate_pass_rate,
)
from .core_checks import map_records_to_core_checks
from .evidence import EvidenceIndex
from .sources import BenchmarkSummary, CoverageSummary, DeviceLogSummary

PRODUCTION_READY_RATE = 95.0
NEEDS_FIXES_RATE = 80.0

# Severity of a failed test, by the core check it belongs to.
SEVERITY_BY_CHECK = {
    CoreCheck.CROSS_PLATFORM: "critical",
    CoreCheck.CHECKSUM_VERIFICATION: "critical",
    CoreCheck.DISCOVERY: "high",
    CoreCheck.WIFI_AWARE_SESSION: "high",
    CoreCheck.SIMULTANEOUS_TRANSFER: "high",
    CoreCheck.MULTI_RECEIVER: "high",
    CoreCheck.QR_PAIRING: "high",
    CoreCheck.UI_UX: "medium",
    CoreCheck.PERFORMANCE: "medium",
    CoreCheck.SETTINGS_PERSISTENCE: "low",
    CoreCheck.ERROR_HANDLING: "low",
}
SEVERITIES = ("critical", "high", "medium", "low")


@dataclass
class CheckSummary:
    """Сводка по одной из 11 проверок."""

    check: CoreCheck
    records: List[MergedTestRecord]
    evidence: Dict[str, List[str]]

    @property
    def tested(self) -> bool:
        return bool(self.records)

    @property
    def passed_count(self) -> int:
        return sum(1 for r in self.records if r.status == AuditStatus.PASSED)

    @property
    def failed_count(self) -> int:
        return sum(1 for r in self.records if r.status == AuditStatus.FAILED)

    @property
    def total_duration(self) -> float:
        return sum(r.duration for r in self.records)

    @property
    def status(self) -> AuditStatus:
        if not self.records:
            return AuditStatus.SKIPPED
        if self.failed_count:
            return AuditStatus.FAILED
        if self.passed_count == len(self.records):
            return AuditStatus.PASSED
        return AuditStatus.PARTIAL

    @property
    def status_label(self) -> str:
        return {
            AuditStatus.SKIPPED: "⏭️ SKIPPED",
            AuditStatus.FAILED: "❌ FAIL",
            AuditStatus.PASSED: "✅ PASS",
            AuditStatus.PARTIAL: "⚠️ PARTIAL",
        }[self.status]

    @property
    def details(self) -> str:
        if not self.records:
            return "Not tested"
        text = f"{self.passed_count}/{len(self.records)} tests passed"
        parts = []
        for bucket, label in (("screenshots", "screenshot(s)"), ("logs", "log(s)"), ("checksums", "checksum(s)")):
            if self.evidence.get(bucket):
                parts.append(f"{len(self.evidence[bucket])} {label}")
        if parts:
            text += " | Evidence: " + ", ".join(parts)
        return text

    @property
    def duration_label(self) -> str:
        if not self.records or self.total_duration <= 0:
            return "N/A"
        return f"{self.total_duration:.1f}s"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "check": int(self.check),
            "title": self.check.title,
            "status": self.status.value,
            "passed": self.passed_count,
            "failed": self.failed_count,
            "total": len(self.records),
            "duration": self.total_duration,
            "tests": [r.id for r in self.records],
            "evidence": self.evidence,
        }


@dataclass
class ReportData:
    """Всё, что нужно генератору отчётов. Необязательные секции могут быть SectionError."""

    merged: MergedResults
    evidence: EvidenceIndex = field(default_factory=EvidenceIndex)
    benchmarks: Union[BenchmarkSummary, SectionError, None] = None
    coverage: Union[CoverageSummary, SectionError, None] = None
    device_logs: Union[DeviceLogSummary, SectionError, None] = None
    environment: Union[Dict[str, Any], SectionError, None] = None
    manual_error: Optional[SectionError] = None
    device_info: Dict[str, Any] = field(default_factory=dict)
    test_environment: Dict[str, Any] = field(default_factory=dict)
    automated_error: Optional[SectionError] = None
    generated_at: datetime = field(default_factory=datetime.now)
    timestamp: str = ""
    project_root: Optional[Path] = None
    metadata: Dict[str, Any] = field(default_factory=dict)

    def check_summaries(self) -> List[CheckSummary]:
        mapped = map_records_to_core_checks(self.merged.records.values())
        return [
            CheckSummary(check, mapped[check], self.evidence.for_check(check))
            for check in CoreCheck
        ]

    def failed_by_severity(self) -> Dict[str, List[MergedTestRecord]]:
        grouped: Dict[str, List[MergedTestRecord]] = {s: [] for s in SEVERITIES}
        for summary in self.check_summaries():
            severity = SEVERITY_BY_CHECK[summary.check]
            grouped[severity].extend(r for r in summary.records if r.status == AuditStatus.FAILED)
        classified = {id(r) for records in grouped.values() for r in records}
        grouped["low"].extend(
            r for r in self.merged.records.values()
            if r.status == AuditStatus.FAILED and id(r) not in classified
        )
        return grouped

    def source_pass_rate(self, source: SourceType) -> float:
        records = self.merged.by_source(source)
        passed = sum(1 for r in records if r.status == AuditStatus.PASSED)
        return calculate_pass_rate(passed, len(records))

    @property
    def production_status(self) -> str:
        rate = self.merged.pass_rate
        if rate >= PRODUCTION_READY_RATE:
            return "Production Ready"
        if rate >= NEEDS_FIXES_RATE:
            return "Needs Fixes"
        return "Prototype"

    @property
    def environment_valid(self) -> Optional[bool]:
        if isinstance(self.environment, dict) and "isValid" in self.environment:
            return bool(self.environment["isValid"])
        return None

    def to_dict(self) -> Dict[str, Any]:
        merged = self.merged

        def section(value: Any) -> Any:
            if value is None:
                return None
            return value if isinstance(value, dict) else value.to_dict()

        return {
            "generatedAt": self.generated_at.isoformat(),
            "timestamp": self.timestamp,
            "totalTests": merged.total,
            "passedTests": merged.passed,
            "failedTests": merged.failed,
            "skippedTests": merged.skipped,
            "partialTests": merged.partial,
            "passRate": round(merged.pass_rate, 1),
            "productionStatus": self.production_status,
            "metadata": dict(self.metadata),
            "mergedResults": merged.to_dict(),
            "coreChecks": [s.to_dict() for s in self.check_summaries()],
            "evidence": self.evidence.to_dict(),
            "benchmarks": section(self.benchmarks),
            "coverage": section(self.coverage),
            "deviceLogs": section(self.device_logs),
            "environment": section(self.environment),
            "deviceInfo": dict(self.device_info),
            "testEnvironment": dict(self.test_environment),
            "manualResultsError": section(self.manual_error),
            "automatedResultsError": section(self.automated_error),
        }
