"""
Core data models for the audit pipeline.
"""

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum, IntEnum
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional


class CoreCheck(IntEnum):
    """Одиннадцать обязательных проверок аудита (нумерация фиксирована)."""
    DISCOVERY = 1
    WIFI_AWARE_SESSION = 2
    SIMULTANEOUS_TRANSFER = 3
    MULTI_RECEIVER = 4
    CROSS_PLATFORM = 5
    CHECKSUM_VERIFICATION = 6
    UI_UX = 7
    QR_PAIRING = 8
    SETTINGS_PERSISTENCE = 9
    ERROR_HANDLING = 10
    PERFORMANCE = 11

    @property
    def title(self) -> str:
        return _CORE_CHECK_TITLES[self]


_CORE_CHECK_TITLES = {
    CoreCheck.DISCOVERY: "Device Discovery",
    CoreCheck.WIFI_AWARE_SESSION: "Wi-Fi Aware Session",
    CoreCheck.SIMULTANEOUS_TRANSFER: "Simultaneous Transfers",
    CoreCheck.MULTI_RECEIVER: "Multi-Receiver Transfer",
    CoreCheck.CROSS_PLATFORM: "Cross-Platform Transfer",
    CoreCheck.CHECKSUM_VERIFICATION: "Checksum Verification",
    CoreCheck.UI_UX: "UI/UX",
    CoreCheck.QR_PAIRING: "QR Pairing",
    CoreCheck.SETTINGS_PERSISTENCE: "Settings Persistence",
    CoreCheck.ERROR_HANDLING: "Error Handling",
    CoreCheck.PERFORMANCE: "Performance",
}


class AuditTestType(Enum):
    """Тип автоматического теста. Каждый тип соответствует одной CoreCheck."""
    DISCOVERY = "discovery"
    WIFI_AWARE_SESSION = "wifi_aware_session"
    SIMULTANEOUS_TRANSFER = "simultaneous_transfer"
    MULTI_RECEIVER = "multi_receiver"
    CROSS_PLATFORM = "cross_platform"
    CHECKSUM_VERIFICATION = "checksum_verification"
    UI_UX = "ui_ux"
    QR_PAIRING = "qr_pairing"
    SETTINGS_PERSISTENCE = "settings_persistence"
    ERROR_HANDLING = "error_handling"
    PERFORMANCE = "performance"

    @property
    def core_check(self) -> CoreCheck:
        return CoreCheck[self.name]


class AuditStatus(Enum):
    """Статус теста."""
    NOT_STARTED = "not_started"
    RUNNING = "running"
    PASSED = "passed"
    FAILED = "failed"
    SKIPPED = "skipped"
    PARTIAL = "partial"

    @property
    def is_finished(self) -> bool:
        return self in FINISHED_STATUSES

    @classmethod
    def parse(cls, value: Any, default: "AuditStatus" = None) -> "AuditStatus":
        """Разобрать статус из внешних данных (pass/passed, fail/failed, ...)."""
        if isinstance(value, AuditStatus):
            return value
        text = str(value or "").strip().lower()
        if "." in text:
            text = text.rsplit(".", 1)[-1]
        aliases = {
            "pass": cls.PASSED,
            "passed": cls.PASSED,
            "success": cls.PASSED,
            "fail": cls.FAILED,
            "failed": cls.FAILED,
            "failure": cls.FAILED,
            "error": cls.FAILED,
            "skip": cls.SKIPPED,
            "skipped": cls.SKIPPED,
            "partial": cls.PARTIAL,
            "running": cls.RUNNING,
            "pending": cls.NOT_STARTED,
            "not_started": cls.NOT_STARTED,
        }
        return aliases.get(text, default if default is not None else cls.SKIPPED)


FINISHED_STATUSES = frozenset({
    AuditStatus.PASSED,
    AuditStatus.FAILED,
    AuditStatus.SKIPPED,
    AuditStatus.PARTIAL,
})

STATUS_LABELS = {
    AuditStatus.PASSED: "✅ PASSED",
    AuditStatus.FAILED: "❌ FAILED",
    AuditStatus.SKIPPED: "⏭️ SKIPPED",
    AuditStatus.PARTIAL: "⚠️ PARTIAL",
    AuditStatus.RUNNING: "🔄 RUNNING",
    AuditStatus.NOT_STARTED: "⏳ NOT STARTED",
}


class SourceType(Enum):
    """Источник результата теста."""
    AUTOMATED = "automated"
    MANUAL = "manual"


class EvidenceCategory(Enum):
    """Категория файла-доказательства."""
    SCREENSHOT = "screenshot"
    LOG = "log"
    CHECKSUM = "checksum"
    DATA = "data"
    VIDEO = "video"
    OTHER = "other"


class ReportFormat(Enum):
    """Формат экспорта отчёта."""
    JSON = "json"
    MARKDOWN = "markdown"
    HTML = "html"
    CSV = "csv"

    @property
    def extension(self) -> str:
        return {"json": "json", "markdown": "md", "html": "html", "csv": "csv"}[self.value]


@dataclass(frozen=True)
class SectionError:
    """Маркер ошибки разбора секции данных (вместо исключения)."""

    error: str
    source: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {"error": self.error}
        if self.source:
            data["source"] = self.source
        return data


def is_section_error(value: Any) -> bool:
    return isinstance(value, SectionError)


def calculate_pass_rate(passed: int, total: int) -> float:
    """passed / total * 100; 0.0 для пустого набора."""
    if total <= 0:
        return 0.0
    return passed / total * 100.0


def format_rate(rate: float) -> str:
    return f"{rate:.1f}"


@dataclass(frozen=True)
class AuditTestCase:
    """Описание автоматического теста."""

    id: str
    name: str
    test_type: AuditTestType
    sender_platform: str = "android"
    receiver_platform: str = "android"
    file_type: str = "binary"
    file_size: int = 1024 * 1024
    connection_method: str = "wifi_aware"
    expected_results: Mapping[str, Any] = field(default_factory=dict)
    configuration: Mapping[str, Any] = field(default_factory=dict)

    @property
    def core_check(self) -> CoreCheck:
        return self.test_type.core_check

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "type": self.test_type.value,
            "senderPlatform": self.sender_platform,
            "receiverPlatform": self.receiver_platform,
            "fileType": self.file_type,
            "fileSize": self.file_size,
            "connectionMethod": self.connection_method,
            "expectedResults": dict(self.expected_results),
            "configuration": dict(self.configuration),
        }


@dataclass(frozen=True)
class AuditResult:
    """Завершённый результат одного теста."""

    test_case: AuditTestCase
    start_time: datetime
    end_time: datetime
    status: AuditStatus
    metrics: Dict[str, float] = field(default_factory=dict)
    evidence: Dict[str, Any] = field(default_factory=dict)
    notes: Optional[str] = None

    def __post_init__(self):
        if not self.status.is_finished:
            raise ValueError(f"AuditResult requires a finished status, got {self.status.value}")
        if self.end_time < self.start_time:
            raise ValueError("AuditResult end_time precedes start_time")

    @property
    def duration(self) -> timedelta:
        return self.end_time - self.start_time

    @property
    def passed(self) -> bool:
        return self.status == AuditStatus.PASSED

    def to_dict(self) -> Dict[str, Any]:
        return {
            "testCase": self.test_case.to_dict(),
            "startTime": self.start_time.isoformat(),
            "endTime": self.end_time.isoformat(),
            "status": self.status.value,
            "duration": int(self.duration.total_seconds() * 1000),
            "metrics": dict(self.metrics),
            "evidence": dict(self.evidence),
            "notes": self.notes,
        }


@dataclass
class AuditSummaryReport:
    """Сводный отчёт по набору результатов. Счётчики всегда пересчитываются."""

    results: List[AuditResult]
    generated_at: datetime = field(default_factory=datetime.now)
    summary: str = ""
    recommendations: List[str] = field(default_factory=list)

    def _count(self, status: AuditStatus) -> int:
        return sum(1 for r in self.results if r.status == status)

    @property
    def total_tests(self) -> int:
        return len(self.results)

    @property
    def passed_tests(self) -> int:
        return self._count(AuditStatus.PASSED)

    @property
    def failed_tests(self) -> int:
        return self._count(AuditStatus.FAILED)

    @property
    def skipped_tests(self) -> int:
        return self._count(AuditStatus.SKIPPED)

    @property
    def pass_rate(self) -> float:
        return calculate_pass_rate(self.passed_tests, self.total_tests)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "generatedAt": self.generated_at.isoformat(),
            "totalTests": self.total_tests,
            "passedTests": self.passed_tests,
            "failedTests": self.failed_tests,
            "skippedTests": self.skipped_tests,
            "passRate": round(self.pass_rate, 1),
            "summary": self.summary,
            "results": [r.to_dict() for r in self.results],
            "recommendations": list(self.recommendations),
        }


@dataclass(frozen=True)
class EvidenceItem:
    """Файл-доказательство из директории evidence."""

    path: Path
    relative_path: str
    file_name: str
    size: int
    modified: datetime
    category: EvidenceCategory
    core_check: Optional[CoreCheck] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "path": str(self.path),
            "relativePath": self.relative_path,
            "fileName": self.file_name,
            "size": self.size,
            "modified": self.modified.isoformat(),
            "category": self.category.value,
            "coreCheck": int(self.core_check) if self.core_check else None,
        }


@dataclass
class MergedTestRecord:
    """Запись объединённой таблицы результатов (automated + manual)."""

    id: str
    name: str
    status: AuditStatus
    source: SourceType
    duration: float = 0.0  # seconds
    category: str = ""
    notes: Optional[str] = None
    evidence: List[str] = field(default_factory=list)
    core_check: Optional[CoreCheck] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "status": self.status.value,
            "type": self.source.value,
            "duration": self.duration,
            "category": self.category,
            "notes": self.notes,
            "evidence": list(self.evidence),
            "coreCheck": int(self.core_check) if self.core_check else None,
        }


@dataclass
class MergedResults:
    """Объединённые результаты: ключ = id теста, порядок вставки сохраняется."""

    records: Dict[str, MergedTestRecord] = field(default_factory=dict)
    automated_count: int = 0
    manual_count: int = 0
    overlap_count: int = 0

    def _count(self, status: AuditStatus) -> int:
        return sum(1 for r in self.records.values() if r.status == status)

    @property
    def total(self) -> int:
        return len(self.records)

    @property
    def passed(self) -> int:
        return self._count(AuditStatus.PASSED)

    @property
    def failed(self) -> int:
        return self._count(AuditStatus.FAILED)

    @property
    def skipped(self) -> int:
        return self._count(AuditStatus.SKIPPED)

    @property
    def partial(self) -> int:
        return self._count(AuditStatus.PARTIAL)

    @property
    def pass_rate(self) -> float:
        return calculate_pass_rate(self.passed, self.total)

    def by_source(self, source: SourceType) -> List[MergedTestRecord]:
        return [r for r in self.records.values() if r.source == source]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "total": self.total,
            "passed": self.passed,
            "failed": self.failed,
            "skipped": self.skipped,
            "partial": self.partial,
            "passRate": format_rate(self.pass_rate),
            "automatedCount": self.automated_count,
            "manualCount": self.manual_count,
            "overlapCount": self.overlap_count,
            "results": [r.to_dict() for r in self.records.values()],
        }


