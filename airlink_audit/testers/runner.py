"""
Automated audit test runner.

Runs a single AuditTestCase against the configured collaborators and always
returns a finished AuditResult. Tracks per-test lifecycle:

    not_started -> running -> passed | failed | partial
    not_started -> skipped          (chosen by the caller, never via running)
"""

import logging
from datetime import datetime
from pathlib import Path
from typing import Dict, List, Optional, Sequence

from ..config import AuditConfig, get_default_config
from ..core.errors import AuditModeError
from ..core.models import (
    AuditResult,
    AuditStatus,
    AuditSummaryReport,
    AuditTestCase,
    ReportFormat,
    format_rate,
)
from ..core.retry import retry_async
from ..integrity.checksum import ChecksumVerificationService
from ..integrity.store import ChecksumStore
from ..reports.summary import export_summary
from ..transfer.session_store import TransferSessionStore
from .checks import CHECKS, CheckContext
from .collaborators import AuditCollaborators

CPU_WARNING_PERCENT = 50.0
MEMORY_WARNING_MB = 200.0


class AuditTestRunner:
    """Сервис запуска автоматических тестов аудита."""

    def __init__(
        self,
        config: Optional[AuditConfig] = None,
        collaborators: Optional[AuditCollaborators] = None,
        checksum: Optional[ChecksumVerificationService] = None,
        sessions: Optional[TransferSessionStore] = None,
        checksum_store: Optional[ChecksumStore] = None,
        logger: Optional[logging.Logger] = None,
    ):
        self.config = config or get_default_config()
        self.collaborators = collaborators or AuditCollaborators()
        self.logger = logger or logging.getLogger("airlink_audit.runner")
        self.checksum = checksum or ChecksumVerificationService(self.config.checksum_chunk_size)
        self.sessions = sessions or TransferSessionStore(self.config.state_file)
        self.context = CheckContext(
            config=self.config,
            checksum=self.checksum,
            sessions=self.sessions,
            collaborators=self.collaborators,
            checksum_store=checksum_store,
        )
        self.states: Dict[str, AuditStatus] = {}
        self._audit_mode = self.collaborators.platform is None

    # === Audit mode ===

    @property
    def audit_mode_enabled(self) -> bool:
        return self._audit_mode

    @retry_async(max_attempts=3, base_delay=0.2, exceptions=(ConnectionError,))
    async def _set_platform_audit_mode(self, enabled: bool) -> bool:
        return await self.collaborators.platform.set_audit_mode(enabled)

    async def enable_audit_mode(self) -> bool:
        """Включить режим аудита. Без нативного слоя режим всегда включён."""
        if self.collaborators.platform is None:
            self._audit_mode = True
        else:
            self._audit_mode = bool(await self._set_platform_audit_mode(True))
        self.logger.info(f"Audit mode {'enabled' if self._audit_mode else 'NOT enabled'}")
        return self._audit_mode

    async def disable_audit_mode(self) -> None:
        if self.collaborators.platform is not None:
            await self._set_platform_audit_mode(False)
            self._audit_mode = False
        self.logger.info("Audit mode disabled")

    # === Execution ===

    async def run_test_case(self, test_case: AuditTestCase) -> AuditResult:
        """
        Выполнить тест. Никогда не выбрасывает исключение наружу.

        Returns:
            AuditResult со статусом passed/failed/partial
        """
        self.states[test_case.id] = AuditStatus.RUNNING
        self.logger.info(f"Running {test_case.id} ({test_case.test_type.value})...")

        if not self._audit_mode:
            error = AuditModeError("Audit mode must be enabled before running tests")
            result = self._failed_result(test_case, f"{type(error).__name__}: {error}")
        else:
            check = CHECKS[test_case.test_type](self.context)
            result = await check.execute(test_case, self.config.test_timeout_seconds)

        self.states[test_case.id] = result.status
        status = "✅ PASSED" if result.passed else f"❌ {result.status.value.upper()}"
        self.logger.info(
            f"{test_case.id}: {status} in {result.duration.total_seconds():.2f}s"
            + (f" - {result.notes}" if result.notes else "")
        )
        return result

    def skip_test_case(self, test_case: AuditTestCase, reason: str) -> AuditResult:
        """Пометить тест как пропущенный без запуска."""
        now = datetime.now()
        self.states[test_case.id] = AuditStatus.SKIPPED
        self.logger.info(f"Skipping {test_case.id}: {reason}")
        return AuditResult(
            test_case=test_case,
            start_time=now,
            end_time=now,
            status=AuditStatus.SKIPPED,
            notes=reason,
        )

    def status_of(self, test_id: str) -> AuditStatus:
        return self.states.get(test_id, AuditStatus.NOT_STARTED)

    def _failed_result(self, test_case: AuditTestCase, notes: str) -> AuditResult:
        now = datetime.now()
        return AuditResult(
            test_case=test_case,
            start_time=now,
            end_time=now,
            status=AuditStatus.FAILED,
            notes=notes,
        )

    # === Helpers exposed to callers ===

    async def verify_checksum(self, path: Path, expected: str) -> bool:
        return await self.checksum.verify(path, expected)

    async def collect_native_metrics(self, transfer_id: str) -> Dict[str, float]:
        if self.collaborators.platform is None:
            return {}
        return await self.collaborators.platform.transfer_metrics(transfer_id)

    # === Reporting ===

    def generate_report(self, results: Sequence[AuditResult]) -> AuditSummaryReport:
        """Сводный отчёт: счётчики, краткое резюме и рекомендации."""
        report = AuditSummaryReport(results=list(results))
        report.summary = (
            f"Executed {report.total_tests} tests: {report.passed_tests} passed, "
            f"{report.failed_tests} failed, {report.skipped_tests} skipped "
            f"({format_rate(report.pass_rate)}% pass rate)"
        )
        report.recommendations = self.generate_recommendations(results)
        return report

    def generate_recommendations(self, results: Sequence[AuditResult]) -> List[str]:
        recommendations = []
        failed = [r for r in results if r.status == AuditStatus.FAILED]
        if failed:
            recommendations.append(f"Fix {len(failed)} failed test(s):")
            for result in failed:
                reason = result.notes or "no details"
                recommendations.append(f"  - {result.test_case.name} ({result.test_case.id}): {reason}")

        cpu = [r.metrics["cpuUsage"] for r in results if "cpuUsage" in r.metrics]
        if cpu and sum(cpu) / len(cpu) > CPU_WARNING_PERCENT:
            recommendations.append(
                f"Average CPU usage {sum(cpu) / len(cpu):.1f}% exceeds {CPU_WARNING_PERCENT:.0f}%; "
                "profile the transfer pipeline"
            )
        memory = [r.metrics["memoryUsageMB"] for r in results if "memoryUsageMB" in r.metrics]
        if memory and sum(memory) / len(memory) > MEMORY_WARNING_MB:
            recommendations.append(
                f"Average memory usage {sum(memory) / len(memory):.1f}MB exceeds "
                f"{MEMORY_WARNING_MB:.0f}MB; check buffer sizes"
            )
        if not recommendations:
            recommendations.append("All tests passed. No immediate action required.")
        return recommendations

    def export_report(self, report: AuditSummaryReport, fmt: ReportFormat = ReportFormat.JSON) -> str:
        return export_summary(report, fmt)
