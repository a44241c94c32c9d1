"""
Consolidated audit orchestrator.

Phases, strictly ordered:
- environment validation (never gates later phases)
- automated tests (batched, graceful degradation per test)
- manual tests (optional, skipped entirely on opt-out)
- report generation

Progress is broadcast on a ProgressBus: every phase publishes 0% before and
100% after it runs, automated tests also publish one event per finished test.
"""

import asyncio
import json
import logging
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Union

from .config import AuditConfig
from .core.models import (
    AuditResult,
    AuditStatus,
    AuditSummaryReport,
    AuditTestCase,
    MergedResults,
    ReportFormat,
    SectionError,
    format_rate,
)
from .core.progress import AuditPhase, AuditProgress, ProgressBus, ProgressSubscription
from .reports.data import ReportData
from .reports.evidence import EvidenceIndexer
from .reports.generator import ReportGenerator
from .reports.merger import ManualResults, ManualTestEntry, load_manual_results, parse_manual_results
from .reports.pipeline import collect_report_data
from .testers.catalog import default_test_cases
from .testers.runner import AuditTestRunner

ManualSource = Union[ManualResults, Iterable[Union[ManualTestEntry, Dict[str, Any]]], None]

_WRITE_PROBE = ".airlink_audit_write_probe"


@dataclass
class EnvironmentValidation:
    """Результат проверки окружения. Не блокирует последующие фазы."""

    is_valid: bool = True
    errors: List[str] = field(default_factory=list)
    details: Dict[str, Any] = field(default_factory=dict)
    output_ready: bool = False

    def add_error(self, message: str) -> None:
        self.errors.append(message)
        self.is_valid = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "isValid": self.is_valid,
            "errors": list(self.errors),
            "outputReady": self.output_ready,
            **self.details,
        }


@dataclass
class ConsolidatedAuditResult:
    """Итог консолидированного аудита. end_time заполняется всегда."""

    start_time: datetime
    output_directory: Path
    timestamp: str
    end_time: Optional[datetime] = None
    success: bool = False
    error: Optional[str] = None
    notes: List[str] = field(default_factory=list)
    phases_completed: List[AuditPhase] = field(default_factory=list)
    environment_validation: EnvironmentValidation = field(default_factory=EnvironmentValidation)
    automated_results: List[AuditResult] = field(default_factory=list)
    manual_entries: List[ManualTestEntry] = field(default_factory=list)
    manual_results: Optional[ManualResults] = None
    manual_error: Optional[SectionError] = None
    summary: Optional[AuditSummaryReport] = None
    report_data: Optional[ReportData] = None
    report_paths: List[Path] = field(default_factory=list)

    @property
    def merged(self) -> Optional[MergedResults]:
        return self.report_data.merged if self.report_data else None

    @property
    def pass_rate(self) -> float:
        return self.merged.pass_rate if self.merged else 0.0

    @property
    def duration(self) -> float:
        end = self.end_time or datetime.now()
        return (end - self.start_time).total_seconds()

    def to_dict(self) -> Dict[str, Any]:
        merged = self.merged
        return {
            "startTime": self.start_time.isoformat(),
            "endTime": self.end_time.isoformat() if self.end_time else None,
            "duration": self.duration,
            "timestamp": self.timestamp,
            "outputDirectory": str(self.output_directory),
            "success": self.success,
            "error": self.error,
            "notes": list(self.notes),
            "phasesCompleted": [p.value for p in self.phases_completed],
            "environmentValidation": self.environment_validation.to_dict(),
            "automatedResults": [r.to_dict() for r in self.automated_results],
            "manualTests": len(self.manual_entries),
            "manualResultsError": self.manual_error.to_dict() if self.manual_error else None,
            "mergedResults": merged.to_dict() if merged else None,
            "reportPaths": [str(p) for p in self.report_paths],
        }


class ConsolidatedAuditOrchestrator:
    """Оркестратор фаз консолидированного аудита."""

    def __init__(
        self,
        runner: AuditTestRunner,
        config: Optional[AuditConfig] = None,
        progress_bus: Optional[ProgressBus] = None,
        evidence_indexer: Optional[EvidenceIndexer] = None,
        logger: Optional[logging.Logger] = None,
    ):
        """
        Args:
            runner: Запускатель автоматических тестов
            config: Конфигурация (по умолчанию конфигурация runner)
            progress_bus: Канал прогресса (создаётся, если не передан)
            evidence_indexer: Индексатор доказательств
        """
        self.runner = runner
        self.config = config or runner.config
        self.progress_bus = progress_bus or ProgressBus()
        self.evidence_indexer = evidence_indexer or EvidenceIndexer()
        self.logger = logger or logging.getLogger("airlink_audit.orchestrator")
        self._disposed = False

    # === Progress ===

    def subscribe(self) -> ProgressSubscription:
        return self.progress_bus.subscribe()

    def _progress(self, phase: AuditPhase, percentage: float, message: str) -> None:
        self.progress_bus.publish(AuditProgress(phase, round(percentage, 1), message))

    @property
    def disposed(self) -> bool:
        return self._disposed

    def dispose(self) -> None:
        """Остановить канал прогресса. Безопасно вызывать повторно и до запуска."""
        if self._disposed:
            return
        self._disposed = True
        self.progress_bus.close()
        self.logger.debug("Orchestrator disposed")

    # === Main entry point ===

    async def run_comprehensive_audit(
        self,
        output_directory: Optional[Path] = None,
        include_manual_tests: Optional[bool] = None,
        pass_rate_threshold: Optional[float] = None,
        test_cases: Optional[Iterable[AuditTestCase]] = None,
        manual_results: ManualSource = None,
        timestamp: Optional[str] = None,
    ) -> ConsolidatedAuditResult:
        """
        Выполнить все фазы аудита.

        Никогда не выбрасывает исключение: сбой фазы отражается в
        result.error и result.notes, success становится False.

        Args:
            output_directory: Куда писать отчёты (по умолчанию из конфигурации)
            include_manual_tests: Выполнять ли фазу ручных тестов
            pass_rate_threshold: Минимальный процент прохождения для success
            test_cases: Автоматические тесты (по умолчанию полный каталог)
            manual_results: Ручные результаты (по умолчанию файл из конфигурации)
            timestamp: Токен имён файлов (по умолчанию epoch ms)
        """
        start = datetime.now()
        output_dir = Path(output_directory) if output_directory else self.config.resolved_output_dir()
        threshold = self.config.pass_rate_threshold if pass_rate_threshold is None else pass_rate_threshold
        include_manual = self.config.include_manual_tests if include_manual_tests is None else include_manual_tests
        result = ConsolidatedAuditResult(
            start_time=start,
            output_directory=output_dir,
            timestamp=timestamp or str(int(start.timestamp() * 1000)),
        )

        self.logger.info("=" * 60)
        self.logger.info("STARTING CONSOLIDATED AUDIT")
        self.logger.info("=" * 60)

        try:
            result.environment_validation = await self._environment_phase(output_dir, result.timestamp)
            result.phases_completed.append(AuditPhase.ENVIRONMENT_VALIDATION)
            if not result.environment_validation.output_ready:
                result.notes.append(f"Output directory unavailable: {output_dir}")

            cases = list(test_cases) if test_cases is not None else default_test_cases(
                self.config.default_test_file_size
            )
            result.automated_results = await self._automated_phase(cases)
            result.summary = self.runner.generate_report(result.automated_results)
            result.phases_completed.append(AuditPhase.AUTOMATED_TESTS)

            if include_manual:
                loaded = self._manual_phase(manual_results)
                if isinstance(loaded, SectionError):
                    result.manual_error = loaded
                    result.notes.append(f"Manual results unavailable: {loaded.error}")
                else:
                    result.manual_results = loaded
                    result.manual_entries = list(loaded.tests)
                result.phases_completed.append(AuditPhase.MANUAL_TESTS)

            await self._report_phase(result)
            result.phases_completed.append(AuditPhase.REPORT_GENERATION)

        except Exception as e:
            self.logger.error(f"❌ Consolidated audit failed: {e}", exc_info=True)
            result.error = f"{type(e).__name__}: {e}"
            result.notes.append(f"Audit aborted: {result.error}")

        finally:
            result.end_time = datetime.now()

        result.success = (
            result.error is None
            and result.environment_validation.output_ready
            and result.merged is not None
            and result.pass_rate >= threshold
        )
        if result.merged is not None and result.pass_rate < threshold:
            result.notes.append(
                f"Pass rate {format_rate(result.pass_rate)}% is below threshold {format_rate(threshold)}%"
            )

        self.logger.info(
            f"{'✅' if result.success else '❌'} Consolidated audit finished in "
            f"{result.duration:.2f}s (pass rate {format_rate(result.pass_rate)}%)"
        )
        return result

    # === Phases ===

    async def _environment_phase(self, output_dir: Path, timestamp: str) -> EnvironmentValidation:
        phase = AuditPhase.ENVIRONMENT_VALIDATION
        self._progress(phase, 0, "Validating environment...")
        validation = await self.validate_environment(output_dir)

        if validation.output_ready:
            snapshot = output_dir / f"environment_validation_{timestamp}.json"
            try:
                snapshot.write_text(
                    json.dumps(validation.to_dict(), indent=2, ensure_ascii=False, default=str),
                    encoding="utf-8",
                )
            except OSError as e:
                validation.add_error(f"Cannot write environment snapshot: {e}")

        message = "Environment valid" if validation.is_valid else f"Environment issues: {len(validation.errors)}"
        self._progress(phase, 100, message)
        return validation

    async def validate_environment(self, output_dir: Path) -> EnvironmentValidation:
        """
        Проверить режим аудита, сеть, разрешения, место и директорию вывода.

        Ошибки собираются в EnvironmentValidation, исключения не выходят наружу.
        """
        validation = EnvironmentValidation()
        platform = self.runner.collaborators.platform

        try:
            audit_mode = await self.runner.enable_audit_mode()
            validation.details["auditMode"] = audit_mode
            if not audit_mode:
                validation.add_error("Audit mode could not be enabled")
        except Exception as e:
            validation.details["auditMode"] = False
            validation.add_error(f"Audit mode: {type(e).__name__}: {e}")

        if platform is None:
            validation.details["platform"] = "unavailable"
        else:
            try:
                network = await platform.network_capabilities()
                validation.details["network"] = dict(network)
                if not any(network.values()):
                    validation.add_error("No network transport available")
            except Exception as e:
                validation.add_error(f"Network capabilities: {type(e).__name__}: {e}")

            try:
                permissions = await platform.permissions()
                validation.details["permissions"] = dict(permissions)
                missing = sorted(name for name, granted in permissions.items() if not granted)
                if missing:
                    validation.add_error(f"Missing permissions: {', '.join(missing)}")
            except Exception as e:
                validation.add_error(f"Permissions: {type(e).__name__}: {e}")

            try:
                free = await platform.free_storage_gb()
                validation.details["freeStorageGb"] = free
                if free < self.config.min_free_storage_gb:
                    validation.add_error(
                        f"Insufficient storage: {free:.2f}GB < {self.config.min_free_storage_gb:.2f}GB"
                    )
            except Exception as e:
                validation.add_error(f"Storage: {type(e).__name__}: {e}")

        validation.details["outputDirectory"] = str(output_dir)
        try:
            output_dir.mkdir(parents=True, exist_ok=True)
            probe = output_dir / _WRITE_PROBE
            probe.write_text("ok", encoding="utf-8")
            probe.unlink()
            validation.output_ready = True
        except OSError as e:
            validation.add_error(f"Output directory not writable: {e}")

        for error in validation.errors:
            self.logger.warning(f"⚠️  {error}")
        return validation

    async def _automated_phase(self, cases: List[AuditTestCase]) -> List[AuditResult]:
        phase = AuditPhase.AUTOMATED_TESTS
        self._progress(phase, 0, f"Running {len(cases)} automated tests...")

        results: List[AuditResult] = []
        batch_size = max(1, self.config.max_parallel_tests)
        for i in range(0, len(cases), batch_size):
            batch = cases[i:i + batch_size]
            outcomes = await asyncio.gather(*(self._run_or_skip(c) for c in batch), return_exceptions=True)
            for case, outcome in zip(batch, outcomes):
                if isinstance(outcome, Exception):
                    self.logger.error(f"Test {case.id} failed: {outcome}")
                    now = datetime.now()
                    outcome = AuditResult(
                        test_case=case,
                        start_time=now,
                        end_time=now,
                        status=AuditStatus.FAILED,
                        notes=f"{type(outcome).__name__}: {outcome}",
                    )
                results.append(outcome)
                self._progress(
                    phase,
                    len(results) / len(cases) * 100,
                    f"{case.id}: {outcome.status.value}",
                )

        try:
            await self.runner.disable_audit_mode()
        except Exception as e:
            self.logger.warning(f"Could not disable audit mode: {e}")

        passed = sum(1 for r in results if r.passed)
        self._progress(phase, 100, f"Automated tests complete: {passed}/{len(results)} passed")
        return results

    async def _run_or_skip(self, case: AuditTestCase) -> AuditResult:
        missing = self.runner.collaborators.missing_for(case.test_type)
        if missing:
            return self.runner.skip_test_case(case, f"Collaborator unavailable: {', '.join(missing)}")
        return await self.runner.run_test_case(case)

    def _manual_phase(self, manual_results: ManualSource):
        phase = AuditPhase.MANUAL_TESTS
        self._progress(phase, 0, "Loading manual test results...")

        if manual_results is None:
            loaded = load_manual_results(self.config.manual_results_path)
        elif isinstance(manual_results, ManualResults):
            loaded = manual_results
        else:
            raw = [
                item.model_dump(by_alias=True) if isinstance(item, ManualTestEntry) else item
                for item in manual_results
            ]
            loaded = parse_manual_results({"tests": raw}, "manual_results argument")

        count = 0 if isinstance(loaded, SectionError) else len(loaded.tests)
        self._progress(phase, 100, f"Loaded {count} manual test results")
        return loaded

    async def _report_phase(self, result: ConsolidatedAuditResult) -> None:
        phase = AuditPhase.REPORT_GENERATION
        self._progress(phase, 0, "Generating reports...")

        output_dir = result.output_directory
        evidence_dir = self.config.evidence_dir or output_dir / "evidence"
        data = collect_report_data(
            project_root=self.config.project_root,
            output_dir=output_dir,
            timestamp=result.timestamp,
            automated_results_dir=self.config.automated_results_dir,
            manual=result.manual_results if result.manual_results is not None else result.manual_entries,
            evidence_dir=evidence_dir,
            automated=result.automated_results,
            indexer=self.evidence_indexer,
            metadata={
                "startTime": result.start_time.isoformat(),
                "environmentValid": result.environment_validation.is_valid,
            },
        )
        data.environment = result.environment_validation.to_dict()
        data.manual_error = result.manual_error
        result.report_data = data

        if not result.environment_validation.output_ready:
            self._progress(phase, 100, "Reports not written: output directory unavailable")
            return

        if result.summary is not None:
            path = output_dir / f"automated_test_results_{result.timestamp}.json"
            path.write_text(self.runner.export_report(result.summary, ReportFormat.JSON), encoding="utf-8")
            result.report_paths.append(path)

        generator = ReportGenerator(output_dir, result.timestamp)
        result.report_paths.extend(generator.write_reports(data).values())
        result.report_paths.extend(generator.write_consolidated(self.config.resolved_template_path(), data))

        self._progress(phase, 100, f"Generated {len(result.report_paths)} report files")
