"""
Standalone report pipeline: collect inputs, merge, index evidence, write reports.

Used by the CLI and by the orchestrator's report-generation phase.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Union

from ..core.models import AuditResult, MergedTestRecord, ReportFormat, SectionError
from .data import ReportData
from .evidence import EvidenceIndexer
from .generator import ReportGenerator
from .merger import ManualResults, ManualTestEntry, load_automated_results, load_manual_results, merge_results
from .sources import collect_device_logs, load_benchmarks, load_coverage, load_environment_snapshot

logger = logging.getLogger("airlink_audit.pipeline")

ManualInput = Union[ManualResults, SectionError, Iterable[ManualTestEntry], None]


@dataclass
class ReportRun:
    """Результат генерации: пути к файлам и собранные данные."""

    data: ReportData
    paths: Dict[ReportFormat, Path] = field(default_factory=dict)
    consolidated: List[Path] = field(default_factory=list)

    def all_paths(self) -> List[Path]:
        return list(self.paths.values()) + list(self.consolidated)


def collect_report_data(
    project_root: Path,
    output_dir: Path,
    timestamp: str,
    automated_results_dir: Optional[Path] = None,
    manual: ManualInput = None,
    manual_results_path: Optional[Path] = None,
    evidence_dir: Optional[Path] = None,
    automated: Iterable[Union[AuditResult, MergedTestRecord]] = (),
    indexer: Optional[EvidenceIndexer] = None,
    metadata: Optional[Dict[str, Any]] = None,
) -> ReportData:
    """
    Собрать все секции отчёта.

    Args:
        project_root: Корень проекта (benchmarks, coverage, device_logs)
        output_dir: Директория отчётов (и результатов по умолчанию)
        timestamp: Токен запуска
        automated_results_dir: JSON файлы автоматических тестов (по умолчанию
            output_dir, если automated пуст)
        manual: Уже загруженные ручные результаты (приоритетнее manual_results_path)
        manual_results_path: Файл ручных результатов
        evidence_dir: Директория доказательств
        automated: Уже выполненные в этом процессе автоматические результаты
        indexer: Индексатор доказательств
        metadata: Дополнительные поля для JSON отчёта

    Returns:
        ReportData; ошибки секций сохраняются как SectionError
    """
    project_root = Path(project_root)
    output_dir = Path(output_dir)

    logger.info("  📋 Collecting automated test results...")
    automated_records: List[Union[AuditResult, MergedTestRecord]] = list(automated)
    automated_error = None
    results_dir = automated_results_dir or (None if automated_records else output_dir)
    from_files = load_automated_results(results_dir)
    if isinstance(from_files, SectionError):
        automated_error = from_files
    else:
        automated_records.extend(from_files)

    logger.info("  📋 Collecting manual test results...")
    manual_error = None
    device_info: Dict[str, Any] = {}
    test_environment: Dict[str, Any] = {}
    if manual is None:
        manual = load_manual_results(manual_results_path)
    if isinstance(manual, SectionError):
        manual_error = manual
        manual_entries: List[ManualTestEntry] = []
    elif isinstance(manual, ManualResults):
        manual_entries = list(manual.tests)
        device_info = manual.device_info
        test_environment = manual.test_environment
    else:
        manual_entries = list(manual)

    logger.info("  🔄 Merging automated and manual results...")
    merged = merge_results(automated_records, manual_entries)

    logger.info("  📋 Collecting evidence...")
    evidence = (indexer or EvidenceIndexer()).index(evidence_dir)

    return ReportData(
        merged=merged,
        evidence=evidence,
        benchmarks=load_benchmarks(project_root / "audit_results" / f"benchmark_results_{timestamp}.json"),
        coverage=load_coverage(project_root / "coverage" / "lcov.info"),
        device_logs=collect_device_logs(project_root / "device_logs"),
        environment=load_environment_snapshot(output_dir / f"environment_validation_{timestamp}.json"),
        manual_error=manual_error,
        device_info=device_info,
        test_environment=test_environment,
        automated_error=automated_error,
        generated_at=datetime.now(),
        timestamp=timestamp,
        project_root=project_root,
        metadata={
            "projectRoot": str(project_root),
            "outputDir": str(output_dir),
            "automatedResultsDir": str(automated_results_dir) if automated_results_dir else None,
            "manualResultsPath": str(manual_results_path) if manual_results_path else None,
            "evidenceDir": str(evidence_dir) if evidence_dir else None,
            **(metadata or {}),
        },
    )


def generate_audit_report(
    project_root: Path,
    output_dir: Path,
    timestamp: str,
    automated_results_dir: Optional[Path] = None,
    manual_results_path: Optional[Path] = None,
    evidence_dir: Optional[Path] = None,
    template_path: Optional[Path] = None,
    **kwargs: Any,
) -> ReportRun:
    """
    Сгенерировать все отчёты в output_dir.

    Raises:
        ReportGenerationError: если отчёты нельзя записать
    """
    logger.info("📊 Generating audit report")
    logger.info(f"📊 Output Directory: {output_dir}")

    data = collect_report_data(
        project_root=project_root,
        output_dir=output_dir,
        timestamp=timestamp,
        automated_results_dir=automated_results_dir,
        manual_results_path=manual_results_path,
        evidence_dir=evidence_dir,
        **kwargs,
    )

    generator = ReportGenerator(output_dir, timestamp)
    paths = generator.write_reports(data)
    if template_path is None:
        template_path = Path(project_root) / "docs" / "CONSOLIDATED_REPORT_TEMPLATE.md"
    consolidated = generator.write_consolidated(template_path, data)

    logger.info(f"✅ Audit report generation complete: {len(paths) + len(consolidated)} files")
    return ReportRun(data=data, paths=paths, consolidated=consolidated)
