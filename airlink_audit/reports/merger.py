"""
Merging of automated and manual test results.

merge_results() is a pure function: automated records are inserted first,
then manual records overwrite any record with the same id. Counts are always
derived from the merged map, so a shared id is never counted twice.
"""

import json
import logging
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Sequence, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from ..core.models import (
    AuditResult,
    AuditStatus,
    MergedResults,
    MergedTestRecord,
    SectionError,
    SourceType,
)
from .core_checks import classify_test

logger = logging.getLogger("airlink_audit.merger")


class ManualTestEntry(BaseModel):
    """Результат ручного теста в формате manual_results.json."""

    model_config = ConfigDict(populate_by_name=True, extra="allow")

    test_id: str = Field(alias="testId", description="Уникальный id теста")
    test_name: Optional[str] = Field(default=None, alias="testName")
    category: str = ""
    passed: Optional[bool] = None
    status: Optional[str] = None
    duration: float = Field(default=0.0, description="Длительность в секундах")
    notes: Optional[str] = None
    evidence: List[str] = Field(default_factory=list)
    metrics: Dict[str, Any] = Field(default_factory=dict)

    @field_validator("test_id", mode="before")
    @classmethod
    def _id_as_text(cls, value: Any) -> Any:
        # numeric ids from hand-written files
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            return str(value)
        return value

    @classmethod
    def from_raw(cls, raw: Dict[str, Any]) -> "ManualTestEntry":
        data = dict(raw)
        if "testId" not in data and "id" in data:
            data["testId"] = data["id"]
        if "testName" not in data and "name" in data:
            data["testName"] = data["name"]
        return cls.model_validate(data)

    def resolved_status(self) -> AuditStatus:
        """passed=true -> passed, passed=false -> failed, иначе поле status."""
        if self.passed is True:
            return AuditStatus.PASSED
        if self.passed is False:
            return AuditStatus.FAILED
        return AuditStatus.parse(self.status, default=AuditStatus.SKIPPED)


class ManualResults(BaseModel):
    """Содержимое файла ручных результатов."""

    model_config = ConfigDict(populate_by_name=True, extra="allow")

    tests: List[ManualTestEntry] = Field(default_factory=list)
    device_info: Dict[str, Any] = Field(default_factory=dict, alias="deviceInfo")
    test_environment: Dict[str, Any] = Field(default_factory=dict, alias="testEnvironment")
    summary: Dict[str, Any] = Field(default_factory=dict)

    def duplicate_ids(self) -> List[str]:
        seen, duplicates = set(), []
        for entry in self.tests:
            if entry.test_id in seen and entry.test_id not in duplicates:
                duplicates.append(entry.test_id)
            seen.add(entry.test_id)
        return duplicates


def parse_manual_results(data: Any, source: Optional[str] = None) -> Union[ManualResults, SectionError]:
    """Разобрать JSON ручных результатов; ошибки формы -> SectionError."""
    if not isinstance(data, dict):
        return SectionError("Manual results must be a JSON object", source)
    raw_tests = data.get("tests", [])
    if not isinstance(raw_tests, list):
        return SectionError("'tests' must be a list", source)
    try:
        tests = [ManualTestEntry.from_raw(t) for t in raw_tests]
        results = ManualResults.model_validate({**data, "tests": tests})
    except (ValidationError, TypeError, ValueError) as e:
        return SectionError(f"Invalid manual results: {e}", source)
    duplicates = results.duplicate_ids()
    if duplicates:
        logger.warning(f"Duplicate manual test ids, last entry wins: {', '.join(duplicates)}")
    return results


def load_manual_results(path: Optional[Path]) -> Union[ManualResults, SectionError]:
    """Прочитать manual_results.json. Отсутствующий файл -> пустой набор."""
    if path is None or not Path(path).exists():
        return ManualResults()
    try:
        data = json.loads(Path(path).read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as e:
        logger.error(f"Cannot parse manual results {path}: {e}")
        return SectionError(f"Cannot parse manual results: {e}", str(path))
    return parse_manual_results(data, str(path))


def record_from_audit_result(result: AuditResult) -> MergedTestRecord:
    case = result.test_case
    evidence = [str(v) for k, v in sorted(result.evidence.items()) if k.lower().endswith("path")]
    return MergedTestRecord(
        id=case.id,
        name=case.name,
        status=result.status,
        source=SourceType.AUTOMATED,
        duration=result.duration.total_seconds(),
        category=case.test_type.value,
        notes=result.notes,
        evidence=evidence,
        core_check=case.core_check,
    )


def record_from_manual_entry(entry: ManualTestEntry) -> MergedTestRecord:
    name = entry.test_name or entry.test_id
    return MergedTestRecord(
        id=entry.test_id,
        name=name,
        status=entry.resolved_status(),
        source=SourceType.MANUAL,
        duration=entry.duration,
        category=entry.category,
        notes=entry.notes,
        evidence=list(entry.evidence),
        core_check=classify_test(entry.test_id, name, entry.category),
    )


def merge_results(
    automated: Iterable[Union[AuditResult, MergedTestRecord]],
    manual: Iterable[Union[ManualTestEntry, MergedTestRecord]] = (),
) -> MergedResults:
    """
    Объединить результаты; ручной результат с тем же id побеждает.

    Args:
        automated: AuditResult или готовые записи автоматических тестов
        manual: Записи ручных тестов

    Returns:
        MergedResults (новый объект, входы не изменяются)
    """
    records: Dict[str, MergedTestRecord] = {}
    automated_ids = set()
    for item in automated:
        record = record_from_audit_result(item) if isinstance(item, AuditResult) else item
        records[record.id] = record
        automated_ids.add(record.id)

    manual_ids = set()
    for item in manual:
        record = record_from_manual_entry(item) if isinstance(item, ManualTestEntry) else item
        records[record.id] = record
        manual_ids.add(record.id)

    return MergedResults(
        records=records,
        automated_count=len(automated_ids),
        manual_count=len(manual_ids),
        overlap_count=len(automated_ids & manual_ids),
    )


# === Automated result files ===

def _records_from_suites(data: Dict[str, Any]) -> List[MergedTestRecord]:
    records = []
    for suite in data.get("testsuites", []):
        suite_name = str(suite.get("name", ""))
        for case in suite.get("testcases", []):
            name = str(case.get("name", ""))
            if case.get("skipped"):
                status = AuditStatus.SKIPPED
            elif case.get("failure") or case.get("error"):
                status = AuditStatus.FAILED
            else:
                status = AuditStatus.parse(case.get("status"), default=AuditStatus.PASSED)
            test_id = str(case.get("id") or (f"{suite_name}::{name}" if suite_name else name))
            failure = case.get("failure") or case.get("error")
            records.append(MergedTestRecord(
                id=test_id,
                name=name,
                status=status,
                source=SourceType.AUTOMATED,
                duration=float(case.get("time", 0.0) or 0.0),
                category=str(case.get("category") or suite_name),
                notes=str(failure) if failure else None,
                core_check=classify_test(test_id, name, str(case.get("category") or suite_name)),
            ))
    return records


def _records_from_export(data: Dict[str, Any]) -> List[MergedTestRecord]:
    records = []
    for item in data.get("results", []):
        case = item.get("testCase") or {}
        test_id = str(case.get("id") or item.get("id"))
        name = str(case.get("name") or item.get("name") or test_id)
        category = str(case.get("type") or item.get("category") or "")
        records.append(MergedTestRecord(
            id=test_id,
            name=name,
            status=AuditStatus.parse(item.get("status")),
            source=SourceType.AUTOMATED,
            duration=float(item.get("duration", 0) or 0) / 1000.0,
            category=category,
            notes=item.get("notes"),
            core_check=classify_test(test_id, name, category),
        ))
    return records


def parse_automated_results(data: Any, source: Optional[str] = None) -> Union[List[MergedTestRecord], SectionError]:
    """Разобрать один JSON файл автоматических результатов."""
    if not isinstance(data, dict):
        return SectionError("Automated results must be a JSON object", source)
    try:
        if "testsuites" in data:
            return _records_from_suites(data)
        if "results" in data:
            return _records_from_export(data)
    except (AttributeError, TypeError, ValueError) as e:
        return SectionError(f"Invalid automated results: {e}", source)
    return SectionError("Unrecognized automated results layout", source)


def load_automated_results(
    directory: Optional[Path],
    patterns: Sequence[str] = ("*test_results*.json",),
) -> Union[List[MergedTestRecord], SectionError]:
    """
    Собрать автоматические результаты из директории.

    Отсутствующая директория -> пустой список. Файлы, которые не удалось
    разобрать, пропускаются с предупреждением; если не разобран ни один из
    найденных файлов, возвращается SectionError.
    """
    if directory is None or not Path(directory).is_dir():
        return []

    files = sorted({p for pattern in patterns for p in Path(directory).glob(pattern)})
    records: List[MergedTestRecord] = []
    errors: List[str] = []
    for path in files:
        try:
            data = json.loads(path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as e:
            errors.append(f"{path.name}: {e}")
            continue
        parsed = parse_automated_results(data, str(path))
        if isinstance(parsed, SectionError):
            errors.append(f"{path.name}: {parsed.error}")
            continue
        records.extend(parsed)

    for error in errors:
        logger.warning(f"Skipping automated results file {error}")
    if files and not records and errors:
        return SectionError("; ".join(errors), str(directory))
    return records
