"""
Configuration for the audit pipeline.

Values come from constructor arguments, environment variables with the
AIRLINK_AUDIT_ prefix, or a .env file in the working directory.
"""

from functools import lru_cache
from pathlib import Path
from typing import Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class AuditConfig(BaseSettings):
    """Конфигурация системы аудита."""

    model_config = SettingsConfigDict(
        env_prefix="AIRLINK_AUDIT_",
        env_file=".env",
        extra="ignore",
    )

    # === Paths ===
    project_root: Path = Field(default_factory=Path.cwd, description="Корень проекта AirLink")
    output_dir: Optional[Path] = Field(default=None, description="Директория для отчётов")
    evidence_dir: Optional[Path] = None
    manual_results_path: Optional[Path] = None
    automated_results_dir: Optional[Path] = None
    template_path: Optional[Path] = None
    state_file: Optional[Path] = Field(default=None, description="JSON файл сессий передач")
    checksum_db_path: Optional[Path] = None
    work_dir: Optional[Path] = Field(default=None, description="Директория временных файлов тестов")

    # === Integrity ===
    checksum_chunk_size: int = Field(default=64 * 1024, gt=0)

    # === Execution ===
    pass_rate_threshold: float = Field(default=95.0, ge=0.0, le=100.0)
    include_manual_tests: bool = True
    max_parallel_tests: int = Field(default=1, ge=1)
    test_timeout_seconds: float = Field(default=300.0, gt=0)
    discovery_timeout_seconds: float = Field(default=30.0, gt=0)
    transfer_timeout_seconds: float = Field(default=300.0, gt=0)
    qr_connect_timeout_seconds: float = Field(default=30.0, gt=0)
    default_test_file_size: int = Field(default=1024 * 1024, gt=0)
    min_free_storage_gb: float = 0.1

    @field_validator("project_root")
    @classmethod
    def _absolute_root(cls, value: Path) -> Path:
        return Path(value).expanduser().resolve()

    def resolved_output_dir(self) -> Path:
        return self.output_dir or self.project_root / "audit_results"

    def resolved_evidence_dir(self) -> Path:
        return self.evidence_dir or self.resolved_output_dir() / "evidence"

    def resolved_template_path(self) -> Path:
        return self.template_path or self.project_root / "docs" / "CONSOLIDATED_REPORT_TEMPLATE.md"

    def resolved_work_dir(self) -> Path:
        return self.work_dir or self.resolved_output_dir() / "work"


@lru_cache
def get_default_config() -> AuditConfig:
    """Получить конфигурацию по умолчанию (кешируется)."""
    return AuditConfig()
