"""
SQLite-backed store of per-transfer file checksums.
"""

import logging
import os
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

import aiosqlite

from ..core.models import calculate_pass_rate
from .checksum import ChecksumVerificationService, VerificationOutcome

MEMORY_DB = ":memory:"


@dataclass(frozen=True)
class ChecksumRecord:
    transfer_id: str
    file_path: str
    file_name: str
    file_size: int
    checksum: str
    calculated_at: datetime
    modified_at: Optional[datetime] = None

    @classmethod
    def from_row(cls, row: aiosqlite.Row) -> "ChecksumRecord":
        modified = row["modified_at"]
        return cls(
            transfer_id=row["transfer_id"],
            file_path=row["file_path"],
            file_name=row["file_name"],
            file_size=row["file_size"],
            checksum=row["checksum"],
            calculated_at=datetime.fromisoformat(row["calculated_at"]),
            modified_at=datetime.fromisoformat(modified) if modified else None,
        )


@dataclass(frozen=True)
class FileVerificationResult:
    file_path: str
    expected_checksum: str
    actual_checksum: Optional[str]
    outcome: VerificationOutcome
    error: Optional[str] = None

    @property
    def is_valid(self) -> bool:
        return self.outcome == VerificationOutcome.VALID

    def to_dict(self) -> Dict[str, Any]:
        return {
            "filePath": self.file_path,
            "expectedChecksum": self.expected_checksum,
            "actualChecksum": self.actual_checksum,
            "isValid": self.is_valid,
            "outcome": self.outcome.value,
            "error": self.error,
        }


@dataclass
class TransferVerificationResult:
    """Итог проверки всех файлов одной передачи."""

    transfer_id: str
    file_results: List[FileVerificationResult] = field(default_factory=list)
    verified_at: datetime = field(default_factory=datetime.now)

    @property
    def total_files(self) -> int:
        return len(self.file_results)

    @property
    def valid_files(self) -> int:
        return sum(1 for r in self.file_results if r.is_valid)

    @property
    def invalid_files(self) -> int:
        return self.total_files - self.valid_files

    @property
    def is_valid(self) -> bool:
        return self.total_files > 0 and self.invalid_files == 0

    @property
    def success_rate(self) -> float:
        return calculate_pass_rate(self.valid_files, self.total_files)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "transferId": self.transfer_id,
            "totalFiles": self.total_files,
            "validFiles": self.valid_files,
            "invalidFiles": self.invalid_files,
            "isValid": self.is_valid,
            "successRate": round(self.success_rate, 1),
            "verifiedAt": self.verified_at.isoformat(),
            "files": [r.to_dict() for r in self.file_results],
        }


class ChecksumStore:
    """Хранилище контрольных сумм передач (aiosqlite)."""

    def __init__(
        self,
        db_path: Union[str, os.PathLike] = MEMORY_DB,
        logger: Optional[logging.Logger] = None,
    ):
        self.db_path = str(db_path)
        self.logger = logger or logging.getLogger("airlink_audit.checksum_store")
        self._db: Optional[aiosqlite.Connection] = None

    async def connect(self) -> None:
        """Открыть соединение и создать таблицы."""
        if self._db is not None:
            return
        if self.db_path != MEMORY_DB:
            Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)
        self._db = await aiosqlite.connect(self.db_path)
        self._db.row_factory = aiosqlite.Row
        await self._db.executescript("""
            CREATE TABLE IF NOT EXISTS checksums (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                transfer_id TEXT NOT NULL,
                file_path TEXT NOT NULL,
                file_name TEXT NOT NULL,
                file_size INTEGER NOT NULL,
                checksum TEXT NOT NULL,
                calculated_at TEXT NOT NULL,
                modified_at TEXT,
                UNIQUE(transfer_id, file_path)
            );
            CREATE INDEX IF NOT EXISTS idx_checksums_transfer ON checksums(transfer_id);
            CREATE INDEX IF NOT EXISTS idx_checksums_calculated ON checksums(calculated_at);
        """)
        await self._db.commit()
        self.logger.info(f"Checksum store ready: {self.db_path}")

    async def close(self) -> None:
        if self._db is not None:
            await self._db.close()
            self._db = None

    async def __aenter__(self) -> "ChecksumStore":
        await self.connect()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    @property
    def db(self) -> aiosqlite.Connection:
        if self._db is None:
            raise RuntimeError("ChecksumStore is not connected")
        return self._db

    async def store_checksum(
        self,
        transfer_id: str,
        file_path: Union[str, os.PathLike],
        checksum: str,
        calculated_at: Optional[datetime] = None,
    ) -> ChecksumRecord:
        """Сохранить (или обновить) сумму файла в рамках передачи."""
        path = Path(file_path)
        try:
            stat = path.stat()
            size = stat.st_size
            modified: Optional[datetime] = datetime.fromtimestamp(stat.st_mtime)
        except OSError:
            size, modified = 0, None

        record = ChecksumRecord(
            transfer_id=transfer_id,
            file_path=str(path),
            file_name=path.name,
            file_size=size,
            checksum=checksum.lower(),
            calculated_at=calculated_at or datetime.now(),
            modified_at=modified,
        )
        await self.db.execute(
            """
            INSERT OR REPLACE INTO checksums
                (transfer_id, file_path, file_name, file_size, checksum, calculated_at, modified_at)
            VALUES (?, ?, ?, ?, ?, ?, ?)
            """,
            (
                record.transfer_id,
                record.file_path,
                record.file_name,
                record.file_size,
                record.checksum,
                record.calculated_at.isoformat(),
                record.modified_at.isoformat() if record.modified_at else None,
            ),
        )
        await self.db.commit()
        return record

    async def get_stored_checksum(
        self, transfer_id: str, file_path: Union[str, os.PathLike]
    ) -> Optional[str]:
        async with self.db.execute(
            "SELECT checksum FROM checksums WHERE transfer_id = ? AND file_path = ?",
            (transfer_id, str(file_path)),
        ) as cursor:
            row = await cursor.fetchone()
        return row["checksum"] if row else None

    async def get_transfer_checksums(self, transfer_id: str) -> List[ChecksumRecord]:
        async with self.db.execute(
            "SELECT * FROM checksums WHERE transfer_id = ? ORDER BY file_path",
            (transfer_id,),
        ) as cursor:
            rows = await cursor.fetchall()
        return [ChecksumRecord.from_row(row) for row in rows]

    async def verify_transfer(
        self,
        transfer_id: str,
        service: ChecksumVerificationService,
    ) -> TransferVerificationResult:
        """Пересчитать суммы всех файлов передачи и сравнить с сохранёнными."""
        result = TransferVerificationResult(transfer_id=transfer_id)
        for record in await self.get_transfer_checksums(transfer_id):
            check = await service.check(record.file_path, record.checksum)
            error = check.error
            if check.outcome == VerificationOutcome.MISSING:
                error = "File not found"
            result.file_results.append(
                FileVerificationResult(
                    file_path=record.file_path,
                    expected_checksum=record.checksum,
                    actual_checksum=check.actual,
                    outcome=check.outcome,
                    error=error,
                )
            )
        self.logger.info(
            f"Transfer {transfer_id} verified: "
            f"{result.valid_files}/{result.total_files} files valid"
        )
        return result

    async def cleanup_old_records(self, max_age_days: int = 30) -> int:
        """Удалить записи старше max_age_days. Возвращает число удалённых."""
        cutoff = (datetime.now() - timedelta(days=max_age_days)).isoformat()
        cursor = await self.db.execute(
            "DELETE FROM checksums WHERE calculated_at < ?", (cutoff,)
        )
        await self.db.commit()
        deleted = cursor.rowcount
        await cursor.close()
        if deleted:
            self.logger.info(f"Removed {deleted} checksum records older than {max_age_days} days")
        return deleted

    async def get_stats(self) -> Dict[str, Any]:
        async with self.db.execute(
            """
            SELECT COUNT(*) AS total_records,
                   COUNT(DISTINCT transfer_id) AS total_transfers,
                   COALESCE(SUM(file_size), 0) AS total_bytes
            FROM checksums
            """
        ) as cursor:
            row = await cursor.fetchone()
        return {
            "totalRecords": row["total_records"],
            "totalTransfers": row["total_transfers"],
            "totalBytes": row["total_bytes"],
        }
