"""
SHA-256 checksum computation and verification.

Files are read in fixed-size chunks on a worker thread, so large files never
sit in memory at once and a cancel signal is honoured between chunks.
"""

import asyncio
import hashlib
import hmac
import logging
import os
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Optional, Union

from ..core.errors import ChecksumCancelledError, UnreadableFileError

DEFAULT_CHUNK_SIZE = 64 * 1024
ALGORITHM = "SHA-256"

PathLike = Union[str, os.PathLike]


class ChecksumOutcome(Enum):
    """Результат вычисления контрольной суммы."""
    COMPLETE = "complete"
    MISSING = "missing"
    UNREADABLE = "unreadable"
    CANCELLED = "cancelled"


class VerificationOutcome(Enum):
    """Результат сравнения с ожидаемой суммой."""
    VALID = "valid"
    INVALID = "invalid"
    MISSING = "missing"
    UNREADABLE = "unreadable"
    CANCELLED = "cancelled"


@dataclass(frozen=True)
class ChecksumResult:
    path: str
    outcome: ChecksumOutcome
    digest: Optional[str] = None
    bytes_read: int = 0
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.outcome == ChecksumOutcome.COMPLETE


@dataclass(frozen=True)
class VerificationResult:
    path: str
    outcome: VerificationOutcome
    expected: str
    actual: Optional[str] = None
    error: Optional[str] = None

    @property
    def is_valid(self) -> bool:
        return self.outcome == VerificationOutcome.VALID


def digests_match(actual: str, expected: str) -> bool:
    """Регистронезависимое сравнение hex-дайджестов."""
    return hmac.compare_digest(
        actual.strip().lower().encode("ascii", "replace"),
        expected.strip().lower().encode("ascii", "replace"),
    )


class ChecksumVerificationService:
    """Сервис вычисления и проверки SHA-256."""

    def __init__(
        self,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
        logger: Optional[logging.Logger] = None,
    ):
        if chunk_size <= 0:
            raise ValueError("chunk_size must be positive")
        self.chunk_size = chunk_size
        self.logger = logger or logging.getLogger("airlink_audit.checksum")

    async def compute(
        self,
        path: PathLike,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> ChecksumResult:
        """
        Вычислить SHA-256 файла.

        Args:
            path: Путь к файлу
            cancel_event: Сигнал отмены, проверяется между чанками

        Returns:
            ChecksumResult; digest заполнен только при outcome == COMPLETE
        """
        file_path = Path(path)
        if not file_path.is_file():
            self.logger.warning(f"Checksum target not found: {file_path}")
            return ChecksumResult(str(file_path), ChecksumOutcome.MISSING, error="File not found")

        try:
            handle = await asyncio.to_thread(open, file_path, "rb")
        except FileNotFoundError:
            return ChecksumResult(str(file_path), ChecksumOutcome.MISSING, error="File not found")
        except OSError as e:
            self.logger.error(f"Cannot open {file_path}: {e}")
            return ChecksumResult(str(file_path), ChecksumOutcome.UNREADABLE, error=str(e))

        digest = hashlib.sha256()
        bytes_read = 0
        try:
            while True:
                if cancel_event is not None and cancel_event.is_set():
                    self.logger.info(f"Checksum cancelled after {bytes_read} bytes: {file_path}")
                    return ChecksumResult(
                        str(file_path),
                        ChecksumOutcome.CANCELLED,
                        bytes_read=bytes_read,
                        error="Cancelled",
                    )
                chunk = await asyncio.to_thread(handle.read, self.chunk_size)
                if not chunk:
                    break
                digest.update(chunk)
                bytes_read += len(chunk)
        except OSError as e:
            self.logger.error(f"Read failed for {file_path}: {e}")
            return ChecksumResult(
                str(file_path), ChecksumOutcome.UNREADABLE, bytes_read=bytes_read, error=str(e)
            )
        finally:
            handle.close()

        hex_digest = digest.hexdigest()
        self.logger.debug(f"{ALGORITHM} {file_path}: {hex_digest} ({bytes_read} bytes)")
        return ChecksumResult(
            str(file_path), ChecksumOutcome.COMPLETE, digest=hex_digest, bytes_read=bytes_read
        )

    async def compute_checksum(
        self,
        path: PathLike,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> str:
        """Вычислить SHA-256 или выбросить исключение для missing/unreadable/cancelled."""
        result = await self.compute(path, cancel_event)
        if result.outcome == ChecksumOutcome.MISSING:
            raise FileNotFoundError(f"File not found: {result.path}")
        if result.outcome == ChecksumOutcome.UNREADABLE:
            raise UnreadableFileError(result.path, result.error)
        if result.outcome == ChecksumOutcome.CANCELLED:
            raise ChecksumCancelledError(result.path)
        return result.digest

    async def check(
        self,
        path: PathLike,
        expected: str,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> VerificationResult:
        """Сравнить SHA-256 файла с ожидаемым значением."""
        result = await self.compute(path, cancel_event)
        outcome_map = {
            ChecksumOutcome.MISSING: VerificationOutcome.MISSING,
            ChecksumOutcome.UNREADABLE: VerificationOutcome.UNREADABLE,
            ChecksumOutcome.CANCELLED: VerificationOutcome.CANCELLED,
        }
        if not result.ok:
            return VerificationResult(
                result.path, outcome_map[result.outcome], expected, error=result.error
            )

        if digests_match(result.digest, expected):
            outcome = VerificationOutcome.VALID
        else:
            outcome = VerificationOutcome.INVALID
            self.logger.warning(
                f"Checksum mismatch for {result.path}: expected {expected}, got {result.digest}"
            )
        return VerificationResult(result.path, outcome, expected, actual=result.digest)

    async def verify(self, path: PathLike, expected: str) -> bool:
        """True только если файл существует, читается и сумма совпадает."""
        return (await self.check(path, expected)).is_valid
