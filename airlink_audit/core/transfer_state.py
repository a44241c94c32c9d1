"""
Transfer state machine.

A TransferState is an immutable snapshot of one file transfer. Every
transition returns a new snapshot; illegal transitions raise
InvalidTransitionError and leave the original untouched.

    pending -> transferring -> completed
       |           |  ^
       |           v  |
       +------> paused
    (pending | transferring | paused) -> failed | cancelled
    failed(can_retry) -> retry() -> new pending attempt
"""

from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional

from .errors import InvalidTransitionError


class TransferStatus(Enum):
    """Статус передачи файла."""
    PENDING = "pending"
    TRANSFERRING = "transferring"
    PAUSED = "paused"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @classmethod
    def from_string(cls, value: Any) -> "TransferStatus":
        """Неизвестные значения трактуются как pending (fail closed)."""
        text = str(value or "").strip().lower()
        # legacy encoding: "TransferStatus.completed"
        if text.startswith("transferstatus."):
            text = text.split(".", 1)[1]
        for status in cls:
            if status.value == text:
                return status
        return cls.PENDING


_INTERRUPTIBLE = frozenset({
    TransferStatus.PENDING,
    TransferStatus.TRANSFERRING,
    TransferStatus.PAUSED,
})


def _parse_time(value: Any) -> Optional[datetime]:
    if not value:
        return None
    try:
        return datetime.fromisoformat(str(value))
    except ValueError:
        return None


@dataclass(frozen=True)
class TransferState:
    """Снимок состояния одной передачи."""

    transfer_id: str
    file_path: str
    total_bytes: int
    device_id: str
    connection_method: str
    bytes_transferred: int = 0
    status: TransferStatus = TransferStatus.PENDING
    error: Optional[str] = None
    can_retry: bool = False
    created_at: datetime = field(default_factory=datetime.now)
    paused_at: Optional[datetime] = None
    resumed_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    last_updated: datetime = field(default_factory=datetime.now)
    metadata: Dict[str, Any] = field(default_factory=dict)

    def __post_init__(self):
        if self.total_bytes < 0:
            raise ValueError("total_bytes must be non-negative")
        if not 0 <= self.bytes_transferred <= self.total_bytes:
            raise ValueError(
                f"bytes_transferred={self.bytes_transferred} outside [0, {self.total_bytes}]"
            )

    # === Derived properties ===

    @property
    def progress_percent(self) -> float:
        if self.total_bytes <= 0:
            return 0.0
        return max(0.0, min(100.0, self.bytes_transferred / self.total_bytes * 100.0))

    @property
    def is_active(self) -> bool:
        return self.status in (TransferStatus.PENDING, TransferStatus.TRANSFERRING)

    @property
    def is_resumable(self) -> bool:
        return self.status == TransferStatus.PAUSED or (
            self.status == TransferStatus.FAILED and self.can_retry
        )

    @property
    def is_terminal(self) -> bool:
        """Снимок больше не может меняться."""
        if self.status in (TransferStatus.COMPLETED, TransferStatus.CANCELLED):
            return True
        return self.status == TransferStatus.FAILED and not self.can_retry

    @property
    def attempt(self) -> int:
        return int(self.metadata.get("attempt", 1))

    # === Transitions ===

    def _reject(self, operation: str) -> InvalidTransitionError:
        return InvalidTransitionError(self.transfer_id, self.status.value, operation)

    def _next(self, **changes: Any) -> "TransferState":
        changes.setdefault("last_updated", datetime.now())
        return replace(self, **changes)

    def start(self) -> "TransferState":
        if self.status != TransferStatus.PENDING:
            raise self._reject("start")
        return self._next(status=TransferStatus.TRANSFERRING)

    def update_progress(self, bytes_transferred: int) -> "TransferState":
        if self.status != TransferStatus.TRANSFERRING:
            raise self._reject("update progress")
        if bytes_transferred < self.bytes_transferred:
            raise ValueError(
                f"Transfer {self.transfer_id}: progress cannot go backwards "
                f"({bytes_transferred} < {self.bytes_transferred})"
            )
        if bytes_transferred > self.total_bytes:
            raise ValueError(
                f"Transfer {self.transfer_id}: progress {bytes_transferred} exceeds "
                f"total {self.total_bytes}"
            )
        return self._next(bytes_transferred=bytes_transferred)

    def pause(self) -> "TransferState":
        if self.status not in (TransferStatus.PENDING, TransferStatus.TRANSFERRING):
            raise self._reject("pause")
        now = datetime.now()
        return self._next(status=TransferStatus.PAUSED, paused_at=now, last_updated=now)

    def resume(self) -> "TransferState":
        if self.status != TransferStatus.PAUSED:
            raise self._reject("resume")
        now = datetime.now()
        return self._next(status=TransferStatus.TRANSFERRING, resumed_at=now, last_updated=now)

    def complete(self) -> "TransferState":
        if self.status != TransferStatus.TRANSFERRING:
            raise self._reject("complete")
        if self.bytes_transferred != self.total_bytes:
            raise ValueError(
                f"Transfer {self.transfer_id}: cannot complete at "
                f"{self.bytes_transferred}/{self.total_bytes} bytes"
            )
        now = datetime.now()
        return self._next(status=TransferStatus.COMPLETED, completed_at=now, last_updated=now)

    def fail(self, error: str, can_retry: bool = False) -> "TransferState":
        if self.status not in _INTERRUPTIBLE:
            raise self._reject("fail")
        return self._next(status=TransferStatus.FAILED, error=error, can_retry=can_retry)

    def cancel(self) -> "TransferState":
        if self.status not in _INTERRUPTIBLE:
            raise self._reject("cancel")
        return self._next(status=TransferStatus.CANCELLED)

    def retry(self) -> "TransferState":
        """
        Создать новую попытку для retryable failed передачи.

        История не мутирует: новая попытка получает собственный id и ссылку
        `supersedes` на предыдущую, смещение байтов сохраняется для resume.
        """
        if not (self.status == TransferStatus.FAILED and self.can_retry):
            raise self._reject("retry")
        attempt = self.attempt + 1
        root_id = self.metadata.get("rootTransferId", self.transfer_id)
        now = datetime.now()
        metadata = dict(self.metadata)
        metadata.update({
            "supersedes": self.transfer_id,
            "rootTransferId": root_id,
            "attempt": attempt,
        })
        return TransferState(
            transfer_id=f"{root_id}-r{attempt}",
            file_path=self.file_path,
            total_bytes=self.total_bytes,
            device_id=self.device_id,
            connection_method=self.connection_method,
            bytes_transferred=self.bytes_transferred,
            created_at=now,
            last_updated=now,
            metadata=metadata,
        )

    # === Serialization ===

    def to_dict(self) -> Dict[str, Any]:
        def iso(value: Optional[datetime]) -> Optional[str]:
            return value.isoformat() if value else None

        return {
            "transferId": self.transfer_id,
            "filePath": self.file_path,
            "totalBytes": self.total_bytes,
            "bytesTransferred": self.bytes_transferred,
            "deviceId": self.device_id,
            "connectionMethod": self.connection_method,
            "status": self.status.value,
            "error": self.error,
            "canRetry": self.can_retry,
            "createdAt": iso(self.created_at),
            "pausedAt": iso(self.paused_at),
            "resumedAt": iso(self.resumed_at),
            "completedAt": iso(self.completed_at),
            "lastUpdated": iso(self.last_updated),
            "metadata": dict(self.metadata),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "TransferState":
        """Восстановить из словаря. KeyError/ValueError для битых записей."""
        total = int(data["totalBytes"])
        transferred = min(max(int(data.get("bytesTransferred") or 0), 0), total)
        created_at = _parse_time(data.get("createdAt")) or datetime.now()
        return cls(
            transfer_id=str(data["transferId"]),
            file_path=str(data["filePath"]),
            total_bytes=total,
            device_id=str(data["deviceId"]),
            connection_method=str(data.get("connectionMethod") or "unknown"),
            bytes_transferred=transferred,
            status=TransferStatus.from_string(data.get("status")),
            error=data.get("error"),
            can_retry=bool(data.get("canRetry", False)),
            created_at=created_at,
            paused_at=_parse_time(data.get("pausedAt")),
            resumed_at=_parse_time(data.get("resumedAt")),
            completed_at=_parse_time(data.get("completedAt")),
            last_updated=_parse_time(data.get("lastUpdated")) or created_at,
            metadata=dict(data.get("metadata") or {}),
        )
