"""
Exception hierarchy for the audit pipeline.
"""

from typing import Optional


class AirlinkAuditError(Exception):
    """Базовое исключение пайплайна аудита."""


class InvalidTransitionError(AirlinkAuditError):
    """Недопустимый переход состояния передачи."""

    def __init__(self, transfer_id: str, current: str, operation: str):
        self.transfer_id = transfer_id
        self.current = current
        self.operation = operation
        super().__init__(
            f"Transfer {transfer_id}: cannot {operation} from state '{current}'"
        )


class TransferNotFoundError(AirlinkAuditError):
    """Передача с таким id не зарегистрирована."""

    def __init__(self, transfer_id: str):
        self.transfer_id = transfer_id
        super().__init__(f"Transfer not found: {transfer_id}")


class ChecksumError(AirlinkAuditError):
    """Ошибка вычисления контрольной суммы."""


class UnreadableFileError(ChecksumError):
    """Файл существует, но не может быть прочитан."""

    def __init__(self, path: str, reason: Optional[str] = None):
        self.path = path
        self.reason = reason
        message = f"File is not readable: {path}"
        if reason:
            message += f" ({reason})"
        super().__init__(message)


class ChecksumCancelledError(ChecksumError):
    """Вычисление прервано по сигналу отмены."""

    def __init__(self, path: str):
        self.path = path
        super().__init__(f"Checksum computation cancelled: {path}")


class AuditModeError(AirlinkAuditError):
    """Режим аудита не включён."""


class ReportGenerationError(AirlinkAuditError):
    """Ошибка генерации отчёта."""
