"""
Contracts for the external systems the audit drives.

Device discovery, transport, pairing, settings and the native platform layer
live outside this package. Checks only talk to them through these abstract
classes, so tests can substitute in-process fakes.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, fields
from typing import Any, AsyncIterator, Dict, List, Optional

from ..core.models import AuditTestType
from ..core.transfer_state import TransferStatus


@dataclass(frozen=True)
class DiscoveredDevice:
    device_id: str
    name: str
    platform: str
    connection_method: str = "wifi_aware"
    rssi: Optional[int] = None


@dataclass(frozen=True)
class TransferProgressEvent:
    """Событие прогресса от транспорта."""

    transfer_id: str
    bytes_transferred: int
    total_bytes: int
    status: TransferStatus
    received_path: Optional[str] = None
    error: Optional[str] = None


class DiscoveryRepository(ABC):
    """Обнаружение устройств."""

    @abstractmethod
    async def discover(self, timeout: float) -> List[DiscoveredDevice]:
        """Найти устройства за timeout секунд."""


class TransferClient(ABC):
    """Транспорт передачи файлов."""

    @abstractmethod
    def send_file(
        self,
        transfer_id: str,
        file_path: str,
        device_id: str,
        connection_method: str,
    ) -> AsyncIterator[TransferProgressEvent]:
        """Начать передачу и вернуть поток событий прогресса."""

    @abstractmethod
    async def cancel_transfer(self, transfer_id: str) -> None:
        ...

    @abstractmethod
    async def open_session(self, device_id: str, connection_method: str) -> Dict[str, Any]:
        """Открыть сессию; ключ 'established' означает успех."""

    async def close_session(self, device_id: str) -> None:
        return None

    async def collect_metrics(self, transfer_id: str) -> Dict[str, float]:
        return {}


class PairingService(ABC):
    """QR-сопряжение."""

    @abstractmethod
    async def generate_qr_data(self) -> str:
        ...

    @abstractmethod
    async def parse_qr_data(self, data: str) -> Optional[Dict[str, Any]]:
        ...

    @abstractmethod
    async def connect(self, pairing: Dict[str, Any]) -> bool:
        ...


class SettingsStore(ABC):
    """Хранилище пользовательских настроек."""

    @abstractmethod
    async def save(self, key: str, value: Any) -> None:
        ...

    @abstractmethod
    async def load(self, key: str) -> Any:
        ...


class PlatformProbe(ABC):
    """Нативный слой: режим аудита, возможности сети, разрешения, метрики."""

    @abstractmethod
    async def set_audit_mode(self, enabled: bool) -> bool:
        ...

    @abstractmethod
    async def network_capabilities(self) -> Dict[str, bool]:
        ...

    @abstractmethod
    async def permissions(self) -> Dict[str, bool]:
        ...

    @abstractmethod
    async def free_storage_gb(self) -> float:
        ...

    async def transfer_metrics(self, transfer_id: str) -> Dict[str, float]:
        return {}


class UiProbe(ABC):
    @abstractmethod
    async def run_ui_checks(self) -> Dict[str, bool]:
        """Имя проверки -> пройдена ли она."""


class ErrorScenarioDriver(ABC):
    """Воспроизведение аварийных сценариев на устройстве."""

    SCENARIOS = ("network_disconnect", "insufficient_storage", "permission_denied")

    @abstractmethod
    async def run_scenario(self, name: str) -> bool:
        """True, если приложение корректно обработало сценарий."""


@dataclass
class AuditCollaborators:
    """Набор внешних зависимостей; любая может отсутствовать."""

    discovery: Optional[DiscoveryRepository] = None
    transfer: Optional[TransferClient] = None
    pairing: Optional[PairingService] = None
    settings: Optional[SettingsStore] = None
    platform: Optional[PlatformProbe] = None
    ui: Optional[UiProbe] = None
    error_driver: Optional[ErrorScenarioDriver] = None

    def missing_for(self, test_type: AuditTestType) -> List[str]:
        """Имена обязательных, но не заданных зависимостей для типа теста."""
        return [name for name in REQUIRED_COLLABORATORS[test_type] if getattr(self, name) is None]

    def available(self) -> List[str]:
        return [f.name for f in fields(self) if getattr(self, f.name) is not None]


_TRANSPORT = ("discovery", "transfer")

REQUIRED_COLLABORATORS = {
    AuditTestType.DISCOVERY: ("discovery",),
    AuditTestType.WIFI_AWARE_SESSION: _TRANSPORT,
    AuditTestType.SIMULTANEOUS_TRANSFER: _TRANSPORT,
    AuditTestType.MULTI_RECEIVER: _TRANSPORT,
    AuditTestType.CROSS_PLATFORM: _TRANSPORT,
    AuditTestType.CHECKSUM_VERIFICATION: (),
    AuditTestType.UI_UX: ("ui",),
    AuditTestType.QR_PAIRING: ("pairing",),
    AuditTestType.SETTINGS_PERSISTENCE: ("settings",),
    AuditTestType.ERROR_HANDLING: (),
    AuditTestType.PERFORMANCE: _TRANSPORT,
}
