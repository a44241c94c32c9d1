"""
Pytest configuration and fixtures.

Использование:
    pytest tests/ -v
"""

import asyncio
from pathlib import Path
from typing import Any, Dict, List, Optional

import pytest
from dotenv import load_dotenv

from airlink_audit.config import AuditConfig
from airlink_audit.core.models import AuditTestCase, AuditTestType
from airlink_audit.core.transfer_state import TransferStatus
from airlink_audit.testers.collaborators import (
    AuditCollaborators,
    DiscoveredDevice,
    DiscoveryRepository,
    ErrorScenarioDriver,
    PairingService,
    PlatformProbe,
    SettingsStore,
    TransferClient,
    TransferProgressEvent,
    UiProbe,
)
from airlink_audit.testers.runner import AuditTestRunner

# Загрузить .env файл
env_path = Path(__file__).parent.parent / ".env"
if env_path.exists():
    load_dotenv(env_path)

KB = 1024


# ═══════════════════════════════════════════════════════
# FAKE COLLABORATORS
# ═══════════════════════════════════════════════════════

ANDROID = DiscoveredDevice("android-1", "Pixel 8", "android")
IOS = DiscoveredDevice("ios-1", "iPhone 15", "ios", connection_method="multipeer")


class StaticDiscovery(DiscoveryRepository):
    def __init__(self, devices: Optional[List[DiscoveredDevice]] = None):
        self.devices = list(devices if devices is not None else [ANDROID, IOS])
        self.calls = 0

    async def discover(self, timeout: float) -> List[DiscoveredDevice]:
        self.calls += 1
        return list(self.devices)


class LoopbackTransferClient(TransferClient):
    """Передача "на себя": приёмник получает исходный файл."""

    def __init__(
        self,
        chunks: int = 4,
        pause_once: bool = False,
        fail_with: Optional[str] = None,
        received_path: Optional[str] = None,
    ):
        self.chunks = chunks
        self.pause_once = pause_once
        self.fail_with = fail_with
        self.received_path = received_path
        self.sent: List[str] = []
        self.cancelled: List[str] = []
        self.closed_sessions: List[str] = []

    async def send_file(self, transfer_id, file_path, device_id, connection_method):
        self.sent.append(transfer_id)
        total = Path(file_path).stat().st_size
        step = max(1, total // self.chunks)
        sent = 0
        while sent < total:
            await asyncio.sleep(0)
            sent = min(total, sent + step)
            if self.fail_with and sent >= total // 2:
                yield TransferProgressEvent(
                    transfer_id, sent, total, TransferStatus.FAILED, error=self.fail_with
                )
                return
            if self.pause_once and sent < total:
                self.pause_once = False
                yield TransferProgressEvent(transfer_id, sent, total, TransferStatus.PAUSED)
            yield TransferProgressEvent(transfer_id, sent, total, TransferStatus.TRANSFERRING)
        yield TransferProgressEvent(
            transfer_id,
            total,
            total,
            TransferStatus.COMPLETED,
            received_path=self.received_path or file_path,
        )

    async def cancel_transfer(self, transfer_id: str) -> None:
        self.cancelled.append(transfer_id)

    async def open_session(self, device_id: str, connection_method: str) -> Dict[str, Any]:
        return {"established": True, "interface": "aware0"}

    async def close_session(self, device_id: str) -> None:
        self.closed_sessions.append(device_id)

    async def collect_metrics(self, transfer_id: str) -> Dict[str, float]:
        return {"cpuUsage": 12.5, "memoryUsageMB": 64.0}


class StalledTransferClient(LoopbackTransferClient):
    """Транспорт, который никогда не завершает передачу."""

    async def send_file(self, transfer_id, file_path, device_id, connection_method):
        self.sent.append(transfer_id)
        total = Path(file_path).stat().st_size
        yield TransferProgressEvent(transfer_id, 0, total, TransferStatus.TRANSFERRING)
        await asyncio.sleep(3600)


class DroppingTransferClient(LoopbackTransferClient):
    """Транспорт, теряющий соединение после первого события."""

    async def send_file(self, transfer_id, file_path, device_id, connection_method):
        self.sent.append(transfer_id)
        total = Path(file_path).stat().st_size
        yield TransferProgressEvent(transfer_id, total // 4, total, TransferStatus.TRANSFERRING)
        raise ConnectionError("link lost")


class UncancellableTransferClient(StalledTransferClient):
    """Зависший транспорт, который к тому же не умеет отменять передачу."""

    async def cancel_transfer(self, transfer_id: str) -> None:
        self.cancelled.append(transfer_id)
        raise RuntimeError("cancel not supported")


class FakePairing(PairingService):
    def __init__(self, connects: bool = True):
        self.connects = connects

    async def generate_qr_data(self) -> str:
        return "airlink://pair?device=android-1&key=abc123"

    async def parse_qr_data(self, data: str) -> Optional[Dict[str, Any]]:
        if not data.startswith("airlink://pair"):
            return None
        return {"device": "android-1", "key": "abc123"}

    async def connect(self, pairing: Dict[str, Any]) -> bool:
        return self.connects


class DictSettings(SettingsStore):
    def __init__(self):
        self.values: Dict[str, Any] = {}

    async def save(self, key: str, value: Any) -> None:
        self.values[key] = value

    async def load(self, key: str) -> Any:
        return self.values.get(key)


class ForgetfulSettings(DictSettings):
    async def load(self, key: str) -> Any:
        return None


class FakePlatform(PlatformProbe):
    def __init__(
        self,
        audit_mode: bool = True,
        storage_gb: float = 32.0,
        network: Optional[Dict[str, bool]] = None,
        permissions: Optional[Dict[str, bool]] = None,
    ):
        self.audit_mode = audit_mode
        self.storage_gb = storage_gb
        self.network = network if network is not None else {"wifiAware": True, "ble": True}
        self._permissions = permissions if permissions is not None else {"storage": True, "nearby": True}
        self.mode_calls: List[bool] = []

    async def set_audit_mode(self, enabled: bool) -> bool:
        self.mode_calls.append(enabled)
        return self.audit_mode

    async def network_capabilities(self) -> Dict[str, bool]:
        return dict(self.network)

    async def permissions(self) -> Dict[str, bool]:
        return dict(self._permissions)

    async def free_storage_gb(self) -> float:
        return self.storage_gb


class FakeUi(UiProbe):
    def __init__(self, results: Optional[Dict[str, bool]] = None):
        self.results = results if results is not None else {"navigation": True, "progressBar": True}

    async def run_ui_checks(self) -> Dict[str, bool]:
        return dict(self.results)


class BrokenUi(UiProbe):
    async def run_ui_checks(self) -> Dict[str, bool]:
        raise RuntimeError("UI automation crashed")


class FakeErrorDriver(ErrorScenarioDriver):
    def __init__(self, failing: tuple = ()):
        self.failing = failing

    async def run_scenario(self, name: str) -> bool:
        return name not in self.failing


def make_case(test_type: AuditTestType, case_id: Optional[str] = None, **kwargs) -> AuditTestCase:
    """Небольшой тест-кейс (файлы по 16 KB)."""
    kwargs.setdefault("file_size", 16 * KB)
    return AuditTestCase(
        id=case_id or f"{test_type.value}_t",
        name=test_type.value.replace("_", " ").title(),
        test_type=test_type,
        **kwargs,
    )


# ═══════════════════════════════════════════════════════
# FIXTURES
# ═══════════════════════════════════════════════════════

@pytest.fixture
def config(tmp_path) -> AuditConfig:
    """Конфигурация с короткими таймаутами и временными директориями."""
    return AuditConfig(
        project_root=tmp_path,
        output_dir=tmp_path / "audit_results",
        work_dir=tmp_path / "work",
        test_timeout_seconds=10,
        discovery_timeout_seconds=2,
        transfer_timeout_seconds=5,
        qr_connect_timeout_seconds=2,
        default_test_file_size=16 * KB,
    )


@pytest.fixture
def collaborators() -> AuditCollaborators:
    return AuditCollaborators(
        discovery=StaticDiscovery(),
        transfer=LoopbackTransferClient(),
        pairing=FakePairing(),
        settings=DictSettings(),
        platform=FakePlatform(),
        ui=FakeUi(),
        error_driver=FakeErrorDriver(),
    )


@pytest.fixture
def runner(config, collaborators) -> AuditTestRunner:
    return AuditTestRunner(config=config, collaborators=collaborators)


@pytest.fixture
def small_cases() -> List[AuditTestCase]:
    """По одному маленькому тесту на каждую проверку."""
    return [make_case(test_type) for test_type in AuditTestType]
