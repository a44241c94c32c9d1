"""
Automated audit checks, one class per test type.

AuditCheck.execute() is the shared template: it measures the run, applies
the timeout and turns any exception into a failed AuditResult, so a broken
collaborator can never abort the whole audit.
"""

import asyncio
import logging
import os
import time
import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence, Type

from ..config import AuditConfig
from ..core.errors import AirlinkAuditError, InvalidTransitionError
from ..core.models import AuditResult, AuditStatus, AuditTestCase, AuditTestType
from ..core.retry import call_with_retry
from ..core.transfer_state import TransferState, TransferStatus
from ..integrity.checksum import ChecksumVerificationService
from ..integrity.store import ChecksumStore
from ..transfer.session_store import TransferSessionStore
from .collaborators import AuditCollaborators, DiscoveredDevice

MB = 1024 * 1024


@dataclass
class CheckContext:
    """Всё, что нужно проверкам для работы."""

    config: AuditConfig
    checksum: ChecksumVerificationService
    sessions: TransferSessionStore
    collaborators: AuditCollaborators
    checksum_store: Optional[ChecksumStore] = None


@dataclass
class CheckOutcome:
    status: AuditStatus
    metrics: Dict[str, float] = field(default_factory=dict)
    evidence: Dict[str, Any] = field(default_factory=dict)
    notes: Optional[str] = None


@dataclass
class TransferRun:
    """Итог одной передачи в рамках проверки."""

    state: TransferState
    source_checksum: str
    verified: bool
    duration_seconds: float
    received_path: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.state.status == TransferStatus.COMPLETED and self.verified

    @property
    def throughput_mbps(self) -> float:
        if self.duration_seconds <= 0:
            return 0.0
        return self.state.bytes_transferred / MB / self.duration_seconds

    def failure_reason(self) -> Optional[str]:
        if self.ok:
            return None
        if self.state.status != TransferStatus.COMPLETED:
            return self.state.error or f"Transfer ended as {self.state.status.value}"
        return "Checksum mismatch after transfer"

    def metrics(self) -> Dict[str, float]:
        return {
            "transferTimeMs": self.duration_seconds * 1000,
            "bytesTransferred": float(self.state.bytes_transferred),
            "throughputMBps": self.throughput_mbps,
        }


def aggregate_status(flags: Sequence[bool]) -> AuditStatus:
    """Все прошли -> passed, часть -> partial, ни одна -> failed."""
    if flags and all(flags):
        return AuditStatus.PASSED
    if any(flags):
        return AuditStatus.PARTIAL
    return AuditStatus.FAILED


def write_test_file(directory: Path, size: int, label: str) -> Path:
    """Создать файл со случайным содержимым заданного размера."""
    directory.mkdir(parents=True, exist_ok=True)
    path = directory / f"audit_{label}_{uuid.uuid4().hex[:8]}.bin"
    remaining = size
    with open(path, "wb") as f:
        while remaining > 0:
            chunk = os.urandom(min(remaining, 64 * 1024))
            f.write(chunk)
            remaining -= len(chunk)
    return path


def write_tampered_copy(source: Path, target: Path) -> None:
    data = bytearray(source.read_bytes())
    if data:
        data[0] ^= 0xFF
    else:
        data.append(0)
    target.write_bytes(bytes(data))


class AuditCheck(ABC):
    """Базовый класс проверок."""

    test_type: AuditTestType

    def __init__(self, context: CheckContext, logger: Optional[logging.Logger] = None):
        self.ctx = context
        self.logger = logger or logging.getLogger(f"airlink_audit.checks.{self.test_type.value}")

    @property
    def collaborators(self) -> AuditCollaborators:
        return self.ctx.collaborators

    async def execute(self, case: AuditTestCase, timeout: float) -> AuditResult:
        """
        Запустить проверку с timeout и обработкой ошибок.

        Returns:
            AuditResult со статусом passed/failed/partial
        """
        start_time = datetime.now()
        started = time.perf_counter()
        try:
            outcome = await asyncio.wait_for(self._check(case), timeout=timeout)
        except asyncio.TimeoutError:
            self.logger.error(f"{case.id} timed out after {timeout}s")
            outcome = CheckOutcome(
                status=AuditStatus.FAILED,
                evidence={"timedOut": True},
                notes=f"Test timed out after {timeout} seconds",
            )
        except Exception as e:
            self.logger.error(f"{case.id} failed with exception: {e}", exc_info=True)
            outcome = CheckOutcome(
                status=AuditStatus.FAILED,
                evidence={"exceptionType": type(e).__name__},
                notes=f"{type(e).__name__}: {e}",
            )

        outcome.metrics.setdefault("durationMs", (time.perf_counter() - started) * 1000)
        return AuditResult(
            test_case=case,
            start_time=start_time,
            end_time=datetime.now(),
            status=outcome.status,
            metrics=outcome.metrics,
            evidence=outcome.evidence,
            notes=outcome.notes,
        )

    @abstractmethod
    async def _check(self, case: AuditTestCase) -> CheckOutcome:
        """Выполнить проверку (реализуется в подклассах)."""

    # === Shared steps ===

    async def _discover(self, case: AuditTestCase, minimum: int = 1) -> List[DiscoveredDevice]:
        """Найти устройства; устройства с платформой получателя идут первыми."""
        discovery = self.collaborators.discovery
        timeout = self.ctx.config.discovery_timeout_seconds

        async def discover_once() -> List[DiscoveredDevice]:
            return await asyncio.wait_for(discovery.discover(timeout), timeout=timeout + 1.0)

        devices = await call_with_retry(
            discover_once, max_attempts=2, base_delay=0.1, exceptions=(ConnectionError,)
        )
        matching = [d for d in devices if d.platform.lower() == case.receiver_platform.lower()]
        ordered = matching + [d for d in devices if d not in matching]
        if len(ordered) < minimum:
            raise AirlinkAuditError(f"Discovered {len(ordered)} device(s), need {minimum}")
        return ordered

    async def _make_test_file(self, size: int, label: str) -> Path:
        return await asyncio.to_thread(
            write_test_file, self.ctx.config.resolved_work_dir(), size, label
        )

    async def _remove_files(self, *paths: Path) -> None:
        for path in paths:
            try:
                await asyncio.to_thread(path.unlink, missing_ok=True)
            except OSError as e:
                self.logger.warning(f"Could not remove test file {path}: {e}")

    async def _transfer(
        self,
        case: AuditTestCase,
        path: Path,
        device: DiscoveredDevice,
        source_checksum: str,
    ) -> TransferRun:
        """Передать файл, отслеживая состояние в session store, и проверить сумму."""
        client = self.collaborators.transfer
        sessions = self.ctx.sessions
        transfer_id = f"{case.id}-{uuid.uuid4().hex[:8]}"
        size = path.stat().st_size
        received_path: Optional[str] = None

        await sessions.create(
            transfer_id,
            str(path),
            size,
            device.device_id,
            case.connection_method,
            metadata={"testCaseId": case.id},
        )
        if self.ctx.checksum_store is not None:
            await self.ctx.checksum_store.store_checksum(transfer_id, path, source_checksum)
        await sessions.start(transfer_id)
        started = time.perf_counter()

        async def follow() -> TransferState:
            nonlocal received_path
            events = client.send_file(transfer_id, str(path), device.device_id, case.connection_method)
            async for event in events:
                state = sessions.get(transfer_id)
                if event.status == TransferStatus.PAUSED:
                    if state.status == TransferStatus.TRANSFERRING:
                        await sessions.pause(transfer_id)
                    continue
                if state.status == TransferStatus.PAUSED:
                    await sessions.resume(transfer_id)
                if event.bytes_transferred > state.bytes_transferred:
                    await sessions.update_progress(transfer_id, min(event.bytes_transferred, size))
                if event.status == TransferStatus.COMPLETED:
                    received_path = event.received_path
                    return await sessions.complete(transfer_id)
                if event.status == TransferStatus.FAILED:
                    return await sessions.fail(
                        transfer_id, event.error or "Transfer failed", can_retry=True
                    )
                if event.status == TransferStatus.CANCELLED:
                    return await sessions.cancel(transfer_id)
            return await sessions.fail(
                transfer_id, "Progress stream ended before completion", can_retry=True
            )

        try:
            final = await asyncio.wait_for(follow(), timeout=self.ctx.config.transfer_timeout_seconds)
        except asyncio.TimeoutError:
            self.logger.error(f"Transfer {transfer_id} timed out")
            try:
                await client.cancel_transfer(transfer_id)
            finally:
                final = await self._abandon(transfer_id, "Transfer timed out")
        except BaseException as e:
            await self._abandon(transfer_id, f"{type(e).__name__}: {e}")
            raise
        duration = time.perf_counter() - started

        verified = False
        if final.status == TransferStatus.COMPLETED:
            verified = await self.ctx.checksum.verify(received_path or path, source_checksum)

        self.logger.info(
            f"Transfer {transfer_id}: {final.status.value}, "
            f"checksum {'OK' if verified else 'NOT VERIFIED'}, {duration:.2f}s"
        )
        return TransferRun(
            state=final,
            source_checksum=source_checksum,
            verified=verified,
            duration_seconds=duration,
            received_path=received_path,
        )

    async def _abandon(self, transfer_id: str, reason: str) -> Optional[TransferState]:
        """Перевести незавершённую передачу в retryable failed."""
        state = self.ctx.sessions.get(transfer_id)
        if state is None or not (state.is_active or state.status == TransferStatus.PAUSED):
            return state
        return await self.ctx.sessions.fail(transfer_id, reason, can_retry=True)

    async def _collect_metrics(self, transfer_id: str) -> Dict[str, float]:
        metrics: Dict[str, float] = {}
        if self.collaborators.transfer is not None:
            metrics.update(await self.collaborators.transfer.collect_metrics(transfer_id))
        if self.collaborators.platform is not None:
            metrics.update(await self.collaborators.platform.transfer_metrics(transfer_id))
        return metrics

    async def _send_files(
        self,
        case: AuditTestCase,
        paths: Sequence[Path],
        devices: Sequence[DiscoveredDevice],
    ) -> List[TransferRun]:
        """Параллельно передать paths[i] на devices[i]."""
        checksums = [await self.ctx.checksum.compute_checksum(p) for p in paths]
        return list(await asyncio.gather(*(
            self._transfer(case, path, device, checksum)
            for path, device, checksum in zip(paths, devices, checksums)
        )))


class DiscoveryCheck(AuditCheck):
    test_type = AuditTestType.DISCOVERY

    async def _check(self, case: AuditTestCase) -> CheckOutcome:
        minimum = int(case.expected_results.get("minDevices", 1))
        started = time.perf_counter()
        try:
            devices = await self._discover(case)
        except AirlinkAuditError:
            devices = []
        elapsed_ms = (time.perf_counter() - started) * 1000

        found = len(devices) >= minimum
        return CheckOutcome(
            status=AuditStatus.PASSED if found else AuditStatus.FAILED,
            metrics={"discoveryTimeMs": elapsed_ms, "devicesFound": float(len(devices))},
            evidence={
                "devices": [
                    {"id": d.device_id, "name": d.name, "platform": d.platform,
                     "connectionMethod": d.connection_method}
                    for d in devices
                ],
            },
            notes=None if found else f"Found {len(devices)} device(s), expected at least {minimum}",
        )


class WifiAwareSessionCheck(AuditCheck):
    test_type = AuditTestType.WIFI_AWARE_SESSION

    async def _check(self, case: AuditTestCase) -> CheckOutcome:
        devices = await self._discover(case)
        device = next((d for d in devices if d.connection_method == "wifi_aware"), devices[0])
        client = self.collaborators.transfer

        started = time.perf_counter()
        session = await client.open_session(device.device_id, "wifi_aware")
        try:
            established = bool(session.get("established"))
        finally:
            await client.close_session(device.device_id)
        elapsed_ms = (time.perf_counter() - started) * 1000

        return CheckOutcome(
            status=AuditStatus.PASSED if established else AuditStatus.FAILED,
            metrics={"sessionSetupMs": elapsed_ms},
            evidence={"deviceId": device.device_id, "session": {k: str(v) for k, v in session.items()}},
            notes=None if established else "Wi-Fi Aware session was not established",
        )


class CrossPlatformTransferCheck(AuditCheck):
    """Основной сценарий: передача файла с проверкой SHA-256 на приёмнике."""

    test_type = AuditTestType.CROSS_PLATFORM

    async def _check(self, case: AuditTestCase) -> CheckOutcome:
        devices = await self._discover(case)
        path = await self._make_test_file(case.file_size, case.id)
        try:
            run = (await self._send_files(case, [path], devices[:1]))[0]
            metrics = await self._collect_metrics(run.state.transfer_id)
        finally:
            await self._remove_files(path)

        metrics.update(run.metrics())
        return CheckOutcome(
            status=AuditStatus.PASSED if run.ok else AuditStatus.FAILED,
            metrics=metrics,
            evidence={
                "transferId": run.state.transfer_id,
                "finalStatus": run.state.status.value,
                "sourceChecksum": run.source_checksum,
                "checksumVerified": run.verified,
                "senderPlatform": case.sender_platform,
                "receiverPlatform": case.receiver_platform,
                "deviceId": devices[0].device_id,
            },
            notes=run.failure_reason(),
        )


class SimultaneousTransferCheck(AuditCheck):
    test_type = AuditTestType.SIMULTANEOUS_TRANSFER

    async def _check(self, case: AuditTestCase) -> CheckOutcome:
        count = int(case.configuration.get("fileCount", 2))
        devices = await self._discover(case)
        paths = [await self._make_test_file(case.file_size, f"{case.id}_{i}") for i in range(count)]
        try:
            runs = await self._send_files(case, paths, [devices[0]] * count)
        finally:
            await self._remove_files(*paths)

        completed = [r for r in runs if r.ok]
        longest = max((r.duration_seconds for r in runs), default=0.0)
        total_mb = sum(r.state.bytes_transferred for r in runs) / MB
        return CheckOutcome(
            status=aggregate_status([r.ok for r in runs]),
            metrics={
                "transfersTotal": float(len(runs)),
                "transfersCompleted": float(len(completed)),
                "totalTimeMs": longest * 1000,
                "aggregateThroughputMBps": total_mb / longest if longest > 0 else 0.0,
            },
            evidence={"transfers": {r.state.transfer_id: r.state.status.value for r in runs}},
            notes=None if len(completed) == len(runs) else
            f"{len(completed)}/{len(runs)} simultaneous transfers completed with valid checksum",
        )


class MultiReceiverCheck(AuditCheck):
    test_type = AuditTestType.MULTI_RECEIVER

    async def _check(self, case: AuditTestCase) -> CheckOutcome:
        receivers = int(case.configuration.get("receiverCount", 2))
        devices = (await self._discover(case, minimum=receivers))[:receivers]
        path = await self._make_test_file(case.file_size, case.id)
        try:
            runs = await self._send_files(case, [path] * len(devices), devices)
        finally:
            await self._remove_files(path)

        delivered = {d.device_id: r.ok for d, r in zip(devices, runs)}
        return CheckOutcome(
            status=aggregate_status(list(delivered.values())),
            metrics={
                "receivers": float(len(devices)),
                "receiversCompleted": float(sum(delivered.values())),
            },
            evidence={"receivers": delivered},
            notes=None if all(delivered.values()) else
            "Not delivered to: " + ", ".join(d for d, ok in delivered.items() if not ok),
        )


class ChecksumVerificationCheck(AuditCheck):
    """Локальная проверка: детерминизм SHA-256 и обнаружение порчи."""

    test_type = AuditTestType.CHECKSUM_VERIFICATION

    async def _check(self, case: AuditTestCase) -> CheckOutcome:
        checksum = self.ctx.checksum
        path = await self._make_test_file(case.file_size, case.id)
        tampered = path.with_name(path.name + ".tampered")
        try:
            started = time.perf_counter()
            first = await checksum.compute_checksum(path)
            elapsed = time.perf_counter() - started
            second = await checksum.compute_checksum(path)
            await asyncio.to_thread(write_tampered_copy, path, tampered)
            subtests = {
                "deterministic": first == second,
                "verifiesOriginal": await checksum.verify(path, first),
                "caseInsensitive": await checksum.verify(path, first.upper()),
                "detectsTampering": not await checksum.verify(tampered, first),
                "rejectsMissingFile": not await checksum.verify(
                    path.with_name(path.name + ".missing"), first
                ),
            }
        finally:
            await self._remove_files(path, tampered)

        failed = [name for name, ok in subtests.items() if not ok]
        return CheckOutcome(
            status=aggregate_status(list(subtests.values())),
            metrics={
                "checksumTimeMs": elapsed * 1000,
                "checksumThroughputMBps": case.file_size / MB / elapsed if elapsed > 0 else 0.0,
            },
            evidence={"checksum": first, "subtests": subtests},
            notes=None if not failed else "Failed subtests: " + ", ".join(failed),
        )


class UiUxCheck(AuditCheck):
    test_type = AuditTestType.UI_UX

    async def _check(self, case: AuditTestCase) -> CheckOutcome:
        results = await self.collaborators.ui.run_ui_checks()
        if not results:
            return CheckOutcome(status=AuditStatus.FAILED, notes="UI probe reported no checks")
        failed = [name for name, ok in results.items() if not ok]
        return CheckOutcome(
            status=aggregate_status(list(results.values())),
            metrics={"uiChecks": float(len(results)), "uiChecksPassed": float(len(results) - len(failed))},
            evidence={"uiChecks": dict(results)},
            notes=None if not failed else "Failed UI checks: " + ", ".join(failed),
        )


class QrPairingCheck(AuditCheck):
    test_type = AuditTestType.QR_PAIRING

    async def _check(self, case: AuditTestCase) -> CheckOutcome:
        pairing = self.collaborators.pairing
        limit = self.ctx.config.qr_connect_timeout_seconds
        started = time.perf_counter()

        qr_data = await pairing.generate_qr_data()
        parsed = await pairing.parse_qr_data(qr_data) if qr_data else None
        connected = False
        if parsed:
            try:
                connected = await asyncio.wait_for(pairing.connect(parsed), timeout=limit)
            except asyncio.TimeoutError:
                self.logger.warning(f"QR pairing connect timed out after {limit}s")
        elapsed = time.perf_counter() - started

        passed = bool(qr_data) and parsed is not None and connected and elapsed <= limit
        return CheckOutcome(
            status=AuditStatus.PASSED if passed else AuditStatus.FAILED,
            metrics={"pairingTimeMs": elapsed * 1000},
            evidence={
                "qrGenerated": bool(qr_data),
                "qrParsed": parsed is not None,
                "connected": connected,
                "qrDataLength": len(qr_data or ""),
            },
            notes=None if passed else "QR pairing did not complete",
        )


class SettingsPersistenceCheck(AuditCheck):
    test_type = AuditTestType.SETTINGS_PERSISTENCE

    async def _check(self, case: AuditTestCase) -> CheckOutcome:
        settings = self.collaborators.settings
        key = f"audit_probe_{case.id}"
        value = {"token": uuid.uuid4().hex, "savedAt": datetime.now().isoformat()}
        await settings.save(key, value)
        loaded = await settings.load(key)
        persisted = loaded == value
        return CheckOutcome(
            status=AuditStatus.PASSED if persisted else AuditStatus.FAILED,
            evidence={"key": key, "persisted": persisted},
            notes=None if persisted else "Loaded settings value differs from saved value",
        )


class ErrorHandlingCheck(AuditCheck):
    """Сценарии обрыва связи, повтора и недопустимых переходов."""

    test_type = AuditTestType.ERROR_HANDLING

    def _scenario_id(self, case: AuditTestCase, name: str) -> str:
        return f"{case.id}-{name}-{uuid.uuid4().hex[:6]}"

    async def _check(self, case: AuditTestCase) -> CheckOutcome:
        subtests = {
            "resumeAfterDisconnect": await self._disconnect_resume(case),
            "retryCreatesNewAttempt": await self._retry_attempt(case),
            "rejectsIllegalTransition": await self._illegal_transition(case),
        }
        driver = self.collaborators.error_driver
        if driver is not None:
            for scenario in driver.SCENARIOS:
                try:
                    subtests[scenario] = bool(await driver.run_scenario(scenario))
                except Exception as e:
                    self.logger.error(f"Error scenario {scenario} raised: {e}", exc_info=True)
                    subtests[scenario] = False

        failed = [name for name, ok in subtests.items() if not ok]
        return CheckOutcome(
            status=aggregate_status(list(subtests.values())),
            metrics={"scenarios": float(len(subtests)), "scenariosPassed": float(len(subtests) - len(failed))},
            evidence={"scenarios": subtests},
            notes=None if not failed else "Failed scenarios: " + ", ".join(failed),
        )

    async def _disconnect_resume(self, case: AuditTestCase) -> bool:
        sessions = self.ctx.sessions
        tid = self._scenario_id(case, "disconnect")
        total = 1000
        await sessions.create(tid, "scenario://disconnect", total, "scenario-device", case.connection_method)
        try:
            await sessions.start(tid)
            await sessions.update_progress(tid, total // 2)
            paused = await sessions.pause(tid)
            resumed = await sessions.resume(tid)
            await sessions.update_progress(tid, total)
            done = await sessions.complete(tid)
        finally:
            await sessions.remove(tid)
        return (
            paused.is_resumable
            and resumed.bytes_transferred == total // 2
            and done.status == TransferStatus.COMPLETED
        )

    async def _retry_attempt(self, case: AuditTestCase) -> bool:
        sessions = self.ctx.sessions
        tid = self._scenario_id(case, "retry")
        created = [tid]
        await sessions.create(tid, "scenario://retry", 1000, "scenario-device", case.connection_method)
        try:
            await sessions.start(tid)
            await sessions.update_progress(tid, 400)
            failed = await sessions.fail(tid, "Simulated network loss", can_retry=True)
            attempt = await sessions.retry(tid)
            created.append(attempt.transfer_id)
            original = sessions.get(tid)
        finally:
            for transfer_id in created:
                await sessions.remove(transfer_id)
        return (
            failed.is_resumable
            and attempt.transfer_id != tid
            and attempt.metadata.get("supersedes") == tid
            and attempt.bytes_transferred == 400
            and original.status == TransferStatus.FAILED
        )

    async def _illegal_transition(self, case: AuditTestCase) -> bool:
        sessions = self.ctx.sessions
        tid = self._scenario_id(case, "illegal")
        await sessions.create(tid, "scenario://illegal", 1000, "scenario-device", case.connection_method)
        try:
            await sessions.cancel(tid)
            try:
                await sessions.complete(tid)
            except InvalidTransitionError:
                rejected = True
            else:
                rejected = False
            unchanged = sessions.get(tid).status == TransferStatus.CANCELLED
        finally:
            await sessions.remove(tid)
        return rejected and unchanged


class PerformanceCheck(AuditCheck):
    test_type = AuditTestType.PERFORMANCE

    async def _check(self, case: AuditTestCase) -> CheckOutcome:
        min_speed = float(case.expected_results.get("minSpeedMBps", 0.0))
        devices = await self._discover(case)
        path = await self._make_test_file(case.file_size, case.id)
        try:
            run = (await self._send_files(case, [path], devices[:1]))[0]
            metrics = await self._collect_metrics(run.state.transfer_id)
        finally:
            await self._remove_files(path)

        speed = run.throughput_mbps
        metrics.update(run.metrics())
        metrics.update({"speedMBps": speed, "fileSizeBytes": float(case.file_size)})
        fast_enough = speed >= min_speed
        passed = run.ok and fast_enough
        notes = run.failure_reason()
        if run.ok and not fast_enough:
            notes = f"Throughput {speed:.2f} MB/s below required {min_speed:.2f} MB/s"
        return CheckOutcome(
            status=AuditStatus.PASSED if passed else AuditStatus.FAILED,
            metrics=metrics,
            evidence={"transferId": run.state.transfer_id, "minSpeedMBps": min_speed},
            notes=notes,
        )


CHECKS: Dict[AuditTestType, Type[AuditCheck]] = {
    cls.test_type: cls
    for cls in (
        DiscoveryCheck,
        WifiAwareSessionCheck,
        SimultaneousTransferCheck,
        MultiReceiverCheck,
        CrossPlatformTransferCheck,
        ChecksumVerificationCheck,
        UiUxCheck,
        QrPairingCheck,
        SettingsPersistenceCheck,
        ErrorHandlingCheck,
        PerformanceCheck,
    )
}
