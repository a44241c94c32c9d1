"""
Default catalogue of automated audit test cases.
"""

from typing import List

from ..core.models import AuditTestCase, AuditTestType

MB = 1024 * 1024


def default_test_cases(file_size: int = MB) -> List[AuditTestCase]:
    """Один тест на каждую из 11 обязательных проверок."""
    return [
        AuditTestCase(
            id="discovery_001",
            name="Device Discovery",
            test_type=AuditTestType.DISCOVERY,
            expected_results={"minDevices": 1},
        ),
        AuditTestCase(
            id="wifi_aware_001",
            name="Wi-Fi Aware Session Setup",
            test_type=AuditTestType.WIFI_AWARE_SESSION,
            connection_method="wifi_aware",
        ),
        AuditTestCase(
            id="simultaneous_transfer_001",
            name="Simultaneous Transfers",
            test_type=AuditTestType.SIMULTANEOUS_TRANSFER,
            file_size=5 * MB,
            configuration={"fileCount": 2},
        ),
        AuditTestCase(
            id="multi_receiver_001",
            name="Multi-Receiver Transfer",
            test_type=AuditTestType.MULTI_RECEIVER,
            file_size=file_size,
            configuration={"receiverCount": 2},
        ),
        AuditTestCase(
            id="cross_platform_001",
            name="Android to iOS Core Transfer",
            test_type=AuditTestType.CROSS_PLATFORM,
            sender_platform="android",
            receiver_platform="ios",
            file_size=file_size,
        ),
        AuditTestCase(
            id="checksum_verification_001",
            name="SHA-256 Checksum Verification",
            test_type=AuditTestType.CHECKSUM_VERIFICATION,
            file_size=file_size,
        ),
        AuditTestCase(
            id="ui_ux_001",
            name="Transfer Screen UI Checks",
            test_type=AuditTestType.UI_UX,
        ),
        AuditTestCase(
            id="qr_pairing_001",
            name="QR Code Pairing",
            test_type=AuditTestType.QR_PAIRING,
            connection_method="qr",
        ),
        AuditTestCase(
            id="settings_persistence_001",
            name="Settings Persistence",
            test_type=AuditTestType.SETTINGS_PERSISTENCE,
        ),
        AuditTestCase(
            id="error_scenario_001",
            name="Error Scenarios",
            test_type=AuditTestType.ERROR_HANDLING,
        ),
        AuditTestCase(
            id="performance_001",
            name="Transfer Throughput Benchmark",
            test_type=AuditTestType.PERFORMANCE,
            file_size=10 * MB,
            expected_results={"minSpeedMBps": 1.0},
        ),
    ]
