"""
Auxiliary report inputs: LCOV coverage, benchmark results, device logs and
the environment snapshot written by the orchestrator.

Every loader returns either a typed summary or a SectionError; none of them
raises on missing or malformed input.
"""

import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

from ..core.models import SectionError, calculate_pass_rate

_LCOV_COUNTERS = {"LF:": "total_lines", "LH:": "covered_lines", "FNF:": "total_functions", "FNH:": "covered_functions"}


@dataclass(frozen=True)
class CoverageSummary:
    total_lines: int = 0
    covered_lines: int = 0
    total_functions: int = 0
    covered_functions: int = 0

    @property
    def lines_coverage(self) -> float:
        return calculate_pass_rate(self.covered_lines, self.total_lines)

    @property
    def functions_coverage(self) -> float:
        return calculate_pass_rate(self.covered_functions, self.total_functions)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "totalLines": self.total_lines,
            "coveredLines": self.covered_lines,
            "linesCoverage": round(self.lines_coverage, 1),
            "totalFunctions": self.total_functions,
            "coveredFunctions": self.covered_functions,
            "functionsCoverage": round(self.functions_coverage, 1),
        }


def parse_lcov(content: str, source: Optional[str] = None) -> Union[CoverageSummary, SectionError]:
    """Суммировать счётчики LF/LH/FNF/FNH. Нечисловой счётчик -> SectionError."""
    totals = {name: 0 for name in _LCOV_COUNTERS.values()}
    for number, raw_line in enumerate(content.splitlines(), start=1):
        line = raw_line.strip()
        for prefix, name in _LCOV_COUNTERS.items():
            if line.startswith(prefix):
                value = line[len(prefix):].strip()
                try:
                    totals[name] += int(value)
                except ValueError:
                    return SectionError(f"Malformed LCOV counter at line {number}: {line!r}", source)
                break
    return CoverageSummary(**totals)


def load_coverage(path: Path) -> Union[CoverageSummary, SectionError]:
    if not path.is_file():
        return SectionError("Coverage file not found", str(path))
    try:
        content = path.read_text(encoding="utf-8")
    except OSError as e:
        return SectionError(f"Failed to read coverage data: {e}", str(path))
    return parse_lcov(content, str(path))


@dataclass(frozen=True)
class BenchmarkSummary:
    total_benchmarks: int = 0
    average_speed: float = 0.0
    max_speed: float = 0.0
    average_cpu: float = 0.0
    average_memory: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "totalBenchmarks": self.total_benchmarks,
            "averageTransferSpeed": self.average_speed,
            "maxTransferSpeed": self.max_speed,
            "averageCpuUsage": self.average_cpu,
            "averageMemoryUsage": self.average_memory,
        }


def _mean(values: List[float]) -> float:
    return sum(values) / len(values) if values else 0.0


def summarize_benchmarks(data: Any, source: Optional[str] = None) -> Union[BenchmarkSummary, SectionError]:
    """Средние скорость/CPU/память по списку benchmarks."""
    benchmarks = data.get("benchmarks") if isinstance(data, dict) else None
    if not isinstance(benchmarks, list) or not benchmarks:
        return SectionError("No benchmark data available", source)

    speeds, cpu, memory = [], [], []
    for entry in benchmarks:
        if not isinstance(entry, dict):
            continue
        for key, bucket in (("averageSpeed", speeds), ("avgCpuUsage", cpu), ("avgMemoryUsage", memory)):
            value = entry.get(key)
            if isinstance(value, (int, float)) and not isinstance(value, bool):
                bucket.append(float(value))

    return BenchmarkSummary(
        total_benchmarks=len(benchmarks),
        average_speed=_mean(speeds),
        max_speed=max(speeds, default=0.0),
        average_cpu=_mean(cpu),
        average_memory=_mean(memory),
    )


def load_benchmarks(path: Path) -> Union[BenchmarkSummary, SectionError]:
    if not path.is_file():
        return SectionError("Benchmark results file not found", str(path))
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as e:
        return SectionError(f"Failed to collect benchmark results: {e}", str(path))
    return summarize_benchmarks(data, str(path))


@dataclass(frozen=True)
class DeviceLogSummary:
    android_logs: List[str] = field(default_factory=list)
    ios_logs: List[str] = field(default_factory=list)

    @property
    def total_devices(self) -> int:
        return len(self.android_logs) + len(self.ios_logs)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "androidDevices": len(self.android_logs),
            "iosDevices": len(self.ios_logs),
            "androidLogs": list(self.android_logs),
            "iosLogs": list(self.ios_logs),
            "totalDevices": self.total_devices,
        }


def collect_device_logs(directory: Path) -> Union[DeviceLogSummary, SectionError]:
    """Подсчитать папки логов android_* и ios_*."""
    if not directory.is_dir():
        return SectionError("Device logs directory not found", str(directory))
    try:
        names = sorted(p.name for p in directory.iterdir() if p.is_dir())
    except OSError as e:
        return SectionError(f"Failed to collect device logs: {e}", str(directory))
    return DeviceLogSummary(
        android_logs=[n for n in names if n.startswith("android_")],
        ios_logs=[n for n in names if n.startswith("ios_")],
    )


def load_environment_snapshot(path: Path) -> Union[Dict[str, Any], SectionError]:
    """Прочитать environment_validation_<ts>.json, записанный оркестратором."""
    if not path.is_file():
        return SectionError("Environment snapshot not found", str(path))
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as e:
        return SectionError(f"Failed to read environment snapshot: {e}", str(path))
    if not isinstance(data, dict):
        return SectionError("Environment snapshot must be a JSON object", str(path))
    return data
