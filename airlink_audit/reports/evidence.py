"""
Evidence directory indexing.

The directory is walked once per call; nothing is cached between calls.
"""

import logging
import os
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional

from ..core.models import CoreCheck, EvidenceCategory, EvidenceItem
from .core_checks import classify_evidence

# per-core-check buckets used by the reports
BUCKETS = ("screenshots", "logs", "checksums", "other")

_BUCKET_BY_CATEGORY = {
    EvidenceCategory.SCREENSHOT: "screenshots",
    EvidenceCategory.LOG: "logs",
    EvidenceCategory.CHECKSUM: "checksums",
}


def classify_category(relative_path: str) -> EvidenceCategory:
    """Категория файла по пути и расширению (первое совпадение)."""
    path = relative_path.replace(os.sep, "/").lower()
    if "screenshots/" in path or path.endswith((".png", ".jpg", ".jpeg")):
        return EvidenceCategory.SCREENSHOT
    if "logs/" in path or path.endswith((".log", ".txt")):
        return EvidenceCategory.LOG
    if "checksums/" in path or "checksum" in path:
        return EvidenceCategory.CHECKSUM
    if path.endswith(".json"):
        return EvidenceCategory.DATA
    if path.endswith((".mp4", ".mov")):
        return EvidenceCategory.VIDEO
    return EvidenceCategory.OTHER


@dataclass
class EvidenceIndex:
    """Плоский список файлов плюс группировки по категории и по проверке."""

    root: Optional[Path] = None
    items: List[EvidenceItem] = field(default_factory=list)

    @property
    def count(self) -> int:
        return len(self.items)

    @property
    def total_size(self) -> int:
        return sum(item.size for item in self.items)

    @property
    def by_category(self) -> Dict[EvidenceCategory, List[EvidenceItem]]:
        grouped: Dict[EvidenceCategory, List[EvidenceItem]] = {}
        for item in self.items:
            grouped.setdefault(item.category, []).append(item)
        return grouped

    @property
    def by_core_check(self) -> Dict[CoreCheck, Dict[str, List[str]]]:
        grouped: Dict[CoreCheck, Dict[str, List[str]]] = {}
        for item in self.items:
            if item.core_check is None:
                continue
            buckets = grouped.setdefault(item.core_check, {name: [] for name in BUCKETS})
            buckets[_BUCKET_BY_CATEGORY.get(item.category, "other")].append(item.relative_path)
        return grouped

    def for_check(self, check: CoreCheck) -> Dict[str, List[str]]:
        return self.by_core_check.get(check, {name: [] for name in BUCKETS})

    def to_dict(self) -> Dict[str, Any]:
        return {
            "root": str(self.root) if self.root else None,
            "totalFiles": self.count,
            "totalSize": self.total_size,
            "files": [item.to_dict() for item in self.items],
            "byCategory": {
                category.value: [item.relative_path for item in items]
                for category, items in self.by_category.items()
            },
            "byCoreCheck": {
                str(int(check)): buckets for check, buckets in sorted(self.by_core_check.items())
            },
        }


class EvidenceIndexer:
    """Индексатор директории с доказательствами."""

    def __init__(self, logger: Optional[logging.Logger] = None):
        self.logger = logger or logging.getLogger("airlink_audit.evidence")

    def index(self, directory: Optional[Path]) -> EvidenceIndex:
        """
        Проиндексировать директорию рекурсивно.

        Отсутствующая директория даёт пустой индекс. Файлы, которые не
        удалось прочитать (stat), пропускаются с предупреждением.
        """
        if directory is None:
            return EvidenceIndex()
        root = Path(directory)
        if not root.is_dir():
            self.logger.info(f"Evidence directory not found: {root}")
            return EvidenceIndex(root=root)

        items: List[EvidenceItem] = []
        for dirpath, dirnames, filenames in os.walk(root, onerror=self._walk_error):
            dirnames.sort()
            for filename in sorted(filenames):
                path = Path(dirpath) / filename
                relative = path.relative_to(root).as_posix()
                try:
                    stat = path.stat()
                except OSError as e:
                    self.logger.warning(f"Skipping unreadable evidence file {relative}: {e}")
                    continue
                items.append(EvidenceItem(
                    path=path,
                    relative_path=relative,
                    file_name=filename,
                    size=stat.st_size,
                    modified=datetime.fromtimestamp(stat.st_mtime),
                    category=classify_category(relative),
                    core_check=classify_evidence(filename.lower(), relative.lower()),
                ))

        self.logger.info(f"Indexed {len(items)} evidence files in {root}")
        return EvidenceIndex(root=root, items=items)

    def _walk_error(self, error: OSError) -> None:
        self.logger.warning(f"Cannot read evidence directory entry: {error}")
