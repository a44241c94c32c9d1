"""
Mapping of test records and evidence files onto the 11 core checks.

Both mappings are ordered rule tables evaluated first-match-wins with
case-insensitive substring matching. A term is a tuple of substrings that
must all be present.
"""

from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional, Tuple

from ..core.models import CoreCheck, MergedTestRecord

Term = Tuple[str, ...]


@dataclass(frozen=True)
class CoreCheckRule:
    """Правило: совпадение любого терма в любом из полей."""

    check: CoreCheck
    id_terms: Tuple[Term, ...] = ()
    name_terms: Tuple[Term, ...] = ()
    category_terms: Tuple[Term, ...] = ()

    def matches(self, test_id: str, name: str, category: str) -> bool:
        return (
            _any_term(test_id, self.id_terms)
            or _any_term(name, self.name_terms)
            or _any_term(category, self.category_terms)
        )


def _any_term(text: str, terms: Iterable[Term]) -> bool:
    text = text.lower()
    return any(all(part in text for part in term) for term in terms)


# Order matters: a record mentioning both "qr" and "checksum" is a checksum record.
CORE_CHECK_RULES: Tuple[CoreCheckRule, ...] = (
    CoreCheckRule(CoreCheck.DISCOVERY, (("discovery",),), (("discovery",),), (("discovery",),)),
    CoreCheckRule(CoreCheck.WIFI_AWARE_SESSION, (("wifi_aware",),), (("wifi aware",),), (("wifi_aware",),)),
    CoreCheckRule(CoreCheck.SIMULTANEOUS_TRANSFER, (("simultaneous",),), (("simultaneous",),)),
    CoreCheckRule(CoreCheck.MULTI_RECEIVER, (("multi_receiver",),), (("multi", "receiver"),)),
    CoreCheckRule(CoreCheck.CROSS_PLATFORM, (("cross_platform",),), (("cross",),), (("cross_platform",),)),
    CoreCheckRule(CoreCheck.CHECKSUM_VERIFICATION, (("checksum",),), (("checksum",),), (("checksum",),)),
    CoreCheckRule(CoreCheck.UI_UX, (("ui",),), (("ui",),), (("ui",),)),
    CoreCheckRule(CoreCheck.QR_PAIRING, (("qr",),), (("qr",),), (("pairing",),)),
    CoreCheckRule(CoreCheck.SETTINGS_PERSISTENCE, (("settings",),), (("persistence",),), (("settings",),)),
    CoreCheckRule(CoreCheck.ERROR_HANDLING, (("error",),), (("error",),), (("error",),)),
    CoreCheckRule(CoreCheck.PERFORMANCE, (("performance",),), (("benchmark",),), (("performance",),)),
)


def classify_test(test_id: str, name: str = "", category: str = "") -> Optional[CoreCheck]:
    """Первая подходящая проверка или None."""
    for rule in CORE_CHECK_RULES:
        if rule.matches(test_id or "", name or "", category or ""):
            return rule.check
    return None


def map_records_to_core_checks(
    records: Iterable[MergedTestRecord],
) -> Dict[CoreCheck, List[MergedTestRecord]]:
    """Сгруппировать записи по проверкам. Каждая запись попадает не более чем в одну."""
    mapped: Dict[CoreCheck, List[MergedTestRecord]] = {check: [] for check in CoreCheck}
    for record in records:
        check = record.core_check or classify_test(record.id, record.name, record.category)
        if check is not None:
            mapped[check].append(record)
    return mapped


# Evidence files are matched on the file name and, for the transport checks,
# on the relative path as well.
_EVIDENCE_RULES: Tuple[Tuple[CoreCheck, Tuple[Term, ...], Tuple[Term, ...]], ...] = (
    (CoreCheck.DISCOVERY, (("discovery",),), (("discovery",),)),
    (CoreCheck.WIFI_AWARE_SESSION, (("wifi_aware",),), (("wifi_aware",),)),
    (CoreCheck.SIMULTANEOUS_TRANSFER, (("simultaneous",),), (("simultaneous",),)),
    (CoreCheck.MULTI_RECEIVER, (("multi_receiver",),), (("multi_receiver",),)),
    (CoreCheck.CROSS_PLATFORM, (("cross_platform",),), (("cross_platform",),)),
    (CoreCheck.CHECKSUM_VERIFICATION, (("checksum",),), (("checksum",),)),
    (CoreCheck.UI_UX, (("ui",),), (("ui",),)),
    (CoreCheck.QR_PAIRING, (("qr_pairing",), ("qr", "pair")), ()),
    (CoreCheck.SETTINGS_PERSISTENCE, (("settings",), ("persistence",)), ()),
    (CoreCheck.ERROR_HANDLING, (("error",),), (("error_scenarios",),)),
    (CoreCheck.PERFORMANCE, (("performance",), ("benchmark",)), ()),
)


def classify_evidence(file_name: str, relative_path: str) -> Optional[CoreCheck]:
    """Определить проверку для файла-доказательства."""
    for check, name_terms, path_terms in _EVIDENCE_RULES:
        if _any_term(file_name, name_terms) or _any_term(relative_path, path_terms):
            return check
    return None
