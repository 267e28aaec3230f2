"""Building to EPC certificate reconciliation.

Each building is matched against an in-memory pool of candidate certificates
using three strategies in fixed priority order:

1. exact UPRN (confidence 1.0)
2. same postcode and same normalised address (confidence 0.8)
3. fuzzy address by normalised Levenshtein similarity (confidence 0.6)

The first strategy that yields a certificate wins. Within a strategy the most
recently lodged certificate is preferred. The module is stateless apart from
the ``CertificateIndex`` built for a single reconciliation pass.
"""

from __future__ import annotations

import logging
import re
from collections import defaultdict
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from rapidfuzz.distance import Levenshtein

from domain.epc.models import (
    METHOD_CONFIDENCE,
    BuildingFeature,
    Certificate,
    MatchedRecord,
    MatchMethod,
    MatchStatus,
)

logger = logging.getLogger(__name__)

DEFAULT_FUZZY_THRESHOLD = 0.85

ADDRESS_ABBREVIATIONS: Dict[str, str] = {
    "rd": "road",
    "st": "street",
    "ave": "avenue",
    "av": "avenue",
    "ln": "lane",
    "cl": "close",
    "ct": "court",
    "crt": "court",
    "dr": "drive",
    "cres": "crescent",
    "gdns": "gardens",
    "pl": "place",
    "sq": "square",
    "ter": "terrace",
    "terr": "terrace",
    "flt": "flat",
    "apt": "apartment",
}

_NON_ALNUM_RE = re.compile(r"[^a-z0-9]+")
_TRAILING_POSTCODE_RE = re.compile(r"\b[a-z]{1,2}\d[a-z\d]?\s*\d[a-z]{2}\s*$")
_WHITESPACE_RE = re.compile(r"\s+")


# ============================================================================
# Normalisation
# ============================================================================


def normalize_postcode(value: Optional[str]) -> str:
    """Return ``value`` upper-cased with a single space before the inward code."""
    if not value:
        return ""
    compact = _WHITESPACE_RE.sub("", str(value)).upper()
    if 5 <= len(compact) <= 7:
        return f"{compact[:-3]} {compact[-3:]}"
    return compact


def normalize_uprn(value: Optional[object]) -> str:
    if value is None:
        return ""
    digits = "".join(ch for ch in str(value) if ch.isdigit())
    return digits.lstrip("0")


def normalize_address(value: Optional[str]) -> str:
    """Lower-case, strip punctuation and a trailing postcode, expand abbreviations."""
    if not value:
        return ""
    text = _NON_ALNUM_RE.sub(" ", str(value).lower()).strip()
    text = _TRAILING_POSTCODE_RE.sub("", text)
    tokens = [ADDRESS_ABBREVIATIONS.get(token, token) for token in text.split()]
    return " ".join(tokens)


def house_numbers(normalized_address: str) -> Tuple[str, ...]:
    """Tokens containing a digit (house, flat and unit numbers)."""
    return tuple(token for token in normalized_address.split() if any(ch.isdigit() for ch in token))


def address_similarity(a: Optional[str], b: Optional[str]) -> float:
    """Normalised Levenshtein similarity of two addresses, in ``[0, 1]``."""
    left = normalize_address(a)
    right = normalize_address(b)
    if not left or not right:
        return 0.0
    return float(Levenshtein.normalized_similarity(left, right))


def addresses_equivalent(a: str, b: str) -> bool:
    """Compare two *normalised* addresses for the postcode + address strategy.

    Identical strings match. Otherwise one must contain the other on word
    boundaries and both must carry the same house number tokens.
    """
    if not a or not b:
        return False
    if a == b:
        return True
    contained = f" {a} " in f" {b} " or f" {b} " in f" {a} "
    return contained and house_numbers(a) == house_numbers(b)


# ============================================================================
# Candidate index
# ============================================================================


class CertificateIndex:
    """Candidate certificates indexed by UPRN and postcode, newest first."""

    def __init__(self, certificates: Iterable[Certificate]) -> None:
        unique: Dict[str, Certificate] = {}
        for certificate in certificates:
            unique.setdefault(certificate.certificate_hash, certificate)

        self.certificates: List[Certificate] = sorted(
            unique.values(), key=lambda cert: cert.recency_key, reverse=True
        )
        self._by_uprn: Dict[str, List[Certificate]] = defaultdict(list)
        self._by_postcode: Dict[str, List[Certificate]] = defaultdict(list)
        self._normalized_addresses: Dict[int, str] = {}

        for certificate in self.certificates:
            uprn = normalize_uprn(certificate.uprn)
            if uprn:
                self._by_uprn[uprn].append(certificate)
            postcode = normalize_postcode(certificate.postcode)
            if postcode:
                self._by_postcode[postcode].append(certificate)
            self._normalized_addresses[id(certificate)] = normalize_address(certificate.address)

    def __len__(self) -> int:
        return len(self.certificates)

    def by_uprn(self, uprn: Optional[object]) -> List[Certificate]:
        key = normalize_uprn(uprn)
        return list(self._by_uprn.get(key, ())) if key else []

    def by_postcode(self, postcode: Optional[str]) -> List[Certificate]:
        key = normalize_postcode(postcode)
        return list(self._by_postcode.get(key, ())) if key else []

    def normalized_address(self, certificate: Certificate) -> str:
        cached = self._normalized_addresses.get(id(certificate))
        if cached is None:
            cached = normalize_address(certificate.address)
        return cached

    def candidates_for(self, building: BuildingFeature) -> List[Certificate]:
        """Certificates sharing the building's UPRN or postcode.

        A building with neither identifier could be matched against any
        certificate, so every certificate counts as a candidate.
        """
        uprns = building.uprns()
        if not uprns and not building.postcode:
            return list(self.certificates)

        seen: Dict[int, Certificate] = {}
        for uprn in uprns:
            for certificate in self.by_uprn(uprn):
                seen.setdefault(id(certificate), certificate)
        for certificate in self.by_postcode(building.postcode):
            seen.setdefault(id(certificate), certificate)
        return list(seen.values())


# ============================================================================
# Strategies
# ============================================================================


def match_by_uprn(building: BuildingFeature, index: CertificateIndex) -> Optional[Certificate]:
    for uprn in building.uprns():
        certificates = index.by_uprn(uprn)
        if certificates:
            return certificates[0]
    return None


def match_by_postcode_address(
    building: BuildingFeature, index: CertificateIndex
) -> Optional[Certificate]:
    if not building.postcode or not building.address:
        return None
    target = normalize_address(building.address)
    if not target:
        return None

    candidates = index.by_postcode(building.postcode)
    for certificate in candidates:
        if index.normalized_address(certificate) == target:
            return certificate
    for certificate in candidates:
        if addresses_equivalent(target, index.normalized_address(certificate)):
            return certificate
    return None


def match_by_fuzzy_address(
    building: BuildingFeature,
    index: CertificateIndex,
    threshold: float = DEFAULT_FUZZY_THRESHOLD,
) -> Tuple[Optional[Certificate], float]:
    """Best certificate whose address similarity reaches ``threshold``.

    Returns the certificate (or ``None``) and its similarity score.
    """
    target = normalize_address(building.address)
    if not target:
        return None, 0.0

    pool: Sequence[Certificate]
    if building.postcode:
        pool = index.by_postcode(building.postcode)
    else:
        pool = index.certificates

    best: Optional[Certificate] = None
    best_score = 0.0
    for certificate in pool:
        candidate = index.normalized_address(certificate)
        if not candidate:
            continue
        score = float(Levenshtein.normalized_similarity(target, candidate))
        # strict comparison keeps the newest certificate on ties
        if score > best_score:
            best, best_score = certificate, score

    if best is not None and best_score >= threshold:
        return best, best_score
    return None, best_score


# ============================================================================
# Reconciliation
# ============================================================================


def _matched(
    building: BuildingFeature, certificate: Certificate, method: MatchMethod, considered: int
) -> MatchedRecord:
    return MatchedRecord(
        building=building,
        certificate=certificate,
        confidence=METHOD_CONFIDENCE[method],
        method=method,
        status=MatchStatus.MATCHED,
        candidates_considered=considered,
    )


def reconcile_building(
    building: BuildingFeature,
    index: CertificateIndex,
    fuzzy_threshold: float = DEFAULT_FUZZY_THRESHOLD,
) -> MatchedRecord:
    considered = len(index.candidates_for(building))

    certificate = match_by_uprn(building, index)
    if certificate is not None:
        return _matched(building, certificate, MatchMethod.UPRN, considered)

    certificate = match_by_postcode_address(building, index)
    if certificate is not None:
        return _matched(building, certificate, MatchMethod.POSTCODE, considered)

    certificate, score = match_by_fuzzy_address(building, index, fuzzy_threshold)
    if certificate is not None:
        logger.debug(
            "Fuzzy matched %s to %s (similarity %.3f)", building.id, certificate.address, score
        )
        return _matched(building, certificate, MatchMethod.FUZZY_ADDRESS, considered)

    return MatchedRecord(
        building=building,
        status=MatchStatus.NO_MATCH if considered else MatchStatus.NO_EPC_FOUND,
        candidates_considered=considered,
    )


def reconcile(
    buildings: Sequence[BuildingFeature],
    certificates: Iterable[Certificate],
    fuzzy_threshold: float = DEFAULT_FUZZY_THRESHOLD,
) -> List[MatchedRecord]:
    """Match every building once, returning records in input order."""
    index = certificates if isinstance(certificates, CertificateIndex) else CertificateIndex(certificates)
    records = [reconcile_building(building, index, fuzzy_threshold) for building in buildings]

    matched = sum(1 for record in records if record.is_matched)
    logger.info(
        "Reconciled %d buildings against %d certificates: %d matched",
        len(records),
        len(index),
        matched,
    )
    return records


__all__ = [
    "ADDRESS_ABBREVIATIONS",
    "DEFAULT_FUZZY_THRESHOLD",
    "CertificateIndex",
    "address_similarity",
    "addresses_equivalent",
    "house_numbers",
    "match_by_fuzzy_address",
    "match_by_postcode_address",
    "match_by_uprn",
    "normalize_address",
    "normalize_postcode",
    "normalize_uprn",
    "reconcile",
    "reconcile_building",
]
