"""EPC certificate, building feature and match record structures."""
from __future__ import annotations

import hashlib
from dataclasses import dataclass, field
from datetime import date, datetime
from enum import Enum
from typing import Any, Dict, List, Optional

RATING_BANDS = ("A", "B", "C", "D", "E", "F", "G")

CONFIDENCE_UPRN = 1.0
CONFIDENCE_POSTCODE_ADDRESS = 0.8
CONFIDENCE_FUZZY_ADDRESS = 0.6
CONFIDENCE_NONE = 0.0

# EPCs are valid for ten years from lodgement
CERTIFICATE_VALIDITY_YEARS = 10


class MatchMethod(str, Enum):
    UPRN = "uprn"
    POSTCODE = "postcode"
    FUZZY_ADDRESS = "fuzzy_address"
    NONE = "none"


class MatchStatus(str, Enum):
    MATCHED = "matched"
    NO_MATCH = "no_match"
    NO_EPC_FOUND = "no_epc_found"


METHOD_CONFIDENCE: Dict[MatchMethod, float] = {
    MatchMethod.UPRN: CONFIDENCE_UPRN,
    MatchMethod.POSTCODE: CONFIDENCE_POSTCODE_ADDRESS,
    MatchMethod.FUZZY_ADDRESS: CONFIDENCE_FUZZY_ADDRESS,
    MatchMethod.NONE: CONFIDENCE_NONE,
}


def _coerce_float(value: Any) -> Optional[float]:
    try:
        if value is None or value == "":
            return None
        return float(value)
    except (TypeError, ValueError):
        return None


def _coerce_int(value: Any) -> Optional[int]:
    number = _coerce_float(value)
    return int(number) if number is not None else None


def _parse_date(value: Any) -> Optional[date]:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if not value:
        return None
    text = str(value).strip()
    for candidate, fmt in ((text[:10], "%Y-%m-%d"), (text[:10], "%d/%m/%Y")):
        try:
            return datetime.strptime(candidate, fmt).date()
        except ValueError:
            continue
    return None


def _clean_text(value: Any) -> Optional[str]:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


@dataclass
class BuildingFeature:
    """A building footprint feature, usually from an OS MasterMap plan."""

    id: str
    properties: Dict[str, Any] = field(default_factory=dict)
    geometry: Optional[Dict[str, Any]] = None

    @classmethod
    def from_geojson(cls, feature: Dict[str, Any], index: int = 0) -> "BuildingFeature":
        properties = dict(feature.get("properties") or {})
        feature_id = (
            feature.get("id")
            or properties.get("id")
            or properties.get("toid")
            or properties.get("fid")
            or properties.get("ogc_fid")
            or f"feature-{index}"
        )
        return cls(id=str(feature_id), properties=properties, geometry=feature.get("geometry"))

    def to_geojson(self) -> Dict[str, Any]:
        return {
            "type": "Feature",
            "id": self.id,
            "properties": self.properties,
            "geometry": self.geometry,
        }

    @property
    def primary_uprn(self) -> Optional[str]:
        return _clean_text(self.properties.get("primaryUPRN"))

    def uprns(self) -> List[str]:
        """All UPRNs attached to the feature, primary first, without duplicates."""
        candidates: List[Any] = [self.properties.get("primaryUPRN")]
        secondary = self.properties.get("uprns")
        if isinstance(secondary, (list, tuple)):
            candidates.extend(secondary)
        candidates.append(self.properties.get("uprn"))

        seen: List[str] = []
        for candidate in candidates:
            text = _clean_text(candidate)
            if text and text not in seen:
                seen.append(text)
        return seen

    @property
    def postcode(self) -> Optional[str]:
        return _clean_text(self.properties.get("postcode"))

    @property
    def address(self) -> Optional[str]:
        return _clean_text(self.properties.get("address") or self.properties.get("full_address"))

    @property
    def toid(self) -> Optional[str]:
        for key in ("toid", "fid", "ogc_fid"):
            value = self.properties.get(key)
            if isinstance(value, (str, int)) and not isinstance(value, bool) and str(value).strip():
                return str(value).strip()
        return None

    @property
    def is_osmm_building(self) -> bool:
        props = self.properties
        return bool(props.get("fid")) and (
            props.get("theme") == "Buildings" or props.get("descriptivegroup") == "Building"
        )


@dataclass
class Certificate:
    """A single domestic or non-domestic energy performance certificate."""

    lmk_key: Optional[str] = None
    uprn: Optional[str] = None
    address: Optional[str] = None
    postcode: Optional[str] = None
    current_energy_rating: Optional[str] = None
    potential_energy_rating: Optional[str] = None
    energy_efficiency: Optional[int] = None
    co2_emissions: Optional[float] = None
    property_type: Optional[str] = None
    total_floor_area: Optional[float] = None
    inspection_date: Optional[date] = None
    lodgement_date: Optional[date] = None
    property_class: str = "domestic"
    raw: Dict[str, Any] = field(default_factory=dict, repr=False, compare=False)

    @classmethod
    def from_api_row(cls, row: Dict[str, Any], property_class: Optional[str] = None) -> "Certificate":
        """Build a certificate from a domestic or non-domestic search row."""
        rating = (
            row.get("current-energy-rating") or row.get("asset-rating-band") or row.get("asset-rating")
        )
        address = row.get("address") or ", ".join(
            part
            for part in (row.get("address1"), row.get("address2"), row.get("address3"))
            if part
        )
        return cls(
            lmk_key=_clean_text(row.get("lmk-key")),
            uprn=_clean_text(row.get("uprn")),
            address=_clean_text(address),
            postcode=_clean_text(row.get("postcode")),
            current_energy_rating=_clean_text(rating),
            potential_energy_rating=_clean_text(row.get("potential-energy-rating")),
            energy_efficiency=_coerce_int(
                row.get("current-energy-efficiency")
                or row.get("energy-efficiency-rating")
                or row.get("asset-rating-numeric")
            ),
            co2_emissions=_coerce_float(
                row.get("co2-emissions-current") or row.get("co2-emiss-curr-per-floor-area")
            ),
            property_type=_clean_text(row.get("property-type") or row.get("building-category")),
            total_floor_area=_coerce_float(row.get("total-floor-area") or row.get("floor-area")),
            inspection_date=_parse_date(row.get("inspection-date")),
            lodgement_date=_parse_date(row.get("lodgement-date")),
            property_class=property_class or row.get("property_class") or "domestic",
            raw=dict(row),
        )

    @property
    def certificate_hash(self) -> str:
        """SHA-256 of fields persisted in ``epc_certificates``, so stored rows hash the same."""
        parts = [
            self.lmk_key or "",
            self.uprn or "",
            (self.address or "").lower(),
            (self.postcode or "").upper().replace(" ", ""),
            self.lodgement_date.isoformat() if self.lodgement_date else "",
        ]
        return hashlib.sha256("|".join(parts).encode("utf-8")).hexdigest()

    @property
    def recency_key(self) -> tuple:
        return (self.lodgement_date or date.min, self.inspection_date or date.min)

    @property
    def expiry_date(self) -> Optional[date]:
        if not self.lodgement_date:
            return None
        try:
            return self.lodgement_date.replace(
                year=self.lodgement_date.year + CERTIFICATE_VALIDITY_YEARS
            )
        except ValueError:
            # 29 February lodgements
            return self.lodgement_date.replace(
                year=self.lodgement_date.year + CERTIFICATE_VALIDITY_YEARS, day=28
            )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "lmk_key": self.lmk_key,
            "uprn": self.uprn,
            "address": self.address,
            "postcode": self.postcode,
            "current_energy_rating": self.current_energy_rating,
            "potential_energy_rating": self.potential_energy_rating,
            "energy_efficiency": self.energy_efficiency,
            "co2_emissions": self.co2_emissions,
            "property_type": self.property_type,
            "total_floor_area": self.total_floor_area,
            "inspection_date": self.inspection_date.isoformat() if self.inspection_date else None,
            "lodgement_date": self.lodgement_date.isoformat() if self.lodgement_date else None,
            "property_class": self.property_class,
            "certificate_hash": self.certificate_hash,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Certificate":
        return cls(
            lmk_key=_clean_text(data.get("lmk_key")),
            uprn=_clean_text(data.get("uprn")),
            address=_clean_text(data.get("address")),
            postcode=_clean_text(data.get("postcode")),
            current_energy_rating=_clean_text(data.get("current_energy_rating")),
            potential_energy_rating=_clean_text(data.get("potential_energy_rating")),
            energy_efficiency=_coerce_int(data.get("energy_efficiency")),
            co2_emissions=_coerce_float(data.get("co2_emissions")),
            property_type=_clean_text(data.get("property_type")),
            total_floor_area=_coerce_float(data.get("total_floor_area")),
            inspection_date=_parse_date(data.get("inspection_date")),
            lodgement_date=_parse_date(data.get("lodgement_date")),
            property_class=data.get("property_class") or "domestic",
        )


@dataclass
class MatchedRecord:
    """Result of reconciling one building against the candidate certificates."""

    building: BuildingFeature
    certificate: Optional[Certificate] = None
    confidence: float = CONFIDENCE_NONE
    method: MatchMethod = MatchMethod.NONE
    status: MatchStatus = MatchStatus.NO_EPC_FOUND
    candidates_considered: int = 0

    @property
    def is_matched(self) -> bool:
        return self.status is MatchStatus.MATCHED

    @property
    def display_address(self) -> str:
        if self.certificate and self.certificate.address:
            return self.certificate.address
        return self.building.address or ""

    @property
    def display_uprn(self) -> str:
        if self.certificate and self.certificate.uprn:
            return self.certificate.uprn
        uprns = self.building.uprns()
        return uprns[0] if uprns else ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "building": self.building.to_geojson(),
            "certificate": self.certificate.to_dict() if self.certificate else None,
            "confidence": self.confidence,
            "method": self.method.value,
            "status": self.status.value,
            "candidates_considered": self.candidates_considered,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "MatchedRecord":
        certificate = data.get("certificate")
        return cls(
            building=BuildingFeature.from_geojson(data.get("building") or {}),
            certificate=Certificate.from_dict(certificate) if certificate else None,
            confidence=float(data.get("confidence") or 0.0),
            method=MatchMethod(data.get("method") or MatchMethod.NONE.value),
            status=MatchStatus(data.get("status") or MatchStatus.NO_EPC_FOUND.value),
            candidates_considered=int(data.get("candidates_considered") or 0),
        )


@dataclass
class BuildingIdentifier:
    """A lookup key extracted from a building, with its source confidence."""

    type: str
    value: str
    building: BuildingFeature
    confidence: float
    source: str


@dataclass
class EPCSummary:
    total_buildings: int = 0
    with_epc: int = 0
    coverage_percent: int = 0
    rating_distribution: Dict[str, int] = field(
        default_factory=lambda: {band: 0 for band in RATING_BANDS}
    )
    average_efficiency: int = 0
    average_co2: float = 0.0
    expiring_certificates: int = 0
    property_types: Dict[str, int] = field(default_factory=dict)
    match_methods: Dict[str, int] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "total_buildings": self.total_buildings,
            "with_epc": self.with_epc,
            "coverage_percent": self.coverage_percent,
            "rating_distribution": dict(self.rating_distribution),
            "average_efficiency": self.average_efficiency,
            "average_co2": self.average_co2,
            "expiring_certificates": self.expiring_certificates,
            "property_types": dict(self.property_types),
            "match_methods": dict(self.match_methods),
        }


@dataclass
class EstateResult:
    success: bool
    records: List[MatchedRecord] = field(default_factory=list)
    summary: Optional[EPCSummary] = None
    error: Optional[str] = None
    total_features: int = 0
    osmm_buildings_found: int = 0
    processed_identifiers: int = 0
    candidate_certificates: int = 0
    failed_lookups: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": self.success,
            "error": self.error,
            "records": [record.to_dict() for record in self.records],
            "summary": self.summary.to_dict() if self.summary else None,
            "total_features": self.total_features,
            "osmm_buildings_found": self.osmm_buildings_found,
            "processed_identifiers": self.processed_identifiers,
            "candidate_certificates": self.candidate_certificates,
            "failed_lookups": self.failed_lookups,
        }


__all__ = [
    "CERTIFICATE_VALIDITY_YEARS",
    "CONFIDENCE_FUZZY_ADDRESS",
    "CONFIDENCE_NONE",
    "CONFIDENCE_POSTCODE_ADDRESS",
    "CONFIDENCE_UPRN",
    "METHOD_CONFIDENCE",
    "RATING_BANDS",
    "BuildingFeature",
    "BuildingIdentifier",
    "Certificate",
    "EPCSummary",
    "EstateResult",
    "MatchMethod",
    "MatchStatus",
    "MatchedRecord",
]
