"""
Core data models for the Zone Intelligence Engine.

Plain dataclasses only: the engine hands these to presentation and
persistence layers, which pick their own serialization via to_dict().
"""

import math
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Iterable, Iterator, List, Mapping, Optional


# ═══════════════════════════════════════════════════════════════════════════
# GEOMETRY & TAGS
# ═══════════════════════════════════════════════════════════════════════════
@dataclass(frozen=True)
class Point:
    """A WGS-84 coordinate in decimal degrees."""
    lat: float
    lon: float

    @property
    def is_finite(self) -> bool:
        return math.isfinite(self.lat) and math.isfinite(self.lon)

    def to_dict(self) -> Dict[str, float]:
        return {"lat": self.lat, "lon": self.lon}

    @classmethod
    def from_dict(cls, data: Mapping[str, float]) -> "Point":
        return cls(lat=float(data["lat"]), lon=float(data["lon"]))


class TagMap(Mapping[str, str]):
    """
    Immutable OSM-style key/value tags.

    A missing key is never an error: get() returns the default and
    matches_any() simply does not match.
    """

    __slots__ = ("_tags",)

    def __init__(self, tags: Optional[Mapping[str, str]] = None):
        self._tags: Dict[str, str] = {str(k): str(v) for k, v in (tags or {}).items()}

    def __getitem__(self, key: str) -> str:
        return self._tags[key]

    def __iter__(self) -> Iterator[str]:
        return iter(self._tags)

    def __len__(self) -> int:
        return len(self._tags)

    def __eq__(self, other: object) -> bool:
        if isinstance(other, Mapping):
            return dict(self._tags) == dict(other)
        return NotImplemented

    def __hash__(self) -> int:
        return hash(frozenset(self._tags.items()))

    def __repr__(self) -> str:
        return f"TagMap({self._tags!r})"

    def has(self, key: str, value: Optional[str] = None) -> bool:
        """True if the key is present (and equals value, when given)."""
        if key not in self._tags:
            return False
        return value is None or self._tags[key] == value

    def matches_any(self, rules: Mapping[str, Iterable[str]]) -> bool:
        """True if any tags[key] is listed under rules[key]."""
        for key, values in rules.items():
            current = self._tags.get(key)
            if current is not None and current in values:
                return True
        return False

    def to_dict(self) -> Dict[str, str]:
        return dict(self._tags)


@dataclass(frozen=True)
class Candidate:
    """A point of interest supplied by the geodata collaborator."""
    id: str
    point: Point
    tags: TagMap = field(default_factory=TagMap)

    @classmethod
    def create(cls, id: str, lat: float, lon: float, tags: Optional[Mapping[str, str]] = None) -> "Candidate":
        return cls(id=id, point=Point(lat, lon), tags=TagMap(tags))

    def to_dict(self) -> Dict[str, Any]:
        return {"id": self.id, **self.point.to_dict(), "tags": self.tags.to_dict()}


@dataclass
class BaselineStats:
    """Structural statistics for a zone, derived from OSM data."""
    poi_density: float = 0.0       # POIs per km²
    lighting_density: float = 0.0  # 0-1, share of lit streets
    pedestrian_score: float = 0.0  # 0-100
    transit_access: float = 0.0    # 0-100
    poi_count: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "poi_density": self.poi_density,
            "lighting_density": self.lighting_density,
            "pedestrian_score": self.pedestrian_score,
            "transit_access": self.transit_access,
            "poi_count": self.poi_count,
        }


# ═══════════════════════════════════════════════════════════════════════════
# ANCHOR SCORING CONFIG
# ═══════════════════════════════════════════════════════════════════════════
@dataclass(frozen=True)
class AnchorWeights:
    """Relative weight of each anchor scoring factor. All non-negative."""
    priority: float = 100.0
    proximity: float = 50.0
    connectivity: float = 30.0
    tag_richness: float = 20.0

    def __post_init__(self):
        for name in ("priority", "proximity", "connectivity", "tag_richness"):
            if getattr(self, name) < 0:
                raise ValueError(f"Anchor weight '{name}' must be non-negative")


@dataclass(frozen=True)
class ScoringConfig:
    """
    Tunable anchor selection configuration.

    Attributes:
        radii: Search radii in meters, ascending. The largest is the cut-off.
        priority_tags: category -> tag values that mark a landmark.
        negative_tags: category -> tag values that are hard exclusions.
        weights: Factor weights.
        tag_capacity: Tag count at which tag richness saturates.
    """
    radii: List[float]
    priority_tags: Dict[str, List[str]]
    negative_tags: Dict[str, List[str]]
    weights: AnchorWeights = field(default_factory=AnchorWeights)
    tag_capacity: int = 10

    def __post_init__(self):
        if not self.radii:
            raise ValueError("ScoringConfig.radii must not be empty")
        if any(r <= 0 for r in self.radii):
            raise ValueError("ScoringConfig.radii must be positive")
        if list(self.radii) != sorted(self.radii):
            raise ValueError("ScoringConfig.radii must be ascending")
        if self.tag_capacity <= 0:
            raise ValueError("ScoringConfig.tag_capacity must be positive")

    @property
    def max_radius(self) -> float:
        return self.radii[-1]


@dataclass(frozen=True)
class Anchor:
    """The single representative point of a zone. Replaced, never edited."""
    candidate_id: str
    point: Point
    name: str
    tags: TagMap
    selection_reason: str
    score: float = 0.0
    distance_m: float = 0.0

    @property
    def is_synthetic(self) -> bool:
        return self.tags.get("synthetic") == "true"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "candidate_id": self.candidate_id,
            **self.point.to_dict(),
            "name": self.name,
            "tags": self.tags.to_dict(),
            "selection_reason": self.selection_reason,
            "score": self.score,
            "distance_m": self.distance_m,
        }


# ═══════════════════════════════════════════════════════════════════════════
# TEXTURE
# ═══════════════════════════════════════════════════════════════════════════
class TextureType(Enum):
    """Baseline character of a zone."""
    MARKET_CHAOS = "MARKET_CHAOS"
    TEMPLE_PEACE = "TEMPLE_PEACE"
    NIGHTLIFE_ELECTRIC = "NIGHTLIFE_ELECTRIC"
    CAFE_CULTURE = "CAFE_CULTURE"
    TRANSIT_HUB = "TRANSIT_HUB"
    TOURIST_DENSE = "TOURIST_DENSE"
    PARK_REFUGE = "PARK_REFUGE"
    RESIDENTIAL = "RESIDENTIAL"
    LOCAL_AUTHENTIC = "LOCAL_AUTHENTIC"
    MIXED = "MIXED"


class SpectrumTexture(Enum):
    """Request-time atmosphere, ordered from quietest to busiest."""
    SILENCE = "SILENCE"
    ANALOG = "ANALOG"
    NEON = "NEON"
    CHAOS = "CHAOS"

    @property
    def rank(self) -> int:
        return SPECTRUM_ORDER.index(self)


SPECTRUM_ORDER = [
    SpectrumTexture.SILENCE,
    SpectrumTexture.ANALOG,
    SpectrumTexture.NEON,
    SpectrumTexture.CHAOS,
]


@dataclass
class ZoneTexture:
    """Static classification, recomputed when the POI snapshot changes."""
    primary: TextureType
    secondary: Optional[TextureType]
    tags: List[str] = field(default_factory=list)
    walkability: int = 0   # 0-100
    safety_score: int = 0  # 0-100
    vibe_keywords: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "primary": self.primary.value,
            "secondary": self.secondary.value if self.secondary else None,
            "tags": list(self.tags),
            "walkability": self.walkability,
            "safety_score": self.safety_score,
            "vibe_keywords": list(self.vibe_keywords),
        }


@dataclass(frozen=True)
class TextureModifier:
    """One contribution to a dynamic texture shift."""
    kind: str      # "time", "day", "incident"
    impact: float
    reason: str


@dataclass
class DynamicTexture:
    """Request-time overlay on a zone texture. Never persisted."""
    base_texture: SpectrumTexture
    current_texture: SpectrumTexture
    time_modifier: float
    day_modifier: float
    incident_modifier: float
    shift_magnitude: float
    modifiers: List[TextureModifier] = field(default_factory=list)
    confidence: float = 1.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "base_texture": self.base_texture.value,
            "current_texture": self.current_texture.value,
            "time_modifier": self.time_modifier,
            "day_modifier": self.day_modifier,
            "incident_modifier": self.incident_modifier,
            "shift_magnitude": self.shift_magnitude,
            "modifiers": [
                {"kind": m.kind, "impact": m.impact, "reason": m.reason}
                for m in self.modifiers
            ],
            "confidence": self.confidence,
        }


# ═══════════════════════════════════════════════════════════════════════════
# CONFIDENCE
# ═══════════════════════════════════════════════════════════════════════════
class ConfidenceLevel(Enum):
    HIGH = "HIGH"
    MEDIUM = "MEDIUM"
    LOW = "LOW"
    DEGRADED = "DEGRADED"
    UNKNOWN = "UNKNOWN"


class ZoneState(Enum):
    ACTIVE = "ACTIVE"
    DEGRADED = "DEGRADED"
    OFFLINE = "OFFLINE"
    UNKNOWN = "UNKNOWN"


@dataclass
class Confidence:
    """
    Decaying 0-100 trust score for a zone.

    level is derived from score on every read, so the two can never drift.
    """
    score: float
    last_verified_at: Optional[datetime] = None
    verification_count: int = 0
    decay_factor: float = 0.98
    anomaly_detected: bool = False
    anomaly_reason: Optional[str] = None
    anomaly_detected_at: Optional[datetime] = None

    @property
    def level(self) -> ConfidenceLevel:
        from zone_engine.confidence import score_to_level
        return score_to_level(self.score)

    def copy(self) -> "Confidence":
        return Confidence(
            score=self.score,
            last_verified_at=self.last_verified_at,
            verification_count=self.verification_count,
            decay_factor=self.decay_factor,
            anomaly_detected=self.anomaly_detected,
            anomaly_reason=self.anomaly_reason,
            anomaly_detected_at=self.anomaly_detected_at,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "score": self.score,
            "level": self.level.value,
            "last_verified_at": self.last_verified_at.isoformat() if self.last_verified_at else None,
            "verification_count": self.verification_count,
            "decay_factor": self.decay_factor,
            "anomaly_detected": self.anomaly_detected,
            "anomaly_reason": self.anomaly_reason,
            "anomaly_detected_at": self.anomaly_detected_at.isoformat() if self.anomaly_detected_at else None,
        }


# ═══════════════════════════════════════════════════════════════════════════
# ZONE
# ═══════════════════════════════════════════════════════════════════════════
@dataclass
class IntelAggregate:
    """Running report counters for a zone."""
    price_reports: int = 0
    hassle_reports: int = 0
    crowd_reports: int = 0
    quiet_confirmations: int = 0
    construction_reports: int = 0
    total_intel: int = 0
    last_intel_at: Optional[datetime] = None
    trust_weighted_score: float = 0.0
    hassle_score: float = 0.0          # 0-10
    local_ratio: Optional[float] = None  # 0-1, share of locals

    def to_dict(self) -> Dict[str, Any]:
        return {
            "price_reports": self.price_reports,
            "hassle_reports": self.hassle_reports,
            "crowd_reports": self.crowd_reports,
            "quiet_confirmations": self.quiet_confirmations,
            "construction_reports": self.construction_reports,
            "total_intel": self.total_intel,
            "last_intel_at": self.last_intel_at.isoformat() if self.last_intel_at else None,
            "trust_weighted_score": self.trust_weighted_score,
            "hassle_score": self.hassle_score,
            "local_ratio": self.local_ratio,
        }


@dataclass
class ZonePricing:
    coffee_local: Optional[float] = None
    coffee_tourist: Optional[float] = None
    meal_street: Optional[float] = None
    meal_restaurant: Optional[float] = None
    price_median: Optional[float] = None
    currency: str = "USD"
    price_confidence: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "coffee_local": self.coffee_local,
            "coffee_tourist": self.coffee_tourist,
            "meal_street": self.meal_street,
            "meal_restaurant": self.meal_restaurant,
            "price_median": self.price_median,
            "currency": self.currency,
            "price_confidence": self.price_confidence,
        }


@dataclass
class ZoneHazard:
    active: bool = False
    type: Optional[str] = None  # SCAM, CONSTRUCTION, UNSAFE, CLOSED, CROWD
    reason: Optional[str] = None
    expires_at: Optional[datetime] = None
    report_count: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "active": self.active,
            "type": self.type,
            "reason": self.reason,
            "expires_at": self.expires_at.isoformat() if self.expires_at else None,
            "report_count": self.report_count,
        }


@dataclass
class Zone:
    """
    A named geographic cell. Created once per city during pack generation;
    anchor, texture and confidence change over its lifetime. Zones are never
    deleted, only marked offline.
    """
    id: str
    city: str
    polygon: List[Point]
    centroid: Point
    name: str = ""
    selected_anchor: Optional[Anchor] = None
    texture: Optional[ZoneTexture] = None
    confidence: Optional[Confidence] = None
    intel: IntelAggregate = field(default_factory=IntelAggregate)
    pricing: ZonePricing = field(default_factory=ZonePricing)
    hazard: ZoneHazard = field(default_factory=ZoneHazard)
    baseline: Optional[BaselineStats] = None
    state: ZoneState = ZoneState.ACTIVE
    search_tokens: List[str] = field(default_factory=list)
    good_for_day: bool = True
    good_for_night: bool = True

    @property
    def location(self) -> Point:
        """Anchor point when one is selected, centroid otherwise."""
        if self.selected_anchor is not None:
            return self.selected_anchor.point
        return self.centroid

    @property
    def is_offline(self) -> bool:
        return self.state == ZoneState.OFFLINE

    def mark_offline(self) -> None:
        self.state = ZoneState.OFFLINE

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "city": self.city,
            "name": self.name,
            "polygon": [p.to_dict() for p in self.polygon],
            "centroid": self.centroid.to_dict(),
            "selected_anchor": self.selected_anchor.to_dict() if self.selected_anchor else None,
            "texture": self.texture.to_dict() if self.texture else None,
            "confidence": self.confidence.to_dict() if self.confidence else None,
            "intel": self.intel.to_dict(),
            "pricing": self.pricing.to_dict(),
            "hazard": self.hazard.to_dict(),
            "baseline": self.baseline.to_dict() if self.baseline else None,
            "state": self.state.value,
            "search_tokens": list(self.search_tokens),
            "good_for_day": self.good_for_day,
            "good_for_night": self.good_for_night,
        }


# ═══════════════════════════════════════════════════════════════════════════
# OBSERVATIONS & VOTES
# ═══════════════════════════════════════════════════════════════════════════
@dataclass
class Observation:
    """A user-submitted comment or report about a zone."""
    id: str
    zone_id: str
    author_id: str
    text: str
    trust_score: float = 0.0
    verified: bool = False
    verified_at: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "zone_id": self.zone_id,
            "author_id": self.author_id,
            "text": self.text,
            "trust_score": self.trust_score,
            "verified": self.verified,
            "verified_at": self.verified_at.isoformat() if self.verified_at else None,
        }


class VoteChoice(Enum):
    ACCURATE = "accurate"
    INACCURATE = "inaccurate"


@dataclass(frozen=True)
class Vote:
    """A single verification vote. One per (observation_id, voter_id)."""
    observation_id: str
    voter_id: str
    voter_karma: int
    choice: VoteChoice


# ═══════════════════════════════════════════════════════════════════════════
# CORRIDORS
# ═══════════════════════════════════════════════════════════════════════════
@dataclass(frozen=True)
class SafeCorridor:
    """A pre-scored walkable segment. Scores are 0-1."""
    id: str
    zone_id: str
    geometry: List[Point]
    vitality_score: float
    lighting_score: float
    foot_traffic_score: float
