"""
Engine settings.

Every tunable constant of the trust model and the ranking engines, with its
meaning spelled out. Settings load from a JSON file so deployments can tune
weights without code changes.
"""

import json
import logging
import os
from dataclasses import asdict, dataclass, field, fields
from typing import Any, Dict, Optional

log = logging.getLogger(__name__)

CONFIG_ENV_VAR = "ZONE_ENGINE_CONFIG"


def _strict_from_dict(cls, data: Dict[str, Any]):
    known = {f.name for f in fields(cls)}
    unknown = set(data) - known
    if unknown:
        raise ValueError(f"Unknown {cls.__name__} keys: {', '.join(sorted(unknown))}")
    return cls(**data)


# ═══════════════════════════════════════════════════════════════════════════
# CONSENSUS
# ═══════════════════════════════════════════════════════════════════════════
@dataclass
class ConsensusSettings:
    karma_per_level: int = 200
    """Karma needed per voter level. Level = karma // karma_per_level + 1."""

    min_voter_level: int = 2
    """Votes from voters below this level are rejected outright."""

    karma_weight_divisor: float = 1000.0
    """Vote weight grows by 1 per this much karma..."""

    max_vote_weight: float = 2.0
    """...up to this cap."""

    trust_per_weight: float = 10.0
    """Trust points added per unit of vote weight."""

    auto_verify_voters: int = 3
    """Distinct accurate voters needed to auto-verify an observation."""

    trust_verify_threshold: float = 20.0
    """Trust score above which an observation counts as verified anyway."""

    consensus_karma_reward: int = 15
    """Karma paid to the voter whose vote triggers consensus."""

    vote_karma_reward: int = 5
    """Karma paid for every other accepted vote."""

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ConsensusSettings":
        return _strict_from_dict(cls, data)


# ═══════════════════════════════════════════════════════════════════════════
# CONFIDENCE
# ═══════════════════════════════════════════════════════════════════════════
@dataclass
class ConfidenceSettings:
    initial_cap: float = 75.0
    """Highest score a zone can start with. Below HIGH, so HIGH must be earned."""

    decay_factor: float = 0.98
    """Daily multiplier applied to unverified zones."""

    decay_floor: float = 20.0
    """Decay never pushes a score below this."""

    decay_grace_hours: float = 24.0
    """Zones verified within this many hours skip the daily decay."""

    intel_boost_base: float = 5.0
    """Points per intel report before multipliers."""

    intel_boost_max: float = 15.0
    """Cap on the boost from a single report."""

    min_trust_weight: float = 0.3
    max_trust_weight: float = 1.5

    hazard_threshold_reports: int = 2
    """Hazard reports within the window that put a zone offline."""

    hazard_window_hours: float = 24.0
    hazard_duration_days: float = 7.0

    anomaly_penalty: float = 10.0
    """Default score penalty when an anomaly is flagged."""

    anomaly_resolve_hours: float = 48.0
    """The decay pass clears anomalies older than this."""

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ConfidenceSettings":
        return _strict_from_dict(cls, data)


# ═══════════════════════════════════════════════════════════════════════════
# RANKING
# ═══════════════════════════════════════════════════════════════════════════
@dataclass
class SearchWeights:
    text: float = 3.0
    """Applied to (text match + texture bonus)."""

    anchor: float = 2.0
    freshness: float = 1.0
    hassle: float = 1.5
    """Subtracted, applied to hassle score / 10."""

    price: float = 1.2
    local: float = 0.8
    distance: float = 2.0

    texture_bonus: float = 1.5
    """Added to the text term when the zone texture matches a texture filter."""

    freshness_boost: float = 0.5
    """Constant freshness signal; no recency data feeds it yet."""

    distance_horizon_km: float = 50.0
    """Distance at which the distance score reaches zero."""

    default_local_ratio: float = 0.5
    """Local ratio assumed for zones without one."""

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SearchWeights":
        return _strict_from_dict(cls, data)


@dataclass
class RecommendationWeights:
    texture: float = 0.30
    """Fit between zone texture and the user fingerprint."""

    confidence: float = 0.25
    """Freshness and reliability of the zone's intel."""

    time: float = 0.15
    weather: float = 0.15
    distance: float = 0.15

    anomaly_penalty: float = 20.0
    """Subtracted from the confidence term when a zone has an open anomaly."""

    default_confidence: float = 60.0
    """Score assumed for zones with no confidence record (MEDIUM)."""

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "RecommendationWeights":
        return _strict_from_dict(cls, data)


@dataclass
class CorridorSettings:
    vitality_weight: float = 0.4
    lighting_weight: float = 0.3
    foot_traffic_weight: float = 0.3

    max_corridors: int = 3
    """Corridors chained into a return path."""

    walking_speed_kmh: float = 4.5

    lit_threshold: float = 0.5
    """Minimum lighting score when lit routes are preferred."""

    safe_point_vitality: float = 0.6
    """Corridor vitality required to serve as an implicit destination."""

    low_vitality: float = 30.0
    """Caller vitality below this triggers the low-vitality warning."""

    short_route_m: float = 500.0
    """Routes shorter than this are safe at any vitality."""

    max_deviation_m: float = 100.0

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "CorridorSettings":
        return _strict_from_dict(cls, data)


# ═══════════════════════════════════════════════════════════════════════════
# ENGINE
# ═══════════════════════════════════════════════════════════════════════════
@dataclass
class EngineSettings:
    consensus: ConsensusSettings = field(default_factory=ConsensusSettings)
    confidence: ConfidenceSettings = field(default_factory=ConfidenceSettings)
    search: SearchWeights = field(default_factory=SearchWeights)
    recommendation: RecommendationWeights = field(default_factory=RecommendationWeights)
    corridor: CorridorSettings = field(default_factory=CorridorSettings)

    def to_dict(self) -> Dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict) -> "EngineSettings":
        sections = {
            "consensus": ConsensusSettings,
            "confidence": ConfidenceSettings,
            "search": SearchWeights,
            "recommendation": RecommendationWeights,
            "corridor": CorridorSettings,
        }
        unknown = set(data) - set(sections)
        if unknown:
            raise ValueError(f"Unknown settings sections: {', '.join(sorted(unknown))}")
        return cls(**{
            name: section.from_dict(data[name])
            for name, section in sections.items()
            if name in data
        })


def load_settings(path: Optional[str] = None) -> EngineSettings:
    """
    Load settings from a JSON file.

    Falls back to $ZONE_ENGINE_CONFIG, then to defaults. Sections and keys
    left out of the file keep their defaults.
    """
    path = path or os.environ.get(CONFIG_ENV_VAR)
    if not path:
        return EngineSettings()

    with open(path, "r") as f:
        data = json.load(f)

    settings = EngineSettings.from_dict(data)
    log.info(f"Loaded engine settings from {path}")
    return settings
