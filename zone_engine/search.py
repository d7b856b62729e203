"""
Search Ranker

Scores zones against a free-text query plus filters:

    score = 3.0 * (text_match + texture_bonus)
          + 2.0 * anchor_quality
          + 1.0 * freshness_boost
          - 1.5 * hassle_penalty
          + 1.2 * price_fit
          + 0.8 * local_ratio
          + 2.0 * distance_score

Also recommends zones without a query (rank_zones): a 0-100 blend of texture
fit, intel confidence, time of day, weather and distance. Hazardous, offline
and already visited zones are left out.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Collection, Dict, List, Mapping, Optional, Sequence, Tuple

from zone_engine.cache import TTLCache
from zone_engine.geo import haversine_km, is_valid_point
from zone_engine.models import Confidence, ConfidenceLevel, Point, TextureType, Zone, ZoneTexture
from zone_engine.settings import RecommendationWeights, SearchWeights

log = logging.getLogger(__name__)

SORT_OPTIONS = ("score", "distance", "price", "freshness")
TIME_OPTIONS = ("day", "night")


@dataclass(frozen=True)
class SearchFilters:
    """
    Optional search filters.

    Attributes:
        texture: Texture tag; matching zones get the texture bonus.
        origin: Caller location; enables distance scoring.
        radius_km: With an origin, zones farther than this are excluded.
        budget: Target price; zones priced near it score higher.
        max_price: Zones with a higher median price are excluded.
        max_hassle: Zones with a higher hassle score (0-10) are excluded.
        include_offline: Keep zones in state OFFLINE.
        time: "day" or "night"; keeps only zones flagged good for it.
        sort: One of SORT_OPTIONS.
        limit: Maximum number of results.
    """
    texture: Optional[str] = None
    origin: Optional[Point] = None
    radius_km: Optional[float] = None
    budget: Optional[float] = None
    max_price: Optional[float] = None
    max_hassle: Optional[float] = None
    include_offline: bool = False
    time: Optional[str] = None
    sort: str = "score"
    limit: Optional[int] = None

    def __post_init__(self):
        if self.sort not in SORT_OPTIONS:
            raise ValueError(f"Unknown sort '{self.sort}', expected one of {SORT_OPTIONS}")
        if self.time is not None and self.time not in TIME_OPTIONS:
            raise ValueError(f"Unknown time '{self.time}', expected one of {TIME_OPTIONS}")


@dataclass
class ScoredZone:
    zone: Zone
    score: float
    text_match: float
    texture_bonus: float
    anchor_quality: float
    price_fit: float
    hassle_penalty: float
    local_ratio: float
    distance_score: float
    distance_km: Optional[float] = None
    breakdown: Dict[str, float] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        anchor = self.zone.selected_anchor
        return {
            "zone_id": self.zone.id,
            "city": self.zone.city,
            "zone_name": self.zone.name,
            "anchor_name": anchor.name if anchor else None,
            "anchor_coords": anchor.point.to_dict() if anchor else None,
            "score": self.score,
            "texture_match": self.text_match + self.texture_bonus,
            "anchor_quality": self.anchor_quality,
            "hassle_score": self.zone.intel.hassle_score,
            "price_median": self.zone.pricing.price_median,
            "local_ratio": self.local_ratio,
            "distance_km": round(self.distance_km, 1) if self.distance_km is not None else None,
        }


def search_text(zone: Zone) -> str:
    """Lowercased text a query is matched against."""
    anchor_name = zone.selected_anchor.name if zone.selected_anchor else ""
    texture_tags = zone.texture.tags if zone.texture else []
    parts = [zone.name, anchor_name, " ".join(texture_tags), " ".join(zone.search_tokens)]
    return " ".join(p for p in parts if p).lower()


def scoring_key(zone: Zone) -> Tuple:
    """Every zone field score_zone reads. Any change to one misses the cache."""
    anchor = zone.selected_anchor
    return (
        zone.id,
        zone.state.value,
        zone.name,
        anchor.name if anchor else None,
        anchor.score if anchor else None,
        zone.location,
        tuple(zone.texture.tags) if zone.texture else None,
        tuple(zone.search_tokens),
        zone.intel.hassle_score,
        zone.intel.local_ratio,
        zone.pricing.price_median,
        zone.good_for_day,
        zone.good_for_night,
    )


class SearchRanker:
    """
    Ranks zones for a query.

    Pure apart from the optional injected cache.
    """

    def __init__(self, weights: Optional[SearchWeights] = None, cache: Optional[TTLCache] = None):
        self.weights = weights or SearchWeights()
        self.cache = cache

    def score_zone(self, query: str, zone: Zone, filters: SearchFilters) -> Optional[ScoredZone]:
        """Score one zone, or None if a filter excludes it."""
        w = self.weights

        if zone.is_offline and not filters.include_offline:
            return None
        if filters.time == "day" and not zone.good_for_day:
            return None
        if filters.time == "night" and not zone.good_for_night:
            return None
        hassle = zone.intel.hassle_score or 0.0
        if filters.max_hassle is not None and hassle > filters.max_hassle:
            return None
        price = zone.pricing.price_median
        if filters.max_price is not None and price is not None and price > filters.max_price:
            return None

        distance_km = None
        distance_score = 0.0
        if filters.origin is not None and is_valid_point(filters.origin):
            distance_km = haversine_km(filters.origin, zone.location)
            if filters.radius_km is not None and distance_km > filters.radius_km:
                return None
            distance_score = max(0.0, 1 - distance_km / w.distance_horizon_km)

        needle = query.strip().lower()
        text_match = 1.0 if needle and needle in search_text(zone) else 0.0

        texture_bonus = 0.0
        if filters.texture and zone.texture and filters.texture in zone.texture.tags:
            texture_bonus = w.texture_bonus

        anchor_score = zone.selected_anchor.score if zone.selected_anchor else 0.0
        anchor_quality = min(anchor_score / 100, 1.0)

        price_fit = 1.0
        if filters.budget is not None and price is not None:
            price_fit = max(0.0, 1 - abs(price - filters.budget) / 100)

        hassle_penalty = hassle / 10
        local_ratio = zone.intel.local_ratio if zone.intel.local_ratio is not None else w.default_local_ratio

        breakdown = {
            "text": w.text * (text_match + texture_bonus),
            "anchor": w.anchor * anchor_quality,
            "freshness": w.freshness * w.freshness_boost,
            "hassle": -w.hassle * hassle_penalty,
            "price": w.price * price_fit,
            "local": w.local * local_ratio,
            "distance": w.distance * distance_score,
        }

        return ScoredZone(
            zone=zone,
            score=round(sum(breakdown.values()), 2),
            text_match=text_match,
            texture_bonus=texture_bonus,
            anchor_quality=anchor_quality,
            price_fit=price_fit,
            hassle_penalty=hassle_penalty,
            local_ratio=local_ratio,
            distance_score=distance_score,
            distance_km=distance_km,
            breakdown=breakdown,
        )

    def _rank(self, query: str, zones: Sequence[Zone], filters: SearchFilters) -> List[ScoredZone]:
        scored = [s for s in (self.score_zone(query, z, filters) for z in zones) if s is not None]

        # sorted() is stable, so equal keys keep input order
        if filters.sort == "distance":
            scored = sorted(scored, key=lambda s: s.distance_km if s.distance_km is not None else float("inf"))
        elif filters.sort == "price":
            scored = sorted(
                scored,
                key=lambda s: s.zone.pricing.price_median if s.zone.pricing.price_median is not None else float("inf"),
            )
        else:
            # "freshness" has no recency signal yet, so it ranks like "score"
            scored = sorted(scored, key=lambda s: -s.score)

        if filters.limit is not None:
            scored = scored[:filters.limit]

        log.debug(f"Ranked {len(scored)}/{len(zones)} zones for '{query}'")
        return scored

    def rank(self, query: str, zones: Sequence[Zone], filters: Optional[SearchFilters] = None) -> List[ScoredZone]:
        filters = filters or SearchFilters()
        if self.cache is None:
            return self._rank(query, zones, filters)

        key = (query.strip().lower(), filters, tuple(scoring_key(z) for z in zones))
        return self.cache.get_or_compute(key, lambda: self._rank(query, zones, filters))


def rank(
    query: str,
    zones: Sequence[Zone],
    filters: Optional[SearchFilters] = None,
    weights: Optional[SearchWeights] = None,
) -> List[ScoredZone]:
    """Rank zones for a query, best first."""
    return SearchRanker(weights).rank(query, zones, filters)


# ═══════════════════════════════════════════════════════════════════════════
# RECOMMENDATIONS
# ═══════════════════════════════════════════════════════════════════════════
TIME_PERIODS = ("MORNING", "AFTERNOON", "EVENING", "NIGHT")

# Suitability of each texture per time period, in TIME_PERIODS order.
TIME_AFFINITY: Dict[TextureType, Tuple[int, int, int, int]] = {
    TextureType.MARKET_CHAOS: (90, 70, 40, 20),
    TextureType.TEMPLE_PEACE: (95, 80, 60, 30),
    TextureType.NIGHTLIFE_ELECTRIC: (10, 30, 80, 100),
    TextureType.CAFE_CULTURE: (90, 95, 70, 40),
    TextureType.TRANSIT_HUB: (80, 80, 80, 50),
    TextureType.TOURIST_DENSE: (70, 90, 70, 40),
    TextureType.LOCAL_AUTHENTIC: (80, 80, 85, 60),
    TextureType.PARK_REFUGE: (90, 85, 60, 20),
    TextureType.RESIDENTIAL: (60, 60, 70, 50),
    TextureType.MIXED: (70, 80, 75, 50),
}

ACTIVE_TEXTURES = (TextureType.MARKET_CHAOS, TextureType.NIGHTLIFE_ELECTRIC, TextureType.TOURIST_DENSE)
RELAXED_TEXTURES = (TextureType.TEMPLE_PEACE, TextureType.CAFE_CULTURE, TextureType.PARK_REFUGE)
OUTDOOR_TEXTURES = (TextureType.PARK_REFUGE, TextureType.MARKET_CHAOS, TextureType.TEMPLE_PEACE)
INDOOR_TEXTURES = (TextureType.CAFE_CULTURE, TextureType.NIGHTLIFE_ELECTRIC)

CONFIDENCE_LEVEL_SCORES: Dict[ConfidenceLevel, int] = {
    ConfidenceLevel.HIGH: 100,
    ConfidenceLevel.MEDIUM: 75,
    ConfidenceLevel.LOW: 50,
    ConfidenceLevel.DEGRADED: 25,
    ConfidenceLevel.UNKNOWN: 10,
}

CONFIDENCE_REASONS: Dict[ConfidenceLevel, str] = {
    ConfidenceLevel.HIGH: "Recently verified, reliable intel",
    ConfidenceLevel.MEDIUM: "Reasonably fresh intel",
    ConfidenceLevel.LOW: "Limited recent intel - verify on ground",
}
STALE_REASON = "Stale data - use caution"
ANOMALY_WARNING = "Anomaly detected - verify current conditions"

# Scores used when an input is missing
NEUTRAL_SCORE = 70
DEFAULT_TIME_SCORE = 60

# (upper bound km, score), checked in order
DISTANCE_BANDS = [(0.5, 100), (1.0, 90), (2.0, 80), (5.0, 60), (10.0, 40)]
FAR_DISTANCE_SCORE = 20


@dataclass
class UserFingerprint:
    """Texture taste of one user."""
    preferred_textures: List[TextureType] = field(default_factory=list)
    avoided_textures: List[TextureType] = field(default_factory=list)
    activity_level: str = "MODERATE"  # RELAXED, MODERATE, ACTIVE


@dataclass(frozen=True)
class WeatherModifiers:
    """
    Weather impact on zones, produced by a weather collaborator.

    Penalties and bonuses are 0-1; walkability and safety modifiers are
    point offsets applied to the zone texture scores.
    """
    walkability_modifier: float = 0.0
    safety_modifier: float = 0.0
    outdoor_penalty: float = 0.0
    indoor_bonus: float = 0.0
    cafe_boost: float = 0.0
    park_penalty: float = 0.0
    warning: Optional[str] = None
    recommendation: Optional[str] = None


@dataclass
class RecommendationContext:
    current_time: datetime
    weather: Optional[WeatherModifiers] = None
    user_location: Optional[Point] = None
    fingerprint: Optional[UserFingerprint] = None
    exclude_visited: Collection[str] = ()
    max_results: Optional[int] = None


@dataclass
class ZoneRecommendation:
    zone: Zone
    confidence: Confidence
    total_score: int
    texture_score: float
    confidence_score: float
    time_score: float
    weather_score: float
    distance_score: float
    distance_km: Optional[float] = None
    reasons: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)
    adjusted_walkability: Optional[float] = None
    adjusted_safety: Optional[float] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "zone_id": self.zone.id,
            "zone_name": self.zone.name,
            "confidence_level": self.confidence.level.value,
            "total_score": self.total_score,
            "texture_score": self.texture_score,
            "confidence_score": self.confidence_score,
            "time_score": self.time_score,
            "weather_score": self.weather_score,
            "distance_score": self.distance_score,
            "distance_km": self.distance_km,
            "reasons": list(self.reasons),
            "warnings": list(self.warnings),
            "adjusted_walkability": self.adjusted_walkability,
            "adjusted_safety": self.adjusted_safety,
        }


@dataclass
class RankerResult:
    recommendations: List[ZoneRecommendation]
    excluded: Dict[str, int]
    time_period: str
    weather_summary: Optional[str] = None
    has_fingerprint: bool = False

    @property
    def excluded_count(self) -> int:
        return sum(self.excluded.values())


def _label(texture: TextureType) -> str:
    return texture.value.lower().replace("_", " ")


def _clamp(value: float) -> float:
    return max(0.0, min(100.0, value))


def time_period(hour: int) -> str:
    if 5 <= hour < 12:
        return "MORNING"
    if 12 <= hour < 17:
        return "AFTERNOON"
    if 17 <= hour < 22:
        return "EVENING"
    return "NIGHT"


def time_score(texture: Optional[ZoneTexture], period: str) -> float:
    if texture is None or texture.primary not in TIME_AFFINITY:
        return DEFAULT_TIME_SCORE
    return TIME_AFFINITY[texture.primary][TIME_PERIODS.index(period)]


def texture_score(texture: Optional[ZoneTexture], fingerprint: Optional[UserFingerprint]) -> Tuple[float, str]:
    """How well a zone texture fits the user's fingerprint, with the reason."""
    if fingerprint is None:
        return NEUTRAL_SCORE, "General interest"
    if texture is None:
        return 50, "Mixed match with preferences"

    score = 50
    reason = ""
    if texture.primary in fingerprint.preferred_textures:
        score += 40
        reason = f"Matches your preference for {_label(texture.primary)}"
    elif texture.secondary is not None and texture.secondary in fingerprint.preferred_textures:
        score += 25
        reason = f"Secondary match: {_label(texture.secondary)}"

    if texture.primary in fingerprint.avoided_textures:
        score -= 30
        reason = reason or f"Not typically your style ({_label(texture.primary)})"

    if fingerprint.activity_level == "ACTIVE" and texture.primary in ACTIVE_TEXTURES:
        score += 10
    elif fingerprint.activity_level == "RELAXED" and texture.primary in RELAXED_TEXTURES:
        score += 10

    return _clamp(score), reason or "Mixed match with preferences"


def weather_score(texture: Optional[ZoneTexture], weather: Optional[WeatherModifiers]) -> Tuple[float, str]:
    """Weather suitability of a zone. Neutral when no weather is known."""
    if weather is None:
        return NEUTRAL_SCORE, "Weather data unavailable"

    score = 80.0
    primary = texture.primary if texture else None
    if primary in OUTDOOR_TEXTURES:
        score -= weather.outdoor_penalty * 40
        score -= weather.park_penalty * 20
    elif primary in INDOOR_TEXTURES:
        score += weather.indoor_bonus * 30
        score += weather.cafe_boost * 20

    score += weather.walkability_modifier * 0.5
    score += weather.safety_modifier * 0.5

    if weather.warning:
        reason = weather.warning
    elif score > 80:
        reason = "Great weather for this zone"
    elif score < 50:
        reason = "Weather conditions may affect experience"
    else:
        reason = "Weather acceptable"
    return _clamp(score), reason


def distance_score(center: Point, user_location: Optional[Point]) -> Tuple[float, Optional[float]]:
    """Banded proximity score and the distance in km (None without a location)."""
    if user_location is None or not is_valid_point(user_location):
        return NEUTRAL_SCORE, None

    distance = haversine_km(user_location, center)
    for limit, score in DISTANCE_BANDS:
        if distance < limit:
            return score, round(distance, 1)
    return FAR_DISTANCE_SCORE, round(distance, 1)


def confidence_score(confidence: Confidence, anomaly_penalty: float = 20.0) -> Tuple[float, str]:
    """Score a zone's intel reliability from its confidence level."""
    level = confidence.level
    score = CONFIDENCE_LEVEL_SCORES[level]
    reason = CONFIDENCE_REASONS.get(level, STALE_REASON)
    if confidence.anomaly_detected:
        score -= anomaly_penalty
        reason += " (anomaly detected)"
    return max(0.0, score), reason


def _hazard_active(zone: Zone, now: datetime) -> bool:
    hazard = zone.hazard
    if not hazard.active:
        return False
    return hazard.expires_at is None or hazard.expires_at > now


def rank_zones(
    zones: Sequence[Zone],
    confidences: Mapping[str, Confidence],
    context: RecommendationContext,
    weights: Optional[RecommendationWeights] = None,
) -> RankerResult:
    """
    Recommend zones for a moment in time, best first.

    Zones with an active hazard, offline zones and zones the user already
    visited are excluded and counted. Confidence comes from the mapping,
    then from the zone itself, then defaults to MEDIUM.

    Args:
        zones: Candidate zones
        confidences: zone_id -> current Confidence (e.g. from ConfidenceLedger.get)
        context: Time, weather, location and user preferences
        weights: Term weights
    """
    w = weights or RecommendationWeights()
    period = time_period(context.current_time.hour)
    visited = set(context.exclude_visited)
    excluded = {"offline": 0, "hazard": 0, "visited": 0}
    recommendations: List[ZoneRecommendation] = []

    for zone in zones:
        confidence = confidences.get(zone.id) or zone.confidence or Confidence(score=w.default_confidence)

        if _hazard_active(zone, context.current_time):
            excluded["hazard"] += 1
            continue
        if zone.is_offline:
            excluded["offline"] += 1
            continue
        if zone.id in visited:
            excluded["visited"] += 1
            continue

        texture = zone.texture
        tex, tex_reason = texture_score(texture, context.fingerprint)
        conf, conf_reason = confidence_score(confidence, w.anomaly_penalty)
        tod = time_score(texture, period)
        wx, _ = weather_score(texture, context.weather)
        dist, distance_km = distance_score(zone.centroid, context.user_location)

        total = tex * w.texture + conf * w.confidence + tod * w.time + wx * w.weather + dist * w.distance

        reasons = []
        if tex >= 70:
            reasons.append(tex_reason)
        if tod >= 80:
            reasons.append(f"Good for {period.lower()}")
        if conf >= 75:
            reasons.append(conf_reason)
        if not reasons:
            reasons.append("Available zone")

        warnings = []
        if confidence.level in (ConfidenceLevel.LOW, ConfidenceLevel.DEGRADED):
            warnings.append(conf_reason)
        if context.weather is not None and context.weather.warning:
            warnings.append(context.weather.warning)
        if confidence.anomaly_detected:
            warnings.append(ANOMALY_WARNING)

        adjusted_walkability = adjusted_safety = None
        if texture is not None:
            walk_delta = context.weather.walkability_modifier if context.weather else 0.0
            safety_delta = context.weather.safety_modifier if context.weather else 0.0
            adjusted_walkability = _clamp(texture.walkability + walk_delta)
            adjusted_safety = _clamp(texture.safety_score + safety_delta)

        recommendations.append(ZoneRecommendation(
            zone=zone,
            confidence=confidence,
            # half up, all terms are non-negative
            total_score=int(total + 0.5),
            texture_score=tex,
            confidence_score=conf,
            time_score=tod,
            weather_score=wx,
            distance_score=dist,
            distance_km=distance_km,
            reasons=reasons,
            warnings=warnings,
            adjusted_walkability=adjusted_walkability,
            adjusted_safety=adjusted_safety,
        ))

    # stable, so equal totals keep input order
    recommendations.sort(key=lambda r: -r.total_score)
    if context.max_results:
        recommendations = recommendations[:context.max_results]

    result = RankerResult(
        recommendations=recommendations,
        excluded=excluded,
        time_period=period,
        weather_summary=context.weather.recommendation if context.weather else None,
        has_fingerprint=context.fingerprint is not None,
    )
    log.debug(f"Recommended {len(recommendations)}/{len(zones)} zones ({result.excluded_count} excluded)")
    return result


def format_recommendation(rec: ZoneRecommendation) -> str:
    """Multi-line HUD explanation of one recommendation."""
    lines = [
        f"RECOMMENDED: {rec.reasons[0]}",
        f"INTEL: {rec.confidence.level.value} CONFIDENCE",
        f"MATCH: {rec.total_score}% (texture {rec.texture_score:.0f}, "
        f"time {rec.time_score:.0f}, weather {rec.weather_score:.0f})",
    ]
    if rec.warnings:
        lines.append(f"WARNING: {' | '.join(rec.warnings)}")
    return "\n".join(lines)
