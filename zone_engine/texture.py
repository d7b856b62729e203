"""
Static Texture Classification

Derives a zone's baseline character from its point-of-interest mix:
- POI type histogram from raw OSM tags
- Ordered threshold cascade for the primary texture (first match wins)
- Secondary texture from lower thresholds
- Walkability and safety scores from baseline statistics
"""

import logging
from collections import Counter
from dataclasses import dataclass
from typing import Callable, Dict, List, Mapping, Optional, Sequence

from zone_engine.models import (
    BaselineStats,
    Candidate,
    SpectrumTexture,
    TagMap,
    TextureType,
    ZoneTexture,
)

log = logging.getLogger(__name__)


# ═══════════════════════════════════════════════════════════════════════════
# POI TYPES
# ═══════════════════════════════════════════════════════════════════════════
def classify_poi_type(tags: Mapping[str, str]) -> Optional[str]:
    """
    Map OSM tags to a histogram category.

    Returns None for POIs that don't contribute to texture.
    """
    tags = tags if isinstance(tags, TagMap) else TagMap(tags)
    amenity = tags.get("amenity")
    shop = tags.get("shop")
    tourism = tags.get("tourism")
    leisure = tags.get("leisure")
    highway = tags.get("highway")

    if amenity == "cafe":
        return "cafe"
    if amenity in ("restaurant", "fast_food"):
        return "restaurant"
    if amenity in ("bar", "pub", "nightclub"):
        return "bar"
    if amenity == "marketplace" or shop == "supermarket":
        return "market"
    if shop == "convenience":
        return "convenience"
    if leisure in ("park", "garden"):
        return "park"
    if amenity == "place_of_worship":
        return "temple"
    if tourism == "museum":
        return "museum"
    if tourism in ("hotel", "hostel", "guest_house"):
        return "hotel"
    if amenity == "pharmacy":
        return "pharmacy"
    if amenity == "atm":
        return "atm"
    if tags.has("public_transport") or tags.has("railway") or highway == "bus_stop":
        return "transit_stop"
    if tags.has("historic"):
        return "landmark"
    if tourism == "artwork":
        return "artwork"
    if amenity == "fountain":
        return "fountain"
    if tags.get("place") == "square" or (highway == "pedestrian" and tags.get("area") == "yes"):
        return "plaza"
    return None


def poi_histogram(pois: Sequence[Candidate]) -> Dict[str, int]:
    """Count POIs per category. Unclassified POIs are not counted."""
    counts = Counter()
    for poi in pois:
        poi_type = classify_poi_type(poi.tags)
        if poi_type:
            counts[poi_type] += 1
    return dict(counts)


# Histogram categories folded into each cascade ratio
RATIO_GROUPS: Dict[str, List[str]] = {
    "market": ["market", "convenience"],
    "bar": ["bar"],
    "cafe": ["cafe"],
    "temple": ["temple"],
    "park": ["park"],
    "transit": ["transit_stop"],
    "tourist": ["hotel", "landmark", "museum"],
}


def texture_ratios(histogram: Mapping[str, int], total: int) -> Dict[str, float]:
    """Share of each ratio group. total floors at 1."""
    denom = max(total, 1)
    return {
        group: sum(histogram.get(t, 0) for t in members) / denom
        for group, members in RATIO_GROUPS.items()
    }


# ═══════════════════════════════════════════════════════════════════════════
# CLASSIFICATION RULES
# ═══════════════════════════════════════════════════════════════════════════
RulePredicate = Callable[[Dict[str, float], Optional[BaselineStats]], bool]


@dataclass(frozen=True)
class TextureRule:
    texture: TextureType
    predicate: RulePredicate
    description: str = ""


def _ratio_above(group: str, threshold: float) -> RulePredicate:
    return lambda ratios, baseline: ratios.get(group, 0.0) > threshold


# Evaluated top to bottom; the first matching rule decides the primary texture.
TEXTURE_RULES: List[TextureRule] = [
    TextureRule(TextureType.MARKET_CHAOS, _ratio_above("market", 0.30), "market > 30%"),
    TextureRule(TextureType.NIGHTLIFE_ELECTRIC, _ratio_above("bar", 0.25), "bar > 25%"),
    TextureRule(TextureType.CAFE_CULTURE, _ratio_above("cafe", 0.25), "cafe > 25%"),
    TextureRule(TextureType.TEMPLE_PEACE, _ratio_above("temple", 0.15), "temple > 15%"),
    TextureRule(TextureType.PARK_REFUGE, _ratio_above("park", 0.20), "park > 20%"),
    TextureRule(TextureType.TRANSIT_HUB, _ratio_above("transit", 0.15), "transit > 15%"),
    TextureRule(TextureType.TOURIST_DENSE, _ratio_above("tourist", 0.20), "tourist > 20%"),
    TextureRule(
        TextureType.RESIDENTIAL,
        lambda ratios, baseline: baseline is not None and baseline.poi_density < 20,
        "sparse POI density",
    ),
    TextureRule(
        TextureType.LOCAL_AUTHENTIC,
        lambda ratios, baseline: baseline is not None,
        "dense, no dominant type",
    ),
    TextureRule(TextureType.MIXED, lambda ratios, baseline: True, "no baseline"),
]

SECONDARY_RULES: List[TextureRule] = [
    TextureRule(TextureType.CAFE_CULTURE, _ratio_above("cafe", 0.15), "cafe > 15%"),
    TextureRule(TextureType.NIGHTLIFE_ELECTRIC, _ratio_above("bar", 0.10), "bar > 10%"),
    TextureRule(TextureType.MARKET_CHAOS, _ratio_above("market", 0.15), "market > 15%"),
]


def first_match(
    rules: Sequence[TextureRule],
    ratios: Dict[str, float],
    baseline: Optional[BaselineStats],
    exclude: Optional[TextureType] = None,
) -> Optional[TextureType]:
    for rule in rules:
        if rule.texture == exclude:
            continue
        if rule.predicate(ratios, baseline):
            return rule.texture
    return None


# ═══════════════════════════════════════════════════════════════════════════
# TEXTURE PROFILES (display & search data)
# ═══════════════════════════════════════════════════════════════════════════
@dataclass(frozen=True)
class TextureProfile:
    tags: List[str]
    vibe_keywords: List[str]


TEXTURE_PROFILES: Dict[TextureType, TextureProfile] = {
    TextureType.MARKET_CHAOS: TextureProfile(
        tags=["market", "shopping", "local"],
        vibe_keywords=["bustling", "bargains", "crowded", "authentic"],
    ),
    TextureType.NIGHTLIFE_ELECTRIC: TextureProfile(
        tags=["nightlife", "bars", "clubs"],
        vibe_keywords=["vibrant", "late-night", "social", "energetic"],
    ),
    TextureType.CAFE_CULTURE: TextureProfile(
        tags=["cafes", "coffee", "digital-nomad"],
        vibe_keywords=["relaxed", "wifi", "work-friendly", "cozy"],
    ),
    TextureType.TEMPLE_PEACE: TextureProfile(
        tags=["temples", "historic", "cultural"],
        vibe_keywords=["serene", "spiritual", "quiet", "historic"],
    ),
    TextureType.PARK_REFUGE: TextureProfile(
        tags=["parks", "nature", "walking"],
        vibe_keywords=["green", "peaceful", "outdoor", "escape"],
    ),
    TextureType.TRANSIT_HUB: TextureProfile(
        tags=["transit", "central", "accessible"],
        vibe_keywords=["connected", "busy", "convenient", "central"],
    ),
    TextureType.TOURIST_DENSE: TextureProfile(
        tags=["tourist", "sightseeing", "hotels"],
        vibe_keywords=["touristy", "landmarks", "crowded", "expensive"],
    ),
    TextureType.RESIDENTIAL: TextureProfile(
        tags=["residential", "local", "quiet"],
        vibe_keywords=["quiet", "local", "authentic", "residential"],
    ),
    TextureType.LOCAL_AUTHENTIC: TextureProfile(
        tags=["local", "authentic", "neighborhood"],
        vibe_keywords=["authentic", "local", "everyday", "genuine"],
    ),
    TextureType.MIXED: TextureProfile(tags=["mixed"], vibe_keywords=["varied"]),
}

# Resting point of each zone texture on the SILENCE..CHAOS spectrum
SPECTRUM_OF: Dict[TextureType, SpectrumTexture] = {
    TextureType.MARKET_CHAOS: SpectrumTexture.CHAOS,
    TextureType.NIGHTLIFE_ELECTRIC: SpectrumTexture.NEON,
    TextureType.CAFE_CULTURE: SpectrumTexture.ANALOG,
    TextureType.TEMPLE_PEACE: SpectrumTexture.SILENCE,
    TextureType.PARK_REFUGE: SpectrumTexture.SILENCE,
    TextureType.TRANSIT_HUB: SpectrumTexture.NEON,
    TextureType.TOURIST_DENSE: SpectrumTexture.NEON,
    TextureType.RESIDENTIAL: SpectrumTexture.SILENCE,
    TextureType.LOCAL_AUTHENTIC: SpectrumTexture.ANALOG,
    TextureType.MIXED: SpectrumTexture.ANALOG,
}


# ═══════════════════════════════════════════════════════════════════════════
# SCORES
# ═══════════════════════════════════════════════════════════════════════════
def _clamp_score(value: float) -> int:
    return int(round(max(0.0, min(100.0, value))))


def walkability_score(baseline: BaselineStats) -> int:
    return _clamp_score(
        0.5 * baseline.pedestrian_score
        + 30 * baseline.lighting_density
        + 0.2 * min(baseline.poi_density, 100)
    )


def safety_score(baseline: BaselineStats, histogram: Mapping[str, int]) -> int:
    has_essentials = histogram.get("pharmacy", 0) > 0 or histogram.get("convenience", 0) > 0
    return _clamp_score(
        40 * baseline.lighting_density
        + 0.3 * baseline.transit_access
        + (20 if baseline.pedestrian_score > 50 else 10)
        + (10 if has_essentials else 0)
    )


def classify_texture(pois: Sequence[Candidate], baseline: Optional[BaselineStats] = None) -> ZoneTexture:
    """
    Classify a zone from its POIs and baseline statistics.

    Pure function of its input. Without a baseline the cascade can only end
    in MIXED, and the scores are computed from zeroed statistics.
    """
    histogram = poi_histogram(pois)
    ratios = texture_ratios(histogram, len(pois))

    primary = first_match(TEXTURE_RULES, ratios, baseline)
    secondary = first_match(SECONDARY_RULES, ratios, baseline, exclude=primary)

    stats = baseline or BaselineStats()
    profile = TEXTURE_PROFILES[primary]

    log.debug(f"Classified {len(pois)} POIs as {primary.value} (secondary={secondary})")
    return ZoneTexture(
        primary=primary,
        secondary=secondary,
        tags=list(profile.tags),
        walkability=walkability_score(stats),
        safety_score=safety_score(stats, histogram),
        vibe_keywords=list(profile.vibe_keywords),
    )
