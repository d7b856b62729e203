"""
Zone Intelligence Engine.
Anchor selection, texture classification, confidence & consensus, and ranking
for city zones.
"""

from zone_engine.models import (
    Anchor,
    BaselineStats,
    Candidate,
    Confidence,
    ConfidenceLevel,
    DynamicTexture,
    Observation,
    Point,
    SafeCorridor,
    ScoringConfig,
    SpectrumTexture,
    TagMap,
    TextureType,
    Vote,
    VoteChoice,
    Zone,
    ZoneState,
    ZoneTexture,
)
from zone_engine.geo import centroid, haversine_km, haversine_meters
from zone_engine.anchor import DEFAULT_ANCHOR_CONFIG, AnchorSelector, select_anchor
from zone_engine.texture import classify_texture
from zone_engine.dynamics import (
    TextureContext,
    calculate_texture_shift,
    calculate_vitality,
    should_alert_texture_shift,
)
from zone_engine.confidence import ConfidenceLedger, initialize_confidence, score_to_level
from zone_engine.consensus import VoteLedger, VoteStatus, get_vote_ledger
from zone_engine.search import RecommendationContext, SearchFilters, SearchRanker, rank, rank_zones
from zone_engine.corridor import CorridorRouter, RouteConstraints, route
from zone_engine.settings import EngineSettings, load_settings
from zone_engine.cache import TTLCache

__all__ = [
    # Models
    "Anchor",
    "BaselineStats",
    "Candidate",
    "Confidence",
    "ConfidenceLevel",
    "DynamicTexture",
    "Observation",
    "Point",
    "SafeCorridor",
    "ScoringConfig",
    "SpectrumTexture",
    "TagMap",
    "TextureType",
    "Vote",
    "VoteChoice",
    "Zone",
    "ZoneState",
    "ZoneTexture",
    # Geo
    "centroid",
    "haversine_km",
    "haversine_meters",
    # Anchors & texture
    "DEFAULT_ANCHOR_CONFIG",
    "AnchorSelector",
    "select_anchor",
    "classify_texture",
    "TextureContext",
    "calculate_texture_shift",
    "calculate_vitality",
    "should_alert_texture_shift",
    # Trust
    "ConfidenceLedger",
    "initialize_confidence",
    "score_to_level",
    "VoteLedger",
    "VoteStatus",
    "get_vote_ledger",
    # Ranking
    "SearchFilters",
    "SearchRanker",
    "rank",
    "RecommendationContext",
    "rank_zones",
    "CorridorRouter",
    "RouteConstraints",
    "route",
    # Settings
    "EngineSettings",
    "load_settings",
    "TTLCache",
]
