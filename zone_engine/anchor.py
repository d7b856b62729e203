"""
Anchor Selection Module

Picks the single representative landmark ("anchor") for a zone:
- Hard exclusion of negative tags (waste, parking, substations, ...)
- Radius cut-off around the zone centroid
- Weighted multi-factor score (priority, proximity, connectivity, tag richness)
- Deterministic tie-break so packs are reproducible
- Synthetic fallback at the centroid when nothing qualifies
"""

import math
import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence, Tuple

from zone_engine.geo import centroid, haversine_meters
from zone_engine.models import (
    Anchor,
    AnchorWeights,
    Candidate,
    Point,
    ScoringConfig,
    TagMap,
)

log = logging.getLogger(__name__)

FALLBACK_REASON = "Fallback: no qualifying candidates"
PRIORITY_REASON = "Priority POI with high score"
BEST_AVAILABLE_REASON = "Best available candidate"


# ═══════════════════════════════════════════════════════════════════════════
# DEFAULT CONFIGURATION
# ═══════════════════════════════════════════════════════════════════════════
DEFAULT_ANCHOR_CONFIG = ScoringConfig(
    radii=[50, 100, 150],
    priority_tags={
        "tourism": ["artwork", "monument", "attraction", "museum"],
        "amenity": ["fountain", "clock", "marketplace"],
        "historic": ["memorial", "monument", "building", "castle"],
        "leisure": ["park", "garden"],
        "highway": ["pedestrian"],
        "railway": ["station", "halt"],
        "public_transport": ["stop_position", "platform"],
        "subway": ["entrance"],
    },
    negative_tags={
        "amenity": ["waste_disposal", "parking", "toilets"],
        "power": ["substation", "generator"],
        "landuse": ["industrial", "quarry"],
        "construction": ["yes"],
        "building": ["shed", "garage"],
    },
    weights=AnchorWeights(priority=100, proximity=50, connectivity=30, tag_richness=20),
)

# Tag keys that describe what a nameless POI is, in lookup order
DESCRIPTIVE_KEYS = ("tourism", "amenity", "historic")


ConnectivityFn = Callable[[Candidate], float]


def no_connectivity_signal(candidate: Candidate) -> float:
    """
    Connectivity hook with no road/transit graph behind it.

    Always 0.0. Replace with a graph-density scorer (0-1) when one exists.
    """
    return 0.0


# ═══════════════════════════════════════════════════════════════════════════
# TAG HELPERS
# ═══════════════════════════════════════════════════════════════════════════
def is_excluded(tags: TagMap, cfg: ScoringConfig) -> bool:
    """True if the tags hit any negative tag rule."""
    return tags.matches_any(cfg.negative_tags)


def is_priority(tags: TagMap, cfg: ScoringConfig) -> bool:
    return tags.matches_any(cfg.priority_tags)


def anchor_name(candidate: Candidate) -> str:
    """Human-readable name for a candidate, falling back to its coordinates."""
    tags = candidate.tags
    for key in ("name", "name:en", "operator"):
        value = tags.get(key)
        if value:
            return value

    where = f"{candidate.point.lat:.4f}, {candidate.point.lon:.4f}"
    for key in DESCRIPTIVE_KEYS:
        value = tags.get(key)
        if value:
            return f"{value.replace('_', ' ').title()} at {where}"
    return f"Intersection at {where}"


# ═══════════════════════════════════════════════════════════════════════════
# SELECTOR
# ═══════════════════════════════════════════════════════════════════════════
@dataclass
class ScoredCandidate:
    """A candidate that survived exclusion and the radius cut-off."""
    candidate: Candidate
    distance_m: float
    score: float
    priority: bool
    breakdown: Dict[str, float] = field(default_factory=dict)

    @property
    def sort_key(self) -> Tuple[float, float, str]:
        return (-self.score, self.distance_m, self.candidate.id)


class AnchorSelector:
    """
    Weighted anchor scorer.

    Stateless apart from its configuration, so one instance can serve
    concurrent requests.
    """

    def __init__(
        self,
        config: Optional[ScoringConfig] = None,
        connectivity_score: Optional[ConnectivityFn] = None,
    ):
        self.config = config or DEFAULT_ANCHOR_CONFIG
        self.connectivity_score = connectivity_score or no_connectivity_signal

    def score_candidate(
        self,
        candidate: Candidate,
        distance_m: float,
        detailed: bool = False,
    ) -> Any:
        """
        Score one candidate at a known distance from the centroid.

        Args:
            candidate: The POI to score
            distance_m: Distance to the zone centroid in meters
            detailed: If True, return the per-factor breakdown

        Returns:
            Total score, or a breakdown dict when detailed=True
        """
        cfg = self.config
        w = cfg.weights

        priority = 1.0 if is_priority(candidate.tags, cfg) else 0.0
        proximity = 1.0 - distance_m / cfg.max_radius
        connectivity = float(self.connectivity_score(candidate))
        richness = min(len(candidate.tags), cfg.tag_capacity) / cfg.tag_capacity

        breakdown = {
            "priority": w.priority * priority,
            "proximity": w.proximity * proximity,
            "connectivity": w.connectivity * connectivity,
            "tag_richness": w.tag_richness * richness,
        }
        total = sum(breakdown.values())

        if detailed:
            return {
                "total": total,
                "distance_m": distance_m,
                "is_priority": bool(priority),
                "breakdown": breakdown,
            }
        return total

    def rank_candidates(self, center: Point, candidates: Sequence[Candidate]) -> List[ScoredCandidate]:
        """Score every eligible candidate and return them best first."""
        cfg = self.config
        ranked = []

        for candidate in candidates:
            if is_excluded(candidate.tags, cfg):
                log.debug(f"Excluded {candidate.id}: negative tag")
                continue

            distance = haversine_meters(candidate.point, center)
            if not math.isfinite(distance) or distance > cfg.max_radius:
                continue

            detail = self.score_candidate(candidate, distance, detailed=True)
            ranked.append(ScoredCandidate(
                candidate=candidate,
                distance_m=distance,
                score=detail["total"],
                priority=detail["is_priority"],
                breakdown=detail["breakdown"],
            ))
            log.debug(f"Scored {candidate.id}: {detail['total']:.2f} at {distance:.1f}m")

        ranked.sort(key=lambda s: s.sort_key)
        return ranked

    def select(self, polygon: Sequence[Point], candidates: Sequence[Candidate]) -> Anchor:
        """Pick the anchor for a zone. Never raises for an empty candidate list."""
        center = centroid(polygon)
        ranked = self.rank_candidates(center, candidates)

        if not ranked:
            return fallback_anchor(center)

        best = ranked[0]
        return Anchor(
            candidate_id=best.candidate.id,
            point=best.candidate.point,
            name=anchor_name(best.candidate),
            tags=best.candidate.tags,
            selection_reason=PRIORITY_REASON if best.priority else BEST_AVAILABLE_REASON,
            score=round(best.score, 4),
            distance_m=round(best.distance_m, 2),
        )

    def explain(self, scored: ScoredCandidate) -> str:
        """Generate a human-readable explanation of a candidate score."""
        lines = [
            f"Candidate: {anchor_name(scored.candidate)} ({scored.candidate.id})",
            f"Score: {scored.score:.2f} at {scored.distance_m:.0f}m",
            "",
            "Factors:",
        ]
        for factor, value in sorted(scored.breakdown.items(), key=lambda kv: -kv[1]):
            lines.append(f"  {factor}: {value:+.2f}")
        if scored.priority:
            lines.append("")
            lines.append("Matches a priority landmark tag")
        return "\n".join(lines)


def fallback_anchor(center: Point) -> Anchor:
    """Synthetic anchor placed at the zone centroid."""
    log.info(f"No qualifying anchor candidates near {center.lat:.5f},{center.lon:.5f}; using centroid")
    return Anchor(
        candidate_id=f"synthetic/{center.lat:.6f}_{center.lon:.6f}",
        point=center,
        name=f"Intersection at {center.lat:.4f}, {center.lon:.4f}",
        tags=TagMap({"synthetic": "true"}),
        selection_reason=FALLBACK_REASON,
    )


def select_anchor(
    polygon: Sequence[Point],
    candidates: Sequence[Candidate],
    cfg: ScoringConfig = DEFAULT_ANCHOR_CONFIG,
    connectivity_score: ConnectivityFn = no_connectivity_signal,
) -> Anchor:
    """Select the anchor for one zone."""
    return AnchorSelector(cfg, connectivity_score).select(polygon, candidates)


# ═══════════════════════════════════════════════════════════════════════════
# BATCH SELECTION & SANITY CHECKS
# ═══════════════════════════════════════════════════════════════════════════
@dataclass
class AnchorBatchResult:
    anchors: Dict[str, Anchor]
    stats: Dict[str, Any]
    fallback_zones: List[str]


def select_anchors_for_city(
    zones: Mapping[str, Tuple[Sequence[Point], Sequence[Candidate]]],
    cfg: ScoringConfig = DEFAULT_ANCHOR_CONFIG,
    connectivity_score: ConnectivityFn = no_connectivity_signal,
) -> AnchorBatchResult:
    """
    Select anchors for every zone of a city.

    Args:
        zones: zone_id -> (polygon, candidates)
    """
    selector = AnchorSelector(cfg, connectivity_score)
    anchors: Dict[str, Anchor] = {}
    fallback_zones: List[str] = []

    for zone_id in sorted(zones):
        polygon, candidates = zones[zone_id]
        anchor = selector.select(polygon, candidates)
        anchors[zone_id] = anchor
        if anchor.is_synthetic:
            fallback_zones.append(zone_id)

    total = len(anchors)
    real_scores = [a.score for a in anchors.values() if not a.is_synthetic]
    stats = {
        "total_zones": total,
        "anchors_found": total - len(fallback_zones),
        "fallbacks_used": len(fallback_zones),
        "priority_anchors": sum(1 for a in anchors.values() if a.selection_reason == PRIORITY_REASON),
        "average_score": round(sum(real_scores) / len(real_scores), 2) if real_scores else 0.0,
    }

    log.info(
        f"Anchor selection complete: {stats['anchors_found']}/{total} found, "
        f"{stats['fallbacks_used']} fallbacks"
    )
    return AnchorBatchResult(anchors=anchors, stats=stats, fallback_zones=fallback_zones)


@dataclass
class AnchorSanityResult:
    passed: bool
    issues: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)


MAX_FALLBACK_RATIO = 0.2


def sanity_check_anchors(
    anchors: Mapping[str, Anchor],
    centroids: Mapping[str, Point],
    max_distance_m: float = DEFAULT_ANCHOR_CONFIG.max_radius * 1.5,
) -> AnchorSanityResult:
    """
    Validate a city's anchors before a pack is published.

    Missing anchors and anchors too far from their centroid are issues (fail);
    duplicate locations and a high fallback ratio are warnings.
    """
    issues: List[str] = []
    warnings: List[str] = []

    for zone_id in sorted(centroids):
        if zone_id not in anchors:
            issues.append(f"Zone {zone_id} has no anchor")

    seen: Dict[str, str] = {}
    for zone_id in sorted(anchors):
        anchor = anchors[zone_id]
        key = f"{anchor.point.lat:.5f},{anchor.point.lon:.5f}"
        if key in seen:
            warnings.append(f"Duplicate anchor location: {zone_id} and {seen[key]}")
        else:
            seen[key] = zone_id

    fallbacks = sum(1 for a in anchors.values() if a.is_synthetic)
    if anchors and fallbacks > len(anchors) * MAX_FALLBACK_RATIO:
        warnings.append(f"High fallback ratio: {fallbacks}/{len(anchors)}")

    for zone_id in sorted(anchors):
        center = centroids.get(zone_id)
        if center is None:
            continue
        distance = haversine_meters(center, anchors[zone_id].point)
        if distance > max_distance_m:
            issues.append(
                f"Anchor for {zone_id} is {round(distance)}m from zone center "
                f"(max: {max_distance_m:.0f}m)"
            )

    return AnchorSanityResult(passed=not issues, issues=issues, warnings=warnings)
