"""
Corridor Router

Builds a safe walking return path from pre-scored corridors:
filter (offline zones, unlit corridors), rank by combined safety score,
chain the midpoints of the best corridors between start and target, and
attach warnings rather than failing.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Collection, Dict, List, Optional, Sequence

from zone_engine.geo import nearest_point, path_length_meters, polyline_midpoint
from zone_engine.models import Point, SafeCorridor
from zone_engine.settings import CorridorSettings

log = logging.getLogger(__name__)

LOW_VITALITY_WARNING = "LOW VITALITY // RECOMMEND REST STOPS"
NO_CORRIDORS_WARNING = "NO SAFE CORRIDORS AVAILABLE // PROCEED WITH CAUTION"


@dataclass(frozen=True)
class RouteConstraints:
    time_constraint_minutes: Optional[float] = None
    prefer_lit_routes: bool = False
    avoid_offline_zones: bool = True


@dataclass
class ScoredCorridor:
    corridor: SafeCorridor
    combined_score: float


@dataclass
class SafeReturnPath:
    waypoints: List[Point]
    total_distance_meters: int
    estimated_time_minutes: int
    vitality_safe: bool
    corridors_used: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)
    ranked_corridors: List[ScoredCorridor] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "waypoints": [p.to_dict() for p in self.waypoints],
            "total_distance_meters": self.total_distance_meters,
            "estimated_time_minutes": self.estimated_time_minutes,
            "vitality_safe": self.vitality_safe,
            "corridors_used": list(self.corridors_used),
            "warnings": list(self.warnings),
        }


class CorridorRouter:
    """Scores and chains safe corridors into a return path."""

    def __init__(self, settings: Optional[CorridorSettings] = None):
        self.settings = settings or CorridorSettings()

    def score_corridor(self, corridor: SafeCorridor) -> float:
        s = self.settings
        return round(
            s.vitality_weight * corridor.vitality_score
            + s.lighting_weight * corridor.lighting_score
            + s.foot_traffic_weight * corridor.foot_traffic_score,
            4,
        )

    def nearest_safe_point(self, location: Point, corridors: Sequence[SafeCorridor]) -> Point:
        """Closest vertex of any high-vitality corridor; the location itself if none."""
        candidates = [
            p
            for c in corridors
            if c.vitality_score >= self.settings.safe_point_vitality
            for p in c.geometry
        ]
        found = nearest_point(location, candidates)
        if found is None:
            return location
        return candidates[found[0]]

    def route(
        self,
        origin: Point,
        destination: Optional[Point],
        vitality: float,
        constraints: Optional[RouteConstraints] = None,
        corridors: Sequence[SafeCorridor] = (),
        offline_zone_ids: Collection[str] = (),
    ) -> SafeReturnPath:
        """
        Build a return path from origin.

        Without a destination the path ends at the nearest safe point among
        the corridors that survive filtering. A corridor in an avoided
        offline zone (or an unlit one, with prefer_lit_routes) is never the
        implicit destination either; when no safe corridor survives, the
        path ends back at the origin with the no-corridors warning.
        """
        s = self.settings
        constraints = constraints or RouteConstraints()
        offline = set(offline_zone_ids)
        warnings: List[str] = []

        available = list(corridors)
        avoided_zones = set()
        if constraints.avoid_offline_zones and offline:
            avoided_zones = {c.zone_id for c in available if c.zone_id in offline}
            available = [c for c in available if c.zone_id not in offline]
        if constraints.prefer_lit_routes:
            available = [c for c in available if c.lighting_score >= s.lit_threshold]

        # stable sort keeps input order between equal scores
        ranked = sorted(
            (ScoredCorridor(c, self.score_corridor(c)) for c in available),
            key=lambda sc: -sc.combined_score,
        )

        target = destination if destination is not None else self.nearest_safe_point(origin, available)

        waypoints = [origin]
        used = []
        for scored in ranked[:s.max_corridors]:
            midpoint = polyline_midpoint(scored.corridor.geometry)
            if midpoint is None:
                continue
            waypoints.append(midpoint)
            used.append(scored.corridor.id)
        waypoints.append(target)

        total_m = path_length_meters(waypoints)
        eta_min = total_m / 1000 / s.walking_speed_kmh * 60
        vitality_safe = vitality >= s.low_vitality or total_m < s.short_route_m

        if vitality < s.low_vitality:
            warnings.append(LOW_VITALITY_WARNING)
        limit = constraints.time_constraint_minutes
        if limit is not None and eta_min > limit:
            warnings.append(f"ETA EXCEEDS CONSTRAINT // {round(eta_min - limit)}MIN OVER")
        if not ranked:
            warnings.append(NO_CORRIDORS_WARNING)
        if avoided_zones:
            warnings.append(f"{len(avoided_zones)} OFFLINE ZONES AVOIDED")

        if warnings:
            log.info(f"Return path with {len(used)} corridors: {'; '.join(warnings)}")

        return SafeReturnPath(
            waypoints=waypoints,
            total_distance_meters=int(round(total_m)),
            estimated_time_minutes=int(round(eta_min)),
            vitality_safe=vitality_safe,
            corridors_used=used,
            warnings=warnings,
            ranked_corridors=ranked,
        )


def route(
    origin: Point,
    destination: Optional[Point],
    vitality: float,
    constraints: Optional[RouteConstraints] = None,
    corridors: Sequence[SafeCorridor] = (),
    offline_zone_ids: Collection[str] = (),
    settings: Optional[CorridorSettings] = None,
) -> SafeReturnPath:
    return CorridorRouter(settings).route(origin, destination, vitality, constraints, corridors, offline_zone_ids)


def format_safe_return_message(path: SafeReturnPath) -> str:
    """One-line HUD summary of a return path."""
    meters = path.total_distance_meters
    distance = f"{meters / 1000:.1f}KM" if meters >= 1000 else f"{meters}M"
    return f"RECOMMENDED EXTRACTION ROUTE // {distance} // ETA {path.estimated_time_minutes} MIN"


@dataclass
class PathDeviation:
    is_deviating: bool
    deviation_meters: int
    nearest_waypoint_index: int


def check_path_deviation(
    location: Point,
    waypoints: Sequence[Point],
    max_deviation_m: float = 100.0,
) -> PathDeviation:
    """How far the walker is from the closest waypoint of their path."""
    found = nearest_point(location, waypoints)
    if found is None:
        return PathDeviation(is_deviating=True, deviation_meters=0, nearest_waypoint_index=-1)
    index, distance = found
    return PathDeviation(
        is_deviating=distance > max_deviation_m,
        deviation_meters=int(round(distance)),
        nearest_waypoint_index=index,
    )
