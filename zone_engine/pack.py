"""
City pack assembly.

Builds the zones of a city in one pass: anchor, static texture and initial
confidence per zone, plus pack-level statistics and an anchor sanity check.
"""

import logging
import re
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Iterable, List, Optional

import pandas as pd

from zone_engine.anchor import (
    AnchorSanityResult,
    DEFAULT_ANCHOR_CONFIG,
    AnchorSelector,
    sanity_check_anchors,
)
from zone_engine.confidence import determine_zone_state, initialize_confidence
from zone_engine.geo import centroid
from zone_engine.models import BaselineStats, Candidate, Point, ScoringConfig, Zone, ZonePricing, ZoneState
from zone_engine.settings import ConfidenceSettings
from zone_engine.texture import classify_texture

log = logging.getLogger(__name__)

PACK_VERSION = "2.0.0"


@dataclass
class ZoneSpec:
    """Raw inputs for one zone, as harvested by the geodata collaborator."""
    id: str
    name: str
    polygon: List[Point]
    candidates: List[Candidate] = field(default_factory=list)
    baseline: Optional[BaselineStats] = None
    search_tokens: List[str] = field(default_factory=list)


@dataclass
class CityInfo:
    code: str
    name: str
    country: str = ""
    currency: str = "USD"
    timezone: str = "UTC"

    def to_dict(self) -> Dict[str, str]:
        return {
            "code": self.code,
            "name": self.name,
            "country": self.country,
            "currency": self.currency,
            "timezone": self.timezone,
        }


@dataclass
class CityPack:
    city: CityInfo
    zones: List[Zone]
    stats: Dict[str, Any]
    anchor_check: AnchorSanityResult
    generated_at: datetime
    version: str = PACK_VERSION

    def to_dict(self) -> Dict[str, Any]:
        return {
            "version": self.version,
            "generated_at": self.generated_at.isoformat(),
            "city": self.city.to_dict(),
            "zones": [z.to_dict() for z in self.zones],
            "zone_count": len(self.zones),
            "stats": dict(self.stats),
            "anchor_check": {
                "passed": self.anchor_check.passed,
                "issues": list(self.anchor_check.issues),
                "warnings": list(self.anchor_check.warnings),
            },
        }


def tokenize(*texts: str) -> List[str]:
    """Lowercased, de-duplicated word tokens in first-seen order."""
    tokens: List[str] = []
    for text in texts:
        for token in re.findall(r"[\w']+", (text or "").lower()):
            if token not in tokens:
                tokens.append(token)
    return tokens


def build_zone(
    spec: ZoneSpec,
    city_code: str,
    selector: Optional[AnchorSelector] = None,
    confidence_settings: Optional[ConfidenceSettings] = None,
    currency: str = "USD",
) -> Zone:
    """Create a zone with its anchor, texture and initial confidence."""
    selector = selector or AnchorSelector(DEFAULT_ANCHOR_CONFIG)
    anchor = selector.select(spec.polygon, spec.candidates)
    texture = classify_texture(spec.candidates, spec.baseline)
    confidence = initialize_confidence(spec.baseline or BaselineStats(), confidence_settings)

    baseline = spec.baseline
    if baseline is not None and not baseline.poi_count:
        baseline = replace(baseline, poi_count=len(spec.candidates))

    return Zone(
        id=spec.id,
        city=city_code,
        name=spec.name or spec.id,
        polygon=list(spec.polygon),
        centroid=centroid(spec.polygon),
        selected_anchor=anchor,
        texture=texture,
        confidence=confidence,
        pricing=ZonePricing(currency=currency),
        baseline=baseline,
        state=determine_zone_state(confidence.score, False, False),
        search_tokens=spec.search_tokens or tokenize(spec.name, anchor.name),
    )


def pack_stats(zones: Iterable[Zone]) -> Dict[str, Any]:
    zones = list(zones)
    scores = [z.confidence.score for z in zones if z.confidence is not None]
    return {
        "total_pois": sum(z.baseline.poi_count for z in zones if z.baseline is not None),
        "total_intel": sum(z.intel.total_intel for z in zones),
        "average_confidence": round(sum(scores) / len(scores)) if scores else 0,
        "active_zones": sum(1 for z in zones if z.state == ZoneState.ACTIVE),
        "degraded_zones": sum(1 for z in zones if z.state == ZoneState.DEGRADED),
        "offline_zones": sum(1 for z in zones if z.state == ZoneState.OFFLINE),
        "fallback_anchors": sum(1 for z in zones if z.selected_anchor and z.selected_anchor.is_synthetic),
    }


def generate_city_pack(
    city: CityInfo,
    specs: Iterable[ZoneSpec],
    cfg: ScoringConfig = DEFAULT_ANCHOR_CONFIG,
    confidence_settings: Optional[ConfidenceSettings] = None,
    clock: Optional[Callable[[], datetime]] = None,
) -> CityPack:
    """
    Generate the pack for a city.

    Zones come out in zone id order so identical inputs produce identical packs.
    """
    selector = AnchorSelector(cfg)
    zones = [
        build_zone(spec, city.code, selector, confidence_settings, city.currency)
        for spec in sorted(specs, key=lambda s: s.id)
    ]

    anchor_check = sanity_check_anchors(
        {z.id: z.selected_anchor for z in zones},
        {z.id: z.centroid for z in zones},
        max_distance_m=cfg.max_radius * 1.5,
    )
    for issue in anchor_check.issues:
        log.warning(f"[{city.code}] anchor issue: {issue}")

    stats = pack_stats(zones)
    log.info(
        f"Generated pack for {city.name}: {len(zones)} zones, "
        f"{stats['fallback_anchors']} fallback anchors, avg confidence {stats['average_confidence']}"
    )

    now = clock() if clock else datetime.now(timezone.utc)
    return CityPack(city=city, zones=zones, stats=stats, anchor_check=anchor_check, generated_at=now)


def mark_offline(zones: Iterable[Zone], zone_ids: Iterable[str]) -> List[str]:
    """Mark zones offline by id. Returns the ids that changed state."""
    wanted = set(zone_ids)
    changed = []
    for zone in zones:
        if zone.id in wanted and not zone.is_offline:
            zone.mark_offline()
            changed.append(zone.id)
    if changed:
        log.info(f"Marked {len(changed)} zones offline: {', '.join(changed)}")
    return changed


def pack_summary_frame(zones: Iterable[Zone]) -> pd.DataFrame:
    """One row per zone, for analysis and pack review."""
    rows = []
    for z in zones:
        anchor = z.selected_anchor
        rows.append({
            "zone_id": z.id,
            "name": z.name,
            "primary_texture": z.texture.primary.value if z.texture else None,
            "secondary_texture": z.texture.secondary.value if z.texture and z.texture.secondary else None,
            "anchor_name": anchor.name if anchor else None,
            "anchor_score": anchor.score if anchor else 0.0,
            "synthetic_anchor": anchor.is_synthetic if anchor else True,
            "confidence": z.confidence.score if z.confidence else None,
            "level": z.confidence.level.value if z.confidence else None,
            "state": z.state.value,
            "walkability": z.texture.walkability if z.texture else None,
            "safety_score": z.texture.safety_score if z.texture else None,
            "poi_count": z.baseline.poi_count if z.baseline else 0,
        })

    columns = [
        "zone_id", "name", "primary_texture", "secondary_texture", "anchor_name",
        "anchor_score", "synthetic_anchor", "confidence", "level", "state",
        "walkability", "safety_score", "poi_count",
    ]
    return pd.DataFrame(rows, columns=columns)
