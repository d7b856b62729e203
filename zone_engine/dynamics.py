"""
Dynamic texture shift.

Moves a zone's active texture along the SILENCE -> ANALOG -> NEON -> CHAOS
spectrum using time of day, day of week and recent incident reports.
Everything here is recomputed per request and never persisted.
"""

import math
import logging
from dataclasses import dataclass
from typing import Dict, List, Optional

from zone_engine.models import (
    DynamicTexture,
    SPECTRUM_ORDER,
    SpectrumTexture,
    TextureModifier,
    ZoneTexture,
)
from zone_engine.texture import SPECTRUM_OF

log = logging.getLogger(__name__)

# Weekday numbers as returned by datetime.weekday()
FRIDAY, SATURDAY, SUNDAY = 4, 5, 6

NIGHT_IMPACT = -0.5
MORNING_IMPACT = -0.1
EVENING_IMPACT = 0.2
WEEKEND_NIGHT_IMPACT = 0.6
INCIDENT_STEP = 0.06
INCIDENT_CEILING = 0.6

STEP_THRESHOLD = 0.5
LARGE_SHIFT_THRESHOLD = 1.0


@dataclass
class TextureContext:
    """Request-time signals for one zone."""
    hour: int
    day_of_week: int = 0
    recent_reports: int = 0
    crowd_density: float = 0.0


def _finite_or_zero(value) -> float:
    try:
        value = float(value)
    except (TypeError, ValueError):
        return 0.0
    return value if math.isfinite(value) else 0.0


def _hour(ctx: TextureContext) -> int:
    return int(_finite_or_zero(ctx.hour)) % 24


def is_night(hour: int) -> bool:
    return hour >= 22 or hour < 6


def is_daytime(hour: int) -> bool:
    return 6 <= hour < 18


def is_weekend_night(hour: int, day_of_week: int) -> bool:
    """Friday/Saturday evenings and the small hours that follow them."""
    if day_of_week in (FRIDAY, SATURDAY) and hour >= 18:
        return True
    return day_of_week in (SATURDAY, SUNDAY) and hour < 6


# ═══════════════════════════════════════════════════════════════════════════
# MODIFIERS
# ═══════════════════════════════════════════════════════════════════════════
def time_modifier(hour: int) -> Optional[TextureModifier]:
    if is_night(hour):
        return TextureModifier("time", NIGHT_IMPACT, "LATE_NIGHT // LOW ACTIVITY")
    if 6 <= hour < 10:
        return TextureModifier("time", MORNING_IMPACT, "MORNING // LOCALS ACTIVE")
    if 18 <= hour < 22:
        return TextureModifier("time", EVENING_IMPACT, "EVENING // NIGHTLIFE ACTIVE")
    return None


def day_modifier(hour: int, day_of_week: int) -> Optional[TextureModifier]:
    if is_weekend_night(hour, day_of_week):
        return TextureModifier("day", WEEKEND_NIGHT_IMPACT, "WEEKEND NIGHT // CROWDS BUILDING")
    return None


def incident_modifier(recent_reports: int) -> Optional[TextureModifier]:
    reports = max(0, int(_finite_or_zero(recent_reports)))
    if reports == 0:
        return None
    impact = min(INCIDENT_CEILING, reports * INCIDENT_STEP)
    return TextureModifier("incident", impact, f"{reports} REPORTS // HIGH ACTIVITY")


def shift_steps(net: float) -> int:
    """Signed number of spectrum steps for a net modifier."""
    magnitude = abs(net)
    if magnitude > LARGE_SHIFT_THRESHOLD:
        steps = 2
    elif magnitude >= STEP_THRESHOLD:
        steps = 1
    else:
        steps = 0
    return steps if net >= 0 else -steps


def calculate_texture_shift(base: SpectrumTexture, ctx: TextureContext) -> DynamicTexture:
    """
    Shift a spectrum texture for the current context.

    The net modifier moves the texture one step at |net| >= 0.5 and two
    steps past the large-shift threshold, clamped at the spectrum ends.
    """
    hour = _hour(ctx)
    day = int(_finite_or_zero(ctx.day_of_week)) % 7

    modifiers: List[TextureModifier] = [
        m for m in (
            time_modifier(hour),
            day_modifier(hour, day),
            incident_modifier(ctx.recent_reports),
        )
        if m is not None
    ]
    by_kind: Dict[str, float] = {m.kind: m.impact for m in modifiers}
    t_mod = by_kind.get("time", 0.0)
    d_mod = by_kind.get("day", 0.0)
    i_mod = by_kind.get("incident", 0.0)
    net = t_mod + d_mod + i_mod

    target = min(len(SPECTRUM_ORDER) - 1, max(0, base.rank + shift_steps(net)))
    current = SPECTRUM_ORDER[target]
    confidence = max(0.5, min(1.0, 1 - abs(net) * 0.3))

    if current != base:
        log.debug(f"Texture shift {base.value} -> {current.value} (net={net:+.2f})")

    return DynamicTexture(
        base_texture=base,
        current_texture=current,
        time_modifier=t_mod,
        day_modifier=d_mod,
        incident_modifier=i_mod,
        shift_magnitude=round(abs(net), 4),
        modifiers=modifiers,
        confidence=round(confidence, 4),
    )


def dynamic_texture_for_zone(texture: ZoneTexture, ctx: TextureContext) -> DynamicTexture:
    """Shift a static zone texture from its resting point on the spectrum."""
    return calculate_texture_shift(SPECTRUM_OF[texture.primary], ctx)


# ═══════════════════════════════════════════════════════════════════════════
# ALERTS
# ═══════════════════════════════════════════════════════════════════════════
@dataclass
class TextureShiftAlert:
    alert: bool
    severity: Optional[str] = None  # "high" | "medium"
    message: Optional[str] = None


def should_alert_texture_shift(previous: SpectrumTexture, current: SpectrumTexture) -> TextureShiftAlert:
    """Alert on shifts of two or more steps; adjacent shifts stay silent."""
    shift = current.rank - previous.rank
    distance = abs(shift)
    if distance < 2:
        return TextureShiftAlert(alert=False)

    label = f"TEXTURE SHIFT: {previous.value} -> {current.value}"
    severity = "high" if distance >= len(SPECTRUM_ORDER) - 1 else "medium"

    if shift > 0:
        detail = "EXTREME VOLATILITY" if severity == "high" else "ATMOSPHERE VOLATILE"
    else:
        detail = "ZONE QUIETING // calming rapidly" if severity == "high" else "ZONE QUIETING // calming"

    return TextureShiftAlert(alert=True, severity=severity, message=f"{label} // {detail}")


# ═══════════════════════════════════════════════════════════════════════════
# VITALITY
# ═══════════════════════════════════════════════════════════════════════════
VITALITY_BASE: Dict[SpectrumTexture, float] = {
    SpectrumTexture.SILENCE: 8.0,
    SpectrumTexture.ANALOG: 7.0,
    SpectrumTexture.NEON: 5.5,
    SpectrumTexture.CHAOS: 4.0,
}

REPORT_PENALTY = 0.3
MAX_REPORT_PENALTY = 3.0
CROWD_PENALTY = 2.0


def calculate_vitality(texture: SpectrumTexture, ctx: TextureContext) -> float:
    """
    Vitality (0-10) of a zone in its current texture.

    Always within [0, 10], whatever the inputs: negative report counts and
    non-finite values count as zero, crowd density above 1 just hits the floor.
    """
    hour = _hour(ctx)
    reports = max(0.0, _finite_or_zero(ctx.recent_reports))
    crowd = max(0.0, _finite_or_zero(ctx.crowd_density))

    vitality = VITALITY_BASE[texture]
    vitality -= min(MAX_REPORT_PENALTY, reports * REPORT_PENALTY)
    vitality -= CROWD_PENALTY * crowd
    if is_daytime(hour):
        vitality += 1.0
    elif is_night(hour):
        vitality -= 1.0

    return round(max(0.0, min(10.0, vitality)), 2)


# ═══════════════════════════════════════════════════════════════════════════
# SPECTRUM CHARACTERISTICS
# ═══════════════════════════════════════════════════════════════════════════
SPECTRUM_CHARACTERISTICS: Dict[SpectrumTexture, Dict] = {
    SpectrumTexture.SILENCE: {
        "crowd_level": "low",
        "noise_level": "quiet",
        "recommended_modes": ["SAFE_OPS", "DEEP_OPS"],
    },
    SpectrumTexture.ANALOG: {
        "crowd_level": "medium",
        "noise_level": "moderate",
        "recommended_modes": ["STANDARD", "DEEP_OPS"],
    },
    SpectrumTexture.NEON: {
        "crowd_level": "high",
        "noise_level": "loud",
        "recommended_modes": ["FAST_OPS", "STANDARD"],
    },
    SpectrumTexture.CHAOS: {
        "crowd_level": "variable",
        "noise_level": "loud",
        "recommended_modes": ["FAST_OPS"],
    },
}


def recommended_mode(texture: SpectrumTexture) -> str:
    return SPECTRUM_CHARACTERISTICS[texture]["recommended_modes"][0]
