"""
Zone Confidence Model

Maintains a decaying 0-100 trust score per zone:
- Initial score from baseline statistics (capped below HIGH)
- Boosts from trust-weighted intel reports, with diminishing returns
- Hazard aggregation that takes a zone offline
- Daily multiplicative decay, at most once per zone per calendar day
- Anomaly flags as the only manual score override, auto-resolved by the
  decay pass once they are older than 48h

ConfidenceLedger is the single owner of the mutable per-zone records.
Every mutation of a zone happens under that zone's lock and is returned to
the caller as a ConfidenceUpdate delta for persistence.
"""

import logging
import threading
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta, timezone
from enum import Enum
from typing import Callable, Dict, List, Optional, Tuple

from zone_engine.models import BaselineStats, Confidence, ConfidenceLevel, ZoneState
from zone_engine.settings import ConfidenceSettings

log = logging.getLogger(__name__)


# ═══════════════════════════════════════════════════════════════════════════
# LEVELS & STATE
# ═══════════════════════════════════════════════════════════════════════════
# Checked in order; the first threshold the score reaches wins.
LEVEL_THRESHOLDS: List[Tuple[float, ConfidenceLevel]] = [
    (80.0, ConfidenceLevel.HIGH),
    (60.0, ConfidenceLevel.MEDIUM),
    (40.0, ConfidenceLevel.LOW),
    (20.0, ConfidenceLevel.DEGRADED),
]

DEGRADED_THRESHOLD = 20.0


def score_to_level(score: float) -> ConfidenceLevel:
    for threshold, level in LEVEL_THRESHOLDS:
        if score >= threshold:
            return level
    return ConfidenceLevel.UNKNOWN


def determine_zone_state(score: float, hazard_active: bool, anomaly_detected: bool) -> ZoneState:
    if hazard_active:
        return ZoneState.OFFLINE
    if score < DEGRADED_THRESHOLD or anomaly_detected:
        return ZoneState.DEGRADED
    return ZoneState.ACTIVE


def initialize_confidence(baseline: BaselineStats, settings: Optional[ConfidenceSettings] = None) -> Confidence:
    """Starting confidence for a new zone. Never reaches HIGH."""
    settings = settings or ConfidenceSettings()
    raw = (
        30
        + min(30.0, baseline.poi_density)
        + 20 * baseline.lighting_density
        + 0.2 * baseline.transit_access
    )
    score = max(0.0, min(settings.initial_cap, raw))
    return Confidence(score=round(score, 2), decay_factor=settings.decay_factor)


# ═══════════════════════════════════════════════════════════════════════════
# INTEL
# ═══════════════════════════════════════════════════════════════════════════
class IntelType(Enum):
    VERIFICATION = "VERIFICATION"
    PRICE_SUBMISSION = "PRICE_SUBMISSION"
    QUIET_CONFIRMED = "QUIET_CONFIRMED"
    CROWD_SURGE = "CROWD_SURGE"
    HASSLE_REPORT = "HASSLE_REPORT"
    CONSTRUCTION = "CONSTRUCTION"
    HAZARD_REPORT = "HAZARD_REPORT"


INTEL_TYPE_MULTIPLIERS: Dict[IntelType, float] = {
    IntelType.VERIFICATION: 1.5,
    IntelType.PRICE_SUBMISSION: 1.0,
    IntelType.QUIET_CONFIRMED: 0.8,
    IntelType.CROWD_SURGE: 0.7,
    IntelType.HASSLE_REPORT: 0.6,
    IntelType.CONSTRUCTION: 0.5,
    IntelType.HAZARD_REPORT: 0.0,  # hazards never boost confidence
}


def calculate_intel_boost(
    intel_type: IntelType,
    trust_weight: float,
    recent_intel_count: int,
    settings: Optional[ConfidenceSettings] = None,
) -> float:
    """
    Confidence points earned by one intel report.

    Args:
        intel_type: Kind of report
        trust_weight: Reporter trust, clamped to [min, max] trust weight
        recent_intel_count: Reports already received for the zone in 24h
    """
    settings = settings or ConfidenceSettings()
    base = settings.intel_boost_base * INTEL_TYPE_MULTIPLIERS[intel_type]
    weight = max(settings.min_trust_weight, min(settings.max_trust_weight, trust_weight))
    diminishing = max(0.2, 1 - max(0, recent_intel_count) * 0.15)
    return min(settings.intel_boost_max, base * weight * diminishing)


@dataclass
class IntelReport:
    """A field report about a zone, with the reporter's trust already resolved."""
    intel_type: IntelType
    trust_weight: float = 1.0
    submitted_at: Optional[datetime] = None


# ═══════════════════════════════════════════════════════════════════════════
# LEDGER
# ═══════════════════════════════════════════════════════════════════════════
@dataclass
class ConfidenceUpdate:
    """
    "Apply this delta to this zone" for the persistence layer.

    applied=False means nothing changed (e.g. decay already ran today).
    """
    zone_id: str
    previous: Confidence
    current: Confidence
    reason: str
    applied: bool = True
    state: ZoneState = ZoneState.ACTIVE
    anomaly_resolved: bool = False

    @property
    def delta(self) -> float:
        return self.current.score - self.previous.score

    def to_dict(self) -> Dict:
        return {
            "zone_id": self.zone_id,
            "previous": self.previous.to_dict(),
            "current": self.current.to_dict(),
            "reason": self.reason,
            "applied": self.applied,
            "state": self.state.value,
            "delta": round(self.delta, 4),
            "anomaly_resolved": self.anomaly_resolved,
        }


@dataclass
class DecayReport:
    day: date
    decayed: int = 0
    skipped: int = 0
    anomalies_resolved: int = 0
    updates: List[ConfidenceUpdate] = field(default_factory=list)


@dataclass
class _ZoneRecord:
    confidence: Confidence
    lock: threading.Lock = field(default_factory=threading.Lock)
    last_decay_day: Optional[date] = None
    intel_times: List[datetime] = field(default_factory=list)
    hazard_times: List[datetime] = field(default_factory=list)
    hazard_active: bool = False
    hazard_expires_at: Optional[datetime] = None


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ConfidenceLedger:
    """
    Thread-safe registry of per-zone confidence.

    Votes, intel and the decay job may race; each zone record has its own
    lock, so updates to one zone are serialized while different zones
    proceed in parallel. Reads return copies.

    Usage:
        ledger = ConfidenceLedger()
        ledger.register_zone("bkk-001", initialize_confidence(baseline))
        ledger.record_intel("bkk-001", IntelReport(IntelType.VERIFICATION, 1.2))
        report = ledger.run_daily_decay()
    """

    def __init__(
        self,
        settings: Optional[ConfidenceSettings] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.settings = settings or ConfidenceSettings()
        self._clock = clock or _utcnow
        self._lock = threading.RLock()
        self._records: Dict[str, _ZoneRecord] = {}

    # ───────────────────────────────────────────────────────────────────────
    # Registry
    # ───────────────────────────────────────────────────────────────────────
    def register_zone(self, zone_id: str, confidence: Confidence) -> None:
        with self._lock:
            if zone_id in self._records:
                raise ValueError(f"Zone {zone_id} is already registered")
            self._records[zone_id] = _ZoneRecord(confidence=confidence.copy())
        log.debug(f"Registered zone {zone_id} at {confidence.score:.1f}")

    def _record(self, zone_id: str) -> _ZoneRecord:
        with self._lock:
            try:
                return self._records[zone_id]
            except KeyError:
                raise KeyError(f"Zone {zone_id} is not registered") from None

    def zone_ids(self) -> List[str]:
        with self._lock:
            return sorted(self._records)

    def get(self, zone_id: str) -> Confidence:
        record = self._record(zone_id)
        with record.lock:
            return record.confidence.copy()

    def zone_state(self, zone_id: str) -> ZoneState:
        record = self._record(zone_id)
        with record.lock:
            self._expire_hazard(record, self._clock())
            return self._state_of(record)

    def hazard_expires_at(self, zone_id: str) -> Optional[datetime]:
        record = self._record(zone_id)
        with record.lock:
            return record.hazard_expires_at if record.hazard_active else None

    # ───────────────────────────────────────────────────────────────────────
    # Helpers (caller holds record.lock)
    # ───────────────────────────────────────────────────────────────────────
    def _state_of(self, record: _ZoneRecord) -> ZoneState:
        c = record.confidence
        return determine_zone_state(c.score, record.hazard_active, c.anomaly_detected)

    def _expire_hazard(self, record: _ZoneRecord, now: datetime) -> None:
        if record.hazard_active and record.hazard_expires_at and record.hazard_expires_at <= now:
            record.hazard_active = False
            record.hazard_expires_at = None
            record.hazard_times.clear()

    def _expire_anomaly(self, zone_id: str, record: _ZoneRecord, now: datetime) -> bool:
        c = record.confidence
        if not c.anomaly_detected or c.anomaly_detected_at is None:
            return False
        if now - c.anomaly_detected_at < timedelta(hours=self.settings.anomaly_resolve_hours):
            return False
        log.info(f"Auto-resolved anomaly on zone {zone_id}: {c.anomaly_reason}")
        c.anomaly_detected = False
        c.anomaly_reason = None
        c.anomaly_detected_at = None
        return True

    def _update(self, zone_id, record, previous, reason, applied=True, anomaly_resolved=False) -> ConfidenceUpdate:
        return ConfidenceUpdate(
            zone_id=zone_id,
            previous=previous,
            current=record.confidence.copy(),
            reason=reason,
            applied=applied,
            state=self._state_of(record),
            anomaly_resolved=anomaly_resolved,
        )

    # ───────────────────────────────────────────────────────────────────────
    # Intel
    # ───────────────────────────────────────────────────────────────────────
    def record_intel(self, zone_id: str, report: IntelReport) -> ConfidenceUpdate:
        """Apply one intel report to a zone."""
        record = self._record(zone_id)
        settings = self.settings
        at = report.submitted_at or self._clock()
        window_start = at - timedelta(hours=settings.hazard_window_hours)

        with record.lock:
            previous = record.confidence.copy()
            self._expire_hazard(record, at)

            record.intel_times = [t for t in record.intel_times if t > at - timedelta(hours=24)]
            recent = len(record.intel_times)
            record.intel_times.append(at)

            if report.intel_type == IntelType.HAZARD_REPORT:
                record.hazard_times = [t for t in record.hazard_times if t > window_start]
                record.hazard_times.append(at)
                if len(record.hazard_times) >= settings.hazard_threshold_reports and not record.hazard_active:
                    record.hazard_active = True
                    record.hazard_expires_at = at + timedelta(days=settings.hazard_duration_days)
                    log.warning(
                        f"Zone {zone_id} OFFLINE: {len(record.hazard_times)} hazard reports "
                        f"in {settings.hazard_window_hours:.0f}h"
                    )
                return self._update(zone_id, record, previous, "hazard_report")

            boost = calculate_intel_boost(report.intel_type, report.trust_weight, recent, settings)
            c = record.confidence
            c.score = round(min(100.0, c.score + boost), 2)
            if report.intel_type == IntelType.VERIFICATION:
                c.last_verified_at = at
                c.verification_count += 1

            return self._update(zone_id, record, previous, f"intel:{report.intel_type.value}")

    # ───────────────────────────────────────────────────────────────────────
    # Decay
    # ───────────────────────────────────────────────────────────────────────
    def apply_daily_decay(self, zone_id: str, day: Optional[date] = None) -> ConfidenceUpdate:
        """
        Decay one zone for the given calendar day.

        Idempotent: a second call for the same day returns applied=False.
        Zones verified within the grace period are skipped for the day.
        Stale anomalies are resolved whether or not the score decays.
        """
        record = self._record(zone_id)
        settings = self.settings
        now = self._clock()
        day = day or now.date()

        with record.lock:
            previous = record.confidence.copy()
            self._expire_hazard(record, now)
            resolved = self._expire_anomaly(zone_id, record, now)

            if record.last_decay_day is not None and record.last_decay_day >= day:
                return self._update(zone_id, record, previous, "already_decayed", False, resolved)
            record.last_decay_day = day

            c = record.confidence
            grace = timedelta(hours=settings.decay_grace_hours)
            if c.last_verified_at is not None and now - c.last_verified_at < grace:
                return self._update(zone_id, record, previous, "grace_period", False, resolved)

            floor = min(c.score, settings.decay_floor)
            c.score = round(max(floor, c.score * c.decay_factor), 2)
            return self._update(zone_id, record, previous, "daily_decay", anomaly_resolved=resolved)

    def run_daily_decay(self, day: Optional[date] = None) -> DecayReport:
        """Decay every registered zone once for the day."""
        day = day or self._clock().date()
        report = DecayReport(day=day)

        for zone_id in self.zone_ids():
            update = self.apply_daily_decay(zone_id, day)
            report.updates.append(update)
            if update.applied:
                report.decayed += 1
            else:
                report.skipped += 1
            if update.anomaly_resolved:
                report.anomalies_resolved += 1

        log.info(
            f"Daily decay {day.isoformat()}: {report.decayed} decayed, {report.skipped} skipped, "
            f"{report.anomalies_resolved} anomalies resolved"
        )
        return report

    # ───────────────────────────────────────────────────────────────────────
    # Anomalies
    # ───────────────────────────────────────────────────────────────────────
    def flag_anomaly(self, zone_id: str, reason: str, penalty: Optional[float] = None) -> ConfidenceUpdate:
        record = self._record(zone_id)
        penalty = self.settings.anomaly_penalty if penalty is None else penalty

        with record.lock:
            previous = record.confidence.copy()
            c = record.confidence
            c.score = round(max(0.0, c.score - penalty), 2)
            c.anomaly_detected = True
            c.anomaly_reason = reason
            c.anomaly_detected_at = self._clock()
            log.warning(f"Anomaly on zone {zone_id}: {reason} (-{penalty})")
            return self._update(zone_id, record, previous, f"anomaly:{reason}")

    def clear_anomaly(self, zone_id: str) -> ConfidenceUpdate:
        record = self._record(zone_id)
        with record.lock:
            previous = record.confidence.copy()
            applied = record.confidence.anomaly_detected
            record.confidence.anomaly_detected = False
            record.confidence.anomaly_reason = None
            record.confidence.anomaly_detected_at = None
            return self._update(zone_id, record, previous, "anomaly_cleared", applied=applied)


def detect_price_anomaly(new_price: float, average_price: float, price_count: int, threshold: float = 0.5) -> bool:
    """True when a price deviates from the running average by more than threshold."""
    if price_count < 3 or average_price <= 0:
        return False
    return abs(new_price - average_price) / average_price > threshold
