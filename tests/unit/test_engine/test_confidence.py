"""Tests for the confidence model and ledger."""

from datetime import date, datetime, timedelta, timezone

import pytest

from zone_engine.confidence import (
    ConfidenceLedger,
    IntelReport,
    IntelType,
    calculate_intel_boost,
    detect_price_anomaly,
    determine_zone_state,
    initialize_confidence,
    score_to_level,
)
from zone_engine.models import BaselineStats, Confidence, ConfidenceLevel, ZoneState
from zone_engine.settings import ConfidenceSettings


class FakeClock:
    """Settable clock for ledger tests."""

    def __init__(self, now):
        self.now = now

    def __call__(self):
        return self.now

    def advance(self, **kwargs):
        self.now = self.now + timedelta(**kwargs)


@pytest.fixture
def clock():
    return FakeClock(datetime(2024, 3, 1, 9, 0, tzinfo=timezone.utc))


@pytest.fixture
def ledger(clock):
    ledger = ConfidenceLedger(clock=clock)
    ledger.register_zone("z1", Confidence(score=50.0))
    return ledger


class TestLevels:

    @pytest.mark.parametrize("score,level", [
        (100, ConfidenceLevel.HIGH),
        (80, ConfidenceLevel.HIGH),
        (79.99, ConfidenceLevel.MEDIUM),
        (60, ConfidenceLevel.MEDIUM),
        (40, ConfidenceLevel.LOW),
        (20, ConfidenceLevel.DEGRADED),
        (19.9, ConfidenceLevel.UNKNOWN),
        (0, ConfidenceLevel.UNKNOWN),
    ])
    def test_score_to_level(self, score, level):
        assert score_to_level(score) == level

    def test_level_consistent_for_all_scores(self):
        def bucket(score):
            if score >= 80:
                return ConfidenceLevel.HIGH
            if score >= 60:
                return ConfidenceLevel.MEDIUM
            if score >= 40:
                return ConfidenceLevel.LOW
            if score >= 20:
                return ConfidenceLevel.DEGRADED
            return ConfidenceLevel.UNKNOWN

        for tenths in range(0, 1001):
            score = tenths / 10
            assert Confidence(score=score).level == bucket(score)

    def test_level_follows_score(self):
        c = Confidence(score=85)
        assert c.level == ConfidenceLevel.HIGH
        c.score = 45
        assert c.level == ConfidenceLevel.LOW

    def test_zone_state(self):
        assert determine_zone_state(90, True, False) == ZoneState.OFFLINE
        assert determine_zone_state(10, False, False) == ZoneState.DEGRADED
        assert determine_zone_state(90, False, True) == ZoneState.DEGRADED
        assert determine_zone_state(50, False, False) == ZoneState.ACTIVE


class TestInitialConfidence:

    def test_rich_baseline_is_capped_below_high(self):
        baseline = BaselineStats(poi_density=100, lighting_density=1.0, transit_access=100)
        c = initialize_confidence(baseline)
        assert c.score == 75
        assert c.level == ConfidenceLevel.MEDIUM

    def test_empty_baseline(self):
        c = initialize_confidence(BaselineStats())
        assert c.score == 30
        assert c.decay_factor == 0.98

    def test_formula(self):
        baseline = BaselineStats(poi_density=10, lighting_density=0.5, transit_access=50)
        assert initialize_confidence(baseline).score == pytest.approx(60.0)


class TestIntelBoost:

    def test_verification_boost(self):
        assert calculate_intel_boost(IntelType.VERIFICATION, 1.0, 0) == pytest.approx(7.5)

    def test_trust_weight_is_clamped(self):
        assert calculate_intel_boost(IntelType.VERIFICATION, 5.0, 0) == pytest.approx(11.25)
        assert calculate_intel_boost(IntelType.VERIFICATION, 0.0, 0) == pytest.approx(2.25)

    def test_diminishing_returns(self):
        assert calculate_intel_boost(IntelType.VERIFICATION, 1.0, 3) == pytest.approx(4.125)
        assert calculate_intel_boost(IntelType.VERIFICATION, 1.0, 100) == pytest.approx(1.5)

    def test_single_report_cap(self):
        settings = ConfidenceSettings(intel_boost_base=20)
        assert calculate_intel_boost(IntelType.VERIFICATION, 1.5, 0, settings) == 15

    def test_hazard_never_boosts(self):
        assert calculate_intel_boost(IntelType.HAZARD_REPORT, 1.5, 0) == 0


class TestLedgerIntel:
    """Intel reports and hazards through the ledger."""

    def test_verification_updates_score_and_count(self, ledger, clock):
        update = ledger.record_intel("z1", IntelReport(IntelType.VERIFICATION, 1.0))
        assert update.applied
        assert update.reason == "intel:VERIFICATION"
        assert update.delta == pytest.approx(7.5)
        c = ledger.get("z1")
        assert c.verification_count == 1
        assert c.last_verified_at == clock.now

    def test_score_capped_at_100(self, clock):
        ledger = ConfidenceLedger(clock=clock)
        ledger.register_zone("z", Confidence(score=98))
        ledger.record_intel("z", IntelReport(IntelType.VERIFICATION, 1.5))
        assert ledger.get("z").score == 100

    def test_two_hazards_take_zone_offline(self, ledger, clock):
        ledger.record_intel("z1", IntelReport(IntelType.HAZARD_REPORT))
        assert ledger.zone_state("z1") == ZoneState.ACTIVE

        update = ledger.record_intel("z1", IntelReport(IntelType.HAZARD_REPORT))
        assert update.reason == "hazard_report"
        assert update.state == ZoneState.OFFLINE
        assert ledger.hazard_expires_at("z1") == clock.now + timedelta(days=7)
        assert ledger.get("z1").score == 50

    def test_hazard_expires(self, ledger, clock):
        ledger.record_intel("z1", IntelReport(IntelType.HAZARD_REPORT))
        ledger.record_intel("z1", IntelReport(IntelType.HAZARD_REPORT))
        clock.advance(days=8)
        assert ledger.zone_state("z1") == ZoneState.ACTIVE
        assert ledger.hazard_expires_at("z1") is None

    def test_hazards_outside_window_do_not_aggregate(self, ledger, clock):
        ledger.record_intel("z1", IntelReport(IntelType.HAZARD_REPORT))
        clock.advance(hours=25)
        ledger.record_intel("z1", IntelReport(IntelType.HAZARD_REPORT))
        assert ledger.zone_state("z1") == ZoneState.ACTIVE


class TestLedgerDecay:
    """Daily decay: idempotence, grace period and floor."""

    def test_decay_once_per_day(self, ledger):
        first = ledger.apply_daily_decay("z1")
        assert first.applied
        assert first.reason == "daily_decay"
        assert ledger.get("z1").score == 49.0

        again = ledger.apply_daily_decay("z1")
        assert not again.applied
        assert again.reason == "already_decayed"
        assert ledger.get("z1").score == 49.0

    def test_next_day_decays_again(self, ledger, clock):
        ledger.apply_daily_decay("z1")
        clock.advance(days=1)
        ledger.apply_daily_decay("z1")
        assert ledger.get("z1").score == pytest.approx(48.02)

    def test_explicit_day(self, ledger):
        ledger.apply_daily_decay("z1", date(2024, 3, 5))
        # an earlier day after a later one is a no-op
        assert not ledger.apply_daily_decay("z1", date(2024, 3, 4)).applied

    def test_recently_verified_zone_skips_decay(self, ledger, clock):
        ledger.record_intel("z1", IntelReport(IntelType.VERIFICATION, 1.0))
        score = ledger.get("z1").score
        update = ledger.apply_daily_decay("z1")
        assert update.reason == "grace_period"
        assert not update.applied
        assert ledger.get("z1").score == score

        clock.advance(hours=25)
        assert ledger.apply_daily_decay("z1").applied

    def test_floor(self, clock):
        ledger = ConfidenceLedger(clock=clock)
        ledger.register_zone("edge", Confidence(score=20.1))
        ledger.register_zone("low", Confidence(score=10))
        ledger.run_daily_decay()
        assert ledger.get("edge").score == 20
        assert ledger.get("low").score == 10

    def test_run_daily_decay_report(self, ledger, clock):
        ledger.register_zone("z2", Confidence(score=70))
        ledger.record_intel("z2", IntelReport(IntelType.VERIFICATION))
        report = ledger.run_daily_decay()
        assert report.day == clock.now.date()
        assert report.decayed == 1
        assert report.skipped == 1
        assert len(report.updates) == 2

    def test_update_to_dict(self, ledger):
        data = ledger.apply_daily_decay("z1").to_dict()
        assert data["delta"] == pytest.approx(-1.0)
        assert data["state"] == "ACTIVE"


class TestLedgerRegistry:

    def test_unknown_zone_raises(self, ledger):
        with pytest.raises(KeyError):
            ledger.get("nope")
        with pytest.raises(KeyError):
            ledger.apply_daily_decay("nope")

    def test_duplicate_registration_raises(self, ledger):
        with pytest.raises(ValueError):
            ledger.register_zone("z1", Confidence(score=10))

    def test_reads_are_copies(self, ledger):
        ledger.get("z1").score = 0
        assert ledger.get("z1").score == 50

    def test_anomaly_degrades_until_cleared(self, ledger):
        update = ledger.flag_anomaly("z1", "price_spike")
        assert update.reason == "anomaly:price_spike"
        assert update.state == ZoneState.DEGRADED
        assert ledger.get("z1").score == 40

        cleared = ledger.clear_anomaly("z1")
        assert cleared.applied
        assert cleared.state == ZoneState.ACTIVE
        assert not ledger.clear_anomaly("z1").applied


class TestAnomalyAutoResolve:
    """The decay pass clears anomalies older than 48h."""

    def test_fresh_anomaly_survives_decay(self, ledger, clock):
        ledger.flag_anomaly("z1", "price_spike")
        clock.advance(hours=47)
        report = ledger.run_daily_decay()
        assert report.anomalies_resolved == 0
        assert ledger.get("z1").anomaly_detected
        assert ledger.zone_state("z1") == ZoneState.DEGRADED

    def test_stale_anomaly_is_resolved(self, ledger, clock):
        ledger.flag_anomaly("z1", "price_spike")
        assert ledger.get("z1").anomaly_detected_at == clock.now
        clock.advance(hours=49)
        report = ledger.run_daily_decay()
        assert report.anomalies_resolved == 1
        assert report.updates[0].anomaly_resolved
        c = ledger.get("z1")
        assert not c.anomaly_detected
        assert c.anomaly_reason is None
        assert c.anomaly_detected_at is None
        assert ledger.zone_state("z1") == ZoneState.ACTIVE

    def test_resolved_even_when_already_decayed(self, ledger, clock):
        ledger.flag_anomaly("z1", "price_spike")
        ledger.apply_daily_decay("z1")
        clock.advance(hours=49)
        update = ledger.apply_daily_decay("z1", date(2024, 3, 1))
        assert update.reason == "already_decayed"
        assert not update.applied
        assert update.anomaly_resolved
        assert not ledger.get("z1").anomaly_detected

    def test_manual_flag_without_timestamp_is_kept(self, clock):
        ledger = ConfidenceLedger(clock=clock)
        ledger.register_zone("z", Confidence(score=50, anomaly_detected=True, anomaly_reason="legacy"))
        clock.advance(days=5)
        assert ledger.run_daily_decay().anomalies_resolved == 0
        assert ledger.get("z").anomaly_detected


class TestPriceAnomaly:

    def test_needs_history(self):
        assert not detect_price_anomaly(100, 10, 2)

    def test_deviation(self):
        assert detect_price_anomaly(100, 50, 5)
        assert not detect_price_anomaly(60, 50, 5)
