"""Tests for the search ranker and zone recommendations."""

from datetime import datetime, timedelta, timezone

import pytest

from zone_engine.cache import TTLCache
from zone_engine.confidence import ConfidenceLedger
from zone_engine.models import (
    Anchor,
    Confidence,
    ConfidenceLevel,
    IntelAggregate,
    Point,
    TagMap,
    TextureType,
    Zone,
    ZoneHazard,
    ZonePricing,
    ZoneState,
    ZoneTexture,
)
from zone_engine.search import (
    ANOMALY_WARNING,
    RecommendationContext,
    SearchFilters,
    SearchRanker,
    UserFingerprint,
    WeatherModifiers,
    confidence_score,
    distance_score,
    format_recommendation,
    rank,
    rank_zones,
    search_text,
    texture_score,
    time_period,
    time_score,
    weather_score,
)
from zone_engine.settings import SearchWeights


def make_zone(
    zone_id,
    name,
    lat=13.75,
    lon=100.50,
    anchor_name="Corner Shop",
    anchor_score=50.0,
    texture_tags=None,
    price=None,
    hassle=0.0,
    local_ratio=None,
    state=ZoneState.ACTIVE,
):
    point = Point(lat, lon)
    anchor = Anchor(
        candidate_id=f"node/{zone_id}",
        point=point,
        name=anchor_name,
        tags=TagMap({}),
        selection_reason="Best available",
        score=anchor_score,
    )
    texture = None
    if texture_tags is not None:
        texture = ZoneTexture(primary=TextureType.MIXED, secondary=None, tags=texture_tags)
    return Zone(
        id=zone_id,
        city="bkk",
        polygon=[],
        centroid=point,
        name=name,
        selected_anchor=anchor,
        texture=texture,
        intel=IntelAggregate(hassle_score=hassle, local_ratio=local_ratio),
        pricing=ZonePricing(price_median=price),
        state=state,
    )


@pytest.fixture
def zones():
    return [
        make_zone("bkk-001", "Riverside"),
        make_zone("bkk-002", "Old Quarter", anchor_name="Temple of Dawn", anchor_score=150.0),
        make_zone("bkk-003", "Night Market", lat=13.95, texture_tags=["market", "shopping"]),
    ]


class TestScoring:
    """Per-zone score terms."""

    def test_neutral_zone_score(self):
        scored = SearchRanker().score_zone("", make_zone("z", "Plain"), SearchFilters())
        # anchor 2*0.5 + freshness 0.5 + price 1.2 + local 0.8*0.5
        assert scored.score == pytest.approx(3.1)
        assert scored.text_match == 0.0

    def test_query_matches_anchor_name(self, zones):
        scored = SearchRanker().score_zone("temple", zones[1], SearchFilters())
        assert scored.text_match == 1.0
        assert scored.anchor_quality == 1.0
        assert scored.breakdown["text"] == pytest.approx(3.0)

    def test_query_is_case_insensitive(self, zones):
        assert SearchRanker().score_zone("  OLD quarter ", zones[1], SearchFilters()).text_match == 1.0

    def test_texture_bonus(self, zones):
        scored = SearchRanker().score_zone("", zones[2], SearchFilters(texture="market"))
        assert scored.texture_bonus == 1.5
        assert scored.breakdown["text"] == pytest.approx(4.5)

    def test_budget_fit(self):
        zone = make_zone("z", "Pricey", price=80)
        scored = SearchRanker().score_zone("", zone, SearchFilters(budget=50))
        assert scored.price_fit == pytest.approx(0.7)

    def test_hassle_and_local_ratio(self):
        zone = make_zone("z", "Touts", hassle=8.0, local_ratio=0.9)
        scored = SearchRanker().score_zone("", zone, SearchFilters())
        assert scored.breakdown["hassle"] == pytest.approx(-1.2)
        assert scored.breakdown["local"] == pytest.approx(0.72)

    def test_custom_weights(self, zones):
        weights = SearchWeights(text=10.0)
        scored = SearchRanker(weights).score_zone("temple", zones[1], SearchFilters())
        assert scored.breakdown["text"] == pytest.approx(10.0)

    def test_search_text(self, zones):
        text = search_text(zones[2])
        assert "night market" in text
        assert "shopping" in text


class TestFilters:

    def test_offline_zones_excluded(self, zones):
        zones[1].mark_offline()
        ids = [s.zone.id for s in rank("", zones)]
        assert "bkk-002" not in ids

    def test_offline_zones_can_be_included(self, zones):
        zones[1].mark_offline()
        ids = [s.zone.id for s in rank("", zones, SearchFilters(include_offline=True))]
        assert "bkk-002" in ids

    def test_radius_excludes_far_zones(self, zones):
        filters = SearchFilters(origin=Point(13.75, 100.50), radius_km=5)
        ids = [s.zone.id for s in rank("", zones, filters)]
        assert "bkk-003" not in ids
        assert len(ids) == 2

    def test_distance_score(self, zones):
        scored = SearchRanker().score_zone("", zones[2], SearchFilters(origin=Point(13.75, 100.50)))
        assert scored.distance_km == pytest.approx(22.2, abs=0.2)
        assert scored.distance_score == pytest.approx(1 - scored.distance_km / 50)

    def test_max_price_and_hassle(self):
        cheap = make_zone("a", "Cheap", price=20, hassle=1)
        pricey = make_zone("b", "Pricey", price=200, hassle=1)
        noisy = make_zone("c", "Noisy", price=20, hassle=9)
        filters = SearchFilters(max_price=100, max_hassle=5)
        assert [s.zone.id for s in rank("", [cheap, pricey, noisy], filters)] == ["a"]

    def test_unpriced_zone_survives_max_price(self):
        assert len(rank("", [make_zone("a", "Unknown")], SearchFilters(max_price=10))) == 1

    def test_unknown_sort_rejected(self):
        with pytest.raises(ValueError):
            SearchFilters(sort="popularity")


class TestOrdering:

    def test_text_match_ranks_first(self, zones):
        results = rank("temple", zones)
        assert results[0].zone.id == "bkk-002"

    def test_sort_by_distance(self, zones):
        filters = SearchFilters(origin=Point(13.95, 100.50), sort="distance")
        assert rank("", zones, filters)[0].zone.id == "bkk-003"

    def test_sort_by_price_puts_unpriced_last(self):
        zones = [make_zone("a", "A"), make_zone("b", "B", price=30), make_zone("c", "C", price=10)]
        ids = [s.zone.id for s in rank("", zones, SearchFilters(sort="price"))]
        assert ids == ["c", "b", "a"]

    def test_ties_keep_input_order(self):
        zones = [make_zone("b", "Same"), make_zone("a", "Same")]
        assert [s.zone.id for s in rank("", zones)] == ["b", "a"]

    def test_limit(self, zones):
        assert len(rank("", zones, SearchFilters(limit=1))) == 1

    def test_to_dict(self, zones):
        data = rank("temple", zones)[0].to_dict()
        assert data["zone_id"] == "bkk-002"
        assert data["anchor_name"] == "Temple of Dawn"
        assert data["texture_match"] == 1.0


class TestCaching:

    def test_repeat_query_is_cached(self, zones):
        cache = TTLCache(ttl_seconds=60)
        ranker = SearchRanker(cache=cache)
        first = ranker.rank("temple", zones)
        second = ranker.rank("Temple", zones)
        assert second is first
        assert cache.hits == 1
        assert cache.misses == 1

    def test_state_change_misses_cache(self, zones):
        ranker = SearchRanker(cache=TTLCache())
        before = ranker.rank("", zones)
        zones[0].mark_offline()
        after = ranker.rank("", zones)
        assert len(before) == 3
        assert len(after) == 2

    def test_intel_change_misses_cache(self, zones):
        ranker = SearchRanker(cache=TTLCache(ttl_seconds=600))
        before = ranker.rank("", zones)
        zones[1].intel.hassle_score = 10.0
        after = ranker.rank("", zones)

        fresh = SearchRanker().rank("", zones)
        score = {s.zone.id: s.score for s in after}
        assert score["bkk-002"] == pytest.approx(2.6)
        assert score == {s.zone.id: s.score for s in fresh}
        assert after is not before

    def test_anchor_reselection_misses_cache(self, zones):
        ranker = SearchRanker(cache=TTLCache(ttl_seconds=600))
        assert ranker.rank("temple", zones)[0].zone.id == "bkk-002"
        zones[0].selected_anchor = Anchor(
            candidate_id="node/x",
            point=Point(13.75, 100.50),
            name="Temple Gate",
            tags=TagMap({}),
            selection_reason="Best available",
            score=200.0,
        )
        ids = [s.zone.id for s in ranker.rank("temple", zones)[:2]]
        assert ids == ["bkk-001", "bkk-002"]


class TestTimeFilter:

    def test_night_filter(self, zones):
        zones[0].good_for_night = False
        ids = [s.zone.id for s in rank("", zones, SearchFilters(time="night"))]
        assert "bkk-001" not in ids
        assert len(ids) == 2

    def test_day_filter(self, zones):
        zones[0].good_for_night = False
        zones[2].good_for_day = False
        ids = [s.zone.id for s in rank("", zones, SearchFilters(time="day"))]
        assert ids.count("bkk-001") == 1
        assert "bkk-003" not in ids

    def test_no_time_filter_keeps_everything(self, zones):
        zones[0].good_for_day = False
        zones[0].good_for_night = False
        assert len(rank("", zones)) == 3

    def test_unknown_time_rejected(self):
        with pytest.raises(ValueError):
            SearchFilters(time="dusk")


MORNING = datetime(2024, 3, 1, 9, 0, tzinfo=timezone.utc)


def textured_zone(zone_id, primary=TextureType.TEMPLE_PEACE, secondary=None, confidence=None, **kwargs):
    zone = make_zone(zone_id, zone_id.title(), **kwargs)
    zone.texture = ZoneTexture(primary=primary, secondary=secondary, walkability=60, safety_score=70)
    zone.confidence = confidence
    return zone


class TestRecommendationTerms:
    """Individual recommendation scores."""

    @pytest.mark.parametrize("hour,period", [
        (5, "MORNING"),
        (11, "MORNING"),
        (12, "AFTERNOON"),
        (17, "EVENING"),
        (21, "EVENING"),
        (22, "NIGHT"),
        (4, "NIGHT"),
    ])
    def test_time_period(self, hour, period):
        assert time_period(hour) == period

    @pytest.mark.parametrize("score,expected", [
        (90, 100),
        (70, 75),
        (50, 50),
        (30, 25),
        (10, 10),
    ])
    def test_confidence_level_scores(self, score, expected):
        assert confidence_score(Confidence(score=score))[0] == expected

    def test_anomaly_costs_twenty(self):
        score, reason = confidence_score(Confidence(score=90, anomaly_detected=True))
        assert score == 80
        assert reason == "Recently verified, reliable intel (anomaly detected)"

    def test_anomaly_score_floor(self):
        assert confidence_score(Confidence(score=5, anomaly_detected=True))[0] == 0

    def test_stale_reason(self):
        assert confidence_score(Confidence(score=30))[1] == "Stale data - use caution"

    def test_time_score_by_texture(self):
        temple = textured_zone("t").texture
        bar = textured_zone("b", TextureType.NIGHTLIFE_ELECTRIC).texture
        assert time_score(temple, "MORNING") == 95
        assert time_score(bar, "NIGHT") == 100
        assert time_score(None, "NIGHT") == 60

    def test_texture_score_without_fingerprint(self):
        assert texture_score(textured_zone("t").texture, None) == (70, "General interest")

    def test_texture_score_preferred_and_relaxed(self):
        fingerprint = UserFingerprint(preferred_textures=[TextureType.TEMPLE_PEACE], activity_level="RELAXED")
        score, reason = texture_score(textured_zone("t").texture, fingerprint)
        assert score == 100
        assert reason == "Matches your preference for temple peace"

    def test_texture_score_secondary(self):
        texture = textured_zone("m", TextureType.MIXED, TextureType.CAFE_CULTURE).texture
        fingerprint = UserFingerprint(preferred_textures=[TextureType.CAFE_CULTURE])
        assert texture_score(texture, fingerprint) == (75, "Secondary match: cafe culture")

    def test_texture_score_avoided(self):
        texture = textured_zone("n", TextureType.NIGHTLIFE_ELECTRIC).texture
        fingerprint = UserFingerprint(avoided_textures=[TextureType.NIGHTLIFE_ELECTRIC])
        assert texture_score(texture, fingerprint) == (20, "Not typically your style (nightlife electric)")

    def test_weather_neutral_without_data(self):
        assert weather_score(textured_zone("t").texture, None) == (70, "Weather data unavailable")

    def test_rain_penalizes_outdoor_zones(self):
        rain = WeatherModifiers(outdoor_penalty=1.0, walkability_modifier=-20, safety_modifier=-10, warning="HEAVY RAIN")
        park = textured_zone("p", TextureType.PARK_REFUGE).texture
        assert weather_score(park, rain) == (pytest.approx(25), "HEAVY RAIN")

    def test_rain_boosts_cafes_up_to_cap(self):
        rain = WeatherModifiers(indoor_bonus=1.0, cafe_boost=0.5)
        cafe = textured_zone("c", TextureType.CAFE_CULTURE).texture
        assert weather_score(cafe, rain) == (100, "Great weather for this zone")

    def test_distance_bands(self):
        here = Point(13.75, 100.50)
        assert distance_score(here, None) == (70, None)
        assert distance_score(here, here) == (100, 0.0)
        assert distance_score(Point(13.95, 100.50), here)[0] == 20


class TestRankZones:
    """Confidence-aware recommendations."""

    def test_neutral_high_confidence_total(self):
        zone = textured_zone("a", confidence=Confidence(score=90))
        result = rank_zones([zone], {}, RecommendationContext(current_time=MORNING))
        rec = result.recommendations[0]
        # 70*.30 + 100*.25 + 95*.15 + 70*.15 + 70*.15
        assert rec.total_score == 81
        assert rec.reasons == ["General interest", "Good for morning", "Recently verified, reliable intel"]
        assert rec.warnings == []
        assert result.time_period == "MORNING"
        assert not result.has_fingerprint

    def test_confidence_orders_otherwise_equal_zones(self):
        zones = [
            textured_zone("stale", confidence=Confidence(score=30)),
            textured_zone("odd", confidence=Confidence(score=90, anomaly_detected=True)),
            textured_zone("fresh", confidence=Confidence(score=90)),
        ]
        result = rank_zones(zones, {}, RecommendationContext(current_time=MORNING))
        assert [r.zone.id for r in result.recommendations] == ["fresh", "odd", "stale"]
        odd = result.recommendations[1]
        assert odd.total_score == 76
        assert ANOMALY_WARNING in odd.warnings
        assert result.recommendations[2].warnings == ["Stale data - use caution"]

    def test_mapping_overrides_zone_confidence(self):
        zone = textured_zone("a", confidence=Confidence(score=90))
        result = rank_zones([zone], {"a": Confidence(score=10)}, RecommendationContext(current_time=MORNING))
        assert result.recommendations[0].confidence_score == 10

    def test_missing_confidence_defaults_to_medium(self):
        result = rank_zones([textured_zone("a")], {}, RecommendationContext(current_time=MORNING))
        rec = result.recommendations[0]
        assert rec.confidence.level == ConfidenceLevel.MEDIUM
        assert rec.confidence_score == 75

    def test_exclusion_counts(self):
        ok = textured_zone("ok")
        hazard = textured_zone("hazard")
        hazard.hazard = ZoneHazard(active=True, expires_at=MORNING + timedelta(days=1))
        expired = textured_zone("expired")
        expired.hazard = ZoneHazard(active=True, expires_at=MORNING - timedelta(hours=1))
        offline = textured_zone("offline", state=ZoneState.OFFLINE)
        visited = textured_zone("visited")

        context = RecommendationContext(current_time=MORNING, exclude_visited=["visited"])
        result = rank_zones([ok, hazard, expired, offline, visited], {}, context)

        assert result.excluded == {"offline": 1, "hazard": 1, "visited": 1}
        assert result.excluded_count == 3
        assert sorted(r.zone.id for r in result.recommendations) == ["expired", "ok"]

    def test_hazard_counted_before_offline(self):
        zone = textured_zone("z", state=ZoneState.OFFLINE)
        zone.hazard = ZoneHazard(active=True)
        result = rank_zones([zone], {}, RecommendationContext(current_time=MORNING))
        assert result.excluded == {"offline": 0, "hazard": 1, "visited": 0}

    def test_weather_adjusts_and_warns(self):
        rain = WeatherModifiers(walkability_modifier=-20, safety_modifier=-10, warning="HEAVY RAIN",
                                recommendation="Head indoors")
        context = RecommendationContext(current_time=MORNING, weather=rain)
        result = rank_zones([textured_zone("a")], {}, context)
        rec = result.recommendations[0]
        assert rec.adjusted_walkability == 40
        assert rec.adjusted_safety == 60
        assert "HEAVY RAIN" in rec.warnings
        assert result.weather_summary == "Head indoors"

    def test_location_and_max_results(self):
        near = textured_zone("near")
        far = textured_zone("far", lat=13.95)
        context = RecommendationContext(current_time=MORNING, user_location=Point(13.95, 100.50), max_results=1)
        result = rank_zones([near, far], {}, context)
        assert [r.zone.id for r in result.recommendations] == ["far"]
        assert result.recommendations[0].distance_km == 0.0

    def test_ledger_confidences(self):
        ledger = ConfidenceLedger(clock=lambda: MORNING)
        zones = [textured_zone("a"), textured_zone("b")]
        for zone in zones:
            ledger.register_zone(zone.id, Confidence(score=70))
        ledger.flag_anomaly("a", "price_spike")

        confidences = {zone_id: ledger.get(zone_id) for zone_id in ledger.zone_ids()}
        result = rank_zones(zones, confidences, RecommendationContext(current_time=MORNING))
        assert [r.zone.id for r in result.recommendations] == ["b", "a"]

    def test_format_recommendation(self):
        zone = textured_zone("a", confidence=Confidence(score=30))
        rec = rank_zones([zone], {}, RecommendationContext(current_time=MORNING)).recommendations[0]
        text = format_recommendation(rec)
        assert text.startswith("RECOMMENDED: General interest")
        assert "INTEL: DEGRADED CONFIDENCE" in text
        assert text.endswith("WARNING: Stale data - use caution")
