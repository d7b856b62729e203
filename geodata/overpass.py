"""
OpenStreetMap candidate loader via the Overpass API.

Harvests what the zone engine consumes:
- Candidate POIs (id, point, tags) for anchor selection and texture
- Streets and street lamps for baseline statistics

With:
- Rate limiting (per Overpass API guidelines)
- SQLite caching of raw responses
- Retry with exponential backoff
"""

import hashlib
import json
import logging
import math
import os
import sqlite3
import time
from typing import Dict, List, Optional, Sequence

import requests
from tenacity import retry, stop_after_attempt, wait_exponential

from zone_engine.models import BaselineStats, Candidate, Point
from zone_engine.texture import classify_poi_type

log = logging.getLogger(__name__)

DEFAULT_ENDPOINT = "https://overpass-api.de/api/interpreter"
CACHE_TTL_SECONDS = 30 * 24 * 60 * 60  # 30 days

# A node is a POI candidate if it carries any of these keys
POI_KEYS = ("amenity", "shop", "leisure", "tourism", "historic", "public_transport", "railway")
PEDESTRIAN_HIGHWAYS = ("pedestrian", "footway", "path")


class OverpassCache:
    """SQLite cache for Overpass API results."""

    def __init__(self, db_path: str = "overpass_cache.db"):
        self.db_path = db_path
        self._init_db()

    def _init_db(self):
        conn = sqlite3.connect(self.db_path)
        conn.execute("""
            CREATE TABLE IF NOT EXISTS overpass_cache (
                query_hash TEXT PRIMARY KEY,
                result_json TEXT,
                created_at REAL
            )
        """)
        conn.execute(
            "DELETE FROM overpass_cache WHERE created_at < ?",
            (time.time() - CACHE_TTL_SECONDS,)
        )
        conn.commit()
        conn.close()

    def _hash_query(self, kind: str, lat: float, lon: float, radius: int) -> str:
        # Round to 4 decimal places (~10m) for cache key
        key = f"{kind}:{lat:.4f},{lon:.4f},{radius}"
        return hashlib.md5(key.encode()).hexdigest()

    def get(self, kind: str, lat: float, lon: float, radius: int) -> Optional[Dict]:
        conn = sqlite3.connect(self.db_path)
        row = conn.execute(
            "SELECT result_json FROM overpass_cache WHERE query_hash = ?",
            (self._hash_query(kind, lat, lon, radius),)
        ).fetchone()
        conn.close()
        if row:
            return json.loads(row[0])
        return None

    def set(self, kind: str, lat: float, lon: float, radius: int, result: Dict):
        conn = sqlite3.connect(self.db_path)
        conn.execute(
            """INSERT OR REPLACE INTO overpass_cache
               (query_hash, result_json, created_at)
               VALUES (?, ?, ?)""",
            (self._hash_query(kind, lat, lon, radius), json.dumps(result), time.time())
        )
        conn.commit()
        conn.close()


# ═══════════════════════════════════════════════════════════════════════════
# ELEMENT CONVERSION
# ═══════════════════════════════════════════════════════════════════════════
def element_point(el: Dict) -> Optional[Point]:
    """Node position, or the center Overpass reports for ways."""
    lat = el.get("lat", el.get("center", {}).get("lat"))
    lon = el.get("lon", el.get("center", {}).get("lon"))
    if lat is None or lon is None:
        return None
    return Point(float(lat), float(lon))


def is_poi(tags: Dict[str, str]) -> bool:
    return any(k in tags for k in POI_KEYS) or tags.get("highway") == "bus_stop"


def elements_to_candidates(elements: Sequence[Dict]) -> List[Candidate]:
    """Convert Overpass elements into engine candidates."""
    candidates = []
    seen = set()
    for el in elements:
        tags = el.get("tags") or {}
        if not tags or not is_poi(tags):
            continue
        point = element_point(el)
        if point is None:
            continue
        cid = f"{el.get('type', 'node')}/{el.get('id')}"
        if cid in seen:
            continue
        seen.add(cid)
        candidates.append(Candidate.create(cid, point.lat, point.lon, tags))
    return candidates


def compute_baseline(
    pois: Sequence[Candidate],
    street_elements: Sequence[Dict],
    radius_m: float,
) -> BaselineStats:
    """
    Structural statistics for a circular zone.

    lighting_density: share of streets tagged lit=yes
    pedestrian_score: pedestrian street share x 100 + 2 per street lamp, max 100
    poi_density: POIs per km²
    transit_access: 10 per transit stop, max 100
    """
    streets = [
        el for el in street_elements
        if el.get("type") == "way" and (el.get("tags") or {}).get("highway")
    ]
    lamps = sum(
        1 for el in street_elements
        if el.get("type") == "node" and (el.get("tags") or {}).get("highway") == "street_lamp"
    )

    lit = sum(1 for s in streets if s["tags"].get("lit") == "yes")
    pedestrian = sum(1 for s in streets if s["tags"]["highway"] in PEDESTRIAN_HIGHWAYS)
    transit = sum(1 for p in pois if classify_poi_type(p.tags) == "transit_stop")

    radius_km = radius_m / 1000
    area_km2 = math.pi * radius_km * radius_km

    return BaselineStats(
        poi_density=round(len(pois) / area_km2, 2) if area_km2 > 0 else 0.0,
        lighting_density=round(lit / len(streets), 4) if streets else 0.0,
        pedestrian_score=min(100.0, pedestrian / max(1, len(streets)) * 100 + lamps * 2),
        transit_access=min(100.0, transit * 10.0),
        poi_count=len(pois),
    )


# ═══════════════════════════════════════════════════════════════════════════
# LOADER
# ═══════════════════════════════════════════════════════════════════════════
class OverpassLoader:
    """
    Overpass API client for zone candidates and baselines.

    Network failures are logged and degrade to an empty element list.
    """

    def __init__(
        self,
        cache_path: str = "overpass_cache.db",
        timeout: int = 90,
        endpoint: Optional[str] = None,
        min_request_interval: float = 2.0,
    ):
        self.cache = OverpassCache(cache_path)
        self.timeout = timeout
        self.endpoint = endpoint or os.environ.get("OVERPASS_ENDPOINT", DEFAULT_ENDPOINT)
        self.min_request_interval = min_request_interval
        self.session = requests.Session()
        self._last_request_time = 0.0

    def _rate_limit(self):
        """Ensure we don't exceed rate limits."""
        elapsed = time.time() - self._last_request_time
        if elapsed < self.min_request_interval:
            time.sleep(self.min_request_interval - elapsed)
        self._last_request_time = time.time()

    def _build_poi_query(self, lat: float, lon: float, radius: int) -> str:
        around = f"(around:{radius},{lat},{lon})"
        return f"""
        [out:json][timeout:{self.timeout}];
        (
          // Food, drink & markets
          node["amenity"~"cafe|restaurant|fast_food|bar|pub|marketplace"]{around};
          node["shop"~"convenience|supermarket"]{around};

          // Parks, culture & landmarks
          node["leisure"~"park|garden"]{around};
          way["leisure"~"park|garden"]{around};
          node["amenity"~"place_of_worship|fountain|clock"]{around};
          node["tourism"]{around};
          node["historic"]{around};

          // Transit
          node["public_transport"]{around};
          node["highway"="bus_stop"]{around};
          node["railway"~"station|halt|subway_entrance"]{around};

          // Services
          node["amenity"~"pharmacy|atm|bank"]{around};
        );
        out center;
        """

    def _build_street_query(self, lat: float, lon: float, radius: int) -> str:
        around = f"(around:{radius},{lat},{lon})"
        return f"""
        [out:json][timeout:{self.timeout}];
        (
          way["highway"~"pedestrian|footway|path|residential|primary|secondary|tertiary"]{around};
          node["highway"="street_lamp"]{around};
        );
        out tags center;
        """

    @retry(stop=stop_after_attempt(3), wait=wait_exponential(multiplier=2, min=2, max=15))
    def _make_request(self, query: str) -> Dict:
        """Make a rate-limited request with retry."""
        self._rate_limit()
        response = self.session.post(
            self.endpoint,
            data={"data": query},
            timeout=self.timeout
        )
        response.raise_for_status()
        return response.json()

    def fetch_raw(self, lat: float, lon: float, radius: int = 150, kind: str = "pois") -> Dict:
        """
        Fetch raw OSM elements around a point.

        Args:
            lat: Center latitude
            lon: Center longitude
            radius: Search radius in meters
            kind: "pois" or "streets"

        Returns:
            Raw Overpass API response
        """
        if kind not in ("pois", "streets"):
            raise ValueError(f"Unknown Overpass query kind '{kind}'")

        cached = self.cache.get(kind, lat, lon, radius)
        if cached:
            log.debug(f"Cache hit for Overpass {kind} at ({lat}, {lon})")
            return cached

        if kind == "pois":
            query = self._build_poi_query(lat, lon, radius)
        else:
            query = self._build_street_query(lat, lon, radius)

        try:
            data = self._make_request(query)
            self.cache.set(kind, lat, lon, radius, data)
            log.info(f"Overpass fetched {len(data.get('elements', []))} {kind} at ({lat:.4f}, {lon:.4f})")
            return data

        except Exception as e:
            log.error(f"Overpass request failed: {e}")
            return {"elements": []}

    def fetch_candidates(self, lat: float, lon: float, radius: int = 150) -> List[Candidate]:
        """Anchor/texture candidates around a zone center."""
        raw = self.fetch_raw(lat, lon, radius, kind="pois")
        return elements_to_candidates(raw.get("elements", []))

    def fetch_baseline(self, lat: float, lon: float, radius: int = 500) -> BaselineStats:
        """Baseline statistics for a circular zone."""
        pois = self.fetch_candidates(lat, lon, radius)
        streets = self.fetch_raw(lat, lon, radius, kind="streets").get("elements", [])
        return compute_baseline(pois, streets, radius)


# Singleton
_loader: Optional[OverpassLoader] = None


def get_overpass_loader() -> OverpassLoader:
    """Get singleton Overpass loader."""
    global _loader
    if _loader is None:
        _loader = OverpassLoader()
    return _loader
