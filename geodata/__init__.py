"""
Geodata collaborators for the Zone Intelligence Engine.

Includes:
- Candidate POIs and baseline statistics (OpenStreetMap Overpass)
"""

from geodata.overpass import (
    OverpassCache,
    OverpassLoader,
    compute_baseline,
    elements_to_candidates,
    get_overpass_loader,
)

__all__ = [
    "OverpassCache",
    "OverpassLoader",
    "compute_baseline",
    "elements_to_candidates",
    "get_overpass_loader",
]
