"""
Route distance for a posted ride.

A ride posted without an explicit ``distance_km`` gets the straight-line
(great-circle) distance between its start and destination.  The value is
stored on the ride and, at completion, credited to the rider's
``total_distance_km`` and multiplied into the carbon-saved roll-up.
"""

from __future__ import annotations

import math

from src.domain.entities import Location

EARTH_RADIUS_KM = 6_371.0


def route_distance_km(start: Location, destination: Location) -> float:
    """Great-circle km from *start* to *destination*, rounded to 0.01 km."""
    lat1, lat2 = math.radians(start.latitude), math.radians(destination.latitude)
    half_dlat = math.radians(destination.latitude - start.latitude) / 2
    half_dlng = math.radians(destination.longitude - start.longitude) / 2

    chord = (
        math.sin(half_dlat) ** 2
        + math.cos(lat1) * math.cos(lat2) * math.sin(half_dlng) ** 2
    )
    return round(2 * EARTH_RADIUS_KM * math.asin(math.sqrt(chord)), 2)
