"""
Grid of search points covering a city's bounding box
"""

import math
from typing import List, Optional

from models import BoundingBox, GridPoint

KM_PER_DEGREE_LAT = 110.574
KM_PER_DEGREE_LNG_AT_EQUATOR = 111.320


def grid_steps(spacing_km: float, center_lat: float) -> tuple:
    """
    Convert a spacing in km into (lat_step, lng_step) in degrees.
    The longitude step is corrected for the latitude of the city center.
    """
    lat_step = spacing_km / KM_PER_DEGREE_LAT
    lng_scale = KM_PER_DEGREE_LNG_AT_EQUATOR * abs(math.cos(math.radians(center_lat)))
    lng_step = spacing_km / lng_scale if lng_scale > 0 else math.inf
    return lat_step, lng_step


def generate_grid(bounds: BoundingBox, spacing_km: float, center_lat: float) -> List[GridPoint]:
    """
    Sample points every spacing_km across the box, row by row.

    Starts at (min_lat, min_lng); all longitudes of a row are emitted before
    moving to the next latitude. Inverted or non-finite bounds, or a spacing
    that is not a positive number, give an empty grid.
    """
    if not bounds.is_valid or not math.isfinite(spacing_km) or spacing_km <= 0:
        return []
    if not math.isfinite(center_lat):
        return []

    lat_step, lng_step = grid_steps(spacing_km, center_lat)

    # Offsets are multiplied from the origin, never accumulated
    points: List[GridPoint] = []
    row = 0
    lat = bounds.min_lat
    while lat <= bounds.max_lat:
        col = 0
        lng = bounds.min_lng
        while lng <= bounds.max_lng:
            points.append(GridPoint(lat=lat, lng=lng))
            col += 1
            lng = bounds.min_lng + col * lng_step
        row += 1
        lat = bounds.min_lat + row * lat_step

    return points


def get_city_bounds(city: str) -> Optional[BoundingBox]:
    """
    Approximate bounds for cities supported by the CLI's --city option
    """
    cities = {
        "delhi": BoundingBox(28.4, 28.8, 77.0, 77.4),
        "mumbai": BoundingBox(18.89, 19.27, 72.77, 72.99),
        "bangalore": BoundingBox(12.83, 13.14, 77.46, 77.78),
        "chennai": BoundingBox(12.90, 13.23, 80.12, 80.32),
        "hyderabad": BoundingBox(17.25, 17.56, 78.30, 78.62),
        "kolkata": BoundingBox(22.45, 22.65, 88.25, 88.45),
        "pune": BoundingBox(18.43, 18.64, 73.74, 73.98),
    }

    city_key = city.lower().replace(" ", "_")
    return cities.get(city_key)
