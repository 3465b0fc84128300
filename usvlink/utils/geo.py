"""
Geographic utilities

Distance and ETA helpers used for mission progress telemetry.
"""

import math
from typing import Optional

# WGS84 equatorial radius
EARTH_RADIUS_M = 6378137.0

# Below this ground speed an ETA is meaningless (boat drifting / holding)
MIN_ETA_SPEED_MS = 0.1


def haversine_distance(lat1: float, lon1: float,
                       lat2: float, lon2: float) -> float:
    """
    Calculate great-circle distance between two points

    Args:
        lat1, lon1: First point in degrees
        lat2, lon2: Second point in degrees

    Returns:
        Distance in meters
    """
    lat1_rad = math.radians(lat1)
    lat2_rad = math.radians(lat2)
    d_lat = math.radians(lat2 - lat1)
    d_lon = math.radians(lon2 - lon1)

    a = (math.sin(d_lat / 2) ** 2 +
         math.cos(lat1_rad) * math.cos(lat2_rad) * math.sin(d_lon / 2) ** 2)
    c = 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))

    return EARTH_RADIUS_M * c


def estimate_eta(distance_m: Optional[float],
                 groundspeed_ms: Optional[float]) -> Optional[float]:
    """
    Estimate time to reach a waypoint

    Args:
        distance_m: Remaining distance in meters
        groundspeed_ms: Current ground speed in m/s

    Returns:
        Seconds to arrival, or None if distance/speed unknown or too slow
    """
    if distance_m is None or groundspeed_ms is None:
        return None
    if groundspeed_ms < MIN_ETA_SPEED_MS:
        return None
    return distance_m / groundspeed_ms


def wrap_angle_360(angle: float) -> float:
    """Wrap angle to 0 to 360 degrees"""
    return angle % 360.0
