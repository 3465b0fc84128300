"""
Utility modules
"""

from .geo import haversine_distance, estimate_eta, wrap_angle_360
from .logger import setup_logging
from .timestamps import iso_now, from_epoch

__all__ = [
    'haversine_distance',
    'estimate_eta',
    'wrap_angle_360',
    'setup_logging',
    'iso_now',
    'from_epoch',
]
