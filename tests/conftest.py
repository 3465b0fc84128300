"""
Pytest configuration and fixtures
"""

import pytest
import sys
from pathlib import Path

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))


# Panjim waterfront, Goa
SAMPLE_COORDINATES = [
    (15.4909, 73.8278),
    (15.4915, 73.8285),
    (15.4921, 73.8279),
]


@pytest.fixture
def sample_coordinates():
    """Fixture for (lat, lon) pairs as clicked on the map"""
    return list(SAMPLE_COORDINATES)


@pytest.fixture
def empty_mission():
    """Fixture for a fresh mission"""
    from usvlink.mission import create_empty_mission
    return create_empty_mission()


@pytest.fixture
def three_waypoint_mission(empty_mission, sample_coordinates):
    """Fixture for a mission built from three map clicks"""
    from usvlink.mission import add_waypoint_to_mission

    mission = empty_mission
    for lat, lon in sample_coordinates:
        mission = add_waypoint_to_mission(mission, lat, lon)
    return mission


@pytest.fixture
def mock_bridge():
    """Fixture for a connected mock bridge that accepts everything"""
    from usvlink.bridge import MockBridgeService
    return MockBridgeService()
