"""
Mission management module

Waypoint/Mission data model and its MAVLink item-list mapping.
"""

from .models import (
    MavCmd,
    MavFrame,
    Waypoint,
    Mission,
    MissionMetadata,
    ValidationError,
    DEFAULT_MISSION_NAME,
    DEFAULT_ACCEPTANCE_RADIUS_M,
    create_empty_mission,
    create_waypoint,
    add_waypoint_to_mission,
    clear_mission,
    mission_to_mavlink_format,
    validate_mission,
    coerce_command,
    coerce_frame,
)
from .params import ParamInfo, COMMAND_PARAMS, YAW_IGNORE, describe_params, command_table

__all__ = [
    # Types
    'MavCmd',
    'MavFrame',
    'Waypoint',
    'Mission',
    'MissionMetadata',
    'ValidationError',
    'DEFAULT_MISSION_NAME',
    'DEFAULT_ACCEPTANCE_RADIUS_M',
    # Operations
    'create_empty_mission',
    'create_waypoint',
    'add_waypoint_to_mission',
    'clear_mission',
    'mission_to_mavlink_format',
    'validate_mission',
    'coerce_command',
    'coerce_frame',
    # Parameter meanings
    'ParamInfo',
    'COMMAND_PARAMS',
    'YAW_IGNORE',
    'describe_params',
    'command_table',
]
