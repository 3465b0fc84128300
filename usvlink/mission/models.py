"""
Mission models

Waypoint and Mission records matching the MAVLink MISSION_ITEM layout
used by ArduPilot / Mission Planner, with ArduRover (USV) defaults.

Missions are immutable values: every editing operation returns a new
Mission and never touches the one it was given.
"""

from __future__ import annotations

import dataclasses
import math
from dataclasses import dataclass, field
from enum import IntEnum
from typing import Any, Dict, List, Tuple

from ..utils.timestamps import iso_now


class ValidationError(Exception):
    """Raised when a mission document cannot be parsed"""
    pass


class MavCmd(IntEnum):
    """MAVLink navigation commands (MAV_CMD)"""
    MAV_CMD_NAV_WAYPOINT = 16
    MAV_CMD_NAV_LOITER_UNLIM = 17
    MAV_CMD_NAV_LOITER_TURNS = 18
    MAV_CMD_NAV_LOITER_TIME = 19
    MAV_CMD_NAV_RETURN_TO_LAUNCH = 20


class MavFrame(IntEnum):
    """MAVLink coordinate frames (MAV_FRAME)"""
    MAV_FRAME_GLOBAL = 0
    MAV_FRAME_GLOBAL_RELATIVE_ALT = 3


DEFAULT_MISSION_NAME = "USV Mission"

# ArduRover waypoint defaults
DEFAULT_ACCEPTANCE_RADIUS_M = 2.0
DEFAULT_HOLD_TIME_S = 0.0
DEFAULT_PASS_RADIUS_M = 0.0
DEFAULT_YAW_DEG = 0.0           # 0 = auto-yaw towards next waypoint
SURFACE_ALTITUDE_M = 0.0

WAYPOINT_FIELDS = (
    "seq", "frame", "command", "current", "autocontinue",
    "param1", "param2", "param3", "param4", "x", "y", "z",
)


@dataclass(frozen=True)
class Waypoint:
    """
    One mission item, field for field a MAVLink MISSION_ITEM

    param1..param4 stay generic: their meaning depends on `command`
    (see params.COMMAND_PARAMS). x is latitude and y is longitude,
    in degrees; z is altitude in meters.

    `current` is always False in held mission state. Only the list
    built by mission_to_mavlink_format() marks seq 0 as current.
    """
    seq: int
    frame: MavFrame
    command: MavCmd
    current: bool
    autocontinue: bool
    param1: float
    param2: float
    param3: float
    param4: float
    x: float
    y: float
    z: float

    def to_dict(self) -> Dict[str, Any]:
        d = {name: getattr(self, name) for name in WAYPOINT_FIELDS}
        d["frame"] = int(self.frame)
        d["command"] = int(self.command)
        # JSON has no NaN; the yaw "ignore" sentinel travels as null
        for name in ("param1", "param2", "param3", "param4"):
            if isinstance(d[name], float) and math.isnan(d[name]):
                d[name] = None
        return d

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Waypoint':
        """
        Create waypoint from dictionary (JSON data)

        Raises:
            ValidationError: If a field is missing or has the wrong type
        """
        if not isinstance(data, dict):
            raise ValidationError("waypoint must be an object")

        missing = [name for name in WAYPOINT_FIELDS if name not in data]
        if missing:
            raise ValidationError(f"waypoint: missing field(s) {', '.join(missing)}")

        try:
            return cls(
                seq=_as_int(data["seq"], "seq"),
                frame=_as_enum(coerce_frame, data["frame"], "frame"),
                command=_as_enum(coerce_command, data["command"], "command"),
                current=_as_bool(data["current"], "current"),
                autocontinue=_as_bool(data["autocontinue"], "autocontinue"),
                param1=_as_param(data["param1"], "param1"),
                param2=_as_param(data["param2"], "param2"),
                param3=_as_param(data["param3"], "param3"),
                param4=_as_param(data["param4"], "param4"),
                x=_as_float(data["x"], "x"),
                y=_as_float(data["y"], "y"),
                z=_as_float(data["z"], "z"),
            )
        except (TypeError, ValueError) as e:
            raise ValidationError(f"waypoint: {e}")


@dataclass(frozen=True)
class MissionMetadata:
    """Mission name and ISO 8601 timestamps"""
    name: str
    created_at: str
    updated_at: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "createdAt": self.created_at,
            "updatedAt": self.updated_at,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'MissionMetadata':
        if not isinstance(data, dict):
            raise ValidationError("metadata must be an object")
        try:
            return cls(
                name=str(data["name"]),
                created_at=str(data["createdAt"]),
                updated_at=str(data["updatedAt"]),
            )
        except KeyError as e:
            raise ValidationError(f"metadata: missing required field {e}")


@dataclass(frozen=True)
class Mission:
    """
    Ordered waypoints plus metadata

    waypoints[i].seq == i for every i. current_waypoint_index is a
    display-only value owned by the client; it is never synchronized
    with the vehicle (MissionProgress.current_waypoint_seq is the
    vehicle's view).
    """
    waypoints: Tuple[Waypoint, ...] = field(default_factory=tuple)
    current_waypoint_index: int = 0
    metadata: MissionMetadata = field(default_factory=lambda: _new_metadata(DEFAULT_MISSION_NAME))

    @property
    def waypoint_count(self) -> int:
        """Number of waypoints in mission"""
        return len(self.waypoints)

    def to_dict(self) -> Dict[str, Any]:
        """Convert mission to dictionary (for JSON serialization)"""
        return {
            "waypoints": [wp.to_dict() for wp in self.waypoints],
            "currentWaypointIndex": self.current_waypoint_index,
            "metadata": self.metadata.to_dict(),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Mission':
        """
        Create mission from dictionary (JSON data)

        Sequencing is taken as given; use validate_mission() to check it.

        Raises:
            ValidationError: If mission data is malformed
        """
        if not isinstance(data, dict):
            raise ValidationError("mission must be an object")

        waypoints_data = data.get("waypoints", [])
        if not isinstance(waypoints_data, list):
            raise ValidationError("waypoints must be a list")

        waypoints = []
        for i, wp_data in enumerate(waypoints_data):
            try:
                waypoints.append(Waypoint.from_dict(wp_data))
            except ValidationError as e:
                raise ValidationError(f"Waypoint {i}: {e}")

        try:
            index = _as_int(data.get("currentWaypointIndex", 0), "currentWaypointIndex")
        except (TypeError, ValueError) as e:
            raise ValidationError(str(e))

        if "metadata" in data:
            metadata = MissionMetadata.from_dict(data["metadata"])
        else:
            metadata = _new_metadata(DEFAULT_MISSION_NAME)

        return cls(
            waypoints=tuple(waypoints),
            current_waypoint_index=index,
            metadata=metadata,
        )


def create_empty_mission(name: str = DEFAULT_MISSION_NAME) -> Mission:
    """Create a mission with no waypoints"""
    return Mission(
        waypoints=(),
        current_waypoint_index=0,
        metadata=_new_metadata(name),
    )


def create_waypoint(seq: int, lat: float, lon: float) -> Waypoint:
    """
    Create a waypoint with USV-appropriate defaults

    Coordinates are stored as given. Range checking belongs to the caller.

    Args:
        seq: Sequence number (0-based, caller keeps it contiguous)
        lat: Latitude in degrees
        lon: Longitude in degrees

    Returns:
        Waypoint with ArduRover defaults
    """
    return Waypoint(
        seq=seq,
        frame=MavFrame.MAV_FRAME_GLOBAL_RELATIVE_ALT,
        command=MavCmd.MAV_CMD_NAV_WAYPOINT,
        current=False,
        autocontinue=True,
        param1=DEFAULT_HOLD_TIME_S,
        param2=DEFAULT_ACCEPTANCE_RADIUS_M,
        param3=DEFAULT_PASS_RADIUS_M,
        param4=DEFAULT_YAW_DEG,
        x=lat,
        y=lon,
        z=SURFACE_ALTITUDE_M,
    )


def add_waypoint_to_mission(mission: Mission, lat: float, lon: float) -> Mission:
    """
    Append a waypoint, returning a new mission

    The new waypoint's seq is the current waypoint count. Only
    metadata.updated_at changes in the metadata.
    """
    waypoint = create_waypoint(len(mission.waypoints), lat, lon)

    return dataclasses.replace(
        mission,
        waypoints=mission.waypoints + (waypoint,),
        metadata=dataclasses.replace(mission.metadata, updated_at=iso_now()),
    )


def clear_mission(mission: Mission) -> Mission:
    """Discard all waypoints, keeping only the mission name"""
    return create_empty_mission(mission.metadata.name)


def mission_to_mavlink_format(mission: Mission) -> List[Waypoint]:
    """
    Build the item list sent to the autopilot

    Every waypoint is copied with current=True at position 0 and False
    everywhere else, whatever the stored flags say. The mission itself
    is left untouched.
    """
    return [
        dataclasses.replace(wp, current=(idx == 0))
        for idx, wp in enumerate(mission.waypoints)
    ]


def validate_mission(mission: Mission) -> List[str]:
    """
    Check a mission for problems the autopilot is likely to reject

    Never raises; upload still proceeds and these are reported as
    warnings.

    Returns:
        List of problem descriptions (empty if none found)
    """
    problems = []

    for i, wp in enumerate(mission.waypoints):
        if wp.seq != i:
            problems.append(f"Waypoint {i}: seq is {wp.seq}, expected {i}")
        if not (-90 <= wp.x <= 90):
            problems.append(f"Waypoint {i}: invalid latitude {wp.x}")
        if not (-180 <= wp.y <= 180):
            problems.append(f"Waypoint {i}: invalid longitude {wp.y}")
        if wp.z != SURFACE_ALTITUDE_M:
            problems.append(f"Waypoint {i}: altitude {wp.z} on a surface vehicle")
        if wp.current:
            problems.append(f"Waypoint {i}: current flag set in mission state")
        if not isinstance(wp.command, MavCmd):
            problems.append(f"Waypoint {i}: unsupported command {wp.command}")
        if not isinstance(wp.frame, MavFrame):
            problems.append(f"Waypoint {i}: unsupported frame {wp.frame}")

    if mission.waypoints and not (0 <= mission.current_waypoint_index < len(mission.waypoints)):
        problems.append(
            f"currentWaypointIndex {mission.current_waypoint_index} outside 0..{len(mission.waypoints) - 1}"
        )

    return problems


def coerce_command(value: int) -> MavCmd:
    """MavCmd member for a known command, the raw integer otherwise"""
    try:
        return MavCmd(value)
    except ValueError:
        return value


def coerce_frame(value: int) -> MavFrame:
    """MavFrame member for a known frame, the raw integer otherwise"""
    try:
        return MavFrame(value)
    except ValueError:
        return value


def _as_int(value: Any, name: str) -> int:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ValueError(f"{name} must be an integer, got {value!r}")
    if isinstance(value, float) and not value.is_integer():
        raise ValueError(f"{name} must be an integer, got {value!r}")
    return int(value)


def _as_float(value: Any, name: str) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ValueError(f"{name} must be a number, got {value!r}")
    return float(value)


def _as_param(value: Any, name: str) -> float:
    if value is None:
        return math.nan
    return _as_float(value, name)


def _as_bool(value: Any, name: str) -> bool:
    if isinstance(value, bool):
        return value
    if value in (0, 1):
        return bool(value)
    raise ValueError(f"{name} must be a boolean, got {value!r}")


def _as_enum(coerce, value: Any, name: str):
    return coerce(_as_int(value, name))


def _new_metadata(name: str) -> MissionMetadata:
    now = iso_now()
    return MissionMetadata(name=name, created_at=now, updated_at=now)
