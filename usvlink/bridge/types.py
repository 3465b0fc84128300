"""
Bridge payload types

Data exchanged between the dashboard, the bridge and the autopilot.
All values are in human units (degrees, meters, m/s, volts, amps);
MAVLink fixed-point scaling happens only inside bridge implementations
(see scaling.py).
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import IntEnum
from typing import Any, Dict, Optional, Tuple

from ..mission import Mission
from ..utils.timestamps import iso_now


class MavMissionResult(IntEnum):
    """MAV_MISSION_RESULT codes carried by MISSION_ACK"""
    MAV_MISSION_ACCEPTED = 0
    MAV_MISSION_ERROR = 1
    MAV_MISSION_UNSUPPORTED_FRAME = 2
    MAV_MISSION_UNSUPPORTED = 3
    MAV_MISSION_NO_SPACE = 4
    MAV_MISSION_INVALID = 5
    MAV_MISSION_INVALID_PARAM1 = 6
    MAV_MISSION_INVALID_PARAM2 = 7
    MAV_MISSION_INVALID_PARAM3 = 8
    MAV_MISSION_INVALID_PARAM4 = 9
    MAV_MISSION_INVALID_PARAM5_X = 10
    MAV_MISSION_INVALID_PARAM6_Y = 11
    MAV_MISSION_INVALID_PARAM7 = 12
    MAV_MISSION_INVALID_SEQUENCE = 13
    MAV_MISSION_DENIED = 14
    MAV_MISSION_OPERATION_CANCELLED = 15


# Bridge-side codes, outside the MAV_MISSION_RESULT range
TIMEOUT_ERROR = -1
NOT_CONNECTED_ERROR = -2

_RESULT_MESSAGES: Dict[int, str] = {
    MavMissionResult.MAV_MISSION_ACCEPTED: "Mission accepted",
    MavMissionResult.MAV_MISSION_ERROR: "Generic mission error",
    MavMissionResult.MAV_MISSION_UNSUPPORTED_FRAME: "Coordinate frame not supported",
    MavMissionResult.MAV_MISSION_UNSUPPORTED: "Command not supported",
    MavMissionResult.MAV_MISSION_NO_SPACE: "Mission exceeds vehicle storage",
    MavMissionResult.MAV_MISSION_INVALID: "Invalid mission item",
    MavMissionResult.MAV_MISSION_INVALID_PARAM1: "param1 out of range",
    MavMissionResult.MAV_MISSION_INVALID_PARAM2: "param2 out of range",
    MavMissionResult.MAV_MISSION_INVALID_PARAM3: "param3 out of range",
    MavMissionResult.MAV_MISSION_INVALID_PARAM4: "param4 out of range",
    MavMissionResult.MAV_MISSION_INVALID_PARAM5_X: "Latitude (x) out of range",
    MavMissionResult.MAV_MISSION_INVALID_PARAM6_Y: "Longitude (y) out of range",
    MavMissionResult.MAV_MISSION_INVALID_PARAM7: "Altitude (z) out of range",
    MavMissionResult.MAV_MISSION_INVALID_SEQUENCE: "Item received out of sequence",
    MavMissionResult.MAV_MISSION_DENIED: "Vehicle is not accepting missions",
    MavMissionResult.MAV_MISSION_OPERATION_CANCELLED: "Mission operation cancelled",
    TIMEOUT_ERROR: "No response from vehicle before deadline",
    NOT_CONNECTED_ERROR: "Bridge is not connected to the vehicle",
}


def describe_mission_result(code: int) -> str:
    """Human-readable text for a MISSION_ACK or bridge error code"""
    return _RESULT_MESSAGES.get(code, f"Unknown mission result {code}")


def _compact(d: Dict[str, Any]) -> Dict[str, Any]:
    """Drop optional fields that are unset"""
    return {k: v for k, v in d.items() if v is not None}


# ============================================================================
# Mission upload / download
# ============================================================================

@dataclass(frozen=True)
class MissionUploadRequest:
    """
    Mission to send to the vehicle

    Maps to MISSION_CLEAR_ALL, MISSION_COUNT, MISSION_ITEM_INT per item,
    then MISSION_SET_CURRENT(0) when set_as_current is True.
    """
    mission: Mission
    set_as_current: bool = False


@dataclass(frozen=True)
class MissionUploadResult:
    """
    Outcome of an upload

    success=False always comes with error_code/error_message. A bridge
    never raises for rejection, timeout or lost link; callers branch on
    `success`.
    """
    success: bool
    accepted_waypoint_count: int
    timestamp: str
    error_code: Optional[int] = None
    error_message: Optional[str] = None
    warnings: Tuple[str, ...] = ()

    @classmethod
    def accepted(cls, count: int, warnings=()) -> 'MissionUploadResult':
        return cls(
            success=True,
            accepted_waypoint_count=count,
            timestamp=iso_now(),
            warnings=tuple(warnings),
        )

    @classmethod
    def rejected(cls, error_code: int, error_message: Optional[str] = None,
                 accepted_count: int = 0, warnings=()) -> 'MissionUploadResult':
        return cls(
            success=False,
            accepted_waypoint_count=accepted_count,
            timestamp=iso_now(),
            error_code=int(error_code),
            error_message=error_message or describe_mission_result(error_code),
            warnings=tuple(warnings),
        )

    @classmethod
    def timed_out(cls, error_message: Optional[str] = None,
                  accepted_count: int = 0, warnings=()) -> 'MissionUploadResult':
        return cls.rejected(TIMEOUT_ERROR, error_message, accepted_count, warnings)

    @property
    def is_timeout(self) -> bool:
        return self.error_code == TIMEOUT_ERROR

    def to_dict(self) -> Dict[str, Any]:
        d = _compact({
            "success": self.success,
            "acceptedWaypointCount": self.accepted_waypoint_count,
            "errorCode": self.error_code,
            "errorMessage": self.error_message,
            "timestamp": self.timestamp,
        })
        if self.warnings:
            d["warnings"] = list(self.warnings)
        return d


@dataclass(frozen=True)
class MissionFetchRequest:
    """Inclusive seq range to read back; None means from start / to end"""
    start_seq: Optional[int] = None
    end_seq: Optional[int] = None


@dataclass(frozen=True)
class MissionFetchResponse:
    """
    Mission read back from the vehicle

    current_waypoint_index comes from MISSION_CURRENT and is the
    vehicle's value, independent of mission.current_waypoint_index.
    On failure success is False, the mission is empty and
    error_code/error_message say why.
    """
    mission: Mission
    current_waypoint_index: int
    timestamp: str
    success: bool = True
    error_code: Optional[int] = None
    error_message: Optional[str] = None

    @classmethod
    def failed(cls, mission: Mission, error_code: int,
               error_message: Optional[str] = None) -> 'MissionFetchResponse':
        return cls(
            mission=mission,
            current_waypoint_index=0,
            timestamp=iso_now(),
            success=False,
            error_code=int(error_code),
            error_message=error_message or describe_mission_result(error_code),
        )

    def to_dict(self) -> Dict[str, Any]:
        return _compact({
            "mission": self.mission.to_dict(),
            "currentWaypointIndex": self.current_waypoint_index,
            "timestamp": self.timestamp,
            "success": self.success,
            "errorCode": self.error_code,
            "errorMessage": self.error_message,
        })


# ============================================================================
# Telemetry
# ============================================================================

@dataclass(frozen=True)
class MissionProgress:
    """
    Vehicle-reported mission execution state (MISSION_CURRENT,
    NAV_CONTROLLER_OUTPUT). eta_to_waypoint is derived by the bridge
    from distance and ground speed.
    """
    current_waypoint_seq: int
    total_waypoints: int
    timestamp: str = field(default_factory=iso_now)
    distance_to_waypoint: Optional[float] = None
    eta_to_waypoint: Optional[float] = None

    def to_dict(self) -> Dict[str, Any]:
        return _compact({
            "currentWaypointSeq": self.current_waypoint_seq,
            "totalWaypoints": self.total_waypoints,
            "distanceToWaypoint": self.distance_to_waypoint,
            "etaToWaypoint": self.eta_to_waypoint,
            "timestamp": self.timestamp,
        })


@dataclass(frozen=True)
class VehiclePosition:
    """GLOBAL_POSITION_INT / VFR_HUD in degrees, meters and m/s"""
    lat: float
    lon: float
    alt: float
    heading: float              # degrees 0-360, 0 = North
    groundspeed: float
    timestamp: str = field(default_factory=iso_now)
    vertical_speed: Optional[float] = None     # positive = up

    def to_dict(self) -> Dict[str, Any]:
        return _compact({
            "lat": self.lat,
            "lon": self.lon,
            "alt": self.alt,
            "heading": self.heading,
            "groundspeed": self.groundspeed,
            "verticalSpeed": self.vertical_speed,
            "timestamp": self.timestamp,
        })


@dataclass(frozen=True)
class VehicleStatus:
    """HEARTBEAT / SYS_STATUS summary"""
    armed: bool
    mode: str                   # ArduRover mode name, e.g. "AUTO"
    system_status: str          # MAV_STATE name, e.g. "ACTIVE"
    failsafe: bool
    timestamp: str = field(default_factory=iso_now)
    battery_voltage: Optional[float] = None
    battery_percent: Optional[float] = None
    battery_current: Optional[float] = None

    def to_dict(self) -> Dict[str, Any]:
        return _compact({
            "armed": self.armed,
            "mode": self.mode,
            "systemStatus": self.system_status,
            "failsafe": self.failsafe,
            "batteryVoltage": self.battery_voltage,
            "batteryPercent": self.battery_percent,
            "batteryCurrent": self.battery_current,
            "timestamp": self.timestamp,
        })


@dataclass(frozen=True)
class ConnectionStatus:
    """Link state between bridge and vehicle"""
    connected: bool
    connection_type: Optional[str] = None      # "serial", "udp", "tcp"
    last_heartbeat: Optional[str] = None
    heartbeat_age: Optional[float] = None      # milliseconds

    def to_dict(self) -> Dict[str, Any]:
        return _compact({
            "connected": self.connected,
            "connectionType": self.connection_type,
            "lastHeartbeat": self.last_heartbeat,
            "heartbeatAge": self.heartbeat_age,
        })
