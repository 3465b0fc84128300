"""
MAVLink unit scaling

The only place where human units are converted to and from the
fixed-point integers used on the wire:

- lat/lon: degrees <-> degE7 (int32)
- altitude: meters <-> millimeters
- speeds: m/s <-> cm/s
- battery voltage: volts <-> millivolts
- battery current: amps <-> centiamps
- headings: centidegrees -> degrees
"""

import math
from typing import Any, Dict, Optional

from ..mission import Waypoint, coerce_command, coerce_frame
from .types import MavMissionResult

# SYS_STATUS / GLOBAL_POSITION_INT "unknown" markers
UNKNOWN_CURRENT = -1
UNKNOWN_REMAINING = -1
UNKNOWN_HEADING = 0xFFFF
UNKNOWN_VOLTAGE = 0xFFFF

INT32_MIN = -2 ** 31
INT32_MAX = 2 ** 31 - 1


def deg_to_e7(degrees: float) -> int:
    return int(round(degrees * 1e7))


def e7_to_deg(value: int) -> float:
    return value / 1e7


def m_to_mm(meters: float) -> int:
    return int(round(meters * 1000))


def mm_to_m(value: int) -> float:
    return value / 1000.0


def ms_to_cms(speed: float) -> int:
    return int(round(speed * 100))


def cms_to_ms(value: int) -> float:
    return value / 100.0


def mv_to_v(value: int) -> Optional[float]:
    if value == UNKNOWN_VOLTAGE:
        return None
    return value / 1000.0


def v_to_mv(volts: float) -> int:
    return int(round(volts * 1000))


def ca_to_a(value: int) -> Optional[float]:
    if value == UNKNOWN_CURRENT:
        return None
    return value / 100.0


def a_to_ca(amps: float) -> int:
    return int(round(amps * 100))


def cdeg_to_deg(value: int) -> Optional[float]:
    if value == UNKNOWN_HEADING:
        return None
    return value / 100.0


def waypoint_to_mission_item_int(waypoint: Waypoint) -> Dict[str, Any]:
    """
    Keyword arguments for MAVLink.mission_item_int_send()

    x/y become degE7 integers; z stays in meters as MISSION_ITEM_INT
    defines it.
    """
    return {
        "seq": waypoint.seq,
        "frame": int(waypoint.frame),
        "command": int(waypoint.command),
        "current": 1 if waypoint.current else 0,
        "autocontinue": 1 if waypoint.autocontinue else 0,
        "param1": float(waypoint.param1),
        "param2": float(waypoint.param2),
        "param3": float(waypoint.param3),
        "param4": float(waypoint.param4),
        "x": deg_to_e7(waypoint.x),
        "y": deg_to_e7(waypoint.y),
        "z": float(waypoint.z),
    }


def mission_item_to_waypoint(msg, seq: Optional[int] = None) -> Waypoint:
    """
    Build a Waypoint from a MISSION_ITEM_INT or MISSION_ITEM message

    Args:
        msg: pymavlink message (anything with the item attributes)
        seq: Override for the stored seq (re-numbering a partial fetch)

    The current flag is always cleared; held missions never carry it.
    """
    if msg.get_type() == "MISSION_ITEM_INT":
        lat, lon = e7_to_deg(msg.x), e7_to_deg(msg.y)
    else:
        lat, lon = float(msg.x), float(msg.y)

    return Waypoint(
        seq=msg.seq if seq is None else seq,
        frame=coerce_frame(msg.frame),
        command=coerce_command(msg.command),
        current=False,
        autocontinue=bool(msg.autocontinue),
        param1=float(msg.param1),
        param2=float(msg.param2),
        param3=float(msg.param3),
        param4=float(msg.param4),
        x=lat,
        y=lon,
        z=float(msg.z),
    )


def e7_in_range(degrees: float) -> bool:
    """True when `degrees` survives deg_to_e7() as an int32"""
    scaled = degrees * 1e7
    if not math.isfinite(scaled):
        return False
    return INT32_MIN <= round(scaled) <= INT32_MAX


def item_range_error(waypoint: Waypoint) -> Optional[MavMissionResult]:
    """MAV_MISSION_RESULT for an x/y that cannot go on the wire, else None"""
    if not e7_in_range(waypoint.x):
        return MavMissionResult.MAV_MISSION_INVALID_PARAM5_X
    if not e7_in_range(waypoint.y):
        return MavMissionResult.MAV_MISSION_INVALID_PARAM6_Y
    return None
