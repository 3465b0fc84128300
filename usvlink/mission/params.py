"""
Command parameter meanings

Waypoint.param1..param4 are generic slots. This table says what each
slot means for a given command, for labelling in the dashboard only;
the stored waypoint shape never changes.
"""

import math
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Tuple

from .models import MavCmd, Waypoint

# param4 value telling the autopilot to keep its own yaw behaviour
YAW_IGNORE = math.nan


@dataclass(frozen=True)
class ParamInfo:
    """Meaning of one param slot"""
    label: str
    unit: Optional[str] = None
    description: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {"label": self.label, "unit": self.unit, "description": self.description}


_UNUSED = None

# MAV_CMD_NAV_* parameter definitions (ArduRover subset)
COMMAND_PARAMS: Dict[MavCmd, Tuple[Optional[ParamInfo], ...]] = {
    MavCmd.MAV_CMD_NAV_WAYPOINT: (
        ParamInfo("Hold time", "s", "Time to stay at the waypoint"),
        ParamInfo("Acceptance radius", "m", "Distance at which the waypoint counts as reached"),
        ParamInfo("Pass radius", "m", "0 to pass through, >0 to orbit clockwise, <0 counter-clockwise"),
        ParamInfo("Yaw", "deg", "Desired heading at the waypoint, NaN to ignore"),
    ),
    MavCmd.MAV_CMD_NAV_LOITER_UNLIM: (
        _UNUSED,
        _UNUSED,
        ParamInfo("Loiter radius", "m", "Negative for counter-clockwise"),
        ParamInfo("Yaw", "deg", "Desired heading, NaN to ignore"),
    ),
    MavCmd.MAV_CMD_NAV_LOITER_TURNS: (
        ParamInfo("Turns", None, "Number of turns"),
        ParamInfo("Heading required", None, "0 to leave immediately, 1 to wait for heading"),
        ParamInfo("Loiter radius", "m", "Negative for counter-clockwise"),
        ParamInfo("Exit point", None, "0 from center, 1 from tangent"),
    ),
    MavCmd.MAV_CMD_NAV_LOITER_TIME: (
        ParamInfo("Loiter time", "s", "Time to loiter at the position"),
        ParamInfo("Heading required", None, "0 to leave immediately, 1 to wait for heading"),
        ParamInfo("Loiter radius", "m", "Negative for counter-clockwise"),
        ParamInfo("Exit point", None, "0 from center, 1 from tangent"),
    ),
    MavCmd.MAV_CMD_NAV_RETURN_TO_LAUNCH: (_UNUSED, _UNUSED, _UNUSED, _UNUSED),
}


def describe_params(waypoint: Waypoint) -> List[Dict[str, Any]]:
    """
    Pair a waypoint's param slots with their meaning

    Unknown commands get unlabelled slots.

    Returns:
        One entry per slot: {"param", "value", "label", "unit"}
    """
    infos = COMMAND_PARAMS.get(waypoint.command, (_UNUSED,) * 4)
    values = (waypoint.param1, waypoint.param2, waypoint.param3, waypoint.param4)

    described = []
    for i, (info, value) in enumerate(zip(infos, values), start=1):
        described.append({
            "param": f"param{i}",
            "value": None if math.isnan(value) else value,
            "label": info.label if info else None,
            "unit": info.unit if info else None,
        })
    return described


def command_table() -> Dict[str, Any]:
    """Whole table keyed by command name, for the dashboard"""
    table = {}
    for command, infos in COMMAND_PARAMS.items():
        table[command.name] = {
            "command": int(command),
            "params": [info.to_dict() if info else None for info in infos],
        }
    return table
