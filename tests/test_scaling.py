"""
Tests for MAVLink unit scaling
"""

import math
import pytest

from usvlink.bridge.scaling import (
    UNKNOWN_CURRENT,
    UNKNOWN_HEADING,
    UNKNOWN_VOLTAGE,
    a_to_ca,
    ca_to_a,
    cdeg_to_deg,
    cms_to_ms,
    deg_to_e7,
    e7_in_range,
    e7_to_deg,
    item_range_error,
    m_to_mm,
    mission_item_to_waypoint,
    mm_to_m,
    ms_to_cms,
    mv_to_v,
    v_to_mv,
    waypoint_to_mission_item_int,
)
from usvlink.bridge import MavMissionResult
from usvlink.mission import MavCmd, MavFrame, create_waypoint


class FakeItem:
    """Stand-in for a pymavlink mission item message"""

    def __init__(self, msg_type, **fields):
        self._type = msg_type
        self.__dict__.update(fields)

    def get_type(self):
        return self._type


def item_fields(**overrides):
    fields = dict(seq=0, frame=3, command=16, current=1, autocontinue=1,
                  param1=0.0, param2=2.0, param3=0.0, param4=0.0,
                  x=154909000, y=738278000, z=0.0)
    fields.update(overrides)
    return fields


class TestScaling:
    """Test unit conversions"""

    def test_degrees_e7(self):
        assert deg_to_e7(15.4909) == 154909000
        assert deg_to_e7(-73.8278) == -738278000
        assert e7_to_deg(154909000) == pytest.approx(15.4909)

    def test_degrees_e7_rounds(self):
        """Test conversion rounds instead of truncating"""
        assert deg_to_e7(0.00000006) == 1
        assert deg_to_e7(-0.00000006) == -1

    @pytest.mark.parametrize("degrees,ok", [
        (180.0, True),
        (-214.7483648, True),
        (214.7483648, False),
        (500.0, False),
        (1e305, False),
        (math.inf, False),
        (math.nan, False),
    ])
    def test_degrees_e7_int32_range(self, degrees, ok):
        assert e7_in_range(degrees) is ok

    def test_altitude(self):
        assert m_to_mm(1.5) == 1500
        assert mm_to_m(-250) == -0.25

    def test_speed(self):
        assert ms_to_cms(2.35) == 235
        assert cms_to_ms(150) == 1.5

    def test_voltage(self):
        assert mv_to_v(12600) == 12.6
        assert v_to_mv(12.6) == 12600
        assert mv_to_v(UNKNOWN_VOLTAGE) is None

    def test_current(self):
        assert ca_to_a(1250) == 12.5
        assert a_to_ca(12.5) == 1250
        assert ca_to_a(UNKNOWN_CURRENT) is None

    def test_heading(self):
        assert cdeg_to_deg(9000) == 90.0
        assert cdeg_to_deg(UNKNOWN_HEADING) is None


class TestMissionItems:
    """Test waypoint <-> mission item mapping"""

    def test_waypoint_to_item_int(self):
        wp = create_waypoint(2, 15.4909, 73.8278)
        item = waypoint_to_mission_item_int(wp)

        assert item["seq"] == 2
        assert item["x"] == 154909000
        assert item["y"] == 738278000
        assert item["z"] == 0.0
        assert item["frame"] == 3
        assert item["command"] == 16
        assert item["current"] == 0
        assert item["autocontinue"] == 1
        assert item["param2"] == 2.0
        assert isinstance(item["x"], int)

    def test_item_int_to_waypoint(self):
        wp = mission_item_to_waypoint(FakeItem("MISSION_ITEM_INT", **item_fields(seq=4)))

        assert wp.seq == 4
        assert wp.x == pytest.approx(15.4909)
        assert wp.y == pytest.approx(73.8278)
        assert wp.frame == MavFrame.MAV_FRAME_GLOBAL_RELATIVE_ALT
        assert wp.command == MavCmd.MAV_CMD_NAV_WAYPOINT
        assert wp.autocontinue is True

    def test_current_always_cleared(self):
        """Test the vehicle's current flag is not carried into the model"""
        wp = mission_item_to_waypoint(FakeItem("MISSION_ITEM_INT", **item_fields(current=1)))
        assert wp.current is False

    def test_float_item(self):
        """Test legacy MISSION_ITEM carries degrees"""
        msg = FakeItem("MISSION_ITEM", **item_fields(x=15.4909, y=73.8278))
        wp = mission_item_to_waypoint(msg)

        assert wp.x == 15.4909
        assert wp.y == 73.8278

    def test_seq_override(self):
        wp = mission_item_to_waypoint(FakeItem("MISSION_ITEM_INT", **item_fields(seq=7)), seq=0)
        assert wp.seq == 0

    def test_unknown_command_kept(self):
        msg = FakeItem("MISSION_ITEM_INT", **item_fields(command=183))
        wp = mission_item_to_waypoint(msg)

        assert wp.command == 183
        assert not isinstance(wp.command, MavCmd)

    def test_yaw_nan_passes_through(self):
        msg = FakeItem("MISSION_ITEM_INT", **item_fields(param4=math.nan))
        assert math.isnan(mission_item_to_waypoint(msg).param4)

    def test_item_range_error(self):
        """Test the failing axis maps to its MAV_MISSION_RESULT"""
        assert item_range_error(create_waypoint(0, 15.4909, 73.8278)) is None
        assert item_range_error(create_waypoint(0, 500.0, 73.8278)) == \
            MavMissionResult.MAV_MISSION_INVALID_PARAM5_X
        assert item_range_error(create_waypoint(0, 15.4909, -math.inf)) == \
            MavMissionResult.MAV_MISSION_INVALID_PARAM6_Y
