"""
Tests for the pymavlink bridge

A scripted vehicle answers the bridge's *_send() calls by feeding
replies straight into handle_message(), so the mission protocol runs
without a real link.
"""

import asyncio
import time
import pytest

from pymavlink import mavutil

from usvlink.bridge import (
    NOT_CONNECTED_ERROR,
    TIMEOUT_ERROR,
    MavlinkBridge,
    MavMissionResult,
    MissionFetchRequest,
    MissionUploadRequest,
    UploadState,
)
from usvlink.bridge.mavlink import connection_type_for
from usvlink.bridge.scaling import deg_to_e7
from usvlink.mission import add_waypoint_to_mission

mavlink = mavutil.mavlink


class FakeMessage:
    """Minimal pymavlink message"""

    def __init__(self, msg_type, src_system=1, src_component=1, **fields):
        self._type = msg_type
        self._src_system = src_system
        self._src_component = src_component
        self.__dict__.update(fields)

    def get_type(self):
        return self._type

    def get_srcSystem(self):
        return self._src_system

    def get_srcComponent(self):
        return self._src_component


class ScriptedVehicle:
    """
    Autopilot side of the mission protocol

    Args:
        ack_code: MISSION_ACK type sent after the last item
        accept_count: Ack early after this many items
        respond: False ignores every mission message
        drop_item: seq never answered during download
        silent_after: Stop answering after this many uploaded items
        fail_on_item: Raise from mission_item_int_send() like a dead port
    """

    def __init__(self, ack_code=mavlink.MAV_MISSION_ACCEPTED, accept_count=None,
                 respond=True, drop_item=None, silent_after=None, fail_on_item=False):
        self.bridge = None
        self.ack_code = ack_code
        self.accept_count = accept_count
        self.respond = respond
        self.drop_item = drop_item
        self.silent_after = silent_after
        self.fail_on_item = fail_on_item

        self.items = {}
        self.stored = []
        self.count = 0
        self.sent = []
        self.acks_received = []

    def _reply(self, msg_type, **fields):
        if self.respond:
            self.bridge.handle_message(FakeMessage(msg_type, **fields))

    def mission_clear_all_send(self, target_system, target_component):
        self.sent.append("MISSION_CLEAR_ALL")
        self.stored = []
        self._reply("MISSION_ACK", type=mavlink.MAV_MISSION_ACCEPTED)

    def mission_count_send(self, target_system, target_component, count):
        self.sent.append("MISSION_COUNT")
        self.count = count
        self.items = {}
        self._reply("MISSION_REQUEST_INT", seq=0)

    def mission_item_int_send(self, target_system, target_component, **item):
        self.sent.append("MISSION_ITEM_INT")
        if self.fail_on_item:
            raise OSError("Input/output error")
        self.items[item["seq"]] = item
        if self.silent_after is not None and len(self.items) >= self.silent_after:
            return
        limit = self.count if self.accept_count is None else self.accept_count
        if item["seq"] + 1 < limit:
            self._reply("MISSION_REQUEST_INT", seq=item["seq"] + 1)
            return
        if self.ack_code == mavlink.MAV_MISSION_ACCEPTED:
            self.stored = [self.items[i] for i in sorted(self.items)]
        self._reply("MISSION_ACK", type=self.ack_code)

    def mission_set_current_send(self, target_system, target_component, seq):
        self.sent.append(f"MISSION_SET_CURRENT {seq}")

    def mission_request_list_send(self, target_system, target_component):
        self.sent.append("MISSION_REQUEST_LIST")
        self._reply("MISSION_COUNT", count=len(self.stored))

    def mission_request_int_send(self, target_system, target_component, seq):
        self.sent.append(f"MISSION_REQUEST_INT {seq}")
        if seq == self.drop_item:
            return
        self._reply("MISSION_ITEM_INT", **self.stored[seq])

    def mission_ack_send(self, target_system, target_component, ack_type):
        self.acks_received.append(ack_type)


class FakeConnection:
    def __init__(self, vehicle):
        self.mav = vehicle
        self.closed = False

    def close(self):
        self.closed = True


def heartbeat(**overrides):
    fields = dict(type=mavlink.MAV_TYPE_SURFACE_BOAT, autopilot=mavlink.MAV_AUTOPILOT_ARDUPILOTMEGA,
                  base_mode=0, custom_mode=4, system_status=mavlink.MAV_STATE_STANDBY)
    fields.update(overrides)
    return FakeMessage("HEARTBEAT", **fields)


def make_bridge(vehicle=None, connect=True):
    vehicle = vehicle or ScriptedVehicle()
    bridge = MavlinkBridge(
        connection_string="udpin:0.0.0.0:14550",
        upload_timeout_s=1.0,
        item_timeout_s=0.1,
        connection=FakeConnection(vehicle),
    )
    vehicle.bridge = bridge
    if connect:
        bridge.handle_message(heartbeat())
    return bridge, vehicle


class TestConnection:
    """Test heartbeat tracking"""

    def test_not_connected_before_heartbeat(self):
        bridge, _ = make_bridge(connect=False)
        assert bridge.is_connected() is False

    def test_heartbeat_connects(self):
        bridge, _ = make_bridge(connect=False)
        received = []
        bridge.on_connection_status(received.append)

        bridge.handle_message(heartbeat(src_system=7, src_component=1))

        assert bridge.is_connected()
        assert bridge.target_system == 7
        assert [s.connected for s in received] == [True]
        assert received[0].connection_type == "udp"

    def test_gcs_heartbeat_ignored(self):
        """Test another ground station does not count as the vehicle"""
        bridge, _ = make_bridge(connect=False)

        bridge.handle_message(heartbeat(type=mavlink.MAV_TYPE_GCS, src_system=255))

        assert bridge.is_connected() is False
        assert bridge.target_system == 1

    def test_component_heartbeat_ignored(self):
        """Test a gimbal on the vehicle does not replace the autopilot"""
        bridge, _ = make_bridge()
        received = []
        bridge.on_status(received.append)

        bridge.handle_message(heartbeat(
            src_component=154, type=mavlink.MAV_TYPE_GIMBAL,
            autopilot=mavlink.MAV_AUTOPILOT_INVALID, custom_mode=0))

        assert bridge.target_component == 1
        assert received == []

        bridge.handle_message(heartbeat())
        assert received[-1].mode == "HOLD"

    def test_link_lost(self):
        """Test silence beyond the timeout drops the link once"""
        bridge, _ = make_bridge()
        received = []
        bridge.on_connection_status(received.append)

        bridge._last_heartbeat = time.time() - 10
        bridge.check_heartbeat()
        bridge.check_heartbeat()

        assert bridge.is_connected() is False
        assert [s.connected for s in received] == [False]

    def test_connection_types(self):
        assert connection_type_for("udpin:0.0.0.0:14550") == "udp"
        assert connection_type_for("tcp:127.0.0.1:5760") == "tcp"
        assert connection_type_for("/dev/ttyACM0") == "serial"

    def test_stop_closes_connection(self):
        bridge, vehicle = make_bridge()
        conn = bridge._conn

        bridge.stop()

        assert conn.closed
        assert bridge.is_connected() is False


class TestTelemetry:
    """Test telemetry decoding"""

    def test_status_from_heartbeat(self):
        bridge, _ = make_bridge(connect=False)
        received = []
        bridge.on_status(received.append)

        bridge.handle_message(FakeMessage(
            "SYS_STATUS", voltage_battery=12600, current_battery=350, battery_remaining=80))
        bridge.handle_message(heartbeat(
            base_mode=mavlink.MAV_MODE_FLAG_SAFETY_ARMED, custom_mode=10,
            system_status=mavlink.MAV_STATE_ACTIVE))

        status = received[-1]
        assert status.armed is True
        assert status.mode == "AUTO"
        assert status.system_status == "ACTIVE"
        assert status.failsafe is False
        assert status.battery_voltage == 12.6
        assert status.battery_current == 3.5
        assert status.battery_percent == 80.0

    def test_failsafe_state(self):
        bridge, _ = make_bridge(connect=False)
        received = []
        bridge.on_status(received.append)

        bridge.handle_message(heartbeat(system_status=mavlink.MAV_STATE_CRITICAL))

        assert received[-1].failsafe is True
        assert received[-1].armed is False

    def test_unknown_battery(self):
        bridge, _ = make_bridge(connect=False)
        received = []
        bridge.on_status(received.append)

        bridge.handle_message(FakeMessage(
            "SYS_STATUS", voltage_battery=0xFFFF, current_battery=-1, battery_remaining=-1))
        bridge.handle_message(heartbeat())

        assert received[-1].battery_voltage is None
        assert received[-1].battery_current is None
        assert received[-1].battery_percent is None

    def test_position(self):
        """Test fixed-point position fields are scaled"""
        bridge, _ = make_bridge()
        received = []
        bridge.on_position(received.append)

        bridge.handle_message(FakeMessage("VFR_HUD", groundspeed=1.8, heading=91))
        bridge.handle_message(FakeMessage(
            "GLOBAL_POSITION_INT", lat=154909000, lon=738278000, alt=1500,
            relative_alt=0, vx=100, vy=150, vz=-20, hdg=9000))

        position = received[-1]
        assert position.lat == pytest.approx(15.4909)
        assert position.lon == pytest.approx(73.8278)
        assert position.alt == 1.5
        assert position.heading == 90.0
        assert position.groundspeed == 1.8
        assert position.vertical_speed == pytest.approx(0.2)

    def test_position_fallbacks(self):
        """Test heading and speed without VFR_HUD or hdg"""
        bridge, _ = make_bridge()
        received = []
        bridge.on_position(received.append)

        bridge.handle_message(FakeMessage(
            "GLOBAL_POSITION_INT", lat=0, lon=0, alt=0, relative_alt=0,
            vx=300, vy=400, vz=0, hdg=0xFFFF))

        assert received[-1].heading == 0.0
        assert received[-1].groundspeed == pytest.approx(5.0)

    def test_progress_on_change_only(self):
        """Test MISSION_CURRENT publishes once per waypoint change"""
        bridge, _ = make_bridge()
        received = []
        bridge.on_mission_progress(received.append)

        bridge.handle_message(FakeMessage("VFR_HUD", groundspeed=2.0, heading=0))
        bridge.handle_message(FakeMessage("NAV_CONTROLLER_OUTPUT", wp_dist=40))
        bridge.handle_message(FakeMessage("MISSION_CURRENT", seq=1, total=3))
        bridge.handle_message(FakeMessage("MISSION_CURRENT", seq=1, total=3))
        bridge.handle_message(FakeMessage("MISSION_CURRENT", seq=2, total=3))

        assert [p.current_waypoint_seq for p in received] == [1, 2]
        assert received[0].total_waypoints == 3
        assert received[0].distance_to_waypoint == 40.0
        assert received[0].eta_to_waypoint == pytest.approx(20.0)


class TestUpload:
    """Test the upload transaction"""

    def test_upload_accepted(self, three_waypoint_mission):
        bridge, vehicle = make_bridge()

        result = bridge.upload_mission_blocking(MissionUploadRequest(mission=three_waypoint_mission))

        assert result.success is True
        assert result.accepted_waypoint_count == 3
        assert bridge.upload_state.state == UploadState.ACCEPTED
        assert vehicle.sent == [
            "MISSION_CLEAR_ALL", "MISSION_COUNT",
            "MISSION_ITEM_INT", "MISSION_ITEM_INT", "MISSION_ITEM_INT",
        ]

    def test_items_on_wire(self, three_waypoint_mission):
        """Test items carry degE7 coordinates and only item 0 is current"""
        bridge, vehicle = make_bridge()

        bridge.upload_mission_blocking(MissionUploadRequest(mission=three_waypoint_mission))

        assert [vehicle.items[i]["current"] for i in range(3)] == [1, 0, 0]
        for i, wp in enumerate(three_waypoint_mission.waypoints):
            assert vehicle.items[i]["x"] == deg_to_e7(wp.x)
            assert vehicle.items[i]["y"] == deg_to_e7(wp.y)

    def test_upload_via_coroutine(self, three_waypoint_mission):
        bridge, _ = make_bridge()

        result = asyncio.run(bridge.upload_mission(
            MissionUploadRequest(mission=three_waypoint_mission)))

        assert result.success is True

    def test_set_as_current(self, three_waypoint_mission):
        bridge, vehicle = make_bridge()

        bridge.upload_mission_blocking(
            MissionUploadRequest(mission=three_waypoint_mission, set_as_current=True))

        assert vehicle.sent[-1] == "MISSION_SET_CURRENT 0"

    def test_upload_rejected(self, three_waypoint_mission):
        vehicle = ScriptedVehicle(ack_code=mavlink.MAV_MISSION_INVALID_SEQUENCE)
        bridge, _ = make_bridge(vehicle)

        result = bridge.upload_mission_blocking(MissionUploadRequest(mission=three_waypoint_mission))

        assert result.success is False
        assert result.error_code == MavMissionResult.MAV_MISSION_INVALID_SEQUENCE
        assert result.accepted_waypoint_count == 0
        assert bridge.upload_state.state == UploadState.REJECTED

    def test_upload_partial_ack(self, three_waypoint_mission):
        vehicle = ScriptedVehicle(accept_count=2)
        bridge, _ = make_bridge(vehicle)

        result = bridge.upload_mission_blocking(MissionUploadRequest(mission=three_waypoint_mission))

        assert result.success is False
        assert result.accepted_waypoint_count == 2
        assert result.error_code == MavMissionResult.MAV_MISSION_ERROR
        assert result.warnings

    def test_upload_timeout(self, three_waypoint_mission):
        vehicle = ScriptedVehicle(respond=False)
        bridge, _ = make_bridge(vehicle)

        result = bridge.upload_mission_blocking(MissionUploadRequest(mission=three_waypoint_mission))

        assert result.success is False
        assert result.error_code == TIMEOUT_ERROR
        assert bridge.upload_state.state == UploadState.TIMED_OUT
        # Nothing to cancel before MISSION_COUNT
        assert vehicle.acks_received == []

    def test_upload_stalled_cancels(self, three_waypoint_mission):
        """Test a vehicle going quiet mid-upload gets the transfer cancelled"""
        vehicle = ScriptedVehicle(silent_after=1)
        bridge, _ = make_bridge(vehicle)

        result = bridge.upload_mission_blocking(MissionUploadRequest(mission=three_waypoint_mission))

        assert result.error_code == TIMEOUT_ERROR
        assert vehicle.sent == ["MISSION_CLEAR_ALL", "MISSION_COUNT", "MISSION_ITEM_INT"]
        assert vehicle.acks_received == [mavlink.MAV_MISSION_OPERATION_CANCELLED]

    def test_upload_send_error_cancels(self, three_waypoint_mission):
        """Test a link error mid-upload is a rejection plus a cancel"""
        vehicle = ScriptedVehicle(fail_on_item=True)
        bridge, _ = make_bridge(vehicle)

        result = bridge.upload_mission_blocking(MissionUploadRequest(mission=three_waypoint_mission))

        assert result.success is False
        assert result.error_code == MavMissionResult.MAV_MISSION_ERROR
        assert "Input/output error" in result.error_message
        assert vehicle.acks_received == [mavlink.MAV_MISSION_OPERATION_CANCELLED]

    @pytest.mark.parametrize("lat,lon,code", [
        (500.0, 73.8278, MavMissionResult.MAV_MISSION_INVALID_PARAM5_X),
        (15.4909, -1e300, MavMissionResult.MAV_MISSION_INVALID_PARAM6_Y),
        (float("nan"), 73.8278, MavMissionResult.MAV_MISSION_INVALID_PARAM5_X),
    ])
    def test_upload_unencodable_coordinates(self, three_waypoint_mission, lat, lon, code):
        """Test coordinates outside int32 degE7 are refused before touching the vehicle"""
        bridge, vehicle = make_bridge()
        mission = add_waypoint_to_mission(three_waypoint_mission, lat, lon)

        result = bridge.upload_mission_blocking(MissionUploadRequest(mission=mission))

        assert result.success is False
        assert result.error_code == code
        assert "Waypoint 3" in result.error_message
        assert vehicle.sent == []

    def test_upload_not_connected(self, three_waypoint_mission):
        bridge, vehicle = make_bridge(connect=False)

        result = bridge.upload_mission_blocking(MissionUploadRequest(mission=three_waypoint_mission))

        assert result.error_code == NOT_CONNECTED_ERROR
        assert vehicle.sent == []

    def test_upload_empty_mission(self, empty_mission):
        """Test an empty mission only clears the vehicle"""
        bridge, vehicle = make_bridge()

        result = bridge.upload_mission_blocking(MissionUploadRequest(mission=empty_mission))

        assert result.success is True
        assert result.accepted_waypoint_count == 0
        assert vehicle.sent == ["MISSION_CLEAR_ALL"]


class TestFetch:
    """Test the download transaction"""

    def _uploaded(self, mission, **vehicle_args):
        bridge, vehicle = make_bridge(ScriptedVehicle(**vehicle_args))
        bridge.upload_mission_blocking(MissionUploadRequest(mission=mission))
        vehicle.sent.clear()
        return bridge, vehicle

    def test_fetch_all(self, three_waypoint_mission):
        bridge, vehicle = self._uploaded(three_waypoint_mission)

        response = bridge.fetch_mission_blocking()

        assert response.success is True
        waypoints = response.mission.waypoints
        assert [wp.seq for wp in waypoints] == [0, 1, 2]
        assert all(wp.current is False for wp in waypoints)
        for fetched, original in zip(waypoints, three_waypoint_mission.waypoints):
            assert fetched.x == pytest.approx(original.x)
            assert fetched.y == pytest.approx(original.y)
        assert vehicle.acks_received == [mavlink.MAV_MISSION_ACCEPTED]

    def test_fetch_range(self, three_waypoint_mission):
        bridge, vehicle = self._uploaded(three_waypoint_mission)

        response = asyncio.run(bridge.fetch_mission(MissionFetchRequest(start_seq=1, end_seq=5)))

        assert [wp.seq for wp in response.mission.waypoints] == [0, 1]
        assert response.mission.waypoints[0].x == pytest.approx(three_waypoint_mission.waypoints[1].x)
        assert "MISSION_REQUEST_INT 0" not in vehicle.sent

    def test_fetch_current_index(self, three_waypoint_mission):
        bridge, _ = self._uploaded(three_waypoint_mission)
        bridge.handle_message(FakeMessage("MISSION_CURRENT", seq=2, total=3))

        response = bridge.fetch_mission_blocking()

        assert response.current_waypoint_index == 2

    def test_fetch_missing_item(self, three_waypoint_mission):
        """Test a lost item cancels the transfer"""
        bridge, vehicle = self._uploaded(three_waypoint_mission, drop_item=1)

        response = bridge.fetch_mission_blocking()

        assert response.success is False
        assert response.error_code == TIMEOUT_ERROR
        assert response.mission.waypoints == ()
        assert vehicle.acks_received == [mavlink.MAV_MISSION_OPERATION_CANCELLED]

    def test_fetch_no_count(self):
        bridge, _ = make_bridge(ScriptedVehicle(respond=False))

        response = bridge.fetch_mission_blocking()

        assert response.success is False
        assert response.error_code == TIMEOUT_ERROR

    def test_fetch_not_connected(self):
        bridge, _ = make_bridge(connect=False)

        response = bridge.fetch_mission_blocking()

        assert response.error_code == NOT_CONNECTED_ERROR
