"""
MAVLink Bridge

pymavlink implementation of the bridge contract for ArduRover / Pixhawk.

A reader thread pulls messages off the MAVLink connection, turns
telemetry into VehiclePosition / VehicleStatus / MissionProgress and
hands mission-protocol messages to the one mission transaction allowed
in flight. Transactions run in the event loop's default executor so
upload_mission() / fetch_mission() stay awaitable.
"""

import asyncio
import dataclasses
import logging
import math
import queue
import threading
import time
from typing import Callable, Dict, Iterable, Optional

from pymavlink import mavutil

from ..mission import create_empty_mission, mission_to_mavlink_format, validate_mission
from ..utils.geo import estimate_eta, wrap_angle_360
from ..utils.timestamps import from_epoch, iso_now
from .base import BridgeService
from .scaling import (
    UNKNOWN_REMAINING,
    ca_to_a,
    cdeg_to_deg,
    cms_to_ms,
    e7_to_deg,
    item_range_error,
    mission_item_to_waypoint,
    mm_to_m,
    mv_to_v,
    waypoint_to_mission_item_int,
)
from .types import (
    NOT_CONNECTED_ERROR,
    TIMEOUT_ERROR,
    ConnectionStatus,
    MavMissionResult,
    MissionFetchRequest,
    MissionFetchResponse,
    MissionProgress,
    MissionUploadRequest,
    MissionUploadResult,
    VehiclePosition,
    VehicleStatus,
)
from .upload_state import UploadStateMachine

logger = logging.getLogger(__name__)

mavlink = mavutil.mavlink

VEHICLE_MISSION_NAME = "Vehicle Mission"

# ArduRover custom_mode numbers
ROVER_MODES: Dict[int, str] = {
    0: "MANUAL",
    1: "ACRO",
    3: "STEERING",
    4: "HOLD",
    5: "LOITER",
    6: "FOLLOW",
    7: "SIMPLE",
    8: "DOCK",
    9: "CIRCLE",
    10: "AUTO",
    11: "RTL",
    12: "SMART_RTL",
    15: "GUIDED",
    16: "INITIALISING",
}

# MAV_STATE names
SYSTEM_STATES: Dict[int, str] = {
    0: "UNINIT",
    1: "BOOT",
    2: "CALIBRATING",
    3: "STANDBY",
    4: "ACTIVE",
    5: "CRITICAL",
    6: "EMERGENCY",
    7: "POWEROFF",
    8: "FLIGHT_TERMINATION",
}

FAILSAFE_STATES = {mavlink.MAV_STATE_CRITICAL, mavlink.MAV_STATE_EMERGENCY}

MISSION_MESSAGES = {
    "MISSION_ACK",
    "MISSION_COUNT",
    "MISSION_REQUEST",
    "MISSION_REQUEST_INT",
    "MISSION_ITEM",
    "MISSION_ITEM_INT",
}

UINT16_MAX = 0xFFFF


def connection_type_for(connection_string: str) -> str:
    """'udp', 'tcp' or 'serial' for a mavutil connection string"""
    prefix = connection_string.split(":", 1)[0].lower()
    if prefix.startswith("udp"):
        return "udp"
    if prefix.startswith("tcp"):
        return "tcp"
    return "serial"


class MavlinkBridge(BridgeService):
    """
    MAVLink protocol bridge

    Implements:
    - HEARTBEAT tracking (link state, armed, mode, system status)
    - SYS_STATUS battery
    - GLOBAL_POSITION_INT + VFR_HUD -> VehiclePosition
    - MISSION_CURRENT + NAV_CONTROLLER_OUTPUT -> MissionProgress
    - Mission upload / download microservice (MISSION_ITEM_INT)
    """

    def __init__(self, connection_string: str = "udpin:0.0.0.0:14550",
                 baudrate: int = 57600,
                 source_system: int = 255,
                 source_component: int = 190,
                 target_system: int = 1,
                 target_component: int = 1,
                 heartbeat_timeout_s: float = 3.0,
                 upload_timeout_s: float = 15.0,
                 item_timeout_s: float = 2.0,
                 connection=None):
        """
        Initialize MAVLink bridge

        Args:
            connection_string: mavutil connection string
                (e.g. '/dev/ttyACM0', 'udpin:0.0.0.0:14550', 'tcp:127.0.0.1:5760')
            baudrate: Serial baud rate
            source_system: Our MAVLink system ID (255 = GCS)
            source_component: Our MAVLink component ID
            target_system: Vehicle system ID until a heartbeat says otherwise
            target_component: Vehicle component ID until a heartbeat says otherwise
            heartbeat_timeout_s: Link considered lost after this long without heartbeat
            upload_timeout_s: Overall deadline for one upload
            item_timeout_s: Deadline for each single protocol reply
            connection: Already-open mavutil connection (skips opening one)
        """
        super().__init__()

        self.connection_string = connection_string
        self.baudrate = baudrate
        self.source_system = source_system
        self.source_component = source_component
        self.target_system = target_system
        self.target_component = target_component
        self.heartbeat_timeout_s = heartbeat_timeout_s
        self.upload_timeout_s = upload_timeout_s
        self.item_timeout_s = item_timeout_s

        self._conn = connection
        self._running = False
        self._thread: Optional[threading.Thread] = None

        # Link state
        self._link_up = False
        self._last_heartbeat: Optional[float] = None

        # Telemetry caches (written by the reader thread only)
        self._armed = False
        self._mode = "UNKNOWN"
        self._system_status = "UNINIT"
        self._failsafe = False
        self._battery_voltage: Optional[float] = None
        self._battery_current: Optional[float] = None
        self._battery_percent: Optional[float] = None
        self._groundspeed: Optional[float] = None
        self._hud_heading: Optional[float] = None
        self._wp_dist: Optional[float] = None

        # Vehicle mission state
        self._vehicle_count = 0
        self._vehicle_current_seq = 0
        self._last_progress_key = None

        # Mission transactions
        self._mission_lock = threading.Lock()
        self._mission_queue: "queue.Queue" = queue.Queue()
        self.upload_state = UploadStateMachine()

        self._handlers: Dict[str, Callable] = {
            "HEARTBEAT": self._handle_heartbeat,
            "SYS_STATUS": self._handle_sys_status,
            "GLOBAL_POSITION_INT": self._handle_global_position_int,
            "VFR_HUD": self._handle_vfr_hud,
            "MISSION_CURRENT": self._handle_mission_current,
            "NAV_CONTROLLER_OUTPUT": self._handle_nav_controller_output,
        }

    @property
    def connection_type(self) -> str:
        return connection_type_for(self.connection_string)

    # ==================== Lifecycle ====================

    def start(self):
        """Open the connection and start the reader thread"""
        if self._running:
            return

        if self._conn is None:
            self._conn = mavutil.mavlink_connection(
                self.connection_string,
                baud=self.baudrate,
                source_system=self.source_system,
                source_component=self.source_component,
            )

        self._running = True
        self._thread = threading.Thread(target=self._run_loop, daemon=True)
        self._thread.start()

        logger.info(f"MAVLink bridge started on {self.connection_string}")

    def stop(self):
        """Stop the reader thread and close the connection"""
        self._running = False
        if self._thread:
            self._thread.join(timeout=2.0)
            self._thread = None
        if self._conn is not None:
            self._conn.close()
            self._conn = None
        self._set_link(False)
        self.close_subscriptions()
        logger.info("MAVLink bridge stopped")

    def _run_loop(self):
        """Main receive loop"""
        while self._running:
            try:
                msg = self._conn.recv_match(blocking=True, timeout=0.2)
                if msg is not None:
                    self.handle_message(msg)
                self.check_heartbeat()

            except Exception as e:
                logger.error(f"MAVLink error: {e}")
                time.sleep(0.1)

    # ==================== Connection ====================

    def is_connected(self) -> bool:
        if not self._link_up or self._last_heartbeat is None:
            return False
        return time.time() - self._last_heartbeat <= self.heartbeat_timeout_s

    def connection_status(self) -> ConnectionStatus:
        age = None
        if self._last_heartbeat is not None:
            age = (time.time() - self._last_heartbeat) * 1000.0
        return ConnectionStatus(
            connected=self.is_connected(),
            connection_type=self.connection_type,
            last_heartbeat=from_epoch(self._last_heartbeat),
            heartbeat_age=age,
        )

    def check_heartbeat(self):
        """Drop the link if the vehicle went quiet"""
        if self._link_up and not self.is_connected():
            logger.warning(f"No heartbeat for {self.heartbeat_timeout_s}s, link lost")
            self._set_link(False)

    def _set_link(self, up: bool):
        if up == self._link_up:
            return
        self._link_up = up
        logger.info(f"Vehicle link {'up' if up else 'down'}")
        self._publish_connection(self.connection_status())

    # ==================== Message dispatch ====================

    def handle_message(self, msg):
        """Route one received message"""
        msg_type = msg.get_type()

        if msg_type in MISSION_MESSAGES:
            self._mission_queue.put(msg)
            return

        handler = self._handlers.get(msg_type)
        if handler:
            handler(msg)

    def _handle_heartbeat(self, msg):
        # Other ground stations, and gimbals/cameras/companions on the vehicle
        if msg.type == mavlink.MAV_TYPE_GCS or msg.autopilot == mavlink.MAV_AUTOPILOT_INVALID:
            return

        self.target_system = msg.get_srcSystem()
        self.target_component = msg.get_srcComponent()
        self._last_heartbeat = time.time()
        self._set_link(True)

        self._armed = bool(msg.base_mode & mavlink.MAV_MODE_FLAG_SAFETY_ARMED)
        self._mode = ROVER_MODES.get(msg.custom_mode, f"MODE_{msg.custom_mode}")
        self._system_status = SYSTEM_STATES.get(msg.system_status, "UNKNOWN")
        self._failsafe = msg.system_status in FAILSAFE_STATES

        self._publish_status(VehicleStatus(
            armed=self._armed,
            mode=self._mode,
            system_status=self._system_status,
            failsafe=self._failsafe,
            battery_voltage=self._battery_voltage,
            battery_percent=self._battery_percent,
            battery_current=self._battery_current,
        ))

    def _handle_sys_status(self, msg):
        self._battery_voltage = mv_to_v(msg.voltage_battery)
        self._battery_current = ca_to_a(msg.current_battery)
        if msg.battery_remaining == UNKNOWN_REMAINING:
            self._battery_percent = None
        else:
            self._battery_percent = float(msg.battery_remaining)

    def _handle_vfr_hud(self, msg):
        self._groundspeed = float(msg.groundspeed)
        self._hud_heading = wrap_angle_360(float(msg.heading))

    def _handle_global_position_int(self, msg):
        heading = cdeg_to_deg(msg.hdg)
        if heading is None:
            heading = self._hud_heading if self._hud_heading is not None else 0.0

        groundspeed = self._groundspeed
        if groundspeed is None:
            groundspeed = math.hypot(cms_to_ms(msg.vx), cms_to_ms(msg.vy))

        self._publish_position(VehiclePosition(
            lat=e7_to_deg(msg.lat),
            lon=e7_to_deg(msg.lon),
            alt=mm_to_m(msg.alt),
            heading=heading,
            groundspeed=groundspeed,
            # NED: vz positive is down
            vertical_speed=-cms_to_ms(msg.vz),
        ))

    def _handle_nav_controller_output(self, msg):
        self._wp_dist = float(msg.wp_dist)

    def _handle_mission_current(self, msg):
        total = getattr(msg, "total", None)
        if total is None or total == UINT16_MAX or (total == 0 and self._vehicle_count):
            total = self._vehicle_count
        else:
            self._vehicle_count = total

        self._vehicle_current_seq = msg.seq

        key = (msg.seq, total)
        if key == self._last_progress_key:
            return
        self._last_progress_key = key

        self._publish_progress(MissionProgress(
            current_waypoint_seq=msg.seq,
            total_waypoints=total,
            distance_to_waypoint=self._wp_dist,
            eta_to_waypoint=estimate_eta(self._wp_dist, self._groundspeed),
        ))

    # ==================== Mission transactions ====================

    async def upload_mission(self, request: MissionUploadRequest) -> MissionUploadResult:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, self.upload_mission_blocking, request)

    async def fetch_mission(self, request: Optional[MissionFetchRequest] = None) -> MissionFetchResponse:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, self.fetch_mission_blocking, request)

    def upload_mission_blocking(self, request: MissionUploadRequest) -> MissionUploadResult:
        """Run a full upload on the calling thread"""
        items = mission_to_mavlink_format(request.mission)
        warnings = validate_mission(request.mission)

        with self._mission_lock:
            self.upload_state.begin(len(items))
            try:
                result = self._run_upload(items, request.set_as_current, warnings)
            except Exception as e:
                logger.error(f"Mission upload failed: {e}")
                self._cancel_mission_transfer()
                result = MissionUploadResult.rejected(
                    MavMissionResult.MAV_MISSION_ERROR, str(e), warnings=warnings
                )
            self.upload_state.finish(result)

        if result.success:
            logger.info(f"Mission uploaded: {result.accepted_waypoint_count} waypoints")
        else:
            logger.warning(f"Mission upload failed: {result.error_message}")
        return result

    def _run_upload(self, items, set_as_current: bool, warnings) -> MissionUploadResult:
        if not self.is_connected():
            return MissionUploadResult.rejected(NOT_CONNECTED_ERROR, warnings=warnings)

        for item in items:
            code = item_range_error(item)
            if code is not None:
                return MissionUploadResult.rejected(
                    code, f"Waypoint {item.seq}: ({item.x}, {item.y}) cannot be encoded as degE7",
                    warnings=warnings,
                )

        self._drain_mission_queue()
        mav = self._conn.mav
        deadline = time.time() + self.upload_timeout_s

        mav.mission_clear_all_send(self.target_system, self.target_component)
        ack = self._wait_mission_message({"MISSION_ACK"}, self._reply_deadline(deadline))
        if ack is None:
            return MissionUploadResult.timed_out("No acknowledgment to MISSION_CLEAR_ALL", warnings=warnings)
        if ack.type != mavlink.MAV_MISSION_ACCEPTED:
            return MissionUploadResult.rejected(ack.type, warnings=warnings)

        if not items:
            self._vehicle_count = 0
            return MissionUploadResult.accepted(0, warnings=warnings)

        mav.mission_count_send(self.target_system, self.target_component, len(items))

        sent = set()
        while True:
            msg = self._wait_mission_message(
                {"MISSION_REQUEST", "MISSION_REQUEST_INT", "MISSION_ACK"},
                self._reply_deadline(deadline),
            )
            if msg is None:
                self._cancel_mission_transfer()
                return MissionUploadResult.timed_out(
                    f"Vehicle stopped responding after {len(sent)} of {len(items)} items",
                    warnings=warnings,
                )

            if msg.get_type() == "MISSION_ACK":
                if msg.type != mavlink.MAV_MISSION_ACCEPTED:
                    return MissionUploadResult.rejected(msg.type, warnings=warnings)
                if len(sent) < len(items):
                    return MissionUploadResult.rejected(
                        MavMissionResult.MAV_MISSION_ERROR,
                        f"Vehicle acknowledged after {len(sent)} of {len(items)} items",
                        accepted_count=len(sent),
                        warnings=list(warnings) + [f"Only {len(sent)} of {len(items)} items requested"],
                    )
                break

            seq = msg.seq
            if not 0 <= seq < len(items):
                logger.warning(f"Vehicle requested item {seq} outside 0..{len(items) - 1}")
                continue

            mav.mission_item_int_send(
                self.target_system, self.target_component,
                **waypoint_to_mission_item_int(items[seq])
            )
            sent.add(seq)
            logger.debug(f"Sent mission item {seq}")

        self._vehicle_count = len(items)

        if set_as_current:
            mav.mission_set_current_send(self.target_system, self.target_component, 0)

        return MissionUploadResult.accepted(len(items), warnings=warnings)

    def fetch_mission_blocking(self, request: Optional[MissionFetchRequest] = None) -> MissionFetchResponse:
        """Run a full download on the calling thread"""
        request = request or MissionFetchRequest()

        with self._mission_lock:
            try:
                response = self._run_fetch(request)
            except Exception as e:
                logger.error(f"Mission download failed: {e}")
                response = MissionFetchResponse.failed(
                    create_empty_mission(VEHICLE_MISSION_NAME),
                    MavMissionResult.MAV_MISSION_ERROR, str(e),
                )

        if not response.success:
            logger.warning(f"Mission download failed: {response.error_message}")
        return response

    def _run_fetch(self, request: MissionFetchRequest) -> MissionFetchResponse:
        empty = create_empty_mission(VEHICLE_MISSION_NAME)
        if not self.is_connected():
            return MissionFetchResponse.failed(empty, NOT_CONNECTED_ERROR)

        self._drain_mission_queue()
        mav = self._conn.mav

        mav.mission_request_list_send(self.target_system, self.target_component)
        count_msg = self._wait_mission_message({"MISSION_COUNT"}, time.time() + self.item_timeout_s)
        if count_msg is None:
            return MissionFetchResponse.failed(empty, TIMEOUT_ERROR, "No MISSION_COUNT from vehicle")

        count = count_msg.count
        self._vehicle_count = count

        start = 0 if request.start_seq is None else max(request.start_seq, 0)
        end = count - 1 if request.end_seq is None else min(request.end_seq, count - 1)

        waypoints = []
        for seq in range(start, end + 1):
            item = self._request_item(mav, seq)
            if item is None:
                self._cancel_mission_transfer()
                return MissionFetchResponse.failed(empty, TIMEOUT_ERROR, f"No reply for mission item {seq}")
            # Re-numbered so the held mission stays contiguous from 0
            waypoints.append(mission_item_to_waypoint(item, seq=len(waypoints)))

        mav.mission_ack_send(self.target_system, self.target_component, mavlink.MAV_MISSION_ACCEPTED)
        logger.info(f"Downloaded {len(waypoints)} of {count} mission items")

        return MissionFetchResponse(
            mission=dataclasses.replace(empty, waypoints=tuple(waypoints)),
            current_waypoint_index=self._vehicle_current_seq,
            timestamp=iso_now(),
        )

    def _cancel_mission_transfer(self):
        """Tell the vehicle to drop a half-finished mission transfer"""
        if self._conn is None:
            return
        try:
            self._conn.mav.mission_ack_send(self.target_system, self.target_component,
                                            mavlink.MAV_MISSION_OPERATION_CANCELLED)
        except Exception as e:
            logger.warning(f"Could not cancel mission transfer: {e}")

    def _request_item(self, mav, seq: int):
        mav.mission_request_int_send(self.target_system, self.target_component, seq)
        deadline = time.time() + self.item_timeout_s
        while True:
            msg = self._wait_mission_message({"MISSION_ITEM_INT", "MISSION_ITEM"}, deadline)
            if msg is None or msg.seq == seq:
                return msg
            logger.debug(f"Ignoring mission item {msg.seq} while waiting for {seq}")

    def _reply_deadline(self, overall_deadline: float) -> float:
        return min(overall_deadline, time.time() + self.item_timeout_s)

    def _wait_mission_message(self, types: Iterable[str], deadline: float):
        """Next queued mission message of one of `types`, None on deadline"""
        while True:
            remaining = deadline - time.time()
            if remaining <= 0:
                return None
            try:
                msg = self._mission_queue.get(timeout=remaining)
            except queue.Empty:
                return None
            if msg.get_type() in types:
                return msg
            logger.debug(f"Ignoring {msg.get_type()} during mission transaction")

    def _drain_mission_queue(self):
        while True:
            try:
                self._mission_queue.get_nowait()
            except queue.Empty:
                return
