"""
In-memory bridge

Stands in for a vehicle-side gateway in tests, demos and the
`--mock` server mode. The simulated autopilot is scripted through
constructor arguments and the push_*() methods.
"""

import dataclasses
import logging
import threading
import time
from typing import List, Optional

from ..mission import Mission, Waypoint, create_empty_mission, mission_to_mavlink_format, validate_mission
from ..utils.geo import estimate_eta, haversine_distance
from ..utils.timestamps import from_epoch, iso_now
from .base import BridgeService
from .types import (
    NOT_CONNECTED_ERROR,
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

VEHICLE_MISSION_NAME = "Vehicle Mission"


class MockBridgeService(BridgeService):
    """
    Scriptable bridge test double

    Args:
        connected: Initial link state
        ack_code: MAV_MISSION_RESULT the vehicle answers uploads with
        accept_count: Items the vehicle takes before acking (None = all)
        respond: False simulates a vehicle that never acks (timeout)
        capacity: Maximum items; larger uploads get MAV_MISSION_NO_SPACE
    """

    def __init__(self, connected: bool = True,
                 ack_code: int = MavMissionResult.MAV_MISSION_ACCEPTED,
                 accept_count: Optional[int] = None,
                 respond: bool = True,
                 capacity: Optional[int] = None):
        super().__init__()
        self.ack_code = ack_code
        self.accept_count = accept_count
        self.respond = respond
        self.capacity = capacity

        self._connected = connected
        self._last_heartbeat: Optional[float] = time.time() if connected else None
        self._lock = threading.Lock()

        # Simulated autopilot state
        self.vehicle_items: List[Waypoint] = []
        self.vehicle_current_seq = 0
        self.upload_count = 0
        self.set_current_count = 0
        self.upload_state = UploadStateMachine()

        self._last_groundspeed: Optional[float] = None

    # ------------------------------------------------------------------
    # Connection
    # ------------------------------------------------------------------

    def is_connected(self) -> bool:
        return self._connected

    def set_connected(self, connected: bool, connection_type: str = "mock"):
        """Simulate link up/down; fires on_connection_status on change"""
        if connected == self._connected:
            return
        self._connected = connected
        if connected:
            self._last_heartbeat = time.time()
        logger.info(f"Mock link {'up' if connected else 'down'}")
        self._publish_connection(self.connection_status(connection_type))

    def connection_status(self, connection_type: str = "mock") -> ConnectionStatus:
        age = None
        if self._last_heartbeat is not None:
            age = (time.time() - self._last_heartbeat) * 1000.0
        return ConnectionStatus(
            connected=self._connected,
            connection_type=connection_type,
            last_heartbeat=from_epoch(self._last_heartbeat),
            heartbeat_age=age,
        )

    # ------------------------------------------------------------------
    # Missions
    # ------------------------------------------------------------------

    async def upload_mission(self, request: MissionUploadRequest) -> MissionUploadResult:
        items = mission_to_mavlink_format(request.mission)
        warnings = validate_mission(request.mission)

        with self._lock:
            self.upload_state.begin(len(items))
            self.upload_count += 1
            result = self._simulate_upload(items, request.set_as_current, warnings)
            self.upload_state.finish(result)

        if result.success:
            logger.info(f"Mock vehicle accepted {result.accepted_waypoint_count} waypoints")
            self._publish_progress(self._progress())
        else:
            logger.warning(f"Mock upload failed: {result.error_message}")
        return result

    def _simulate_upload(self, items: List[Waypoint], set_as_current: bool,
                         warnings: List[str]) -> MissionUploadResult:
        if not self._connected:
            return MissionUploadResult.rejected(NOT_CONNECTED_ERROR, warnings=warnings)

        if not self.respond:
            return MissionUploadResult.timed_out(warnings=warnings)

        if self.capacity is not None and len(items) > self.capacity:
            return MissionUploadResult.rejected(MavMissionResult.MAV_MISSION_NO_SPACE, warnings=warnings)

        if self.ack_code != MavMissionResult.MAV_MISSION_ACCEPTED:
            return MissionUploadResult.rejected(self.ack_code, warnings=warnings)

        delivered = len(items) if self.accept_count is None else min(self.accept_count, len(items))
        if delivered < len(items):
            warnings = list(warnings) + [f"Vehicle acknowledged after {delivered} of {len(items)} items"]
            return MissionUploadResult.rejected(
                MavMissionResult.MAV_MISSION_ERROR,
                accepted_count=delivered,
                warnings=warnings,
            )

        # The autopilot keeps its own copy; current is its business
        self.vehicle_items = [dataclasses.replace(wp, current=False) for wp in items]
        self.vehicle_current_seq = 0
        if set_as_current:
            self.set_current_count += 1

        return MissionUploadResult.accepted(len(items), warnings=warnings)

    async def fetch_mission(self, request: Optional[MissionFetchRequest] = None) -> MissionFetchResponse:
        if not self._connected:
            return MissionFetchResponse.failed(create_empty_mission(VEHICLE_MISSION_NAME), NOT_CONNECTED_ERROR)

        request = request or MissionFetchRequest()
        with self._lock:
            items = list(self.vehicle_items)
            current = self.vehicle_current_seq

        start = 0 if request.start_seq is None else max(request.start_seq, 0)
        end = len(items) - 1 if request.end_seq is None else min(request.end_seq, len(items) - 1)
        selected = items[start:end + 1] if start <= end else []

        mission = dataclasses.replace(
            create_empty_mission(VEHICLE_MISSION_NAME),
            waypoints=tuple(dataclasses.replace(wp, seq=i) for i, wp in enumerate(selected)),
        )
        return MissionFetchResponse(
            mission=mission,
            current_waypoint_index=current,
            timestamp=iso_now(),
        )

    # ------------------------------------------------------------------
    # Telemetry injection
    # ------------------------------------------------------------------

    def push_position(self, position: VehiclePosition):
        """Publish a position; its ground speed feeds later ETA estimates"""
        self._last_groundspeed = position.groundspeed
        self._publish_position(position)

    def push_status(self, status: VehicleStatus):
        self._last_heartbeat = time.time()
        self._publish_status(status)

    def push_progress(self, progress: MissionProgress):
        self._publish_progress(progress)

    def advance_waypoint(self, seq: int, lat: Optional[float] = None, lon: Optional[float] = None):
        """
        Simulate the autopilot moving on to waypoint seq

        If the vehicle position is given, distance and ETA to that
        waypoint are filled in.
        """
        with self._lock:
            self.vehicle_current_seq = seq
        self._publish_progress(self._progress(lat, lon))

    def _progress(self, lat: Optional[float] = None, lon: Optional[float] = None) -> MissionProgress:
        seq = self.vehicle_current_seq
        distance = None
        if lat is not None and lon is not None and 0 <= seq < len(self.vehicle_items):
            target = self.vehicle_items[seq]
            distance = haversine_distance(lat, lon, target.x, target.y)
        return MissionProgress(
            current_waypoint_seq=seq,
            total_waypoints=len(self.vehicle_items),
            distance_to_waypoint=distance,
            eta_to_waypoint=estimate_eta(distance, self._last_groundspeed),
        )

    def load_vehicle_mission(self, mission: Mission):
        """Preload the simulated autopilot's mission"""
        with self._lock:
            self.vehicle_items = [dataclasses.replace(wp, current=False) for wp in mission.waypoints]
            self.vehicle_current_seq = 0
