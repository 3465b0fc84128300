"""
REST API for the USV dashboard

HTTP endpoints the browser uses to edit the client-side mission, push
it to the vehicle through a BridgeService and read telemetry.
"""

import asyncio
import math
import threading
from typing import Any, Dict, List, Optional
import logging

from flask import Flask, request, jsonify
from flask_cors import CORS

from ..bridge import (
    BridgeService,
    ConnectionStatus,
    MissionFetchRequest,
    MissionProgress,
    MissionUploadRequest,
    Subscription,
    VehiclePosition,
    VehicleStatus,
)
from ..mission import (
    DEFAULT_MISSION_NAME,
    Mission,
    ValidationError,
    add_waypoint_to_mission,
    clear_mission,
    command_table,
    create_empty_mission,
    describe_params,
    mission_to_mavlink_format,
)

logger = logging.getLogger(__name__)


def create_api_server(bridge: BridgeService,
                      port: int = 8080,
                      host: str = '0.0.0.0',
                      mission_name: str = DEFAULT_MISSION_NAME,
                      cors_enabled: bool = True) -> 'APIServer':
    """
    Create and start REST API server

    Args:
        bridge: Bridge used for uploads, downloads and telemetry
        port: HTTP port
        host: Host address
        mission_name: Name given to new client-side missions
        cors_enabled: Allow cross-origin requests from the dashboard

    Returns:
        Running APIServer
    """
    server = APIServer(bridge, port, host, mission_name, cors_enabled)
    server.start()
    return server


class APIServer:
    """REST API Server"""

    def __init__(self, bridge: BridgeService,
                 port: int = 8080, host: str = '0.0.0.0',
                 mission_name: str = DEFAULT_MISSION_NAME,
                 cors_enabled: bool = True):
        self.bridge = bridge
        self.port = port
        self.host = host

        self.app = Flask(__name__)
        if cors_enabled:
            CORS(self.app)

        # The one client-side mission; replaced wholesale, never mutated
        self._mission_lock = threading.Lock()
        self._mission = create_empty_mission(mission_name)

        # Latest telemetry, vehicle-authoritative
        self._position: Optional[VehiclePosition] = None
        self._status: Optional[VehicleStatus] = None
        self._progress: Optional[MissionProgress] = None
        self._connection: Optional[ConnectionStatus] = None

        self._subscriptions: List[Subscription] = [
            bridge.on_position(self._on_position),
            bridge.on_status(self._on_status),
            bridge.on_mission_progress(self._on_progress),
            bridge.on_connection_status(self._on_connection),
        ]

        self._thread: Optional[threading.Thread] = None
        self._setup_routes()

    @property
    def mission(self) -> Mission:
        return self._mission

    def _replace_mission(self, update) -> Mission:
        """Apply a Mission -> Mission function as one atomic replacement"""
        with self._mission_lock:
            self._mission = update(self._mission)
            return self._mission

    # ==================== Telemetry callbacks ====================

    def _on_position(self, position: VehiclePosition):
        self._position = position

    def _on_status(self, status: VehicleStatus):
        self._status = status

    def _on_progress(self, progress: MissionProgress):
        self._progress = progress

    def _on_connection(self, status: ConnectionStatus):
        self._connection = status

    def _setup_routes(self):
        """Setup API routes"""

        # ==================== Health ====================

        @self.app.route('/api/health', methods=['GET'])
        def health():
            """Health check endpoint"""
            return jsonify({
                'status': 'ok',
                'connected': self.bridge.is_connected(),
            })

        @self.app.route('/api/connection', methods=['GET'])
        def get_connection():
            """Last connection transition, or a snapshot if none seen yet"""
            status = self._connection or ConnectionStatus(connected=self.bridge.is_connected())
            return jsonify(status.to_dict())

        # ==================== Client-side mission ====================

        @self.app.route('/api/mission', methods=['GET'])
        def get_mission():
            return jsonify(self._mission.to_dict())

        @self.app.route('/api/mission', methods=['DELETE'])
        def delete_mission():
            """Discard all waypoints"""
            mission = self._replace_mission(clear_mission)
            logger.info("Mission cleared")
            return jsonify(mission.to_dict())

        @self.app.route('/api/mission/waypoints', methods=['POST'])
        def add_waypoint():
            """
            Append a waypoint

            Request body: {"lat": float, "lon": float}
            """
            try:
                lat, lon = _parse_coordinates(request.get_json(silent=True))
            except ValidationError as e:
                return jsonify({'error': str(e)}), 400

            mission = self._replace_mission(lambda m: add_waypoint_to_mission(m, lat, lon))
            logger.info(f"Waypoint {mission.waypoint_count - 1} added at {lat:.6f}, {lon:.6f}")
            return jsonify(mission.to_dict()), 201

        @self.app.route('/api/mission/mavlink', methods=['GET'])
        def get_mavlink_items():
            """Item list exactly as it would be uploaded"""
            items = mission_to_mavlink_format(self._mission)
            return jsonify({
                'items': [wp.to_dict() for wp in items],
                'params': [describe_params(wp) for wp in items],
            })

        # ==================== Vehicle mission ====================

        @self.app.route('/api/mission/upload', methods=['POST'])
        def upload_mission():
            """
            Upload the client-side mission

            Request body (optional): {"setAsCurrent": bool}
            Always 200: failures are reported in the result's `success`.
            """
            data = request.get_json(silent=True) or {}
            set_as_current = data.get('setAsCurrent', False)
            if not isinstance(set_as_current, bool):
                return jsonify({'error': 'setAsCurrent must be a boolean'}), 400

            upload = MissionUploadRequest(mission=self._mission, set_as_current=set_as_current)
            result = asyncio.run(self.bridge.upload_mission(upload))
            return jsonify(result.to_dict())

        @self.app.route('/api/mission/vehicle', methods=['GET'])
        def fetch_mission():
            """
            Read the mission stored on the vehicle

            Query: startSeq, endSeq (inclusive, optional)
            """
            try:
                fetch = MissionFetchRequest(
                    start_seq=_optional_int(request.args.get('startSeq'), 'startSeq'),
                    end_seq=_optional_int(request.args.get('endSeq'), 'endSeq'),
                )
            except ValidationError as e:
                return jsonify({'error': str(e)}), 400

            response = asyncio.run(self.bridge.fetch_mission(fetch))
            return jsonify(response.to_dict())

        # ==================== Telemetry ====================

        @self.app.route('/api/telemetry', methods=['GET'])
        def get_telemetry():
            """
            Latest telemetry

            The vehicle's progress and the client's advisory
            currentWaypointIndex are both returned, side by side.
            """
            return jsonify({
                'position': _to_dict(self._position),
                'status': _to_dict(self._status),
                'progress': _to_dict(self._progress),
                'connection': _to_dict(self._connection),
                'connected': self.bridge.is_connected(),
                'localCurrentWaypointIndex': self._mission.current_waypoint_index,
            })

        @self.app.route('/api/commands', methods=['GET'])
        def get_commands():
            """Parameter meanings per command"""
            return jsonify(command_table())

    def start(self):
        """Start API server in background thread"""
        self._thread = threading.Thread(
            target=lambda: self.app.run(
                host=self.host,
                port=self.port,
                debug=False,
                use_reloader=False
            ),
            daemon=True
        )
        self._thread.start()
        logger.info(f"REST API started on http://{self.host}:{self.port}")

    def stop(self):
        """Release telemetry subscriptions"""
        for subscription in self._subscriptions:
            subscription.unsubscribe()


def _to_dict(value) -> Optional[Dict[str, Any]]:
    return value.to_dict() if value is not None else None


def _parse_coordinates(data) -> tuple:
    if not isinstance(data, dict):
        raise ValidationError("Request body must be a JSON object")
    try:
        raw = data['lat'], data['lon']
    except KeyError as e:
        raise ValidationError(f"Missing required field {e}")

    coordinates = []
    for name, value in zip(('lat', 'lon'), raw):
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            raise ValidationError(f"{name} must be a number")
        try:
            value = float(value)
        except OverflowError:
            raise ValidationError(f"{name} is out of range")
        # Flask parses NaN/Infinity, which cannot be written back as JSON
        if not math.isfinite(value):
            raise ValidationError(f"{name} must be finite")
        coordinates.append(value)
    return tuple(coordinates)


def _optional_int(value: Optional[str], name: str) -> Optional[int]:
    if value is None or value == '':
        return None
    try:
        return int(value)
    except ValueError:
        raise ValidationError(f"{name} must be an integer")
