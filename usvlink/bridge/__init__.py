"""
Bridge contract

Payload types, the BridgeService interface and its implementations.
"""

from .types import (
    MavMissionResult,
    TIMEOUT_ERROR,
    NOT_CONNECTED_ERROR,
    describe_mission_result,
    MissionUploadRequest,
    MissionUploadResult,
    MissionFetchRequest,
    MissionFetchResponse,
    MissionProgress,
    VehiclePosition,
    VehicleStatus,
    ConnectionStatus,
)
from .base import BridgeService, Subscription, SubscriptionRegistry
from .upload_state import UploadState, UploadStateMachine
from .mock import MockBridgeService
from .mavlink import MavlinkBridge

__all__ = [
    # Payloads
    'MavMissionResult',
    'TIMEOUT_ERROR',
    'NOT_CONNECTED_ERROR',
    'describe_mission_result',
    'MissionUploadRequest',
    'MissionUploadResult',
    'MissionFetchRequest',
    'MissionFetchResponse',
    'MissionProgress',
    'VehiclePosition',
    'VehicleStatus',
    'ConnectionStatus',
    # Interface
    'BridgeService',
    'Subscription',
    'SubscriptionRegistry',
    'UploadState',
    'UploadStateMachine',
    # Implementations
    'MockBridgeService',
    'MavlinkBridge',
]
