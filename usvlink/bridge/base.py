"""
Bridge service interface

Frontend-facing contract for vehicle communication. Implementations own
the transport (serial/UDP/TCP, MAVLink framing); this module only fixes
the operation and subscription surface.
"""

import logging
import threading
from abc import ABC, abstractmethod
from typing import Callable, Generic, List, Optional, TypeVar

from .types import (
    ConnectionStatus,
    MissionFetchRequest,
    MissionFetchResponse,
    MissionProgress,
    MissionUploadRequest,
    MissionUploadResult,
    VehiclePosition,
    VehicleStatus,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")


class Subscription:
    """
    Handle returned by every on_*() registration

    unsubscribe() may be called any number of times. Once it returns,
    the callback is never invoked again. The handle is also callable,
    so `unsubscribe = bridge.on_position(cb); unsubscribe()` works.
    """

    def __init__(self, registry: 'SubscriptionRegistry', callback: Callable):
        self._registry = registry
        self._callback = callback
        self._active = True

    @property
    def active(self) -> bool:
        return self._active

    @property
    def callback(self) -> Callable:
        return self._callback

    def unsubscribe(self):
        """Stop deliveries and release the registration"""
        if not self._active:
            return
        self._registry._remove(self)

    __call__ = unsubscribe

    def __enter__(self) -> 'Subscription':
        return self

    def __exit__(self, exc_type, exc, tb):
        self.unsubscribe()


class SubscriptionRegistry(Generic[T]):
    """
    Callback list for one telemetry stream

    publish() delivers to callbacks in registration order, one value at
    a time, holding the registry lock. unsubscribe() takes the same lock,
    so once it returns no delivery to that callback is running or can
    start. The lock is re-entrant so a callback may unsubscribe itself.
    """

    def __init__(self, name: str):
        self.name = name
        self._lock = threading.RLock()
        self._subscriptions: List[Subscription] = []

    def subscribe(self, callback: Callable[[T], None]) -> Subscription:
        subscription = Subscription(self, callback)
        with self._lock:
            self._subscriptions.append(subscription)
        logger.debug(f"{self.name}: subscriber added ({len(self)} active)")
        return subscription

    def _remove(self, subscription: Subscription):
        with self._lock:
            subscription._active = False
            if subscription in self._subscriptions:
                self._subscriptions.remove(subscription)
        logger.debug(f"{self.name}: subscriber removed ({len(self)} active)")

    def publish(self, value: T):
        """Deliver a value to every active subscriber"""
        with self._lock:
            for subscription in list(self._subscriptions):
                if not subscription.active:
                    continue
                try:
                    subscription.callback(value)
                except Exception as e:
                    logger.error(f"Error in {self.name} callback: {e}")

    def clear(self):
        """Deactivate every subscription"""
        with self._lock:
            for subscription in self._subscriptions:
                subscription._active = False
            self._subscriptions.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._subscriptions)


class BridgeService(ABC):
    """
    Bridge between the dashboard and a vehicle-side MAVLink gateway

    upload_mission() and fetch_mission() are coroutines that always
    resolve to a result value; protocol rejection, timeouts and a lost
    link are reported through the result, never raised. Telemetry is
    push-based through the on_*() subscriptions, each delivered in the
    order the vehicle produced it.
    """

    def __init__(self):
        self._connection_subs: SubscriptionRegistry[ConnectionStatus] = SubscriptionRegistry("connection")
        self._position_subs: SubscriptionRegistry[VehiclePosition] = SubscriptionRegistry("position")
        self._status_subs: SubscriptionRegistry[VehicleStatus] = SubscriptionRegistry("status")
        self._progress_subs: SubscriptionRegistry[MissionProgress] = SubscriptionRegistry("progress")

    # ------------------------------------------------------------------
    # Connection
    # ------------------------------------------------------------------

    @abstractmethod
    def is_connected(self) -> bool:
        """True while heartbeats are being received from the vehicle"""

    def on_connection_status(self, callback: Callable[[ConnectionStatus], None]) -> Subscription:
        """Called on every connection state transition"""
        return self._connection_subs.subscribe(callback)

    # ------------------------------------------------------------------
    # Missions
    # ------------------------------------------------------------------

    @abstractmethod
    async def upload_mission(self, request: MissionUploadRequest) -> MissionUploadResult:
        """
        Upload a mission to the vehicle

        Clear-all, count, each item of mission_to_mavlink_format() in seq
        order, wait for MISSION_ACK, then MISSION_SET_CURRENT(0) if
        request.set_as_current. Resolves only on a terminal ack or after
        the bridge deadline.
        """

    @abstractmethod
    async def fetch_mission(self, request: Optional[MissionFetchRequest] = None) -> MissionFetchResponse:
        """
        Read the mission stored on the vehicle

        Request-list, count, each item by index, reassembled in seq order.
        """

    # ------------------------------------------------------------------
    # Telemetry streams
    # ------------------------------------------------------------------

    def on_position(self, callback: Callable[[VehiclePosition], None]) -> Subscription:
        """Position updates, typically 1-10 Hz"""
        return self._position_subs.subscribe(callback)

    def on_status(self, callback: Callable[[VehicleStatus], None]) -> Subscription:
        """Status updates, typically 1 Hz"""
        return self._status_subs.subscribe(callback)

    def on_mission_progress(self, callback: Callable[[MissionProgress], None]) -> Subscription:
        """Progress updates on waypoint change or mission edit"""
        return self._progress_subs.subscribe(callback)

    # ------------------------------------------------------------------
    # Implementation helpers
    # ------------------------------------------------------------------

    def _publish_connection(self, status: ConnectionStatus):
        self._connection_subs.publish(status)

    def _publish_position(self, position: VehiclePosition):
        self._position_subs.publish(position)

    def _publish_status(self, status: VehicleStatus):
        self._status_subs.publish(status)

    def _publish_progress(self, progress: MissionProgress):
        self._progress_subs.publish(progress)

    def close_subscriptions(self):
        """Drop every subscriber (used on bridge shutdown)"""
        for registry in (self._connection_subs, self._position_subs,
                         self._status_subs, self._progress_subs):
            registry.clear()
