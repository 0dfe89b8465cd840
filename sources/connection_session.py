# connection_session.py
"""
Connection to one selected scale.

Contains the :class:`ConnectionSession` state machine and the decoders of
the scale's weight and battery payloads.  GATT work is delegated to the
adapter's link; this module only decides what to look for, what to
subscribe to and which events to publish.

Weight characteristic: ``ffb2`` (notify), fallback ``2a9d`` (indicate).
Battery: characteristic ``2a19`` (read) under service ``180f``.
"""

import asyncio
import struct
from datetime import datetime
from typing import Callable, List, Optional, Tuple, Union

from adapter import Adapter, GattLink
from app_logger import logger
from errors import AdapterError, AlreadyConnecting, DecodeAnomaly, NotAvailable
from event_channel import EventChannel
from hex_helper import HexHelper
from models import (
    BatteryMeasured,
    BatteryReading,
    Connected,
    ConnectionFailed,
    ConnectionState,
    Connecting,
    Disconnected,
    GattCharacteristic,
    GattService,
    ServicesDiscovered,
    TrackedDevice,
    WeightMeasured,
    WeightReading,
)
from timing_decorator import timed

# ----------------------------------------------------------------------
# Constants
# ----------------------------------------------------------------------
WEIGHT_NOTIFY_UUID = "ffb2"
WEIGHT_INDICATE_UUID = "2a9d"
BATTERY_SERVICE_UUID = "180f"
BATTERY_LEVEL_UUID = "2a19"

WEIGHT_PAYLOAD_LEN = 8
WEIGHT_OFFSET = 2                    # uint16 LE decigrams at bytes 2..3
BATTERY_MAX_LEVEL = 100

ConnectionEvent = Union[
    Connecting,
    Connected,
    Disconnected,
    ConnectionFailed,
    ServicesDiscovered,
    WeightMeasured,
    BatteryMeasured,
]

_CONNECTABLE = (ConnectionState.IDLE, ConnectionState.DISCONNECTED, ConnectionState.ERROR)


class ConnectionSession:
    """
    ``IDLE/DISCONNECTED -> CONNECTING -> CONNECTED -> DISCONNECTED`` with
    ``ERROR`` reachable from ``CONNECTING`` and ``CONNECTED``.

    Missing characteristics degrade the session instead of failing it: no
    weight stream, or ``read_battery`` raising ``NotAvailable``.
    """

    def __init__(self, adapter: Adapter) -> None:
        self.adapter = adapter
        self._state = ConnectionState.IDLE
        self._device: Optional[TrackedDevice] = None
        self._link: Optional[GattLink] = None
        self._attempt: Optional[object] = None

        self._weight_char: Optional[GattCharacteristic] = None
        self._battery_char: Optional[GattCharacteristic] = None
        self._services: Tuple[GattService, ...] = ()
        self._last_payload: Optional[bytes] = None
        self._gatt_lock = asyncio.Lock()

        self._last_weight: Optional[WeightReading] = None
        self._last_battery: Optional[BatteryReading] = None
        self._last_error: Optional[Exception] = None

        self._events: EventChannel[ConnectionEvent] = EventChannel("connection")

    # ------------------------------------------------------------------
    # Public read-only state
    # ------------------------------------------------------------------
    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def device(self) -> Optional[TrackedDevice]:
        return self._device

    @property
    def last_weight(self) -> Optional[WeightReading]:
        return self._last_weight

    @property
    def last_battery(self) -> Optional[BatteryReading]:
        return self._last_battery

    @property
    def last_error(self) -> Optional[Exception]:
        return self._last_error if self._state is ConnectionState.ERROR else None

    @property
    def services(self) -> Tuple[GattService, ...]:
        """GATT services discovered on the current link."""
        return self._services

    @property
    def has_weight(self) -> bool:
        return self._weight_char is not None

    @property
    def has_battery(self) -> bool:
        return self._battery_char is not None

    def subscribe(self, handler: Callable[[ConnectionEvent], None]) -> Callable[[], None]:
        return self._events.subscribe(handler)

    # ------------------------------------------------------------------
    # Decoders
    # ------------------------------------------------------------------
    @staticmethod
    def decode_weight(payload: bytes) -> WeightReading:
        """
        Decode a weight notification.  Only 8-byte frames carry a weight;
        any other length yields a zero reading, some scales send shorter
        frames on the same characteristic.
        """
        grams = 0.0
        if len(payload) == WEIGHT_PAYLOAD_LEN:
            (decigrams,) = struct.unpack_from("<H", payload, WEIGHT_OFFSET)
            grams = decigrams / 10
        else:
            logger.debug(
                "Weight payload of %d bytes treated as zero: %s",
                len(payload),
                HexHelper.to_hex_string(payload),
            )
        return WeightReading(
            grams=grams,
            kg=grams / 1000,
            raw=bytes(payload),
            timestamp=datetime.now(),
        )

    @staticmethod
    def decode_battery(payload: bytes) -> BatteryReading:
        """First byte is the level in percent; values above 100 are clamped."""
        if not payload:
            raise DecodeAnomaly("empty battery payload")
        level = payload[0]
        if level > BATTERY_MAX_LEVEL:
            logger.debug("Battery level %d out of range, clamped to %d", level, BATTERY_MAX_LEVEL)
            level = BATTERY_MAX_LEVEL
        return BatteryReading(level=level, raw=bytes(payload[:1]), timestamp=datetime.now())

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------
    async def connect(self, device: TrackedDevice) -> bool:
        """
        Connect to ``device`` and set up weight/battery characteristics.

        Raises ``AlreadyConnecting`` before doing anything when a connection
        is already alive.  Stack failures are reported as ``ConnectionFailed``
        and the ``ERROR`` state; the return value tells whether the session
        ended up connected.
        """
        if self._state not in _CONNECTABLE:
            raise AlreadyConnecting(f"connection already {self._state.value}")
        self.adapter.claim_link(self)

        attempt = object()
        self._attempt = attempt
        self._device = device
        self._link = None
        self._reset_characteristics()
        self._last_weight = None
        self._last_battery = None
        self._last_error = None
        self._set_state(ConnectionState.CONNECTING)
        self._events.publish(Connecting(device))
        logger.info("Connecting to %s (%s)", device.name, device.address or "no address")

        try:
            link = await self.adapter.connect(
                device.advertisement, lambda: self._handle_disconnect(attempt)
            )
        except AdapterError as exc:
            if self._attempt is attempt:
                self._fail(exc)
            return False

        if self._attempt is not attempt or self._state is not ConnectionState.CONNECTING:
            # cancelled or dropped while the connect was in flight
            await self._close_link(link)
            return False

        self._link = link
        self._set_state(ConnectionState.CONNECTED)
        self._events.publish(Connected(device))
        logger.info("Connected to %s", device.name)

        try:
            await self._setup_services(link)
        except AdapterError as exc:
            if self._attempt is attempt:
                self._fail(exc)
                await self._close_link(link)
            return False

        if self._attempt is attempt and self._battery_char is not None:
            try:
                reading = await self.read_battery()
                logger.info("Battery Level: %d%%", reading.level)
            except (AdapterError, NotAvailable, DecodeAnomaly) as exc:
                logger.error("Failed to read battery level: %s", exc)

        return self._attempt is attempt and self._state is ConnectionState.CONNECTED

    async def disconnect(self) -> None:
        """Operator-initiated disconnect; also the way out of ``ERROR``."""
        if self._state in (ConnectionState.IDLE, ConnectionState.DISCONNECTED):
            return
        link = self._link
        device = self._device
        self._attempt = None
        self._link = None
        self._reset_characteristics()
        self._set_state(ConnectionState.DISCONNECTED)
        self.adapter.release_link(self)
        self._events.publish(Disconnected(device))
        logger.info("Disconnected from %s", device.name if device else "device")
        if link is not None:
            await self._close_link(link)

    def _handle_disconnect(self, attempt: object) -> None:
        """Peripheral (or stack) dropped the link."""
        if self._attempt is not attempt:
            return
        logger.warning("Device %s disconnected", self._device.name if self._device else "?")
        self._attempt = None
        self._link = None
        self._reset_characteristics()
        self._set_state(ConnectionState.DISCONNECTED)
        self.adapter.release_link(self)
        self._events.publish(Disconnected(self._device))

    def _fail(self, exc: Exception) -> None:
        logger.error("Connection error: %s", exc)
        self._attempt = None
        self._link = None
        self._last_error = exc
        self._reset_characteristics()
        self._set_state(ConnectionState.ERROR)
        self.adapter.release_link(self)
        self._events.publish(ConnectionFailed(self._device, exc))

    async def _close_link(self, link: GattLink) -> None:
        try:
            await link.disconnect()
        except AdapterError as exc:
            logger.warning("Disconnect error: %s", exc)

    def _set_state(self, state: ConnectionState) -> None:
        if state is not self._state:
            logger.debug("Connection state %s -> %s", self._state.value, state.value)
        self._state = state

    def _reset_characteristics(self) -> None:
        self._weight_char = None
        self._battery_char = None
        self._services = ()
        self._last_payload = None

    # ------------------------------------------------------------------
    # Service setup
    # ------------------------------------------------------------------
    @timed("connection.setup_services")
    async def _setup_services(self, link: GattLink) -> None:
        services = await link.discover()
        if self._link is not link:
            return          # dropped while discovering
        self._services = tuple(services)
        self._events.publish(ServicesDiscovered(self._device, self._services))
        characteristics = [ch for service in services for ch in service.characteristics]

        logger.debug("Available services: %s", [s.short_uuid for s in services])
        logger.debug(
            "Available characteristics: %s",
            [(c.short_uuid, list(c.properties)) for c in characteristics],
        )

        weight_char = self.find_weight_characteristic(characteristics)
        if weight_char is None:
            logger.warning("No suitable weight characteristic found")
        else:
            logger.info("Found weight characteristic %s", weight_char.short_uuid)
            try:
                await link.subscribe(weight_char, self._handle_weight_data)
                self._weight_char = weight_char
                logger.info("Subscribed to weight notifications")
            except AdapterError as exc:
                logger.error("Failed to subscribe to weight notifications: %s", exc)

        self._battery_char = self.find_battery_characteristic(services)

    @staticmethod
    def find_weight_characteristic(
        characteristics: List[GattCharacteristic],
    ) -> Optional[GattCharacteristic]:
        for ch in characteristics:
            if ch.short_uuid == WEIGHT_NOTIFY_UUID and ch.supports("notify"):
                return ch
        for ch in characteristics:
            if ch.short_uuid == WEIGHT_INDICATE_UUID and ch.supports("indicate"):
                return ch
        return None

    @staticmethod
    def find_battery_characteristic(services: List[GattService]) -> Optional[GattCharacteristic]:
        battery_service = next(
            (s for s in services if s.short_uuid == BATTERY_SERVICE_UUID), None
        )
        if battery_service is None:
            logger.warning("No Battery Service found on this device")
            return None
        logger.info("Found Battery Service")
        for ch in battery_service.characteristics:
            if ch.short_uuid == BATTERY_LEVEL_UUID and ch.supports("read"):
                logger.info("Found Battery Level characteristic")
                return ch
        logger.warning("Battery Service found but no readable Battery Level characteristic")
        return None

    # ------------------------------------------------------------------
    # Data
    # ------------------------------------------------------------------
    def _handle_weight_data(self, payload: bytes) -> None:
        if self._state is not ConnectionState.CONNECTED:
            return
        if payload == self._last_payload:
            return          # repeated notification
        self._last_payload = bytes(payload)
        reading = self.decode_weight(payload)
        self._last_weight = reading
        self._events.publish(WeightMeasured(reading))

    async def read_battery(self) -> BatteryReading:
        """One-shot battery read; publishes ``BatteryMeasured``."""
        link = self._link
        battery_char = self._battery_char
        if link is None or battery_char is None:
            logger.warning("Battery service not available on this device")
            raise NotAvailable("battery level characteristic not available")

        async with self._gatt_lock:
            payload = await link.read(battery_char)
        reading = self.decode_battery(payload)
        self._last_battery = reading
        self._events.publish(BatteryMeasured(reading))
        return reading
