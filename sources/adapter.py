# adapter.py
"""
The Bluetooth stack as seen by the sessions.

:class:`Adapter` is the narrow contract (readiness, scan, connect) and also
guards the two process-wide resources: the single scan subscription and
the single GATT link.  :class:`BleakAdapter` / :class:`BleakLink` implement
it with bleak; every bleak failure leaves this module as ``AdapterError``.
"""

import asyncio
from abc import ABC, abstractmethod
from typing import Any, Callable, List, Optional

from bleak import BleakClient, BleakScanner
from bleak.exc import BleakError

from app_logger import logger
from config import READY_POLL_INTERVAL_S
from errors import AdapterError, AlreadyActive, AlreadyConnecting
from models import Advertisement, GattCharacteristic, GattService

AdvertisementCallback = Callable[[Advertisement], None]
DataCallback = Callable[[bytes], None]

# everything bleak / the OS may throw at us during radio operations
_STACK_ERRORS = (BleakError, OSError, asyncio.TimeoutError)


class GattLink(ABC):
    """An established connection to one peripheral."""

    @abstractmethod
    async def discover(self) -> List[GattService]:
        """Services and characteristics of the peripheral."""

    @abstractmethod
    async def read(self, characteristic: GattCharacteristic) -> bytes:
        ...

    @abstractmethod
    async def subscribe(self, characteristic: GattCharacteristic, callback: DataCallback) -> None:
        ...

    @abstractmethod
    async def disconnect(self) -> None:
        ...


class Adapter(ABC):
    """
    Contract every Bluetooth backend implements, plus ownership of the scan
    and link slots.  Claims are checked before any radio work so a second
    session fails fast instead of interleaving with the first one.
    """

    def __init__(self) -> None:
        self._scan_owner: Optional[object] = None
        self._link_owner: Optional[object] = None

    # ------------------------------------------------------------------
    # Resource ownership
    # ------------------------------------------------------------------
    def claim_scan(self, owner: object) -> None:
        if self._scan_owner is not None and self._scan_owner is not owner:
            raise AlreadyActive("another discovery session is scanning")
        self._scan_owner = owner

    def release_scan(self, owner: object) -> None:
        if self._scan_owner is owner:
            self._scan_owner = None

    def claim_link(self, owner: object) -> None:
        if self._link_owner is not None and self._link_owner is not owner:
            raise AlreadyConnecting("another connection session is active")
        self._link_owner = owner

    def release_link(self, owner: object) -> None:
        if self._link_owner is owner:
            self._link_owner = None

    # ------------------------------------------------------------------
    # Stack operations
    # ------------------------------------------------------------------
    @abstractmethod
    async def wait_ready(self) -> None:
        """Return once the radio is powered on and usable."""

    @abstractmethod
    async def start_scan(self, callback: AdvertisementCallback) -> None:
        ...

    @abstractmethod
    async def stop_scan(self) -> None:
        ...

    @abstractmethod
    async def connect(
        self, advertisement: Advertisement, on_disconnect: Callable[[], None]
    ) -> GattLink:
        ...


# ----------------------------------------------------------------------
# bleak implementation
# ----------------------------------------------------------------------
class BleakLink(GattLink):

    def __init__(self, client: BleakClient) -> None:
        self.client = client

    async def discover(self) -> List[GattService]:
        try:
            collection = self.client.services
            if collection is None:
                raise AdapterError("service discovery returned nothing")
            services: List[GattService] = []
            for service in collection:
                characteristics = tuple(
                    GattCharacteristic(
                        uuid=str(ch.uuid),
                        properties=tuple(ch.properties),
                        service_uuid=str(service.uuid),
                        description=ch.description or "",
                        handle=ch,
                    )
                    for ch in service.characteristics
                )
                services.append(
                    GattService(
                        uuid=str(service.uuid),
                        characteristics=characteristics,
                        description=service.description or "",
                    )
                )
        except _STACK_ERRORS as exc:
            raise AdapterError(f"service discovery failed: {exc}") from exc
        return services

    async def read(self, characteristic: GattCharacteristic) -> bytes:
        target = characteristic.handle or characteristic.uuid
        try:
            return bytes(await self.client.read_gatt_char(target))
        except _STACK_ERRORS as exc:
            raise AdapterError(f"read {characteristic.short_uuid} failed: {exc}") from exc

    async def subscribe(self, characteristic: GattCharacteristic, callback: DataCallback) -> None:
        target = characteristic.handle or characteristic.uuid

        def _on_data(_sender: Any, data: bytearray) -> None:
            callback(bytes(data))

        try:
            await self.client.start_notify(target, _on_data)
        except _STACK_ERRORS as exc:
            raise AdapterError(f"subscribe {characteristic.short_uuid} failed: {exc}") from exc

    async def disconnect(self) -> None:
        try:
            await self.client.disconnect()
        except _STACK_ERRORS as exc:
            raise AdapterError(f"disconnect failed: {exc}") from exc


class BleakAdapter(Adapter):
    """
    bleak backed adapter.  bleak exposes no power-state signal on every
    platform, so readiness is checked by starting and stopping a scanner
    until that succeeds.
    """

    def __init__(self, poll_interval: float = READY_POLL_INTERVAL_S) -> None:
        super().__init__()
        self.poll_interval = poll_interval
        self._scanner: Optional[BleakScanner] = None

    async def wait_ready(self) -> None:
        attempt = 0
        while True:
            scanner = BleakScanner()
            try:
                await scanner.start()
                await scanner.stop()
                logger.info("Bluetooth adapter ready")
                return
            except _STACK_ERRORS as exc:
                attempt += 1
                if attempt == 1:
                    logger.warning("Waiting for Bluetooth adapter: %s", exc)
                else:
                    logger.debug("Adapter still not ready (attempt %d): %s", attempt, exc)
            await asyncio.sleep(self.poll_interval)

    async def start_scan(self, callback: AdvertisementCallback) -> None:
        if self._scanner is not None:
            raise AlreadyActive("scan already running")

        def _detection(device, advertisement_data) -> None:
            callback(Advertisement.from_bleak(device, advertisement_data))

        scanner = BleakScanner(detection_callback=_detection)
        try:
            await scanner.start()
        except _STACK_ERRORS as exc:
            raise AdapterError(f"scan start failed: {exc}") from exc
        self._scanner = scanner

    async def stop_scan(self) -> None:
        scanner, self._scanner = self._scanner, None
        if scanner is None:
            return
        try:
            await scanner.stop()
        except _STACK_ERRORS as exc:
            raise AdapterError(f"scan stop failed: {exc}") from exc

    async def connect(
        self, advertisement: Advertisement, on_disconnect: Callable[[], None]
    ) -> GattLink:
        target = advertisement.handle or advertisement.address
        if not target:
            raise AdapterError("device has neither a native handle nor an address")

        client = BleakClient(target, disconnected_callback=lambda _client: on_disconnect())
        try:
            await client.connect()
        except _STACK_ERRORS as exc:
            raise AdapterError(f"connect failed: {exc}") from exc
        return BleakLink(client)
