# discovery_session.py
"""
Discovery session: owns the scan lifecycle and feeds every advertisement
through identity -> presence tracker -> debouncer.

Two kinds of events are published on one channel:

* ``DeviceDiscovered`` - immediately, once per new identity;
* ``DevicesUpdated``   - debounced full snapshot after any sighting or prune.

Stale devices are pruned on every advertisement and, independently, by a
periodic tick so a device disappears even when the air goes quiet.
"""

import asyncio
import time
from typing import Callable, Optional, Tuple, Union

from adapter import Adapter
from app_logger import logger
from config import DEBOUNCE_DELAY_S, PRESENCE_WINDOW_S, PRUNE_INTERVAL_S, READY_TIMEOUT_S
from debouncer import Debouncer
from errors import AdapterError, AlreadyActive
from event_channel import EventChannel
from hex_helper import HexHelper
from models import (
    Advertisement,
    DeviceDiscovered,
    DevicesUpdated,
    DiscoveryState,
    TrackedDevice,
)
from presence_tracker import PresenceTracker
from timing_decorator import timed

DiscoveryEvent = Union[DeviceDiscovered, DevicesUpdated]


class DiscoverySession:
    """
    Parameters
    ----------
    adapter : Adapter
        Bluetooth backend; the session claims its scan slot while active.
    presence_window : float
        Seconds of silence after which a device is dropped.
    debounce_delay : float
        Quiet period before a ``DevicesUpdated`` snapshot is emitted.
    prune_interval : float
        Period of the independent prune tick.
    ready_timeout : float | None
        Upper bound on the adapter readiness wait, ``None`` waits forever.
    clock : callable
        Monotonic time source, injectable for tests.
    """

    def __init__(
        self,
        adapter: Adapter,
        *,
        presence_window: float = PRESENCE_WINDOW_S,
        debounce_delay: float = DEBOUNCE_DELAY_S,
        prune_interval: float = PRUNE_INTERVAL_S,
        ready_timeout: Optional[float] = READY_TIMEOUT_S,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.adapter = adapter
        self.presence_window = presence_window
        self.prune_interval = prune_interval
        self.ready_timeout = ready_timeout
        self._clock = clock

        self._state = DiscoveryState.STOPPED
        self._tracker = PresenceTracker()
        self._debouncer = Debouncer(debounce_delay, self._emit_snapshot)
        self._events: EventChannel[DiscoveryEvent] = EventChannel("discovery")
        self._prune_task: Optional[asyncio.Task] = None
        # resolved once the start/stop currently talking to the adapter is done
        self._busy: Optional[asyncio.Future] = None

    # ------------------------------------------------------------------
    # Public read-only state
    # ------------------------------------------------------------------
    @property
    def state(self) -> DiscoveryState:
        return self._state

    @property
    def active(self) -> bool:
        return self._state is not DiscoveryState.STOPPED

    def snapshot(self) -> Tuple[TrackedDevice, ...]:
        return self._tracker.snapshot()

    def subscribe(self, handler: Callable[[DiscoveryEvent], None]) -> Callable[[], None]:
        """Register ``handler``; call the returned function to unregister."""
        return self._events.subscribe(handler)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------
    @timed("discovery.start")
    async def start(self) -> None:
        while True:
            if self._state is not DiscoveryState.STOPPED:
                raise AlreadyActive(f"discovery already {self._state.value}")
            if self._busy is None:
                break
            # a previous start/stop still owns the adapter scan
            await asyncio.shield(self._busy)
        self.adapter.claim_scan(self)
        self._state = DiscoveryState.STARTING
        busy = self._busy = asyncio.get_running_loop().create_future()
        try:
            await self._start_scan()
        except asyncio.CancelledError:
            if self._state is DiscoveryState.STARTING:
                self._state = DiscoveryState.STOPPED
                self.adapter.release_scan(self)
            raise
        finally:
            self._settle(busy)

    async def _start_scan(self) -> None:
        try:
            await self._wait_ready()
            self._tracker.clear()
            self._debouncer.cancel()
            logger.info("Starting BLE scan")
            await self.adapter.start_scan(self.handle_advertisement)
        except AdapterError as exc:
            logger.error("Scan start error: %s", exc)
            self._state = DiscoveryState.STOPPED
            self.adapter.release_scan(self)
            raise

        if self._state is not DiscoveryState.STARTING:
            # stop() ran while the scan start was in flight
            logger.info("Discovery stopped during start-up, stopping scan again")
            await self._stop_adapter_scan()
            return

        self._state = DiscoveryState.SCANNING
        self._prune_task = asyncio.get_running_loop().create_task(self._prune_loop())
        logger.info("Scan started successfully")

    async def stop(self) -> None:
        if self._state is DiscoveryState.STOPPED:
            return
        logger.info("Stopping BLE scan")
        was_scanning = self._state is DiscoveryState.SCANNING
        self._state = DiscoveryState.STOPPED
        self._debouncer.cancel()
        if self._prune_task is not None:
            self._prune_task.cancel()
            self._prune_task = None
        self._tracker.clear()
        if was_scanning:
            busy = self._busy = asyncio.get_running_loop().create_future()
            try:
                await self._stop_adapter_scan()
            finally:
                self._settle(busy)
        # a start() still in flight releases the slot once it returns

    def _settle(self, busy: asyncio.Future) -> None:
        if self._busy is busy:
            self._busy = None
        if not busy.done():
            busy.set_result(None)

    async def _wait_ready(self) -> None:
        if self.ready_timeout is None:
            await self.adapter.wait_ready()
            return
        try:
            await asyncio.wait_for(self.adapter.wait_ready(), self.ready_timeout)
        except asyncio.TimeoutError as exc:
            raise AdapterError(
                f"Bluetooth adapter not ready after {self.ready_timeout:.0f}s"
            ) from exc

    async def _stop_adapter_scan(self) -> None:
        try:
            await self.adapter.stop_scan()
        except AdapterError as exc:
            logger.warning("Scan stop error: %s", exc)
        finally:
            self.adapter.release_scan(self)

    # ------------------------------------------------------------------
    # Advertisement pipeline
    # ------------------------------------------------------------------
    def handle_advertisement(self, advertisement: Advertisement) -> None:
        """
        Adapter callback.  Runs to completion without yielding: observe,
        prune, announce a new identity, schedule the snapshot.
        """
        if self._state is DiscoveryState.STOPPED:
            return

        now = self._clock()
        is_new, device = self._tracker.observe(advertisement, now)
        removed = self._tracker.prune(now, self.presence_window)

        if is_new:
            logger.info(
                "New device discovered: name=%s address=%s services=%d manufacturer=%s total=%d",
                device.name,
                device.address or "empty",
                len(advertisement.service_uuids),
                HexHelper.manufacturer_tag(advertisement.manufacturer_data),
                len(self._tracker),
            )
            self._events.publish(DeviceDiscovered(device))
        if removed:
            logger.debug("Removed %d stale devices, %d remaining", removed, len(self._tracker))

        self._debouncer.trigger()

    def prune(self) -> int:
        """Drop stale devices now; schedules a snapshot when any went away."""
        removed = self._tracker.prune(self._clock(), self.presence_window)
        if removed:
            logger.debug("Prune tick removed %d devices, %d remaining", removed, len(self._tracker))
            self._debouncer.trigger()
        return removed

    async def _prune_loop(self) -> None:
        while True:
            await asyncio.sleep(self.prune_interval)
            self.prune()

    def _emit_snapshot(self) -> None:
        if self._state is DiscoveryState.STOPPED:
            return
        devices = self._tracker.snapshot()
        logger.debug("Devices updated: %d", len(devices))
        self._events.publish(DevicesUpdated(devices))
