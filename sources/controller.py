# controller.py
"""
Glue between the two sessions and the curses view.

The controller subscribes to discovery and connection events, decides
which screen is shown, and turns the view's intents (select, battery,
back, exit) into session calls.  It holds the subscription disposers and
releases them in ``close``.
"""

import asyncio
from typing import Callable, List, Optional, Set

from app_logger import logger
from connection_session import ConnectionSession
from curses_view import CursesView, Screen
from discovery_session import DiscoverySession
from errors import AdapterError, AlreadyActive, DecodeAnomaly, NotAvailable
from models import (
    BatteryMeasured,
    Connected,
    ConnectionFailed,
    ConnectionState,
    Connecting,
    DeviceDiscovered,
    DevicesUpdated,
    Disconnected,
    ServicesDiscovered,
    TrackedDevice,
    WeightMeasured,
)


class ScaleController:
    def __init__(
        self,
        discovery: DiscoverySession,
        connection: ConnectionSession,
        view: CursesView,
        shutdown: Optional[asyncio.Event] = None,
    ):
        self.discovery = discovery
        self.connection = connection
        self.view = view
        self.shutdown = shutdown or asyncio.Event()
        self.screen = Screen.DEVICE_LIST
        self._disposers: List[Callable[[], None]] = []
        self._tasks: Set[asyncio.Task] = set()

        # controller registers to be notified by the view
        self.view.on_select = self.handle_select
        self.view.on_battery = self.handle_battery
        self.view.on_back = self.handle_back
        self.view.on_exit = self.handle_exit

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------
    async def start(self) -> None:
        """Subscribe to both sessions and start scanning.  Raises AdapterError."""
        self._disposers.append(self.discovery.subscribe(self.handle_discovery_event))
        self._disposers.append(self.connection.subscribe(self.handle_connection_event))
        self._show(Screen.DEVICE_LIST)
        await self.discovery.start()

    async def close(self) -> None:
        for dispose in self._disposers:
            dispose()
        self._disposers.clear()
        for task in list(self._tasks):
            task.cancel()
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)
        await self.connection.disconnect()
        await self.discovery.stop()

    # ------------------------------------------------------------------
    # Session events
    # ------------------------------------------------------------------
    def handle_discovery_event(self, event) -> None:
        if isinstance(event, DevicesUpdated):
            self.view.update_devices(event.devices)
        elif isinstance(event, DeviceDiscovered):
            logger.debug("Discovered %s", event.device.identity)

    def handle_connection_event(self, event) -> None:
        conn = self.connection
        if isinstance(event, Connecting):
            self._show(Screen.CONNECTING)
        elif isinstance(event, Connected):
            self._show(Screen.CONNECTED)
        elif isinstance(event, ConnectionFailed):
            self.view.update_scale(event.device, conn.state, error=str(event.error))
            self._show(Screen.ERROR)
            return
        elif isinstance(event, Disconnected):
            self.view.set_message(f"Disconnected from {event.device.name if event.device else 'device'}")
            self._return_to_list()
            return
        elif isinstance(event, ServicesDiscovered):
            self.view.update_services(event.services)
            return
        elif isinstance(event, BatteryMeasured):
            self.view.set_message(f"Battery: {event.reading.level}%")
        elif not isinstance(event, WeightMeasured):
            return
        self.view.update_scale(conn.device, conn.state, conn.last_weight, conn.last_battery)

    # ------------------------------------------------------------------
    # Operator intents
    # ------------------------------------------------------------------
    def handle_select(self, device: TrackedDevice) -> None:
        if self.screen is not Screen.DEVICE_LIST:
            return
        logger.info("Selected %s (%s)", device.name, device.address or "no address")
        self.view.set_message("")
        # leave the list right away so a second Enter cannot start another attempt
        self.view.update_scale(device, ConnectionState.CONNECTING)
        self._show(Screen.CONNECTING)
        self._spawn(self._connect(device))

    def handle_battery(self) -> None:
        if self.screen is Screen.CONNECTED:
            self._spawn(self._read_battery())

    def handle_back(self) -> None:
        if self.screen is Screen.DEVICE_LIST:
            self.handle_exit()
            return
        if self.connection.state in (ConnectionState.IDLE, ConnectionState.DISCONNECTED):
            # backed out before the connection attempt began
            self._return_to_list()
            return
        self._spawn(self.connection.disconnect())

    def handle_exit(self) -> None:
        logger.info("Exit requested")
        self.shutdown.set()

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------
    async def _connect(self, device: TrackedDevice) -> None:
        # the radio is shared, scanning pauses while we talk to the scale
        await self.discovery.stop()
        if self.screen is not Screen.CONNECTING:
            return
        try:
            await self.connection.connect(device)
        except AlreadyActive as exc:
            logger.warning("Connect rejected: %s", exc)
            self.view.set_message(str(exc))

    async def _read_battery(self) -> None:
        try:
            await self.connection.read_battery()
        except NotAvailable:
            self.view.set_message("Battery level not available on this device")
        except (AdapterError, DecodeAnomaly) as exc:
            logger.error("Failed to read battery level: %s", exc)
            self.view.set_message(f"Battery read failed: {exc}")

    async def _restart_discovery(self) -> None:
        if self.discovery.active:
            return
        try:
            await self.discovery.start()
        except (AdapterError, AlreadyActive) as exc:
            logger.error("Could not restart discovery: %s", exc)
            self.view.set_message(f"Scan failed: {exc}")

    def _return_to_list(self) -> None:
        self.view.update_scale(None, self.connection.state)
        self.view.update_services(())
        self.view.update_devices(())
        self._show(Screen.DEVICE_LIST)
        self._spawn(self._restart_discovery())

    def _show(self, screen: Screen) -> None:
        self.screen = screen
        self.view.show_screen(screen)

    def _spawn(self, coro) -> asyncio.Task:
        task = asyncio.get_running_loop().create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._task_done)
        return task

    def _task_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.error("Background task failed", exc_info=task.exception())
