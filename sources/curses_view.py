# curses_view.py
"""
Curses-based view.  It shows the live device list, the selected scale
(status, weight, battery) or an error, plus a scrollable log view.  The
view never talks to Bluetooth: the controller pushes state in through the
``show_*`` / ``update_*`` methods and the view reports operator intents
through the ``on_*`` callbacks the controller assigns.
"""

import asyncio
import curses
import time
from enum import Enum
from typing import Callable, List, Optional, Sequence

from app_logger import log_buffer   # shared in-memory log deque
from config import APP_TITLE
from models import BatteryReading, ConnectionState, GattService, TrackedDevice, WeightReading

KEY_ESCAPE = 27
KEY_CTRL_C = 3
ENTER_KEYS = (curses.KEY_ENTER, 10, 13)


class Screen(Enum):
    DEVICE_LIST = "device-list"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    ERROR = "error"


HELP_TEXT = {
    Screen.DEVICE_LIST: "Up/Down Select - Enter Connect - Q Exit - L Logs",
    Screen.CONNECTING: "Q Cancel - L Logs",
    Screen.CONNECTED: "B Battery - Q Back - L Logs",
    Screen.ERROR: "Q Back - try selecting another device",
}

STATUS_LABEL = {
    ConnectionState.IDLE: "idle",
    ConnectionState.CONNECTING: "connecting",
    ConnectionState.CONNECTED: "connected",
    ConnectionState.DISCONNECTED: "disconnected",
    ConnectionState.ERROR: "error",
}


class CursesView:
    """
    Minimal curses UI.  The controller calls ``update_devices`` with every
    discovery snapshot and ``update_scale`` with the connection state.
    """

    HEADER = ["name", "address", "rssi", "manufacturer", "seen"]
    COL_WIDTHS = [24, 38, 6, 14, 8]

    def __init__(self, stdscr, clock: Callable[[], float] = time.monotonic) -> None:
        """
        ``stdscr`` is the window object supplied by ``curses.wrapper``.
        All drawing happens inside this window.
        """
        self.stdscr = stdscr
        self._clock = clock
        self.screen = Screen.DEVICE_LIST
        self.mode: str = "table"          # "table" or "log"
        self.log_scroll: int = 0
        self.running = False
        self._needs_redraw = True

        self.devices: List[TrackedDevice] = []
        self.selected_index = 0
        self._selected_identity: Optional[str] = None

        self.scale_device: Optional[TrackedDevice] = None
        self.scale_state = ConnectionState.IDLE
        self.weight: Optional[WeightReading] = None
        self.battery: Optional[BatteryReading] = None
        self.error: Optional[str] = None
        self.services: List[GattService] = []
        self.message: str = ""

        # intents - assigned by the controller
        self.on_select: Callable[[TrackedDevice], None] = lambda device: None
        self.on_battery: Callable[[], None] = lambda: None
        self.on_back: Callable[[], None] = lambda: None
        self.on_exit: Callable[[], None] = lambda: None

        self._init_curses()

    # ------------------------------------------------------------------
    # Curses initialisation (colors, etc.)
    # ------------------------------------------------------------------
    def _init_curses(self) -> None:
        curses.curs_set(0)                     # hide cursor
        curses.raw()                           # Ctrl-C arrives as a key
        curses.set_escdelay(25)
        self.stdscr.keypad(True)
        self.stdscr.nodelay(True)             # non-blocking getch()
        curses.start_color()
        curses.use_default_colors()
        curses.init_pair(1, curses.COLOR_WHITE, curses.COLOR_BLUE)
        curses.init_pair(2, curses.COLOR_GREEN, -1)
        curses.init_pair(3, curses.COLOR_YELLOW, -1)
        curses.init_pair(4, curses.COLOR_RED, -1)
        curses.init_pair(5, curses.COLOR_CYAN, -1)
        self.header_attr = curses.color_pair(1) | curses.A_BOLD
        self.ok_attr = curses.color_pair(2)
        self.warn_attr = curses.color_pair(3)
        self.error_attr = curses.color_pair(4)
        self.title_attr = curses.color_pair(5) | curses.A_BOLD

    # ------------------------------------------------------------------
    # Public API - called by the controller
    # ------------------------------------------------------------------
    def update_devices(self, devices: Sequence[TrackedDevice]) -> None:
        """Replace the device list, keeping the cursor on the same device."""
        self.devices = list(devices)
        index = next(
            (i for i, d in enumerate(self.devices) if d.identity == self._selected_identity),
            None,
        )
        if index is not None:
            self.selected_index = index
        elif self.selected_index >= len(self.devices):
            self.selected_index = 0
        self._remember_selection()
        self._needs_redraw = True

    def show_screen(self, screen: Screen) -> None:
        self.screen = screen
        self._needs_redraw = True

    def update_scale(
        self,
        device: Optional[TrackedDevice],
        state: ConnectionState,
        weight: Optional[WeightReading] = None,
        battery: Optional[BatteryReading] = None,
        error: Optional[str] = None,
    ) -> None:
        self.scale_device = device
        self.scale_state = state
        self.weight = weight
        self.battery = battery
        self.error = error
        self._needs_redraw = True

    def update_services(self, services: Sequence[GattService]) -> None:
        self.services = list(services)
        self._needs_redraw = True

    def set_message(self, message: str) -> None:
        self.message = message
        self._needs_redraw = True

    async def run(self, refresh_s: float = 0.01) -> None:
        """Poll keys and redraw only when needed, yielding to the loop."""
        self.running = True
        last_tick = self._clock()
        try:
            while self.running:
                self._handle_key()
                # the "seen" column ages even without new snapshots
                if self.screen is Screen.DEVICE_LIST and self._clock() - last_tick >= 1.0:
                    last_tick = self._clock()
                    self._needs_redraw = True
                if self._needs_redraw:
                    self._render()
                    self._needs_redraw = False
                await asyncio.sleep(refresh_s)
        finally:
            self.running = False

    def stop(self) -> None:
        self.running = False

    # ------------------------------------------------------------------
    # Key handling - called each loop iteration
    # ------------------------------------------------------------------
    def _handle_key(self) -> None:
        try:
            ch = self.stdscr.getch()
        except curses.error:
            ch = -1
        if ch == -1:
            return
        self.handle_key(ch)

    def handle_key(self, ch: int) -> None:
        """
        * `l` / `t` -> log view / table view
        * arrows, Enter -> move and connect (device list)
        * `b` -> battery read (connected)
        * Escape / `q` -> back, or exit from the device list
        * Ctrl-C -> exit
        """
        self._needs_redraw = True
        if ch == KEY_CTRL_C:
            self.on_exit()
            return
        if ch in (ord('l'), ord('L')):
            self.mode = "log"
            self.log_scroll = 0
            return
        if ch in (ord('t'), ord('T')):
            self.mode = "table"
            return

        if self.mode == "log":
            if ch in (KEY_ESCAPE, ord('q'), ord('Q')):
                self.mode = "table"
            else:
                self._scroll_log(ch)
            return

        if ch in (KEY_ESCAPE, ord('q'), ord('Q')):
            if self.screen is Screen.DEVICE_LIST:
                self.on_exit()
            else:
                self.on_back()
        elif self.screen is Screen.DEVICE_LIST:
            self._handle_list_key(ch)
        elif self.screen is Screen.CONNECTED and ch in (ord('b'), ord('B')):
            self.on_battery()

    def _handle_list_key(self, ch: int) -> None:
        if ch in (curses.KEY_UP, ord('k')) and self.selected_index > 0:
            self.selected_index -= 1
            self._remember_selection()
        elif ch in (curses.KEY_DOWN, ord('j')) and self.selected_index < len(self.devices) - 1:
            self.selected_index += 1
            self._remember_selection()
        elif ch in ENTER_KEYS and self.devices:
            self.on_select(self.devices[self.selected_index])

    def _scroll_log(self, ch: int) -> None:
        max_y, _ = self.stdscr.getmaxyx()
        visible_lines = max(1, max_y - 2)      # leave room for footer
        bottom = max(0, len(log_buffer) - visible_lines)
        if ch in (curses.KEY_DOWN, ord('j')):
            self.log_scroll = min(self.log_scroll + 1, bottom)
        elif ch in (curses.KEY_UP, ord('k')):
            self.log_scroll = max(self.log_scroll - 1, 0)
        elif ch == curses.KEY_NPAGE:
            self.log_scroll = min(self.log_scroll + visible_lines, bottom)
        elif ch == curses.KEY_PPAGE:
            self.log_scroll = max(self.log_scroll - visible_lines, 0)

    def _remember_selection(self) -> None:
        if self.devices:
            self._selected_identity = self.devices[self.selected_index].identity
        else:
            self._selected_identity = None

    # ------------------------------------------------------------------
    # Rendering helpers
    # ------------------------------------------------------------------
    def _render(self) -> None:
        self.stdscr.erase()
        if self.mode == "log":
            self._draw_log()
        else:
            self._put(0, 0, APP_TITLE, self.title_attr)
            if self.screen is Screen.DEVICE_LIST:
                self._draw_device_list()
            elif self.screen is Screen.ERROR:
                self._draw_error()
            else:
                self._draw_scale()
        self._draw_footer()
        self.stdscr.refresh()

    def _put(self, y: int, x: int, text: str, attr: int = 0) -> None:
        """addstr clipped to the window; curses raises on the last cell."""
        max_y, max_x = self.stdscr.getmaxyx()
        if y >= max_y or x >= max_x - 1:
            return
        try:
            self.stdscr.addstr(y, x, text[: max_x - x - 1], attr)
        except curses.error:
            pass

    def _draw_device_list(self) -> None:
        max_y, max_x = self.stdscr.getmaxyx()
        if not self.devices:
            self._put(2, 0, "Scanning for devices...", self.warn_attr)
            self._put(3, 0, "Found 0 devices")
            return

        self._put(2, 0, f"Available Devices ({len(self.devices)})", self.title_attr)

        x = 0
        for title, w in zip(self.HEADER, self.COL_WIDTHS):
            self._put(3, x + 2, title.ljust(w), self.header_attr)
            x += w + 1
        self.stdscr.hline(4, 0, curses.ACS_HLINE, max_x)

        now = self._clock()
        first_row = 5
        visible = max(1, max_y - first_row - 2)
        # keep the cursor inside the window on long lists
        offset = max(0, self.selected_index - visible + 1)
        for row, device in enumerate(self.devices[offset:offset + visible], start=first_row):
            index = offset + row - first_row
            selected = index == self.selected_index
            rssi = device.advertisement.rssi
            cells = [
                device.name,
                device.address or "-",
                "" if rssi is None else str(rssi),
                device.manufacturer,
                f"{max(0.0, now - device.last_seen):.0f}s",
            ]
            attr = self.ok_attr | curses.A_BOLD if selected else 0
            self._put(row, 0, "> " if selected else "  ", attr)
            x = 2
            for cell, w in zip(cells, self.COL_WIDTHS):
                self._put(row, x, cell[:w].ljust(w), attr)
                x += w + 1

    def _draw_scale(self) -> None:
        device = self.scale_device
        state = self.scale_state
        state_attr = {
            ConnectionState.CONNECTING: self.warn_attr,
            ConnectionState.CONNECTED: self.ok_attr,
        }.get(state, self.error_attr)

        self._put(2, 0, "Scale Information", self.title_attr)
        self._put(3, 2, f"Name:    {device.name if device else '-'}")
        self._put(4, 2, f"Id:      {device.identity if device else '-'}")
        self._put(5, 2, f"Address: {(device.address if device else '') or '-'}")
        self._put(6, 2, "Status:  ")
        self._put(6, 11, STATUS_LABEL[state], state_attr | curses.A_BOLD)
        row = self._draw_advertisement(device, 7)

        if state is not ConnectionState.CONNECTED:
            return

        row += 1
        self._put(row, 0, "Live Data", self.title_attr)
        if self.weight is not None:
            self._put(
                row + 1, 2,
                f"Weight:  {self.weight.kg:.3f} kg ({self.weight.grams:.1f} g)"
                f"  {self.weight.timestamp.strftime('%H:%M:%S')}",
                self.ok_attr | curses.A_BOLD,
            )
        else:
            self._put(row + 1, 2, "Weight:  waiting for data...")
        row += 2
        if self.battery is not None:
            level = self.battery.level
            self._put(
                row, 2, f"Battery: {level}%",
                (self.ok_attr if level > 20 else self.warn_attr) | curses.A_BOLD,
            )
            row += 1
        self._draw_services(row + 1)

    def _draw_advertisement(self, device: Optional[TrackedDevice], row: int) -> int:
        """Advertised services, manufacturer and TX power; returns the next free row."""
        if device is None:
            return row
        adv = device.advertisement
        if adv.service_uuids:
            self._put(row, 2, f"Advertised services: {', '.join(adv.service_uuids)}")
            row += 1
        if adv.manufacturer_data:
            self._put(row, 2, f"Manufacturer: {device.manufacturer}")
            row += 1
        if adv.tx_power is not None:
            self._put(row, 2, f"TX Power Level: {adv.tx_power} dBm")
            row += 1
        return row

    def _draw_services(self, row: int) -> None:
        if not self.services:
            return
        max_y, _ = self.stdscr.getmaxyx()
        last_row = max_y - 3                   # footer and message lines
        self._put(row, 0, f"Available Services ({len(self.services)})", self.title_attr)
        row += 1
        for service in self.services:
            if row > last_row:
                return
            self._put(row, 2, f"{service.short_uuid} - {service.description or '(no name)'}", self.title_attr)
            row += 1
            for ch in service.characteristics:
                if row > last_row:
                    return
                self._put(
                    row, 4,
                    f"{ch.short_uuid} - {ch.description or '(no name)'} - {', '.join(ch.properties)}",
                )
                row += 1

    def _draw_error(self) -> None:
        device = self.scale_device
        self._put(2, 0, "Connection error", self.error_attr | curses.A_BOLD)
        if device is not None:
            self._put(3, 2, f"Device: {device.name} ({device.address or '-'})")
        self._put(4, 2, self.error or "unknown error", self.error_attr)

    # ------------------------------------------------------------------
    # Log view - scrollable list of the most recent log lines
    # ------------------------------------------------------------------
    def _draw_log(self) -> None:
        max_y, _ = self.stdscr.getmaxyx()
        visible_lines = max(1, max_y - 2)
        logs = list(log_buffer)
        for idx, line in enumerate(logs[self.log_scroll:self.log_scroll + visible_lines]):
            self._put(idx, 0, line)

    # ------------------------------------------------------------------
    # Footer - help for the current screen and the last message
    # ------------------------------------------------------------------
    def _draw_footer(self) -> None:
        max_y, max_x = self.stdscr.getmaxyx()
        if self.message:
            self._put(max_y - 2, 0, self.message, self.warn_attr)
        if self.mode == "log":
            hint = "[LOG MODE] Up/Down/PgUp/PgDn scroll - T or Q back to table"
        else:
            hint = HELP_TEXT[self.screen]
        self._put(max_y - 1, 0, hint.ljust(max_x - 1), curses.A_REVERSE)
