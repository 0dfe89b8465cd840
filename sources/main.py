#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""main.py
Executable that launches the smart scale BLE client: a live list of nearby
BLE peripherals, and once one is selected, its weight and battery readings.

Exit codes: 0 on help or clean shutdown, 1 when start-up fails (terminal
not usable, Bluetooth adapter never ready, scan refused), 130 on Ctrl-C
outside the UI loop.
"""

import asyncio
import curses
import sys
from typing import Optional, Sequence, Tuple

from adapter import Adapter, BleakAdapter
from app_logger import configure_logging, logger
from config import AppOptions, parse_options
from connection_session import ConnectionSession
from controller import ScaleController
from curses_view import CursesView
from discovery_session import DiscoverySession
from errors import AdapterError, AlreadyActive

EXIT_OK = 0
EXIT_STARTUP_FAILURE = 1
EXIT_INTERRUPTED = 130


def build_components(stdscr, adapter: Optional[Adapter] = None) -> ScaleController:
    """
    Build the whole stack and return a ready-to-start controller.
    """
    # 1. Bluetooth stack
    adapter = adapter or BleakAdapter()

    # 2. Sessions (scan pipeline + scale connection)
    discovery = DiscoverySession(adapter)
    connection = ConnectionSession(adapter)

    # 3. UI layer (curses)
    view = CursesView(stdscr)

    # 4. Controller - glues sessions + view
    return ScaleController(discovery, connection, view)


async def run_app(stdscr) -> Tuple[int, str]:
    """
    Async part of the program - runs the scanner and the UI loop on the
    same event loop until the operator exits.
    """
    controller = build_components(stdscr)
    view_task = asyncio.get_running_loop().create_task(controller.view.run())
    try:
        try:
            await controller.start()
        except (AdapterError, AlreadyActive) as exc:
            logger.error("Start-up failed: %s", exc)
            return EXIT_STARTUP_FAILURE, str(exc)

        await controller.shutdown.wait()
        return EXIT_OK, ""
    finally:
        controller.view.stop()
        await controller.close()
        await asyncio.gather(view_task, return_exceptions=True)
        logger.info("Scale client stopped")


def _curses_main(stdscr) -> Tuple[int, str]:
    return asyncio.run(run_app(stdscr))


def main(argv: Optional[Sequence[str]] = None) -> int:
    options: AppOptions = parse_options(argv)
    configure_logging(options)
    logger.info("Starting scale client (log output: %s, debug: %s)", options.log_output, options.debug)

    try:
        code, reason = curses.wrapper(_curses_main)
    except KeyboardInterrupt:
        # Graceful shutdown path if the user hits Ctrl-C outside the UI loop
        print("\nProgram terminated by user.")
        return EXIT_INTERRUPTED
    except curses.error as exc:
        print(f"Terminal not supported: {exc}", file=sys.stderr)
        return EXIT_STARTUP_FAILURE

    if code == EXIT_STARTUP_FAILURE:
        print(f"Could not start Bluetooth discovery: {reason}", file=sys.stderr)
    return code


# ----------------------------------------------------------------------
# Main entry point
# ----------------------------------------------------------------------
if __name__ == "__main__":
    raise SystemExit(main())
