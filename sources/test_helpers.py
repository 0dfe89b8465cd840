import asyncio
import logging

import hex_helper
from app_logger import log_buffer, logger
from event_channel import EventChannel
from hex_helper import HexHelper
from timing_decorator import timed


def test_hex_string():
    assert HexHelper.to_hex_string(b"\x01\xab") == "01:ab"
    assert HexHelper.to_hex_string(b"") == ""
    assert HexHelper.to_hex_string(None) == ""


def test_manufacturer_helpers():
    data = b"\x4c\x00\x02\x15"
    assert HexHelper.manufacturer_id(data) == 0x004C
    assert HexHelper.manufacturer_tag(data) == "mfg-76"
    assert "Apple" in HexHelper.manufacturer_name(data)
    assert HexHelper.manufacturer_tag(b"") == "no-mfg"
    assert HexHelper.manufacturer_name(b"\x01") == "Unknown"


def test_unregistered_company_shows_the_id(monkeypatch):
    monkeypatch.setattr(hex_helper, "company", {})
    assert HexHelper.manufacturer_name(b"\x34\x12\x00") == "Unknown (0x1234)"


def test_short_uuid_forms():
    assert HexHelper.short_uuid("0000FFB2-0000-1000-8000-00805F9B34FB") == "ffb2"
    assert HexHelper.short_uuid("0x2A19") == "2a19"
    assert HexHelper.short_uuid("00002a9d") == "2a9d"
    custom = "6e400001-b5a3-f393-e0a9-e50e24dcca9e"
    assert HexHelper.short_uuid(custom.upper()) == custom


def test_channel_dispose_stops_delivery():
    channel = EventChannel("test")
    seen = []
    dispose = channel.subscribe(seen.append)
    channel.publish(1)
    dispose()
    dispose()
    channel.publish(2)
    assert seen == [1]
    assert len(channel) == 0


def test_channel_handler_may_dispose_itself():
    channel = EventChannel("test")
    seen = []

    def once(event):
        seen.append(event)
        dispose()

    dispose = channel.subscribe(once)
    channel.subscribe(seen.append)
    channel.publish("x")
    channel.publish("y")
    assert seen == ["x", "x", "y"]


def test_timed_logs_sync_and_async():
    logger.setLevel(logging.DEBUG)
    try:
        @timed("sync-op")
        def add(a, b):
            return a + b

        @timed()
        async def coro():
            await asyncio.sleep(0)
            return "done"

        assert add(1, 2) == 3
        assert asyncio.run(coro()) == "done"
    finally:
        logger.setLevel(logging.INFO)

    assert any("[sync-op] took" in line for line in log_buffer)
    assert any("coro] took" in line for line in log_buffer)
