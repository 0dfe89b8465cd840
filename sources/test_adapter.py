"""bleak-facing layer: stubbed BleakClient / BleakScanner, no radio needed."""

import asyncio
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock, PropertyMock

import pytest
from bleak.exc import BleakError

import adapter
from adapter import BleakAdapter, BleakLink
from conftest import FakeAdapter, base_uuid, make_device
from connection_session import ConnectionSession
from errors import AdapterError, AlreadyActive
from models import Advertisement, ConnectionFailed, ConnectionState, GattCharacteristic


def bleak_services():
    level = SimpleNamespace(
        uuid=base_uuid("2a19"), properties=["read", "notify"], description="Battery Level"
    )
    weight = SimpleNamespace(uuid=base_uuid("ffb2"), properties=["notify"], description=None)
    return [
        SimpleNamespace(uuid=base_uuid("180f"), description="Battery Service", characteristics=[level]),
        SimpleNamespace(uuid=base_uuid("ffb0"), description="Unknown", characteristics=[weight]),
    ]


def make_client(services=None):
    client = MagicMock()
    client.connect = AsyncMock()
    client.disconnect = AsyncMock()
    client.read_gatt_char = AsyncMock(return_value=bytearray(b"\x42"))
    client.start_notify = AsyncMock()
    client.services = services if services is not None else bleak_services()
    return client


class StubScanner:
    """Stands in for BleakScanner; ``failures`` feeds errors to ``start``."""

    failures = []
    created = []

    def __init__(self, detection_callback=None):
        self.detection_callback = detection_callback
        self.started = False
        self.stopped = False
        self.stop_error = None
        StubScanner.created.append(self)

    async def start(self):
        if StubScanner.failures:
            raise StubScanner.failures.pop(0)
        self.started = True

    async def stop(self):
        if self.stop_error is not None:
            raise self.stop_error
        self.stopped = True


@pytest.fixture
def scanner(monkeypatch):
    StubScanner.failures = []
    StubScanner.created = []
    monkeypatch.setattr(adapter, "BleakScanner", StubScanner)
    return StubScanner


# ----------------------------------------------------------------------
# Advertisement.from_bleak
# ----------------------------------------------------------------------
def test_from_bleak_puts_company_id_back_in_front():
    device = SimpleNamespace(name="dev-name", address="AA:BB:CC:DD:EE:FF")
    data = SimpleNamespace(
        local_name="Scale",
        manufacturer_data={0x004C: b"\x02\x15"},
        service_uuids=[base_uuid("ffb0")],
        tx_power=-59,
        rssi=-70,
    )
    adv = Advertisement.from_bleak(device, data)

    assert adv.local_name == "Scale"
    assert adv.address == "AA:BB:CC:DD:EE:FF"
    assert adv.manufacturer_data == b"\x4c\x00\x02\x15"
    assert adv.service_uuids == (base_uuid("ffb0"),)
    assert adv.tx_power == -59
    assert adv.rssi == -70
    assert adv.handle is device


def test_from_bleak_falls_back_to_device_name_and_no_manufacturer():
    device = SimpleNamespace(name="dev-name", address="")
    data = SimpleNamespace(
        local_name=None, manufacturer_data={}, service_uuids=None, tx_power=None, rssi=-40
    )
    adv = Advertisement.from_bleak(device, data)

    assert adv.local_name == "dev-name"
    assert adv.manufacturer_data is None
    assert adv.service_uuids == ()


# ----------------------------------------------------------------------
# BleakLink
# ----------------------------------------------------------------------
async def test_discover_maps_services_with_names():
    services = await BleakLink(make_client()).discover()

    assert [(s.short_uuid, s.description) for s in services] == [
        ("180f", "Battery Service"),
        ("ffb0", "Unknown"),
    ]
    level = services[0].characteristics[0]
    assert level.short_uuid == "2a19"
    assert level.description == "Battery Level"
    assert level.properties == ("read", "notify")
    assert level.service_uuid == base_uuid("180f")
    assert services[1].characteristics[0].description == ""


async def test_discover_wraps_bleak_error():
    client = make_client()
    type(client).services = PropertyMock(
        side_effect=BleakError("Service Discovery has not been performed yet")
    )
    with pytest.raises(AdapterError, match="service discovery failed"):
        await BleakLink(client).discover()


async def test_discover_failure_fails_the_session():
    client = make_client()
    type(client).services = PropertyMock(side_effect=BleakError("not discovered"))
    fake = FakeAdapter(BleakLink(client))
    session = ConnectionSession(fake)
    events = []
    session.subscribe(events.append)

    assert not await session.connect(make_device())

    assert session.state is ConnectionState.ERROR
    assert isinstance(events[-1], ConnectionFailed)
    client.disconnect.assert_awaited_once()


async def test_read_returns_bytes_and_prefers_the_handle():
    client = make_client()
    native = object()
    char = GattCharacteristic(uuid=base_uuid("2a19"), properties=("read",), handle=native)

    assert await BleakLink(client).read(char) == b"\x42"
    client.read_gatt_char.assert_awaited_once_with(native)


async def test_read_wraps_stack_errors():
    client = make_client()
    client.read_gatt_char.side_effect = asyncio.TimeoutError()
    char = GattCharacteristic(uuid=base_uuid("2a19"), properties=("read",))
    with pytest.raises(AdapterError, match="read 2a19 failed"):
        await BleakLink(client).read(char)


async def test_subscribe_forwards_notifications_as_bytes():
    client = make_client()
    received = []
    char = GattCharacteristic(uuid=base_uuid("ffb2"), properties=("notify",))
    await BleakLink(client).subscribe(char, received.append)

    target, handler = client.start_notify.call_args.args
    assert target == base_uuid("ffb2")
    handler(MagicMock(), bytearray(b"\x01\x02"))
    assert received == [b"\x01\x02"]
    assert isinstance(received[0], bytes)


async def test_subscribe_and_disconnect_wrap_stack_errors():
    client = make_client()
    client.start_notify.side_effect = BleakError("notify refused")
    client.disconnect.side_effect = OSError("gone")
    link = BleakLink(client)
    char = GattCharacteristic(uuid=base_uuid("ffb2"), properties=("notify",))

    with pytest.raises(AdapterError, match="subscribe ffb2 failed"):
        await link.subscribe(char, lambda data: None)
    with pytest.raises(AdapterError, match="disconnect failed"):
        await link.disconnect()


# ----------------------------------------------------------------------
# BleakAdapter
# ----------------------------------------------------------------------
async def test_wait_ready_retries_until_scanner_starts(scanner):
    scanner.failures = [BleakError("adapter off"), OSError("no adapter")]
    await BleakAdapter(poll_interval=0).wait_ready()

    assert len(scanner.created) == 3
    assert scanner.created[-1].started and scanner.created[-1].stopped


async def test_start_scan_converts_detections(scanner):
    bleak_adapter = BleakAdapter()
    seen = []
    await bleak_adapter.start_scan(seen.append)

    stub = scanner.created[-1]
    assert stub.started
    device = SimpleNamespace(name=None, address="11:22:33:44:55:66")
    data = SimpleNamespace(
        local_name="Scale", manufacturer_data={}, service_uuids=[], tx_power=None, rssi=-50
    )
    stub.detection_callback(device, data)
    assert seen == [Advertisement(local_name="Scale", address="11:22:33:44:55:66", rssi=-50)]

    with pytest.raises(AlreadyActive):
        await bleak_adapter.start_scan(seen.append)

    await bleak_adapter.stop_scan()
    assert stub.stopped
    await bleak_adapter.stop_scan()         # nothing left to stop


async def test_start_scan_failure_is_adapter_error_and_retryable(scanner):
    scanner.failures = [BleakError("Bluetooth device is turned off")]
    bleak_adapter = BleakAdapter()
    with pytest.raises(AdapterError, match="scan start failed"):
        await bleak_adapter.start_scan(lambda adv: None)

    await bleak_adapter.start_scan(lambda adv: None)
    assert scanner.created[-1].started
    await bleak_adapter.stop_scan()


async def test_stop_scan_failure_is_adapter_error(scanner):
    bleak_adapter = BleakAdapter()
    await bleak_adapter.start_scan(lambda adv: None)
    scanner.created[-1].stop_error = BleakError("stop refused")
    with pytest.raises(AdapterError, match="scan stop failed"):
        await bleak_adapter.stop_scan()


async def test_connect_uses_native_handle_and_reports_disconnect(monkeypatch):
    client = make_client()
    calls = {}

    def fake_client(target, disconnected_callback=None):
        calls["target"] = target
        calls["callback"] = disconnected_callback
        return client

    monkeypatch.setattr(adapter, "BleakClient", fake_client)
    native = object()
    dropped = []
    link = await BleakAdapter().connect(
        Advertisement(address="AA", handle=native), lambda: dropped.append(True)
    )

    assert isinstance(link, BleakLink)
    assert calls["target"] is native
    client.connect.assert_awaited_once()
    calls["callback"](client)
    assert dropped == [True]


async def test_connect_failures_are_adapter_errors(monkeypatch):
    client = make_client()
    client.connect.side_effect = asyncio.TimeoutError()
    monkeypatch.setattr(adapter, "BleakClient", lambda target, disconnected_callback=None: client)

    with pytest.raises(AdapterError, match="connect failed"):
        await BleakAdapter().connect(Advertisement(address="AA"), lambda: None)
    with pytest.raises(AdapterError, match="neither"):
        await BleakAdapter().connect(Advertisement(), lambda: None)
