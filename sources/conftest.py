"""Shared fakes for the session tests: an in-memory adapter and GATT link."""

import asyncio
from typing import Callable, List, Optional

import pytest

from adapter import Adapter, GattLink
from errors import AdapterError
from models import Advertisement, GattCharacteristic, GattService, TrackedDevice


class FakeClock:
    def __init__(self, now: float = 0.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeLink(GattLink):
    def __init__(self, services: List[GattService], battery_payload: bytes = b"\x55"):
        self.services = services
        self.battery_payload = battery_payload
        self.read_error: Optional[Exception] = None
        self.subscribe_error: Optional[Exception] = None
        self.discover_error: Optional[Exception] = None
        self.subscriptions = {}
        self.reads = 0
        self.disconnected = False

    async def discover(self) -> List[GattService]:
        if self.discover_error is not None:
            raise self.discover_error
        return self.services

    async def read(self, characteristic: GattCharacteristic) -> bytes:
        self.reads += 1
        if self.read_error is not None:
            raise self.read_error
        return self.battery_payload

    async def subscribe(self, characteristic, callback) -> None:
        if self.subscribe_error is not None:
            raise self.subscribe_error
        self.subscriptions[characteristic.short_uuid] = callback

    async def disconnect(self) -> None:
        self.disconnected = True

    def notify(self, short_uuid: str, payload: bytes) -> None:
        self.subscriptions[short_uuid](payload)


class FakeAdapter(Adapter):
    """
    Adapter double.  ``ready``, ``connect_gate`` and ``stop_gate`` are events
    the test sets to let the corresponding call complete.
    """

    def __init__(self, link: Optional[FakeLink] = None):
        super().__init__()
        self.ready = asyncio.Event()
        self.ready.set()
        self.connect_gate = asyncio.Event()
        self.connect_gate.set()
        self.callback: Optional[Callable[[Advertisement], None]] = None
        self.scanning = False
        self.start_error: Optional[Exception] = None
        self.connect_error: Optional[Exception] = None
        self.link = link or FakeLink(scale_services())
        self.on_disconnect: Optional[Callable[[], None]] = None
        self.connect_calls = 0
        self.stop_calls = 0
        self.stop_gate = asyncio.Event()
        self.stop_gate.set()

    async def wait_ready(self) -> None:
        await self.ready.wait()

    async def start_scan(self, callback) -> None:
        if self.start_error is not None:
            raise self.start_error
        self.callback = callback
        self.scanning = True

    async def stop_scan(self) -> None:
        self.stop_calls += 1
        await self.stop_gate.wait()
        self.callback = None
        self.scanning = False

    async def connect(self, advertisement, on_disconnect) -> GattLink:
        self.connect_calls += 1
        self.on_disconnect = on_disconnect
        await self.connect_gate.wait()
        if self.connect_error is not None:
            raise self.connect_error
        return self.link

    def advertise(self, advertisement: Advertisement) -> None:
        assert self.callback is not None, "scan not started"
        self.callback(advertisement)

    def drop_link(self) -> None:
        assert self.on_disconnect is not None
        self.on_disconnect()


def base_uuid(short: str) -> str:
    return f"0000{short}-0000-1000-8000-00805f9b34fb"


def characteristic(short: str, *props: str, service: str = "ffb0") -> GattCharacteristic:
    return GattCharacteristic(uuid=base_uuid(short), properties=props, service_uuid=base_uuid(service))


def scale_services(weight: bool = True, battery: bool = True) -> List[GattService]:
    services = []
    if weight:
        services.append(
            GattService(
                uuid=base_uuid("ffb0"),
                characteristics=(
                    characteristic("ffb1", "write"),
                    characteristic("ffb2", "notify"),
                ),
            )
        )
    if battery:
        services.append(
            GattService(
                uuid=base_uuid("180f"),
                characteristics=(characteristic("2a19", "read", "notify", service="180f"),),
            )
        )
    return services


def make_device(name: str = "Scale", address: str = "AA:BB:CC:DD:EE:FF") -> TrackedDevice:
    adv = Advertisement(local_name=name, address=address)
    return TrackedDevice(identity=f"addr:{address}:no-mfg", advertisement=adv, first_seen=0.0, last_seen=0.0)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def fake_link() -> FakeLink:
    return FakeLink(scale_services())


@pytest.fixture
def fake_adapter(fake_link) -> FakeAdapter:
    return FakeAdapter(fake_link)


@pytest.fixture
def device() -> TrackedDevice:
    return make_device()


@pytest.fixture
def adapter_error() -> AdapterError:
    return AdapterError("radio exploded")
