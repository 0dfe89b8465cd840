# models.py
"""
Dataclasses shared by the discovery pipeline, the scale connection and the
curses view.  Everything here is a value: instances are frozen and handed
out read-only, the owning component replaces them instead of mutating.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Optional, Tuple

from hex_helper import HexHelper


# ----------------------------------------------------------------------
# Advertisement (input from the adapter)
# ----------------------------------------------------------------------
@dataclass(frozen=True)
class Advertisement:
    """One advertisement broadcast.  Every field may be missing."""
    local_name: Optional[str] = None
    address: Optional[str] = None           # empty / None on some platforms
    service_uuids: Tuple[str, ...] = ()
    manufacturer_data: Optional[bytes] = None   # company id (LE) + payload
    tx_power: Optional[int] = None
    rssi: Optional[int] = None
    # native object (bleak ``BLEDevice``) used to connect, never compared
    handle: Any = field(default=None, compare=False, repr=False)

    @classmethod
    def from_bleak(cls, device: Any, advertisement_data: Any) -> "Advertisement":
        """
        Build an :class:`Advertisement` from bleak's ``BLEDevice`` and
        ``AdvertisementData`` pair, as handed to a detection callback.
        """
        manufacturer = None
        mfg_map = getattr(advertisement_data, "manufacturer_data", None) or {}
        for company_id, payload in mfg_map.items():
            # bleak splits the company id out of the payload, put it back
            manufacturer = int(company_id).to_bytes(2, "little") + bytes(payload)
            break

        return cls(
            local_name=getattr(advertisement_data, "local_name", None)
            or getattr(device, "name", None),
            address=getattr(device, "address", None),
            service_uuids=tuple(getattr(advertisement_data, "service_uuids", None) or ()),
            manufacturer_data=manufacturer,
            tx_power=getattr(advertisement_data, "tx_power", None),
            rssi=getattr(advertisement_data, "rssi", None),
            handle=device,
        )


# ----------------------------------------------------------------------
# Presence tracking
# ----------------------------------------------------------------------
@dataclass(frozen=True)
class TrackedDevice:
    identity: str
    advertisement: Advertisement
    first_seen: float               # monotonic seconds, never changes
    last_seen: float                # monotonic seconds, never decreases

    @property
    def name(self) -> str:
        return self.advertisement.local_name or "(no name)"

    @property
    def address(self) -> str:
        return self.advertisement.address or ""

    @property
    def manufacturer(self) -> str:
        return HexHelper.manufacturer_name(self.advertisement.manufacturer_data)


class DiscoveryState(Enum):
    STOPPED = "stopped"
    STARTING = "starting"
    SCANNING = "scanning"


# ----------------------------------------------------------------------
# Scale connection
# ----------------------------------------------------------------------
class ConnectionState(Enum):
    IDLE = "idle"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    DISCONNECTED = "disconnected"
    ERROR = "error"


@dataclass(frozen=True)
class WeightReading:
    grams: float
    kg: float
    raw: bytes
    timestamp: datetime


@dataclass(frozen=True)
class BatteryReading:
    level: int                      # 0-100 %
    raw: bytes
    timestamp: datetime


@dataclass(frozen=True)
class GattCharacteristic:
    uuid: str                       # as reported by the stack (128-bit or short)
    properties: Tuple[str, ...] = ()
    service_uuid: str = ""
    description: str = ""           # SIG name when the stack knows one
    handle: Any = field(default=None, compare=False, repr=False)

    @property
    def short_uuid(self) -> str:
        return HexHelper.short_uuid(self.uuid)

    def supports(self, prop: str) -> bool:
        return prop in self.properties


@dataclass(frozen=True)
class GattService:
    uuid: str
    characteristics: Tuple[GattCharacteristic, ...] = ()
    description: str = ""

    @property
    def short_uuid(self) -> str:
        return HexHelper.short_uuid(self.uuid)


# ----------------------------------------------------------------------
# Events published by the sessions
# ----------------------------------------------------------------------
@dataclass(frozen=True)
class DeviceDiscovered:
    device: TrackedDevice


@dataclass(frozen=True)
class DevicesUpdated:
    devices: Tuple[TrackedDevice, ...]


@dataclass(frozen=True)
class Connecting:
    device: TrackedDevice


@dataclass(frozen=True)
class Connected:
    device: TrackedDevice


@dataclass(frozen=True)
class Disconnected:
    device: Optional[TrackedDevice]


@dataclass(frozen=True)
class ConnectionFailed:
    device: Optional[TrackedDevice]
    error: Exception


@dataclass(frozen=True)
class ServicesDiscovered:
    device: Optional[TrackedDevice]
    services: Tuple[GattService, ...]


@dataclass(frozen=True)
class WeightMeasured:
    reading: WeightReading


@dataclass(frozen=True)
class BatteryMeasured:
    reading: BatteryReading
