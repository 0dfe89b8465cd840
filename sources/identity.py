# identity.py
"""
Identity resolver: maps an advertisement to the key of the physical
peripheral that sent it.

Priority:
1. a usable hardware address  -> ``addr:<ADDRESS>:<mfg tag>``
2. otherwise (address redacted, e.g. on macOS)
   -> ``name:<local name>:services:<sorted uuids>:<mfg tag>``

The fallback is a heuristic.  Two anonymous peripherals with the same name,
services and manufacturer collapse into one key, and an advertisement that
carries none of those fields maps to a constant key.
"""

from hex_helper import HexHelper
from models import Advertisement

NO_NAME = "(no name)"


def identify(advertisement: Advertisement) -> str:
    """Return the identity key for ``advertisement``.  Pure function."""
    tag = HexHelper.manufacturer_tag(advertisement.manufacturer_data)

    address = (advertisement.address or "").strip()
    if address:
        return f"addr:{address.upper()}:{tag}"

    name = advertisement.local_name or NO_NAME
    services = ",".join(sorted(str(u).lower() for u in advertisement.service_uuids or ()))
    return f"name:{name}:services:{services}:{tag}"
