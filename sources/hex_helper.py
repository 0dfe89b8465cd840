"""hex_helper.py

Utility class that groups together the small helper functions that deal with
hex formatting, manufacturer data fingerprints and GATT UUID short forms.

Typical usage
-------------
>>> from hex_helper import HexHelper
>>> HexHelper.to_hex_string(b"\x01\x02")
'01:02'
>>> HexHelper.manufacturer_tag(b"\x4c\x00\x02\x15")
'mfg-76'
>>> HexHelper.short_uuid("0000ffb2-0000-1000-8000-00805f9b34fb")
'ffb2'
"""

from typing import Optional, Union

from bluetooth_numbers import company

# Bluetooth base UUID: 0000xxxx-0000-1000-8000-00805f9b34fb
BASE_UUID_SUFFIX = "-0000-1000-8000-00805f9b34fb"
NO_MANUFACTURER = "no-mfg"


class HexHelper:
    """Stateless helpers; every method is a ``staticmethod``."""

    # ------------------------------------------------------------------
    # Hex conversion helpers
    # ------------------------------------------------------------------
    @staticmethod
    def to_hex_string(byte_array: Union[bytes, bytearray, None]) -> str:
        """
        Convert a sequence of bytes to a colon-separated hex string.

        Example
        -------
        >>> HexHelper.to_hex_string(b"\x01\xab")
        '01:ab'
        """
        if not byte_array:
            return ""
        return ":".join(f"{c:02x}" for c in byte_array)

    # ------------------------------------------------------------------
    # Manufacturer data
    # ------------------------------------------------------------------
    @staticmethod
    def manufacturer_id(data: Optional[bytes]) -> Optional[int]:
        """Company identifier: little-endian uint16 of the first two bytes."""
        if not data or len(data) < 2:
            return None
        return int.from_bytes(data[:2], "little")

    @classmethod
    def manufacturer_tag(cls, data: Optional[bytes]) -> str:
        """
        Short fingerprint of the manufacturer data used in identity keys.
        Only the company id is kept, never the (often rotating) payload.
        """
        company = cls.manufacturer_id(data)
        if company is None:
            return NO_MANUFACTURER
        return f"mfg-{company}"

    @classmethod
    def manufacturer_name(cls, data: Optional[bytes]) -> str:
        """
        Company name from the Bluetooth SIG registry, e.g. ``Apple, Inc.``;
        ids the registry does not know show as ``Unknown (0x1234)``.
        """
        company_id = cls.manufacturer_id(data)
        if company_id is None:
            return "Unknown"
        name = company.get(company_id)
        if name is None:
            return f"Unknown (0x{company_id:04x})"
        return name

    # ------------------------------------------------------------------
    # UUIDs
    # ------------------------------------------------------------------
    @staticmethod
    def short_uuid(uuid: Optional[str]) -> str:
        """
        Lower-cased 16-bit form of a UUID derived from the Bluetooth base
        UUID.  Custom 128-bit UUIDs are returned lower-cased and unchanged.
        """
        if not uuid:
            return ""
        text = str(uuid).strip().lower()
        if len(text) == 36 and text.startswith("0000") and text.endswith(BASE_UUID_SUFFIX):
            return text[4:8]
        if text.startswith("0x"):
            text = text[2:]
        if len(text) == 8 and text.startswith("0000"):
            return text[4:]
        return text
