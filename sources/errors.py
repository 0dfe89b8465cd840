# errors.py
"""
Exceptions raised by the discovery and connection sessions.

``AdapterError`` wraps anything the Bluetooth stack throws; the sessions
catch it at their boundary and turn it into a state change or a rejected
call.  The other classes describe misuse or missing capabilities.
"""


class ScaleClientError(Exception):
    """Base class for every error raised by this package."""


class AdapterError(ScaleClientError):
    """Scan, connect, service discovery or GATT I/O failed in the stack."""


class NotAvailable(ScaleClientError):
    """The connected peripheral lacks the requested characteristic."""


class AlreadyActive(ScaleClientError):
    """A scan (or connection) is already running; the call was rejected."""


class AlreadyConnecting(AlreadyActive):
    """``connect()`` while another connection attempt is still alive."""


class DecodeAnomaly(ScaleClientError):
    """A characteristic payload did not have the expected shape."""
