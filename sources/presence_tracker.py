# presence_tracker.py
"""
Presence tracker - the single owner of the "currently visible" devices.

Devices are keyed by identity.  Repeat sightings replace the advertisement
and ``last_seen`` while ``first_seen`` stays fixed; ``prune`` drops every
device that has been silent for longer than the presence window.  The
backing dict is unordered on purpose, ordering is applied by ``snapshot``.
"""

import dataclasses
from typing import Dict, Optional, Tuple

from identity import identify
from models import Advertisement, TrackedDevice


class PresenceTracker:

    def __init__(self) -> None:
        self._devices: Dict[str, TrackedDevice] = {}
        # insertion counter, breaks first_seen ties deterministically
        self._order: Dict[str, int] = {}
        self._counter = 0

    def __len__(self) -> int:
        return len(self._devices)

    def __contains__(self, identity: object) -> bool:
        return identity in self._devices

    def get(self, identity: str) -> Optional[TrackedDevice]:
        return self._devices.get(identity)

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------
    def observe(self, advertisement: Advertisement, now: float) -> Tuple[bool, TrackedDevice]:
        """
        Record a sighting at ``now``.

        Returns ``(is_new, device)`` where ``is_new`` tells whether the
        identity was not tracked before this call.
        """
        identity = identify(advertisement)
        existing = self._devices.get(identity)
        if existing is None:
            device = TrackedDevice(
                identity=identity,
                advertisement=advertisement,
                first_seen=now,
                last_seen=now,
            )
            self._devices[identity] = device
            self._order[identity] = self._counter
            self._counter += 1
            return True, device

        device = dataclasses.replace(
            existing,
            advertisement=advertisement,
            last_seen=max(existing.last_seen, now),
        )
        self._devices[identity] = device
        return False, device

    def prune(self, now: float, window: float) -> int:
        """Remove devices with ``last_seen < now - window``; return the count."""
        cutoff = now - window
        stale = [key for key, dev in self._devices.items() if dev.last_seen < cutoff]
        for key in stale:
            del self._devices[key]
            del self._order[key]
        return len(stale)

    def clear(self) -> None:
        self._devices.clear()
        self._order.clear()

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------
    def snapshot(self) -> Tuple[TrackedDevice, ...]:
        """All tracked devices, oldest ``first_seen`` first."""
        return tuple(
            sorted(
                self._devices.values(),
                key=lambda dev: (dev.first_seen, self._order[dev.identity]),
            )
        )
