"""Configurable "vessel of interest" predicate.

Restricts persistence to vessels whose AIS ship type code is in a configured
set (``SHIP_TYPE_FILTER``). Position reports carry no ship type, so the filter
remembers the category each MMSI announced in its static reports and drops
later positions from vessels known to be outside the set. Vessels whose type
has not been seen yet are admitted.

The memory is bounded: past ``max_tracked`` vessels the least recently seen
MMSI is forgotten and is treated as unknown again until its next static report.
"""
from __future__ import annotations

from collections import OrderedDict
from typing import Iterable

from vesselstream.modules.classifier import AISEvent, PositionEvent, StaticEvent

# Comfortably above the number of vessels a world-wide subscription reports
DEFAULT_MAX_TRACKED = 200_000


class VesselFilter:
    def __init__(self, allowed_types: Iterable[int] = (), max_tracked: int = DEFAULT_MAX_TRACKED):
        if max_tracked < 1:
            raise ValueError("max_tracked must be at least 1")
        self.allowed_types: frozenset[int] = frozenset(int(t) for t in allowed_types)
        self.max_tracked = max_tracked
        self._known_types: OrderedDict[str, int] = OrderedDict()

    @property
    def active(self) -> bool:
        return bool(self.allowed_types)

    @property
    def tracked(self) -> int:
        return len(self._known_types)

    def is_of_interest(self, ship_type: int | None) -> bool:
        if not self.active or ship_type is None:
            return True
        return ship_type in self.allowed_types

    def admits(self, event: AISEvent) -> bool:
        """Return True when *event* should be persisted."""
        if not self.active:
            return True
        if isinstance(event, StaticEvent):
            if event.ship_type is not None:
                self._remember(event.mmsi, event.ship_type)
            return self.is_of_interest(event.ship_type)
        if isinstance(event, PositionEvent):
            return self.is_of_interest(self._recall(event.mmsi))
        return False

    def _remember(self, mmsi: str, ship_type: int) -> None:
        self._known_types[mmsi] = ship_type
        self._known_types.move_to_end(mmsi)
        while len(self._known_types) > self.max_tracked:
            self._known_types.popitem(last=False)

    def _recall(self, mmsi: str) -> int | None:
        ship_type = self._known_types.get(mmsi)
        if ship_type is not None:
            self._known_types.move_to_end(mmsi)
        return ship_type
