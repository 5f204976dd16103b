"""
车位登记表：固定数量、按编号有序。
"""
from __future__ import annotations
from typing import Dict, Iterable, List, Optional

from .errors import UnknownSpotError
from .models import ACTIVE_STATES, ChargingSpot, SpotState


class SpotRegistry:
    def __init__(self, spot_ids: Iterable[int] = ()):
        self._spots: Dict[int, ChargingSpot] = {}
        for spot_id in spot_ids:
            self.add(ChargingSpot(spot_id=int(spot_id)))

    def add(self, spot: ChargingSpot) -> None:
        if spot.spot_id in self._spots:
            raise ValueError(f"车位 {spot.spot_id} 重复登记")
        self._spots[spot.spot_id] = spot

    def get(self, spot_id: int) -> ChargingSpot:
        spot = self._spots.get(spot_id)
        if spot is None:
            raise UnknownSpotError(f"找不到车位 {spot_id}")
        return spot

    def find(self, spot_id: int) -> Optional[ChargingSpot]:
        return self._spots.get(spot_id)

    def all(self) -> List[ChargingSpot]:
        return [self._spots[k] for k in sorted(self._spots)]

    def in_state(self, *states: SpotState) -> List[ChargingSpot]:
        return [s for s in self.all() if s.state in states]

    def first_in_state(self, state: SpotState) -> Optional[ChargingSpot]:
        for spot in self.all():
            if spot.state == state:
                return spot
        return None

    def active_for_user(self, user_id: str) -> Optional[ChargingSpot]:
        for spot in self.all():
            if spot.occupant == user_id and spot.state in ACTIVE_STATES:
                return spot
        return None

    def put(self, spot: ChargingSpot) -> None:
        """覆盖已登记车位的全部字段"""
        if spot.spot_id not in self._spots:
            raise UnknownSpotError(f"找不到车位 {spot.spot_id}")
        self._spots[spot.spot_id] = spot

    def __contains__(self, spot_id: int) -> bool:
        return spot_id in self._spots

    def __len__(self) -> int:
        return len(self._spots)
