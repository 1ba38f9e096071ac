"""Per-game bookkeeping and per-tier debug markers."""

from typing import Dict, List, Optional

from pydantic import BaseModel


class DebugMarker(BaseModel):
    """Last action/step recorded by the loop running at one priority tier."""

    last_action: str = ""
    last_step: str = ""


class AreaCorrection(BaseModel):
    enabled: bool = False
    expected_area: Optional[int] = None


class CurrentGame(BaseModel):
    """
    State scoped to a single game instance. Reset by replacing the whole
    record when a new game starts.

    Timestamps are `time.monotonic()` readings.
    """

    blacklisted_items: List[int] = []           # ground item unit ids
    picked_up_items: Dict[int, int] = {}        # unit id -> area id
    area_correction: AreaCorrection = AreaCorrection()
    pickup_items: bool = True
    is_picking_items: bool = False
    picking_items_since: Optional[float] = None
    is_stuck: bool = False
    stuck_since: Optional[float] = None
    last_buff_at: Optional[float] = None
    weapon_swap_failures: int = 0
    last_swap_failure_at: Optional[float] = None

    def is_blacklisted(self, unit_id: int) -> bool:
        return unit_id in self.blacklisted_items

    def blacklist(self, unit_id: int) -> None:
        if unit_id not in self.blacklisted_items:
            self.blacklisted_items.append(unit_id)
