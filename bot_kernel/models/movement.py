"""Move Request — options for a single movement call."""

from typing import Callable, Optional

from pydantic import BaseModel, ConfigDict

from bot_kernel.models.snapshot import Monster


class MoveOptions(BaseModel):
    """Ephemeral per-call overrides for `MovementController.move_to`."""

    model_config = ConfigDict(arbitrary_types_allowed=True)

    distance_to_finish: Optional[int] = None    # None = config default
    stationary_min_distance: Optional[int] = None
    stationary_max_distance: Optional[int] = None
    ignore_monsters: bool = False
    ignore_items: bool = False
    monster_filter: Optional[Callable[[Monster], bool]] = None
    clear_path_distance: Optional[int] = None   # overrides config, also when teleporting

    @property
    def has_stationary_band(self) -> bool:
        return (
            self.stationary_min_distance is not None
            and self.stationary_max_distance is not None
        )
