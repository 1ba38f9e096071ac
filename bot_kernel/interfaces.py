"""
Collaborator contracts.

The kernel observes the game through a snapshot provider, drives it through
an input device (and optionally a packet sender), and asks a pathfinder
about the collision grid. Implementations live outside this package.

Input is fire-and-forget: nothing here acknowledges success. Callers
verify by polling fresh snapshots.
"""

from enum import Enum
from typing import List, Optional, Protocol, Sequence, Tuple

from bot_kernel.models.snapshot import GameObject, Item, Position, Snapshot


class MouseButton(str, Enum):
    LEFT = "left"
    RIGHT = "right"


class SnapshotProvider(Protocol):
    """Reads the game process. `get_inventory` is optional."""

    def get_data(self) -> Snapshot: ...


class InventoryProvider(Protocol):
    def get_inventory(self) -> List[Item]: ...


class InputDevice(Protocol):
    def press_key(self, key: str, modifier: Optional[str] = None) -> None: ...

    def key_down(self, key: str) -> None: ...

    def key_up(self, key: str) -> None: ...

    def click(
        self, button: MouseButton, x: int, y: int, modifier: Optional[str] = None
    ) -> None: ...

    def move_pointer(self, x: int, y: int) -> None: ...


class PathFinder(Protocol):
    """
    Pure queries over a snapshot's collision data, plus the path-follow
    and escape primitives that translate a path into input.
    """

    def get_path(
        self, snapshot: Snapshot, destination: Position
    ) -> Tuple[List[Position], int, bool]: ...

    def distance_from_me(self, snapshot: Snapshot, position: Position) -> int: ...

    def line_of_sight(self, snapshot: Snapshot, a: Position, b: Position) -> bool: ...

    def has_door_between(
        self, snapshot: Snapshot, a: Position, b: Position
    ) -> Tuple[bool, Optional[GameObject]]: ...

    def get_closest_destructible(
        self, snapshot: Snapshot, position: Position
    ) -> Optional[GameObject]: ...

    def get_closest_door(
        self, snapshot: Snapshot, position: Position
    ) -> Optional[GameObject]: ...

    def beyond_position(self, start: Position, target: Position, distance: int) -> Position: ...

    def game_coords_to_screen(self, snapshot: Snapshot, position: Position) -> Tuple[int, int]: ...

    def move_through_path(
        self, snapshot: Snapshot, path: Sequence[Position], walk_duration: float
    ) -> None: ...

    def smart_escape_movement(self, snapshot: Snapshot) -> None: ...

    def random_movement(self, snapshot: Snapshot) -> None: ...


class PacketSender(Protocol):
    """Lower-level transport. Every method raises on failure."""

    def cast_skill_entity(self, button: MouseButton, target_id: int) -> None: ...

    def pick_up_item(self, unit_id: int) -> None: ...

    def interact_object(self, object_id: int) -> None: ...
