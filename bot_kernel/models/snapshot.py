"""Snapshot — a complete, point-in-time observation of the game process."""

import math
from datetime import datetime, timezone
from enum import Enum
from typing import Callable, Dict, FrozenSet, List, NamedTuple, Optional

from pydantic import BaseModel, ConfigDict, Field


class Position(NamedTuple):
    """A tile coordinate in game space."""

    x: int
    y: int

    def distance_to(self, other: "Position") -> float:
        return math.hypot(self.x - other.x, self.y - other.y)

    def is_zero(self) -> bool:
        return self.x == 0 and self.y == 0


class PlayerMode(str, Enum):
    IDLE = "idle"
    WALKING = "walking"
    RUNNING = "running"
    CASTING = "casting"
    DEAD = "dead"


class ObjectKind(str, Enum):
    DOOR = "door"
    CHEST = "chest"
    SUPER_CHEST = "super_chest"
    PORTAL = "portal"
    RED_PORTAL = "red_portal"
    SHRINE = "shrine"
    DESTRUCTIBLE = "destructible"
    WAYPOINT = "waypoint"
    STASH = "stash"
    OTHER = "other"


class ObjectMode(str, Enum):
    IDLE = "idle"
    OPERATING = "operating"
    OPENED = "opened"


class ItemLocation(str, Enum):
    GROUND = "ground"
    INVENTORY = "inventory"
    BELT = "belt"
    CURSOR = "cursor"
    STASH = "stash"
    EQUIPPED = "equipped"


class PotionKind(str, Enum):
    HEALING = "healing"
    MANA = "mana"
    REJUVENATION = "rejuvenation"


class _Frozen(BaseModel):
    model_config = ConfigDict(frozen=True)


class PlayerUnit(_Frozen):
    """The controlled avatar."""

    unit_id: int = 1
    name: str = "player"
    position: Position = Position(0, 0)
    area_id: int = 0
    hp: int = 100
    max_hp: int = 100
    mana: int = 100
    max_mana: int = 100
    level: int = 1
    gold: int = 0
    mode: PlayerMode = PlayerMode.IDLE
    states: FrozenSet[str] = frozenset()        # e.g. "battle_orders", "stunned"
    left_skill: Optional[str] = None
    right_skill: Optional[str] = None
    skills: Dict[str, int] = {}                 # skill name -> level

    @property
    def hp_percent(self) -> int:
        if self.max_hp <= 0:
            return 0
        return int(self.hp * 100 / self.max_hp)

    @property
    def mana_percent(self) -> int:
        if self.max_mana <= 0:
            return 0
        return int(self.mana * 100 / self.max_mana)

    @property
    def is_dead(self) -> bool:
        return self.mode == PlayerMode.DEAD or self.hp <= 0

    def has_state(self, state: str) -> bool:
        return state in self.states

    def has_skill(self, skill: str) -> bool:
        return self.skills.get(skill, 0) > 0


class Monster(_Frozen):
    unit_id: int
    name: str = "monster"
    position: Position
    life: int = 100
    max_life: int = 100
    is_pet: bool = False
    is_merc: bool = False
    is_friendly: bool = False
    is_skip: bool = False                       # never worth attacking
    on_walkable_tile: bool = True

    @property
    def is_alive(self) -> bool:
        return self.life > 0

    @property
    def is_valid_enemy(self) -> bool:
        """Alive, hostile, and standing somewhere the pathfinder can reach."""
        if not self.is_alive:
            return False
        if self.is_pet or self.is_merc or self.is_friendly or self.is_skip:
            return False
        return self.on_walkable_tile


class GameObject(_Frozen):
    id: int
    name: str = "object"
    kind: ObjectKind = ObjectKind.OTHER
    position: Position
    selectable: bool = True
    mode: ObjectMode = ObjectMode.IDLE
    is_hovered: bool = False

    @property
    def is_portal(self) -> bool:
        return self.kind in (ObjectKind.PORTAL, ObjectKind.RED_PORTAL)


class Item(_Frozen):
    unit_id: int
    name: str
    location: ItemLocation = ItemLocation.GROUND
    position: Position = Position(0, 0)
    quality: str = "normal"
    identified: bool = True
    potion: Optional[PotionKind] = None
    quantity: int = 1


class OpenMenus(_Frozen):
    loading_screen: bool = False
    inventory: bool = False
    stash: bool = False
    cube: bool = False
    npc_interact: bool = False
    npc_shop: bool = False
    waypoint: bool = False
    character: bool = False
    skill_tree: bool = False
    chat_open: bool = False

    def any_open(self) -> bool:
        return any((
            self.inventory, self.stash, self.cube, self.npc_interact,
            self.npc_shop, self.waypoint, self.character, self.skill_tree,
            self.chat_open,
        ))


class KeyBindings(_Frozen):
    skills: Dict[str, str] = {}                 # skill name -> key
    stand_still: str = "shift"
    swap_weapons: str = "w"
    inventory: str = "i"
    chat: str = "enter"
    escape: str = "esc"
    belt: List[str] = ["1", "2", "3", "4"]

    def for_skill(self, skill: str) -> Optional[str]:
        return self.skills.get(skill)


class Snapshot(_Frozen):
    """
    A self-consistent observation of player, monsters, objects, inventory
    and menus. Consumers never mutate it; the session replaces it whole.
    """

    player: PlayerUnit = PlayerUnit()
    monsters: List[Monster] = []
    objects: List[GameObject] = []
    items: List[Item] = []
    menus: OpenMenus = OpenMenus()
    key_bindings: KeyBindings = KeyBindings()
    is_town: bool = False
    collision_loaded: bool = True
    ping_ms: int = 50
    cast_duration: float = 0.4                  # seconds per cast/attack
    can_teleport: bool = False
    active_weapon_slot: int = 0
    merc_hp_percent: Optional[int] = None       # None when no merc is hired
    captured_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    def find_monster(self, unit_id: int) -> Optional[Monster]:
        return next((m for m in self.monsters if m.unit_id == unit_id), None)

    def find_object(self, object_id: int) -> Optional[GameObject]:
        return next((o for o in self.objects if o.id == object_id), None)

    def find_object_by_name(self, name: str) -> Optional[GameObject]:
        return next((o for o in self.objects if o.name == name), None)

    def find_item(self, unit_id: int) -> Optional[Item]:
        return next((i for i in self.items if i.unit_id == unit_id), None)

    def enemies(
        self, monster_filter: Optional[Callable[[Monster], bool]] = None
    ) -> List[Monster]:
        """Alive hostile monsters, optionally narrowed by a filter."""
        found = [
            m for m in self.monsters
            if m.is_alive and not (m.is_pet or m.is_merc or m.is_friendly)
        ]
        if monster_filter is not None:
            found = [m for m in found if monster_filter(m)]
        return found

    def items_at(self, location: ItemLocation) -> List[Item]:
        return [i for i in self.items if i.location == location]

    def ground_items(self) -> List[Item]:
        return self.items_at(ItemLocation.GROUND)

    def belt_potions(self, kind: PotionKind) -> List[Item]:
        return [i for i in self.items_at(ItemLocation.BELT) if i.potion == kind]

    def inventory_potions(self, kind: PotionKind) -> List[Item]:
        return [
            i for i in self.items_at(ItemLocation.INVENTORY) if i.potion == kind
        ]
