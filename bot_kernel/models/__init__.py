"""Bot kernel data models."""

from bot_kernel.models.attack import AttackOptions, AttackOutcome, AttackState
from bot_kernel.models.config import (
    AttackConfig,
    CharacterConfig,
    DefenseConfig,
    EngineConfig,
    HealthConfig,
    MovementConfig,
    PacketConfig,
    SessionConfig,
)
from bot_kernel.models.history import FinishReason, RunRecord
from bot_kernel.models.movement import MoveOptions
from bot_kernel.models.priority import Priority
from bot_kernel.models.session import AreaCorrection, CurrentGame, DebugMarker
from bot_kernel.models.snapshot import (
    GameObject,
    Item,
    ItemLocation,
    KeyBindings,
    Monster,
    ObjectKind,
    ObjectMode,
    OpenMenus,
    PlayerMode,
    PlayerUnit,
    Position,
    PotionKind,
    Snapshot,
)

__all__ = [
    "AreaCorrection",
    "AttackConfig",
    "AttackOptions",
    "AttackOutcome",
    "AttackState",
    "CharacterConfig",
    "CurrentGame",
    "DebugMarker",
    "DefenseConfig",
    "EngineConfig",
    "FinishReason",
    "GameObject",
    "HealthConfig",
    "Item",
    "ItemLocation",
    "KeyBindings",
    "Monster",
    "MoveOptions",
    "MovementConfig",
    "ObjectKind",
    "ObjectMode",
    "OpenMenus",
    "PacketConfig",
    "PlayerMode",
    "PlayerUnit",
    "Position",
    "PotionKind",
    "Priority",
    "RunRecord",
    "SessionConfig",
    "Snapshot",
]
