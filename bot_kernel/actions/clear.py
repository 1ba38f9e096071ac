"""
Area clearing.

Behavioral Contract:
- Enemies inside the radius are attacked one at a time, closest first.
  Priority monsters (shamans, generators, souls) jump the queue unless
  something is already within melee reach.
- Targets without a path, or behind a closed door, are not selected when
  walking. A target the attack controller gives up on, or can't path
  to, is skipped for the rest of the clear.
- Item pickup is suspended while clearing and restored afterwards.
- `clear_through_path` walks towards a destination in radius-sized legs,
  clearing around the player before every leg. Monsters blocking a leg
  are cleared from a wider radius and the leg is retried.
"""

import logging
from typing import Callable, Iterable, List, Optional, Set

from bot_kernel.errors import MonstersInPathError, NoPathError
from bot_kernel.models.attack import AttackOptions, AttackOutcome
from bot_kernel.models.movement import MoveOptions
from bot_kernel.models.snapshot import Monster, Position, Snapshot
from bot_kernel.session.context import SessionHandle

logger = logging.getLogger(__name__)

ATTACK_REPETITIONS = 3
MELEE_REACH = 2
PATH_DISTANCE_TO_FINISH = 7
BLOCKED_PATH_EXTRA_RADIUS = 5
MAX_BLOCKED_PATH_CLEARS = 5

PRIORITY_MONSTERS = {
    "fallen_shaman",
    "carver_shaman",
    "devilkin_shaman",
    "dark_shaman",
    "warped_shaman",
    "mummy_generator",
    "baal_subject_mummy",
    "fetish_shaman",
    "black_soul",
    "black_soul2",
    "burning_soul",
    "burning_soul2",
}

MonsterFilter = Callable[[Monster], bool]


def is_priority_monster(monster: Monster) -> bool:
    return monster.name in PRIORITY_MONSTERS


def sort_enemies_by_priority(
    handle: SessionHandle, snapshot: Snapshot, enemies: Iterable[Monster]
) -> List[Monster]:
    pathfinder = handle.pathfinder

    def key(monster: Monster):
        distance = pathfinder.distance_from_me(snapshot, monster.position)
        far = distance > MELEE_REACH
        return far, far and not is_priority_monster(monster), distance

    return sorted(enemies, key=key)


def select_next_enemy(
    handle: SessionHandle,
    position: Position,
    radius: int,
    monster_filter: Optional[MonsterFilter] = None,
    skip: Iterable[int] = (),
) -> Optional[Monster]:
    """The next enemy worth attacking within `radius` of `position`, if any."""
    snapshot = handle.snapshot
    pathfinder = handle.pathfinder
    skipped = set(skip)
    candidates = [
        m for m in snapshot.enemies(monster_filter)
        if m.unit_id not in skipped and m.is_valid_enemy
    ]
    for monster in sort_enemies_by_priority(handle, snapshot, candidates):
        if monster.position.distance_to(position) > radius:
            continue
        if not snapshot.can_teleport:
            _, _, found = pathfinder.get_path(snapshot, monster.position)
            if not found:
                continue
            blocked, _ = pathfinder.has_door_between(snapshot, snapshot.player.position, monster.position)
            if blocked:
                continue
        return monster
    return None


async def clear_area_around_position(
    handle: SessionHandle,
    attack,
    position: Position,
    radius: int,
    monster_filter: Optional[MonsterFilter] = None,
    options: Optional[AttackOptions] = None,
) -> int:
    """Kill everything selectable around `position`. Returns the number of targets gone."""
    handle.set_last_action("clear_area_around_position")
    game = handle.current_game
    pickup_items = game.pickup_items
    game.pickup_items = False
    skipped: Set[int] = set()
    cleared = 0
    try:
        while True:
            await handle.pause_if_not_priority()
            await handle.refresh()
            target = select_next_enemy(handle, position, radius, monster_filter, skipped)
            if target is None:
                logger.debug("Area cleared: position=%s radius=%d cleared=%d skipped=%d",
                             tuple(position), radius, cleared, len(skipped))
                return cleared

            try:
                outcome = await attack.primary_attack(handle, target.unit_id, ATTACK_REPETITIONS, options)
            except NoPathError:
                logger.debug("No path to monster, skipping: monster_id=%d name=%s",
                             target.unit_id, target.name)
                skipped.add(target.unit_id)
                continue

            if outcome == AttackOutcome.TARGET_GONE:
                cleared += 1
            elif outcome == AttackOutcome.UNREACHABLE:
                logger.info("Skipping unreachable monster: monster_id=%d name=%s",
                            target.unit_id, target.name)
                skipped.add(target.unit_id)
    finally:
        game.pickup_items = pickup_items


async def clear_area_around_player(
    handle: SessionHandle,
    attack,
    radius: int,
    monster_filter: Optional[MonsterFilter] = None,
    options: Optional[AttackOptions] = None,
) -> int:
    position = handle.snapshot.player.position
    return await clear_area_around_position(handle, attack, position, radius, monster_filter, options)


async def clear_through_path(
    handle: SessionHandle,
    movement,
    attack,
    destination: Position,
    radius: int,
    monster_filter: Optional[MonsterFilter] = None,
    options: Optional[AttackOptions] = None,
) -> None:
    """Walk to `destination`, clearing `radius` around the player on the way."""
    handle.set_last_action("clear_through_path")
    pathfinder = handle.pathfinder
    last_leg = False
    blocked_clears = 0
    while True:
        await handle.pause_if_not_priority()
        await clear_area_around_player(handle, attack, radius, monster_filter, options)
        if last_leg:
            return

        snapshot = await handle.refresh()
        path, _, found = pathfinder.get_path(snapshot, destination)
        if not found:
            raise NoPathError(f"path could not be calculated to {tuple(destination)}")
        if not path:
            return

        leg = min(radius, len(path))
        waypoint = path[leg - 1]
        # the final leg is left to move_to, which may finish further out
        if len(path) - leg <= movement.config.distance_to_finish:
            last_leg = True

        try:
            await movement.move_to(
                handle, waypoint,
                MoveOptions(distance_to_finish=PATH_DISTANCE_TO_FINISH, monster_filter=monster_filter),
            )
        except MonstersInPathError:
            blocked_clears += 1
            if blocked_clears > MAX_BLOCKED_PATH_CLEARS:
                raise
            logger.debug("Monsters blocking the path, clearing them: attempt=%d radius=%d",
                         blocked_clears, radius + BLOCKED_PATH_EXTRA_RADIUS)
            await clear_area_around_player(
                handle, attack, radius + BLOCKED_PATH_EXTRA_RADIUS, monster_filter, options
            )
            last_leg = False
