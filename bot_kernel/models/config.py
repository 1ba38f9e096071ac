"""Engine configuration. All durations are in seconds."""

from typing import List, Optional

from pydantic import BaseModel, Field


class MovementConfig(BaseModel):
    """Tuning for the movement controller."""

    distance_to_finish: int = 4
    absolute_timeout: float = 30.0              # never reset, survives pauses
    block_threshold: float = 0.2
    walk_stuck_threshold: float = 1.5
    teleport_stuck_min: float = 1.0
    teleport_stuck_max: float = 3.0
    max_stuck_duration: float = 15.0
    max_escape_attempts: int = 3
    round_trip_threshold: float = 5.0
    round_trip_radius: int = 8
    clear_path_distance: int = 7
    monster_check_interval: float = 0.1
    door_open_attempts: int = 5
    area_load_timeout: float = 2.0
    area_poll_interval: float = 0.1
    max_teleport_wait: float = 0.5
    slow_movement: float = 10.0                 # log moves slower than this at info
    walk_step_min: float = 0.3                  # out of town
    walk_step_max: float = 0.35
    town_walk_step_min: float = 0.5
    town_walk_step_max: float = 0.8
    log_throttle: float = 3.0
    movement_aura: Optional[str] = "vigor"


class AttackConfig(BaseModel):
    """Tuning for the attack controller's stall and give-up policy."""

    attack_cycle: float = 0.12
    poll_interval: float = 0.01
    health_sample_interval: float = 0.1
    failed_attempt_timeout: float = 3.0
    reposition_cooldown: float = 2.0
    max_reposition_attempts: int = Field(default=1, ge=0)
    reposition_beyond_distance: int = 4
    state_ttl: float = 300.0
    state_table_cap: int = 100
    refresh_interval: float = 0.5
    burst_timeout: float = 30.0
    log_throttle: float = 2.0


class SessionConfig(BaseModel):
    """Orchestrator ticks and watchdogs."""

    refresh_interval: float = 0.0               # 0 = refresh on every request
    tick_interval: float = 0.1
    idle_timeout: float = 120.0
    min_movement: int = 30
    max_game_length: float = 1200.0
    stuck_pickup_timeout: float = 20.0
    pickup_radius: int = 30
    activity_schedule: Optional[str] = None     # cron expression, None = always


class HealthConfig(BaseModel):
    """Potion and chicken thresholds, in percent."""

    healing_potion_at: int = 60
    mana_potion_at: int = 20
    rejuv_potion_at_life: int = 40
    rejuv_potion_at_mana: int = 0
    chicken_at: int = 25
    merc_chicken_at: int = 0
    town_chicken_at: int = 0
    healing_cooldown: float = 4.0
    mana_cooldown: float = 4.0
    rejuv_cooldown: float = 1.0
    merc_healing_potion_at: int = 50
    merc_healing_cooldown: float = 5.0
    emergency_exit_enabled: bool = False
    emergency_exit_at: int = 0                  # 0 = HP threshold off
    damage_spike_enabled: bool = False
    damage_spike_threshold: int = 40            # HP percent lost inside the window
    damage_spike_window: float = 1.0
    hp_history_window: float = 5.0
    hp_history_size: int = 100


class DefenseConfig(BaseModel):
    """When to step away from a fight that is going badly."""

    enabled: bool = False
    stationary_threshold: float = 3.0
    damage_threshold: float = 1.0
    ineffective_attack_threshold: float = 5.0
    low_hp_threshold: int = 40
    min_movement: int = 5
    attack_range: int = 15
    safe_distance: int = 10
    escape_distance: int = 20


class PacketConfig(BaseModel):
    """Which operations try the packet transport before simulated input."""

    use_for_entity_skills: bool = False
    use_for_item_pickup: bool = False
    use_for_tp_interaction: bool = False


class CharacterConfig(BaseModel):
    name: str = "character"
    buff_skills: List[str] = []
    cta_buff_skills: List[str] = ["battle_command", "battle_orders"]
    use_cta: bool = False
    use_telekinesis: bool = False
    telekinesis_range: int = 23
    interact_with_shrines: bool = True
    rebuff_interval: float = 30.0
    back_to_town_no_hp_potions: bool = True
    back_to_town_no_mp_potions: bool = False
    back_to_town_merc_died: bool = False
    use_merc: bool = True
    belt_columns: List[str] = ["healing", "healing", "mana", "rejuvenation"]
    belt_rows: int = 4
    identify_items: bool = True


class EngineConfig(BaseModel):
    """Aggregate configuration handed to a session."""

    movement: MovementConfig = MovementConfig()
    attack: AttackConfig = AttackConfig()
    session: SessionConfig = SessionConfig()
    health: HealthConfig = HealthConfig()
    defense: DefenseConfig = DefenseConfig()
    packets: PacketConfig = PacketConfig()
    character: CharacterConfig = CharacterConfig()
    force_attack: bool = False
