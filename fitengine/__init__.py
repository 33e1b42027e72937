"""Ship fitting simulation engine: capacitor, firepower and mutations."""

from .attributes import (
    # Constants
    GROUP_CAPACITOR_BOOSTER,
    GROUP_ENERGY_NOSFERATU,
    MISSILE_SKILL_ID,
    # Snapshot types
    ModuleStatus,
    Charge,
    ResolvedShip,
    ResolvedModule,
    ResolvedDrone,
    ResolvedFighterSquad,
    FitSnapshot,
    # Utilities
    resolve_cycle_duration_ms,
)

from .capacitor import (
    # Recharge curve
    peak_recharge_rate,
    recharge_curve,
    recharge_level,
    # Drains
    CapacitorDrain,
    CapacitorBudget,
    capacitor_booster_rate,
    collect_capacitor_drains,
    # Stability
    find_stable_level,
    DepletionTrace,
    simulate_depletion,
    CapacitorResult,
    simulate_capacitor,
)

from .config import DEFAULT_CONFIG, EngineConfig

from .firepower import (
    # Damage types
    DamageProfile,
    SourceFirepower,
    FirepowerResult,
    # Sources
    weapon_firepower,
    drone_firepower,
    FighterAbility,
    FighterAbilities,
    fighter_abilities,
    fighter_firepower,
    merge_fighter_squads,
    # Bomb lookup
    BombDamageLookup,
    bomb_damage_lookup_from_table,
    # Aggregation
    calculate_firepower,
)

from .mutation import (
    # Errors
    MutationErrorKind,
    MutationValidationError,
    # Bounds
    MutationAttribute,
    MutationQuality,
    bounds_from_rows,
    # State
    Unmutated,
    Staged,
    Applied,
    MutationState,
    # Persistence
    StoredMutation,
    MutationStore,
    InMemoryMutationStore,
    # Editing
    DebouncedValidator,
    MutationEditor,
    # Utilities
    parse_percentage,
    percent_to_multiplier,
    multiplier_to_percent,
    validate_input,
    apply_mutation,
)

from .formatting import (
    format_number,
    format_duration,
    format_firepower,
    format_ratio,
    format_mutation_percent,
    format_mutation_range,
)

__all__ = [
    # Attributes module
    "GROUP_CAPACITOR_BOOSTER",
    "GROUP_ENERGY_NOSFERATU",
    "MISSILE_SKILL_ID",
    "ModuleStatus",
    "Charge",
    "ResolvedShip",
    "ResolvedModule",
    "ResolvedDrone",
    "ResolvedFighterSquad",
    "FitSnapshot",
    "resolve_cycle_duration_ms",
    # Capacitor module
    "peak_recharge_rate",
    "recharge_curve",
    "recharge_level",
    "CapacitorDrain",
    "CapacitorBudget",
    "capacitor_booster_rate",
    "collect_capacitor_drains",
    "find_stable_level",
    "DepletionTrace",
    "simulate_depletion",
    "CapacitorResult",
    "simulate_capacitor",
    # Config module
    "DEFAULT_CONFIG",
    "EngineConfig",
    # Firepower module
    "DamageProfile",
    "SourceFirepower",
    "FirepowerResult",
    "weapon_firepower",
    "drone_firepower",
    "FighterAbility",
    "FighterAbilities",
    "fighter_abilities",
    "fighter_firepower",
    "merge_fighter_squads",
    "BombDamageLookup",
    "bomb_damage_lookup_from_table",
    "calculate_firepower",
    # Mutation module
    "MutationErrorKind",
    "MutationValidationError",
    "MutationAttribute",
    "MutationQuality",
    "bounds_from_rows",
    "Unmutated",
    "Staged",
    "Applied",
    "MutationState",
    "StoredMutation",
    "MutationStore",
    "InMemoryMutationStore",
    "DebouncedValidator",
    "MutationEditor",
    "parse_percentage",
    "percent_to_multiplier",
    "multiplier_to_percent",
    "validate_input",
    "apply_mutation",
    # Formatting module
    "format_number",
    "format_duration",
    "format_firepower",
    "format_ratio",
    "format_mutation_percent",
    "format_mutation_range",
]
