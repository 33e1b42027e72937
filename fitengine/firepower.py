"""
Firepower aggregation for the fitting engine.

Computes damage per second and volley (single activation) damage of a fit,
split by the four damage types, across three kinds of sources:

- Weapon modules: charge or module damage, reload-amortised DPS
- Drones: only the engaged subset of each stack fires, no reload
- Fighter squadrons: four ability channels (attack, missiles, bomb,
  kamikaze), the last three gated behind include_special_abilities

Bomb damage lives on a separate item type and is resolved for all
squadrons in a single batched lookup.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Callable, Dict, Iterable, List, Mapping, Optional, Sequence, Set, Union

from .attributes import (
    FitSnapshot,
    ResolvedDrone,
    ResolvedFighterSquad,
    ResolvedModule,
    ResolvedShip,
)
from .config import DEFAULT_CONFIG, EngineConfig

logger = logging.getLogger(__name__)


# =============================================================================
# CONSTANTS
# =============================================================================

# Reload defaults applied when a weapon does not publish them
DEFAULT_RELOAD_TIME_MS = 10000.0
DEFAULT_CHARGE_SIZE = 1.0

# Damage attribute names of modules, charges and drones (em, explosive, kinetic, thermal)
PLAIN_DAMAGE_NAMES = ("emDamage", "explosiveDamage", "kineticDamage", "thermalDamage")

# Dogma attribute ids of the damage values on a bomb item
BOMB_DAMAGE_ATTRIBUTE_IDS: dict[str, int] = {
    "em": 114,
    "explosive": 116,
    "kinetic": 117,
    "thermal": 118,
}


# =============================================================================
# DAMAGE PROFILE
# =============================================================================

@dataclass(frozen=True)
class DamageProfile:
    """Damage (or damage per second) split by damage type."""
    em: float = 0.0
    explosive: float = 0.0
    kinetic: float = 0.0
    thermal: float = 0.0

    @classmethod
    def from_attributes(
        cls,
        attributes: Mapping[str, float],
        prefix: str = "",
        suffixes: Sequence[str] = PLAIN_DAMAGE_NAMES,
    ) -> DamageProfile:
        """
        Read a damage profile from an attribute map.

        Args:
            attributes: Resolved attribute map.
            prefix: Attribute name prefix, e.g. "fighterAbilityMissilesDamage".
            suffixes: Names for (em, explosive, kinetic, thermal) after the prefix.
                Defaults to the plain module/charge names.
        """
        return cls(*(attributes.get(prefix + suffix, 0.0) for suffix in suffixes))

    @property
    def total(self) -> float:
        return self.em + self.explosive + self.kinetic + self.thermal

    @property
    def is_zero(self) -> bool:
        return self.em == 0 and self.explosive == 0 and self.kinetic == 0 and self.thermal == 0

    def scaled(self, factor: float) -> DamageProfile:
        return DamageProfile(
            em=self.em * factor,
            explosive=self.explosive * factor,
            kinetic=self.kinetic * factor,
            thermal=self.thermal * factor,
        )

    def per_second(self, cycle_time_s: float) -> DamageProfile:
        """Spread over a cycle; zero when the cycle time is not positive."""
        if cycle_time_s <= 0:
            return DamageProfile()
        return self.scaled(1.0 / cycle_time_s)

    def __add__(self, other: DamageProfile) -> DamageProfile:
        return DamageProfile(
            em=self.em + other.em,
            explosive=self.explosive + other.explosive,
            kinetic=self.kinetic + other.kinetic,
            thermal=self.thermal + other.thermal,
        )

    def to_dict(self) -> dict:
        return {
            "em": round(self.em, 2),
            "explosive": round(self.explosive, 2),
            "kinetic": round(self.kinetic, 2),
            "thermal": round(self.thermal, 2),
        }


# Batched lookup: set of bomb type ids -> damage profile per type id
BombDamageLookup = Callable[[Set[int]], Mapping[int, DamageProfile]]


def bomb_damage_lookup_from_table(table: Mapping[int, Mapping[int, float]]) -> BombDamageLookup:
    """
    Adapt an in-memory type attribute table to a batched bomb lookup.

    Args:
        table: Mapping of type id to {attribute id: value}.

    Returns:
        Callable resolving a set of bomb type ids in one pass.
    """
    def lookup(type_ids: Set[int]) -> Dict[int, DamageProfile]:
        damages = {}
        for type_id in type_ids:
            values = table.get(type_id)
            if values is None:
                continue
            damages[type_id] = DamageProfile(
                em=values.get(BOMB_DAMAGE_ATTRIBUTE_IDS["em"], 0.0),
                explosive=values.get(BOMB_DAMAGE_ATTRIBUTE_IDS["explosive"], 0.0),
                kinetic=values.get(BOMB_DAMAGE_ATTRIBUTE_IDS["kinetic"], 0.0),
                thermal=values.get(BOMB_DAMAGE_ATTRIBUTE_IDS["thermal"], 0.0),
            )
        return damages

    return lookup


# =============================================================================
# SOURCE RESULTS
# =============================================================================

@dataclass(frozen=True)
class SourceFirepower:
    """
    Firepower of one source or a group of sources.

    Attributes:
        damage: Volley damage split by type.
        dps: Damage per second split by type (without reload).
        dps_with_reload: Total DPS amortising reloads.
    """
    damage: DamageProfile = field(default_factory=DamageProfile)
    dps: DamageProfile = field(default_factory=DamageProfile)
    dps_with_reload: float = 0.0

    @property
    def volley(self) -> float:
        return self.damage.total

    @property
    def total_dps(self) -> float:
        return self.dps.total

    def __add__(self, other: SourceFirepower) -> SourceFirepower:
        return SourceFirepower(
            damage=self.damage + other.damage,
            dps=self.dps + other.dps,
            dps_with_reload=self.dps_with_reload + other.dps_with_reload,
        )


def _sum_sources(sources: Iterable[SourceFirepower]) -> SourceFirepower:
    total = SourceFirepower()
    for source in sources:
        total = total + source
    return total


# =============================================================================
# WEAPONS
# =============================================================================

def weapon_firepower(
    module: ResolvedModule,
    ship: ResolvedShip,
    missile_skill_id: int = DEFAULT_CONFIG.missile_skill_id,
) -> SourceFirepower:
    """
    Firepower of a single weapon module.

    Damage comes from the loaded charge if it has any, otherwise from the
    module itself. Charges requiring the missile skill scale with the
    character's missile damage multiplier instead of the module's.

    Args:
        module: Fitted module.
        ship: Resolved hull carrying character-level attributes.
        missile_skill_id: Skill id marking missile charges.

    Returns:
        SourceFirepower; zero for modules that are not active.
    """
    if not module.is_active:
        return SourceFirepower()

    base = DamageProfile()
    if module.charge is not None:
        base = DamageProfile.from_attributes(module.charge.attributes)
    if base.is_zero:
        base = DamageProfile.from_attributes(module.attributes)

    if module.charge is not None and module.charge.requires_missile_skill(missile_skill_id):
        multiplier = ship.character_attributes.get("missileDamageMultiplier", 1.0)
    else:
        multiplier = module.attributes.get("damageMultiplier", 1.0)

    damage = base.scaled(multiplier)
    if damage.total <= 0:
        return SourceFirepower()

    cycle_s = module.cycle_duration_ms / 1000.0
    reload_s = module.attributes.get("reloadTime", DEFAULT_RELOAD_TIME_MS) / 1000.0
    charge_size = module.attributes.get("chargeSize", DEFAULT_CHARGE_SIZE)

    dps = damage.per_second(cycle_s)
    if charge_size > 0 and cycle_s > 0:
        full_cycle = cycle_s * charge_size + reload_s
        dps_with_reload = damage.total * charge_size / full_cycle
    else:
        dps_with_reload = dps.total

    logger.debug(
        "Weapon %s: multiplier %.3f, volley %.1f, dps %.1f (%.1f with reload)",
        module.name, multiplier, damage.total, dps.total, dps_with_reload,
    )
    return SourceFirepower(damage=damage, dps=dps, dps_with_reload=dps_with_reload)


# =============================================================================
# DRONES
# =============================================================================

def drone_firepower(drone: ResolvedDrone) -> SourceFirepower:
    """
    Firepower of the engaged drones of one stack.

    Drones never reload, so both DPS figures are the same.
    """
    if drone.active_count <= 0:
        return SourceFirepower()

    single = DamageProfile.from_attributes(drone.attributes).scaled(
        drone.attributes.get("damageMultiplier", 1.0)
    )
    if single.total <= 0:
        return SourceFirepower()

    cycle_s = drone.attributes.get("speed", 0.0) / 1000.0
    damage = single.scaled(drone.active_count)
    dps = damage.per_second(cycle_s)

    logger.debug(
        "Drone %s: %d engaged, volley %.1f, dps %.1f",
        drone.name, drone.active_count, damage.total, dps.total,
    )
    return SourceFirepower(damage=damage, dps=dps, dps_with_reload=dps.total)


# =============================================================================
# FIGHTERS
# =============================================================================

_DAMAGE_SUFFIXES = ("EM", "Exp", "Kin", "Therm")


@dataclass(frozen=True)
class FighterAbility:
    """
    One damage channel of a fighter.

    Attributes:
        name: Channel name ("attack", "missiles", "bomb", "kamikaze").
        damage: Raw damage per activation of a single fighter.
        damage_multiplier: Multiplier applied to the raw damage.
        cycle_time_ms: Activation cycle; None for one-shot abilities.
    """
    name: str
    damage: DamageProfile
    damage_multiplier: float = 1.0
    cycle_time_ms: Optional[float] = None

    @property
    def adjusted_damage(self) -> DamageProfile:
        return self.damage.scaled(self.damage_multiplier)

    @property
    def is_one_shot(self) -> bool:
        return self.cycle_time_ms is None

    def dps(self, quantity: int) -> DamageProfile:
        """Damage per second of `quantity` fighters; zero for one-shot abilities."""
        if self.cycle_time_ms is None:
            return DamageProfile()
        return self.adjusted_damage.per_second(self.cycle_time_ms / 1000.0).scaled(quantity)


@dataclass(frozen=True)
class FighterAbilities:
    """All damage channels of a fighter type."""
    attack: FighterAbility
    missiles: FighterAbility
    bomb: FighterAbility
    kamikaze: FighterAbility

    @property
    def special(self) -> tuple[FighterAbility, ...]:
        return (self.missiles, self.bomb)


def fighter_abilities(
    squad: ResolvedFighterSquad,
    bomb_damage: Optional[Mapping[int, DamageProfile]] = None,
) -> FighterAbilities:
    """
    Read the four damage channels of a fighter squadron.

    Args:
        squad: Fighter squadron.
        bomb_damage: Resolved bomb damage by bomb type id.

    Returns:
        FighterAbilities with per-fighter damage and cycle times.
    """
    attributes = squad.attributes

    attack = FighterAbility(
        name="attack",
        damage=DamageProfile.from_attributes(
            attributes, "fighterAbilityAttackMissileDamage", _DAMAGE_SUFFIXES
        ),
        damage_multiplier=attributes.get("fighterAbilityAttackMissileDamageMultiplier", 1.0),
        cycle_time_ms=attributes.get("fighterAbilityAttackMissileDuration", 8000.0),
    )

    missiles = FighterAbility(
        name="missiles",
        damage=DamageProfile.from_attributes(
            attributes, "fighterAbilityMissilesDamage", _DAMAGE_SUFFIXES
        ),
        damage_multiplier=attributes.get("fighterAbilityMissilesDamageMultiplier", 1.0),
        cycle_time_ms=attributes.get("fighterAbilityMissilesDuration", 40000.0),
    )

    bomb_profile = DamageProfile()
    bomb_type_id = squad.bomb_type_id
    if bomb_type_id is not None and bomb_damage:
        bomb_profile = bomb_damage.get(bomb_type_id, DamageProfile())
    bomb = FighterAbility(
        name="bomb",
        damage=bomb_profile,
        cycle_time_ms=attributes.get("fighterAbilityLaunchBombDuration", 60000.0),
    )

    kamikaze = FighterAbility(
        name="kamikaze",
        damage=DamageProfile.from_attributes(
            attributes, "fighterAbilityKamikazeDamage", _DAMAGE_SUFFIXES
        ),
    )

    return FighterAbilities(attack=attack, missiles=missiles, bomb=bomb, kamikaze=kamikaze)


def fighter_firepower(
    squad: ResolvedFighterSquad,
    bomb_damage: Optional[Mapping[int, DamageProfile]] = None,
    include_special_abilities: bool = False,
) -> SourceFirepower:
    """
    Firepower of a fighter squadron.

    The attack channel always counts. Missiles and bombs are added to both
    DPS and volley when special abilities are included. Kamikaze damage is
    a one-shot: it only ever adds to volley, and only with special abilities.
    """
    abilities = fighter_abilities(squad, bomb_damage)
    quantity = squad.quantity

    dps = abilities.attack.dps(quantity)
    per_fighter = abilities.attack.adjusted_damage

    if include_special_abilities:
        for ability in abilities.special:
            dps = dps + ability.dps(quantity)
            per_fighter = per_fighter + ability.adjusted_damage
        per_fighter = per_fighter + abilities.kamikaze.adjusted_damage

    damage = per_fighter.scaled(quantity)

    logger.debug(
        "Fighter %s x%d: volley %.1f, dps %.1f (special abilities %s)",
        squad.name, quantity, damage.total, dps.total, include_special_abilities,
    )
    return SourceFirepower(damage=damage, dps=dps, dps_with_reload=dps.total)


def merge_fighter_squads(fighters: Iterable[ResolvedFighterSquad]) -> List[ResolvedFighterSquad]:
    """
    Merge squadrons of the same type across launch tubes.

    Quantities are summed onto the first squadron seen of each type;
    the inputs are left untouched.
    """
    merged: Dict[int, ResolvedFighterSquad] = {}
    for squad in fighters:
        existing = merged.get(squad.type_id)
        if existing is None:
            merged[squad.type_id] = ResolvedFighterSquad(
                type_id=squad.type_id,
                name=squad.name,
                attributes=squad.attributes,
                quantity=squad.quantity,
                tube=squad.tube,
            )
        else:
            existing.quantity += squad.quantity
    return list(merged.values())


# =============================================================================
# AGGREGATION
# =============================================================================

@dataclass(frozen=True)
class FirepowerResult:
    """
    Firepower of a complete fit.

    Drone and fighter figures are reported together as the "drones" source.

    Attributes:
        weapons: Combined weapon module firepower.
        drones: Combined drone firepower.
        fighters: Combined fighter firepower.
        include_special_abilities: Whether fighter special abilities were counted.
    """
    weapons: SourceFirepower
    drones: SourceFirepower
    fighters: SourceFirepower
    include_special_abilities: bool = False

    @property
    def per_source_volley(self) -> Dict[str, float]:
        return {
            "weapons": self.weapons.volley,
            "drones": self.drones.volley + self.fighters.volley,
        }

    @property
    def per_source_dps(self) -> Dict[str, float]:
        return {
            "weapons": self.weapons.total_dps,
            "drones": self.drones.total_dps + self.fighters.total_dps,
        }

    @property
    def total_volley(self) -> float:
        return self.weapons.volley + self.drones.volley + self.fighters.volley

    @property
    def total_dps(self) -> float:
        return self.weapons.total_dps + self.drones.total_dps + self.fighters.total_dps

    @property
    def total_dps_with_reload(self) -> float:
        return self.weapons.dps_with_reload + self.drones.total_dps + self.fighters.total_dps

    @property
    def dps_profile(self) -> DamageProfile:
        return self.weapons.dps + self.drones.dps + self.fighters.dps

    def _ratio(self, value: float) -> float:
        total = self.total_dps
        if total <= 0:
            return 0.0
        return value / total

    @property
    def em_ratio(self) -> float:
        return self._ratio(self.dps_profile.em)

    @property
    def thermal_ratio(self) -> float:
        return self._ratio(self.dps_profile.thermal)

    @property
    def kinetic_ratio(self) -> float:
        return self._ratio(self.dps_profile.kinetic)

    @property
    def explosive_ratio(self) -> float:
        return self._ratio(self.dps_profile.explosive)

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON serialization."""
        return {
            "per_source_volley": {k: round(v, 2) for k, v in self.per_source_volley.items()},
            "per_source_dps": {k: round(v, 2) for k, v in self.per_source_dps.items()},
            "total_volley": round(self.total_volley, 2),
            "total_dps": round(self.total_dps, 2),
            "total_dps_with_reload": round(self.total_dps_with_reload, 2),
            "em_ratio": round(self.em_ratio, 4),
            "thermal_ratio": round(self.thermal_ratio, 4),
            "kinetic_ratio": round(self.kinetic_ratio, 4),
            "explosive_ratio": round(self.explosive_ratio, 4),
            "include_special_abilities": self.include_special_abilities,
        }


def calculate_firepower(
    snapshot: Union[FitSnapshot, Mapping],
    include_special_abilities: bool = False,
    bomb_damage_lookup: Optional[BombDamageLookup] = None,
    config: Optional[EngineConfig] = None,
) -> FirepowerResult:
    """
    Aggregate firepower of a resolved fit.

    Args:
        snapshot: Resolved ship, modules, drones and fighters, or the
            equivalent plain dictionary.
        include_special_abilities: Count fighter missiles, bombs and kamikaze.
        bomb_damage_lookup: Batched resolver for bomb damage; called once
            with every distinct bomb type id used by the squadrons.
        config: Engine configuration (defaults apply when omitted).

    Returns:
        FirepowerResult with per-source and total figures.
    """
    config = config or DEFAULT_CONFIG
    if not isinstance(snapshot, FitSnapshot):
        snapshot = FitSnapshot.from_dict(snapshot)

    weapons = _sum_sources(
        weapon_firepower(module, snapshot.ship, config.missile_skill_id)
        for module in snapshot.modules
    )
    drones = _sum_sources(drone_firepower(drone) for drone in snapshot.drones)

    squads = merge_fighter_squads(snapshot.fighters)
    bomb_type_ids = {squad.bomb_type_id for squad in squads if squad.bomb_type_id is not None}
    bomb_damage: Mapping[int, DamageProfile] = {}
    if bomb_type_ids and bomb_damage_lookup is not None:
        bomb_damage = bomb_damage_lookup(bomb_type_ids)

    fighters = _sum_sources(
        fighter_firepower(squad, bomb_damage, include_special_abilities)
        for squad in squads
    )

    result = FirepowerResult(
        weapons=weapons,
        drones=drones,
        fighters=fighters,
        include_special_abilities=include_special_abilities,
    )
    logger.info(
        "Firepower: %.1f dps, %.1f volley (weapons %.1f, drones %.1f, fighters %.1f)",
        result.total_dps, result.total_volley,
        weapons.total_dps, drones.total_dps, fighters.total_dps,
    )
    return result
