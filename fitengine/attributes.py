"""
Resolved attribute snapshot for the fitting simulation engine.

This module defines the read-only inputs consumed by the capacitor
simulator and the firepower aggregator: the ship, its fitted modules
(with optional loaded charges), drones and fighter squadrons. Every entity
carries a flat mapping of attribute name to an already resolved value,
produced by an external effect-stacking resolver.

The engine never mutates these snapshots. Missing attributes read as 0.0
(or 1.0 for multipliers) at the call site.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, FrozenSet, Iterable, List, Optional


# =============================================================================
# CONSTANTS
# =============================================================================

# Module groups that need special handling in the capacitor simulation
GROUP_ENERGY_NOSFERATU = 68    # Energy transfer: drains a target into our capacitor
GROUP_CAPACITOR_BOOSTER = 76   # Capacitor booster: injects charges into the capacitor

# Charges requiring this skill scale with the character's missile multiplier
MISSILE_SKILL_ID = 3319

# Different ability types publish their activation time under different
# attribute names. Only one is ever populated for a given module, so the
# cycle duration is the max across all of them.
CYCLE_DURATION_ATTRIBUTES: tuple[str, ...] = (
    "speed",
    "duration",
    "durationHighisGood",
    "durationSensorDampeningBurstProjector",
    "durationTargetIlluminationBurstProjector",
    "durationECMJammerBurstProjector",
    "durationWeaponDisruptionBurstProjector",
)


def resolve_cycle_duration_ms(attributes: Dict[str, float]) -> float:
    """
    Read the activation duration of a module.

    Args:
        attributes: Resolved attribute map of the module.

    Returns:
        Cycle duration in milliseconds, or 0.0 if no duration attribute is set.
    """
    return max(
        (attributes.get(name, 0.0) for name in CYCLE_DURATION_ATTRIBUTES),
        default=0.0,
    )


class ModuleStatus(Enum):
    """Activation level of a fitted module."""
    OFFLINE = 0
    ONLINE = 1
    ACTIVE = 2
    OVERLOAD = 3

    @property
    def is_active(self) -> bool:
        """Active and overloaded modules cycle and consume capacitor."""
        return self.value > ModuleStatus.ONLINE.value

    @classmethod
    def coerce(cls, value: "ModuleStatus | int | str") -> ModuleStatus:
        """Accept an enum member, its ordinal or its name."""
        if isinstance(value, cls):
            return value
        if isinstance(value, str):
            return cls[value.upper()]
        return cls(int(value))


# =============================================================================
# SNAPSHOT ENTITIES
# =============================================================================

@dataclass
class Charge:
    """
    Ammunition-like item loaded into a module.

    Attributes:
        type_id: Item type identifier.
        name: Display name.
        attributes: Resolved attributes of the charge.
        quantity: Number of charges loaded, if the charge is countable.
        required_skills: Skill type ids needed to use the charge.
    """
    type_id: int
    name: str = ""
    attributes: Dict[str, float] = field(default_factory=dict)
    quantity: Optional[int] = None
    required_skills: FrozenSet[int] = frozenset()

    @classmethod
    def from_dict(cls, data: dict) -> Charge:
        return cls(
            type_id=int(data.get("type_id", 0)),
            name=data.get("name", ""),
            attributes=dict(data.get("attributes", {})),
            quantity=data.get("quantity"),
            required_skills=frozenset(data.get("required_skills", ())),
        )

    def requires_missile_skill(self, missile_skill_id: int = MISSILE_SKILL_ID) -> bool:
        """True when the charge needs the given missile skill to be used."""
        return missile_skill_id in self.required_skills


@dataclass
class ResolvedShip:
    """
    Resolved hull attributes.

    Attributes:
        type_id: Hull type identifier.
        name: Display name.
        attributes: Resolved hull attributes (capacitorCapacity, rechargeRate, ...).
        character_attributes: Character-level values such as missileDamageMultiplier.
    """
    type_id: int = 0
    name: str = ""
    attributes: Dict[str, float] = field(default_factory=dict)
    character_attributes: Dict[str, float] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: dict) -> ResolvedShip:
        return cls(
            type_id=int(data.get("type_id", 0)),
            name=data.get("name", ""),
            attributes=dict(data.get("attributes", {})),
            character_attributes=dict(data.get("character_attributes", {})),
        )

    @property
    def capacity(self) -> float:
        """Capacitor size in GJ."""
        return self.attributes.get("capacitorCapacity", 0.0)

    @property
    def recharge_time_ms(self) -> float:
        """Time to notionally refill the capacitor from empty, in milliseconds."""
        return self.attributes.get("rechargeRate", 0.0)

    @property
    def recharge_time_s(self) -> float:
        return self.recharge_time_ms / 1000.0

    @property
    def energy_warfare_resistance(self) -> float:
        """Fraction of hostile capacitor drain resisted (0.0 to 1.0)."""
        return 1.0 - self.attributes.get("energyWarfareResistance", 1.0)


@dataclass
class ResolvedModule:
    """
    A fitted module with its resolved attributes.

    Status and legality are decided externally; the engine only reads them.

    Attributes:
        type_id: Item type identifier.
        name: Display name.
        slot: Slot identifier the module is fitted to.
        status: Activation level.
        group_id: Item group, used to special-case module families.
        attributes: Resolved attributes.
        charge: Loaded charge, if any.
        required_skills: Skill type ids needed to fit the module.
        instance_id: Caller-side identifier of this fitted instance.
    """
    type_id: int
    name: str = ""
    slot: str = ""
    status: ModuleStatus = ModuleStatus.ONLINE
    group_id: int = 0
    attributes: Dict[str, float] = field(default_factory=dict)
    charge: Optional[Charge] = None
    required_skills: FrozenSet[int] = frozenset()
    instance_id: Optional[str] = None

    def __post_init__(self) -> None:
        self.status = ModuleStatus.coerce(self.status)

    @classmethod
    def from_dict(cls, data: dict) -> ResolvedModule:
        charge_data = data.get("charge")
        return cls(
            type_id=int(data.get("type_id", 0)),
            name=data.get("name", ""),
            slot=data.get("slot", ""),
            status=ModuleStatus.coerce(data.get("status", ModuleStatus.ONLINE.value)),
            group_id=int(data.get("group_id", 0)),
            attributes=dict(data.get("attributes", {})),
            charge=Charge.from_dict(charge_data) if charge_data else None,
            required_skills=frozenset(data.get("required_skills", ())),
            instance_id=data.get("instance_id"),
        )

    @property
    def is_active(self) -> bool:
        return self.status.is_active

    @property
    def cycle_duration_ms(self) -> float:
        return resolve_cycle_duration_ms(self.attributes)


@dataclass
class ResolvedDrone:
    """
    A stack of identical drones in the drone bay.

    Precondition (not re-validated): 0 <= active_count <= quantity.

    Attributes:
        type_id: Item type identifier.
        name: Display name.
        attributes: Resolved attributes of a single drone.
        quantity: Drones of this type owned.
        active_count: Drones of this type currently engaged.
    """
    type_id: int
    name: str = ""
    attributes: Dict[str, float] = field(default_factory=dict)
    quantity: int = 1
    active_count: int = 0

    @classmethod
    def from_dict(cls, data: dict) -> ResolvedDrone:
        return cls(
            type_id=int(data.get("type_id", 0)),
            name=data.get("name", ""),
            attributes=dict(data.get("attributes", {})),
            quantity=int(data.get("quantity", 1)),
            active_count=int(data.get("active_count", 0)),
        )


@dataclass
class ResolvedFighterSquad:
    """
    A fighter squadron launched from one tube.

    Attributes:
        type_id: Item type identifier.
        name: Display name.
        attributes: Resolved attributes of a single fighter.
        quantity: Fighters in the squadron.
        tube: Launch tube identifier.
    """
    type_id: int
    name: str = ""
    attributes: Dict[str, float] = field(default_factory=dict)
    quantity: int = 1
    tube: Optional[str] = None

    @classmethod
    def from_dict(cls, data: dict) -> ResolvedFighterSquad:
        return cls(
            type_id=int(data.get("type_id", 0)),
            name=data.get("name", ""),
            attributes=dict(data.get("attributes", {})),
            quantity=int(data.get("quantity", 1)),
            tube=data.get("tube"),
        )

    @property
    def bomb_type_id(self) -> Optional[int]:
        """Type id of the bomb launched by this fighter, if it has one."""
        bomb_type = self.attributes.get("fighterAbilityLaunchBombType", 0.0)
        if bomb_type > 0:
            return int(bomb_type)
        return None


@dataclass
class FitSnapshot:
    """Complete resolved loadout handed to the engine."""
    ship: ResolvedShip
    modules: List[ResolvedModule] = field(default_factory=list)
    drones: List[ResolvedDrone] = field(default_factory=list)
    fighters: List[ResolvedFighterSquad] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: dict) -> FitSnapshot:
        """
        Build a snapshot from a plain dictionary.

        Args:
            data: Dictionary with "ship", "modules", "drones" and "fighters" keys.

        Returns:
            Configured FitSnapshot instance.
        """
        return cls(
            ship=ResolvedShip.from_dict(data.get("ship", {})),
            modules=[ResolvedModule.from_dict(m) for m in data.get("modules", [])],
            drones=[ResolvedDrone.from_dict(d) for d in data.get("drones", [])],
            fighters=[ResolvedFighterSquad.from_dict(f) for f in data.get("fighters", [])],
        )

    def active_modules(self) -> Iterable[ResolvedModule]:
        return (m for m in self.modules if m.is_active)
