"""
Mutation attribute overlay.

A mutaplasmid lets the player pick, within per-attribute bounds, a
multiplier override for some attributes of a module. This module handles:

- Parsing and validating percentage input against the bounds
- The per-slot state machine: Unmutated -> Staged -> Applied
- Debounced live validation while the user types
- Handing the resulting override map to an external store, only when it
  actually changed
- Applying an override map to a resolved attribute snapshot

Multipliers follow the game convention: 1.0 is unmutated, 1.15 is "+15%".
"""

from __future__ import annotations

import logging
import re
import threading
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Protocol, Tuple, Union

from .config import DEFAULT_CONFIG, EngineConfig

logger = logging.getLogger(__name__)


# Signed or unsigned decimal: "15", "-7.5", "+.25", "3."
PERCENT_PATTERN = re.compile(r"^[+-]?(\d+\.?\d*|\.\d+)$")

# Multiplier of an unmutated attribute
BASE_MULTIPLIER = 1.0


# =============================================================================
# ERRORS
# =============================================================================

class MutationErrorKind(Enum):
    """Distinct, localizable reasons a mutation edit is rejected."""
    INVALID_FORMAT = "invalid_format"
    OUT_OF_RANGE = "out_of_range"
    UNKNOWN_ATTRIBUTE = "unknown_attribute"


class MutationValidationError(ValueError):
    """
    Raised when a mutation edit cannot be accepted.

    Attributes:
        kind: Why the edit was rejected.
        value: The offending input (text, or attribute id).
        min_percent: Lower bound in percent, for OUT_OF_RANGE.
        max_percent: Upper bound in percent, for OUT_OF_RANGE.
    """

    def __init__(
        self,
        kind: MutationErrorKind,
        value: Any,
        min_percent: Optional[float] = None,
        max_percent: Optional[float] = None,
    ):
        self.kind = kind
        self.value = value
        self.min_percent = min_percent
        self.max_percent = max_percent

        if kind is MutationErrorKind.OUT_OF_RANGE:
            message = f"{value!r} is outside {min_percent:+.2f}% to {max_percent:+.2f}%"
        elif kind is MutationErrorKind.UNKNOWN_ATTRIBUTE:
            message = f"Attribute {value!r} is not mutable by this mutaplasmid"
        else:
            message = f"{value!r} is not a valid percentage"
        super().__init__(message)


# =============================================================================
# PERCENTAGE CONVERSION
# =============================================================================

def parse_percentage(text: str) -> float:
    """
    Parse a user-entered percentage.

    Args:
        text: Input such as "15", "-7.5" or "+.25". Whitespace is rejected.

    Returns:
        The percentage as a float.

    Raises:
        MutationValidationError: INVALID_FORMAT if the text is not a plain decimal.
    """
    if not PERCENT_PATTERN.fullmatch(text):
        raise MutationValidationError(MutationErrorKind.INVALID_FORMAT, text)
    return float(text)


def percent_to_multiplier(percent: float) -> float:
    return percent / 100.0 + 1.0


def multiplier_to_percent(multiplier: float) -> float:
    return (multiplier - 1.0) * 100.0


# =============================================================================
# ATTRIBUTE BOUNDS
# =============================================================================

@dataclass(frozen=True)
class MutationQuality:
    """
    How good a roll is relative to its bounds.

    Attributes:
        is_good: True when the roll improves the attribute, False when it
            worsens it or is neutral, None when no value is set.
        progress: Fraction (0..1) of the way from unmutated to the bound in
            the direction of the roll.
    """
    is_good: Optional[bool]
    progress: float


@dataclass
class MutationAttribute:
    """
    One attribute a mutaplasmid can modify.

    Attributes:
        attribute_id: Dogma attribute id.
        name: Display name.
        min_value: Lowest allowed multiplier.
        max_value: Highest allowed multiplier.
        high_is_good: Whether a larger multiplier is an improvement.
        icon: Icon identifier for presentation.
        current_value: Chosen multiplier, None while unset.
    """
    attribute_id: int
    name: str
    min_value: float
    max_value: float
    high_is_good: bool = True
    icon: str = ""
    current_value: Optional[float] = None

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> MutationAttribute:
        """Build from a bounds table row (snake_case or camelCase keys)."""
        high_is_good = row.get("high_is_good", row.get("highIsGood", True))
        current = row.get("current_value")
        return cls(
            attribute_id=int(row.get("attribute_id", row.get("attributeID", 0))),
            name=row.get("name", row.get("display_name", "")),
            min_value=float(row.get("min_value", row.get("minValue", BASE_MULTIPLIER))),
            max_value=float(row.get("max_value", row.get("maxValue", BASE_MULTIPLIER))),
            high_is_good=bool(high_is_good),
            icon=row.get("icon", ""),
            current_value=None if current is None else float(current),
        )

    @property
    def is_set(self) -> bool:
        return self.current_value is not None

    @property
    def current_percent(self) -> Optional[float]:
        if self.current_value is None:
            return None
        return multiplier_to_percent(self.current_value)

    def contains(self, multiplier: float) -> bool:
        return self.min_value <= multiplier <= self.max_value

    def percent_range(self) -> Tuple[float, float]:
        """Bounds in percent, ordered (worst, best)."""
        low = multiplier_to_percent(self.min_value)
        high = multiplier_to_percent(self.max_value)
        if self.high_is_good:
            return low, high
        return high, low

    def quality(self) -> MutationQuality:
        """Direction and extent of the current roll."""
        value = self.current_value
        if value is None:
            return MutationQuality(is_good=None, progress=0.0)

        is_good = (self.high_is_good and value > BASE_MULTIPLIER) or (
            not self.high_is_good and value < BASE_MULTIPLIER
        )

        if value >= BASE_MULTIPLIER:
            span = self.max_value - BASE_MULTIPLIER
            progress = (value - BASE_MULTIPLIER) / span if span > 0 else 0.0
        else:
            span = BASE_MULTIPLIER - self.min_value
            progress = (BASE_MULTIPLIER - value) / span if span > 0 else 0.0

        return MutationQuality(is_good=is_good, progress=progress)


def bounds_from_rows(rows: Iterable[Mapping[str, Any]]) -> List[MutationAttribute]:
    """
    Build the bounds table of a mutaplasmid.

    Args:
        rows: Raw rows with attribute id, name, min/max multiplier and highIsGood.

    Returns:
        MutationAttribute list ordered by display name.
    """
    attributes = [MutationAttribute.from_row(row) for row in rows]
    attributes.sort(key=lambda a: a.name)
    return attributes


def validate_input(attribute: MutationAttribute, text: str) -> Optional[float]:
    """
    Validate a percentage entered for an attribute.

    The range check is done on the multiplier against the raw bounds, so the
    bounds never go through a percent conversion.

    Args:
        attribute: Attribute being edited.
        text: Raw user input.

    Returns:
        The multiplier, or None for empty input (nothing to commit).

    Raises:
        MutationValidationError: INVALID_FORMAT or OUT_OF_RANGE.
    """
    if not text.strip():
        return None

    multiplier = percent_to_multiplier(parse_percentage(text))
    if not attribute.contains(multiplier):
        raise MutationValidationError(
            MutationErrorKind.OUT_OF_RANGE,
            text,
            min_percent=multiplier_to_percent(attribute.min_value),
            max_percent=multiplier_to_percent(attribute.max_value),
        )
    return multiplier


def apply_mutation(
    attributes: Mapping[str, float],
    overrides: Mapping[int, float],
    attribute_names: Mapping[int, str],
) -> Dict[str, float]:
    """
    Apply mutation multipliers to a resolved attribute map.

    Args:
        attributes: Base attribute values by name. Not modified.
        overrides: Multiplier by attribute id.
        attribute_names: Attribute name by attribute id.

    Returns:
        A new attribute map with the mutated values.
    """
    mutated = dict(attributes)
    for attribute_id, multiplier in overrides.items():
        name = attribute_names.get(attribute_id)
        if name is None:
            logger.warning("No attribute name for mutated attribute id %d", attribute_id)
            continue
        if name not in mutated:
            continue
        mutated[name] = mutated[name] * multiplier
    return mutated


# =============================================================================
# STATE
# =============================================================================

@dataclass(frozen=True)
class Unmutated:
    """No mutaplasmid selected."""

    @property
    def is_applied(self) -> bool:
        return False


@dataclass(frozen=True)
class Staged:
    """Mutaplasmid chosen, no attribute values set yet. Never persisted."""
    mutaplasmid_id: int

    @property
    def is_applied(self) -> bool:
        return False


@dataclass(frozen=True)
class Applied:
    """At least one attribute value set; the overrides are persisted."""
    mutaplasmid_id: int
    overrides: Dict[int, float] = field(default_factory=dict)

    @property
    def is_applied(self) -> bool:
        return True


MutationState = Union[Unmutated, Staged, Applied]


# =============================================================================
# PERSISTENCE CONTRACT
# =============================================================================

@dataclass(frozen=True)
class StoredMutation:
    """Persisted mutation of one slot."""
    mutaplasmid_id: int
    overrides: Dict[int, float]


class MutationStore(Protocol):
    """External store owning persistence and attribute re-resolution."""

    def load(self, slot: str) -> Optional[StoredMutation]:
        ...

    def save(self, slot: str, mutaplasmid_id: int, overrides: Mapping[int, float]) -> None:
        ...

    def clear(self, slot: str) -> None:
        ...


class InMemoryMutationStore:
    """
    Dictionary-backed MutationStore.

    Counts writes so callers can check that no-op commits are not persisted.
    """

    def __init__(self):
        self._entries: Dict[str, StoredMutation] = {}
        self.writes = 0

    def load(self, slot: str) -> Optional[StoredMutation]:
        return self._entries.get(slot)

    def save(self, slot: str, mutaplasmid_id: int, overrides: Mapping[int, float]) -> None:
        self._entries[slot] = StoredMutation(mutaplasmid_id, dict(overrides))
        self.writes += 1

    def clear(self, slot: str) -> None:
        if self._entries.pop(slot, None) is not None:
            self.writes += 1


# =============================================================================
# DEBOUNCE
# =============================================================================

class DebouncedValidator:
    """
    Single-outstanding, cancelable delayed validation.

    Each schedule() cancels the pending one. A generation counter makes sure a
    canceled or superseded run never delivers its result, even when its timer
    already fired. After close() nothing is delivered anymore.
    """

    def __init__(self, delay_s: float = DEFAULT_CONFIG.debounce_delay_s):
        self.delay_s = delay_s
        self._lock = threading.Lock()
        self._timer: Optional[threading.Timer] = None
        self._pending: Optional[Tuple[Callable[[], Any], Callable[[Any], None]]] = None
        self._generation = 0
        self._closed = False

    @property
    def pending(self) -> bool:
        with self._lock:
            return self._pending is not None

    def schedule(self, compute: Callable[[], Any], deliver: Callable[[Any], None]) -> int:
        """
        Run compute() after the delay and hand its result to deliver().

        deliver() runs while the validator lock is held, so it must not call
        back into the validator.

        Returns:
            Generation number of the scheduled run.
        """
        with self._lock:
            if self._closed:
                raise RuntimeError("DebouncedValidator is closed")
            self._cancel_locked()
            generation = self._generation
            self._pending = (compute, deliver)
            self._timer = threading.Timer(self.delay_s, self._fire, args=(generation,))
            self._timer.daemon = True
            self._timer.start()
            return generation

    def cancel(self) -> None:
        with self._lock:
            self._cancel_locked()

    def flush(self) -> bool:
        """Run the pending validation now, in the calling thread."""
        with self._lock:
            if self._pending is None:
                return False
            generation = self._generation
            if self._timer is not None:
                self._timer.cancel()
                self._timer = None
        self._fire(generation)
        return True

    def close(self) -> None:
        with self._lock:
            self._cancel_locked()
            self._closed = True

    def _cancel_locked(self) -> None:
        self._generation += 1
        self._pending = None
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    def _fire(self, generation: int) -> None:
        with self._lock:
            if self._closed or generation != self._generation or self._pending is None:
                return
            compute, deliver = self._pending

        result = compute()

        with self._lock:
            if self._closed or generation != self._generation:
                return
            self._pending = None
            self._timer = None
            deliver(result)


# =============================================================================
# EDITOR
# =============================================================================

class MutationEditor:
    """
    Mutation state machine of one module slot.

    The editor owns the bounds of the selected mutaplasmid and the values the
    user set. Overrides reach the store only when at least one value is set
    and the map differs from what is already persisted.

    Args:
        slot: Slot identifier used as the store key.
        store: External persistence.
        config: Engine configuration (debounce delay).
    """

    def __init__(self, slot: str, store: MutationStore, config: Optional[EngineConfig] = None):
        self.slot = slot
        self.store = store
        self.config = config or DEFAULT_CONFIG

        self._mutaplasmid_id: Optional[int] = None
        self._attributes: Dict[int, MutationAttribute] = {}

        # Edit session
        self._lock = threading.Lock()
        self._editing_id: Optional[int] = None
        self._input_text = ""
        self._edit_error: Optional[MutationValidationError] = None
        self._validator = DebouncedValidator(self.config.debounce_delay_s)

    # -------------------------------------------------------------------------
    # Read-only views
    # -------------------------------------------------------------------------

    @property
    def mutaplasmid_id(self) -> Optional[int]:
        return self._mutaplasmid_id

    @property
    def attributes(self) -> List[MutationAttribute]:
        return list(self._attributes.values())

    def attribute(self, attribute_id: int) -> MutationAttribute:
        try:
            return self._attributes[attribute_id]
        except KeyError:
            raise MutationValidationError(MutationErrorKind.UNKNOWN_ATTRIBUTE, attribute_id) from None

    def overrides(self) -> Dict[int, float]:
        """Multiplier by attribute id for every attribute with a value."""
        return {
            a.attribute_id: a.current_value
            for a in self._attributes.values()
            if a.current_value is not None
        }

    @property
    def state(self) -> MutationState:
        if self._mutaplasmid_id is None:
            return Unmutated()
        overrides = self.overrides()
        if not overrides:
            return Staged(self._mutaplasmid_id)
        return Applied(self._mutaplasmid_id, overrides)

    @property
    def editing_attribute_id(self) -> Optional[int]:
        return self._editing_id

    @property
    def input_text(self) -> str:
        return self._input_text

    @property
    def edit_error(self) -> Optional[MutationValidationError]:
        with self._lock:
            return self._edit_error

    @property
    def can_confirm(self) -> bool:
        """Whether the current input is non-empty and valid."""
        if self._editing_id is None:
            return False
        try:
            return validate_input(self._attributes[self._editing_id], self._input_text) is not None
        except MutationValidationError:
            return False

    # -------------------------------------------------------------------------
    # Mutaplasmid selection
    # -------------------------------------------------------------------------

    def select_mutaplasmid(self, mutaplasmid_id: int, bounds: Iterable[MutationAttribute]) -> bool:
        """
        Choose a mutaplasmid. The slot becomes Staged; nothing is persisted.

        Overrides persisted for a previous selection are cleared.

        Returns:
            True if the store changed and attributes must be re-resolved.
        """
        self.cancel_edit()
        self._mutaplasmid_id = mutaplasmid_id
        self._attributes = {
            a.attribute_id: MutationAttribute(
                attribute_id=a.attribute_id,
                name=a.name,
                min_value=a.min_value,
                max_value=a.max_value,
                high_is_good=a.high_is_good,
                icon=a.icon,
            )
            for a in sorted(bounds, key=lambda a: a.name)
        }
        logger.info(
            "Slot %s: staged mutaplasmid %d with %d mutable attributes",
            self.slot, mutaplasmid_id, len(self._attributes),
        )
        return self._sync_store()

    def restore(self, bounds: Iterable[MutationAttribute]) -> MutationState:
        """
        Rehydrate from the store.

        Args:
            bounds: Bounds of the persisted mutaplasmid.

        Returns:
            Resulting state (Unmutated if nothing is persisted).
        """
        self.cancel_edit()
        stored = self.store.load(self.slot)
        if stored is None:
            self._mutaplasmid_id = None
            self._attributes = {}
            return self.state

        self._mutaplasmid_id = stored.mutaplasmid_id
        self._attributes = {}
        for a in sorted(bounds, key=lambda a: a.name):
            self._attributes[a.attribute_id] = MutationAttribute(
                attribute_id=a.attribute_id,
                name=a.name,
                min_value=a.min_value,
                max_value=a.max_value,
                high_is_good=a.high_is_good,
                icon=a.icon,
                current_value=stored.overrides.get(a.attribute_id),
            )

        unknown = set(stored.overrides) - set(self._attributes)
        if unknown:
            logger.warning(
                "Slot %s: persisted overrides for unknown attributes %s ignored",
                self.slot, sorted(unknown),
            )
        return self.state

    def clear(self) -> bool:
        """
        Drop the mutaplasmid and all values. The slot becomes Unmutated.

        Returns:
            True if persisted overrides were cleared.
        """
        self.cancel_edit()
        self._mutaplasmid_id = None
        self._attributes = {}
        return self._sync_store()

    def reset_attribute(self, attribute_id: int) -> bool:
        """Unset one attribute's value; clears the store when none remain."""
        self.attribute(attribute_id).current_value = None
        return self._sync_store()

    # -------------------------------------------------------------------------
    # Edit session
    # -------------------------------------------------------------------------

    def begin_edit(self, attribute_id: int, text: Optional[str] = None) -> None:
        """
        Start editing an attribute.

        Args:
            attribute_id: Attribute to edit.
            text: Initial input; defaults to the current percentage, if any.

        Raises:
            MutationValidationError: UNKNOWN_ATTRIBUTE.
        """
        attribute = self.attribute(attribute_id)
        self._validator.cancel()
        if text is None:
            percent = attribute.current_percent
            text = "" if percent is None else f"{percent:.2f}".rstrip("0").rstrip(".")
        self._editing_id = attribute_id
        self._input_text = text
        with self._lock:
            self._edit_error = None

    def update_input(self, text: str) -> None:
        """Record new input and schedule validation after the debounce delay."""
        if self._editing_id is None:
            return
        self._input_text = text
        attribute = self._attributes[self._editing_id]
        self._validator.schedule(
            lambda: self._validate(attribute, text),
            self._deliver_validation,
        )

    def flush_validation(self) -> bool:
        """Run the pending debounced validation immediately."""
        return self._validator.flush()

    def confirm(self) -> bool:
        """
        Commit the edited value.

        Invalid or empty input blocks the commit and keeps the session open
        with edit_error set.

        Returns:
            True if the persisted overrides changed and attributes must be
            re-resolved.
        """
        if self._editing_id is None:
            return False
        self._validator.cancel()

        attribute = self._attributes[self._editing_id]
        try:
            multiplier = validate_input(attribute, self._input_text)
        except MutationValidationError as e:
            logger.warning("Slot %s: rejected %s input: %s", self.slot, attribute.name, e)
            with self._lock:
                self._edit_error = e
            return False
        if multiplier is None:
            return False

        attribute.current_value = multiplier
        self.cancel_edit()
        return self._sync_store()

    def cancel_edit(self) -> None:
        """Close the edit session; pending validation never delivers."""
        self._validator.cancel()
        self._editing_id = None
        self._input_text = ""
        with self._lock:
            self._edit_error = None

    def close(self) -> None:
        """Release the debounce timer. The editor must not be edited afterwards."""
        self.cancel_edit()
        self._validator.close()

    # -------------------------------------------------------------------------
    # Internals
    # -------------------------------------------------------------------------

    @staticmethod
    def _validate(attribute: MutationAttribute, text: str) -> Optional[MutationValidationError]:
        try:
            validate_input(attribute, text)
        except MutationValidationError as e:
            return e
        return None

    def _deliver_validation(self, error: Optional[MutationValidationError]) -> None:
        if error is not None:
            logger.warning("Slot %s: invalid mutation input: %s", self.slot, error)
        with self._lock:
            self._edit_error = error

    def _sync_store(self) -> bool:
        """Persist the overrides if they differ; clear the store when not applied."""
        state = self.state
        stored = self.store.load(self.slot)

        if isinstance(state, Applied):
            if (
                stored is not None
                and stored.mutaplasmid_id == state.mutaplasmid_id
                and stored.overrides == state.overrides
            ):
                logger.debug("Slot %s: overrides unchanged, nothing to save", self.slot)
                return False
            self.store.save(self.slot, state.mutaplasmid_id, state.overrides)
            logger.info(
                "Slot %s: applied mutaplasmid %d to %d attributes",
                self.slot, state.mutaplasmid_id, len(state.overrides),
            )
            return True

        if stored is not None:
            self.store.clear(self.slot)
            logger.info("Slot %s: cleared persisted mutation", self.slot)
            return True
        return False
