"""
Engine configuration for the fitting simulation engine.

Holds the tunables shared by the capacitor simulator, the firepower
aggregator and the mutation editor. Defaults reproduce the in-game
behaviour; overrides can come from a dict, a JSON file or environment
variables (optionally loaded from a .env file).
"""

import json
import os
from dataclasses import dataclass, fields
from pathlib import Path
from typing import Any, Dict

from dotenv import find_dotenv, load_dotenv

from .attributes import MISSILE_SKILL_ID


@dataclass(frozen=True)
class EngineConfig:
    """Simulation ceilings and search parameters."""
    peak_recharge_fraction: float = 0.25  # Capacitor fraction with the highest recharge rate
    max_simulation_time_s: float = 8 * 3600.0
    max_simulation_steps: int = 100_000
    bisection_max_iterations: int = 50
    bisection_tolerance: float = 1e-4
    bracket_samples: int = 64  # Curve samples used to bracket the equilibrium
    missile_skill_id: int = MISSILE_SKILL_ID
    debounce_delay_s: float = 0.1

    def __post_init__(self) -> None:
        if self.max_simulation_time_s <= 0:
            raise ValueError("max_simulation_time_s must be positive")
        if self.max_simulation_steps <= 0:
            raise ValueError("max_simulation_steps must be positive")
        if self.bisection_max_iterations <= 0:
            raise ValueError("bisection_max_iterations must be positive")
        if self.bracket_samples < 2:
            raise ValueError("bracket_samples must be at least 2")
        if not 0.0 < self.peak_recharge_fraction < 1.0:
            raise ValueError("peak_recharge_fraction must be between 0 and 1")
        if self.debounce_delay_s < 0:
            raise ValueError("debounce_delay_s cannot be negative")

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'EngineConfig':
        """Create configuration from dictionary, ignoring unknown keys."""
        known = {f.name for f in fields(cls)}
        kwargs = {}
        for name, value in data.items():
            if name not in known:
                continue
            default = getattr(cls, name)
            kwargs[name] = type(default)(value)
        return cls(**kwargs)

    @classmethod
    def from_json(cls, path: str) -> 'EngineConfig':
        """Load configuration from JSON file."""
        config_path = Path(path)
        if not config_path.exists():
            raise FileNotFoundError(f"Engine config not found: {path}")

        with open(config_path) as f:
            data = json.load(f)

        return cls.from_dict(data)

    @classmethod
    def from_env(cls, prefix: str = "FITENGINE_") -> 'EngineConfig':
        """
        Load configuration from environment variables.

        Variables are named after the fields with the given prefix, e.g.
        FITENGINE_MAX_SIMULATION_STEPS. A .env file in the working
        directory is loaded first.
        """
        load_dotenv(find_dotenv(usecwd=True))

        data = {}
        for f in fields(cls):
            raw = os.getenv(prefix + f.name.upper())
            if raw is not None and raw.strip():
                data[f.name] = float(raw) if isinstance(getattr(cls, f.name), float) else int(raw)
        return cls.from_dict(data)

    def to_dict(self) -> Dict[str, Any]:
        """Serialize configuration to a plain dictionary."""
        return {f.name: getattr(self, f.name) for f in fields(self)}


DEFAULT_CONFIG = EngineConfig()
