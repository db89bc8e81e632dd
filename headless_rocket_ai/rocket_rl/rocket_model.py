"""
Headless Rocket AI - Rocket and Celestial Body Models
=====================================================

Fixed-schema records for the vehicle and the reference bodies it flies
around. The physics world mutates these records; the environment reads
them to build observations, rewards and termination signals.

Author: AI Assistant
Date: August 2025
"""

import math
from dataclasses import dataclass, field
from typing import Dict, Any, Optional, Mapping, Tuple

import numpy as np

from .constants import (
    ROCKET_MAX_HEALTH, FUEL_MAX, THRUSTER_MAX_POWER
)


@dataclass
class ThrusterState:
    """Commanded power of a single thruster."""
    max_power: float
    power: float = 0.0

    @property
    def power_ratio(self) -> float:
        if self.max_power <= 0:
            return 0.0
        return min(1.0, max(0.0, self.power / self.max_power))


@dataclass
class CelestialBody:
    """Static reference body (planet or moon)."""
    name: str
    position: Tuple[float, float]
    radius: float
    mass: float

    @classmethod
    def from_config(cls, config: Mapping[str, Any]) -> 'CelestialBody':
        position = config.get('position', (0.0, 0.0))
        if isinstance(position, Mapping):
            position = (position['x'], position['y'])
        return cls(
            name=str(config['name']),
            position=(float(position[0]), float(position[1])),
            radius=float(config['radius']),
            mass=float(config['mass'])
        )

    def distance_to(self, point: np.ndarray) -> float:
        return float(math.hypot(point[0] - self.position[0], point[1] - self.position[1]))

    def altitude_of(self, point: np.ndarray) -> float:
        """Distance from the body surface to ``point``."""
        return self.distance_to(point) - self.radius

    def snapshot(self) -> Dict[str, Any]:
        return {
            'name': self.name,
            'position': {'x': self.position[0], 'y': self.position[1]},
            'radius': self.radius,
            'mass': self.mass
        }


def _default_thrusters() -> Dict[str, ThrusterState]:
    return {name: ThrusterState(max_power=power) for name, power in THRUSTER_MAX_POWER.items()}


@dataclass
class RocketState:
    """
    Complete vehicle state for one episode.

    Angles are in radians with the heading given by (cos(angle), sin(angle)).
    """
    position: np.ndarray = field(default_factory=lambda: np.zeros(2))
    velocity: np.ndarray = field(default_factory=lambda: np.zeros(2))
    angle: float = 0.0
    angular_velocity: float = 0.0
    fuel: float = FUEL_MAX
    fuel_capacity: float = FUEL_MAX
    health: float = ROCKET_MAX_HEALTH
    is_destroyed: bool = False
    is_landed: bool = False
    landed_on: Optional[str] = None
    attached_to: Optional[str] = None
    infinite_fuel: bool = False
    thrusters: Dict[str, ThrusterState] = field(default_factory=_default_thrusters)

    INITIAL_STATE_KEYS = (
        'position', 'velocity', 'angle', 'angular_velocity', 'fuel',
        'health', 'is_landed', 'landed_on'
    )

    @classmethod
    def from_initial_state(cls, initial_state: Optional[Mapping[str, Any]] = None,
                           infinite_fuel: bool = False) -> 'RocketState':
        """
        Build a rocket from an initial-state mapping.

        Raises:
            ValueError: If the mapping contains unknown keys.
        """
        initial_state = dict(initial_state or {})
        unknown = set(initial_state) - set(cls.INITIAL_STATE_KEYS)
        if unknown:
            raise ValueError(f"Unknown rocket initial state keys: {sorted(unknown)}")

        rocket = cls(infinite_fuel=infinite_fuel)
        if 'position' in initial_state:
            rocket.position = _as_vector(initial_state['position'])
        if 'velocity' in initial_state:
            rocket.velocity = _as_vector(initial_state['velocity'])
        rocket.angle = float(initial_state.get('angle', rocket.angle))
        rocket.angular_velocity = float(initial_state.get('angular_velocity', rocket.angular_velocity))
        rocket.fuel = float(initial_state.get('fuel', rocket.fuel))
        rocket.fuel_capacity = max(FUEL_MAX, rocket.fuel)
        rocket.health = float(initial_state.get('health', rocket.health))
        rocket.is_landed = bool(initial_state.get('is_landed', False))
        rocket.landed_on = initial_state.get('landed_on')
        return rocket

    @property
    def speed(self) -> float:
        return float(np.linalg.norm(self.velocity))

    @property
    def heading(self) -> np.ndarray:
        return np.array([math.cos(self.angle), math.sin(self.angle)])

    @property
    def has_fuel(self) -> bool:
        return self.infinite_fuel or self.fuel > 0

    def set_thruster_power(self, name: str, power: float):
        """Command a thruster; forced to zero when destroyed or out of fuel."""
        thruster = self.thrusters[name]
        if self.is_destroyed or not self.has_fuel:
            thruster.power = 0.0
            return
        thruster.power = min(thruster.max_power, max(0.0, float(power)))

    def cut_thrusters(self):
        for thruster in self.thrusters.values():
            thruster.power = 0.0

    def normalized_power_sum(self) -> float:
        return sum(thruster.power_ratio for thruster in self.thrusters.values())

    def consume_fuel(self, amount: float):
        if self.infinite_fuel or amount <= 0:
            return
        self.fuel = max(0.0, self.fuel - amount)
        if self.fuel <= 0:
            self.cut_thrusters()

    def apply_damage(self, amount: float) -> bool:
        """
        Reduce health.

        Returns:
            True if this call destroyed the rocket
        """
        if self.is_destroyed:
            return False
        self.health = max(0.0, self.health - amount)
        if self.health <= 0:
            self.is_destroyed = True
            self.cut_thrusters()
            return True
        return False

    def snapshot(self) -> Dict[str, Any]:
        return {
            'position': {'x': float(self.position[0]), 'y': float(self.position[1])},
            'velocity': {'x': float(self.velocity[0]), 'y': float(self.velocity[1])},
            'angle': self.angle,
            'angular_velocity': self.angular_velocity,
            'fuel': self.fuel,
            'health': self.health,
            'is_destroyed': self.is_destroyed,
            'is_landed': self.is_landed,
            'landed_on': self.landed_on
        }


def _as_vector(value) -> np.ndarray:
    if isinstance(value, Mapping):
        value = (value['x'], value['y'])
    return np.array([float(value[0]), float(value[1])], dtype=np.float64)
