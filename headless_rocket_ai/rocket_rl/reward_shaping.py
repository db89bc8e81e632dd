"""
Headless Rocket AI - Reward Shaping
===================================

Objective-specific reward configuration and the point-to-point navigation
shaper. Constants are empirically tuned defaults and are exposed as
configuration rather than derived values.

Navigation reward components:
1. Delta distance: progress since the previous step, normalized by the
   initial distance
2. Heading alignment: dot product between heading and direction to target
3. Velocity: Gaussian around a target speed with a closing-speed bonus
4. Potential-based shaping: gamma * phi(s') - phi(s), phi = -d / d0
5. Zone bonuses: one-time rewards when crossing distance-ratio thresholds

Author: AI Assistant
Date: August 2025
"""

import math
from dataclasses import dataclass, field, asdict
from typing import Dict, List, Optional, Sequence, Any, Mapping

import numpy as np


@dataclass
class NavigationRewardConfig:
    """Weights and thresholds for the navigate objective."""
    distance_delta: float = 10.0
    heading_alignment: float = 2.0
    velocity_optimal: float = 1.0
    potential: float = 0.5
    zone: float = 1.0
    velocity_target: float = 30.0
    velocity_sigma: float = 15.0
    velocity_min: Optional[float] = None
    velocity_max: Optional[float] = None
    zone_thresholds: List[float] = field(default_factory=lambda: [0.8, 0.5, 0.2, 0.05])
    zone_rewards: List[float] = field(default_factory=lambda: [5.0, 10.0, 20.0, 50.0])
    potential_gamma: float = 0.99
    success_reward: float = 1000.0
    timeout_penalty: float = -50.0
    success_distance: float = 5000.0

    def __post_init__(self):
        if len(self.zone_thresholds) != len(self.zone_rewards):
            raise ValueError("zone_thresholds and zone_rewards must have the same length")
        if self.velocity_sigma <= 0:
            raise ValueError("velocity_sigma must be positive")


@dataclass
class OrbitRewardConfig:
    """Orbit band, stability requirement and rewards."""
    min_altitude: float = 100.0
    max_altitude: float = 1500.0
    min_orbital_speed: float = 100.0
    max_orbital_speed: float = 160.0
    stability_steps: int = 100
    good_reward: float = 0.5
    perfect_reward: float = 1.0
    success_reward: float = 100.0

    def altitude_in_band(self, altitude: float) -> bool:
        return self.min_altitude <= altitude <= self.max_altitude

    def speed_in_band(self, speed: float) -> bool:
        return self.min_orbital_speed <= speed <= self.max_orbital_speed


@dataclass
class ApproachRewardConfig:
    """Tiered proximity rewards for objectives aimed at a target body."""
    altitude_tiers: List[float]
    tier_rewards: List[float]
    success_reward: float

    def __post_init__(self):
        if len(self.altitude_tiers) != len(self.tier_rewards):
            raise ValueError("altitude_tiers and tier_rewards must have the same length")

    def approach_reward(self, altitude: float) -> float:
        reward = 0.0
        for tier, tier_reward in zip(self.altitude_tiers, self.tier_rewards):
            if altitude < tier:
                reward += tier_reward
        return reward


def default_landing_config() -> ApproachRewardConfig:
    return ApproachRewardConfig(altitude_tiers=[1000.0, 500.0, 100.0],
                                tier_rewards=[0.05, 0.1, 0.2],
                                success_reward=100.0)


def default_crash_config() -> ApproachRewardConfig:
    return ApproachRewardConfig(altitude_tiers=[50000.0, 10000.0, 1000.0],
                                tier_rewards=[0.1, 0.5, 1.0],
                                success_reward=200.0)


@dataclass
class RewardConfig:
    """All objective reward settings plus shared penalties."""
    step_penalty: float = -0.01
    fuel_penalty_factor: float = 0.005
    crash_penalty: float = -100.0
    max_landing_speed: float = 10.0
    crash_success_altitude: float = 100.0
    explore_min_speed: float = 5.0
    explore_max_speed: float = 100.0
    explore_motion_reward: float = 0.02
    explore_new_body_reward: float = 10.0
    explore_success_reward: float = 100.0
    explore_required_bodies: int = 2
    navigation: NavigationRewardConfig = field(default_factory=NavigationRewardConfig)
    orbit: OrbitRewardConfig = field(default_factory=OrbitRewardConfig)
    landing: ApproachRewardConfig = field(default_factory=default_landing_config)
    crash: ApproachRewardConfig = field(default_factory=default_crash_config)

    @classmethod
    def from_dict(cls, data: Optional[Mapping[str, Any]]) -> 'RewardConfig':
        data = dict(data or {})
        nested = {
            'navigation': NavigationRewardConfig,
            'orbit': OrbitRewardConfig,
            'landing': ApproachRewardConfig,
            'crash': ApproachRewardConfig,
        }
        kwargs = {}
        for key, value in data.items():
            if key in nested and isinstance(value, Mapping):
                base = asdict(getattr(cls(), key))
                base.update(value)
                kwargs[key] = nested[key](**base)
            else:
                kwargs[key] = value
        return cls(**kwargs)


class NavigationShaper:
    """
    Per-episode navigation reward state.

    Call ``reset`` at the start of each episode and ``compute`` once per step.
    """

    def __init__(self, config: NavigationRewardConfig):
        self.config = config
        self.reset(None, None)

    def reset(self, start: Optional[Sequence[float]], target: Optional[Sequence[float]]):
        self.target = None if target is None else np.asarray(target, dtype=np.float64)
        self.initial_distance = None
        if start is not None and self.target is not None:
            self.initial_distance = _norm(np.asarray(start, dtype=np.float64) - self.target)
        self.previous_distance = None
        self.previous_potential = None
        self.zones_reached = set()

    @property
    def active(self) -> bool:
        return (self.target is not None and self.initial_distance is not None
                and math.isfinite(self.initial_distance) and self.initial_distance > 0)

    def distance_to_target(self, position: np.ndarray) -> Optional[float]:
        if self.target is None:
            return None
        return _norm(position - self.target)

    def potential(self, distance: float) -> float:
        return -distance / self.initial_distance

    def compute(self, position: np.ndarray, velocity: np.ndarray, angle: float) -> Dict[str, float]:
        """
        Compute all navigation components for the current step.

        Returns:
            Mapping of component name to reward contribution
        """
        components = {
            'distance_delta': 0.0,
            'heading': 0.0,
            'velocity': 0.0,
            'potential': 0.0,
            'zone': 0.0
        }
        if not self.active:
            return components

        distance = self.distance_to_target(position)
        if distance is None or not math.isfinite(distance):
            return components

        components['distance_delta'] = self._delta_distance_reward(distance)
        components['heading'] = self._heading_reward(position, velocity, angle)
        components['velocity'] = self._velocity_reward(position, velocity)
        components['potential'] = self._potential_reward(distance)
        components['zone'] = self._zone_reward(distance)
        return components

    def _delta_distance_reward(self, distance: float) -> float:
        previous = self.previous_distance if self.previous_distance is not None else self.initial_distance
        self.previous_distance = distance
        return (previous - distance) / self.initial_distance * self.config.distance_delta

    def _direction_to_target(self, position: np.ndarray) -> Optional[np.ndarray]:
        offset = self.target - position
        distance = _norm(offset)
        if distance <= 0 or not math.isfinite(distance):
            return None
        return offset / distance

    def _heading_reward(self, position: np.ndarray, velocity: np.ndarray, angle: float) -> float:
        direction = self._direction_to_target(position)
        if direction is None:
            return 0.0
        heading = np.array([math.cos(angle), math.sin(angle)])
        reward = float(direction @ heading) * self.config.heading_alignment

        radial_velocity = float(velocity @ direction)
        if radial_velocity > 0:
            reward += (radial_velocity / 100.0) * 0.5
        return reward

    def _velocity_reward(self, position: np.ndarray, velocity: np.ndarray) -> float:
        config = self.config
        speed = _norm(velocity)
        diff = speed - config.velocity_target
        gaussian = math.exp(-(diff * diff) / (2 * config.velocity_sigma ** 2))
        reward = gaussian * config.velocity_optimal

        if config.velocity_min is not None and speed < config.velocity_min:
            reward -= 0.1 * (config.velocity_min - speed) / config.velocity_min
        elif config.velocity_max is not None and speed > config.velocity_max:
            reward -= 0.1 * (speed - config.velocity_max) / config.velocity_max

        direction = self._direction_to_target(position)
        if direction is not None:
            radial_velocity = float(velocity @ direction)
            if radial_velocity > 0:
                reward += (radial_velocity / config.velocity_target) * 0.2
        return reward

    def _potential_reward(self, distance: float) -> float:
        current = self.potential(distance)
        previous = self.previous_potential if self.previous_potential is not None else -1.0
        self.previous_potential = current
        return (self.config.potential_gamma * current - previous) * self.config.potential

    def _zone_reward(self, distance: float) -> float:
        ratio = distance / self.initial_distance
        reward = 0.0
        for index, (threshold, zone_reward) in enumerate(
                zip(self.config.zone_thresholds, self.config.zone_rewards)):
            if ratio <= threshold and index not in self.zones_reached:
                reward += zone_reward * self.config.zone
                self.zones_reached.add(index)
        return reward


def _norm(vector: np.ndarray) -> float:
    return float(np.linalg.norm(vector))
