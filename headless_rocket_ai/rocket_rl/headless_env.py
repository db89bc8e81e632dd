"""
Headless Rocket AI - Simulated Environment
==========================================

Gymnasium environment wrapping the rocket model, the reference bodies and
the mission objective behind the standard ``reset`` / ``step`` contract.
No rendering is performed; telemetry is published on an optional event bus.

Supported objectives: navigate, orbit, land, crash_moon, explore.

Author: AI Assistant
Date: August 2025
"""

import math
import logging
from enum import IntEnum
from typing import Dict, List, Tuple, Optional, Any, Mapping

import numpy as np
import gymnasium as gym
from gymnasium import spaces

from .config import EnvironmentConfig, OBJECTIVES
from .constants import ROCKET_MAX_HEALTH
from .event_bus import EventBus, EventType
from .observation import build_observation, select_reference, OBSERVATION_LOW, OBSERVATION_HIGH
from .physics_world import PhysicsWorld, PlanarPhysicsWorld
from .reward_shaping import NavigationShaper
from .rocket_model import RocketState, CelestialBody

logger = logging.getLogger(__name__)

EPISODE_ALREADY_ENDED = 'Episode already ended'

EPISODE_OPTION_KEYS = (
    'objective', 'rocket_initial_state', 'celestial_bodies', 'target_point',
    'infinite_fuel', 'max_steps_per_episode'
)


class RocketAction(IntEnum):
    """Discrete control actions."""
    THRUST_FORWARD = 0
    THRUST_BACKWARD = 1
    ROTATE_LEFT = 2
    ROTATE_RIGHT = 3
    NO_ACTION = 4


# Power ratio per thruster for each action; unlisted thrusters are idle
ACTION_COMMANDS = {
    RocketAction.THRUST_FORWARD: {'main': 1.0},
    RocketAction.THRUST_BACKWARD: {'rear': 1.0},
    RocketAction.ROTATE_LEFT: {'left': 1.0},
    RocketAction.ROTATE_RIGHT: {'right': 1.0},
    RocketAction.NO_ACTION: {},
}


class HeadlessRocketEnv(gym.Env):
    """
    Headless rocket mission environment.

    ``reset`` accepts per-episode options overriding the defaults given at
    construction:
        objective, rocket_initial_state, celestial_bodies, target_point,
        infinite_fuel, max_steps_per_episode
    """

    metadata = {'render_modes': []}

    def __init__(self,
                 config: Optional[EnvironmentConfig] = None,
                 physics_world: Optional[PhysicsWorld] = None,
                 event_bus: Optional[EventBus] = None,
                 episode_options: Optional[Mapping[str, Any]] = None):
        super().__init__()

        self.config = config or EnvironmentConfig()
        self.physics = physics_world or PlanarPhysicsWorld(
            crash_speed_threshold=self.config.crash_speed_threshold
        )
        self.event_bus = event_bus
        self.default_options = _validate_options(episode_options or {})

        self.observation_space = spaces.Box(low=OBSERVATION_LOW, high=OBSERVATION_HIGH, dtype=np.float32)
        self.action_space = spaces.Discrete(len(RocketAction))

        self.navigation = NavigationShaper(self.config.rewards.navigation)
        self._initialize_episode(self.default_options)

        logger.debug("Headless rocket environment initialized")

    # ------------------------------------------------------------------
    # Episode lifecycle
    # ------------------------------------------------------------------

    def reset(self, seed: Optional[int] = None, options: Optional[Mapping[str, Any]] = None):
        """Reset the rocket, the world and all per-episode mission state."""
        super().reset(seed=seed)

        episode_options = dict(self.default_options)
        episode_options.update(_validate_options(options or {}))
        self._initialize_episode(episode_options)

        observation = self.get_observation()
        self._last_observation = observation
        return observation, self._get_info()

    def _initialize_episode(self, options: Mapping[str, Any]):
        self.objective = options.get('objective', 'navigate')
        if self.objective not in OBJECTIVES:
            raise ValueError(f"Unknown objective '{self.objective}'")

        self.rocket = RocketState.from_initial_state(
            options.get('rocket_initial_state'),
            infinite_fuel=bool(options.get('infinite_fuel', False))
        )
        self.bodies: List[CelestialBody] = [
            CelestialBody.from_config(body) for body in options.get('celestial_bodies', [])
        ]
        target_point = options.get('target_point')
        self.target_point = None if target_point is None else np.asarray(_as_pair(target_point), dtype=np.float64)
        self.max_steps_per_episode = int(options.get('max_steps_per_episode',
                                                     self.config.max_steps_per_episode))

        self.navigation.reset(self.rocket.position.copy(), self.target_point)
        self.physics.reset(self.rocket, self.bodies)

        # Episode counters and mission bookkeeping
        self.current_step = 0
        self.total_reward = 0.0
        self.orbit_success_counter = 0
        self.visited_bodies = set()
        self._new_body_visited = False
        self._mission_rewarded = False
        self._grace_steps = 0
        self._commanded_power = 0.0
        self._done = False
        self._status: Optional[str] = None
        self._last_observation = self.get_observation()

    def step(self, action, dt: Optional[float] = None):
        """
        Advance the simulation by one control step.

        Args:
            action: RocketAction index
            dt: Time step in seconds (defaults to the configured dt)

        Returns:
            observation, reward, terminated, truncated, info
        """
        if self._done:
            info = self._get_info()
            info['status'] = EPISODE_ALREADY_ENDED
            return self._last_observation.copy(), 0.0, True, False, info

        dt = self.config.dt if dt is None else float(dt)

        self._apply_action(action)
        self.physics.step(self.rocket, self.bodies, dt)

        self.current_step += 1
        self._grace_steps += 1

        imminent_body = self._check_imminent_crash()
        if imminent_body is not None:
            logger.debug(f"Imminent crash on {imminent_body.name} at step {self.current_step}")
            self.rocket.apply_damage(ROCKET_MAX_HEALTH + 1)
            self.rocket.attached_to = imminent_body.name

        self._update_mission_progress()
        components = self._calculate_reward()

        terminated, truncated, status = self._check_termination()
        if truncated and self.objective == 'navigate' and not self._mission_success():
            components['timeout'] = self.config.rewards.navigation.timeout_penalty

        reward = float(sum(components.values()))
        self.total_reward += reward

        observation = self.get_observation()
        self._last_observation = observation
        self._emit_visualization_data()

        info = self._get_info()
        info['reward_components'] = components
        if terminated or truncated:
            self._done = True
            self._status = status
            info['status'] = status
            logger.debug(f"Episode ended: {status} after {self.current_step} steps, "
                         f"reward {self.total_reward:.2f}")

        return observation, reward, terminated, truncated, info

    def is_done(self) -> bool:
        return self._done

    def close(self):
        """Release the telemetry channel."""
        self.event_bus = None

    # ------------------------------------------------------------------
    # Observation
    # ------------------------------------------------------------------

    def get_observation(self) -> np.ndarray:
        rocket = self.rocket
        reference = select_reference(rocket.position, self.target_point, self.bodies)
        if rocket.infinite_fuel or rocket.fuel_capacity <= 0:
            fuel_fraction = 1.0
        else:
            fuel_fraction = min(1.0, max(0.0, rocket.fuel / rocket.fuel_capacity))

        snapshot = {
            'x': rocket.position[0],
            'y': rocket.position[1],
            'vx': rocket.velocity[0],
            'vy': rocket.velocity[1],
            'angle': rocket.angle,
            'angular_velocity': rocket.angular_velocity,
            'reference_x': reference[0],
            'reference_y': reference[1],
            'fuel_fraction': fuel_fraction,
            'health_fraction': min(1.0, max(0.0, rocket.health / ROCKET_MAX_HEALTH)),
        }
        return build_observation(snapshot)

    # ------------------------------------------------------------------
    # Control
    # ------------------------------------------------------------------

    def _apply_action(self, action):
        action = RocketAction(int(action))
        commands = ACTION_COMMANDS[action]
        for name, thruster in self.rocket.thrusters.items():
            self.rocket.set_thruster_power(name, commands.get(name, 0.0) * thruster.max_power)
        self._commanded_power = self.rocket.normalized_power_sum()

    # ------------------------------------------------------------------
    # Mission bookkeeping
    # ------------------------------------------------------------------

    def find_body(self, name: str) -> Optional[CelestialBody]:
        for body in self.bodies:
            if body.name == name:
                return body
        return None

    def distance_to_target(self) -> Optional[float]:
        if self.target_point is None:
            return None
        return float(np.linalg.norm(self.rocket.position - self.target_point))

    def _update_mission_progress(self):
        """Advance the orbit stability counter and the visited-body set once per step."""
        rocket = self.rocket
        orbit = self.config.rewards.orbit

        home = self.find_body(self.config.home_body)
        if home is not None and not rocket.is_destroyed:
            altitude = home.altitude_of(rocket.position)
            if orbit.altitude_in_band(altitude) and orbit.speed_in_band(rocket.speed):
                self.orbit_success_counter += 1
            else:
                self.orbit_success_counter = 0
        else:
            self.orbit_success_counter = 0

        self._new_body_visited = False
        if rocket.is_landed and rocket.landed_on:
            if rocket.landed_on not in self.visited_bodies:
                self._new_body_visited = True
                self.visited_bodies.add(rocket.landed_on)

    def _check_imminent_crash(self) -> Optional[CelestialBody]:
        """
        Detect a closing trajectory just above a body surface.

        Returns:
            The body about to be hit, or None
        """
        rocket = self.rocket
        config = self.config
        if self.objective == 'navigate' or rocket.is_destroyed or rocket.is_landed:
            return None
        if self._grace_steps < config.startup_grace_steps:
            return None

        speed = rocket.speed
        if not math.isfinite(speed) or speed < config.min_anticipation_speed:
            return None

        for body in self.bodies:
            if body.radius <= 0:
                continue
            distance = body.distance_to(rocket.position)
            if not math.isfinite(distance) or distance <= 0:
                continue
            altitude = distance - body.radius
            if 0 < altitude < config.crash_proximity_threshold:
                direction = (rocket.position - np.asarray(body.position)) / distance
                radial_velocity = float(rocket.velocity @ direction)
                if radial_velocity < 0 and speed > config.crash_speed_threshold:
                    return body
        return None

    def _crashed_on_target(self) -> bool:
        target = self.config.target_body
        return self.rocket.landed_on == target or self.rocket.attached_to == target

    def _mission_success(self) -> bool:
        rocket = self.rocket
        rewards = self.config.rewards

        if self.objective == 'navigate':
            distance = self.distance_to_target()
            return distance is not None and distance < rewards.navigation.success_distance

        if self.objective == 'orbit':
            return self.orbit_success_counter >= rewards.orbit.stability_steps

        if self.objective == 'land':
            return (rocket.is_landed and rocket.landed_on == self.config.target_body
                    and rocket.speed < rewards.max_landing_speed)

        if self.objective == 'crash_moon':
            target = self.find_body(self.config.target_body)
            if not rocket.is_destroyed or target is None or not self._crashed_on_target():
                return False
            return target.altitude_of(rocket.position) < rewards.crash_success_altitude

        if self.objective == 'explore':
            return len(self.visited_bodies) >= rewards.explore_required_bodies

        return False

    def is_mission_successful(self) -> bool:
        return self._mission_success()

    # ------------------------------------------------------------------
    # Reward
    # ------------------------------------------------------------------

    def _calculate_reward(self) -> Dict[str, float]:
        """Additive reward components for the step just simulated."""
        rewards = self.config.rewards
        components = {'step': rewards.step_penalty}

        if not self.rocket.infinite_fuel:
            components['fuel'] = -self._commanded_power * rewards.fuel_penalty_factor

        if self.rocket.is_destroyed:
            if not (self.objective == 'crash_moon' and self._crashed_on_target()):
                components['crash'] = rewards.crash_penalty

        objective_reward = {
            'orbit': self._orbit_reward,
            'land': self._landing_reward,
            'crash_moon': self._crash_moon_reward,
            'navigate': self._navigate_reward,
            'explore': self._explore_reward,
        }[self.objective]
        components.update(objective_reward())
        return components

    def _success_bonus(self, bonus: float) -> Dict[str, float]:
        if self._mission_rewarded or not self._mission_success():
            return {}
        self._mission_rewarded = True
        return {'success': bonus}

    def _orbit_reward(self) -> Dict[str, float]:
        orbit = self.config.rewards.orbit
        home = self.find_body(self.config.home_body)
        if home is None:
            return {}

        reward = 0.0
        if orbit.altitude_in_band(home.altitude_of(self.rocket.position)):
            reward += orbit.good_reward
            if orbit.speed_in_band(self.rocket.speed):
                reward += orbit.perfect_reward

        components = {'orbit': reward}
        components.update(self._success_bonus(orbit.success_reward))
        return components

    def _approach_reward(self, approach_config) -> Dict[str, float]:
        target = self.find_body(self.config.target_body)
        if target is None:
            return {}
        altitude = target.altitude_of(self.rocket.position)
        components = {'approach': approach_config.approach_reward(altitude)}
        components.update(self._success_bonus(approach_config.success_reward))
        return components

    def _landing_reward(self) -> Dict[str, float]:
        return self._approach_reward(self.config.rewards.landing)

    def _crash_moon_reward(self) -> Dict[str, float]:
        return self._approach_reward(self.config.rewards.crash)

    def _navigate_reward(self) -> Dict[str, float]:
        rocket = self.rocket
        components = self.navigation.compute(rocket.position, rocket.velocity, rocket.angle)
        components.update(self._success_bonus(self.config.rewards.navigation.success_reward))
        return components

    def _explore_reward(self) -> Dict[str, float]:
        rewards = self.config.rewards
        components = {}
        speed = self.rocket.speed
        if rewards.explore_min_speed < speed < rewards.explore_max_speed:
            components['motion'] = rewards.explore_motion_reward
        if self._new_body_visited:
            components['new_body'] = rewards.explore_new_body_reward
        components.update(self._success_bonus(rewards.explore_success_reward))
        return components

    # ------------------------------------------------------------------
    # Termination
    # ------------------------------------------------------------------

    def _check_termination(self) -> Tuple[bool, bool, Optional[str]]:
        rocket = self.rocket
        success = self._mission_success()
        out_of_fuel = not rocket.infinite_fuel and rocket.fuel <= 0

        if rocket.is_destroyed and not (success and self.objective == 'crash_moon'):
            return True, False, 'crashed'
        if out_of_fuel:
            return True, False, 'out_of_fuel'
        if success:
            return True, False, 'mission_success'
        if self.current_step >= self.max_steps_per_episode:
            return False, True, 'max_steps_reached'
        return False, False, None

    # ------------------------------------------------------------------
    # Telemetry
    # ------------------------------------------------------------------

    def _get_info(self) -> Dict[str, Any]:
        rocket = self.rocket
        return {
            'current_step': self.current_step,
            'total_reward': self.total_reward,
            'objective': self.objective,
            'fuel': rocket.fuel,
            'health': rocket.health,
            'speed': rocket.speed,
            'is_landed': rocket.is_landed,
            'landed_on': rocket.landed_on,
            'is_destroyed': rocket.is_destroyed,
            'distance_to_target': self.distance_to_target(),
            'orbit_success_counter': self.orbit_success_counter,
            'visited_bodies': sorted(self.visited_bodies),
            'mission_success': self._mission_success() if self.current_step else False,
        }

    def _emit_visualization_data(self):
        if self.event_bus is None or self.current_step % self.config.telemetry_interval != 0:
            return

        payload = {
            'step': self.current_step,
            'objective': self.objective,
            'rocket': self.rocket.snapshot(),
            'celestial_bodies': [body.snapshot() for body in self.bodies],
            'reward': self.total_reward,
        }
        if self.target_point is not None:
            payload['target_point'] = {'x': float(self.target_point[0]), 'y': float(self.target_point[1])}
        self.event_bus.emit(EventType.TRAINING_STEP, payload)


def _validate_options(options: Mapping[str, Any]) -> Dict[str, Any]:
    unknown = set(options) - set(EPISODE_OPTION_KEYS)
    if unknown:
        raise ValueError(f"Unknown episode options: {sorted(unknown)}")
    return dict(options)


def _as_pair(value) -> Tuple[float, float]:
    if isinstance(value, Mapping):
        return float(value['x']), float(value['y'])
    return float(value[0]), float(value[1])
