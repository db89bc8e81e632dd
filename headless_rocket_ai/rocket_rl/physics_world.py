"""
Headless Rocket AI - Physics World
==================================

Interface boundary between the environment and the physics integrator,
plus a planar point-mass world used for headless training.

The environment only issues thruster commands (through ``RocketState``) and
reads back position, velocity, orientation, fuel, health and contact state.
Any integrator honouring ``PhysicsWorld.step`` can be injected.

Author: AI Assistant
Date: August 2025
"""

import math
import logging
from abc import ABC, abstractmethod
from typing import List, Optional

import numpy as np

from .constants import (
    GRAVITATIONAL_CONSTANT, ROCKET_MASS, ROCKET_MAX_HEALTH, ROCKET_WIDTH, ROCKET_HEIGHT,
    MAIN_THRUST, REAR_THRUST, LATERAL_THRUST, THRUSTER_EFFECTIVENESS, THRUST_MULTIPLIER,
    LATERAL_LEVER_ARM, FUEL_CONSUMPTION, CRASH_SPEED_THRESHOLD, LIFTOFF_SPEED, MAX_SPEED
)
from .rocket_model import RocketState, CelestialBody

logger = logging.getLogger(__name__)


class PhysicsWorld(ABC):
    """Abstract physics collaborator driven by the headless environment."""

    def reset(self, rocket: RocketState, bodies: List[CelestialBody]):
        """Called once per episode after the rocket and bodies are rebuilt."""
        pass

    @abstractmethod
    def step(self, rocket: RocketState, bodies: List[CelestialBody], dt: float):
        """Advance the rocket state by ``dt`` seconds using its thruster commands."""
        pass


class PlanarPhysicsWorld(PhysicsWorld):
    """
    Two-dimensional point-mass rocket dynamics.

    Implements:
    - Newtonian gravity from every reference body
    - Main and rear thrust along the rocket heading
    - Lateral thrusters as a torque about the centre of mass
    - Per-thruster fuel consumption
    - Surface contact resolved as a landing or a crash
    """

    def __init__(self,
                 gravitational_constant: float = GRAVITATIONAL_CONSTANT,
                 rocket_mass: float = ROCKET_MASS,
                 crash_speed_threshold: float = CRASH_SPEED_THRESHOLD,
                 thrust_multiplier: float = THRUST_MULTIPLIER):
        self.gravitational_constant = gravitational_constant
        self.rocket_mass = rocket_mass
        self.crash_speed_threshold = crash_speed_threshold
        self.thrust_multiplier = thrust_multiplier

        # Rectangular hitbox moment of inertia
        self.moment_of_inertia = rocket_mass * (ROCKET_WIDTH ** 2 + ROCKET_HEIGHT ** 2) / 12.0

    def step(self, rocket: RocketState, bodies: List[CelestialBody], dt: float):
        if rocket.is_destroyed:
            rocket.velocity[:] = 0.0
            rocket.angular_velocity = 0.0
            return

        thrusters = rocket.thrusters
        main_ratio = thrusters['main'].power_ratio
        rear_ratio = thrusters['rear'].power_ratio
        left_ratio = thrusters['left'].power_ratio
        right_ratio = thrusters['right'].power_ratio

        # Rotation is available on the pad and in flight
        angular_acceleration = self._angular_acceleration(left_ratio, right_ratio)
        rocket.angular_velocity += angular_acceleration * dt
        rocket.angle = _wrap_angle(rocket.angle + rocket.angular_velocity * dt)

        if rocket.is_landed:
            if main_ratio > 0 and rocket.has_fuel:
                self._lift_off(rocket, bodies)
            else:
                rocket.velocity[:] = 0.0
                self._consume_fuel(rocket, main_ratio, rear_ratio, left_ratio, right_ratio)
                return

        acceleration = self._gravity(rocket.position, bodies)
        if rocket.has_fuel:
            heading = rocket.heading
            main_force = MAIN_THRUST * THRUSTER_EFFECTIVENESS['main'] * self.thrust_multiplier * main_ratio
            rear_force = REAR_THRUST * THRUSTER_EFFECTIVENESS['rear'] * self.thrust_multiplier * rear_ratio
            acceleration = acceleration + heading * (main_force - rear_force) / self.rocket_mass

        # Semi-implicit Euler
        rocket.velocity += acceleration * dt
        speed = np.linalg.norm(rocket.velocity)
        if speed > MAX_SPEED:
            rocket.velocity *= MAX_SPEED / speed
        rocket.position += rocket.velocity * dt

        self._consume_fuel(rocket, main_ratio, rear_ratio, left_ratio, right_ratio)
        self._resolve_contacts(rocket, bodies)

    def _angular_acceleration(self, left_ratio: float, right_ratio: float) -> float:
        if not left_ratio and not right_ratio:
            return 0.0
        lateral_force = LATERAL_THRUST * THRUSTER_EFFECTIVENESS['lateral'] * self.thrust_multiplier / 2.0
        torque = (left_ratio - right_ratio) * lateral_force * LATERAL_LEVER_ARM
        return torque / self.moment_of_inertia

    def _gravity(self, position: np.ndarray, bodies: List[CelestialBody]) -> np.ndarray:
        acceleration = np.zeros(2)
        for body in bodies:
            offset = np.asarray(body.position, dtype=np.float64) - position
            distance_sq = float(offset @ offset)
            if distance_sq <= 0:
                continue
            distance = math.sqrt(distance_sq)
            acceleration += offset / distance * self.gravitational_constant * body.mass / distance_sq
        return acceleration

    def _consume_fuel(self, rocket: RocketState, main_ratio: float, rear_ratio: float,
                      left_ratio: float, right_ratio: float):
        consumption = (FUEL_CONSUMPTION['main'] * main_ratio +
                       FUEL_CONSUMPTION['rear'] * rear_ratio +
                       FUEL_CONSUMPTION['lateral'] * (left_ratio + right_ratio))
        rocket.consume_fuel(consumption)

    def _lift_off(self, rocket: RocketState, bodies: List[CelestialBody]):
        body = _find_body(bodies, rocket.landed_on)
        if body is not None and body.distance_to(rocket.position) > 0:
            outward = (rocket.position - np.asarray(body.position)) / body.distance_to(rocket.position)
        else:
            outward = rocket.heading
        logger.debug(f"Lift-off from {rocket.landed_on or 'unknown surface'}")
        rocket.is_landed = False
        rocket.landed_on = None
        rocket.velocity = outward * LIFTOFF_SPEED

    def _resolve_contacts(self, rocket: RocketState, bodies: List[CelestialBody]):
        for body in bodies:
            distance = body.distance_to(rocket.position)
            if distance > body.radius:
                continue

            impact_speed = rocket.speed
            if distance > 0:
                normal = (rocket.position - np.asarray(body.position)) / distance
                rocket.position = np.asarray(body.position) + normal * body.radius

            if impact_speed >= self.crash_speed_threshold:
                logger.debug(f"Crash on {body.name} at {impact_speed:.1f} m/s")
                rocket.apply_damage(ROCKET_MAX_HEALTH + 1)
                rocket.landed_on = body.name
                rocket.attached_to = body.name
            else:
                rocket.is_landed = True
                rocket.landed_on = body.name
            rocket.velocity[:] = 0.0
            rocket.angular_velocity = 0.0
            return


def _find_body(bodies: List[CelestialBody], name: Optional[str]) -> Optional[CelestialBody]:
    for body in bodies:
        if body.name == name:
            return body
    return None


def _wrap_angle(angle: float) -> float:
    """Normalize an angle to [-pi, pi)."""
    return (angle + math.pi) % (2 * math.pi) - math.pi
