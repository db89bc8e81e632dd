"""
Headless Rocket AI - Observation Builder
========================================

Converts a rocket/world snapshot into the fixed 10-dimensional feature
vector consumed by the value network.

Feature layout:
    0-1  relative position to the reference point (x, y)
    2-3  relative velocity (x, y)
    4    orientation
    5    angular velocity
    6    distance to the reference point
    7    bearing to the reference point relative to the heading
    8    fuel fraction
    9    health fraction

Every feature is clamped to the bounds below. A missing field or a
non-finite input collapses the whole vector to zeros.

Author: AI Assistant
Date: August 2025
"""

import math
from typing import Mapping, Any, Optional, Sequence

import numpy as np

from .constants import (
    OBSERVATION_DIM, POSITION_SCALE, VELOCITY_SCALE, ANGLE_SCALE,
    ANGULAR_VELOCITY_SCALE, DISTANCE_SCALE
)

OBSERVATION_LOW = np.array([-5, -5, -2, -2, -1, -5, 0, -1, 0, 0], dtype=np.float32)
OBSERVATION_HIGH = np.array([5, 5, 2, 2, 1, 5, 10, 1, 1, 1], dtype=np.float32)

REQUIRED_FIELDS = (
    'x', 'y', 'vx', 'vy', 'angle', 'angular_velocity',
    'reference_x', 'reference_y', 'fuel_fraction', 'health_fraction'
)


def zero_observation() -> np.ndarray:
    return np.zeros(OBSERVATION_DIM, dtype=np.float32)


def build_observation(snapshot: Optional[Mapping[str, Any]]) -> np.ndarray:
    """
    Build a clamped observation vector from a flat snapshot.

    Args:
        snapshot: Mapping with the keys listed in ``REQUIRED_FIELDS`` and
            optional ``reference_vx`` / ``reference_vy``

    Returns:
        float32 vector of length 10, all zeros for invalid input
    """
    if not isinstance(snapshot, Mapping):
        return zero_observation()

    values = {}
    for name in REQUIRED_FIELDS:
        value = snapshot.get(name)
        if not _is_finite_number(value):
            return zero_observation()
        values[name] = float(value)

    reference_vx = snapshot.get('reference_vx', 0.0)
    reference_vy = snapshot.get('reference_vy', 0.0)
    if not (_is_finite_number(reference_vx) and _is_finite_number(reference_vy)):
        return zero_observation()

    dx = values['x'] - values['reference_x']
    dy = values['y'] - values['reference_y']
    distance = math.hypot(dx, dy)
    if not math.isfinite(distance):
        return zero_observation()

    # Bearing from heading to the reference point, in (-pi, pi]
    if distance > 0:
        bearing = wrap_angle(math.atan2(-dy, -dx) - values['angle'])
    else:
        bearing = 0.0

    features = np.array([
        dx / POSITION_SCALE,
        dy / POSITION_SCALE,
        (values['vx'] - float(reference_vx)) / VELOCITY_SCALE,
        (values['vy'] - float(reference_vy)) / VELOCITY_SCALE,
        wrap_angle(values['angle']) / ANGLE_SCALE,
        values['angular_velocity'] / ANGULAR_VELOCITY_SCALE,
        distance / DISTANCE_SCALE,
        bearing / ANGLE_SCALE,
        values['fuel_fraction'],
        values['health_fraction'],
    ], dtype=np.float64)

    if not np.all(np.isfinite(features)):
        return zero_observation()

    return np.clip(features, OBSERVATION_LOW, OBSERVATION_HIGH).astype(np.float32)


def select_reference(position: Sequence[float], target_point: Optional[Sequence[float]],
                     bodies: Sequence[Any]) -> Sequence[float]:
    """Target point when set, else the nearest body centre, else the origin."""
    if target_point is not None:
        return target_point
    if bodies:
        nearest = min(bodies, key=lambda body: body.altitude_of(position))
        return nearest.position
    return (0.0, 0.0)


def wrap_angle(angle: float) -> float:
    """Normalize an angle to (-pi, pi]."""
    wrapped = math.fmod(angle + math.pi, 2 * math.pi)
    if wrapped <= 0:
        wrapped += 2 * math.pi
    return wrapped - math.pi


def _is_finite_number(value: Any) -> bool:
    if isinstance(value, bool) or value is None:
        return False
    try:
        return math.isfinite(float(value))
    except (TypeError, ValueError):
        return False
