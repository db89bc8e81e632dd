"""
Headless Rocket AI - Simulation Constants
=========================================

Rocket, world and observation constants shared by the physics world,
the environment and the training presets. Values are tuned defaults from
the interactive simulator and are overridable through configuration.

Author: AI Assistant
Date: August 2025
"""

import math

# Rocket
ROCKET_MASS = 1500.0
ROCKET_MAX_HEALTH = 100.0
FUEL_MAX = 5000.0

THRUSTER_MAX_POWER = {
    'main': 1000.0,
    'rear': 200.0,
    'left': 20.0,
    'right': 20.0,
}

MAIN_THRUST = 5500.0
REAR_THRUST = 3000.0
LATERAL_THRUST = 100.0
THRUSTER_EFFECTIVENESS = {'main': 1.5, 'rear': 1.5, 'lateral': 3.0}
THRUST_MULTIPLIER = 10.0
LATERAL_LEVER_ARM = 15.0
ROCKET_WIDTH = 30.0
ROCKET_HEIGHT = 60.0

FUEL_CONSUMPTION = {'main': 0.2, 'rear': 0.2, 'lateral': 0.05}

# World
GRAVITATIONAL_CONSTANT = 0.0001
EARTH_NAME = 'Earth'
EARTH_RADIUS = 720.0
EARTH_MASS = 2e11
MOON_NAME = 'Moon'
MOON_RADIUS = 180.0
MOON_MASS = 1e10
MOON_DISTANCE = 2000.0
ROCKET_START_OFFSET = 50.0
LIFTOFF_SPEED = 20.0
MAX_SPEED = 10000.0

# Collisions
CRASH_SPEED_THRESHOLD = 10.0
CRASH_PROXIMITY_THRESHOLD = 50.0
STARTUP_GRACE_STEPS = 30
MIN_ANTICIPATION_SPEED = 1.0

# Observation normalisation
OBSERVATION_DIM = 10
POSITION_SCALE = 100000.0
VELOCITY_SCALE = 1000.0
ANGLE_SCALE = math.pi
ANGULAR_VELOCITY_SCALE = 10.0
DISTANCE_SCALE = 100000.0

# Navigation preset
NAVIGATE_START = (0.0, 0.0)
NAVIGATE_TARGET = (100000.0, 100000.0)
NAVIGATE_MIN_STEPS = 150000

DEFAULT_DT = 1.0 / 60.0
