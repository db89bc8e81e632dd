"""
Headless Rocket AI - Component Factory
======================================

Single place where environments and agents are wired together from the
training and environment configurations.

Author: AI Assistant
Date: August 2025
"""

import math
import logging
from typing import Dict, Any, Optional, NamedTuple

from .config import TrainingConfig, EnvironmentConfig
from .constants import (
    EARTH_NAME, EARTH_RADIUS, EARTH_MASS, MOON_NAME, MOON_RADIUS, MOON_MASS,
    MOON_DISTANCE, ROCKET_START_OFFSET, FUEL_MAX, NAVIGATE_START, NAVIGATE_TARGET,
    NAVIGATE_MIN_STEPS
)
from .dqn_agent import DQNAgent, AgentConfig, WeightStore
from .event_bus import EventBus
from .headless_env import HeadlessRocketEnv
from .physics_world import PhysicsWorld

logger = logging.getLogger(__name__)


class TrainingComponents(NamedTuple):
    env: HeadlessRocketEnv
    eval_env: HeadlessRocketEnv
    agent: DQNAgent


def default_celestial_bodies():
    return [
        {'name': EARTH_NAME, 'position': {'x': 0.0, 'y': 0.0}, 'radius': EARTH_RADIUS, 'mass': EARTH_MASS},
        {'name': MOON_NAME, 'position': {'x': MOON_DISTANCE, 'y': 0.0}, 'radius': MOON_RADIUS, 'mass': MOON_MASS},
    ]


def build_episode_options(objective: str, max_steps_per_episode: int) -> Dict[str, Any]:
    """
    Reset options for an objective.

    Navigate flies point to point in empty space with infinite fuel and a
    longer step cap. Every other objective starts landed on Earth, pointing
    away from its centre, with the Moon as the second body.
    """
    if objective == 'navigate':
        dx = NAVIGATE_TARGET[0] - NAVIGATE_START[0]
        dy = NAVIGATE_TARGET[1] - NAVIGATE_START[1]
        return {
            'objective': objective,
            'rocket_initial_state': {
                'position': {'x': NAVIGATE_START[0], 'y': NAVIGATE_START[1]},
                'velocity': {'x': 0.0, 'y': 0.0},
                'angle': math.atan2(dy, dx),
                'fuel': FUEL_MAX,
            },
            'celestial_bodies': [],
            'target_point': {'x': NAVIGATE_TARGET[0], 'y': NAVIGATE_TARGET[1]},
            'infinite_fuel': True,
            'max_steps_per_episode': max(max_steps_per_episode, NAVIGATE_MIN_STEPS),
        }

    return {
        'objective': objective,
        'rocket_initial_state': {
            'position': {'x': 0.0, 'y': EARTH_RADIUS + ROCKET_START_OFFSET},
            'velocity': {'x': 0.0, 'y': 0.0},
            'angle': math.pi / 2,
            'fuel': FUEL_MAX,
            'is_landed': True,
            'landed_on': EARTH_NAME,
        },
        'celestial_bodies': default_celestial_bodies(),
        'target_point': None,
        'infinite_fuel': False,
        'max_steps_per_episode': max_steps_per_episode,
    }


def create_environment(objective: str,
                       training_config: Optional[TrainingConfig] = None,
                       env_config: Optional[EnvironmentConfig] = None,
                       event_bus: Optional[EventBus] = None,
                       physics_world: Optional[PhysicsWorld] = None) -> HeadlessRocketEnv:
    training_config = training_config or TrainingConfig()
    options = build_episode_options(objective, training_config.max_steps_per_episode)
    return HeadlessRocketEnv(config=env_config, physics_world=physics_world,
                             event_bus=event_bus, episode_options=options)


def create_agent(training_config: Optional[TrainingConfig] = None, seed: Optional[int] = None) -> DQNAgent:
    training_config = training_config or TrainingConfig()
    agent_config = AgentConfig(
        learning_rate=training_config.learning_rate,
        gamma=training_config.gamma,
        epsilon=training_config.epsilon,
        epsilon_min=training_config.epsilon_min,
        epsilon_decay=training_config.epsilon_decay,
        batch_size=training_config.batch_size,
        replay_buffer_size=training_config.replay_buffer_size,
        update_frequency=training_config.update_frequency,
        target_sync_interval=training_config.target_sync_interval,
        device=training_config.device,
        seed=seed
    )
    return DQNAgent(agent_config, weight_store=WeightStore(training_config.checkpoint_dir))


def create_training_components(training_config: TrainingConfig,
                               env_config: Optional[EnvironmentConfig] = None,
                               event_bus: Optional[EventBus] = None,
                               physics_world: Optional[PhysicsWorld] = None,
                               seed: Optional[int] = None) -> TrainingComponents:
    """
    Build the training environment, a telemetry-free evaluation environment
    and the agent for the first configured objective.
    """
    objective = training_config.objectives[0]
    env = create_environment(objective, training_config, env_config, event_bus, physics_world)
    eval_env = create_environment(objective, training_config, env_config, None, physics_world)
    agent = create_agent(training_config, seed=seed)
    logger.info(f"Training components created for objective '{objective}'")
    return TrainingComponents(env=env, eval_env=eval_env, agent=agent)
