"""
Headless Rocket AI - Rocket RL Package
======================================

This package contains the headless rocket mission environment, the DQN
agent and the asynchronous training orchestrator.
"""

from .config import TrainingConfig, EnvironmentConfig, ConfigurationError, OBJECTIVES
from .dqn_agent import DQNAgent, AgentConfig, QNetwork, WeightStore, AgentDisposedError
from .event_bus import EventBus, EventType
from .factory import (
    TrainingComponents, build_episode_options, create_environment, create_agent,
    create_training_components
)
from .headless_env import HeadlessRocketEnv, RocketAction
from .orchestrator import TrainingOrchestrator, TrainingPhase, TrainingMetrics, TrainingState
from .physics_world import PhysicsWorld, PlanarPhysicsWorld
from .replay_buffer import ReplayBuffer, Transition
from .reward_shaping import RewardConfig, NavigationRewardConfig, NavigationShaper

__version__ = "1.0.0"
__author__ = "AI Assistant"

__all__ = [
    'TrainingConfig',
    'EnvironmentConfig',
    'ConfigurationError',
    'OBJECTIVES',
    'DQNAgent',
    'AgentConfig',
    'QNetwork',
    'WeightStore',
    'AgentDisposedError',
    'EventBus',
    'EventType',
    'TrainingComponents',
    'build_episode_options',
    'create_environment',
    'create_agent',
    'create_training_components',
    'HeadlessRocketEnv',
    'RocketAction',
    'TrainingOrchestrator',
    'TrainingPhase',
    'TrainingMetrics',
    'TrainingState',
    'PhysicsWorld',
    'PlanarPhysicsWorld',
    'ReplayBuffer',
    'Transition',
    'RewardConfig',
    'NavigationRewardConfig',
    'NavigationShaper',
]
