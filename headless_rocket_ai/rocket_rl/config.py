"""
Headless Rocket AI - Configuration
==================================

Dataclass configuration for training runs and the headless environment,
validated at construction and loadable from YAML.

Author: AI Assistant
Date: August 2025
"""

import logging
from dataclasses import dataclass, field, fields, asdict, replace
from typing import Dict, List, Any, Optional, Mapping

import yaml

from .constants import (
    DEFAULT_DT, CRASH_SPEED_THRESHOLD, CRASH_PROXIMITY_THRESHOLD,
    STARTUP_GRACE_STEPS, MIN_ANTICIPATION_SPEED, EARTH_NAME, MOON_NAME
)
from .reward_shaping import RewardConfig

logger = logging.getLogger(__name__)

OBJECTIVES = ('navigate', 'orbit', 'land', 'crash_moon', 'explore')


class ConfigurationError(ValueError):
    """Raised for invalid or unknown configuration values."""
    pass


@dataclass
class TrainingConfig:
    """Hyperparameters and schedule of a training run."""
    max_episodes: int = 1000
    max_steps_per_episode: int = 2000
    target_success_rate: float = 0.8
    evaluation_interval: int = 100
    evaluation_episodes: int = 10
    checkpoint_interval: int = 500
    patience: int = 200
    learning_rate: float = 0.001
    epsilon: float = 1.0
    epsilon_min: float = 0.1
    epsilon_decay: float = 0.98
    gamma: float = 0.99
    batch_size: int = 64
    replay_buffer_size: int = 50000
    update_frequency: int = 4
    target_sync_interval: int = 100
    log_interval: int = 50
    yield_interval: int = 50
    objectives: List[str] = field(default_factory=lambda: ['orbit', 'land', 'explore'])
    checkpoint_slot: str = 'rocket-ai-model'
    checkpoint_dir: str = 'results/models'
    device: str = 'cpu'

    def __post_init__(self):
        positive = ('max_episodes', 'max_steps_per_episode', 'evaluation_interval',
                    'evaluation_episodes', 'checkpoint_interval', 'batch_size',
                    'replay_buffer_size', 'update_frequency', 'target_sync_interval',
                    'log_interval', 'yield_interval')
        for name in positive:
            if int(getattr(self, name)) < 1:
                raise ConfigurationError(f"{name} must be >= 1, got {getattr(self, name)}")

        if self.patience < 0:
            raise ConfigurationError("patience must be non-negative")
        if not 0.0 < self.epsilon_decay <= 1.0:
            raise ConfigurationError("epsilon_decay must be in (0, 1]")
        if not 0.0 <= self.epsilon_min <= self.epsilon <= 1.0:
            raise ConfigurationError("expected 0 <= epsilon_min <= epsilon <= 1")
        if not 0.0 <= self.gamma <= 1.0:
            raise ConfigurationError("gamma must be in [0, 1]")
        if not 0.0 <= self.target_success_rate <= 1.0:
            raise ConfigurationError("target_success_rate must be in [0, 1]")
        if self.learning_rate <= 0:
            raise ConfigurationError("learning_rate must be positive")
        if self.batch_size > self.replay_buffer_size:
            raise ConfigurationError("batch_size cannot exceed replay_buffer_size")

        self.objectives = list(self.objectives)
        if not self.objectives:
            raise ConfigurationError("at least one objective is required")
        unknown = [objective for objective in self.objectives if objective not in OBJECTIVES]
        if unknown:
            raise ConfigurationError(f"Unknown objectives {unknown}; expected one of {OBJECTIVES}")

    @classmethod
    def from_dict(cls, data: Optional[Mapping[str, Any]]) -> 'TrainingConfig':
        data = dict(data or {})
        _reject_unknown_keys(cls, data)
        return cls(**data)

    def merged(self, overrides: Optional[Mapping[str, Any]]) -> 'TrainingConfig':
        """Return a new config with ``overrides`` applied over this one."""
        overrides = dict(overrides or {})
        _reject_unknown_keys(type(self), overrides)
        return replace(self, **overrides)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class EnvironmentConfig:
    """Simulation settings of the headless environment."""
    dt: float = DEFAULT_DT
    max_steps_per_episode: int = 2000
    crash_speed_threshold: float = CRASH_SPEED_THRESHOLD
    crash_proximity_threshold: float = CRASH_PROXIMITY_THRESHOLD
    startup_grace_steps: int = STARTUP_GRACE_STEPS
    min_anticipation_speed: float = MIN_ANTICIPATION_SPEED
    home_body: str = EARTH_NAME
    target_body: str = MOON_NAME
    telemetry_interval: int = 2
    rewards: RewardConfig = field(default_factory=RewardConfig)

    def __post_init__(self):
        if self.dt <= 0:
            raise ConfigurationError("dt must be positive")
        if self.max_steps_per_episode < 1:
            raise ConfigurationError("max_steps_per_episode must be >= 1")
        if self.telemetry_interval < 1:
            raise ConfigurationError("telemetry_interval must be >= 1")

    @classmethod
    def from_dict(cls, data: Optional[Mapping[str, Any]]) -> 'EnvironmentConfig':
        data = dict(data or {})
        _reject_unknown_keys(cls, data)
        if 'rewards' in data and not isinstance(data['rewards'], RewardConfig):
            try:
                data['rewards'] = RewardConfig.from_dict(data['rewards'])
            except TypeError as e:
                raise ConfigurationError(f"Invalid reward configuration: {e}") from e
        return cls(**data)


def _reject_unknown_keys(config_cls, data: Mapping[str, Any]):
    known = {f.name for f in fields(config_cls)}
    unknown = set(data) - known
    if unknown:
        raise ConfigurationError(f"Unknown {config_cls.__name__} keys: {sorted(unknown)}")


def _load_yaml(config_path: str) -> Dict[str, Any]:
    try:
        with open(config_path, 'r') as f:
            config = yaml.safe_load(f) or {}
        logger.info(f"Configuration loaded from {config_path}")
        return config
    except Exception as e:
        logger.error(f"Failed to load configuration: {e}")
        raise


def load_training_config(config_path: str) -> TrainingConfig:
    """Load the ``training_params`` section of a YAML file."""
    config = _load_yaml(config_path)
    return TrainingConfig.from_dict(config.get('training_params', config))


def load_environment_config(config_path: str) -> EnvironmentConfig:
    """Load the ``environment`` section of a YAML file."""
    config = _load_yaml(config_path)
    return EnvironmentConfig.from_dict(config.get('environment', config))
