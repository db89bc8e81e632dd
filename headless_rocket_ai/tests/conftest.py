"""Pytest configuration and shared fixtures."""
import sys
from pathlib import Path

import pytest
import numpy as np
import torch

# Add project root to path
PROJECT_ROOT = Path(__file__).parent.parent
sys.path.insert(0, str(PROJECT_ROOT))

from rocket_rl.config import TrainingConfig, EnvironmentConfig
from rocket_rl.physics_world import PhysicsWorld


class ConstantVelocityWorld(PhysicsWorld):
    """Moves the rocket along its current velocity; no forces, no contacts."""

    def step(self, rocket, bodies, dt):
        rocket.position = rocket.position + rocket.velocity * dt


class FrozenWorld(PhysicsWorld):
    """Leaves the rocket untouched."""

    def step(self, rocket, bodies, dt):
        pass


@pytest.fixture(scope="session")
def project_root():
    """Return the project root directory."""
    return PROJECT_ROOT


@pytest.fixture(scope="function")
def seed_rng():
    """Seed random number generators for reproducibility."""
    np.random.seed(42)
    torch.manual_seed(42)


@pytest.fixture(scope="function")
def env_config():
    """Default environment config."""
    return EnvironmentConfig()


@pytest.fixture(scope="function")
def constant_velocity_world():
    return ConstantVelocityWorld()


@pytest.fixture(scope="function")
def frozen_world():
    return FrozenWorld()


@pytest.fixture(scope="function")
def small_training_config(tmp_path):
    """Tiny training run that finishes in a few seconds."""
    return TrainingConfig(
        max_episodes=4,
        max_steps_per_episode=30,
        evaluation_interval=2,
        evaluation_episodes=2,
        checkpoint_interval=2,
        batch_size=8,
        replay_buffer_size=200,
        update_frequency=2,
        target_sync_interval=10,
        yield_interval=5,
        log_interval=1,
        objectives=['orbit'],
        checkpoint_dir=str(tmp_path / "models"),
    )


@pytest.fixture(scope="function")
def agent_config():
    """Minimal DQN agent config for testing."""
    from rocket_rl.dqn_agent import AgentConfig
    return AgentConfig(
        batch_size=8,
        replay_buffer_size=64,
        epsilon=1.0,
        epsilon_min=0.1,
        epsilon_decay=0.9,
        seed=7,
    )
