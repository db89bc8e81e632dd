"""
Headless Rocket AI - Experience Replay Buffer
=============================================

Bounded FIFO experience replay for DQN training. Once full, each new
transition overwrites the oldest one.

Author: AI Assistant
Date: August 2025
"""

import logging
from dataclasses import dataclass
from typing import Dict, Any, List, Optional

import numpy as np

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Transition:
    """Single environment transition."""
    state: np.ndarray
    action: int
    reward: float
    next_state: np.ndarray
    done: bool


class ReplayBuffer:
    """
    Experience replay buffer for off-policy reinforcement learning.

    Features:
    - Circular storage with oldest-first eviction
    - Sampling without replacement
    - Batch arrays ready for tensor conversion
    """

    def __init__(self, capacity: int, state_dim: int):
        """
        Initialize replay buffer.

        Args:
            capacity: Maximum number of transitions to store
            state_dim: Dimension of the observation vector
        """
        if capacity < 1:
            raise ValueError(f"capacity must be >= 1, got {capacity}")

        self.capacity = capacity
        self.state_dim = state_dim
        self.position = 0
        self.size = 0

        # Preallocate memory
        self.states = np.zeros((capacity, state_dim), dtype=np.float32)
        self.actions = np.zeros(capacity, dtype=np.int64)
        self.rewards = np.zeros(capacity, dtype=np.float32)
        self.next_states = np.zeros((capacity, state_dim), dtype=np.float32)
        self.dones = np.zeros(capacity, dtype=np.bool_)

        logger.debug(f"Replay buffer initialized with capacity {capacity:,}")

    def add(self, transition: Transition):
        """Append a transition, evicting the oldest when full."""
        if self.capacity == 0:
            raise RuntimeError("Replay buffer storage has been released")
        self.states[self.position] = transition.state
        self.actions[self.position] = int(transition.action)
        self.rewards[self.position] = transition.reward
        self.next_states[self.position] = transition.next_state
        self.dones[self.position] = bool(transition.done)

        self.position = (self.position + 1) % self.capacity
        self.size = min(self.size + 1, self.capacity)

    def sample(self, batch_size: int, rng: Optional[np.random.Generator] = None) -> Dict[str, np.ndarray]:
        """
        Sample a batch of distinct transitions.

        Raises:
            ValueError: If fewer than ``batch_size`` transitions are stored
        """
        if self.size < batch_size:
            raise ValueError(f"Not enough experiences in buffer. Current size: {self.size}, "
                             f"requested batch size: {batch_size}")

        rng = rng if rng is not None else np.random.default_rng()
        indices = rng.choice(self.size, batch_size, replace=False)

        return {
            'state': self.states[indices],
            'action': self.actions[indices],
            'reward': self.rewards[indices],
            'next_state': self.next_states[indices],
            'done': self.dones[indices],
        }

    def can_sample(self, batch_size: int) -> bool:
        return self.size >= batch_size

    def __len__(self) -> int:
        return self.size

    def transitions(self) -> List[Transition]:
        """Stored transitions, oldest first."""
        start = self.position if self.size == self.capacity else 0
        order = [(start + offset) % self.capacity for offset in range(self.size)]
        return [
            Transition(
                state=self.states[i].copy(),
                action=int(self.actions[i]),
                reward=float(self.rewards[i]),
                next_state=self.next_states[i].copy(),
                done=bool(self.dones[i])
            )
            for i in order
        ]

    def clear(self):
        self.position = 0
        self.size = 0
        logger.debug("Replay buffer cleared")

    def release(self):
        """Clear and drop the preallocated storage. The buffer holds nothing afterwards."""
        self.clear()
        self.capacity = 0
        self.states = np.zeros((0, self.state_dim), dtype=np.float32)
        self.actions = np.zeros(0, dtype=np.int64)
        self.rewards = np.zeros(0, dtype=np.float32)
        self.next_states = np.zeros((0, self.state_dim), dtype=np.float32)
        self.dones = np.zeros(0, dtype=np.bool_)
        logger.debug("Replay buffer storage released")

    def get_statistics(self) -> Dict[str, Any]:
        if self.size == 0:
            return {"size": 0, "capacity": self.capacity, "utilization": 0.0}

        valid = slice(0, self.size)
        return {
            "size": self.size,
            "capacity": self.capacity,
            "utilization": self.size / self.capacity,
            "reward_mean": float(np.mean(self.rewards[valid])),
            "reward_std": float(np.std(self.rewards[valid])),
            "reward_min": float(np.min(self.rewards[valid])),
            "reward_max": float(np.max(self.rewards[valid])),
            "done_rate": float(np.mean(self.dones[valid]))
        }
