"""
Headless Rocket AI - DQN Agent
==============================

Deep Q-Network agent for discrete rocket control: an online value network,
a periodically hard-synced target network, epsilon-greedy exploration and a
bounded FIFO replay buffer.

Training passes are awaited by the orchestrator. A single in-flight guard
drops (rather than queues) training requests that arrive while a pass is
still running.

Author: AI Assistant
Date: August 2025
"""

import os
import copy
import time
import asyncio
import logging
from dataclasses import dataclass, field, asdict
from typing import Dict, List, Any, Optional

import numpy as np
import torch
import torch.nn as nn
import torch.nn.functional as F

from .constants import OBSERVATION_DIM
from .replay_buffer import ReplayBuffer, Transition

logger = logging.getLogger(__name__)

NUM_ACTIONS = 5


class AgentDisposedError(RuntimeError):
    """Raised when an agent is used after ``cleanup``."""

    def __init__(self, operation: str = 'operation'):
        super().__init__(f"Agent has been disposed; cannot run {operation}")


def is_disposed_error(error: BaseException) -> bool:
    """True for errors caused by racing a disposed agent."""
    return isinstance(error, AgentDisposedError) or 'disposed' in str(error).lower()


class QNetwork(nn.Module):
    """
    Action-value network.

    Architecture:
    - Input: Observation vector (10 dimensions)
    - Hidden layers: 128 -> 128 -> 64 neurons with ReLU activation and
      LayerNorm after the first two
    - Output: One Q-value per discrete action
    """

    def __init__(self, state_dim: int = OBSERVATION_DIM, action_dim: int = NUM_ACTIONS,
                 hidden_dims: Optional[List[int]] = None):
        super(QNetwork, self).__init__()

        self.state_dim = state_dim
        self.action_dim = action_dim
        self.hidden_dims = list(hidden_dims or [128, 128, 64])

        layers = []
        input_dim = state_dim
        for index, hidden_dim in enumerate(self.hidden_dims):
            layers.extend([
                nn.Linear(input_dim, hidden_dim),
                nn.ReLU(),
                nn.LayerNorm(hidden_dim) if index < len(self.hidden_dims) - 1 else nn.Identity(),
            ])
            input_dim = hidden_dim

        layers.append(nn.Linear(input_dim, action_dim))
        self.network = nn.Sequential(*layers)

        self.apply(self._init_weights)

    def _init_weights(self, module):
        """Initialize network weights using Xavier uniform initialization."""
        if isinstance(module, nn.Linear):
            nn.init.xavier_uniform_(module.weight)
            nn.init.zeros_(module.bias)

    def forward(self, state: torch.Tensor) -> torch.Tensor:
        if len(state.shape) == 1:
            state = state.unsqueeze(0)
        return self.network(state)

    def architecture(self) -> Dict[str, Any]:
        return {
            'state_dim': self.state_dim,
            'action_dim': self.action_dim,
            'hidden_dims': list(self.hidden_dims)
        }


@dataclass
class AgentConfig:
    """Learning hyperparameters of the DQN agent."""
    state_dim: int = OBSERVATION_DIM
    action_dim: int = NUM_ACTIONS
    hidden_dims: List[int] = field(default_factory=lambda: [128, 128, 64])
    learning_rate: float = 0.001
    gamma: float = 0.99
    epsilon: float = 1.0
    epsilon_min: float = 0.1
    epsilon_decay: float = 0.98
    batch_size: int = 64
    replay_buffer_size: int = 50000
    update_frequency: int = 4
    target_sync_interval: int = 100
    device: str = 'cpu'
    seed: Optional[int] = None


class WeightStore:
    """
    Named durable weight slots.

    Each slot is one ``torch.save`` file holding the network architecture and
    its parameters.
    """

    def __init__(self, directory: str):
        self.directory = directory

    def path_for(self, slot: str) -> str:
        return os.path.join(self.directory, f"{slot}.pth")

    def exists(self, slot: str) -> bool:
        return os.path.exists(self.path_for(slot))

    def save(self, slot: str, payload: Dict[str, Any]) -> str:
        os.makedirs(self.directory, exist_ok=True)
        path = self.path_for(slot)
        torch.save(payload, path)
        return path

    def load(self, slot: str, device: str = 'cpu') -> Optional[Dict[str, Any]]:
        path = self.path_for(slot)
        if not os.path.exists(path):
            return None
        return torch.load(path, map_location=device)


class DQNAgent:
    """
    Deep Q-Network agent.

    The online network is mutated only by ``train``; the target network only
    by ``sync_target``; the replay buffer only by ``observe``.
    """

    def __init__(self, config: Optional[AgentConfig] = None, weight_store: Optional[WeightStore] = None):
        self.config = config or AgentConfig()
        self.device = torch.device(self.config.device)
        self.weight_store = weight_store

        self.rng = np.random.default_rng(self.config.seed)
        if self.config.seed is not None:
            torch.manual_seed(self.config.seed)

        self.q_network = self._build_network()
        self.target_network = self._build_network()
        self.target_network.load_state_dict(self.q_network.state_dict())
        self.target_network.eval()

        self.optimizer = torch.optim.Adam(self.q_network.parameters(), lr=self.config.learning_rate)
        self.replay_buffer = ReplayBuffer(self.config.replay_buffer_size, self.config.state_dim)

        self.epsilon = self.config.epsilon
        self.is_disposed = False
        self._training_in_flight = False
        self.reset_concurrency_metrics()

        logger.info(f"DQN agent initialized on device: {self.device}")
        logger.info(f"Q-network parameters: {sum(p.numel() for p in self.q_network.parameters()):,}")

    def _build_network(self) -> QNetwork:
        return QNetwork(self.config.state_dim, self.config.action_dim,
                        self.config.hidden_dims).to(self.device)

    def _ensure_active(self, operation: str):
        if self.is_disposed:
            raise AgentDisposedError(operation)

    # ------------------------------------------------------------------
    # Acting
    # ------------------------------------------------------------------

    def act(self, observation: np.ndarray, explore: bool = True) -> int:
        """
        Epsilon-greedy action selection.

        Args:
            observation: Observation vector
            explore: When False, epsilon is treated as 0

        Returns:
            Discrete action index
        """
        self._ensure_active('act')

        if explore and self.rng.random() < self.epsilon:
            return int(self.rng.integers(self.config.action_dim))

        was_training = self.q_network.training
        self.q_network.eval()
        try:
            with torch.no_grad():
                state = torch.as_tensor(np.asarray(observation, dtype=np.float32), device=self.device)
                q_values = self.q_network(state)
                return int(torch.argmax(q_values[0]).item())
        finally:
            self.q_network.train(was_training)

    def observe(self, transition: Transition):
        """Store a transition; a terminal transition decays epsilon once."""
        self._ensure_active('observe')
        self.replay_buffer.add(transition)
        if transition.done:
            self.decay_epsilon()

    def decay_epsilon(self):
        self.epsilon = max(self.config.epsilon_min, self.epsilon * self.config.epsilon_decay)

    # ------------------------------------------------------------------
    # Learning
    # ------------------------------------------------------------------

    def can_train(self) -> bool:
        return not self.is_disposed and self.replay_buffer.can_sample(self.config.batch_size)

    async def train(self) -> Optional[float]:
        """
        Run one training pass on a uniformly sampled batch.

        Returns:
            The loss, or None when the pass was skipped
        """
        self.total_training_calls += 1

        if self.is_disposed or not self.replay_buffer.can_sample(self.config.batch_size):
            return None
        if self._training_in_flight:
            self.blocked_calls += 1
            return None

        self._training_in_flight = True
        start_time = time.perf_counter()
        try:
            batch = self.replay_buffer.sample(self.config.batch_size, self.rng)

            # Suspension point; requests arriving now are counted as blocked
            await asyncio.sleep(0)
            if self.is_disposed:
                return None

            loss = self._fit(batch)
            if loss is None:
                return None

            duration = time.perf_counter() - start_time
            self.successful_trainings += 1
            self.last_loss = loss
            self.last_training_time = time.time()
            self._total_training_duration += duration
            self.average_training_duration = self._total_training_duration / self.successful_trainings
            return loss
        finally:
            self._training_in_flight = False

    def _fit(self, batch: Dict[str, np.ndarray]) -> Optional[float]:
        states = batch['state']
        next_states = batch['next_state']
        expected = (len(batch['action']), self.config.state_dim)
        if states.shape != expected or next_states.shape != expected:
            logger.debug(f"Skipping training pass: batch shape {states.shape}, expected {expected}")
            return None

        targets = self.compute_targets(batch)

        self.q_network.train()
        state_tensor = torch.as_tensor(states, dtype=torch.float32, device=self.device)
        target_tensor = torch.as_tensor(targets, dtype=torch.float32, device=self.device)

        predictions = self.q_network(state_tensor)
        loss = F.mse_loss(predictions, target_tensor)

        self.optimizer.zero_grad()
        loss.backward()
        self.optimizer.step()

        return float(loss.item())

    def compute_targets(self, batch: Dict[str, np.ndarray]) -> np.ndarray:
        """
        Bellman targets for a batch.

        The row of each transition is the online network's prediction with
        only the taken action overwritten by ``r`` (terminal) or
        ``r + gamma * max_a Q_target(s', a)``.
        """
        with torch.no_grad():
            states = torch.as_tensor(batch['state'], dtype=torch.float32, device=self.device)
            next_states = torch.as_tensor(batch['next_state'], dtype=torch.float32, device=self.device)
            targets = self.q_network(states).cpu().numpy().copy()
            next_max = self.target_network(next_states).max(dim=1).values.cpu().numpy()

        rewards = np.asarray(batch['reward'], dtype=np.float32)
        dones = np.asarray(batch['done'], dtype=np.bool_)
        actions = np.asarray(batch['action'], dtype=np.int64)

        bellman = np.where(dones, rewards, rewards + self.config.gamma * next_max)
        targets[np.arange(len(actions)), actions] = bellman
        return targets

    def sync_target(self):
        """Hard-copy the online parameters into the target network."""
        if self.is_disposed:
            return
        self.target_network.load_state_dict(self.q_network.state_dict())

    # ------------------------------------------------------------------
    # Weights
    # ------------------------------------------------------------------

    def get_weights(self) -> Dict[str, torch.Tensor]:
        """Deep copy of the online parameters, owned by the caller."""
        self._ensure_active('get_weights')
        return copy.deepcopy(self.q_network.state_dict())

    def set_weights(self, weights: Dict[str, torch.Tensor]):
        self._ensure_active('set_weights')
        self.q_network.load_state_dict(weights)
        self.target_network.load_state_dict(weights)

    def save(self, slot: str) -> str:
        """Persist architecture and parameters into a named slot."""
        self._ensure_active('save')
        if self.weight_store is None:
            raise RuntimeError("No weight store configured")

        path = self.weight_store.save(slot, {
            'architecture': self.q_network.architecture(),
            'q_network_state_dict': self.q_network.state_dict(),
            'epsilon': self.epsilon,
            'hyperparameters': asdict(self.config)
        })
        logger.info(f"Agent saved to {path}")
        return path

    def load(self, slot: str) -> bool:
        """
        Restore parameters from a named slot.

        Returns:
            False when the slot does not exist
        """
        self._ensure_active('load')
        if self.weight_store is None:
            return False

        checkpoint = self.weight_store.load(slot, device=str(self.device))
        if checkpoint is None:
            logger.info(f"No checkpoint found for slot '{slot}'")
            return False

        architecture = checkpoint.get('architecture', {})
        if architecture and architecture != self.q_network.architecture():
            logger.warning(f"Checkpoint architecture {architecture} does not match "
                           f"{self.q_network.architecture()}")
            return False

        self.set_weights(checkpoint['q_network_state_dict'])
        logger.info(f"Agent loaded from slot '{slot}'")
        return True

    # ------------------------------------------------------------------
    # Teardown and metrics
    # ------------------------------------------------------------------

    def cleanup(self):
        """Dispose the agent and release networks and buffer."""
        if self.is_disposed:
            return
        self.is_disposed = True
        self.replay_buffer.release()
        self.q_network = None
        self.target_network = None
        self.optimizer = None
        logger.debug("DQN agent disposed")

    def get_concurrency_metrics(self) -> Dict[str, Any]:
        calls = self.total_training_calls
        return {
            'total_training_calls': calls,
            'blocked_calls': self.blocked_calls,
            'successful_trainings': self.successful_trainings,
            'average_training_duration': self.average_training_duration,
            'last_training_time': self.last_training_time,
            'last_loss': self.last_loss,
            'blocking_rate': self.blocked_calls / calls if calls else 0.0,
            'success_rate': self.successful_trainings / calls if calls else 0.0,
        }

    def reset_concurrency_metrics(self):
        self.total_training_calls = 0
        self.blocked_calls = 0
        self.successful_trainings = 0
        self.average_training_duration = 0.0
        self.last_training_time = None
        self.last_loss = None
        self._total_training_duration = 0.0
