"""
Headless Rocket AI - Training Orchestrator
==========================================

Drives DQN training episodes on the headless environment as an asyncio
coroutine that cooperates with a host event loop.

Lifecycle:
    IDLE -> INITIALIZING -> TRAINING <-> PAUSED -> {COMPLETED | STOPPED | ERRORED} -> IDLE

Features:
- Periodic greedy evaluation with best-weight snapshotting
- Periodic checkpointing into a named weight slot
- Convergence and early-stopping checks
- Telemetry on an injected event bus

Author: AI Assistant
Date: August 2025
"""

import math
import time
import asyncio
import logging
from enum import Enum
from collections import deque
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Any, Optional, Mapping, Union

import numpy as np

from .config import TrainingConfig, EnvironmentConfig
from .dqn_agent import is_disposed_error
from .event_bus import EventBus, EventType, EventHandler
from .factory import TrainingComponents, create_training_components
from .replay_buffer import Transition

logger = logging.getLogger(__name__)

PAUSE_POLL_INTERVAL = 0.1
EARLY_STOP_WINDOW = 5
EARLY_STOP_TOLERANCE = 0.05

ComponentFactory = Callable[[TrainingConfig, EventBus], TrainingComponents]


class TrainingPhase(Enum):
    IDLE = 'idle'
    INITIALIZING = 'initializing'
    TRAINING = 'training'
    PAUSED = 'paused'
    COMPLETED = 'completed'
    STOPPED = 'stopped'
    ERRORED = 'errored'


@dataclass
class TrainingMetrics:
    """Counters and rolling windows of a training run."""
    episode: int = 0
    total_steps: int = 0
    successful_episodes: int = 0
    best_average_reward: float = -math.inf
    last_evaluation_score: Optional[float] = None
    last_evaluation_success_rate: Optional[float] = None
    last_loss: Optional[float] = None
    training_start_time: Optional[float] = None
    episode_rewards: deque = field(default_factory=lambda: deque(maxlen=100))
    episode_lengths: deque = field(default_factory=lambda: deque(maxlen=100))
    losses: deque = field(default_factory=lambda: deque(maxlen=100))

    def record_episode(self, reward: float, length: int, success: bool):
        self.episode_rewards.append(reward)
        self.episode_lengths.append(length)
        if success:
            self.successful_episodes += 1

    def record_loss(self, loss: float):
        self.last_loss = loss
        self.losses.append(loss)

    @property
    def success_rate(self) -> float:
        return self.successful_episodes / self.episode if self.episode else 0.0

    @property
    def average_reward(self) -> float:
        return float(np.mean(self.episode_rewards)) if self.episode_rewards else 0.0

    @property
    def average_episode_length(self) -> float:
        return float(np.mean(self.episode_lengths)) if self.episode_lengths else 0.0

    @property
    def elapsed_time(self) -> float:
        if self.training_start_time is None:
            return 0.0
        return time.time() - self.training_start_time

    def to_dict(self) -> Dict[str, Any]:
        return {
            'episode': self.episode,
            'total_steps': self.total_steps,
            'successful_episodes': self.successful_episodes,
            'success_rate': self.success_rate,
            'average_reward': self.average_reward,
            'average_episode_length': self.average_episode_length,
            'best_average_reward': self.best_average_reward,
            'last_evaluation_score': self.last_evaluation_score,
            'last_evaluation_success_rate': self.last_evaluation_success_rate,
            'last_loss': self.last_loss,
            'average_loss': float(np.mean(self.losses)) if self.losses else None,
            'elapsed_time': self.elapsed_time,
        }


@dataclass
class TrainingState:
    """Mutable state carried across evaluations."""
    current_objective: Optional[str] = None
    best_weights: Optional[Dict[str, Any]] = None
    best_score: float = -math.inf
    early_stopping_counter: int = 0
    recent_performance: deque = field(default_factory=lambda: deque(maxlen=10))


class TrainingOrchestrator:
    """
    Asynchronous DQN training loop.

    ``pause``, ``resume`` and ``stop`` only set flags; the loop consumes them
    at its poll points (top of each episode, every step, and before
    evaluation and checkpointing).
    """

    def __init__(self,
                 event_bus: Optional[EventBus] = None,
                 config: Optional[TrainingConfig] = None,
                 env_config: Optional[EnvironmentConfig] = None,
                 component_factory: Optional[ComponentFactory] = None):
        self.event_bus = event_bus or EventBus()
        self.config = config or TrainingConfig()
        self.env_config = env_config
        self.component_factory = component_factory or self._create_components

        self.phase = TrainingPhase.IDLE
        self.metrics = TrainingMetrics()
        self.state = TrainingState()

        self.env = None
        self.eval_env = None
        self.agent = None

        self._pause_requested = False
        self._stop_requested = False
        self._unsubscribers: List[Callable[[], None]] = []

    def _create_components(self, config: TrainingConfig, event_bus: EventBus) -> TrainingComponents:
        return create_training_components(config, self.env_config, event_bus)

    # ------------------------------------------------------------------
    # Listeners
    # ------------------------------------------------------------------

    def add_listener(self, event_type: EventType, handler: EventHandler) -> Callable[[], None]:
        """Subscribe a handler that is removed automatically at ``cleanup``."""
        unsubscribe = self.event_bus.subscribe(event_type, handler)
        self._unsubscribers.append(unsubscribe)
        return unsubscribe

    def _emit(self, event_type: EventType, payload: Optional[Dict[str, Any]] = None):
        self.event_bus.emit(event_type, payload or {})

    # ------------------------------------------------------------------
    # Control
    # ------------------------------------------------------------------

    @property
    def is_running(self) -> bool:
        return self.phase in (TrainingPhase.INITIALIZING, TrainingPhase.TRAINING, TrainingPhase.PAUSED)

    async def start(self, config: Union[TrainingConfig, Mapping[str, Any], None] = None) -> Optional[Dict[str, Any]]:
        """
        Run a full training session.

        Args:
            config: TrainingConfig or mapping of overrides merged over the
                current configuration

        Returns:
            Summary statistics, or None when training failed
        """
        if self.is_running:
            logger.warning(f"Training already in progress ({self.phase.value})")
            return None

        self._release_components()
        self.phase = TrainingPhase.INITIALIZING
        self._pause_requested = False
        self._stop_requested = False

        try:
            if isinstance(config, TrainingConfig):
                self.config = config
            elif config:
                self.config = self.config.merged(config)

            self.metrics = TrainingMetrics()
            self.state = TrainingState(current_objective=self.config.objectives[0])

            components = self.component_factory(self.config, self.event_bus)
            self.env, self.eval_env, self.agent = components

            self.metrics.training_start_time = time.time()
            self.phase = TrainingPhase.TRAINING
            logger.info(f"Training started: objective '{self.state.current_objective}', "
                        f"{self.config.max_episodes} episodes")
            self._emit(EventType.TRAINING_STARTED, {
                'objective': self.state.current_objective,
                'config': self.config.to_dict()
            })

            await self._run_training_loop()

            if self._stop_requested:
                statistics = self._compute_statistics()
                self.phase = TrainingPhase.STOPPED
                logger.info(f"Training stopped after {self.metrics.episode} episodes")
                self._emit(EventType.TRAINING_STOPPED, statistics)
                return statistics

            statistics = self._finalize_training()
            self.phase = TrainingPhase.COMPLETED
            return statistics

        except Exception as e:
            self._release_components()
            if is_disposed_error(e):
                logger.info(f"Training interrupted by agent teardown: {e}")
            else:
                logger.error(f"Training failed: {e}", exc_info=True)
                self.phase = TrainingPhase.ERRORED
                self._emit(EventType.TRAINING_ERROR, {'error': str(e)})
            self.cleanup()
            return None

    def pause(self):
        if self.phase != TrainingPhase.TRAINING:
            return
        self._pause_requested = True
        self.phase = TrainingPhase.PAUSED
        logger.info("Training paused")
        self._emit(EventType.TRAINING_PAUSED, {'episode': self.metrics.episode})

    def resume(self):
        if self.phase != TrainingPhase.PAUSED:
            return
        self._pause_requested = False
        self.phase = TrainingPhase.TRAINING
        logger.info("Training resumed")
        self._emit(EventType.TRAINING_RESUMED, {'episode': self.metrics.episode})

    def stop(self):
        if not self.is_running:
            return
        self._stop_requested = True
        self._pause_requested = False
        logger.info("Stop requested")

    def update_config(self, overrides: Mapping[str, Any]) -> TrainingConfig:
        """Merge overrides into the configuration used by the next ``start``."""
        self.config = self.config.merged(overrides)
        if self.is_running:
            logger.info("Configuration updated; changes apply to the next training run")
        return self.config

    def get_config(self) -> TrainingConfig:
        return self.config

    def get_metrics(self) -> Dict[str, Any]:
        metrics = self.metrics.to_dict()
        metrics['phase'] = self.phase.value
        metrics['objective'] = self.state.current_objective
        metrics['best_score'] = self.state.best_score
        metrics['early_stopping_counter'] = self.state.early_stopping_counter
        if self.agent is not None and not self.agent.is_disposed:
            metrics['epsilon'] = self.agent.epsilon
            metrics['buffer_size'] = len(self.agent.replay_buffer)
            metrics['concurrency'] = self.agent.get_concurrency_metrics()
        return metrics

    # ------------------------------------------------------------------
    # Episode loop
    # ------------------------------------------------------------------

    async def _wait_while_paused(self) -> bool:
        """Poll until resumed; returns False if stopped meanwhile."""
        while self._pause_requested and not self._stop_requested:
            await asyncio.sleep(PAUSE_POLL_INTERVAL)
        return not self._stop_requested

    async def _run_training_loop(self):
        config = self.config

        for episode in range(1, config.max_episodes + 1):
            if self._stop_requested or not await self._wait_while_paused():
                break

            result = await self._run_episode(episode)
            if result is None:
                break

            self.metrics.episode = episode
            self.metrics.record_episode(result['reward'], result['steps'], result['success'])
            self._emit_progress(result)

            if self._stop_requested:
                break
            if episode % config.evaluation_interval == 0:
                await self._run_evaluation(episode)

            if self._stop_requested:
                break
            if episode % config.checkpoint_interval == 0:
                self._save_checkpoint()

            if self.check_convergence():
                logger.info(f"Converged at episode {episode}: success rate "
                            f"{self.metrics.success_rate:.2%}")
                break
            if self.check_early_stopping():
                logger.info(f"Early stopping at episode {episode}: no improvement on "
                            f"best score {self.state.best_score:.2f}")
                break

            await asyncio.sleep(0)

    async def _run_episode(self, episode: int) -> Optional[Dict[str, Any]]:
        """
        Run one training episode.

        Returns:
            Episode summary, or None when a stop interrupted the episode
        """
        env = self.env
        agent = self.agent
        config = self.config

        observation, info = env.reset()
        start_time = time.time()
        episode_reward = 0.0
        steps = 0
        done = False

        self._emit(EventType.EPISODE_STARTED, {
            'episode': episode,
            'objective': self.state.current_objective
        })

        for _ in range(env.max_steps_per_episode):
            if self._stop_requested:
                return None

            action = agent.act(observation)
            next_observation, reward, terminated, truncated, info = env.step(action)
            done = terminated or truncated
            agent.observe(Transition(observation, action, reward, next_observation, done))

            observation = next_observation
            episode_reward += reward
            steps += 1
            self.metrics.total_steps += 1

            if steps % config.update_frequency == 0 and agent.can_train():
                loss = await agent.train()
                if loss is not None:
                    self.metrics.record_loss(loss)

            if self.metrics.total_steps % config.target_sync_interval == 0:
                agent.sync_target()

            if steps % config.yield_interval == 0:
                await asyncio.sleep(0)

            if done:
                break

        if not done:
            agent.decay_epsilon()

        success = self.is_episode_successful(episode_reward, steps, env)
        duration = time.time() - start_time
        result = {
            'episode': episode,
            'reward': episode_reward,
            'steps': steps,
            'success': success,
            'duration': duration,
            'status': info.get('status'),
        }
        self._emit(EventType.EPISODE_ENDED, result)
        return result

    def _emit_progress(self, result: Dict[str, Any]):
        metrics = self.metrics
        payload = {
            'episode': result['episode'],
            'max_episodes': self.config.max_episodes,
            'reward': result['reward'],
            'steps': result['steps'],
            'success': result['success'],
            'average_reward': metrics.average_reward,
            'success_rate': metrics.success_rate,
            'total_steps': metrics.total_steps,
            'epsilon': self.agent.epsilon,
            'loss': metrics.last_loss,
        }
        self._emit(EventType.TRAINING_PROGRESS, payload)

        if result['episode'] % self.config.log_interval == 0:
            logger.info(f"Episode {result['episode']}: avg reward {metrics.average_reward:.2f}, "
                        f"success rate {metrics.success_rate:.2%}, epsilon {self.agent.epsilon:.3f}")

    def is_episode_successful(self, reward: float, steps: int, env=None) -> bool:
        """Mission success for navigate and crash_moon, else a reward/length heuristic."""
        env = env if env is not None else self.env
        if self.state.current_objective in ('navigate', 'crash_moon'):
            return env is not None and env.is_mission_successful()
        return reward >= 10.0 and steps < 0.8 * self.config.max_steps_per_episode

    # ------------------------------------------------------------------
    # Evaluation and checkpointing
    # ------------------------------------------------------------------

    async def evaluate(self, episodes: Optional[int] = None) -> Dict[str, Any]:
        """
        Greedy evaluation on the evaluation environment.

        Returns:
            Dictionary with average_score, success_rate, episodes and
            interrupted (True when a stop cut the run short)
        """
        env = self.eval_env
        agent = self.agent
        episodes = episodes or self.config.evaluation_episodes

        scores = []
        successes = 0
        for _ in range(episodes):
            if self._stop_requested:
                break

            observation, _ = env.reset()
            total_reward = 0.0
            steps = 0
            for _ in range(env.max_steps_per_episode):
                action = agent.act(observation, explore=False)
                observation, reward, terminated, truncated, _ = env.step(action)
                total_reward += reward
                steps += 1
                if steps % self.config.yield_interval == 0:
                    await asyncio.sleep(0)
                if terminated or truncated:
                    break

            scores.append(total_reward)
            if self.is_episode_successful(total_reward, steps, env):
                successes += 1
            await asyncio.sleep(0)

        return {
            'average_score': float(np.mean(scores)) if scores else 0.0,
            'success_rate': successes / len(scores) if scores else 0.0,
            'episodes': len(scores),
            'interrupted': len(scores) < episodes,
        }

    async def _run_evaluation(self, episode: int):
        try:
            results = await self.evaluate()
        except Exception as e:
            if is_disposed_error(e):
                raise
            logger.warning(f"Evaluation at episode {episode} failed: {e}")
            return

        if results['interrupted'] or results['episodes'] == 0:
            logger.info(f"Evaluation at episode {episode} interrupted after "
                        f"{results['episodes']} episodes; results discarded")
            return

        score = results['average_score']
        self.metrics.last_evaluation_score = score
        self.metrics.last_evaluation_success_rate = results['success_rate']
        self.state.recent_performance.append(score)

        if score > self.state.best_score:
            self.state.best_score = score
            self.metrics.best_average_reward = score
            self._release_best_weights()
            self.state.best_weights = self.agent.get_weights()
            self.state.early_stopping_counter = 0
            logger.info(f"New best evaluation score {score:.2f} at episode {episode}")
        else:
            self.state.early_stopping_counter += 1

        logger.info(f"Evaluation at episode {episode}: avg score {score:.2f}, "
                    f"success rate {results['success_rate']:.2%}")
        self._emit(EventType.EVALUATION_COMPLETED, {
            'episode': episode,
            'average_score': score,
            'success_rate': results['success_rate'],
            'best_score': self.state.best_score,
        })

    def _save_checkpoint(self):
        try:
            self.agent.save(self.config.checkpoint_slot)
        except Exception as e:
            if is_disposed_error(e):
                raise
            logger.warning(f"Checkpoint save failed: {e}")

    def _release_best_weights(self):
        if self.state.best_weights is not None:
            self.state.best_weights.clear()
            self.state.best_weights = None

    # ------------------------------------------------------------------
    # Stopping criteria
    # ------------------------------------------------------------------

    def check_convergence(self) -> bool:
        episode = self.metrics.episode
        if episode <= max(self.config.evaluation_interval, 100):
            return False
        return self.metrics.success_rate >= self.config.target_success_rate

    def check_early_stopping(self) -> bool:
        """
        True when the last evaluations all sit below the best score by more
        than the tolerance for a patience-derived number of evaluations.
        """
        config = self.config
        if self.metrics.episode < max(2 * config.evaluation_interval, 200):
            return False

        recent = list(self.state.recent_performance)
        best = self.state.best_score
        if len(recent) < EARLY_STOP_WINDOW or not math.isfinite(best):
            return False

        threshold = best - abs(best) * EARLY_STOP_TOLERANCE
        if not all(score <= threshold for score in recent[-EARLY_STOP_WINDOW:]):
            return False

        required = math.ceil(config.patience / config.evaluation_interval)
        return self.state.early_stopping_counter >= required

    # ------------------------------------------------------------------
    # Finalization and teardown
    # ------------------------------------------------------------------

    def _compute_statistics(self) -> Dict[str, Any]:
        metrics = self.metrics
        return {
            'episodes': metrics.episode,
            'total_steps': metrics.total_steps,
            'training_duration': metrics.elapsed_time,
            'final_success_rate': metrics.success_rate,
            'best_average_reward': metrics.best_average_reward,
            'average_episode_length': metrics.average_episode_length,
        }

    def _finalize_training(self) -> Dict[str, Any]:
        if self.state.best_weights is not None:
            self.agent.set_weights(self.state.best_weights)
            logger.info(f"Restored best weights (score {self.state.best_score:.2f})")
        self._release_best_weights()
        self._save_checkpoint()

        statistics = self._compute_statistics()
        logger.info(f"Training completed: {statistics['episodes']} episodes, "
                    f"{statistics['total_steps']} steps, success rate "
                    f"{statistics['final_success_rate']:.2%}")
        self._emit(EventType.TRAINING_COMPLETED, statistics)
        return statistics

    def _release_components(self):
        if self.agent is not None:
            self.agent.cleanup()
        for env in (self.env, self.eval_env):
            if env is not None:
                env.close()
        self.agent = None
        self.env = None
        self.eval_env = None
        self._release_best_weights()

    def cleanup(self):
        """Release all components and listeners. Safe to call repeatedly."""
        self._stop_requested = True
        self._pause_requested = False
        self._release_components()

        unsubscribers, self._unsubscribers = self._unsubscribers, []
        for unsubscribe in unsubscribers:
            unsubscribe()

        self.phase = TrainingPhase.IDLE
