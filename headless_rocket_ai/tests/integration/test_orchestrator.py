"""Integration tests for the asynchronous training orchestrator."""
import asyncio
import math
import os

import pytest
import torch

from rocket_rl.config import TrainingConfig
from rocket_rl.dqn_agent import WeightStore
from rocket_rl.event_bus import EventBus, EventType
from rocket_rl.factory import create_training_components
from rocket_rl.orchestrator import TrainingOrchestrator, TrainingPhase


def record_events(bus, *event_types):
    events = []
    for event_type in event_types:
        bus.subscribe(event_type, lambda payload, et=event_type: events.append((et, payload)))
    return events


def names(events):
    return [event_type for event_type, _ in events]


@pytest.mark.integration
class TestTrainingLifecycle:
    """Test complete training runs."""

    def test_full_run_completes(self, small_training_config, seed_rng):
        bus = EventBus()
        events = record_events(bus, EventType.TRAINING_STARTED, EventType.TRAINING_PROGRESS,
                               EventType.EVALUATION_COMPLETED, EventType.TRAINING_COMPLETED,
                               EventType.TRAINING_ERROR)
        orchestrator = TrainingOrchestrator(event_bus=bus)

        statistics = asyncio.run(orchestrator.start(small_training_config))

        assert statistics is not None
        assert orchestrator.phase == TrainingPhase.COMPLETED
        assert statistics['episodes'] == 4
        assert statistics['total_steps'] > 0
        assert statistics['training_duration'] >= 0.0
        assert 0.0 <= statistics['final_success_rate'] <= 1.0
        assert math.isfinite(statistics['best_average_reward'])
        assert statistics['average_episode_length'] > 0

        event_names = names(events)
        assert event_names[0] == EventType.TRAINING_STARTED
        assert event_names[-1] == EventType.TRAINING_COMPLETED
        assert event_names.count(EventType.TRAINING_PROGRESS) == 4
        assert event_names.count(EventType.EVALUATION_COMPLETED) == 2
        assert EventType.TRAINING_ERROR not in event_names

        checkpoint = os.path.join(small_training_config.checkpoint_dir, 'rocket-ai-model.pth')
        assert os.path.exists(checkpoint)
        assert orchestrator.state.best_weights is None

        orchestrator.cleanup()
        assert orchestrator.phase == TrainingPhase.IDLE
        assert orchestrator.agent is None

    def test_agent_trains_and_syncs(self, small_training_config, seed_rng):
        orchestrator = TrainingOrchestrator()
        asyncio.run(orchestrator.start(small_training_config.merged({'max_episodes': 2})))

        metrics = orchestrator.get_metrics()
        assert metrics['phase'] == 'completed'
        assert metrics['concurrency']['successful_trainings'] > 0
        assert metrics['concurrency']['blocked_calls'] == 0
        assert metrics['epsilon'] < small_training_config.epsilon
        orchestrator.cleanup()

    def test_episode_events_are_paired(self, small_training_config, seed_rng):
        bus = EventBus()
        events = record_events(bus, EventType.EPISODE_STARTED, EventType.EPISODE_ENDED)
        orchestrator = TrainingOrchestrator(event_bus=bus)
        asyncio.run(orchestrator.start(small_training_config.merged({'max_episodes': 3})))

        assert names(events) == [EventType.EPISODE_STARTED, EventType.EPISODE_ENDED] * 3
        ended = [payload for event_type, payload in events if event_type == EventType.EPISODE_ENDED]
        assert [payload['episode'] for payload in ended] == [1, 2, 3]
        assert all(payload['steps'] <= small_training_config.max_steps_per_episode for payload in ended)
        orchestrator.cleanup()

    def test_overrides_merge_over_current_config(self, small_training_config, seed_rng):
        orchestrator = TrainingOrchestrator(config=small_training_config)
        statistics = asyncio.run(orchestrator.start({'max_episodes': 1}))
        assert statistics['episodes'] == 1
        assert orchestrator.get_config().batch_size == small_training_config.batch_size
        orchestrator.cleanup()


@pytest.mark.integration
class TestTrainingControl:
    """Test pause, resume and stop."""

    def test_stop_mid_episode(self, small_training_config, seed_rng):
        bus = EventBus()
        events = record_events(bus, EventType.TRAINING_STOPPED, EventType.TRAINING_COMPLETED)
        orchestrator = TrainingOrchestrator(event_bus=bus)

        def stop_on_second_episode(payload):
            if payload['episode'] == 2:
                orchestrator.stop()

        bus.subscribe(EventType.EPISODE_STARTED, stop_on_second_episode)
        statistics = asyncio.run(orchestrator.start(small_training_config))

        assert orchestrator.phase == TrainingPhase.STOPPED
        assert names(events) == [EventType.TRAINING_STOPPED]
        assert statistics['episodes'] == 1
        orchestrator.cleanup()

    def test_pause_and_resume(self, small_training_config, seed_rng):
        bus = EventBus()
        events = record_events(bus, EventType.TRAINING_PAUSED, EventType.TRAINING_RESUMED,
                               EventType.TRAINING_COMPLETED)
        orchestrator = TrainingOrchestrator(event_bus=bus)
        phases = []

        def pause_after_first(payload):
            if payload['episode'] == 1:
                orchestrator.pause()
                phases.append(orchestrator.phase)
                asyncio.get_running_loop().call_later(0.25, orchestrator.resume)

        bus.subscribe(EventType.TRAINING_PROGRESS, pause_after_first)
        statistics = asyncio.run(orchestrator.start(small_training_config))

        assert phases == [TrainingPhase.PAUSED]
        assert names(events) == [EventType.TRAINING_PAUSED, EventType.TRAINING_RESUMED,
                                 EventType.TRAINING_COMPLETED]
        assert statistics['episodes'] == small_training_config.max_episodes
        orchestrator.cleanup()

    def test_stop_while_paused(self, small_training_config, seed_rng):
        orchestrator = TrainingOrchestrator()

        def pause_then_stop(payload):
            if payload['episode'] == 1:
                orchestrator.pause()
                asyncio.get_running_loop().call_later(0.15, orchestrator.stop)

        orchestrator.event_bus.subscribe(EventType.TRAINING_PROGRESS, pause_then_stop)
        statistics = asyncio.run(orchestrator.start(small_training_config))

        assert orchestrator.phase == TrainingPhase.STOPPED
        assert statistics['episodes'] == 1
        orchestrator.cleanup()

    def test_control_calls_ignored_when_idle(self):
        orchestrator = TrainingOrchestrator()
        orchestrator.pause()
        orchestrator.resume()
        orchestrator.stop()
        assert orchestrator.phase == TrainingPhase.IDLE


@pytest.mark.integration
class TestTrainingErrors:
    """Test error handling during start."""

    def test_factory_error_emits_training_error(self, small_training_config):
        bus = EventBus()
        events = record_events(bus, EventType.TRAINING_ERROR, EventType.TRAINING_STARTED)

        def broken_factory(config, event_bus):
            raise RuntimeError("simulator unavailable")

        orchestrator = TrainingOrchestrator(event_bus=bus, component_factory=broken_factory)
        result = asyncio.run(orchestrator.start(small_training_config))

        assert result is None
        assert orchestrator.phase == TrainingPhase.IDLE
        assert names(events) == [EventType.TRAINING_ERROR]
        assert 'simulator unavailable' in events[0][1]['error']

    def test_restart_after_error(self, small_training_config, seed_rng):
        calls = []

        def flaky_factory(config, event_bus):
            calls.append(config)
            if len(calls) == 1:
                raise RuntimeError("first attempt fails")
            return create_training_components(config, event_bus=event_bus)

        orchestrator = TrainingOrchestrator(component_factory=flaky_factory)
        assert asyncio.run(orchestrator.start(small_training_config)) is None
        statistics = asyncio.run(orchestrator.start(small_training_config.merged({'max_episodes': 1})))
        assert statistics['episodes'] == 1
        orchestrator.cleanup()

    def test_disposed_agent_race_is_silent(self, small_training_config, seed_rng):
        bus = EventBus()
        events = record_events(bus, EventType.TRAINING_ERROR)
        orchestrator = TrainingOrchestrator(event_bus=bus)

        def dispose_agent(payload):
            if payload['episode'] == 2:
                orchestrator.agent.cleanup()

        bus.subscribe(EventType.EPISODE_STARTED, dispose_agent)
        result = asyncio.run(orchestrator.start(small_training_config))

        assert result is None
        assert events == []
        assert orchestrator.phase == TrainingPhase.IDLE
        assert orchestrator.agent is None

    def test_checkpoint_failure_does_not_abort(self, small_training_config, seed_rng, monkeypatch):
        orchestrator = TrainingOrchestrator()

        def factory(config, event_bus):
            components = create_training_components(config, event_bus=event_bus)

            def failing_save(slot):
                raise OSError("disk full")

            monkeypatch.setattr(components.agent, 'save', failing_save)
            return components

        orchestrator.component_factory = factory
        statistics = asyncio.run(orchestrator.start(small_training_config))
        assert statistics['episodes'] == small_training_config.max_episodes
        assert orchestrator.phase == TrainingPhase.COMPLETED
        orchestrator.cleanup()


@pytest.mark.integration
class TestTeardown:
    """Test cleanup and listener management."""

    def test_cleanup_unsubscribes_listeners(self):
        bus = EventBus()
        orchestrator = TrainingOrchestrator(event_bus=bus)
        orchestrator.add_listener(EventType.TRAINING_PROGRESS, lambda payload: None)
        orchestrator.add_listener(EventType.TRAINING_COMPLETED, lambda payload: None)
        bus.subscribe(EventType.TRAINING_STARTED, lambda payload: None)
        assert bus.listener_count() == 3

        orchestrator.cleanup()
        assert bus.listener_count() == 1

        orchestrator.cleanup()
        assert bus.listener_count() == 1
        assert orchestrator.phase == TrainingPhase.IDLE


@pytest.mark.integration
class TestStoppingCriteria:
    """Test convergence, early stopping and episode success."""

    def make_orchestrator(self, **overrides):
        config = TrainingConfig(**overrides)
        orchestrator = TrainingOrchestrator(config=config)
        orchestrator.state.current_objective = config.objectives[0]
        return orchestrator

    def test_convergence_requires_warmup(self):
        orchestrator = self.make_orchestrator(target_success_rate=0.5, evaluation_interval=50)
        orchestrator.metrics.episode = 100
        orchestrator.metrics.successful_episodes = 100
        assert not orchestrator.check_convergence()

        orchestrator.metrics.episode = 101
        assert orchestrator.check_convergence()

        orchestrator.metrics.successful_episodes = 40
        assert not orchestrator.check_convergence()

    def test_early_stopping(self):
        orchestrator = self.make_orchestrator(evaluation_interval=50, patience=200)
        state = orchestrator.state
        state.best_score = 100.0
        state.recent_performance.extend([90.0, 80.0, 94.0, 70.0, 60.0])
        state.early_stopping_counter = 4

        orchestrator.metrics.episode = 150
        assert not orchestrator.check_early_stopping()

        orchestrator.metrics.episode = 200
        assert orchestrator.check_early_stopping()

        state.early_stopping_counter = 3
        assert not orchestrator.check_early_stopping()

        state.early_stopping_counter = 4
        state.recent_performance.append(96.0)
        assert not orchestrator.check_early_stopping()

    def test_early_stopping_needs_five_scores(self):
        orchestrator = self.make_orchestrator(evaluation_interval=50, patience=50)
        orchestrator.state.best_score = 10.0
        orchestrator.state.recent_performance.extend([1.0, 2.0, 3.0, 4.0])
        orchestrator.state.early_stopping_counter = 10
        orchestrator.metrics.episode = 400
        assert not orchestrator.check_early_stopping()

    def test_heuristic_episode_success(self):
        orchestrator = self.make_orchestrator(objectives=['orbit'], max_steps_per_episode=100)
        assert orchestrator.is_episode_successful(10.0, 79)
        assert not orchestrator.is_episode_successful(10.0, 80)
        assert not orchestrator.is_episode_successful(9.9, 10)

    def test_mission_episode_success_uses_environment(self):
        class StubEnv:
            def __init__(self, success):
                self.success = success

            def is_mission_successful(self):
                return self.success

        orchestrator = self.make_orchestrator(objectives=['crash_moon'])
        assert orchestrator.is_episode_successful(-500.0, 5000, StubEnv(True))
        assert not orchestrator.is_episode_successful(500.0, 5, StubEnv(False))


def record_snapshots(agent):
    """Wrap ``get_weights`` so each snapshot handed to the orchestrator is kept."""
    handed_out = []
    original_get_weights = agent.get_weights

    def get_weights():
        weights = original_get_weights()
        handed_out.append(weights)
        return weights

    agent.get_weights = get_weights
    return handed_out


@pytest.mark.integration
class TestBestWeights:
    """Test evaluation bookkeeping and best-weight restoration."""

    def test_stop_during_evaluation_discards_results(self, small_training_config, seed_rng):
        config = small_training_config.merged({'evaluation_episodes': 3})
        bus = EventBus()
        events = record_events(bus, EventType.EVALUATION_COMPLETED, EventType.TRAINING_STOPPED)
        orchestrator = TrainingOrchestrator(event_bus=bus)

        def factory(config, event_bus):
            components = create_training_components(config, event_bus=event_bus)
            eval_env = components.eval_env
            original_reset = eval_env.reset
            resets = []

            def reset(*args, **kwargs):
                resets.append(1)
                if len(resets) == 2:
                    orchestrator.stop()
                return original_reset(*args, **kwargs)

            eval_env.reset = reset
            return components

        orchestrator.component_factory = factory
        statistics = asyncio.run(orchestrator.start(config))

        assert orchestrator.phase == TrainingPhase.STOPPED
        assert names(events) == [EventType.TRAINING_STOPPED]
        assert statistics['episodes'] == config.evaluation_interval
        assert len(orchestrator.state.recent_performance) == 0
        assert orchestrator.state.best_score == -math.inf
        assert orchestrator.state.best_weights is None
        assert orchestrator.metrics.last_evaluation_score is None
        orchestrator.cleanup()

    def test_best_snapshot_restored_before_final_checkpoint(self, small_training_config, seed_rng):
        bus = EventBus()
        orchestrator = TrainingOrchestrator(event_bus=bus)
        snapshots = []

        def factory(config, event_bus):
            components = create_training_components(config, event_bus=event_bus)
            snapshots.append(record_snapshots(components.agent))
            return components

        def clone_and_corrupt(payload):
            # Keep an independent copy of the current best before training moves on.
            kept.append({key: tensor.clone() for key, tensor in orchestrator.state.best_weights.items()})
            with torch.no_grad():
                for parameter in orchestrator.agent.q_network.parameters():
                    parameter.add_(5.0)

        kept = []
        bus.subscribe(EventType.EVALUATION_COMPLETED, clone_and_corrupt)
        orchestrator.component_factory = factory
        asyncio.run(orchestrator.start(small_training_config))

        assert orchestrator.phase == TrainingPhase.COMPLETED
        assert len(snapshots[0]) >= 1
        best = kept[-1]

        final = orchestrator.agent.q_network.state_dict()
        for key, tensor in best.items():
            assert torch.equal(final[key], tensor)

        saved = WeightStore(small_training_config.checkpoint_dir).load(small_training_config.checkpoint_slot)
        for key, tensor in best.items():
            assert torch.equal(saved['q_network_state_dict'][key], tensor)

        assert all(len(snapshot) == 0 for snapshot in snapshots[0])
        assert orchestrator.state.best_weights is None
        orchestrator.cleanup()

    def test_previous_snapshot_released_on_improvement(self, small_training_config, seed_rng):
        bus = EventBus()
        orchestrator = TrainingOrchestrator(event_bus=bus)
        scores = iter([1.0, 2.0])
        snapshots = []
        observed = []

        async def improving_evaluate(episodes=None):
            return {'average_score': next(scores), 'success_rate': 0.0,
                    'episodes': small_training_config.evaluation_episodes, 'interrupted': False}

        def factory(config, event_bus):
            components = create_training_components(config, event_bus=event_bus)
            snapshots.append(record_snapshots(components.agent))
            return components

        def check_snapshots(payload):
            handed_out = snapshots[0]
            observed.append((payload['episode'], [len(weights) for weights in handed_out],
                             orchestrator.state.best_weights is handed_out[-1]))

        orchestrator.evaluate = improving_evaluate
        orchestrator.component_factory = factory
        bus.subscribe(EventType.EVALUATION_COMPLETED, check_snapshots)
        asyncio.run(orchestrator.start(small_training_config))

        assert len(observed) == 2
        first_episode, first_sizes, first_is_current = observed[0]
        assert first_episode == 2
        assert len(first_sizes) == 1 and first_sizes[0] > 0
        assert first_is_current

        second_episode, second_sizes, second_is_current = observed[1]
        assert second_episode == 4
        assert len(second_sizes) == 2
        assert second_sizes[0] == 0
        assert second_sizes[1] > 0
        assert second_is_current
        assert orchestrator.state.best_score == 2.0
        orchestrator.cleanup()
