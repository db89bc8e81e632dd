"""Unit tests for the DQN agent."""
import asyncio

import pytest
import numpy as np
import torch

from rocket_rl.dqn_agent import (
    DQNAgent, AgentConfig, QNetwork, WeightStore, AgentDisposedError, is_disposed_error
)
from rocket_rl.replay_buffer import Transition


def random_transition(rng, done=False):
    return Transition(
        state=rng.standard_normal(10).astype(np.float32),
        action=int(rng.integers(5)),
        reward=float(rng.standard_normal()),
        next_state=rng.standard_normal(10).astype(np.float32),
        done=done,
    )


def fill_buffer(agent, count, seed=0):
    rng = np.random.default_rng(seed)
    for _ in range(count):
        agent.replay_buffer.add(random_transition(rng))


def parameters_equal(a, b):
    return all(torch.equal(a[key], b[key]) for key in a)


@pytest.mark.unit
class TestQNetwork:
    """Test the value network."""

    def test_output_shape(self, seed_rng):
        network = QNetwork()
        assert network(torch.zeros(10)).shape == (1, 5)
        assert network(torch.zeros(4, 10)).shape == (4, 5)

    def test_architecture(self):
        network = QNetwork()
        layer_norms = [m for m in network.modules() if isinstance(m, torch.nn.LayerNorm)]
        linears = [m for m in network.modules() if isinstance(m, torch.nn.Linear)]
        assert len(layer_norms) == 2
        assert [layer.out_features for layer in linears] == [128, 128, 64, 5]
        assert network.architecture() == {'state_dim': 10, 'action_dim': 5, 'hidden_dims': [128, 128, 64]}


@pytest.mark.unit
class TestDQNAgent:
    """Test DQN agent core functionality."""

    def test_act_returns_valid_action(self, agent_config):
        agent = DQNAgent(agent_config)
        obs = np.zeros(10, dtype=np.float32)
        for _ in range(20):
            action = agent.act(obs)
            assert isinstance(action, int)
            assert 0 <= action < 5

    def test_greedy_act_is_deterministic(self, agent_config):
        agent = DQNAgent(agent_config)
        obs = np.linspace(-1, 1, 10).astype(np.float32)
        actions = {agent.act(obs, explore=False) for _ in range(10)}
        assert len(actions) == 1

    def test_epsilon_never_below_floor(self, agent_config):
        agent = DQNAgent(agent_config)
        rng = np.random.default_rng(1)
        for _ in range(500):
            agent.observe(random_transition(rng, done=True))
            assert agent.epsilon >= agent_config.epsilon_min
        assert agent.epsilon == pytest.approx(agent_config.epsilon_min)

    def test_epsilon_decays_only_on_terminal(self, agent_config):
        agent = DQNAgent(agent_config)
        rng = np.random.default_rng(2)
        agent.observe(random_transition(rng, done=False))
        assert agent.epsilon == 1.0
        agent.observe(random_transition(rng, done=True))
        assert agent.epsilon == pytest.approx(0.9)

    def test_observe_respects_capacity(self, agent_config):
        agent = DQNAgent(agent_config)
        rng = np.random.default_rng(3)
        for _ in range(agent_config.replay_buffer_size + 10):
            agent.observe(random_transition(rng))
        assert len(agent.replay_buffer) == agent_config.replay_buffer_size

    def test_train_noop_with_small_buffer(self, agent_config):
        agent = DQNAgent(agent_config)
        fill_buffer(agent, agent_config.batch_size - 1)
        before = agent.get_weights()

        assert asyncio.run(agent.train()) is None
        assert parameters_equal(before, agent.q_network.state_dict())
        assert agent.get_concurrency_metrics()['successful_trainings'] == 0

    def test_train_updates_parameters(self, agent_config):
        agent = DQNAgent(agent_config)
        fill_buffer(agent, 32)
        before = agent.get_weights()

        loss = asyncio.run(agent.train())
        assert loss is not None and np.isfinite(loss)
        assert not parameters_equal(before, agent.q_network.state_dict())

        metrics = agent.get_concurrency_metrics()
        assert metrics['successful_trainings'] == 1
        assert metrics['last_loss'] == loss
        assert metrics['last_training_time'] is not None

    def test_concurrent_train_is_blocked(self, agent_config):
        agent = DQNAgent(agent_config)
        fill_buffer(agent, 32)

        async def train_twice():
            return await asyncio.gather(agent.train(), agent.train())

        results = asyncio.run(train_twice())
        assert sum(result is not None for result in results) == 1

        metrics = agent.get_concurrency_metrics()
        assert metrics['total_training_calls'] == 2
        assert metrics['blocked_calls'] == 1
        assert metrics['successful_trainings'] == 1
        assert metrics['blocking_rate'] == pytest.approx(0.5)
        assert metrics['success_rate'] == pytest.approx(0.5)

    def test_train_skips_malformed_batch(self, agent_config, monkeypatch):
        agent = DQNAgent(agent_config)
        fill_buffer(agent, 32)
        malformed = {
            'state': np.zeros((8, 7), dtype=np.float32),
            'action': np.zeros(8, dtype=np.int64),
            'reward': np.zeros(8, dtype=np.float32),
            'next_state': np.zeros((8, 7), dtype=np.float32),
            'done': np.zeros(8, dtype=np.bool_),
        }
        monkeypatch.setattr(agent.replay_buffer, 'sample', lambda *args, **kwargs: malformed)

        assert asyncio.run(agent.train()) is None
        assert agent.get_concurrency_metrics()['successful_trainings'] == 0
        assert not agent._training_in_flight

    def test_targets_only_change_taken_action(self, agent_config):
        agent = DQNAgent(agent_config)
        fill_buffer(agent, 32)
        batch = agent.replay_buffer.sample(16, np.random.default_rng(4))
        batch['done'][:8] = True

        with torch.no_grad():
            predicted = agent.q_network(torch.as_tensor(batch['state'])).numpy()
            next_max = agent.target_network(torch.as_tensor(batch['next_state'])).max(dim=1).values.numpy()
        targets = agent.compute_targets(batch)

        for row in range(16):
            taken = batch['action'][row]
            others = [a for a in range(5) if a != taken]
            np.testing.assert_allclose(targets[row, others], predicted[row, others], rtol=1e-6)
            if batch['done'][row]:
                expected = batch['reward'][row]
            else:
                expected = batch['reward'][row] + agent_config.gamma * next_max[row]
            assert targets[row, taken] == pytest.approx(expected, rel=1e-5, abs=1e-5)

    def test_sync_target_copies_parameters(self, agent_config):
        agent = DQNAgent(agent_config)
        fill_buffer(agent, 32)
        asyncio.run(agent.train())
        assert not parameters_equal(agent.q_network.state_dict(), agent.target_network.state_dict())

        agent.sync_target()
        assert parameters_equal(agent.q_network.state_dict(), agent.target_network.state_dict())

    def test_get_weights_returns_independent_copy(self, agent_config):
        agent = DQNAgent(agent_config)
        weights = agent.get_weights()
        for tensor in weights.values():
            tensor.add_(1.0)
        assert not parameters_equal(weights, agent.q_network.state_dict())

        agent.set_weights(weights)
        assert parameters_equal(weights, agent.q_network.state_dict())

    def test_save_and_load_slot(self, agent_config, tmp_path):
        store = WeightStore(str(tmp_path))
        agent = DQNAgent(agent_config, weight_store=store)
        agent.save('unit-slot')
        assert store.exists('unit-slot')

        other = DQNAgent(AgentConfig(seed=99), weight_store=store)
        assert other.load('unit-slot')
        assert parameters_equal(agent.q_network.state_dict(), other.q_network.state_dict())
        assert parameters_equal(other.q_network.state_dict(), other.target_network.state_dict())

    def test_load_missing_slot_returns_false(self, agent_config, tmp_path):
        agent = DQNAgent(agent_config, weight_store=WeightStore(str(tmp_path)))
        assert agent.load('never-saved') is False

    def test_cleanup_disposes_agent(self, agent_config):
        agent = DQNAgent(agent_config)
        fill_buffer(agent, 32)
        agent.cleanup()
        agent.cleanup()

        assert agent.is_disposed
        assert agent.q_network is None
        assert len(agent.replay_buffer) == 0
        assert agent.replay_buffer.states.size == 0
        assert asyncio.run(agent.train()) is None
        agent.sync_target()

        with pytest.raises(AgentDisposedError) as excinfo:
            agent.act(np.zeros(10, dtype=np.float32))
        assert 'disposed' in str(excinfo.value)
        assert is_disposed_error(excinfo.value)

    def test_reset_concurrency_metrics(self, agent_config):
        agent = DQNAgent(agent_config)
        fill_buffer(agent, 32)
        asyncio.run(agent.train())
        agent.reset_concurrency_metrics()
        metrics = agent.get_concurrency_metrics()
        assert metrics['total_training_calls'] == 0
        assert metrics['blocking_rate'] == 0.0
        assert metrics['last_loss'] is None
