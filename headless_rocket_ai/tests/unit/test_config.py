"""Unit tests for configuration loading and validation."""
import pytest
import yaml

from rocket_rl.config import (
    TrainingConfig, EnvironmentConfig, ConfigurationError,
    load_training_config, load_environment_config
)


@pytest.mark.unit
class TestTrainingConfig:
    """Test TrainingConfig defaults and validation."""

    def test_defaults(self):
        config = TrainingConfig()
        assert config.max_episodes == 1000
        assert config.epsilon_min == 0.1
        assert config.objectives == ['orbit', 'land', 'explore']
        assert config.checkpoint_slot == 'rocket-ai-model'

    @pytest.mark.parametrize("overrides", [
        {'evaluation_interval': 0},
        {'epsilon_decay': 0.0},
        {'epsilon_decay': 1.5},
        {'epsilon': 0.05, 'epsilon_min': 0.1},
        {'objectives': []},
        {'objectives': ['fly_to_mars']},
        {'batch_size': 128, 'replay_buffer_size': 64},
        {'learning_rate': 0.0},
    ])
    def test_invalid_values_rejected(self, overrides):
        with pytest.raises(ConfigurationError):
            TrainingConfig(**overrides)

    def test_merged_returns_new_config(self):
        base = TrainingConfig()
        merged = base.merged({'max_episodes': 10, 'objectives': ['navigate']})
        assert merged.max_episodes == 10
        assert merged.objectives == ['navigate']
        assert base.max_episodes == 1000

    def test_merged_validates(self):
        with pytest.raises(ConfigurationError):
            TrainingConfig().merged({'patience': -1})

    def test_unknown_keys_rejected(self):
        with pytest.raises(ConfigurationError):
            TrainingConfig().merged({'learning_rat': 0.01})
        with pytest.raises(ConfigurationError):
            TrainingConfig.from_dict({'tau': 0.005})

    def test_to_dict_round_trip(self):
        config = TrainingConfig(max_episodes=7)
        assert TrainingConfig.from_dict(config.to_dict()) == config

    def test_load_from_yaml(self, tmp_path):
        path = tmp_path / "training.yaml"
        path.write_text(yaml.dump({'training_params': {'max_episodes': 5, 'objectives': ['land']}}))

        config = load_training_config(str(path))
        assert config.max_episodes == 5
        assert config.objectives == ['land']

    def test_shipped_configs_load(self, project_root):
        training = load_training_config(str(project_root / "configs" / "training_params.yaml"))
        environment = load_environment_config(str(project_root / "configs" / "environment.yaml"))
        assert training == TrainingConfig()
        assert environment.rewards.navigation.success_distance == 5000.0
        assert environment.rewards.orbit.stability_steps == 100


@pytest.mark.unit
class TestEnvironmentConfig:
    """Test EnvironmentConfig parsing."""

    def test_nested_rewards_from_dict(self):
        config = EnvironmentConfig.from_dict({
            'max_steps_per_episode': 500,
            'rewards': {'crash_penalty': -50.0, 'orbit': {'stability_steps': 20}},
        })
        assert config.max_steps_per_episode == 500
        assert config.rewards.crash_penalty == -50.0
        assert config.rewards.orbit.stability_steps == 20
        assert config.rewards.orbit.min_altitude == 100.0

    def test_unknown_reward_key_rejected(self):
        with pytest.raises(ConfigurationError):
            EnvironmentConfig.from_dict({'rewards': {'bonus': 1.0}})

    def test_invalid_dt_rejected(self):
        with pytest.raises(ConfigurationError):
            EnvironmentConfig(dt=0.0)

    def test_missing_file_raises(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            load_environment_config(str(tmp_path / "missing.yaml"))
