"""
Tests for PPO and session configuration.
"""

import dataclasses

import pytest

from mimicrl.errors import ConfigurationError
from mimicrl.policy import NetworkArchitecture
from mimicrl.training.ppo.config import AlgorithmConfig, PPOConfig, SessionConfig


class TestPPOConfig:
    """Test PPOConfig data class."""

    def test_default_config(self):
        config = PPOConfig()
        assert config.learning_rate == 3e-4
        assert config.discount_factor == 0.99
        assert config.gae_lambda == 0.95
        assert config.clip_ratio == 0.2
        assert config.value_loss_coeff == 0.5
        assert config.entropy_coeff == 0.01
        assert config.epochs == 4
        assert config.mini_batch_size == 64
        assert config.max_grad_norm == 0.5
        assert config.normalize_advantages is True
        assert config.seed is None

    def test_immutable(self):
        config = PPOConfig()
        with pytest.raises(dataclasses.FrozenInstanceError):
            config.learning_rate = 1.0

    @pytest.mark.parametrize(
        "overrides",
        [
            {"learning_rate": 0},
            {"discount_factor": 1.5},
            {"gae_lambda": -0.1},
            {"clip_ratio": 0.0},
            {"clip_ratio": 1.0},
            {"value_loss_coeff": -1},
            {"entropy_coeff": -0.1},
            {"epochs": 0},
            {"mini_batch_size": 0},
            {"max_grad_norm": 0},
            {"weight_decay": -1},
            {"yield_every_batches": 0},
        ],
    )
    def test_validation(self, overrides):
        with pytest.raises(ConfigurationError):
            PPOConfig(**overrides)

    def test_configuration_error_is_value_error(self):
        with pytest.raises(ValueError):
            PPOConfig(epochs=-1)


class TestAlgorithmConfig:
    def test_only_ppo(self):
        assert AlgorithmConfig().type == "PPO"
        with pytest.raises(ConfigurationError, match="Unsupported"):
            AlgorithmConfig(type="DQN")


class TestSessionConfig:
    """Test SessionConfig data class."""

    def test_defaults(self):
        config = SessionConfig()
        assert config.trainable_players == (0,)
        assert config.max_games == 1000
        assert config.num_rollouts == 4
        assert config.auto_save_interval == 50
        assert config.target_games_per_iteration == 4
        assert isinstance(config.ppo, PPOConfig)

    def test_games_per_iteration_override(self):
        assert SessionConfig(num_rollouts=2, games_per_iteration=6).target_games_per_iteration == 6

    @pytest.mark.parametrize(
        "overrides",
        [
            {"trainable_players": ()},
            {"trainable_players": (0, 0)},
            {"trainable_players": (-1,)},
            {"max_games": 0},
            {"num_rollouts": 0},
            {"games_per_iteration": 0},
            {"max_steps_per_game": 0},
            {"max_transitions_per_iteration": 0},
            {"time_delta": 0},
            {"auto_save_interval": -1},
            {"max_iterations": 0},
            {"device": "tpu"},
        ],
    )
    def test_validation(self, overrides):
        with pytest.raises(ConfigurationError):
            SessionConfig(**overrides)


class TestSessionConfigFromDict:
    """Test SessionConfig.from_dict."""

    def test_camel_case_options(self):
        config = SessionConfig.from_dict(
            {
                "trainablePlayers": [0, 1],
                "maxGames": 200,
                "numRollouts": 2,
                "autoSaveInterval": 10,
                "algorithm": {
                    "type": "PPO",
                    "hyperparameters": {
                        "learningRate": 1e-3,
                        "clipRatio": 0.1,
                        "valueLossCoeff": 0.25,
                        "entropyCoeff": 0.0,
                        "gaeLambda": 0.9,
                        "epochs": 2,
                        "miniBatchSize": 16,
                    },
                },
                "networkArchitecture": {"hiddenLayers": [32, 32], "activation": "relu"},
            }
        )

        assert config.trainable_players == (0, 1)
        assert config.max_games == 200
        assert config.num_rollouts == 2
        assert config.auto_save_interval == 10
        assert config.ppo.learning_rate == 1e-3
        assert config.ppo.clip_ratio == 0.1
        assert config.ppo.value_loss_coeff == 0.25
        assert config.ppo.entropy_coeff == 0.0
        assert config.ppo.gae_lambda == 0.9
        assert config.ppo.epochs == 2
        assert config.ppo.mini_batch_size == 16
        assert config.network_architecture == NetworkArchitecture(
            hidden_layers=(32, 32), activation="relu"
        )

    def test_snake_case_options(self):
        config = SessionConfig.from_dict({"max_games": 5, "time_delta": 0.5})
        assert config.max_games == 5
        assert config.time_delta == 0.5

    def test_unspecified_options_default(self):
        config = SessionConfig.from_dict({"algorithm": {"hyperparameters": {"epochs": 7}}})
        assert config.ppo.epochs == 7
        assert config.ppo.mini_batch_size == 64
        assert config.algorithm.type == "PPO"

    @pytest.mark.parametrize(
        "options, where",
        [
            ({"maxGame": 5}, "session"),
            ({"algorithm": {"kind": "PPO"}}, "algorithm"),
            ({"algorithm": {"hyperparameters": {"learningRatee": 0.1}}}, "hyperparameters"),
            ({"networkArchitecture": {"layers": [4]}}, "networkArchitecture"),
        ],
    )
    def test_unknown_keys_rejected(self, options, where):
        with pytest.raises(ConfigurationError, match=where):
            SessionConfig.from_dict(options)

    def test_unsupported_algorithm(self):
        with pytest.raises(ConfigurationError):
            SessionConfig.from_dict({"algorithm": {"type": "A2C"}})

    def test_non_mapping(self):
        with pytest.raises(ConfigurationError):
            SessionConfig.from_dict({"algorithm": "PPO"})

    def test_invalid_values_surface_as_configuration_error(self):
        with pytest.raises(ConfigurationError):
            SessionConfig.from_dict({"algorithm": {"hyperparameters": {"clipRatio": 2.0}}})
