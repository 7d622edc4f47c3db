"""
Tests for demonstration recording, storage and behaviour cloning.
"""

import asyncio
import math

import pytest
import torch

from mimicrl.envs.base import ActionKind, ActionSpace
from mimicrl.errors import ConfigurationError, ShapeMismatch
from mimicrl.policy import NetworkArchitecture, PolicyAgent
from mimicrl.training.bc import (BCConfig, BCTrainer, DemonstrationCollector,
                                 DemonstrationDataset, DemonstrationEpisode,
                                 DemonstrationStep, DemonstrationStorage)

SPACES = [ActionSpace(0, ActionKind.DISCRETE), ActionSpace(1, ActionKind.CONTINUOUS)]


def make_agent(seed=0):
    torch.manual_seed(seed)
    return PolicyAgent(
        observation_size=2,
        action_size=2,
        action_spaces=SPACES,
        architecture=NetworkArchitecture(hidden_layers=(16,)),
        seed=seed,
    )


def expert_dataset(num_episodes=8, length=16) -> DemonstrationDataset:
    """Expert presses the button when obs[0] > 0 and steers to 2 * obs[1]."""
    generator = torch.Generator().manual_seed(0)
    episodes = []
    for index in range(num_episodes):
        episode = DemonstrationEpisode(id=f"ep{index}")
        for _ in range(length):
            observation = (torch.rand(2, generator=generator) * 2 - 1).tolist()
            action = [1.0 if observation[0] > 0 else 0.0, 2.0 * observation[1]]
            episode.steps.append(DemonstrationStep(observation, action))
        episodes.append(episode)
    return DemonstrationDataset(
        episodes=episodes, observation_size=2, action_size=2, action_spaces=list(SPACES)
    )


class TestDemonstrationCollector:
    """Test DemonstrationCollector."""

    def test_ignores_steps_when_not_recording(self):
        collector = DemonstrationCollector()
        collector.record_step([0.0], [1.0])
        assert not collector.is_recording
        assert collector.episodes() == []

    def test_records_episode(self):
        collector = DemonstrationCollector()
        collector.start_episode("level-1", metadata={"player": 0})
        collector.record_step([0.1], [1.0])
        collector.record_step([0.2], [0.0], metadata={"note": "x"})
        episode = collector.end_episode(metadata={"outcome": "win"})

        assert not collector.is_recording
        assert episode.id == "level-1"
        assert [s.metadata["step_index"] for s in episode.steps] == [0, 1]
        assert episode.steps[1].metadata["note"] == "x"
        assert episode.metadata["player"] == 0
        assert episode.metadata["outcome"] == "win"
        assert episode.metadata["duration"] >= 0.0
        assert collector.episodes() == [episode]

    def test_auto_record(self):
        collector = DemonstrationCollector(auto_record=True)
        collector.record_step([0.0], [1.0])
        assert collector.is_recording
        assert collector.current_episode.id == "auto_1"

    def test_start_closes_open_episode(self):
        collector = DemonstrationCollector()
        collector.start_episode("a")
        collector.record_step([0.0], [1.0])
        collector.start_episode("b")
        assert [e.id for e in collector.episodes()] == ["a"]

    def test_long_episode_flushes(self):
        collector = DemonstrationCollector(max_buffer_size=3)
        collector.start_episode("long")
        for step in range(7):
            collector.record_step([float(step)], [1.0])
        collector.end_episode()

        episodes = collector.episodes()
        assert [len(e.steps) for e in episodes] == [3, 3, 1]
        assert all(e.id == "long" for e in episodes)

    def test_discard_and_clear(self):
        collector = DemonstrationCollector()
        collector.start_episode("a")
        collector.record_step([0.0], [1.0])
        collector.discard_episode()
        assert collector.end_episode() is None

        collector.start_episode("b")
        collector.end_episode()
        collector.clear_episodes()
        assert collector.episodes() == []

    def test_validation(self):
        with pytest.raises(ValueError):
            DemonstrationCollector(max_buffer_size=0)


class TestDemonstrationStorage:
    """Test JSON persistence."""

    def test_save_and_load(self, tmp_path):
        storage = DemonstrationStorage(tmp_path)
        dataset = storage.create_dataset(
            expert_dataset(num_episodes=2, length=3).episodes,
            observation_size=2,
            action_size=2,
            action_spaces=SPACES,
        )
        storage.save_dataset("expert", dataset)

        loaded = storage.load_dataset("expert")
        assert loaded.total_steps == 6
        assert loaded.observation_size == 2
        assert loaded.action_spaces == SPACES
        assert loaded.episodes[0].steps[0].observation == pytest.approx(
            dataset.episodes[0].steps[0].observation
        )
        assert loaded.to_dict()["metadata"]["total_steps"] == 6

    def test_list_delete_and_size(self, tmp_path):
        storage = DemonstrationStorage(tmp_path)
        assert storage.storage_size() == 0
        storage.save_dataset("b", storage.create_dataset())
        storage.save_dataset("a", storage.create_dataset())

        assert storage.list_datasets() == ["a", "b"]
        assert storage.storage_size() > 0
        assert storage.delete_dataset("a") is True
        assert storage.delete_dataset("a") is False
        assert storage.list_datasets() == ["b"]

    def test_missing_dataset(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            DemonstrationStorage(tmp_path).load_dataset("absent")

    def test_invalid_name(self, tmp_path):
        with pytest.raises(ValueError):
            DemonstrationStorage(tmp_path).save_dataset("../escape", DemonstrationDataset([]))


class TestBCConfig:
    def test_defaults(self):
        config = BCConfig()
        assert config.learning_rate == 1e-3
        assert config.batch_size == 32
        assert config.loss_type == "mixed"
        assert config.validation_split == 0.2

    @pytest.mark.parametrize(
        "overrides",
        [
            {"learning_rate": 0},
            {"batch_size": 0},
            {"epochs": 0},
            {"loss_type": "huber"},
            {"validation_split": 1.0},
            {"gradient_clipping": 0},
        ],
    )
    def test_validation(self, overrides):
        with pytest.raises(ConfigurationError):
            BCConfig(**overrides)


class TestBCTrainer:
    """Test BCTrainer."""

    def test_loss_decreases(self):
        agent = make_agent()
        trainer = BCTrainer(BCConfig(epochs=15, batch_size=16, learning_rate=1e-2, seed=0))
        history = []

        stats = asyncio.run(
            trainer.train(
                expert_dataset(),
                agent,
                on_progress=lambda epoch, train, val: history.append(train),
            )
        )

        assert stats.epochs_completed == 15
        assert len(history) == 15
        assert history[-1] < history[0]
        assert stats.val_loss is not None
        assert stats.num_train_samples + stats.num_val_samples == 128
        assert stats.num_val_samples == 25

    def test_only_policy_network_moves(self):
        agent = make_agent()
        value_before = {k: v.clone() for k, v in agent.value_network.state_dict().items()}
        log_std_before = agent.log_std.detach().clone()
        policy_before = agent.policy_network[0].weight.detach().clone()

        asyncio.run(BCTrainer(BCConfig(epochs=2, seed=0)).train(expert_dataset(2, 8), agent))

        value_after = agent.value_network.state_dict()
        assert all(torch.equal(value_before[k], value_after[k]) for k in value_before)
        assert torch.equal(log_std_before, agent.log_std.detach())
        assert not torch.equal(policy_before, agent.policy_network[0].weight.detach())

    def test_learns_discrete_rule(self):
        agent = make_agent()
        config = BCConfig(epochs=40, batch_size=16, learning_rate=1e-2, validation_split=0.0, seed=0)
        asyncio.run(BCTrainer(config).train(expert_dataset(), agent))

        probs = agent.discrete_probabilities([[0.8, 0.0], [-0.8, 0.0]]).squeeze(-1)
        assert probs[0].item() > 0.8
        assert probs[1].item() < 0.2

    @pytest.mark.parametrize("loss_type", ["mse", "crossentropy"])
    def test_other_loss_types(self, loss_type):
        agent = make_agent()
        config = BCConfig(epochs=1, loss_type=loss_type, seed=0)
        stats = asyncio.run(BCTrainer(config).train(expert_dataset(2, 8), agent))
        assert stats.epochs_completed == 1
        assert math.isfinite(stats.train_loss)

    def test_empty_dataset_is_noop(self):
        agent = make_agent()
        stats = asyncio.run(BCTrainer().train(DemonstrationDataset([]), agent))
        assert stats.epochs_completed == 0
        assert stats.train_loss == 0.0

    def test_shape_mismatch(self):
        agent = make_agent()
        dataset = DemonstrationDataset(
            [DemonstrationEpisode("bad", [DemonstrationStep([0.0, 0.0, 0.0], [1.0, 0.0])])]
        )
        with pytest.raises(ShapeMismatch):
            asyncio.run(BCTrainer().train(dataset, agent))

    def test_cancel_via_yield_point(self):
        agent = make_agent()

        async def stop_now():
            return False

        config = BCConfig(epochs=5, batch_size=8, yield_every_batches=1, seed=0)
        stats = asyncio.run(BCTrainer(config).train(expert_dataset(2, 8), agent, yield_point=stop_now))
        assert stats.cancelled
        assert stats.epochs_completed == 1
