"""
Tests for the clipped objective, the update loop and PPOTrainer.
"""

import asyncio

import pytest
import torch

from mimicrl.envs.base import ActionKind, ActionSpace
from mimicrl.errors import ShapeMismatch
from mimicrl.policy import NetworkArchitecture, PolicyAgent
from mimicrl.training.ppo.config import PPOConfig
from mimicrl.training.ppo.ppo_trainer import PPOTrainer
from mimicrl.training.ppo.rollout_buffer import Trajectory, Transition
from mimicrl.training.ppo.update_policy import (UpdateStats, clipped_surrogate,
                                               compute_losses)


def make_agent(seed=0) -> PolicyAgent:
    torch.manual_seed(seed)
    return PolicyAgent(
        observation_size=3,
        action_size=2,
        action_spaces=[ActionSpace(0, ActionKind.DISCRETE), ActionSpace(1, ActionKind.CONTINUOUS)],
        architecture=NetworkArchitecture(hidden_layers=(16,)),
        seed=seed,
    )


def collect_trajectories(agent, player=0, episodes=4, length=6):
    """Roll the agent on random observations; reward 1 when the discrete action is on."""
    generator = torch.Generator().manual_seed(42)
    trajectories = []
    for episode in range(episodes):
        trajectory = Trajectory(player_index=player, episode_id=f"e{episode}")
        for step in range(length):
            observation = torch.randn(3, generator=generator).tolist()
            output = agent.act(observation)
            trajectory.append(
                Transition(
                    observation=observation,
                    action=output.action,
                    log_prob=output.log_prob,
                    value=output.value,
                    reward=1.0 if output.action[0] >= 0.5 else 0.0,
                    done=step == length - 1,
                    player_index=player,
                )
            )
        trajectories.append(trajectory)
    return trajectories


def snapshot(agent):
    return {name: tensor.clone() for name, tensor in agent.state_dict().items()}


class TestClippedSurrogate:
    """Clip invariance of the surrogate objective."""

    @pytest.mark.parametrize("advantage", [-2.0, 1.5])
    @pytest.mark.parametrize("clip", [0.1, 0.2])
    def test_surrogates_agree_at_bounds(self, advantage, clip):
        ratio = torch.tensor([1.0 - clip, 1.0 + clip], dtype=torch.float64)
        advantages = torch.full_like(ratio, advantage)

        surrogate1 = ratio * advantages
        surrogate2 = torch.clamp(ratio, 1.0 - clip, 1.0 + clip) * advantages
        assert torch.allclose(surrogate1, surrogate2)
        assert torch.allclose(clipped_surrogate(ratio, advantages, clip), surrogate1)

    def test_flat_beyond_upper_bound_for_positive_advantage(self):
        clip = 0.2
        advantages = torch.tensor([1.0, 1.0, 1.0])
        ratio = torch.tensor([1.2, 1.5, 3.0])
        objective = clipped_surrogate(ratio, advantages, clip)
        assert torch.allclose(objective, torch.full((3,), 1.2))

    def test_flat_beyond_lower_bound_for_negative_advantage(self):
        clip = 0.2
        advantages = torch.tensor([-1.0, -1.0, -1.0])
        ratio = torch.tensor([0.8, 0.5, 0.1])
        objective = clipped_surrogate(ratio, advantages, clip)
        assert torch.allclose(objective, torch.full((3,), -0.8))

    def test_pessimistic_side_is_not_clipped(self):
        """Moves that hurt the objective are never clipped away."""
        clip = 0.2
        objective = clipped_surrogate(torch.tensor([3.0]), torch.tensor([-1.0]), clip)
        assert objective.item() == pytest.approx(-3.0)

    def test_no_gradient_outside_band(self):
        ratio = torch.tensor([1.5], requires_grad=True)
        clipped_surrogate(ratio, torch.tensor([1.0]), 0.2).sum().backward()
        assert ratio.grad.item() == 0.0


class TestComputeLosses:
    def test_fresh_batch_has_unit_ratio(self):
        """Right after collection the ratio is 1: no clipping and ~zero KL."""
        agent = make_agent()
        trajectories = collect_trajectories(agent)
        trainer = PPOTrainer(agent, PPOConfig(seed=0))
        buffer = trainer.build_buffer(trajectories)

        batch = buffer.gather(torch.arange(len(buffer)), agent.device)
        losses = compute_losses(agent, batch, trainer.config)

        assert losses["clip_fraction"].item() == 0.0
        assert losses["kl_divergence"].item() == pytest.approx(0.0, abs=1e-5)
        # With normalized advantages and ratio 1 the policy loss is ~ -mean(A) = 0
        assert losses["policy_loss"].item() == pytest.approx(0.0, abs=1e-5)
        expected_total = (
            losses["policy_loss"]
            + trainer.config.value_loss_coeff * losses["value_loss"]
            - trainer.config.entropy_coeff * losses["entropy"]
        )
        assert losses["total_loss"].item() == pytest.approx(expected_total.item(), rel=1e-6)


class TestPPOTrainer:
    """Test PPOTrainer.train."""

    def test_empty_pool_is_noop(self):
        agent = make_agent()
        before = snapshot(agent)
        trainer = PPOTrainer(agent, PPOConfig(seed=0))

        stats = asyncio.run(trainer.train([]))
        assert stats == UpdateStats()
        assert stats.policy_loss == 0.0
        assert stats.clip_fraction == 0.0
        assert all(torch.equal(before[k], v) for k, v in agent.state_dict().items())

    def test_empty_trajectories_are_noop(self):
        agent = make_agent()
        trainer = PPOTrainer(agent, PPOConfig(seed=0))
        stats = asyncio.run(trainer.train([Trajectory(player_index=0, episode_id="x")]))
        assert stats.num_updates == 0

    def test_shape_mismatch(self):
        agent = make_agent()
        trainer = PPOTrainer(agent, PPOConfig(seed=0))
        bad = Trajectory(player_index=0, episode_id="bad")
        bad.append(Transition([0.0] * 5, [1.0, 0.0], -0.5, 0.0, 1.0, True, 0))

        with pytest.raises(ShapeMismatch):
            asyncio.run(trainer.train([bad]))

    def test_update_counts_and_diagnostics(self):
        agent = make_agent()
        trajectories = collect_trajectories(agent, episodes=4, length=6)  # 24 transitions
        config = PPOConfig(epochs=3, mini_batch_size=10, seed=1)
        trainer = PPOTrainer(agent, config)

        stats = asyncio.run(trainer.train(trajectories))
        assert stats.num_transitions == 24
        assert stats.num_updates == 3 * 3
        assert trainer.total_updates == 9
        assert 0.0 <= stats.clip_fraction <= 1.0
        assert stats.value_loss > 0.0
        assert stats.entropy > 0.0

    def test_parameters_move_in_place(self):
        agent = make_agent()
        trajectories = collect_trajectories(agent)
        before = snapshot(agent)
        log_std_param = agent.log_std

        asyncio.run(PPOTrainer(agent, PPOConfig(learning_rate=1e-2, seed=0)).train(trajectories))

        after = agent.state_dict()
        assert agent.log_std is log_std_param
        assert not torch.equal(before["log_std"], after["log_std"])
        assert not torch.equal(before["policy_network.0.weight"], after["policy_network.0.weight"])
        assert not torch.equal(before["value_network.0.weight"], after["value_network.0.weight"])

    def test_trajectories_decorated_not_reordered(self):
        agent = make_agent()
        trajectories = collect_trajectories(agent, episodes=2, length=3)
        original = [[t.observation for t in traj.transitions] for traj in trajectories]

        asyncio.run(PPOTrainer(agent, PPOConfig(seed=0)).train(trajectories))

        assert [[t.observation for t in traj.transitions] for traj in trajectories] == original
        assert all(
            t.advantage is not None and t.returns is not None
            for traj in trajectories
            for t in traj.transitions
        )

    def test_seeded_training_is_reproducible(self):
        results = []
        for _ in range(2):
            agent = make_agent(seed=3)
            trajectories = collect_trajectories(agent)
            asyncio.run(PPOTrainer(agent, PPOConfig(seed=5)).train(trajectories))
            results.append(snapshot(agent))

        assert all(torch.equal(results[0][k], results[1][k]) for k in results[0])

    def test_yield_point_cadence_and_cancel(self):
        agent = make_agent()
        trajectories = collect_trajectories(agent, episodes=4, length=6)
        config = PPOConfig(epochs=4, mini_batch_size=4, yield_every_batches=2, seed=0)
        calls = []

        async def yield_point():
            calls.append(len(calls))
            return len(calls) < 3

        stats = asyncio.run(PPOTrainer(agent, config).train(trajectories, yield_point))
        # Cancelled on the third yield, after 6 mini-batches
        assert len(calls) == 3
        assert stats.num_updates == 6

    def test_players_do_not_share_parameters(self):
        """Training player 0's agent leaves player 1's agent untouched."""
        agent0 = make_agent(seed=0)
        agent1 = make_agent(seed=1)
        before = snapshot(agent1)

        trainer0 = PPOTrainer(agent0, PPOConfig(seed=0), player_index=0)
        PPOTrainer(agent1, PPOConfig(seed=1), player_index=1)
        asyncio.run(trainer0.train(collect_trajectories(agent0)))

        after = agent1.state_dict()
        assert all(torch.equal(before[k], after[k]) for k in before)
