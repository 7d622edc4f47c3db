"""
PPO trainer for a single policy agent.

Each trainable player owns one trainer. The trainer holds the optimizer
state and the shuffling generator but never a copy of the agent's
parameters; every update is applied to the agent in place.
"""

import time
from typing import Iterable, Optional

import torch
import torch.optim as optim

from ...logger import logger
from ...policy.agent import PolicyAgent
from .config import PPOConfig
from .rollout_buffer import RolloutBuffer, Trajectory
from .scheduler import YieldPoint
from .update_policy import UpdateStats, update_policy


class PPOTrainer:
    """Clipped-objective PPO over closed batches of trajectories."""

    def __init__(
        self,
        agent: PolicyAgent,
        config: PPOConfig,
        player_index: Optional[int] = None,
    ):
        """Initialize PPO trainer.

        Args:
            agent: Agent whose parameters this trainer updates
            config: PPO hyperparameters
            player_index: Player seat, used for logging only
        """
        self.agent = agent
        self.config = config
        self.player_index = player_index
        self.logger = logger.bind(
            component="ppo_trainer", player="" if player_index is None else player_index
        )

        self.optimizer = self._create_optimizer()

        self.generator = torch.Generator()
        if config.seed is None:
            self.generator.seed()
        else:
            self.generator.manual_seed(config.seed)

        self.total_updates = 0
        self.last_stats = UpdateStats()

    def _create_optimizer(self) -> optim.Optimizer:
        """Create optimizer over policy, value and log-std parameters."""
        parameters = [p for p in self.agent.parameters() if p.requires_grad]
        return optim.AdamW(
            parameters,
            lr=self.config.learning_rate,
            weight_decay=self.config.weight_decay,
        )

    def build_buffer(self, trajectories: Iterable[Trajectory]) -> RolloutBuffer:
        """Load trajectories and compute advantages and returns."""
        buffer = RolloutBuffer(self.agent.observation_size, self.agent.action_size)
        for trajectory in trajectories:
            buffer.add_trajectory(trajectory)
        if len(buffer) > 0:
            buffer.compute_advantages_and_returns(
                discount_factor=self.config.discount_factor,
                gae_lambda=self.config.gae_lambda,
                normalize=self.config.normalize_advantages,
            )
        return buffer

    async def train(
        self,
        trajectories: Iterable[Trajectory],
        yield_point: Optional[YieldPoint] = None,
    ) -> UpdateStats:
        """Run one PPO update over ``trajectories``.

        Returns zero-valued diagnostics when there is nothing to learn from.

        Raises:
            ShapeMismatch: a transition does not match the agent's sizes
        """
        buffer = self.build_buffer(trajectories)
        if len(buffer) == 0:
            self.logger.warning("No transitions collected, skipping update")
            self.last_stats = UpdateStats()
            return self.last_stats

        update_start = time.time()
        stats = await update_policy(
            agent=self.agent,
            optimizer=self.optimizer,
            buffer=buffer,
            config=self.config,
            generator=self.generator,
            yield_point=yield_point,
            player_index=self.player_index,
        )
        self.total_updates += stats.num_updates
        self.last_stats = stats

        self.logger.debug(
            f"Update on {stats.num_transitions} transitions in {time.time() - update_start:.2f}s: "
            f"policy_loss={stats.policy_loss:.4f} value_loss={stats.value_loss:.4f} "
            f"entropy={stats.entropy:.4f} kl={stats.kl_divergence:.6f} "
            f"clip_fraction={stats.clip_fraction:.3f}"
        )
        return stats
