"""
Rollout buffer for PPO training.

Stores per-player trajectories in time order and computes GAE advantages
for on-policy learning.
"""

from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Tuple

import numpy as np
import torch

from ...errors import ShapeMismatch


@dataclass
class Transition:
    """One decision point for one trainable player.

    ``advantage`` and ``returns`` are filled in by the buffer; nothing else
    is modified after collection.
    """

    observation: List[float]
    action: List[float]
    log_prob: float
    value: float
    reward: float
    done: bool
    player_index: int
    advantage: Optional[float] = None
    returns: Optional[float] = None


@dataclass
class Trajectory:
    """Time-ordered transitions of one player in one episode."""

    player_index: int
    episode_id: str
    transitions: List[Transition] = field(default_factory=list)
    truncated: bool = False
    bootstrap_value: float = 0.0  # V(s_T) for truncated trajectories
    outcome: Optional[str] = None

    def append(self, transition: Transition) -> None:
        if transition.player_index != self.player_index:
            raise ValueError(
                f"Transition for player {transition.player_index} appended to "
                f"trajectory of player {self.player_index}"
            )
        self.transitions.append(transition)

    def truncate(self, bootstrap_value: float) -> None:
        self.truncated = True
        self.bootstrap_value = float(bootstrap_value)

    @property
    def total_reward(self) -> float:
        return float(sum(t.reward for t in self.transitions))

    def __len__(self) -> int:
        return len(self.transitions)


def compute_gae(
    rewards: Iterable[float],
    values: Iterable[float],
    dones: Iterable[bool],
    bootstrap_value: float,
    discount_factor: float,
    gae_lambda: float,
) -> Tuple[np.ndarray, np.ndarray]:
    """Generalized Advantage Estimation over one trajectory.

    Walks backwards from the last step. ``bootstrap_value`` stands in for
    V(s_T) after the final step; it only contributes when the final step is
    not terminal.

    Returns:
        (advantages, returns), both [T]
    """
    rewards = np.asarray(list(rewards), dtype=np.float64)
    values = np.asarray(list(values), dtype=np.float64)
    dones = np.asarray(list(dones), dtype=np.float64)

    steps = len(rewards)
    advantages = np.zeros(steps, dtype=np.float64)
    gae = 0.0

    for step in reversed(range(steps)):
        next_value = bootstrap_value if step == steps - 1 else values[step + 1]
        next_non_terminal = 1.0 - dones[step]

        # Compute TD error: δ = r + γ * V(s') - V(s)
        delta = (
            rewards[step]
            + discount_factor * next_value * next_non_terminal
            - values[step]
        )

        # Update GAE: A = δ + γ * λ * next_non_terminal * A_next
        gae = delta + discount_factor * gae_lambda * next_non_terminal * gae
        advantages[step] = gae

    # Compute returns: R = A + V
    return advantages, advantages + values


def normalize_advantages(advantages: torch.Tensor) -> torch.Tensor:
    """Zero mean, unit variance. Degenerate inputs come back unchanged."""
    if advantages.numel() <= 1:
        return advantages
    std = advantages.std()
    if std <= 1e-8:
        return advantages - advantages.mean()
    return (advantages - advantages.mean()) / std


class RolloutBuffer:
    """Closed snapshot of trajectories for one agent's training call."""

    def __init__(self, observation_size: int, action_size: int):
        self.observation_size = observation_size
        self.action_size = action_size
        self.trajectories: List[Trajectory] = []

        self.observations: Optional[torch.Tensor] = None
        self.actions: Optional[torch.Tensor] = None
        self.log_probs: Optional[torch.Tensor] = None
        self.values: Optional[torch.Tensor] = None
        self.advantages: Optional[torch.Tensor] = None
        self.returns: Optional[torch.Tensor] = None

    def add_trajectory(self, trajectory: Trajectory) -> None:
        for transition in trajectory.transitions:
            if len(transition.observation) != self.observation_size:
                raise ShapeMismatch(
                    "observation", self.observation_size, len(transition.observation)
                )
            if len(transition.action) != self.action_size:
                raise ShapeMismatch("action", self.action_size, len(transition.action))
        if len(trajectory) > 0:
            self.trajectories.append(trajectory)

    def __len__(self) -> int:
        return sum(len(t) for t in self.trajectories)

    def compute_advantages_and_returns(
        self,
        discount_factor: float,
        gae_lambda: float,
        normalize: bool = True,
    ) -> None:
        """Run GAE per trajectory, then stack everything into flat tensors."""
        all_advantages = []
        all_returns = []

        for trajectory in self.trajectories:
            transitions = trajectory.transitions
            advantages, returns = compute_gae(
                rewards=[t.reward for t in transitions],
                values=[t.value for t in transitions],
                dones=[t.done for t in transitions],
                bootstrap_value=trajectory.bootstrap_value if trajectory.truncated else 0.0,
                discount_factor=discount_factor,
                gae_lambda=gae_lambda,
            )
            for transition, advantage, ret in zip(transitions, advantages, returns):
                transition.advantage = float(advantage)
                transition.returns = float(ret)
            all_advantages.append(advantages)
            all_returns.append(returns)

        flat = [t for trajectory in self.trajectories for t in trajectory.transitions]
        self.observations = torch.tensor(
            [t.observation for t in flat], dtype=torch.float32
        ).reshape(len(flat), self.observation_size)
        self.actions = torch.tensor(
            [t.action for t in flat], dtype=torch.float32
        ).reshape(len(flat), self.action_size)
        self.log_probs = torch.tensor([t.log_prob for t in flat], dtype=torch.float32)
        self.values = torch.tensor([t.value for t in flat], dtype=torch.float32)

        if flat:
            advantages = torch.from_numpy(np.concatenate(all_advantages)).float()
            self.returns = torch.from_numpy(np.concatenate(all_returns)).float()
        else:
            advantages = torch.zeros(0)
            self.returns = torch.zeros(0)

        self.advantages = normalize_advantages(advantages) if normalize else advantages

    def get_batch_indices(
        self, batch_size: int, generator: Optional[torch.Generator] = None
    ) -> List[torch.Tensor]:
        """Shuffled, non-overlapping index chunks covering the whole buffer."""
        total = len(self)
        indices = torch.randperm(total, generator=generator)
        return [indices[start : start + batch_size] for start in range(0, total, batch_size)]

    def gather(self, indices: torch.Tensor, device: torch.device) -> Dict[str, torch.Tensor]:
        if self.advantages is None:
            raise RuntimeError("compute_advantages_and_returns must run before gather")
        return {
            "observations": self.observations[indices].to(device),
            "actions": self.actions[indices].to(device),
            "log_probs": self.log_probs[indices].to(device),
            "values": self.values[indices].to(device),
            "advantages": self.advantages[indices].to(device),
            "returns": self.returns[indices].to(device),
        }

    def get_episode_stats(self) -> Dict[str, float]:
        """Reward and length statistics over the stored trajectories."""
        if len(self.trajectories) == 0:
            return {
                "mean_episode_reward": 0.0,
                "mean_episode_length": 0.0,
                "num_episodes": 0,
            }

        return {
            "mean_episode_reward": float(np.mean([t.total_reward for t in self.trajectories])),
            "mean_episode_length": float(np.mean([len(t) for t in self.trajectories])),
            "num_episodes": len(self.trajectories),
        }
