"""
Contextual bandit game used for smoke tests and the CLI demo.

Every player sees a fixed-size observation and emits one discrete action
followed by ``num_continuous`` continuous actions. Switching the discrete
action on earns ``+1`` per step, anything else earns ``0``. Continuous
actions are ignored by the reward. An episode lasts ``episode_length`` steps.
"""

import random
from typing import List, Optional, Sequence

from .base import Action, ActionKind, ActionSpace, EnvState, GameEnvironment


class BanditEnvironment(GameEnvironment):
    """Deterministic-reward bandit with mixed action spaces."""

    def __init__(
        self,
        num_players: int = 1,
        observation_size: int = 4,
        num_continuous: int = 1,
        episode_length: int = 8,
        reward_on: float = 1.0,
        seed: Optional[int] = None,
    ):
        if num_players <= 0:
            raise ValueError("num_players must be positive")
        if observation_size <= 0:
            raise ValueError("observation_size must be positive")
        if episode_length <= 0:
            raise ValueError("episode_length must be positive")

        self.num_players = num_players
        self.observation_size = observation_size
        self.num_continuous = num_continuous
        self.episode_length = episode_length
        self.reward_on = reward_on
        self.rng = random.Random(seed)

        self.current_step = 0
        self.total_rewards = [0.0] * num_players

    def _observe(self) -> List[List[float]]:
        # Observation carries episode progress plus noise so the policy input varies
        progress = self.current_step / self.episode_length
        return [
            [progress]
            + [self.rng.uniform(-1.0, 1.0) for _ in range(self.observation_size - 1)]
            for _ in range(self.num_players)
        ]

    def reset(self) -> EnvState:
        self.current_step = 0
        self.total_rewards = [0.0] * self.num_players
        return EnvState(
            observations=self._observe(),
            rewards=[0.0] * self.num_players,
            done=False,
        )

    def step(self, actions: Sequence[Action], dt: float) -> EnvState:
        if len(actions) != self.num_players:
            raise ValueError(
                f"Expected {self.num_players} actions, got {len(actions)}"
            )

        rewards = [
            self.reward_on if action[0] >= 0.5 else 0.0 for action in actions
        ]
        for player, reward in enumerate(rewards):
            self.total_rewards[player] += reward

        self.current_step += 1
        done = self.current_step >= self.episode_length

        outcome = None
        if done:
            best = max(self.total_rewards)
            winners = [r == best for r in self.total_rewards]
            if all(winners):
                outcome = ["tie"] * self.num_players
            else:
                outcome = ["win" if w else "loss" for w in winners]

        return EnvState(
            observations=self._observe(),
            rewards=rewards,
            done=done,
            outcome=outcome,
        )

    def get_num_players(self) -> int:
        return self.num_players

    def get_observation_size(self) -> int:
        return self.observation_size

    def get_action_size(self) -> int:
        return 1 + self.num_continuous

    def get_action_spaces(self) -> List[ActionSpace]:
        spaces = [ActionSpace(0, ActionKind.DISCRETE)]
        spaces.extend(
            ActionSpace(i + 1, ActionKind.CONTINUOUS) for i in range(self.num_continuous)
        )
        return spaces
