"""
Decision sources for each player seat.

The rollout collector asks every player's controller for an action once per
step. Only ``PolicyController`` seats can be trained, because only they
report the log-probability and value needed by PPO.
"""

import random
from abc import ABC, abstractmethod
from typing import Callable, List, Optional, Sequence

from ..envs.base import Action, ActionSpace, Observation
from .agent import PolicyAgent
from .data_types import ActOutput


class PlayerController(ABC):
    """Anything that maps an observation to an action synchronously."""

    @abstractmethod
    def decide(self, observation: Observation) -> Action:
        pass


class PolicyController(PlayerController):
    """Delegates decisions to a ``PolicyAgent``."""

    def __init__(self, agent: PolicyAgent):
        self.agent = agent

    def act(self, observation: Observation) -> ActOutput:
        return self.agent.act(observation)

    def decide(self, observation: Observation) -> Action:
        return self.act(observation).action


class RandomController(PlayerController):
    """Uniform coin flips for discrete indices, Gaussian noise for continuous ones."""

    def __init__(
        self,
        action_spaces: Sequence[ActionSpace],
        continuous_scale: float = 1.0,
        seed: Optional[int] = None,
    ):
        self.action_spaces = list(action_spaces)
        self.continuous_scale = continuous_scale
        self.rng = random.Random(seed)

    def decide(self, observation: Observation) -> Action:
        action = []
        for space in self.action_spaces:
            if space.is_discrete:
                action.append(float(self.rng.random() < 0.5))
            else:
                action.append(self.rng.gauss(0.0, self.continuous_scale))
        return action


class ScriptedController(PlayerController):
    """Wraps a plain function, e.g. a hand-written heuristic or a human input poll."""

    def __init__(self, decide_fn: Callable[[Observation], List[float]]):
        self.decide_fn = decide_fn

    def decide(self, observation: Observation) -> Action:
        return list(self.decide_fn(observation))
