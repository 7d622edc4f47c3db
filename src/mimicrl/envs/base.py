"""
Environment contract consumed by the training engine.

The engine never looks inside an environment. It resets it, steps it with
one action vector per player and reads back observations, rewards and the
terminal flag.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional, Sequence

Observation = List[float]
Action = List[float]


class ActionKind(Enum):
    """How a single action index is interpreted."""

    DISCRETE = "discrete"
    CONTINUOUS = "continuous"


@dataclass(frozen=True)
class ActionSpace:
    """Descriptor for one index of the action vector."""

    index: int
    kind: ActionKind

    @property
    def is_discrete(self) -> bool:
        return self.kind is ActionKind.DISCRETE

    def to_dict(self) -> dict:
        return {"index": self.index, "kind": self.kind.value}

    @classmethod
    def from_dict(cls, data: dict) -> "ActionSpace":
        return cls(index=int(data["index"]), kind=ActionKind(data["kind"]))


@dataclass
class EnvState:
    """Result of ``reset`` or ``step``.

    Attributes:
        observations: One observation per player
        rewards: One reward per player (zeros after reset)
        done: Whether the episode has terminated
        outcome: Optional per-player result ("win", "loss", "tie")
    """

    observations: List[Observation]
    rewards: List[float] = field(default_factory=list)
    done: bool = False
    outcome: Optional[List[str]] = None


class GameEnvironment(ABC):
    """Interface every simulated game implements."""

    @abstractmethod
    def reset(self) -> EnvState:
        """Start a new episode."""

    @abstractmethod
    def step(self, actions: Sequence[Action], dt: float) -> EnvState:
        """Advance the simulation with one action per player."""

    @abstractmethod
    def get_num_players(self) -> int:
        pass

    @abstractmethod
    def get_observation_size(self) -> int:
        pass

    @abstractmethod
    def get_action_size(self) -> int:
        pass

    @abstractmethod
    def get_action_spaces(self) -> List[ActionSpace]:
        pass
