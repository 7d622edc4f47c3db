from .bandit import BanditEnvironment
from .base import ActionKind, ActionSpace, EnvState, GameEnvironment

__all__ = [
    "ActionKind",
    "ActionSpace",
    "EnvState",
    "GameEnvironment",
    "BanditEnvironment",
]
