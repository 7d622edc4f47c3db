"""
Policy components: action distributions, the actor-critic agent and controllers.
"""

from .action_space import ActionSpaceModel
from .agent import PolicyAgent
from .controllers import (PlayerController, PolicyController, RandomController,
                          ScriptedController)
from .data_types import ActOutput, Evaluation
from .networks import NetworkArchitecture

__all__ = [
    "ActionSpaceModel",
    "PolicyAgent",
    "ActOutput",
    "Evaluation",
    "NetworkArchitecture",
    "PlayerController",
    "PolicyController",
    "RandomController",
    "ScriptedController",
]
