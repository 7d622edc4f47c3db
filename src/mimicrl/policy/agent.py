"""
Trainable stochastic policy with a value baseline.

The agent owns three parameter groups: the policy network (observation ->
one parameter per action index), the value network (observation -> scalar)
and a log standard deviation per continuous action index that does not
depend on the observation.
"""

from typing import Any, Dict, Optional, Sequence, Union

import torch
import torch.nn as nn

from ..envs.base import ActionSpace
from ..errors import ConfigurationError, ShapeMismatch
from .action_space import ActionSpaceModel
from .data_types import ActOutput, Evaluation
from .networks import NetworkArchitecture, build_mlp

ArrayLike = Union[Sequence[float], Sequence[Sequence[float]], torch.Tensor]


class PolicyAgent(nn.Module):
    """Actor-critic agent over a mixed action space.

    Args:
        observation_size: Length of every observation
        action_size: Length of every action
        action_spaces: One descriptor per action index
        architecture: Hidden layout shared by policy and value networks
        seed: Seed for action sampling (None draws a non-deterministic seed)
        device: Torch device for parameters and sampling
    """

    def __init__(
        self,
        observation_size: int,
        action_size: int,
        action_spaces: Sequence[ActionSpace],
        architecture: Optional[NetworkArchitecture] = None,
        seed: Optional[int] = None,
        device: Union[str, torch.device] = "cpu",
    ):
        super().__init__()

        if observation_size <= 0:
            raise ConfigurationError("observation_size must be positive")
        if action_size <= 0:
            raise ConfigurationError("action_size must be positive")
        if len(action_spaces) != action_size:
            raise ConfigurationError(
                f"action_spaces has {len(action_spaces)} entries but action_size is {action_size}"
            )

        self.observation_size = observation_size
        self.action_size = action_size
        self.architecture = architecture or NetworkArchitecture()
        self.action_model = ActionSpaceModel(action_spaces)
        self.device = torch.device(device)

        self.policy_network = build_mlp(
            observation_size,
            action_size,
            self.architecture,
            output_gain=self.architecture.policy_output_gain,
        )
        self.value_network = build_mlp(
            observation_size,
            1,
            self.architecture,
            output_gain=self.architecture.value_output_gain,
        )
        self.log_std = nn.Parameter(
            torch.full(
                (self.action_model.num_continuous,),
                float(self.architecture.initial_log_std),
            )
        )
        self.to(self.device)

        self.generator = torch.Generator(device=self.device)
        self.reseed(seed)

    @property
    def action_spaces(self):
        return self.action_model.action_spaces

    def reseed(self, seed: Optional[int]) -> None:
        if seed is None:
            self.generator.seed()
        else:
            self.generator.manual_seed(seed)

    def _as_batch(self, values: ArrayLike, width: int, what: str) -> torch.Tensor:
        tensor = torch.as_tensor(values, dtype=torch.float32, device=self.device)
        if tensor.dim() == 1:
            tensor = tensor.unsqueeze(0)
        if tensor.dim() != 2 or tensor.size(-1) != width:
            actual = tensor.size(-1) if tensor.dim() > 0 else 0
            raise ShapeMismatch(what, width, actual)
        return tensor

    def forward(self, observations: torch.Tensor):
        """Return (action parameters [B, action_size], values [B])."""
        params = self.policy_network(observations)
        values = self.value_network(observations).squeeze(-1)
        return params, values

    def act(self, observation: ArrayLike) -> ActOutput:
        """Sample an action for a single observation.

        Runs without gradient tracking; only the sampling generator advances.
        """
        obs = self._as_batch(observation, self.observation_size, "observation")
        if obs.size(0) != 1:
            raise ShapeMismatch("observation batch", 1, obs.size(0))

        with torch.no_grad():
            params, values = self(obs)
            actions, log_probs = self.action_model.sample(
                params, self.log_std, generator=self.generator
            )

        return ActOutput(
            action=actions[0].tolist(),
            log_prob=float(log_probs[0]),
            value=float(values[0]),
        )

    def evaluate(self, observations: ArrayLike, actions: ArrayLike) -> Evaluation:
        """Score already-realized actions under the current parameters.

        Gradients flow into all three parameter groups.
        """
        obs = self._as_batch(observations, self.observation_size, "observation")
        acts = self._as_batch(actions, self.action_size, "action")
        if obs.size(0) != acts.size(0):
            raise ShapeMismatch("action batch", obs.size(0), acts.size(0))

        params, values = self(obs)
        return Evaluation(
            log_prob=self.action_model.log_prob(params, self.log_std, acts),
            entropy=self.action_model.entropy(params, self.log_std),
            value=values,
        )

    def predict_value(self, observation: ArrayLike) -> float:
        obs = self._as_batch(observation, self.observation_size, "observation")
        with torch.no_grad():
            return float(self.value_network(obs).squeeze(-1)[0])

    def action_parameters(self, observation: ArrayLike) -> torch.Tensor:
        """Raw policy outputs (logits for discrete, means for continuous)."""
        obs = self._as_batch(observation, self.observation_size, "observation")
        with torch.no_grad():
            return self.policy_network(obs)

    def discrete_probabilities(self, observation: ArrayLike) -> torch.Tensor:
        return self.action_model.discrete_probabilities(
            self.action_parameters(observation)
        )

    def serialize(self) -> Dict[str, Any]:
        """Architecture metadata plus parameters, suitable for ``torch.save``."""
        return {
            "observation_size": self.observation_size,
            "action_size": self.action_size,
            "action_spaces": [space.to_dict() for space in self.action_spaces],
            "architecture": self.architecture.to_dict(),
            "state_dict": {
                name: tensor.detach().cpu().clone()
                for name, tensor in self.state_dict().items()
            },
        }

    @classmethod
    def from_serialized(
        cls,
        data: Dict[str, Any],
        seed: Optional[int] = None,
        device: Union[str, torch.device] = "cpu",
    ) -> "PolicyAgent":
        agent = cls(
            observation_size=data["observation_size"],
            action_size=data["action_size"],
            action_spaces=[ActionSpace.from_dict(s) for s in data["action_spaces"]],
            architecture=NetworkArchitecture(**data["architecture"]),
            seed=seed,
            device=device,
        )
        agent.load_state_dict(data["state_dict"])
        return agent
