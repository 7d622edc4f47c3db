"""Feed-forward networks for the policy and value functions."""

from dataclasses import asdict, dataclass
from typing import Tuple

import torch.nn as nn

from ..errors import ConfigurationError

ACTIVATIONS = {
    "tanh": nn.Tanh,
    "relu": nn.ReLU,
    "elu": nn.ELU,
    "sigmoid": nn.Sigmoid,
}


@dataclass(frozen=True)
class NetworkArchitecture:
    """Architecture shared by the policy and value networks.

    Attributes:
        hidden_layers: Width of each hidden layer
        activation: Hidden activation name (tanh, relu, elu, sigmoid)
        initial_log_std: Starting log standard deviation for continuous actions
        policy_output_gain: Orthogonal init gain of the policy output layer
        value_output_gain: Orthogonal init gain of the value output layer
    """

    hidden_layers: Tuple[int, ...] = (64, 64)
    activation: str = "tanh"
    initial_log_std: float = 0.0
    policy_output_gain: float = 0.01
    value_output_gain: float = 1.0

    def __post_init__(self):
        object.__setattr__(self, "hidden_layers", tuple(self.hidden_layers))
        if len(self.hidden_layers) == 0:
            raise ConfigurationError("hidden_layers must contain at least one layer")
        if any(width <= 0 for width in self.hidden_layers):
            raise ConfigurationError("hidden layer widths must be positive")
        if self.activation not in ACTIVATIONS:
            raise ConfigurationError(
                f"activation must be one of: {', '.join(sorted(ACTIVATIONS))}"
            )

    def to_dict(self) -> dict:
        data = asdict(self)
        data["hidden_layers"] = list(self.hidden_layers)
        return data


def build_mlp(
    input_dim: int,
    output_dim: int,
    architecture: NetworkArchitecture,
    output_gain: float,
) -> nn.Sequential:
    """Hidden layers use the configured activation; the output layer is linear."""
    layers = []
    previous = input_dim
    for width in architecture.hidden_layers:
        linear = nn.Linear(previous, width)
        nn.init.orthogonal_(linear.weight, gain=nn.init.calculate_gain("tanh"))
        nn.init.zeros_(linear.bias)
        layers.append(linear)
        layers.append(ACTIVATIONS[architecture.activation]())
        previous = width

    output = nn.Linear(previous, output_dim)
    nn.init.orthogonal_(output.weight, gain=output_gain)
    nn.init.zeros_(output.bias)
    layers.append(output)

    return nn.Sequential(*layers)
