"""
Data types produced by the policy agent.
"""

from dataclasses import dataclass
from typing import List

import torch


@dataclass(frozen=True)
class ActOutput:
    """One decision: the sampled action, its joint log-probability and the value estimate."""

    action: List[float]
    log_prob: float
    value: float


@dataclass
class Evaluation:
    """Re-scored actions under the agent's current parameters.

    All tensors are batched [batch] and keep their autograd graph.
    """

    log_prob: torch.Tensor
    entropy: torch.Tensor
    value: torch.Tensor
