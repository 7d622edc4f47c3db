"""
Sampling, log-likelihood and entropy for mixed discrete/continuous actions.

Each action index is independent. Discrete indices are Bernoulli variables
parameterised by a logit; continuous indices are Gaussians whose mean comes
from the policy network and whose standard deviation is ``exp(log_std)``.
Joint log-probability and joint entropy are sums over indices.
"""

from typing import Optional, Sequence, Tuple

import torch
from torch.distributions import Bernoulli, Normal

from ..envs.base import ActionSpace
from ..errors import ConfigurationError, ShapeMismatch


def bernoulli_log_prob(logits: torch.Tensor, values: torch.Tensor) -> torch.Tensor:
    """Log-likelihood of 0/1 values under ``sigmoid(logits)``.

    Argument validation is off in every helper here: masked evaluation scores
    each index under both distributions, continuous values included.
    """
    return Bernoulli(logits=logits, validate_args=False).log_prob(values)


def bernoulli_entropy(logits: torch.Tensor) -> torch.Tensor:
    return Bernoulli(logits=logits, validate_args=False).entropy()


def gaussian_log_prob(
    means: torch.Tensor, log_std: torch.Tensor, values: torch.Tensor
) -> torch.Tensor:
    return Normal(means, torch.exp(log_std), validate_args=False).log_prob(values)


def gaussian_entropy(log_std: torch.Tensor) -> torch.Tensor:
    return Normal(torch.zeros_like(log_std), torch.exp(log_std), validate_args=False).entropy()


class ActionSpaceModel:
    """Distribution math over a full action vector.

    Args:
        action_spaces: One descriptor per action index, in index order
    """

    def __init__(self, action_spaces: Sequence[ActionSpace]):
        if len(action_spaces) == 0:
            raise ConfigurationError("action_spaces must not be empty")
        for position, space in enumerate(action_spaces):
            if space.index != position:
                raise ConfigurationError(
                    f"action_spaces must be ordered by index: position {position} "
                    f"holds index {space.index}"
                )

        self.action_spaces = tuple(action_spaces)
        self.action_size = len(action_spaces)
        self.discrete_mask = torch.tensor(
            [space.is_discrete for space in action_spaces], dtype=torch.bool
        )
        self.continuous_indices = torch.tensor(
            [space.index for space in action_spaces if not space.is_discrete],
            dtype=torch.long,
        )
        self.discrete_indices = torch.tensor(
            [space.index for space in action_spaces if space.is_discrete],
            dtype=torch.long,
        )

    @property
    def num_continuous(self) -> int:
        return int(self.continuous_indices.numel())

    @property
    def num_discrete(self) -> int:
        return int(self.discrete_indices.numel())

    def expand_log_std(self, log_std: torch.Tensor) -> torch.Tensor:
        """Place per-continuous-index log-std values into a full action-size vector.

        Discrete positions get 0; they are masked out of every formula.
        """
        if log_std.numel() != self.num_continuous:
            raise ShapeMismatch("log_std", self.num_continuous, log_std.numel())
        full = torch.zeros(self.action_size, dtype=log_std.dtype, device=log_std.device)
        if self.num_continuous == 0:
            return full
        return full.index_copy(0, self.continuous_indices.to(log_std.device), log_std)

    def _check_params(self, params: torch.Tensor) -> None:
        if params.size(-1) != self.action_size:
            raise ShapeMismatch("action parameters", self.action_size, params.size(-1))

    def log_prob(
        self, params: torch.Tensor, log_std: torch.Tensor, actions: torch.Tensor
    ) -> torch.Tensor:
        """Joint log-probability of realized ``actions`` [..., action_size]."""
        self._check_params(params)
        if actions.size(-1) != self.action_size:
            raise ShapeMismatch("action", self.action_size, actions.size(-1))

        full_log_std = self.expand_log_std(log_std)
        mask = self.discrete_mask.to(params.device)
        discrete = bernoulli_log_prob(params, actions)
        continuous = gaussian_log_prob(params, full_log_std, actions)
        return torch.where(mask, discrete, continuous).sum(dim=-1)

    def entropy(self, params: torch.Tensor, log_std: torch.Tensor) -> torch.Tensor:
        """Joint entropy for each row of ``params``."""
        self._check_params(params)
        full_log_std = self.expand_log_std(log_std)
        mask = self.discrete_mask.to(params.device)
        discrete = bernoulli_entropy(params)
        continuous = gaussian_entropy(full_log_std).expand_as(params)
        return torch.where(mask, discrete, continuous).sum(dim=-1)

    def sample(
        self,
        params: torch.Tensor,
        log_std: torch.Tensor,
        generator: Optional[torch.Generator] = None,
    ) -> Tuple[torch.Tensor, torch.Tensor]:
        """Draw an action and return it with its joint log-probability."""
        self._check_params(params)
        full_log_std = self.expand_log_std(log_std)
        mask = self.discrete_mask.to(params.device)

        # Drawn directly: Distribution.sample has no generator argument
        probs = torch.sigmoid(params)
        bits = torch.bernoulli(probs, generator=generator)
        noise = torch.randn(
            params.shape, generator=generator, dtype=params.dtype, device=params.device
        )
        continuous = params + torch.exp(full_log_std) * noise

        actions = torch.where(mask, bits, continuous)
        return actions, self.log_prob(params, log_std, actions)

    def discrete_probabilities(self, params: torch.Tensor) -> torch.Tensor:
        """Probability of "on" for each discrete index, in index order."""
        self._check_params(params)
        return torch.sigmoid(params[..., self.discrete_indices.to(params.device)])
