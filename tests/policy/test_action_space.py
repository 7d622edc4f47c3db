"""
Tests for the mixed discrete/continuous action distribution math.
"""

import math

import pytest
import torch

from mimicrl.envs.base import ActionKind, ActionSpace
from mimicrl.errors import ConfigurationError, ShapeMismatch
from mimicrl.policy.action_space import (ActionSpaceModel, bernoulli_entropy,
                                         bernoulli_log_prob, gaussian_entropy,
                                         gaussian_log_prob)


def mixed_spaces():
    return [
        ActionSpace(0, ActionKind.DISCRETE),
        ActionSpace(1, ActionKind.CONTINUOUS),
        ActionSpace(2, ActionKind.DISCRETE),
    ]


class TestBernoulli:
    """Discrete index math."""

    @pytest.mark.parametrize("logit", [-30.0, -2.5, 0.0, 0.7, 4.0, 30.0])
    def test_log_prob_matches_sigmoid(self, logit):
        """exp(log p(1)) equals sigmoid(logit) and p(0) is its complement."""
        logits = torch.tensor([logit], dtype=torch.float64)
        on = torch.exp(bernoulli_log_prob(logits, torch.ones(1, dtype=torch.float64)))
        off = torch.exp(bernoulli_log_prob(logits, torch.zeros(1, dtype=torch.float64)))

        expected = 1.0 / (1.0 + math.exp(-logit))
        assert on.item() == pytest.approx(expected, rel=1e-9, abs=1e-12)
        assert (on + off).item() == pytest.approx(1.0)

    def test_log_prob_does_not_underflow(self):
        """Extreme logits give finite log-probabilities."""
        logits = torch.tensor([-200.0, 200.0])
        log_probs = bernoulli_log_prob(logits, torch.tensor([1.0, 0.0]))
        assert torch.isfinite(log_probs).all()
        assert log_probs[0].item() == pytest.approx(-200.0, rel=1e-4)

    def test_entropy_peaks_at_zero_logit(self):
        """Entropy is log(2) at p=0.5 and shrinks toward the edges."""
        entropy = bernoulli_entropy(torch.tensor([0.0, 3.0, -3.0]))
        assert entropy[0].item() == pytest.approx(math.log(2.0), rel=1e-6)
        assert entropy[1].item() < entropy[0].item()
        assert entropy[1].item() == pytest.approx(entropy[2].item(), rel=1e-6)

    def test_extreme_logits_have_finite_gradients(self):
        """Saturated logits keep log-prob and entropy gradients finite."""
        logits = torch.tensor([-200.0, 200.0], requires_grad=True)
        loss = bernoulli_log_prob(logits, torch.tensor([1.0, 0.0])).sum() + bernoulli_entropy(
            logits
        ).sum()
        loss.backward()
        assert torch.isfinite(logits.grad).all()

    def test_scores_non_binary_values(self):
        """Continuous values at a discrete position are scored, not rejected."""
        log_prob = bernoulli_log_prob(torch.tensor([0.0]), torch.tensor([0.9]))
        assert log_prob.item() == pytest.approx(math.log(0.5), rel=1e-6)


class TestGaussian:
    """Continuous index math."""

    def test_log_prob_closed_form(self):
        means = torch.tensor([0.5])
        log_std = torch.tensor([math.log(2.0)])
        value = torch.tensor([1.5])

        expected = -((1.0) ** 2) / (2 * 4.0) - math.log(2.0) - 0.5 * math.log(2 * math.pi)
        assert gaussian_log_prob(means, log_std, value).item() == pytest.approx(expected, rel=1e-6)

    def test_entropy_closed_form(self):
        log_std = torch.tensor([0.0, 1.0])
        expected = 0.5 * math.log(2 * math.pi * math.e) + log_std
        assert torch.allclose(gaussian_entropy(log_std), expected)


class TestActionSpaceModel:
    """Joint distribution over a full action vector."""

    def test_construction(self):
        model = ActionSpaceModel(mixed_spaces())
        assert model.action_size == 3
        assert model.num_discrete == 2
        assert model.num_continuous == 1
        assert model.discrete_mask.tolist() == [True, False, True]

    def test_rejects_empty_and_unordered_spaces(self):
        with pytest.raises(ConfigurationError):
            ActionSpaceModel([])
        with pytest.raises(ConfigurationError, match="ordered by index"):
            ActionSpaceModel(
                [ActionSpace(1, ActionKind.DISCRETE), ActionSpace(0, ActionKind.DISCRETE)]
            )

    def test_joint_log_prob_is_sum_of_indices(self):
        model = ActionSpaceModel(mixed_spaces())
        params = torch.tensor([[0.3, -0.2, -1.1]])
        log_std = torch.tensor([0.4])
        actions = torch.tensor([[1.0, 0.9, 0.0]])

        expected = (
            bernoulli_log_prob(params[0, 0], actions[0, 0])
            + gaussian_log_prob(params[0, 1], log_std[0], actions[0, 1])
            + bernoulli_log_prob(params[0, 2], actions[0, 2])
        )
        assert model.log_prob(params, log_std, actions).item() == pytest.approx(
            expected.item(), rel=1e-6
        )

    def test_joint_entropy_is_sum_of_indices(self):
        model = ActionSpaceModel(mixed_spaces())
        params = torch.tensor([[0.3, -0.2, -1.1]])
        log_std = torch.tensor([0.4])

        expected = (
            bernoulli_entropy(params[0, 0])
            + gaussian_entropy(log_std[0])
            + bernoulli_entropy(params[0, 2])
        )
        assert model.entropy(params, log_std).item() == pytest.approx(expected.item(), rel=1e-6)

    def test_sample_log_prob_matches_rescoring(self):
        """The log-probability returned with a sample equals log_prob of that sample."""
        model = ActionSpaceModel(mixed_spaces())
        generator = torch.Generator().manual_seed(3)
        params = torch.randn(16, 3, generator=generator)
        log_std = torch.tensor([-0.3])

        actions, log_probs = model.sample(params, log_std, generator=generator)
        assert torch.allclose(log_probs, model.log_prob(params, log_std, actions))

        discrete = actions[:, model.discrete_mask]
        assert set(discrete.unique().tolist()) <= {0.0, 1.0}

    def test_discrete_sampling_converges_to_sigmoid(self):
        """Empirical frequency of "on" approaches sigmoid(logit)."""
        spaces = [ActionSpace(0, ActionKind.DISCRETE)]
        model = ActionSpaceModel(spaces)
        generator = torch.Generator().manual_seed(0)
        logit = 0.8
        params = torch.full((20000, 1), logit)

        actions, _ = model.sample(params, torch.zeros(0), generator=generator)
        expected = 1.0 / (1.0 + math.exp(-logit))
        assert actions.mean().item() == pytest.approx(expected, abs=0.02)

    def test_continuous_sampling_collapses_to_mean(self):
        """With sigma -> 0 the realized action equals the mean."""
        spaces = [ActionSpace(0, ActionKind.CONTINUOUS), ActionSpace(1, ActionKind.CONTINUOUS)]
        model = ActionSpaceModel(spaces)
        generator = torch.Generator().manual_seed(1)
        params = torch.tensor([[1.25, -3.5]]).repeat(100, 1)

        actions, _ = model.sample(params, torch.tensor([-20.0, -20.0]), generator=generator)
        assert torch.allclose(actions, params, atol=1e-6)

    def test_sampling_is_deterministic_for_a_seed(self):
        model = ActionSpaceModel(mixed_spaces())
        params = torch.randn(8, 3)
        log_std = torch.tensor([0.0])

        first, _ = model.sample(params, log_std, generator=torch.Generator().manual_seed(7))
        second, _ = model.sample(params, log_std, generator=torch.Generator().manual_seed(7))
        assert torch.equal(first, second)

    def test_shape_checks(self):
        model = ActionSpaceModel(mixed_spaces())
        with pytest.raises(ShapeMismatch):
            model.entropy(torch.zeros(1, 2), torch.zeros(1))
        with pytest.raises(ShapeMismatch):
            model.log_prob(torch.zeros(1, 3), torch.zeros(1), torch.zeros(1, 4))
        with pytest.raises(ShapeMismatch):
            model.expand_log_std(torch.zeros(2))

    def test_discrete_probabilities(self):
        model = ActionSpaceModel(mixed_spaces())
        params = torch.tensor([[0.0, 5.0, 2.0]])
        probs = model.discrete_probabilities(params)
        assert probs.shape == (1, 2)
        assert torch.allclose(probs, torch.sigmoid(torch.tensor([[0.0, 2.0]])))
