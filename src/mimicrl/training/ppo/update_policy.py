"""
PPO clipped-objective optimization over a closed rollout buffer.

Kept separate from ``PPOTrainer`` so the per-batch arithmetic can be tested
on its own.
"""

from contextlib import contextmanager
from dataclasses import asdict, dataclass
from typing import Dict, Iterator, Optional

import torch
import torch.nn as nn
from tqdm import tqdm

from ...policy.agent import PolicyAgent
from .config import PPOConfig
from .rollout_buffer import RolloutBuffer
from .scheduler import YieldPoint


@dataclass
class UpdateStats:
    """Diagnostics averaged over every mini-batch of one training call."""

    policy_loss: float = 0.0
    value_loss: float = 0.0
    entropy: float = 0.0
    kl_divergence: float = 0.0
    clip_fraction: float = 0.0
    explained_variance: float = 0.0
    gradient_norm: float = 0.0
    num_updates: int = 0
    num_transitions: int = 0

    def to_dict(self) -> Dict[str, float]:
        return asdict(self)


def clipped_surrogate(
    ratio: torch.Tensor, advantages: torch.Tensor, clip_ratio: float
) -> torch.Tensor:
    """Per-sample ``min(ratio * A, clip(ratio) * A)``."""
    surrogate1 = ratio * advantages
    surrogate2 = torch.clamp(ratio, 1.0 - clip_ratio, 1.0 + clip_ratio) * advantages
    return torch.min(surrogate1, surrogate2)


def compute_losses(
    agent: PolicyAgent, batch: Dict[str, torch.Tensor], config: PPOConfig
) -> Dict[str, torch.Tensor]:
    """Evaluate one mini-batch and build every loss term."""
    evaluation = agent.evaluate(batch["observations"], batch["actions"])

    ratio = torch.exp(evaluation.log_prob - batch["log_probs"])
    policy_loss = -clipped_surrogate(ratio, batch["advantages"], config.clip_ratio).mean()
    value_loss = ((evaluation.value - batch["returns"]) ** 2).mean()
    entropy = evaluation.entropy.mean()

    total_loss = (
        policy_loss
        + config.value_loss_coeff * value_loss
        - config.entropy_coeff * entropy
    )

    with torch.no_grad():
        kl_divergence = (batch["log_probs"] - evaluation.log_prob).mean()
        clip_fraction = ((ratio - 1.0).abs() > config.clip_ratio).float().mean()

    return {
        "total_loss": total_loss,
        "policy_loss": policy_loss,
        "value_loss": value_loss,
        "entropy": entropy,
        "kl_divergence": kl_divergence,
        "clip_fraction": clip_fraction,
        "values": evaluation.value.detach(),
    }


@contextmanager
def batch_scope(
    buffer: RolloutBuffer,
    indices: torch.Tensor,
    optimizer: torch.optim.Optimizer,
    device: torch.device,
) -> Iterator[Dict[str, torch.Tensor]]:
    """Gather a mini-batch and release it, and its gradients, on exit."""
    batch = buffer.gather(indices, device)
    try:
        yield batch
    finally:
        optimizer.zero_grad(set_to_none=True)
        batch.clear()


async def update_policy(
    agent: PolicyAgent,
    optimizer: torch.optim.Optimizer,
    buffer: RolloutBuffer,
    config: PPOConfig,
    generator: Optional[torch.Generator] = None,
    yield_point: Optional[YieldPoint] = None,
    player_index: Optional[int] = None,
) -> UpdateStats:
    """Run ``config.epochs`` passes of mini-batched clipped-objective updates.

    The buffer must already hold advantages and returns. ``yield_point`` is
    awaited every ``config.yield_every_batches`` mini-batches, never inside a
    gradient step; if it returns False the remaining batches are skipped.
    """
    agent.train()
    stats = UpdateStats(num_transitions=len(buffer))
    weighted = {
        "policy_loss": 0.0,
        "value_loss": 0.0,
        "entropy": 0.0,
        "kl_divergence": 0.0,
        "clip_fraction": 0.0,
        "explained_variance": 0.0,
        "gradient_norm": 0.0,
    }
    samples_seen = 0
    batches_done = 0
    cancelled = False

    batches_per_epoch = -(-len(buffer) // config.mini_batch_size)
    description = "Policy Update" if player_index is None else f"Policy Update p{player_index}"

    with tqdm(
        total=batches_per_epoch * config.epochs,
        desc=description,
        unit="batch",
        leave=False,
        ncols=100,
        disable=not config.show_progress,
    ) as pbar:
        for epoch in range(config.epochs):
            if cancelled:
                break

            for indices in buffer.get_batch_indices(config.mini_batch_size, generator):
                if len(indices) == 0:
                    continue

                with batch_scope(buffer, indices, optimizer, agent.device) as batch:
                    losses = compute_losses(agent, batch, config)

                    optimizer.zero_grad()
                    losses["total_loss"].backward()
                    grad_norm = nn.utils.clip_grad_norm_(
                        agent.parameters(), config.max_grad_norm
                    )
                    optimizer.step()

                    with torch.no_grad():
                        returns = batch["returns"]
                        var_y = torch.var(returns, unbiased=False)
                        explained_var = 1 - torch.var(
                            returns - losses["values"], unbiased=False
                        ) / (var_y + 1e-8)

                    size = len(indices)
                    for key in ("policy_loss", "value_loss", "entropy", "kl_divergence", "clip_fraction"):
                        weighted[key] += losses[key].item() * size
                    weighted["explained_variance"] += explained_var.item() * size
                    weighted["gradient_norm"] += float(grad_norm) * size
                    samples_seen += size
                    stats.num_updates += 1

                    pbar.set_postfix(
                        {
                            "epoch": f"{epoch+1}/{config.epochs}",
                            "p_loss": f"{losses['policy_loss'].item():.4f}",
                            "v_loss": f"{losses['value_loss'].item():.4f}",
                            "kl": f"{losses['kl_divergence'].item():.6f}",
                        }
                    )
                    pbar.update(1)
                    del losses

                batches_done += 1
                if yield_point is not None and batches_done % config.yield_every_batches == 0:
                    if not await yield_point():
                        cancelled = True
                        break

    agent.eval()

    if samples_seen > 0:
        for key, total in weighted.items():
            setattr(stats, key, total / samples_seen)

    return stats
