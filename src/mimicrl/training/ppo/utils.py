"""
Utility functions for PPO training.

Helpers for device selection, reward statistics and training summaries.
"""

from typing import Dict, Sequence

import numpy as np
import torch

from .config import SessionConfig


def get_device(device_str: str) -> torch.device:
    """Get PyTorch device from configuration string.

    Args:
        device_str: Device string ("auto", "cpu", "cuda", "mps")

    Returns:
        PyTorch device object
    """
    if device_str == "auto":
        if torch.cuda.is_available():
            return torch.device("cuda")
        elif torch.backends.mps.is_available():
            return torch.device("mps")
        else:
            return torch.device("cpu")
    return torch.device(device_str)


def format_training_time(seconds: float) -> str:
    """Format training time in human-readable format.

    Args:
        seconds: Time in seconds

    Returns:
        Formatted time string
    """
    if seconds < 60:
        return f"{seconds:.1f}s"
    elif seconds < 3600:
        minutes = seconds / 60
        return f"{minutes:.1f}m"
    else:
        hours = seconds / 3600
        return f"{hours:.1f}h"


def reward_statistics(rewards: Sequence[float]) -> Dict[str, float]:
    """Mean, standard deviation, min and max of episode rewards."""
    if len(rewards) == 0:
        return {"mean": 0.0, "std": 0.0, "min": 0.0, "max": 0.0}

    values = np.asarray(rewards, dtype=np.float64)
    return {
        "mean": float(values.mean()),
        "std": float(values.std()),
        "min": float(values.min()),
        "max": float(values.max()),
    }


def training_header(config: SessionConfig) -> str:
    """One-line summary of the session configuration for the log."""
    ppo = config.ppo
    return (
        f"PPO session: players={list(config.trainable_players)} "
        f"max_games={config.max_games:,} rollouts={config.num_rollouts} "
        f"lr={ppo.learning_rate} clip={ppo.clip_ratio} gamma={ppo.discount_factor} "
        f"lambda={ppo.gae_lambda} epochs={ppo.epochs} batch={ppo.mini_batch_size}"
    )
