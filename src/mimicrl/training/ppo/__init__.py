"""
PPO training for mixed discrete/continuous action spaces.

Key Components:
- PolicyAgent (mimicrl.policy): stochastic actor-critic agent
- RolloutCollector: interleaved trajectory collection across environments
- PPOTrainer: GAE advantages and clipped-objective updates
- TrainingSession: collect -> train loop with pause/resume/stop control

Usage:
    from mimicrl.training.ppo import SessionConfig, TrainingSession

    session = TrainingSession(SessionConfig(), env_factory=BanditEnvironment)
    session.initialize()
    asyncio.run(session.start())

Or run directly:
    python scripts/train_ppo.py
"""

from .collect_rollout import RolloutCollector, RolloutResult
from .config import AlgorithmConfig, PPOConfig, SessionConfig
from .ppo_trainer import PPOTrainer
from .rollout_buffer import (RolloutBuffer, Trajectory, Transition, compute_gae,
                             normalize_advantages)
from .scheduler import (AdaptiveScheduler, HostVisibility, ImmediateScheduler,
                        Scheduler, make_yield_point)
from .session import LifecycleState, TrainingProgress, TrainingSession
from .update_policy import UpdateStats, clipped_surrogate

__all__ = [
    # Main classes
    "TrainingSession",
    "PPOTrainer",
    "RolloutCollector",
    # Configuration
    "SessionConfig",
    "AlgorithmConfig",
    "PPOConfig",
    # Experience
    "RolloutBuffer",
    "RolloutResult",
    "Trajectory",
    "Transition",
    "compute_gae",
    "normalize_advantages",
    # Optimization
    "UpdateStats",
    "clipped_surrogate",
    # Lifecycle and scheduling
    "LifecycleState",
    "TrainingProgress",
    "Scheduler",
    "ImmediateScheduler",
    "AdaptiveScheduler",
    "HostVisibility",
    "make_yield_point",
]
