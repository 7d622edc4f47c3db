"""
MimicRL: PPO and behaviour cloning for turn/tick based simulated games.

The engine is environment agnostic. Games implement ``GameEnvironment`` and
the training session drives them through controllers.

Usage:
    from mimicrl.training.ppo import SessionConfig, TrainingSession

    session = TrainingSession(SessionConfig(), env_factory=MyGame)
    session.initialize()
    asyncio.run(session.start())
"""

from .errors import (ConfigurationError, EnvironmentStepError, MimicRLError,
                     ShapeMismatch)

__all__ = [
    "MimicRLError",
    "ConfigurationError",
    "ShapeMismatch",
    "EnvironmentStepError",
]

__version__ = "1.0.0"
