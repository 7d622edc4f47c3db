"""
Exception types raised by the training engine.
"""


class MimicRLError(Exception):
    """Base class for all engine errors."""


class ConfigurationError(MimicRLError, ValueError):
    """Malformed hyperparameters or mismatched architecture at construction."""


class ShapeMismatch(MimicRLError, ValueError):
    """Observation or action length disagrees with what the agent expects."""

    def __init__(self, what: str, expected: int, actual: int):
        self.what = what
        self.expected = expected
        self.actual = actual
        super().__init__(f"{what} length mismatch: expected {expected}, got {actual}")


class EnvironmentStepError(MimicRLError):
    """An exception raised inside the environment collaborator.

    The original exception is kept as ``__cause__``; the engine does not
    interpret it.
    """

    def __init__(self, operation: str, rollout_id: int):
        self.operation = operation
        self.rollout_id = rollout_id
        super().__init__(f"Environment {operation}() failed in rollout {rollout_id}")
