"""
Configuration for behaviour cloning training.
"""

from dataclasses import dataclass
from typing import Optional

from ...errors import ConfigurationError

LOSS_TYPES = ("mixed", "mse", "crossentropy")


@dataclass(frozen=True)
class BCConfig:
    """Configuration for behaviour cloning training."""

    learning_rate: float = 1e-3
    batch_size: int = 32
    epochs: int = 10
    loss_type: str = "mixed"  # mixed, mse, crossentropy
    weight_decay: float = 1e-4
    validation_split: float = 0.2  # Tail fraction held out for validation
    gradient_clipping: Optional[float] = 1.0

    yield_every_batches: int = 10
    seed: Optional[int] = None
    show_progress: bool = False

    def __post_init__(self):
        """Validate configuration."""
        if self.learning_rate <= 0:
            raise ConfigurationError("learning_rate must be positive")
        if self.batch_size <= 0:
            raise ConfigurationError("batch_size must be positive")
        if self.epochs <= 0:
            raise ConfigurationError("epochs must be positive")
        if self.loss_type not in LOSS_TYPES:
            raise ConfigurationError(f"loss_type must be one of: {', '.join(LOSS_TYPES)}")
        if self.weight_decay < 0:
            raise ConfigurationError("weight_decay must be non-negative")
        if not (0.0 <= self.validation_split < 1.0):
            raise ConfigurationError("validation_split must be in [0, 1)")
        if self.gradient_clipping is not None and self.gradient_clipping <= 0:
            raise ConfigurationError("gradient_clipping must be positive")
        if self.yield_every_batches <= 0:
            raise ConfigurationError("yield_every_batches must be positive")
