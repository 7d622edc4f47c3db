"""
Configuration for PPO training sessions.

All configuration records are immutable and validated once at construction.
``SessionConfig.from_dict`` accepts the camelCase option bags used by
front-ends and rejects keys it does not recognise.
"""

import re
from dataclasses import dataclass, field, fields
from typing import Any, Dict, Optional, Tuple

from ...errors import ConfigurationError
from ...policy.networks import NetworkArchitecture


@dataclass(frozen=True)
class PPOConfig:
    """PPO algorithm hyperparameters."""

    learning_rate: float = 3e-4
    discount_factor: float = 0.99
    gae_lambda: float = 0.95

    clip_ratio: float = 0.2
    value_loss_coeff: float = 0.5
    entropy_coeff: float = 0.01

    epochs: int = 4  # Passes over the collected pool
    mini_batch_size: int = 64
    max_grad_norm: float = 0.5
    weight_decay: float = 0.0

    normalize_advantages: bool = True
    yield_every_batches: int = 4  # Mini-batches between cooperative yields

    seed: Optional[int] = None  # Mini-batch shuffling
    show_progress: bool = False  # tqdm bar over optimization

    def __post_init__(self):
        """Validate configuration."""
        if self.learning_rate <= 0:
            raise ConfigurationError("learning_rate must be positive")
        if not (0.0 <= self.discount_factor <= 1.0):
            raise ConfigurationError("discount_factor must be in [0, 1]")
        if not (0.0 <= self.gae_lambda <= 1.0):
            raise ConfigurationError("gae_lambda must be in [0, 1]")
        if not (0.0 < self.clip_ratio < 1.0):
            raise ConfigurationError("clip_ratio must be in (0, 1)")
        if self.value_loss_coeff < 0:
            raise ConfigurationError("value_loss_coeff must be non-negative")
        if self.entropy_coeff < 0:
            raise ConfigurationError("entropy_coeff must be non-negative")
        if self.epochs <= 0:
            raise ConfigurationError("epochs must be positive")
        if self.mini_batch_size <= 0:
            raise ConfigurationError("mini_batch_size must be positive")
        if self.max_grad_norm <= 0:
            raise ConfigurationError("max_grad_norm must be positive")
        if self.weight_decay < 0:
            raise ConfigurationError("weight_decay must be non-negative")
        if self.yield_every_batches <= 0:
            raise ConfigurationError("yield_every_batches must be positive")


@dataclass(frozen=True)
class AlgorithmConfig:
    """Algorithm selector. Only PPO is supported."""

    type: str = "PPO"
    hyperparameters: PPOConfig = field(default_factory=PPOConfig)

    def __post_init__(self):
        if self.type != "PPO":
            raise ConfigurationError(f"Unsupported algorithm type: {self.type!r}")


@dataclass(frozen=True)
class SessionConfig:
    """Top-level configuration for a training session."""

    trainable_players: Tuple[int, ...] = (0,)
    max_games: int = 1000
    num_rollouts: int = 4

    # Collection budget per iteration
    games_per_iteration: Optional[int] = None  # Defaults to num_rollouts
    max_steps_per_game: Optional[int] = None  # Truncate longer episodes
    max_transitions_per_iteration: Optional[int] = None
    time_delta: float = 1.0 / 60.0

    auto_save_interval: int = 50  # Completed games between checkpoints, 0 disables
    max_iterations: Optional[int] = None

    seed: Optional[int] = None
    device: str = "cpu"  # auto, cpu, cuda, mps

    algorithm: AlgorithmConfig = field(default_factory=AlgorithmConfig)
    network_architecture: NetworkArchitecture = field(
        default_factory=NetworkArchitecture
    )

    def __post_init__(self):
        """Validate configuration."""
        object.__setattr__(self, "trainable_players", tuple(self.trainable_players))
        if len(self.trainable_players) == 0:
            raise ConfigurationError("trainable_players must not be empty")
        if len(set(self.trainable_players)) != len(self.trainable_players):
            raise ConfigurationError("trainable_players must not contain duplicates")
        if any(p < 0 for p in self.trainable_players):
            raise ConfigurationError("trainable_players must be non-negative")

        if self.max_games <= 0:
            raise ConfigurationError("max_games must be positive")
        if self.num_rollouts <= 0:
            raise ConfigurationError("num_rollouts must be positive")
        if self.games_per_iteration is not None and self.games_per_iteration <= 0:
            raise ConfigurationError("games_per_iteration must be positive")
        if self.max_steps_per_game is not None and self.max_steps_per_game <= 0:
            raise ConfigurationError("max_steps_per_game must be positive")
        if (
            self.max_transitions_per_iteration is not None
            and self.max_transitions_per_iteration <= 0
        ):
            raise ConfigurationError("max_transitions_per_iteration must be positive")
        if self.time_delta <= 0:
            raise ConfigurationError("time_delta must be positive")
        if self.auto_save_interval < 0:
            raise ConfigurationError("auto_save_interval must be non-negative")
        if self.max_iterations is not None and self.max_iterations <= 0:
            raise ConfigurationError("max_iterations must be positive")
        if self.device not in ("auto", "cpu", "cuda", "mps"):
            raise ConfigurationError("device must be one of: auto, cpu, cuda, mps")

    @property
    def ppo(self) -> PPOConfig:
        return self.algorithm.hyperparameters

    @property
    def target_games_per_iteration(self) -> int:
        return self.games_per_iteration or self.num_rollouts

    @classmethod
    def from_dict(cls, options: Dict[str, Any]) -> "SessionConfig":
        """Build a config from a (possibly camelCase) option bag.

        Raises:
            ConfigurationError: unknown keys, wrong types or invalid values
        """
        try:
            return cls._from_normalized(_normalize_keys(options, "session"))
        except TypeError as exc:
            raise ConfigurationError(str(exc)) from exc

    @classmethod
    def _from_normalized(cls, options: Dict[str, Any]) -> "SessionConfig":
        kwargs = dict(options)
        if "algorithm" in kwargs:
            algorithm = _normalize_keys(kwargs["algorithm"], "algorithm")
            _reject_unknown(algorithm, AlgorithmConfig, "algorithm")
            hyper = _normalize_keys(
                algorithm.get("hyperparameters", {}), "algorithm.hyperparameters"
            )
            _reject_unknown(hyper, PPOConfig, "algorithm.hyperparameters")
            kwargs["algorithm"] = AlgorithmConfig(
                type=algorithm.get("type", "PPO"),
                hyperparameters=PPOConfig(**hyper),
            )
        if "network_architecture" in kwargs:
            arch = _normalize_keys(kwargs["network_architecture"], "networkArchitecture")
            _reject_unknown(arch, NetworkArchitecture, "networkArchitecture")
            kwargs["network_architecture"] = NetworkArchitecture(**arch)

        _reject_unknown(kwargs, cls, "session")
        return cls(**kwargs)


def _snake_case(name: str) -> str:
    return re.sub(r"(?<!^)(?=[A-Z])", "_", name).lower()


def _normalize_keys(options: Any, where: str) -> Dict[str, Any]:
    if not isinstance(options, dict):
        raise ConfigurationError(f"{where} must be a mapping, got {type(options).__name__}")
    return {_snake_case(key): value for key, value in options.items()}


def _reject_unknown(options: Dict[str, Any], record: type, where: str) -> None:
    known = {f.name for f in fields(record)}
    unknown = sorted(set(options) - known)
    if unknown:
        raise ConfigurationError(f"Unknown {where} option(s): {', '.join(unknown)}")
