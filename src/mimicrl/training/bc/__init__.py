"""Behaviour cloning from recorded demonstrations."""

from .collector import DemonstrationCollector
from .config import BCConfig
from .demonstration import DemonstrationDataset, DemonstrationEpisode, DemonstrationStep
from .storage import DemonstrationStorage
from .trainer import BCTrainer, BCTrainingStats

__all__ = [
    "BCConfig",
    "BCTrainer",
    "BCTrainingStats",
    "DemonstrationCollector",
    "DemonstrationDataset",
    "DemonstrationEpisode",
    "DemonstrationStep",
    "DemonstrationStorage",
]
