"""
Demonstration records: expert observation/action pairs grouped into episodes.
"""

import time
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from ...envs.base import ActionSpace


@dataclass
class DemonstrationStep:
    """A single state-action pair."""

    observation: List[float]
    action: List[float]
    metadata: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "observation": list(self.observation),
            "action": list(self.action),
            "metadata": dict(self.metadata),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "DemonstrationStep":
        return cls(
            observation=list(data["observation"]),
            action=list(data["action"]),
            metadata=dict(data.get("metadata", {})),
        )


@dataclass
class DemonstrationEpisode:
    """A complete (or flushed partial) expert episode."""

    id: str
    steps: List[DemonstrationStep] = field(default_factory=list)
    metadata: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "steps": [step.to_dict() for step in self.steps],
            "metadata": dict(self.metadata),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "DemonstrationEpisode":
        return cls(
            id=data["id"],
            steps=[DemonstrationStep.from_dict(s) for s in data.get("steps", [])],
            metadata=dict(data.get("metadata", {})),
        )


@dataclass
class DemonstrationDataset:
    """Episodes plus the environment layout they were recorded with."""

    episodes: List[DemonstrationEpisode]
    created_at: float = field(default_factory=time.time)
    updated_at: float = field(default_factory=time.time)
    observation_size: Optional[int] = None
    action_size: Optional[int] = None
    action_spaces: Optional[List[ActionSpace]] = None

    @property
    def total_steps(self) -> int:
        return sum(len(episode.steps) for episode in self.episodes)

    def steps(self) -> List[DemonstrationStep]:
        return [step for episode in self.episodes for step in episode.steps]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "episodes": [episode.to_dict() for episode in self.episodes],
            "metadata": {
                "total_steps": self.total_steps,
                "created_at": self.created_at,
                "updated_at": self.updated_at,
                "observation_size": self.observation_size,
                "action_size": self.action_size,
                "action_spaces": (
                    None
                    if self.action_spaces is None
                    else [space.to_dict() for space in self.action_spaces]
                ),
            },
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "DemonstrationDataset":
        metadata = data.get("metadata", {})
        spaces = metadata.get("action_spaces")
        return cls(
            episodes=[DemonstrationEpisode.from_dict(e) for e in data.get("episodes", [])],
            created_at=metadata.get("created_at", time.time()),
            updated_at=metadata.get("updated_at", time.time()),
            observation_size=metadata.get("observation_size"),
            action_size=metadata.get("action_size"),
            action_spaces=None if spaces is None else [ActionSpace.from_dict(s) for s in spaces],
        )
