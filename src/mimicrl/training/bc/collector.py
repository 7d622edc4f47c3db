"""
Records expert demonstrations while a game is being played.
"""

import copy
import time
from typing import Any, Dict, List, Optional, Sequence

from .demonstration import DemonstrationEpisode, DemonstrationStep


class DemonstrationCollector:
    """Buffers observation/action pairs into episodes.

    Args:
        auto_record: Start an episode automatically on the first recorded step
        max_buffer_size: Steps kept in the open episode before it is flushed
            into the buffer as a partial episode with the same id
    """

    def __init__(self, auto_record: bool = False, max_buffer_size: int = 10000):
        if max_buffer_size <= 0:
            raise ValueError("max_buffer_size must be positive")
        self.auto_record = auto_record
        self.max_buffer_size = max_buffer_size
        self.current_episode: Optional[DemonstrationEpisode] = None
        self.episode_buffer: List[DemonstrationEpisode] = []
        self._auto_counter = 0

    @property
    def is_recording(self) -> bool:
        return self.current_episode is not None

    def start_episode(self, episode_id: str, metadata: Optional[Dict[str, Any]] = None) -> None:
        """Begin a new episode, closing any episode still open."""
        if self.is_recording:
            self.end_episode()
        self.current_episode = DemonstrationEpisode(
            id=episode_id,
            metadata={"timestamp": time.time(), **(metadata or {})},
        )

    def record_step(
        self,
        observation: Sequence[float],
        action: Sequence[float],
        metadata: Optional[Dict[str, Any]] = None,
    ) -> None:
        """Append a step. Ignored unless recording (or ``auto_record`` is on)."""
        if not self.is_recording:
            if not self.auto_record:
                return
            self._auto_counter += 1
            self.start_episode(f"auto_{self._auto_counter}")

        episode = self.current_episode
        episode.steps.append(
            DemonstrationStep(
                observation=list(observation),
                action=list(action),
                metadata={"step_index": len(episode.steps), **(metadata or {})},
            )
        )

        if len(episode.steps) >= self.max_buffer_size:
            self._flush_current_episode()

    def end_episode(self, metadata: Optional[Dict[str, Any]] = None) -> Optional[DemonstrationEpisode]:
        """Close the open episode and move it to the buffer."""
        if not self.is_recording:
            return None

        episode = self.current_episode
        started = episode.metadata.get("timestamp", time.time())
        episode.metadata.update(metadata or {})
        episode.metadata["duration"] = time.time() - started

        self.episode_buffer.append(episode)
        self.current_episode = None
        return episode

    def discard_episode(self) -> None:
        self.current_episode = None

    def episodes(self) -> List[DemonstrationEpisode]:
        return list(self.episode_buffer)

    def clear_episodes(self) -> None:
        self.episode_buffer = []

    def _flush_current_episode(self) -> None:
        episode = self.current_episode
        if episode is None or len(episode.steps) == 0:
            return
        self.episode_buffer.append(episode)
        self.current_episode = DemonstrationEpisode(
            id=episode.id, metadata=copy.deepcopy(episode.metadata)
        )
