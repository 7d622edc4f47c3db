"""
JSON persistence for demonstration datasets.
"""

import json
import os
import tempfile
import time
from pathlib import Path
from typing import List, Optional, Sequence, Union

from ...envs.base import ActionSpace
from ...logger import logger
from .demonstration import DemonstrationDataset, DemonstrationEpisode


class DemonstrationStorage:
    """Stores named demonstration datasets as JSON files in one directory."""

    def __init__(self, root: Union[str, Path] = "demonstrations"):
        self.root = Path(root)
        self.root.mkdir(parents=True, exist_ok=True)
        self.logger = logger.bind(component="bc_trainer")

    def _path(self, name: str) -> Path:
        if not name or os.sep in name or name.startswith("."):
            raise ValueError(f"Invalid dataset name: {name!r}")
        return self.root / f"{name}.json"

    def create_dataset(
        self,
        episodes: Sequence[DemonstrationEpisode] = (),
        observation_size: Optional[int] = None,
        action_size: Optional[int] = None,
        action_spaces: Optional[Sequence[ActionSpace]] = None,
    ) -> DemonstrationDataset:
        """Build an in-memory dataset stamped with the recording layout."""
        return DemonstrationDataset(
            episodes=list(episodes),
            observation_size=observation_size,
            action_size=action_size,
            action_spaces=None if action_spaces is None else list(action_spaces),
        )

    def save_dataset(self, name: str, dataset: DemonstrationDataset) -> Path:
        """Write ``dataset`` atomically, replacing any previous version."""
        path = self._path(name)
        dataset.updated_at = time.time()

        fd, tmp_path = tempfile.mkstemp(dir=self.root, suffix=".tmp")
        try:
            with os.fdopen(fd, "w") as f:
                json.dump(dataset.to_dict(), f)
            os.replace(tmp_path, path)
        except BaseException:
            if os.path.exists(tmp_path):
                os.unlink(tmp_path)
            raise

        self.logger.info(
            f"Saved {len(dataset.episodes)} demonstration episodes "
            f"({dataset.total_steps} steps) to {path}"
        )
        return path

    def load_dataset(self, name: str) -> DemonstrationDataset:
        """Load a dataset. Raises FileNotFoundError if it does not exist."""
        path = self._path(name)
        if not path.exists():
            raise FileNotFoundError(f"No demonstration dataset named {name!r} in {self.root}")
        with open(path) as f:
            return DemonstrationDataset.from_dict(json.load(f))

    def list_datasets(self) -> List[str]:
        return sorted(p.stem for p in self.root.glob("*.json"))

    def delete_dataset(self, name: str) -> bool:
        path = self._path(name)
        if not path.exists():
            return False
        path.unlink()
        return True

    def storage_size(self) -> int:
        """Total bytes used by stored datasets."""
        return sum(p.stat().st_size for p in self.root.glob("*.json"))
