"""
Model saving and loading for policy agents.

Each slot is a single-value register: saving overwrites whatever the slot
held before, atomically. Training session records live beside the models in
their own namespace. The storage backend is chosen once when the manager is
built.
"""

import copy
import io
import os
import tempfile
import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Union

import torch

from ..policy.agent import PolicyAgent
from ..logger import logger

FORMAT_VERSION = "1.0.0"


@dataclass
class StorageStats:
    """What a backend currently holds."""

    model_count: int
    session_count: int
    total_bytes: int


class ModelBackend(ABC):
    """Key-value storage for serialized model and session records."""

    @abstractmethod
    def write(self, slot: str, record: Dict[str, Any]) -> None:
        pass

    @abstractmethod
    def read(self, slot: str) -> Optional[Dict[str, Any]]:
        pass

    @abstractmethod
    def delete(self, slot: str) -> bool:
        pass

    @abstractmethod
    def slots(self) -> List[str]:
        pass

    @abstractmethod
    def write_session(self, session_id: str, record: Dict[str, Any]) -> None:
        pass

    @abstractmethod
    def read_session(self, session_id: str) -> Optional[Dict[str, Any]]:
        pass

    @abstractmethod
    def session_ids(self) -> List[str]:
        pass

    @abstractmethod
    def total_bytes(self) -> int:
        pass

    @abstractmethod
    def clear(self) -> None:
        """Remove every model and session record."""


def _to_bytes(record: Dict[str, Any]) -> bytes:
    payload = io.BytesIO()
    torch.save(record, payload)
    return payload.getvalue()


class MemoryModelBackend(ModelBackend):
    """Keeps records in a dict. Useful for tests and short-lived sessions."""

    def __init__(self):
        # Serialized so later mutation of the agent cannot leak into the stored copy
        self._records: Dict[str, bytes] = {}
        self._sessions: Dict[str, bytes] = {}

    def write(self, slot: str, record: Dict[str, Any]) -> None:
        self._records[slot] = _to_bytes(record)

    def read(self, slot: str) -> Optional[Dict[str, Any]]:
        if slot not in self._records:
            return None
        return torch.load(io.BytesIO(self._records[slot]), weights_only=False)

    def delete(self, slot: str) -> bool:
        return self._records.pop(slot, None) is not None

    def slots(self) -> List[str]:
        return sorted(self._records)

    def write_session(self, session_id: str, record: Dict[str, Any]) -> None:
        self._sessions[session_id] = _to_bytes(record)

    def read_session(self, session_id: str) -> Optional[Dict[str, Any]]:
        if session_id not in self._sessions:
            return None
        return torch.load(io.BytesIO(self._sessions[session_id]), weights_only=False)

    def session_ids(self) -> List[str]:
        return sorted(self._sessions)

    def total_bytes(self) -> int:
        return sum(len(v) for v in self._records.values()) + sum(
            len(v) for v in self._sessions.values()
        )

    def clear(self) -> None:
        self._records.clear()
        self._sessions.clear()


class FileModelBackend(ModelBackend):
    """One ``<slot>.pth`` file per slot, session records under ``sessions/``.

    Every write goes to a temp file first and is moved into place atomically.
    """

    SESSION_DIR = "sessions"

    def __init__(self, model_dir: Union[str, Path] = "model"):
        self.model_dir = Path(model_dir)
        self.model_dir.mkdir(parents=True, exist_ok=True)
        self.session_dir = self.model_dir / self.SESSION_DIR

    def _path(self, slot: str) -> Path:
        return self.model_dir / f"{slot}.pth"

    def _session_path(self, session_id: str) -> Path:
        return self.session_dir / f"{session_id}.pth"

    @staticmethod
    def _atomic_save(record: Dict[str, Any], path: Path) -> None:
        fd, tmp_name = tempfile.mkstemp(dir=path.parent, suffix=".tmp")
        try:
            with os.fdopen(fd, "wb") as handle:
                torch.save(record, handle)
            os.replace(tmp_name, path)
        except BaseException:
            if os.path.exists(tmp_name):
                os.remove(tmp_name)
            raise

    @staticmethod
    def _load(path: Path) -> Optional[Dict[str, Any]]:
        if not path.exists():
            return None
        return torch.load(path, map_location="cpu", weights_only=False)

    def write(self, slot: str, record: Dict[str, Any]) -> None:
        self._atomic_save(record, self._path(slot))

    def read(self, slot: str) -> Optional[Dict[str, Any]]:
        return self._load(self._path(slot))

    def delete(self, slot: str) -> bool:
        path = self._path(slot)
        if not path.exists():
            return False
        path.unlink()
        return True

    def slots(self) -> List[str]:
        return sorted(p.stem for p in self.model_dir.glob("*.pth"))

    def write_session(self, session_id: str, record: Dict[str, Any]) -> None:
        self.session_dir.mkdir(exist_ok=True)
        self._atomic_save(record, self._session_path(session_id))

    def read_session(self, session_id: str) -> Optional[Dict[str, Any]]:
        return self._load(self._session_path(session_id))

    def session_ids(self) -> List[str]:
        return sorted(p.stem for p in self.session_dir.glob("*.pth"))

    def _files(self) -> List[Path]:
        return list(self.model_dir.glob("*.pth")) + list(self.session_dir.glob("*.pth"))

    def total_bytes(self) -> int:
        return sum(p.stat().st_size for p in self._files())

    def clear(self) -> None:
        for path in self._files():
            path.unlink()


def resolve_backend(kind: str = "file", model_dir: Union[str, Path] = "model") -> ModelBackend:
    """Pick a backend by name ("file" or "memory")."""
    if kind == "file":
        return FileModelBackend(model_dir)
    if kind == "memory":
        return MemoryModelBackend()
    raise ValueError(f"Unknown model backend: {kind!r}")


class ModelManager:
    """Saves and restores ``PolicyAgent`` instances by slot name."""

    DEFAULT_SLOT = "current_model"

    def __init__(self, backend: Optional[ModelBackend] = None):
        self.backend = backend or MemoryModelBackend()
        self.logger = logger.bind(component="model_manager")

    def save_model(
        self,
        agent: PolicyAgent,
        metadata: Optional[Dict[str, Any]] = None,
        slot: str = DEFAULT_SLOT,
    ) -> str:
        """Overwrite ``slot`` with the agent's parameters and architecture.

        Returns:
            Identifier of the saved model
        """
        model_id = f"model_{uuid.uuid4().hex[:12]}"
        record = {
            "id": model_id,
            "model": agent.serialize(),
            "metadata": {
                **copy.deepcopy(metadata or {}),
                "saved_at": datetime.now(timezone.utc).isoformat(),
                "version": FORMAT_VERSION,
            },
        }
        self.backend.write(slot, record)
        self.logger.debug(f"Saved {model_id} to slot {slot}")
        return model_id

    def load_model(
        self,
        slot: str = DEFAULT_SLOT,
        seed: Optional[int] = None,
        device: Union[str, torch.device] = "cpu",
    ) -> PolicyAgent:
        """Rebuild the agent stored in ``slot``.

        Raises:
            KeyError: nothing has been saved to ``slot``
        """
        record = self.backend.read(slot)
        if record is None:
            raise KeyError(f"Model not found: {slot}")
        return PolicyAgent.from_serialized(record["model"], seed=seed, device=device)

    def load_metadata(self, slot: str = DEFAULT_SLOT) -> Optional[Dict[str, Any]]:
        record = self.backend.read(slot)
        return None if record is None else record["metadata"]

    def has_model(self, slot: str = DEFAULT_SLOT) -> bool:
        return slot in self.backend.slots()

    def delete_model(self, slot: str = DEFAULT_SLOT) -> bool:
        deleted = self.backend.delete(slot)
        if deleted:
            self.logger.debug(f"Deleted slot {slot}")
        return deleted

    def list_slots(self) -> List[str]:
        return self.backend.slots()

    def save_training_session(self, data: Mapping[str, Any]) -> str:
        """Store a training session record, overwriting any with the same id.

        Returns:
            The session id (``data["id"]`` when present)
        """
        session_id = data.get("id") or f"session_{uuid.uuid4().hex[:12]}"
        record = {
            **copy.deepcopy(dict(data)),
            "id": session_id,
            "saved_at": datetime.now(timezone.utc).isoformat(),
        }
        self.backend.write_session(session_id, record)
        self.logger.debug(f"Saved training session {session_id}")
        return session_id

    def load_training_session(self, session_id: str) -> Dict[str, Any]:
        """
        Raises:
            KeyError: no session record with this id
        """
        record = self.backend.read_session(session_id)
        if record is None:
            raise KeyError(f"Session not found: {session_id}")
        return record

    def list_training_sessions(self) -> List[str]:
        return self.backend.session_ids()

    def storage_stats(self) -> StorageStats:
        return StorageStats(
            model_count=len(self.backend.slots()),
            session_count=len(self.backend.session_ids()),
            total_bytes=self.backend.total_bytes(),
        )

    def clear_all(self) -> None:
        """Delete every stored model and session record."""
        self.backend.clear()
        self.logger.info("Cleared all stored models and sessions")
