from .model_manager import (FileModelBackend, MemoryModelBackend, ModelBackend,
                            ModelManager, StorageStats, resolve_backend)

__all__ = [
    "ModelBackend",
    "FileModelBackend",
    "MemoryModelBackend",
    "ModelManager",
    "StorageStats",
    "resolve_backend",
]
