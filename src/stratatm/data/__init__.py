"""
Storage backends the engine can persist through.
"""

from .storage import StorageBackend, MemoryStorage
from .yaml_store import YAMLStorage

__all__ = [
    'StorageBackend',
    'MemoryStorage',
    'YAMLStorage',
]
