"""
Directory backends for the group sync.

The reconciler consumes the DirectoryService interface; backends are looked
up by name through the registry.
"""

from directory.base import (
    ComputerObject,
    ConnectionFailedError,
    DirectoryError,
    DirectoryService,
    GroupExistsError,
    GroupObject,
    normalize_dn,
)
from directory.registry import DirectoryRegistry, get_registry

__all__ = [
    "ComputerObject",
    "ConnectionFailedError",
    "DirectoryError",
    "DirectoryService",
    "GroupExistsError",
    "GroupObject",
    "normalize_dn",
    "DirectoryRegistry",
    "get_registry",
]
